"""Deploy command: publish the ownership verifier contract."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import click
import httpx
from eth_account import Account
from rich.console import Console

from nftbundle.bundle import project_max_base_fee
from nftbundle.config import get_config
from nftbundle.provider import JsonRpcProvider, RPCError, wait_for_receipt

console = Console()


def read_bytecode(path: Path) -> bytes:
    """Compiled creation bytecode, hex encoded (0x prefix optional)."""
    text = path.read_text().strip()
    if text.startswith("0x"):
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError:
        raise click.BadParameter(f"{path} does not contain hex bytecode")


async def deploy_contract(
    provider: JsonRpcProvider,
    private_key: str,
    bytecode: bytes,
    gas_limit: Optional[int] = None,
) -> str:
    """Send a contract creation transaction and return the new address."""
    config = get_config()
    account = Account.from_key(private_key)
    try:
        chain_id = await provider.chain_id()
        nonce = await provider.current_nonce(account.address)
        block = await provider.get_latest_block()
        if gas_limit is None:
            gas_limit = await provider.estimate_gas(
                {"from": account.address, "data": "0x" + bytecode.hex()}
            )

        tip = config.gas.public_priority_fee_wei
        tx = {
            "type": 2,
            "chainId": chain_id,
            "nonce": nonce,
            "value": 0,
            "data": bytecode,
            "gas": gas_limit,
            "maxFeePerGas": project_max_base_fee(block.base_fee_per_gas, config.gas) + tip,
            "maxPriorityFeePerGas": tip,
        }
        signed = account.sign_transaction(tx)
        tx_hash = await provider.send_raw_transaction("0x" + bytes(signed.raw_transaction).hex())
        console.print(f"Deployment tx: [cyan]{tx_hash}[/cyan]")

        receipt = await wait_for_receipt(
            provider,
            tx_hash,
            timeout=config.polling.receipt_timeout_seconds,
            poll_interval=config.polling.poll_interval_seconds,
        )
    finally:
        await provider.close()

    if receipt is None:
        raise click.ClickException(f"No receipt for {tx_hash} yet; check it later")
    if not receipt.succeeded or not receipt.contract_address:
        raise click.ClickException(f"Deployment {tx_hash} reverted")
    return receipt.contract_address


@click.command()
@click.option(
    "--bytecode-path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="File with the verifier contract's compiled creation bytecode",
)
@click.option("--private-key", "-k", envvar="NFTBUNDLE_PRIVATE_KEY", required=True, help="Deployer key")
@click.option("--gas-limit", type=int, help="Gas limit (default: estimated)")
@click.pass_context
def deploy(ctx, bytecode_path: Path, private_key: str, gas_limit: Optional[int]):
    """Deploy the ownership verifier / bribe contract."""
    config = ctx.obj["config"]
    if not config.get("rpc_url"):
        console.print("[red]Error: no RPC URL configured (use --rpc-url)[/red]")
        ctx.exit(1)

    bytecode = read_bytecode(bytecode_path)
    provider = JsonRpcProvider(config["rpc_url"])
    try:
        address = asyncio.run(deploy_contract(provider, private_key, bytecode, gas_limit))
    except (RPCError, httpx.HTTPError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)

    console.print(f"[green]✓ Verifier contract deployed: {address}[/green]")
    click.echo(address)
