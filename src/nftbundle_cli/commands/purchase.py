"""Purchase command."""
from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Tuple

import click
import httpx
from rich.console import Console
from rich.table import Table

from nftbundle.bundle import BundleBuilder
from nftbundle.config import get_config, validate_chain_id
from nftbundle.exceptions import BatchResolutionError, NFTBundleError
from nftbundle.orchestrator import PurchaseOptions, PurchaseOrchestrator, PurchaseResult
from nftbundle.orderbook import Network, OpenSeaOrderbook
from nftbundle.orders import PurchaseRequest, TokenStandard
from nftbundle.provider import JsonRpcProvider, NFTReader, RPCError
from nftbundle.submission import BundleOutcome, SubmissionStrategy, TxOutcome

from ..inputs import parse_id_args, read_ids_file

console = Console()

OUTCOME_STYLE = {
    TxOutcome.MINED: "green",
    TxOutcome.REVERTED: "red",
    TxOutcome.NOT_INCLUDED: "yellow",
    TxOutcome.NOT_ATTEMPTED: "dim",
    TxOutcome.PENDING: "cyan",
}


async def log_ownership(nft: NFTReader, request: PurchaseRequest, recipient: str) -> None:
    """Print who owns the requested tokens."""
    for token_id in request.token_ids:
        if request.standard == TokenStandard.ERC1155:
            balance = await nft.balance_of(recipient, token_id)
            console.print(f"{recipient} owns {balance} of token id {token_id}")
        else:
            owner = await nft.owner_of(token_id)
            console.print(f"Owner of token id {token_id}: {owner}")


def render_result(result: PurchaseResult) -> None:
    prepared = result.prepared
    table = Table(title="Bundle")
    table.add_column("#", justify="right")
    table.add_column("Kind")
    table.add_column("Token")
    table.add_column("Nonce", justify="right")
    table.add_column("Value (wei)", justify="right")
    table.add_column("Tx Hash", style="cyan")
    table.add_column("Outcome")

    reports = {r.index: r for r in result.submission.transactions} if result.submission else {}
    for tx in prepared.bundle:
        report = reports.get(tx.index)
        if report is None:
            outcome = "signed"
        else:
            style = OUTCOME_STYLE[report.outcome]
            outcome = f"[{style}]{report.outcome.value}[/{style}]"
        table.add_row(
            str(tx.index),
            tx.kind,
            "" if tx.token_id is None else str(tx.token_id),
            str(tx.nonce),
            str(tx.value),
            tx.tx_hash,
            outcome,
        )
    console.print(table)

    if result.submission is None:
        console.print(f"\n[yellow]Dry run: nothing submitted.[/yellow] Total value {prepared.total_value} wei")
        for raw in prepared.bundle.raw_transactions:
            console.print(raw, soft_wrap=True)
        return

    submission = result.submission
    for warning in submission.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")

    if submission.outcome == BundleOutcome.FULLY_INCLUDED:
        console.print(f"\n[green]✓ Bundle included in block {submission.included_block}[/green]")
    elif submission.outcome == BundleOutcome.TIMED_OUT:
        console.print("\n[yellow]Timed out waiting for inclusion; the transactions may still land[/yellow]")
    else:
        console.print(f"\n[red]Bundle {submission.outcome.value}: {submission.error}[/red]")
        if submission.outcome == BundleOutcome.PARTIALLY_INCLUDED:
            console.print(
                f"  Mined: {submission.succeeded_indices}  Failed: {submission.failed_indices}  "
                f"Not attempted: {submission.not_attempted_indices}"
            )


async def run_purchase(
    config: dict,
    request: PurchaseRequest,
    private_key: str,
    options: PurchaseOptions,
    use_relay: bool,
    target_blocks: int,
    timeout: Optional[float],
) -> PurchaseResult:
    library_config = get_config()
    if timeout is not None:
        library_config = replace(
            library_config, relay=replace(library_config.relay, timeout_seconds=timeout)
        )

    provider = JsonRpcProvider(config["rpc_url"], timeout=library_config.http_timeout_seconds)
    orderbook = OpenSeaOrderbook(
        Network(config.get("network", "mainnet")),
        api_key=config.get("api_key"),
        config=library_config.orderbook,
    )
    strategy = SubmissionStrategy.for_config(
        provider,
        relay_url=config.get("relay_url") if use_relay else None,
        max_blocks=target_blocks,
        config=library_config,
    )

    try:
        chain_id = await provider.chain_id()
        validate_chain_id(config.get("network", "mainnet"), chain_id)
        builder = BundleBuilder(private_key, chain_id)

        nft = NFTReader(provider, request.contract)
        recipient = options.recipient or builder.address
        console.print(f"Sending txs from [cyan]{builder.address}[/cyan]")
        console.print(f"Balance: {await provider.get_balance(builder.address)} wei")
        if use_relay:
            console.print(f"Using relay {config.get('relay_url')}, up to {target_blocks} blocks")

        orchestrator = PurchaseOrchestrator(
            orderbook,
            provider,
            builder,
            strategy,
            config=library_config,
            balance_reader=nft if request.standard == TokenStandard.ERC1155 else None,
        )

        console.print("Querying current owners...")
        await log_ownership(nft, request, recipient)

        result = await orchestrator.purchase(request, options)
        render_result(result)

        if not result.dry_run:
            await log_ownership(nft, request, recipient)
        return result
    finally:
        await strategy.close()
        await orderbook.close()
        await provider.close()


@click.command()
@click.argument("contract")
@click.option("--erc1155", is_flag=True, help="Buying ERC1155 tokens (default ERC721)")
@click.option("--id", "ids", multiple=True, help="Token id, ID:QTY for ERC1155 (repeatable)")
@click.option(
    "--ids-path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="CSV of token ids (and quantities for ERC1155)",
)
@click.option("--private-key", "-k", envvar="NFTBUNDLE_PRIVATE_KEY", required=True, help="Signing key")
@click.option("--recipient", help="Address receiving the tokens (default: signer)")
@click.option("--bribe", type=int, help="Bribe in wei")
@click.option("--bribe-receiver", help="Verifier contract that checks ownership and forwards the bribe")
@click.option("--relay/--public", "relay", default=None, help="Submit via relay (default when bribing)")
@click.option("--relay-url", help="Relay endpoint")
@click.option("--target-blocks", type=click.IntRange(min=1), default=3, show_default=True)
@click.option("--timeout", type=float, help="Seconds to wait for inclusion")
@click.option("--dry-run", is_flag=True, help="Build and sign, but do not submit")
@click.pass_context
def purchase(
    ctx,
    contract: str,
    erc1155: bool,
    ids: Tuple[str, ...],
    ids_path: Optional[Path],
    private_key: str,
    recipient: Optional[str],
    bribe: Optional[int],
    bribe_receiver: Optional[str],
    relay: Optional[bool],
    relay_url: Optional[str],
    target_blocks: int,
    timeout: Optional[float],
    dry_run: bool,
):
    """Buy the listed CONTRACT tokens in one bundle."""
    config = dict(ctx.obj["config"])
    if relay_url:
        config["relay_url"] = relay_url

    if not config.get("rpc_url"):
        console.print("[red]Error: no RPC URL configured (use --rpc-url)[/red]")
        ctx.exit(1)

    items: List[Tuple[int, int]] = parse_id_args(ids, erc1155)
    if ids_path:
        items.extend(read_ids_file(ids_path, erc1155))
    if not items:
        console.print("[red]Error: give at least one --id or an --ids-path file[/red]")
        ctx.exit(1)

    if bribe_receiver and not bribe:
        console.print("[red]Error: --bribe-receiver needs --bribe[/red]")
        ctx.exit(1)

    use_relay = relay if relay is not None else bool(bribe or relay_url)

    try:
        request = PurchaseRequest.build(
            TokenStandard.ERC1155 if erc1155 else TokenStandard.ERC721,
            contract,
            [token_id for token_id, _ in items],
            [quantity for _, quantity in items],
        )
        options = PurchaseOptions(
            bribe=bribe or 0,
            verifier=bribe_receiver,
            recipient=recipient,
            dry_run=dry_run,
        )
        result = asyncio.run(
            run_purchase(config, request, private_key, options, use_relay, target_blocks, timeout)
        )
    except BatchResolutionError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        for index, error in e.failures:
            console.print(f"  item {index}: [red]{error.message}[/red]")
        ctx.exit(1)
    except NFTBundleError as e:
        console.print(f"[red]Error ({e.stage}): {e.message}[/red]")
        ctx.exit(1)
    except (RPCError, httpx.HTTPError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)

    if not result.dry_run and result.submission.outcome in (
        BundleOutcome.NOT_INCLUDED,
        BundleOutcome.PARTIALLY_INCLUDED,
    ):
        ctx.exit(2)
