"""
nftbundle CLI main entry point.

Usage:
    nftbundle [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import click
from rich.console import Console

from nftbundle.logging_utils import setup_logging

from .commands import deploy, prices, purchase
from .config import load_config

console = Console()


@click.group()
@click.version_option(package_name="nftbundle", message="%(prog)s %(version)s")
@click.option("--rpc-url", "-u", envvar="NFTBUNDLE_RPC_URL", help="Ethereum node URL")
@click.option(
    "--network",
    type=click.Choice(["mainnet", "rinkeby"]),
    help="Orderbook network (default: mainnet)",
)
@click.option("--api-key", envvar="OPENSEA_API_KEY", help="OpenSea API key")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, rpc_url: str | None, network: str | None, api_key: str | None, verbose: bool):
    """nftbundle - buy several NFT listings in one atomic bundle."""
    ctx.ensure_object(dict)

    config = load_config()

    # Override with CLI options
    if rpc_url:
        config["rpc_url"] = rpc_url
    if network:
        config["network"] = network
    if api_key:
        config["api_key"] = api_key

    setup_logging("DEBUG" if verbose else "WARNING")

    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose


@cli.command()
@click.pass_context
def status(ctx):
    """Show current configuration."""
    config = ctx.obj["config"]

    console.print("\n[bold blue]nftbundle Status[/bold blue]\n")
    console.print(f"RPC URL: [cyan]{config.get('rpc_url', 'Not configured')}[/cyan]")
    console.print(f"Network: [cyan]{config.get('network')}[/cyan]")
    console.print(f"Relay: [cyan]{config.get('relay_url')}[/cyan]")
    api_key = config.get("api_key")
    if api_key:
        masked = api_key[:4] + "..." + api_key[-4:] if len(api_key) > 8 else "***"
        console.print(f"API Key: [green]{masked}[/green]")
    else:
        console.print("API Key: [yellow]Not configured[/yellow]")
    console.print()


cli.add_command(purchase.purchase)
cli.add_command(prices.prices)
cli.add_command(deploy.deploy)


if __name__ == "__main__":
    cli()
