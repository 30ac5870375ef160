"""Prices command: cheapest listings per token, as CSV."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console

from nftbundle.exceptions import NFTBundleError
from nftbundle.orderbook import Network, OpenSeaOrderbook

from ..inputs import parse_id_args, read_ids_file

console = Console()


async def fetch_prices(
    orderbook: OpenSeaOrderbook,
    contract: str,
    token_ids: List[int],
    limit: int,
) -> List[Tuple[int, int]]:
    """(token_id, price) rows, cheapest first per token."""
    rows: List[Tuple[int, int]] = []
    try:
        for token_id in token_ids:
            for order in await orderbook.get_cheapest_orders(contract, token_id, n=limit):
                rows.append((token_id, order.current_price))
    finally:
        await orderbook.close()
    return rows


@click.command()
@click.argument("contract")
@click.option("--erc1155", is_flag=True, help="Ids file has an id,quantity layout")
@click.option("--id", "ids", multiple=True, help="Token id (repeatable)")
@click.option(
    "--ids-path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="CSV of token ids",
)
@click.option("--limit", type=click.IntRange(min=1), default=10, show_default=True)
@click.pass_context
def prices(
    ctx,
    contract: str,
    erc1155: bool,
    ids: Tuple[str, ...],
    ids_path: Optional[Path],
    limit: int,
):
    """Print token_id,price for the cheapest CONTRACT listings."""
    config = ctx.obj["config"]
    items = parse_id_args(ids, erc1155)
    if ids_path:
        items.extend(read_ids_file(ids_path, erc1155))
    if not items:
        console.print("[red]Error: give at least one --id or an --ids-path file[/red]")
        ctx.exit(1)

    orderbook = OpenSeaOrderbook(
        Network(config.get("network", "mainnet")),
        api_key=config.get("api_key"),
    )
    try:
        rows = asyncio.run(fetch_prices(orderbook, contract, [i for i, _ in items], limit))
    except NFTBundleError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        ctx.exit(1)

    click.echo("token_id,price")
    for token_id, price in rows:
        click.echo(f"{token_id},{price}")
