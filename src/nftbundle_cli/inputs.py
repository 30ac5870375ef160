"""Token id / quantity ingestion for the CLI."""
from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, List, Tuple

import click

IdList = List[Tuple[int, int]]


def _parse_int(text: str, what: str) -> int:
    try:
        value = int(text.strip(), 0)
    except ValueError:
        raise click.BadParameter(f"{what} must be an integer, got {text!r}")
    if value < 0:
        raise click.BadParameter(f"{what} must not be negative, got {text!r}")
    return value


def parse_id_args(values: Iterable[str], erc1155: bool) -> IdList:
    """
    Parse repeated --id values.

    ERC1155 values may carry a quantity as ID:QTY (default 1). ERC721 values
    are bare ids.
    """
    items: IdList = []
    for value in values:
        token, sep, quantity = value.partition(":")
        if sep and not erc1155:
            raise click.BadParameter(f"ERC721 ids take no quantity: {value!r}")
        items.append((
            _parse_int(token, "token id"),
            _parse_int(quantity, "quantity") if sep else 1,
        ))
    return items


def read_ids_file(path: Path, erc1155: bool) -> IdList:
    """
    Read ids from a CSV file.

    Two columns (id, quantity) for ERC1155, one column for ERC721. Blank lines
    and a leading header row are skipped.
    """
    items: IdList = []
    with open(path, newline="") as f:
        for line_no, row in enumerate(csv.reader(f), start=1):
            row = [cell.strip() for cell in row if cell.strip()]
            if not row:
                continue
            if line_no == 1 and not row[0].lstrip("-").isdigit() and not row[0].startswith("0x"):
                continue

            expected = 2 if erc1155 else 1
            if len(row) != expected:
                raise click.BadParameter(
                    f"{path}:{line_no}: expected {expected} column(s), got {len(row)}"
                )
            token_id = _parse_int(row[0], "token id")
            quantity = _parse_int(row[1], "quantity") if erc1155 else 1
            items.append((token_id, quantity))
    return items
