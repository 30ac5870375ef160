"""CLI command modules."""
from . import deploy, prices, purchase

__all__ = ["deploy", "prices", "purchase"]
