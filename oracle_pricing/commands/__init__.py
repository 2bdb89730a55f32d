"""
Command modules for the oracle-pricing CLI.

Each module holds the commands for one area; ``cli.register_commands``
attaches them to the root group.
"""

from .annotate import annotate
from .cache import cache
from .prices import fx, price
from .rates import rate

__all__ = [
    "annotate",
    "cache",
    "fx",
    "price",
    "rate",
]
