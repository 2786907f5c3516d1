"""
Uniswap v3 Swap Monitor

Watches a single Uniswap v3 pool for Swap events and stores each one once in SQLite.
"""

__version__ = "1.0.0"

from univ3_swap_monitor.core import (
    ChainClient,
    EventStore,
    FilterCursor,
    InsertOutcome,
    RawLog,
    SwapEvent,
    decode,
)

__all__ = [
    "__version__",
    "ChainClient",
    "EventStore",
    "FilterCursor",
    "InsertOutcome",
    "RawLog",
    "SwapEvent",
    "decode",
]
