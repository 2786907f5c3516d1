"""
Core building blocks: provider adapter, decoder, storage and cursor.
"""

from univ3_swap_monitor.core.chain import ChainClient
from univ3_swap_monitor.core.cursor import FilterCursor
from univ3_swap_monitor.core.decoder import SWAP_TOPIC0, decode
from univ3_swap_monitor.core.models import InsertOutcome, RawLog, SwapEvent
from univ3_swap_monitor.core.store import EventStore

__all__ = [
    "ChainClient",
    "EventStore",
    "FilterCursor",
    "InsertOutcome",
    "RawLog",
    "SWAP_TOPIC0",
    "SwapEvent",
    "decode",
]
