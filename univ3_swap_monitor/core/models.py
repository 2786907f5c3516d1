from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class RawLog:
    """A provider log normalised to plain ``bytes``/``int`` fields."""

    block_number: int
    transaction_hash: bytes
    log_index: int
    address: str
    topics: Tuple[bytes, ...] = field(default_factory=tuple)
    data: bytes = b""


@dataclass(frozen=True)
class SwapEvent:
    tx_hash: str
    sender: str
    receiver: str
    amount0: str
    amount1: str
    sqrt_price: str
    liquidity: str
    tick: int
    block_number: int
    log_index: int

    @property
    def key(self) -> Tuple[str, int]:
        return (self.tx_hash, self.log_index)

    def to_row(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "sender_address": self.sender,
            "receiver_address": self.receiver,
            "amount0": self.amount0,
            "amount1": self.amount1,
            "sqrt_price": self.sqrt_price,
            "liquidity": self.liquidity,
            "tick": self.tick,
            "block_number": self.block_number,
            "log_index": self.log_index,
        }


class InsertOutcome(Enum):
    INSERTED = "inserted"
    ALREADY_PRESENT = "already_present"
