from typing import Callable, Iterable, List, Optional, Sequence, Union

import pytest
from eth_abi import encode

from univ3_swap_monitor.core.decoder import SWAP_DATA_TYPES, SWAP_TOPIC0
from univ3_swap_monitor.core.errors import InvalidRangeError
from univ3_swap_monitor.core.models import RawLog
from univ3_swap_monitor.core.store import EventStore

POOL = "0x88e6a0c2ddd26feeb64f039a2c41296fcb3f5640"
SENDER = "0xe592427a0aece92de3edee1f18e0157c05861564"
RECEIVER = "0x4b7d6c3cea01f4d54a9cad6587da106ea39da1e6"

# Mainnet USDC/WETH swap used as a reference vector.
REFERENCE = {
    "tx_hash": "0xe92955b4c46b38de18c1cdd58b06d49d45d6f9ca0906a86918f4cf20650683b4",
    "sender": SENDER,
    "receiver": RECEIVER,
    "topic1": "0x000000000000000000000000e592427a0aece92de3edee1f18e0157c05861564",
    "topic2": "0x0000000000000000000000004b7d6c3cea01f4d54a9cad6587da106ea39da1e6",
    "data": (
        "0xfffffffffffffffffffffffffffffffffffffffffffffffffffffffff0511b80"
        "0000000000000000000000000000000000000000000000000240e540e2dc0042"
        "000000000000000000000000000000000000610413a1a7c814aa98ca36d09f8b"
        "000000000000000000000000000000000000000000000001c4846addbd259faf"
        "00000000000000000000000000000000000000000000000000000000000316ab"
    ),
    "amount0": "-263120000",
    "amount1": "162381653432074306",
    "sqrt_price": "1967716719848838692609454179917707",
    "liquidity": "32607304702662909871",
    "tick": 202411,
}


def address_topic(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(address[2:])


def tx_hash_for(block: int, log_index: int) -> bytes:
    return block.to_bytes(16, "big") + log_index.to_bytes(16, "big")


def make_swap_log(
    block: int = 100,
    log_index: int = 0,
    amount0: int = -500,
    amount1: int = 1000000,
    sqrt_price: int = 79228162514264337593543950336,
    liquidity: int = 123456789,
    tick: int = -12345,
    tx_hash: Optional[bytes] = None,
    sender: str = SENDER,
    receiver: str = RECEIVER,
) -> RawLog:
    return RawLog(
        block_number=block,
        transaction_hash=tx_hash if tx_hash is not None else tx_hash_for(block, log_index),
        log_index=log_index,
        address=POOL,
        topics=(SWAP_TOPIC0, address_topic(sender), address_topic(receiver)),
        data=encode(SWAP_DATA_TYPES, [amount0, amount1, sqrt_price, liquidity, tick]),
    )


def make_reference_log(block: int = 17000000, log_index: int = 12) -> RawLog:
    return RawLog(
        block_number=block,
        transaction_hash=bytes.fromhex(REFERENCE["tx_hash"][2:]),
        log_index=log_index,
        address=POOL,
        topics=(
            SWAP_TOPIC0,
            bytes.fromhex(REFERENCE["topic1"][2:]),
            bytes.fromhex(REFERENCE["topic2"][2:]),
        ),
        data=bytes.fromhex(REFERENCE["data"][2:]),
    )


def make_transfer_log(block: int = 100, log_index: int = 0) -> RawLog:
    transfer_topic = bytes.fromhex("ddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef")
    return RawLog(
        block_number=block,
        transaction_hash=tx_hash_for(block, log_index),
        log_index=log_index,
        address=POOL,
        topics=(transfer_topic, address_topic(SENDER), address_topic(RECEIVER)),
        data=(1000).to_bytes(32, "big"),
    )


class FakeChain:
    """Scripted stand-in for ChainClient.

    ``head`` is an int or a callable returning the head for each call.
    ``failures`` is consumed one entry per ``get_logs`` call; ``None`` means succeed.
    ``max_span`` makes wider requests fail with InvalidRangeError.
    """

    def __init__(
        self,
        head: Union[int, Callable[[], int]] = 100,
        logs: Iterable[RawLog] = (),
        failures: Sequence[Optional[Exception]] = (),
        head_failures: Sequence[Optional[Exception]] = (),
        max_span: Optional[int] = None,
    ):
        self.head = head
        self.logs: List[RawLog] = list(logs)
        self.failures = list(failures)
        self.head_failures = list(head_failures)
        self.max_span = max_span
        self.calls: List[tuple] = []
        self.head_calls = 0

    def latest_block(self) -> int:
        self.head_calls += 1
        if self.head_failures:
            exc = self.head_failures.pop(0)
            if exc is not None:
                raise exc
        return self.head() if callable(self.head) else self.head

    def get_logs(self, contract_address, from_block, to_block, topics=None):
        self.calls.append((from_block, to_block))
        if self.max_span is not None and to_block - from_block + 1 > self.max_span:
            raise InvalidRangeError("range is too large", from_block, to_block)
        if self.failures:
            exc = self.failures.pop(0)
            if exc is not None:
                raise exc
        found = [lg for lg in self.logs if from_block <= lg.block_number <= to_block]
        return sorted(found, key=lambda lg: (lg.block_number, lg.log_index))


@pytest.fixture
def store(tmp_path):
    s = EventStore(str(tmp_path / "swaps.db"))
    s.ensure_schema()
    yield s
    s.close()


@pytest.fixture
def waits():
    """Records requested sleeps instead of sleeping."""
    recorded: List[float] = []

    def _wait(delay: float) -> bool:
        recorded.append(delay)
        return False

    _wait.recorded = recorded
    return _wait
