"""
Swap log decoder.

Turns a ``RawLog`` emitted by a Uniswap v3 pool into a ``SwapEvent``.
The function is pure: no I/O and no shared state, so it can be fanned out
over a thread pool.

Layout of ``Swap(address indexed sender, address indexed recipient,
int256 amount0, int256 amount1, uint160 sqrtPriceX96, uint128 liquidity,
int24 tick)``:

- ``topics[0]``: event selector
- ``topics[1]``: sender, ``topics[2]``: recipient (low 20 bytes of the word)
- ``data``: five 32-byte words, amount0, amount1, sqrtPriceX96, liquidity, tick
"""

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from univ3_swap_monitor.core.errors import MalformedLogError, SignatureMismatchError
from univ3_swap_monitor.core.models import RawLog, SwapEvent

SWAP_EVENT_SIGNATURE = "Swap(address,address,int256,int256,uint160,uint128,int24)"
SWAP_TOPIC0 = bytes(Web3.keccak(text=SWAP_EVENT_SIGNATURE))
SWAP_DATA_TYPES = ["int256", "int256", "uint160", "uint128", "int24"]

WORD_SIZE = 32
SWAP_TOPIC_COUNT = 3
SWAP_DATA_SIZE = WORD_SIZE * len(SWAP_DATA_TYPES)


def _topic_to_address(topic: bytes) -> str:
    return "0x" + topic[-20:].hex()


def decode(raw_log: RawLog) -> SwapEvent:
    """Decode one Swap log; raise ``SignatureMismatchError`` or ``MalformedLogError``."""
    where = {"block_number": raw_log.block_number, "log_index": raw_log.log_index}
    topics = raw_log.topics

    if not topics or bytes(topics[0]) != SWAP_TOPIC0:
        selector = "0x" + bytes(topics[0]).hex() if topics else None
        raise SignatureMismatchError(f"not a Swap event (topic0={selector})", **where)

    if len(topics) != SWAP_TOPIC_COUNT:
        raise MalformedLogError(f"expected {SWAP_TOPIC_COUNT} topics, got {len(topics)}", **where)
    if any(len(t) != WORD_SIZE for t in topics):
        raise MalformedLogError("topic words must be 32 bytes", **where)
    if len(raw_log.data) != SWAP_DATA_SIZE:
        raise MalformedLogError(
            f"expected {SWAP_DATA_SIZE} data bytes, got {len(raw_log.data)}", **where
        )
    if len(raw_log.transaction_hash) != WORD_SIZE:
        raise MalformedLogError("transaction hash must be 32 bytes", **where)

    try:
        amount0, amount1, sqrt_price, liquidity, tick = abi_decode(SWAP_DATA_TYPES, bytes(raw_log.data))
    except DecodingError as exc:
        raise MalformedLogError(f"cannot decode swap data: {exc}", **where) from exc

    return SwapEvent(
        tx_hash="0x" + bytes(raw_log.transaction_hash).hex(),
        sender=_topic_to_address(bytes(topics[1])),
        receiver=_topic_to_address(bytes(topics[2])),
        amount0=str(int(amount0)),
        amount1=str(int(amount1)),
        sqrt_price=str(int(sqrt_price)),
        liquidity=str(int(liquidity)),
        tick=int(tick),
        block_number=int(raw_log.block_number),
        log_index=int(raw_log.log_index),
    )
