"""
Thin adapter over a web3 provider.

Only two capabilities are exposed: the latest block number and ``eth_getLogs``
for a contract address over an inclusive block range. Every provider failure
is translated into the package's error taxonomy so the ingestion loop can pick
the right recovery (plain retry, longer backoff, or a narrower range).
"""

import re
from typing import Any, Iterable, List, Optional, Sequence, Union

import requests
from eth_defi.provider.multi_provider import create_multi_provider_web3
from hexbytes import HexBytes
from web3 import Web3

from univ3_swap_monitor.core.errors import ConnectivityError, InvalidRangeError, RateLimitedError
from univ3_swap_monitor.core.models import RawLog

# Provider messages, lowercased. Range markers are checked first; status codes
# are matched as whole words so block numbers like 17429000 never hit.
RANGE_MARKERS = (
    "range is too large", "max is 1k blocks", "block range",
    "query returned more than 10000 results", "exceeds max results",
    "entity too large", "payload too large", "content too big",
    "response size exceeded",
)
RATE_LIMIT_MARKERS = (
    "rate limit", "rate-limit", "rate exceeded", "request rate",
    "too many requests", "throttl",
)
RANGE_CODES = re.compile(r"(?<![\w-])(413|-32602)(?!\w)")
RATE_LIMIT_CODES = re.compile(r"(?<![\w-])(429|-32029)(?!\w)")

AddressLike = Union[str, Sequence[str]]


def classify_rpc_error(exc: BaseException) -> Exception:
    """Map a provider/transport exception onto Connectivity/RateLimited/InvalidRange."""
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if status == 429:
        return RateLimitedError(f"provider throttled the request (HTTP 429): {exc}")
    if status == 413:
        return InvalidRangeError(f"provider rejected the payload size (HTTP 413): {exc}")

    msg = str(exc).lower()
    if any(marker in msg for marker in RANGE_MARKERS) or RANGE_CODES.search(msg):
        return InvalidRangeError(f"provider rejected the block range: {exc}")
    if any(marker in msg for marker in RATE_LIMIT_MARKERS) or RATE_LIMIT_CODES.search(msg):
        return RateLimitedError(f"provider throttled the request: {exc}")
    if isinstance(exc, requests.exceptions.RequestException):
        return ConnectivityError(f"transport failure: {exc}")
    return ConnectivityError(f"provider call failed: {exc}")


def _as_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    return bytes(HexBytes(value))


def to_raw_log(entry: Any) -> RawLog:
    """Normalise a web3 log entry (AttributeDict or plain dict)."""
    try:
        return RawLog(
            block_number=int(entry["blockNumber"]),
            transaction_hash=_as_bytes(entry.get("transactionHash")),
            log_index=int(entry["logIndex"]),
            address=str(entry["address"]).lower(),
            topics=tuple(_as_bytes(t) for t in entry.get("topics") or ()),
            data=_as_bytes(entry.get("data")),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConnectivityError(f"malformed log payload from provider: {exc}") from exc


def _checksum_addresses(contract_address: AddressLike) -> Union[str, List[str]]:
    if isinstance(contract_address, str):
        return Web3.to_checksum_address(contract_address)
    return [Web3.to_checksum_address(a) for a in contract_address]


class ChainClient:
    def __init__(self, w3: Web3, provider_max_window: Optional[int] = None):
        self.w3 = w3
        self.provider_max_window = provider_max_window

    @classmethod
    def from_rpc_urls(
        cls,
        json_rpc_urls: Iterable[str],
        timeout: float = 60.0,
        provider_max_window: Optional[int] = None,
    ) -> "ChainClient":
        urls = [str(u).strip() for u in json_rpc_urls if str(u).strip()]
        if not urls:
            raise ConnectivityError("no JSON-RPC URL configured")
        w3 = create_multi_provider_web3(" ".join(urls), request_kwargs={"timeout": timeout})
        return cls(w3, provider_max_window=provider_max_window)

    def latest_block(self) -> int:
        try:
            number = self.w3.eth.block_number
        except Exception as exc:
            err = classify_rpc_error(exc)
            if isinstance(err, InvalidRangeError):
                err = ConnectivityError(str(err))
            raise err from exc
        if isinstance(number, bool) or not isinstance(number, int) or number < 0:
            raise ConnectivityError(f"malformed block number from provider: {number!r}")
        return number

    def get_logs(
        self,
        contract_address: AddressLike,
        from_block: int,
        to_block: int,
        topics: Optional[Sequence[bytes]] = None,
    ) -> List[RawLog]:
        """Logs in ``[from_block, to_block]`` ordered by (block, log index)."""
        if to_block < from_block:
            raise InvalidRangeError(
                f"to_block {to_block} < from_block {from_block}", from_block, to_block
            )
        span = to_block - from_block + 1
        if self.provider_max_window is not None and span > self.provider_max_window:
            raise InvalidRangeError(
                f"range of {span} blocks exceeds provider window {self.provider_max_window}",
                from_block,
                to_block,
            )

        filt = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": _checksum_addresses(contract_address),
        }
        if topics:
            filt["topics"] = [[HexBytes(t) for t in topics]]

        try:
            entries = self.w3.eth.get_logs(filt)
        except Exception as exc:
            err = classify_rpc_error(exc)
            if isinstance(err, InvalidRangeError):
                err.from_block, err.to_block = from_block, to_block
            raise err from exc

        if entries is None or isinstance(entries, (str, bytes, dict)):
            raise ConnectivityError(f"malformed get_logs result: {type(entries).__name__}")

        logs = [to_raw_log(e) for e in entries]
        logs = [lg for lg in logs if from_block <= lg.block_number <= to_block]
        logs.sort(key=lambda lg: (lg.block_number, lg.log_index))
        return logs
