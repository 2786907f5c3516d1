"""
rpc_harvester.py: live Uniswap v3 Swap monitor

Overview
--------
Polls a JSON-RPC provider for the Swap logs of a single pool, decodes them and
writes each swap once into a SQLite database, printing a summary line per new
swap. Runs until interrupted.

Cycle (one call to ``IngestionLoop.run_cycle``)
-----------------------------------------------
1) Range: ``from = cursor + 1``, ``to = min(from + window - 1, head)`` where
   ``head = latest block - confirmations``. Nothing new -> sleep.
2) ``eth_getLogs`` for the range.
   - rate limited  -> exponential backoff (capped), same range next time
   - connectivity  -> fixed backoff, same range next time
   - invalid range -> halve the window and retry immediately
3) Decode every log in order. Non-Swap logs are skipped, malformed ones are
   reported and skipped.
4) Insert decoded swaps in order; duplicates count as success. A storage
   failure aborts the cycle and the whole range is retried.
5) Only then persist and advance the cursor to ``to``.

Shutdown
--------
SIGINT/SIGTERM stop the loop after the current batch. A signal that arrives
while a provider request is in flight abandons that request instead; the
cursor has not moved, so the range is fetched again on the next start.

Configuration knobs
-------------------
See ``univ3_swap_monitor.core.config.DEFAULT_CONFIG``. The config file path is
taken from ``--config``, ``SWAP_MONITOR_CONFIG_PATH`` or
``parameters_yml/swap_monitor_config.yml``.
"""

import argparse
import logging
import signal
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from dotenv import load_dotenv

from univ3_swap_monitor.core.chain import ChainClient
from univ3_swap_monitor.core.config import load_config
from univ3_swap_monitor.core.cursor import FilterCursor
from univ3_swap_monitor.core.decoder import SWAP_TOPIC0, decode
from univ3_swap_monitor.core.errors import (
    ConfigError,
    ConnectivityError,
    DecodeError,
    InvalidRangeError,
    RateLimitedError,
    SignatureMismatchError,
    StorageError,
)
from univ3_swap_monitor.core.models import InsertOutcome, RawLog, SwapEvent
from univ3_swap_monitor.core.store import EventStore
from univ3_swap_monitor.core.utils import find_pair_name, format_swap, token_decimals_for_pair

logger = logging.getLogger(__name__)


class LoopState(Enum):
    IDLE = "idle"
    POLLING = "polling"
    DECODING = "decoding"
    PERSISTING = "persisting"
    ADVANCING = "advancing"
    BACKOFF = "backoff"
    STOPPED = "stopped"


@dataclass
class BackoffPolicy:
    retry_delay: float = 2.0
    rate_limit_delay: float = 5.0
    max_delay: float = 60.0

    def standard(self) -> float:
        return min(self.retry_delay, self.max_delay)

    def rate_limited(self, streak: int) -> float:
        base = max(self.rate_limit_delay, self.retry_delay)
        return min(base * 2 ** max(streak - 1, 0), self.max_delay)


@dataclass
class CycleReport:
    outcome: str
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    fetched: int = 0
    stored: int = 0
    duplicates: int = 0
    skipped: int = 0
    delay: float = 0.0


def _try_decode(raw_log: RawLog) -> Union[SwapEvent, DecodeError]:
    try:
        return decode(raw_log)
    except DecodeError as exc:
        return exc


class IngestionLoop:
    """Single-writer poll loop for one pool address."""

    def __init__(
        self,
        chain: ChainClient,
        store: EventStore,
        cursor: FilterCursor,
        contract_address: str,
        max_window: int = 1000,
        poll_interval: float = 2.0,
        backoff: Optional[BackoffPolicy] = None,
        confirmations: int = 0,
        decode_workers: int = 1,
        persist_cursor: bool = True,
        stop_event: Optional[threading.Event] = None,
        wait: Optional[Callable[[float], bool]] = None,
    ):
        self.chain = chain
        self.store = store
        self.cursor = cursor
        self.contract_address = contract_address.lower()
        self.max_window = max(1, int(max_window))
        self.window = self.max_window
        self.poll_interval = poll_interval
        self.backoff = backoff or BackoffPolicy()
        self.confirmations = confirmations
        self.persist_cursor = persist_cursor
        self.state = LoopState.IDLE

        self._stop = stop_event or threading.Event()
        self._wait = wait or self._stop.wait
        self._pending_range: Optional[Tuple[int, int]] = None
        self._pending_head: Optional[int] = None
        self._rate_limit_streak = 0
        self._executor = ThreadPoolExecutor(max_workers=decode_workers) if decode_workers > 1 else None
        self._decimals = token_decimals_for_pair(find_pair_name(self.contract_address))

    # ---------------- Lifecycle ----------------

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def run(self, max_cycles: Optional[int] = None) -> int:
        """Run cycles until ``stop()`` (or ``max_cycles``); return the number of cycles run."""
        cycles = 0
        try:
            while not self._stop.is_set():
                report = self.run_cycle()
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                self.state = LoopState.BACKOFF
                if report.delay > 0 and self._wait(report.delay):
                    break
        finally:
            self.state = LoopState.STOPPED
            self.close()
        return cycles

    # ---------------- One cycle ----------------

    def run_cycle(self) -> CycleReport:
        self.state = LoopState.POLLING
        head: Optional[int] = None

        if self._pending_range is not None:
            from_block, to_block = self._pending_range
            head = self._pending_head
        else:
            from_block = self.cursor.current() + 1
            try:
                head = self.chain.latest_block() - self.confirmations
            except RateLimitedError as exc:
                return self._rate_limited(exc, None, None)
            except ConnectivityError as exc:
                return self._connectivity(exc, None, None)
            self._pending_head = head
            to_block = min(from_block + self.window - 1, head)
            if to_block < from_block:
                logger.debug("No new blocks after %s (head %s)", from_block - 1, head)
                return self._sleep(CycleReport("idle", from_block, to_block, delay=self.poll_interval))

        while True:
            try:
                logs = self.chain.get_logs(self.contract_address, from_block, to_block, topics=[SWAP_TOPIC0])
                break
            except InvalidRangeError as exc:
                if to_block <= from_block:
                    print(f"  ⚠️  Provider rejects even block {from_block}: {exc}")
                    self._pending_range = (from_block, to_block)
                    return self._sleep(CycleReport(
                        "invalid_range", from_block, to_block, delay=self.backoff.standard()
                    ))
                self.window = max(1, min(self.window, to_block - from_block + 1) // 2)
                to_block = from_block + self.window - 1
                print(f"  ⚠️  Range rejected, retrying blocks [{from_block:,}, {to_block:,}] (window={self.window})")
            except RateLimitedError as exc:
                return self._rate_limited(exc, from_block, to_block)
            except ConnectivityError as exc:
                return self._connectivity(exc, from_block, to_block)

        # Until the cursor moves, a failure must retry exactly this range.
        self._pending_range = (from_block, to_block)
        report = CycleReport("stored", from_block, to_block, fetched=len(logs))

        self.state = LoopState.DECODING
        events = self._decode_all(logs, report)

        self.state = LoopState.PERSISTING
        try:
            for event in events:
                outcome = self.store.insert_if_absent(event)
                if outcome is InsertOutcome.INSERTED:
                    report.stored += 1
                    print(format_swap(event, self._decimals))
                else:
                    report.duplicates += 1
                    logger.debug("Swap %s#%s already stored", event.tx_hash, event.log_index)

            self.state = LoopState.ADVANCING
            if self.persist_cursor:
                self.store.save_cursor(self.contract_address, to_block)
        except StorageError as exc:
            print(f"  ⚠️  Storage failure in blocks [{from_block:,}, {to_block:,}], "
                  f"retrying the range in {self.backoff.standard():.1f}s: {exc}")
            report.outcome = "storage_error"
            report.delay = self.backoff.standard()
            return self._sleep(report)

        self.cursor.advance_to(to_block)
        self._pending_range = None
        self._pending_head = None
        self._rate_limit_streak = 0

        if report.stored or report.skipped:
            print(f"  ✓ Blocks [{from_block:,}, {to_block:,}]: {report.stored} stored, "
                  f"{report.duplicates} duplicates, {report.skipped} skipped")
        caught_up = head is None or to_block >= head
        report.delay = self.poll_interval if caught_up else 0.0
        return self._sleep(report)

    # ---------------- Helpers ----------------

    def _decode_all(self, logs: Sequence[RawLog], report: CycleReport) -> List[SwapEvent]:
        if self._executor is not None and len(logs) > 1:
            results = list(self._executor.map(_try_decode, logs))
        else:
            results = [_try_decode(lg) for lg in logs]

        events: List[SwapEvent] = []
        for raw_log, result in zip(logs, results):
            if isinstance(result, SwapEvent):
                events.append(result)
                continue
            report.skipped += 1
            if isinstance(result, SignatureMismatchError):
                logger.info("Skipping non-Swap log at block %s index %s", raw_log.block_number, raw_log.log_index)
            else:
                print(f"  ⚠️  Skipping malformed Swap log at block {raw_log.block_number} "
                      f"index {raw_log.log_index}: {result}")
        return events

    def _sleep(self, report: CycleReport) -> CycleReport:
        self.state = LoopState.BACKOFF if report.delay > 0 else LoopState.IDLE
        return report

    def _rate_limited(self, exc: Exception, from_block: Optional[int], to_block: Optional[int]) -> CycleReport:
        self._rate_limit_streak += 1
        delay = self.backoff.rate_limited(self._rate_limit_streak)
        if from_block is not None:
            self._pending_range = (from_block, to_block)
        print(f"  ⚠️  Rate limited (x{self._rate_limit_streak}), backing off {delay:.1f}s: {exc}")
        return self._sleep(CycleReport("rate_limited", from_block, to_block, delay=delay))

    def _connectivity(self, exc: Exception, from_block: Optional[int], to_block: Optional[int]) -> CycleReport:
        delay = self.backoff.standard()
        if from_block is not None:
            self._pending_range = (from_block, to_block)
        print(f"  ⚠️  Provider unreachable, retrying in {delay:.1f}s: {exc}")
        return self._sleep(CycleReport("connectivity", from_block, to_block, delay=delay))


# ---------------- Wiring ----------------

def initial_cursor(cfg: Dict[str, Any], chain: ChainClient, store: EventStore) -> FilterCursor:
    """Persisted cursor, else ``start_block - 1``, else the head at boot."""
    if cfg.get("persist_cursor", True):
        saved = store.load_cursor(cfg["pool_addr"])
        if saved is not None:
            print(f"Resuming from block {saved + 1:,} (persisted cursor)")
            return FilterCursor(saved)
    if cfg.get("start_block") is not None:
        print(f"Starting from configured block {cfg['start_block']:,}")
        return FilterCursor(cfg["start_block"] - 1)
    head = max(chain.latest_block() - int(cfg.get("confirmations", 0)), -1)
    print(f"Starting from chain head {head:,}; only new swaps will be recorded")
    return FilterCursor(head)


def build_loop(cfg: Dict[str, Any], chain: ChainClient, store: EventStore,
               cursor: FilterCursor, stop_event: Optional[threading.Event] = None) -> IngestionLoop:
    return IngestionLoop(
        chain,
        store,
        cursor,
        cfg["pool_addr"],
        max_window=cfg["max_window"],
        poll_interval=cfg["poll_interval"],
        backoff=BackoffPolicy(cfg["retry_delay"], cfg["rate_limit_delay"], cfg["max_backoff"]),
        confirmations=cfg["confirmations"],
        decode_workers=cfg["decode_workers"],
        persist_cursor=cfg["persist_cursor"],
        stop_event=stop_event,
    )


def export_swaps(store: EventStore, out_path: Union[str, Path]) -> int:
    """Write the stored swaps to a pickle (default) or CSV file; return the row count."""
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    df = store.to_frame()
    if out_path.suffix.lower() == ".csv":
        df.to_csv(out_path, index=False)
    else:
        df.to_pickle(out_path)
    return len(df)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Monitor a Uniswap v3 pool and store its Swap events in SQLite.")
    parser.add_argument("--config", help="YAML configuration file")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="poll the pool until interrupted (default)")
    export = sub.add_parser("export", help="dump the stored swaps with pandas")
    export.add_argument("--out", help="output .pkl or .csv path (default data/<pool>.pkl)")
    return parser


def _signal_handler(loop: IngestionLoop) -> Callable[[int, Any], None]:
    def _handler(signum, _frame):
        loop.stop()
        if loop.state is LoopState.POLLING:
            print(f"\nReceived {signal.Signals(signum).name}, abandoning the in-flight request...")
            raise KeyboardInterrupt
        print(f"\nReceived {signal.Signals(signum).name}, finishing the current batch...")

    return _handler


def _install_signal_handlers(loop: IngestionLoop) -> None:
    handler = _signal_handler(loop)
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, handler)


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        print(f"❌ Invalid configuration: {exc}")
        return 2

    logging.basicConfig(
        level=getattr(logging, cfg["log_level"]),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    store = EventStore(cfg["db_path"])
    try:
        store.ensure_schema()
    except StorageError as exc:
        print(f"❌ Cannot prepare database {cfg['db_path']}: {exc}")
        return 1

    try:
        if args.command == "export":
            out_path = args.out or f"data/{cfg['pool_addr']}.pkl"
            n_rows = export_swaps(store, out_path)
            print(f"  ✓ Exported {n_rows:,} swaps → {out_path}")
            return 0

        try:
            chain = ChainClient.from_rpc_urls(
                cfg["json_rpc_urls"],
                timeout=cfg["request_timeout"],
                provider_max_window=cfg["provider_max_window"],
            )
            cursor = initial_cursor(cfg, chain, store)
        except ConnectivityError as exc:
            print(f"❌ Cannot reach the provider: {exc}")
            return 1
        except StorageError as exc:
            print(f"❌ Cannot read the saved cursor from {cfg['db_path']}: {exc}")
            return 1

        loop = build_loop(cfg, chain, store, cursor)
        _install_signal_handlers(loop)

        pair = find_pair_name(cfg["pool_addr"])
        print(f"✅ Monitoring swaps for pool {cfg['pool_addr']}" + (f" ({pair})" if pair else ""))
        print(f"Settings: DB={cfg['db_path']}, WINDOW={cfg['max_window']}, "
              f"POLL={cfg['poll_interval']}s, CONFIRMATIONS={cfg['confirmations']}")
        try:
            loop.run()
        except KeyboardInterrupt:
            pass
        try:
            total = f"{store.count():,}"
        except StorageError as exc:
            total = f"unknown ({exc})"
        print(f"Stopped at block {loop.cursor.current():,}. Total swaps stored: {total}")
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
