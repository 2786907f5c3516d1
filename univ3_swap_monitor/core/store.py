"""
SQLite persistence for decoded swaps.

One append-only ``logs`` table keyed by ``(tx_hash, log_index)``, plus a small
``cursor_state`` table so a restarted monitor resumes where it stopped.
"""

import logging
import os
import sqlite3
import threading
from typing import Any, Dict, List, Optional

import pandas as pd

from univ3_swap_monitor.core.errors import StorageError
from univ3_swap_monitor.core.models import InsertOutcome, SwapEvent

logger = logging.getLogger(__name__)

LOGS_COLUMNS = [
    "tx_hash", "sender_address", "receiver_address", "amount0", "amount1",
    "sqrt_price", "liquidity", "tick", "block_number", "log_index",
]

SCHEMA_SQL = (
    """
    CREATE TABLE IF NOT EXISTS logs (
        tx_hash TEXT,
        sender_address TEXT,
        receiver_address TEXT,
        amount0 TEXT,
        amount1 TEXT,
        sqrt_price TEXT,
        liquidity TEXT,
        tick INTEGER,
        block_number INTEGER,
        log_index INTEGER NOT NULL,
        UNIQUE (tx_hash, log_index)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_logs_block ON logs(block_number, log_index)",
    """
    CREATE TABLE IF NOT EXISTS cursor_state (
        contract_address TEXT PRIMARY KEY,
        last_block INTEGER NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
)

INSERT_SQL = f"""
    INSERT INTO logs ({", ".join(LOGS_COLUMNS)})
    VALUES ({", ".join("?" for _ in LOGS_COLUMNS)})
    ON CONFLICT (tx_hash, log_index) DO NOTHING
"""

SAVE_CURSOR_SQL = """
    INSERT INTO cursor_state (contract_address, last_block, updated_at)
    VALUES (?, ?, CURRENT_TIMESTAMP)
    ON CONFLICT (contract_address) DO UPDATE SET
        last_block = excluded.last_block,
        updated_at = excluded.updated_at
"""


class EventStore:
    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = str(db_path)
        self.timeout = timeout
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None

    # ---------------- Connection ----------------

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            parent = os.path.dirname(os.path.abspath(self.db_path))
            try:
                os.makedirs(parent, exist_ok=True)
                conn = sqlite3.connect(self.db_path, timeout=self.timeout, check_same_thread=False)
            except (OSError, sqlite3.Error) as exc:
                raise StorageError(f"cannot open database {self.db_path!r}: {exc}") from exc
            conn.row_factory = sqlite3.Row
            self._conn = conn
        return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "EventStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _execute(self, sql: str, params: tuple = (), commit: bool = False) -> int:
        """Run one statement; return the affected row count."""
        with self._lock:
            conn = self._connection()
            try:
                cur = conn.execute(sql, params)
                if commit:
                    conn.commit()
                return cur.rowcount
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.rollback()
                raise StorageError(f"{type(exc).__name__}: {exc}") from exc

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            conn = self._connection()
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"{type(exc).__name__}: {exc}") from exc

    # ---------------- Schema ----------------

    def ensure_schema(self) -> None:
        with self._lock:
            conn = self._connection()
            try:
                for statement in SCHEMA_SQL:
                    conn.execute(statement)
                conn.commit()
            except sqlite3.Error as exc:
                raise StorageError(f"cannot create schema in {self.db_path!r}: {exc}") from exc
        logger.debug("Schema ready in %s", self.db_path)

    # ---------------- Events ----------------

    def insert_if_absent(self, event: SwapEvent) -> InsertOutcome:
        row = event.to_row()
        changed = self._execute(INSERT_SQL, tuple(row[c] for c in LOGS_COLUMNS), commit=True)
        if changed == 1:
            return InsertOutcome.INSERTED
        return InsertOutcome.ALREADY_PRESENT

    def fetch_all(self) -> List[Dict[str, Any]]:
        rows = self._query(
            f"SELECT {', '.join(LOGS_COLUMNS)} FROM logs ORDER BY block_number, log_index"
        )
        return [dict(r) for r in rows]

    def count(self) -> int:
        return int(self._query("SELECT COUNT(*) FROM logs")[0][0])

    def to_frame(self) -> pd.DataFrame:
        """All stored swaps as a DataFrame; big integers stay decimal text."""
        return pd.DataFrame(self.fetch_all(), columns=LOGS_COLUMNS)

    # ---------------- Cursor ----------------

    def load_cursor(self, contract_address: str) -> Optional[int]:
        rows = self._query(
            "SELECT last_block FROM cursor_state WHERE contract_address = ?",
            (contract_address.lower(),),
        )
        return int(rows[0]["last_block"]) if rows else None

    def save_cursor(self, contract_address: str, height: int) -> None:
        self._execute(SAVE_CURSOR_SQL, (contract_address.lower(), int(height)), commit=True)
