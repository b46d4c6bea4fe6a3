# flasharb/store.py
"""Durable state for the circuit breaker and per-network configuration."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional


class StateStore:
    """SQLite-backed store; every write commits whole or not at all."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self.logger = logging.getLogger("flasharb.store")
        self._lock = threading.RLock()
        self._depth = 0

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        # One long-lived connection so ":memory:" survives between calls.
        self._conn = sqlite3.connect(db_path, timeout=30.0, check_same_thread=False,
                                     isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS safety_state (
                    network TEXT PRIMARY KEY,
                    is_frozen INTEGER NOT NULL DEFAULT 0,
                    last_price TEXT,
                    last_sample_time REAL,
                    consecutive_failures INTEGER NOT NULL DEFAULT 0,
                    drop_threshold_pct TEXT NOT NULL,
                    sample_interval_sec INTEGER NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS chain_config (
                    network TEXT PRIMARY KEY,
                    loan_provider TEXT NOT NULL,
                    max_gas_budget INTEGER NOT NULL
                )
            """)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run the block in one transaction. Nested blocks become savepoints,
        so an inner failure only undoes the inner writes.
        """
        with self._lock:
            if self._depth == 0:
                begin, commit, rollback = "BEGIN", "COMMIT", "ROLLBACK"
            else:
                name = f"sp_{self._depth}"
                begin = f"SAVEPOINT {name}"
                commit = f"RELEASE SAVEPOINT {name}"
                rollback = f"ROLLBACK TO SAVEPOINT {name}"

            self._conn.execute(begin)
            self._depth += 1
            try:
                yield self._conn
            except BaseException:
                self._depth -= 1
                self._conn.execute(rollback)
                if self._depth > 0:
                    self._conn.execute(commit)
                raise
            else:
                self._depth -= 1
                try:
                    self._conn.execute(commit)
                except sqlite3.Error as e:
                    self.logger.error(f"Database error: {str(e)}")
                    raise

    # -----------------------------
    # Safety state
    # -----------------------------

    def load_safety_state(self, network: str) -> Optional[dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM safety_state WHERE network = ?", (network,)
            ).fetchone()
        return dict(row) if row else None

    def save_safety_state(self, network: str, state: dict[str, Any]) -> None:
        with self.transaction() as conn:
            conn.execute("""
                INSERT INTO safety_state (
                    network, is_frozen, last_price, last_sample_time,
                    consecutive_failures, drop_threshold_pct, sample_interval_sec
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(network) DO UPDATE SET
                    is_frozen = excluded.is_frozen,
                    last_price = excluded.last_price,
                    last_sample_time = excluded.last_sample_time,
                    consecutive_failures = excluded.consecutive_failures,
                    drop_threshold_pct = excluded.drop_threshold_pct,
                    sample_interval_sec = excluded.sample_interval_sec
            """, (
                network,
                int(state["is_frozen"]),
                state["last_price"],
                state["last_sample_time"],
                state["consecutive_failures"],
                state["drop_threshold_pct"],
                state["sample_interval_sec"],
            ))

    # -----------------------------
    # Chain config
    # -----------------------------

    def load_chain_config(self, network: str) -> Optional[dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM chain_config WHERE network = ?", (network,)
            ).fetchone()
        return dict(row) if row else None

    def save_chain_config(self, network: str, loan_provider: str, max_gas_budget: int) -> None:
        with self.transaction() as conn:
            conn.execute("""
                INSERT INTO chain_config (network, loan_provider, max_gas_budget)
                VALUES (?, ?, ?)
                ON CONFLICT(network) DO UPDATE SET
                    loan_provider = excluded.loan_provider,
                    max_gas_budget = excluded.max_gas_budget
            """, (network, loan_provider, max_gas_budget))

    def networks(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute("SELECT network FROM chain_config ORDER BY network").fetchall()
        return [r["network"] for r in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
