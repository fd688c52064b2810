"""Database — SQLite persistence layer.

Manages connections, runs migrations, and provides the append-only trade
history plus a small key/value table for engine state.
"""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path

from sniperbot.config import StorageConfig
from sniperbot.observability.logger import get_logger
from sniperbot.storage.migrations import run_migrations
from sniperbot.storage.models import TradeHistoryRecord

log = get_logger(__name__)

_HISTORY_COLUMNS = (
    "id", "venue", "instrument", "symbol", "side", "strategy", "amount",
    "status", "entry_price", "entry_time", "close_price", "close_time",
    "close_reason", "profit_loss", "take_profit", "stop_loss",
    "max_trade_time", "entry_ref", "close_ref", "error",
)


class Database:
    """SQLite database for the bot."""

    def __init__(self, config: StorageConfig):
        self._config = config
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open database connection and run migrations."""
        db_path = Path(self._config.sqlite_path)
        if str(db_path) != ":memory:":
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        try:
            self._conn.execute("PRAGMA journal_mode=WAL")
            run_migrations(self._conn)
        except sqlite3.Error:
            self.close()
            raise
        log.info("database.connected", path=str(db_path))

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    # ── Trade history ────────────────────────────────────────────────

    def append_trade(self, record: TradeHistoryRecord) -> None:
        data = record.model_dump()
        placeholders = ", ".join("?" for _ in _HISTORY_COLUMNS)
        self.conn.execute(
            f"INSERT INTO trade_history ({', '.join(_HISTORY_COLUMNS)}) "
            f"VALUES ({placeholders})",
            tuple(data[c] for c in _HISTORY_COLUMNS),
        )
        self.conn.commit()

    def load_history(self) -> list[TradeHistoryRecord]:
        """All history records in append order."""
        rows = self.conn.execute(
            f"SELECT {', '.join(_HISTORY_COLUMNS)} FROM trade_history ORDER BY seq"
        ).fetchall()
        return [TradeHistoryRecord(**dict(r)) for r in rows]

    def count_history(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM trade_history").fetchone()
        return int(row[0]) if row else 0

    # ── Engine State ─────────────────────────────────────────────────

    def set_engine_state(self, key: str, value: str) -> None:
        """Persist engine state (for cross-process dashboard reads)."""
        self.conn.execute(
            "INSERT OR REPLACE INTO engine_state (key, value, updated_at) VALUES (?, ?, ?)",
            (key, value, time.time()),
        )
        self.conn.commit()

    def get_engine_state(self, key: str) -> str | None:
        row = self.conn.execute(
            "SELECT value FROM engine_state WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None
