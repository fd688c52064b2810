"""Trade history store — durable append-only record of terminal trades.

Loading is forgiving: a missing, unreadable or corrupt history database
yields an empty history (and ``load_error`` is set) instead of blocking
engine startup.  Appends are written through immediately after every
close so a crash loses at most the trade being closed.
"""

from __future__ import annotations

import sqlite3

from pydantic import ValidationError

from sniperbot.config import StorageConfig
from sniperbot.engine.models import Trade
from sniperbot.observability.logger import get_logger
from sniperbot.storage.database import Database
from sniperbot.storage.models import TradeHistoryRecord

log = get_logger(__name__)


class HistoryStore:
    """Persist and reload the closed-trade history."""

    def __init__(self, config: StorageConfig):
        self._config = config
        self._db: Database | None = None
        self.load_error: str = ""

    def _ensure_db(self) -> Database:
        if self._db is None:
            db = Database(self._config)
            db.connect()
            self._db = db
        return self._db

    def load(self) -> list[Trade]:
        """Return the persisted history, or an empty list if unusable."""
        self.load_error = ""
        try:
            records = self._ensure_db().load_history()
            trades = [r.to_trade() for r in records]
        except (sqlite3.Error, ValidationError, ValueError, OSError) as e:
            self.load_error = str(e)
            log.error("history.load_failed", path=self._config.sqlite_path, error=str(e))
            self.close()
            return []
        log.info("history.loaded", trades=len(trades))
        return trades

    def append(self, trade: Trade) -> bool:
        """Write one terminal trade. Returns False if the write failed."""
        try:
            self._ensure_db().append_trade(TradeHistoryRecord.from_trade(trade))
        except (sqlite3.Error, OSError) as e:
            log.error("history.append_failed", trade_id=trade.id, error=str(e))
            return False
        return True

    def set_state(self, key: str, value: str) -> None:
        try:
            self._ensure_db().set_engine_state(key, value)
        except (sqlite3.Error, OSError) as e:
            log.warning("history.state_write_failed", key=key, error=str(e))

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None
