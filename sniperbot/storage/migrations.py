"""Database migrations — create and upgrade schema."""

from __future__ import annotations

import sqlite3

from sniperbot.observability.logger import get_logger

log = get_logger(__name__)

SCHEMA_VERSION = 2

_MIGRATIONS: dict[int, list[str]] = {
    1: [
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS trade_history (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT UNIQUE NOT NULL,
            venue TEXT NOT NULL,
            instrument TEXT NOT NULL,
            symbol TEXT DEFAULT '',
            side TEXT NOT NULL,
            strategy TEXT DEFAULT '',
            amount REAL,
            status TEXT NOT NULL,
            entry_price REAL,
            entry_time REAL NOT NULL,
            close_price REAL,
            close_time REAL,
            close_reason TEXT,
            profit_loss REAL,
            take_profit REAL,
            stop_loss REAL,
            max_trade_time REAL
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_history_close_time ON trade_history(close_time);
        """,
    ],
    2: [
        """
        CREATE TABLE IF NOT EXISTS engine_state (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at REAL
        );
        """,
        """
        ALTER TABLE trade_history ADD COLUMN entry_ref TEXT DEFAULT '';
        """,
        """
        ALTER TABLE trade_history ADD COLUMN close_ref TEXT DEFAULT '';
        """,
        """
        ALTER TABLE trade_history ADD COLUMN error TEXT DEFAULT '';
        """,
    ],
}


def _current_version(conn: sqlite3.Connection) -> int:
    try:
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    except sqlite3.OperationalError:
        return 0
    return int(row[0]) if row and row[0] is not None else 0


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply every migration newer than the stored schema version."""
    current = _current_version(conn)
    for version in sorted(_MIGRATIONS):
        if version <= current:
            continue
        for stmt in _MIGRATIONS[version]:
            conn.execute(stmt)
        conn.execute("INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (version,))
        conn.commit()
        log.info("migrations.applied", version=version)
