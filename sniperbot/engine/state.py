"""Engine state — the single owner of open trades, history, stats and balances.

Both engine cycles (discovery and monitoring) may be suspended on network
I/O at the same time, so every mutation here swaps a whole structure
(replace-or-merge) instead of editing it in place.  Readers always see
either the old or the new version, never a half-applied change.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Iterable

from sniperbot.engine.models import STATUS_ACTIVE, Stats, Trade
from sniperbot.engine.stats import derive_stats

HOUR_SECS = 60 * 60


@dataclass(frozen=True)
class BalanceSnapshot:
    """Balances for one venue at ``refreshed_at``."""
    venue: str
    balances: dict[str, float]
    address: str = ""
    refreshed_at: float = 0.0
    error: str = ""

    def is_stale(self, max_age_secs: float, now: float | None = None) -> bool:
        if self.error or self.refreshed_at <= 0:
            return True
        now = time.time() if now is None else now
        return now - self.refreshed_at > max_age_secs

    def to_dict(self, max_age_secs: float, now: float | None = None) -> dict[str, Any]:
        return {
            "venue": self.venue,
            "balances": dict(self.balances),
            "address": self.address,
            "refreshed_at": self.refreshed_at,
            "stale": self.is_stale(max_age_secs, now),
            "error": self.error,
        }


@dataclass
class EngineState:
    """Mutable engine state, passed by reference to every component."""
    running: bool = False
    start_time: float | None = None
    open_trades: dict[str, Trade] = field(default_factory=dict)
    history: tuple[Trade, ...] = ()
    stats: Stats = field(default_factory=Stats)
    balances: dict[str, BalanceSnapshot] = field(default_factory=dict)
    # Entry timestamps of every trade opened, for the trailing-hour cap
    opened_at: tuple[float, ...] = ()
    # Trade ids with a close in flight
    closing: frozenset[str] = frozenset()

    # ── Seeding ──────────────────────────────────────────────────────

    def seed_history(self, history: Iterable[Trade]) -> None:
        self.history = tuple(history)
        self.opened_at = tuple(
            t.created_at for t in self.history if t.entry_price is not None
        )
        self.recompute_stats()

    # ── Open set ─────────────────────────────────────────────────────

    @property
    def open_count(self) -> int:
        return len(self.open_trades)

    def active_trades(self) -> list[Trade]:
        return [t for t in self.open_trades.values() if t.status == STATUS_ACTIVE]

    def add_open_trade(self, trade: Trade) -> None:
        self.open_trades = {**self.open_trades, trade.id: trade}
        self.opened_at = self.opened_at + (trade.created_at,)
        self.recompute_stats()

    def update_open_trade(self, trade: Trade) -> bool:
        """Replace an open trade; no-op (False) if it already left the set."""
        if trade.id not in self.open_trades:
            return False
        self.open_trades = {**self.open_trades, trade.id: trade}
        return True

    def trades_opened_since(self, since: float) -> int:
        return sum(1 for ts in self.opened_at if ts >= since)

    def prune_opened(self, now: float) -> None:
        cutoff = now - HOUR_SECS
        self.opened_at = tuple(ts for ts in self.opened_at if ts >= cutoff)

    # ── Closing ──────────────────────────────────────────────────────

    def begin_close(self, trade_id: str) -> bool:
        """Claim ``trade_id`` for closing. False if already being closed."""
        if trade_id in self.closing or trade_id not in self.open_trades:
            return False
        self.closing = self.closing | {trade_id}
        return True

    def end_close(self, trade_id: str) -> None:
        self.closing = self.closing - {trade_id}

    def record_close(self, trade: Trade) -> None:
        """Move a terminal trade from the open set to history."""
        self.open_trades = {k: v for k, v in self.open_trades.items() if k != trade.id}
        self.history = self.history + (trade,)
        self.recompute_stats()

    def record_failure(self, trade: Trade) -> None:
        """Append a failed execution attempt straight to history."""
        self.history = self.history + (trade,)
        self.recompute_stats()

    # ── Derived ──────────────────────────────────────────────────────

    def recompute_stats(self) -> Stats:
        self.stats = derive_stats(
            self.history, self.open_trades.values(), start_time=self.start_time,
        )
        return self.stats

    def set_balances(self, snapshot: BalanceSnapshot) -> None:
        self.balances = {**self.balances, snapshot.venue: snapshot}

    def snapshot(self) -> dict[str, Any]:
        """Read-only view for telemetry / UI collaborators."""
        return {
            "running": self.running,
            "start_time": self.start_time,
            "open_trades": [t.to_dict() for t in self.open_trades.values()],
            "stats": self.stats.to_dict(),
        }
