"""Stats derivation — a pure function of the trade history.

Stats never hold an independent source of truth: they are recomputed from
the history list (plus the currently open trades, which count towards the
total) on every close and at startup.
"""

from __future__ import annotations

from typing import Iterable

from sniperbot.engine.models import STATUS_CLOSED, STATUS_FAILED, Stats, Trade


def derive_stats(
    history: Iterable[Trade],
    open_trades: Iterable[Trade] = (),
    start_time: float | None = None,
) -> Stats:
    """Replay ``history`` into a Stats snapshot.

    successful = closed with positive P&L
    losing     = closed with zero or negative P&L
    failed     = execution failures recorded as ``failed``
    total      = every trade ever opened or attempted, including open ones
    """
    history = list(history)
    open_trades = list(open_trades)

    closed = [t for t in history if t.status == STATUS_CLOSED]
    successful = sum(1 for t in closed if (t.profit_loss or 0.0) > 0)
    failed = sum(1 for t in history if t.status == STATUS_FAILED)
    total = len(history) + len(open_trades)
    profit_loss = sum(t.profit_loss or 0.0 for t in closed)

    stamps: list[float] = []
    for t in history + open_trades:
        stamps.append(t.created_at)
        if t.closed_at is not None:
            stamps.append(t.closed_at)

    return Stats(
        total_trades=total,
        successful_trades=successful,
        failed_trades=failed,
        losing_trades=len(closed) - successful,
        profit_loss=round(profit_loss, 8),
        win_rate=successful / total if total else 0.0,
        start_time=start_time,
        last_trade_time=max(stamps) if stamps else None,
    )


def losses_since(history: Iterable[Trade], since: float) -> float:
    """Sum of absolute negative P&L for trades closed at or after ``since``."""
    return sum(
        abs(t.profit_loss)
        for t in history
        if t.status == STATUS_CLOSED
        and t.closed_at is not None
        and t.closed_at >= since
        and t.profit_loss is not None
        and t.profit_loss < 0
    )
