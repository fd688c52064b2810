"""Position manager — monitor open trades, trigger exits.

Exit rules, evaluated in this order on every price refresh:
  1. Take-profit: P&L % reached the trade's take-profit threshold
  2. Stop-loss:   P&L % fell to minus the trade's stop-loss threshold
  3. Timeout:     the trade has been open for max_trade_time seconds

Thresholds are the ones frozen into the trade when it was opened, so a
config reload never changes the exit policy of an existing position.

A trade whose price cannot be fetched is skipped until the next cycle.
A trade whose close fails stays active and is retried next cycle.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from sniperbot.connectors.base import (
    VENUE_CHAIN,
    ConnectorRegistry,
    ExecutionResult,
    call_with_timeout,
)
from sniperbot.engine.models import (
    BUY,
    STOP_LOSS,
    TAKE_PROFIT,
    TIMEOUT,
    Trade,
    inverse_side,
)
from sniperbot.engine.state import EngineState
from sniperbot.observability.events import (
    STATS_UPDATED,
    TRADE_CLOSED,
    TRADE_UPDATED,
    EventBus,
)
from sniperbot.observability.logger import get_logger
from sniperbot.observability.metrics import metrics
from sniperbot.storage.history import HistoryStore

log = get_logger(__name__)


@dataclass
class ExitSignal:
    """Signal to exit a position."""
    trade_id: str
    reason: str  # "take_profit" | "stop_loss" | "timeout"
    current_pnl_pct: float
    details: str

    def to_dict(self) -> dict[str, Any]:
        return self.__dict__


@dataclass
class MonitorResult:
    """Summary of one monitoring pass."""
    checked: int = 0
    price_failures: int = 0
    exits: list[ExitSignal] = field(default_factory=list)
    closed: list[Trade] = field(default_factory=list)
    close_failures: int = 0


def evaluate_exit(trade: Trade, now: float | None = None) -> ExitSignal | None:
    """Decide whether ``trade`` should close at its ``current_price``."""
    if trade.entry_price is None or trade.current_price is None:
        return None
    now = time.time() if now is None else now
    pnl = trade.price_change if trade.side == BUY else -trade.price_change
    limits = trade.thresholds

    if pnl >= limits.take_profit:
        return ExitSignal(
            trade_id=trade.id, reason=TAKE_PROFIT, current_pnl_pct=pnl,
            details=f"P&L {pnl:.2f}% >= take-profit {limits.take_profit:.2f}%",
        )
    if pnl <= -limits.stop_loss:
        return ExitSignal(
            trade_id=trade.id, reason=STOP_LOSS, current_pnl_pct=pnl,
            details=f"P&L {pnl:.2f}% <= stop-loss -{limits.stop_loss:.2f}%",
        )
    held = now - trade.created_at
    if held >= limits.max_trade_time:
        return ExitSignal(
            trade_id=trade.id, reason=TIMEOUT, current_pnl_pct=pnl,
            details=f"held {held:.0f}s >= max {limits.max_trade_time:.0f}s",
        )
    return None


class TradeMonitor:
    """Refresh prices of open trades and close those that hit an exit."""

    def __init__(
        self,
        registry: ConnectorRegistry,
        events: EventBus,
        history: HistoryStore | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._registry = registry
        self._events = events
        self._history = history
        self._clock = clock

    # ── Venue dispatch ───────────────────────────────────────────────

    async def fetch_price(self, trade: Trade) -> float | None:
        """Current price of the trade's instrument, or None on any failure."""
        try:
            if self._registry.venue_class(trade.venue) == VENUE_CHAIN:
                chain = self._registry.chain(trade.venue)
                price = await call_with_timeout(chain, chain.get_token_price(trade.instrument))
            else:
                exchange = self._registry.exchange(trade.venue)
                price = await call_with_timeout(
                    exchange, exchange.get_current_price(trade.symbol or trade.instrument),
                )
        except asyncio.CancelledError:
            raise
        except KeyError:
            log.warning("monitor.venue_unavailable", trade_id=trade.id, venue=trade.venue)
            return None
        except Exception as e:
            log.warning(
                "monitor.price_error", trade_id=trade.id, venue=trade.venue,
                instrument=trade.label, error=str(e) or type(e).__name__,
            )
            return None
        if price is None or price <= 0:
            return None
        return float(price)

    async def _execute_close(self, trade: Trade) -> ExecutionResult:
        side = inverse_side(trade.side)
        if self._registry.venue_class(trade.venue) == VENUE_CHAIN:
            chain = self._registry.chain(trade.venue)
            if side == BUY:
                if not trade.wallet_fraction:
                    return ExecutionResult.failed("No buy-back size recorded on trade")
                call = chain.execute_buy(trade.instrument, trade.wallet_fraction)
            else:
                call = chain.execute_sell(trade.instrument)
            return await call_with_timeout(chain, call)
        exchange = self._registry.exchange(trade.venue)
        return await call_with_timeout(
            exchange, exchange.execute_trade(trade.symbol or trade.instrument, side, trade.amount),
        )

    # ── Monitoring ───────────────────────────────────────────────────

    async def _check_one(self, state: EngineState, trade: Trade, result: MonitorResult) -> None:
        if trade.id in state.closing:
            return
        price = await self.fetch_price(trade)
        if price is None:
            result.price_failures += 1
            log.info("monitor.price_unavailable", trade_id=trade.id, instrument=trade.label)
            return
        if not state.running:
            return
        current = state.open_trades.get(trade.id)
        if current is None or not current.is_active:
            return
        updated = current.with_price(price)
        if not state.update_open_trade(updated):
            return
        result.checked += 1
        self._events.publish(
            TRADE_UPDATED,
            trade_id=updated.id,
            current_price=price,
            price_change=round(updated.price_change, 4),
        )

        signal = evaluate_exit(updated, self._clock())
        if signal is None:
            return
        result.exits.append(signal)
        log.info(
            "monitor.exit_triggered",
            trade_id=updated.id, instrument=updated.label,
            reason=signal.reason, details=signal.details,
        )
        closed = await self.close_trade(state, updated, signal.reason, price)
        if closed is None:
            result.close_failures += 1
        else:
            result.closed.append(closed)

    async def check_trades(self, state: EngineState) -> MonitorResult:
        """One monitoring pass over every active trade."""
        result = MonitorResult()
        trades = state.active_trades()
        if not trades:
            return result
        await asyncio.gather(*(self._check_one(state, t, result) for t in trades))
        metrics.gauge("trades.open", state.open_count)
        log.debug(
            "monitor.pass_complete",
            open=len(trades), checked=result.checked,
            price_failures=result.price_failures, closed=len(result.closed),
        )
        return result

    # ── Closing ──────────────────────────────────────────────────────

    async def close_trade(
        self,
        state: EngineState,
        trade: Trade,
        reason: str,
        price_hint: float | None = None,
        require_running: bool = True,
    ) -> Trade | None:
        """Execute the inverse side and move the trade to history.

        Returns the closed trade, or None if the close did not happen (in
        which case the trade is left active for a later retry).
        """
        if not state.begin_close(trade.id):
            log.debug("monitor.close_in_progress", trade_id=trade.id)
            return None
        try:
            try:
                result = await self._execute_close(trade)
            except asyncio.CancelledError:
                raise
            except asyncio.TimeoutError:
                result = ExecutionResult.failed("Close timed out")
            except Exception as e:
                result = ExecutionResult.failed(str(e) or type(e).__name__)

            if require_running and not state.running:
                log.warning(
                    "monitor.close_result_discarded", trade_id=trade.id,
                    success=result.success, ref=result.ref,
                )
                return None

            if not result.success:
                metrics.incr("trades.close_failed")
                log.error(
                    "monitor.close_failed",
                    trade_id=trade.id, instrument=trade.label, reason=reason, error=result.error,
                )
                return None

            close_price = next(
                (p for p in (result.price, price_hint, trade.current_price) if p and p > 0),
                None,
            )
            if close_price is None:
                close_price = await self.fetch_price(trade)
            if close_price is None:
                log.warning("monitor.close_price_unknown", trade_id=trade.id)
                close_price = trade.entry_price

            current = state.open_trades.get(trade.id, trade)
            closed = current.closed(reason, close_price, self._clock(), close_ref=result.ref)
            state.record_close(closed)
        finally:
            state.end_close(trade.id)

        if self._history is not None:
            self._history.append(closed)
        metrics.incr(f"trades.closed.{reason}")
        metrics.gauge("trades.open", state.open_count)
        log.info(
            "monitor.trade_closed",
            trade_id=closed.id, instrument=closed.label, reason=reason,
            entry_price=closed.entry_price, close_price=closed.close_price,
            profit_loss=round(closed.profit_loss or 0.0, 4),
        )
        self._events.publish(TRADE_CLOSED, trade=closed.to_dict())
        self._events.publish(STATS_UPDATED, stats=state.stats.to_dict())
        return closed
