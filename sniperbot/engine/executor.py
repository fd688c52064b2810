"""Trade executor — turn one approved opportunity into an open Trade.

Routing by venue class:
  - chain venues:    execute_buy(token, wallet_fraction) / execute_sell(token)
  - exchange venues: execute_trade(symbol, side, amount)

The chain wallet fraction comes from ``wallet_buy_percentage`` in the
trading config, never from the opportunity, so sizing stays central.
It is frozen into every chain trade, buys and sells alike.
A failed execution is recorded as a ``failed`` history entry and the
opportunity is dropped; it is not retried within the cycle.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import Callable

from sniperbot.config import TradingConfig
from sniperbot.connectors.base import (
    VENUE_CHAIN,
    VENUE_EXCHANGE,
    ConnectorRegistry,
    ExecutionResult,
    call_with_timeout,
)
from sniperbot.engine.models import (
    BUY,
    STATUS_FAILED,
    ExitThresholds,
    Opportunity,
    Trade,
)
from sniperbot.engine.state import EngineState
from sniperbot.observability.events import STATS_UPDATED, TRADE_OPENED, EventBus
from sniperbot.observability.logger import get_logger
from sniperbot.observability.metrics import metrics
from sniperbot.storage.history import HistoryStore

log = get_logger(__name__)


def thresholds_from(trading: TradingConfig) -> ExitThresholds:
    return ExitThresholds(
        take_profit=trading.take_profit,
        stop_loss=trading.stop_loss,
        max_trade_time=trading.max_trade_time,
    )


class TradeExecutor:
    """Execute approved opportunities on their venue."""

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

    async def _dispatch(
        self, opp: Opportunity, trading: TradingConfig,
    ) -> tuple[ExecutionResult, float | None]:
        venue_class = self._registry.venue_class(opp.venue)
        wallet_fraction: float | None = None
        if venue_class == VENUE_CHAIN:
            chain = self._registry.chain(opp.venue)
            # Sells keep the fraction too: it sizes the buy-back on close
            wallet_fraction = trading.wallet_buy_percentage / 100.0
            if opp.side == BUY:
                call = chain.execute_buy(opp.instrument, wallet_fraction)
            else:
                call = chain.execute_sell(opp.instrument)
            return await call_with_timeout(chain, call), wallet_fraction
        exchange = self._registry.exchange(opp.venue)
        result = await call_with_timeout(
            exchange, exchange.execute_trade(opp.symbol or opp.instrument, opp.side, opp.amount),
        )
        return result, wallet_fraction

    async def _fallback_price(self, opp: Opportunity) -> float | None:
        """Entry price when the connector reported success without one."""
        try:
            if self._registry.venue_class(opp.venue) == VENUE_CHAIN:
                chain = self._registry.chain(opp.venue)
                return await call_with_timeout(chain, chain.get_token_price(opp.instrument))
            exchange = self._registry.exchange(opp.venue)
            return await call_with_timeout(
                exchange, exchange.get_current_price(opp.symbol or opp.instrument),
            )
        except Exception as e:
            log.warning("executor.fallback_price_error", venue=opp.venue, error=str(e))
            return None

    async def execute(
        self, opp: Opportunity, state: EngineState, trading: TradingConfig,
    ) -> Trade | None:
        venue_class = self._registry.venue_class(opp.venue)
        if venue_class not in (VENUE_CHAIN, VENUE_EXCHANGE):
            log.warning("executor.unsupported_venue", venue=opp.venue, instrument=opp.label)
            return None

        log.info(
            "executor.executing",
            venue=opp.venue, instrument=opp.label, side=opp.side,
            strategy=opp.strategy, reason=opp.reason,
        )
        thresholds = thresholds_from(trading)
        wallet_fraction: float | None = None
        try:
            result, wallet_fraction = await self._dispatch(opp, trading)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            result = ExecutionResult.failed("Execution timed out")
        except Exception as e:
            result = ExecutionResult.failed(str(e) or type(e).__name__)

        if not state.running:
            log.warning(
                "executor.result_discarded", venue=opp.venue, instrument=opp.label,
                success=result.success, ref=result.ref,
            )
            return None

        entry_price = result.price if result.price and result.price > 0 else None
        if result.success and entry_price is None:
            entry_price = await self._fallback_price(opp)
            if entry_price is None:
                result = ExecutionResult.failed("Executed without a usable entry price")

        now = self._clock()
        trade = Trade(
            venue=opp.venue,
            instrument=opp.instrument,
            symbol=opp.symbol,
            side=opp.side,
            strategy=opp.strategy,
            reason=opp.reason,
            amount=opp.amount,
            thresholds=thresholds,
            entry_price=entry_price,
            current_price=entry_price,
            wallet_fraction=wallet_fraction,
            created_at=now,
            entry_ref=result.ref,
        )

        if not result.success:
            failed = replace(
                trade, status=STATUS_FAILED, entry_price=None, current_price=None,
                closed_at=now, error=result.error,
            )
            state.record_failure(failed)
            if self._history is not None:
                self._history.append(failed)
            metrics.incr("trades.failed")
            log.error(
                "executor.failed",
                venue=opp.venue, instrument=opp.label, side=opp.side, error=result.error,
            )
            self._events.publish(STATS_UPDATED, stats=state.stats.to_dict())
            return None

        state.add_open_trade(trade)
        metrics.incr("trades.opened")
        metrics.gauge("trades.open", state.open_count)
        log.info(
            "executor.trade_opened",
            trade_id=trade.id, venue=trade.venue, instrument=trade.label,
            side=trade.side, entry_price=entry_price, ref=result.ref,
            take_profit=thresholds.take_profit, stop_loss=thresholds.stop_loss,
        )
        self._events.publish(TRADE_OPENED, trade=trade.to_dict())
        self._events.publish(STATS_UPDATED, stats=state.stats.to_dict())
        return trade
