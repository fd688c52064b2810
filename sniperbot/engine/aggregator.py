"""Opportunity aggregation, ranking and trade-rate limiting.

Per discovery cycle:
  1. Poll every strategy concurrently; a failing strategy is dropped for
     this cycle only
  2. Tag each opportunity with its source strategy
  3. Compute capacity = min(concurrency slots, trailing-hour slots)
  4. Rank (score desc, unscored by recency) and truncate to capacity

Token-scanner events bypass strategy polling and enter through
``opportunity_from_token`` as single buy candidates.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Any, Sequence

from sniperbot.config import TradingConfig
from sniperbot.engine.models import BUY, Opportunity
from sniperbot.engine.state import HOUR_SECS, EngineState
from sniperbot.observability.logger import get_logger
from sniperbot.observability.metrics import metrics
from sniperbot.strategies.base import Strategy, validate_strategy

log = get_logger(__name__)

SCANNER_STRATEGY = "token_scanner"


@dataclass
class NewTokenEvent:
    """Inbound event from the token scanner."""
    venue: str
    instrument_id: str
    symbol: str = ""
    name: str = ""
    detected_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return self.__dict__


@dataclass
class Capacity:
    """How many new trades the current cycle may open."""
    concurrent_slots: int
    hourly_slots: int
    open_trades: int
    opened_last_hour: int

    @property
    def available(self) -> int:
        return max(0, min(self.concurrent_slots, self.hourly_slots))

    def to_dict(self) -> dict[str, Any]:
        return {**self.__dict__, "available": self.available}


@dataclass
class CollectResult:
    opportunities: list[Opportunity] = field(default_factory=list)
    failed_strategies: list[str] = field(default_factory=list)


class OpportunityAggregator:
    """Fan out to strategies and merge their opportunities."""

    def __init__(self, strategies: Sequence[Strategy]):
        for s in strategies:
            validate_strategy(s)
        names = [s.name for s in strategies]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate strategy names: {names}")
        self._strategies = list(strategies)

    @property
    def strategy_names(self) -> list[str]:
        return [s.name for s in self._strategies]

    async def collect(self) -> CollectResult:
        results = await asyncio.gather(
            *(s.find_opportunities() for s in self._strategies),
            return_exceptions=True,
        )
        collected = CollectResult()
        # gather keeps strategy order, which is the ranking tie-break order
        for strategy, result in zip(self._strategies, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                metrics.incr("strategy.errors")
                log.error(
                    "aggregator.strategy_failed",
                    strategy=strategy.name,
                    error=str(result) or type(result).__name__,
                )
                collected.failed_strategies.append(strategy.name)
                continue
            if not isinstance(result, list):
                log.error(
                    "aggregator.strategy_bad_result",
                    strategy=strategy.name, result_type=type(result).__name__,
                )
                collected.failed_strategies.append(strategy.name)
                continue
            for opp in result:
                collected.opportunities.append(replace(opp, strategy=strategy.name))
        return collected


def compute_capacity(
    state: EngineState, trading: TradingConfig, now: float | None = None,
) -> Capacity:
    now = time.time() if now is None else now
    state.prune_opened(now)
    opened_last_hour = state.trades_opened_since(now - HOUR_SECS)
    return Capacity(
        concurrent_slots=trading.max_concurrent_trades - state.open_count,
        hourly_slots=trading.max_trades_per_hour - opened_last_hour,
        open_trades=state.open_count,
        opened_last_hour=opened_last_hour,
    )


def _rank_key(opp: Opportunity) -> tuple[int, float]:
    if opp.score is not None:
        return (0, -opp.score)
    return (1, -opp.discovered_at)


def rank_opportunities(opportunities: Sequence[Opportunity]) -> list[Opportunity]:
    """Scored opportunities first (highest score first), then unscored
    ones newest first.  ``sorted`` is stable, so ties keep input order."""
    return sorted(opportunities, key=_rank_key)


def limit_opportunities(opportunities: Sequence[Opportunity], capacity: int) -> list[Opportunity]:
    if capacity <= 0:
        return []
    return rank_opportunities(opportunities)[:capacity]


def opportunity_from_token(
    event: NewTokenEvent, blocked_words: Sequence[str] = (),
) -> Opportunity | None:
    """Bridge a scanner event into a buy candidate, or None if unfit."""
    symbol = (event.symbol or "").upper()
    name = (event.name or "").upper()
    if not event.instrument_id or not symbol or "UNKNOWN" in symbol or "UNKNOWN" in name:
        log.info("scanner.token_rejected", venue=event.venue, token=event.instrument_id,
                 reason="unknown_symbol")
        return None
    for word in blocked_words:
        if word.upper() in symbol or word.upper() in name:
            log.info("scanner.token_rejected", venue=event.venue, token=event.instrument_id,
                     reason=f"blocked_word:{word}")
            return None
    return Opportunity(
        venue=event.venue,
        instrument=event.instrument_id,
        symbol=event.symbol,
        side=BUY,
        strategy=SCANNER_STRATEGY,
        reason=f"New token detected: {event.symbol} ({event.name})",
        discovered_at=event.detected_at,
    )
