"""Momentum strategy — buy exchange symbols whose price is rising.

Keeps a short rolling window of ticker prices per symbol and emits a buy
opportunity when the move from the oldest to the newest sample exceeds
``min_change_pct``.  The score is the move itself, so stronger momentum
ranks first.
"""

from __future__ import annotations

import asyncio
from collections import deque

from sniperbot.connectors.base import ExchangeConnector, call_with_timeout
from sniperbot.engine.models import BUY, Opportunity, price_change_pct
from sniperbot.observability.logger import get_logger
from sniperbot.strategies.base import Strategy

log = get_logger(__name__)


class MomentumStrategy(Strategy):

    def __init__(
        self,
        name: str,
        venue: str,
        exchange: ExchangeConnector,
        symbols: list[str],
        amount: float,
        window: int = 5,
        min_change_pct: float = 1.0,
    ):
        if window < 2:
            raise ValueError("window must hold at least two samples")
        self.name = name
        self._venue = venue
        self._exchange = exchange
        self._symbols = list(symbols)
        self._amount = amount
        self._min_change_pct = min_change_pct
        self._prices: dict[str, deque[float]] = {
            s: deque(maxlen=window) for s in self._symbols
        }

    async def _sample(self, symbol: str) -> float | None:
        try:
            return await call_with_timeout(
                self._exchange, self._exchange.get_current_price(symbol),
            )
        except Exception as e:
            log.debug("momentum.price_error", strategy=self.name, symbol=symbol, error=str(e))
            return None

    async def find_opportunities(self) -> list[Opportunity]:
        prices = await asyncio.gather(*(self._sample(s) for s in self._symbols))
        found: list[Opportunity] = []
        for symbol, price in zip(self._symbols, prices):
            if price is None:
                continue
            window = self._prices[symbol]
            window.append(price)
            if len(window) < window.maxlen:
                continue
            change = price_change_pct(window[0], window[-1])
            if change >= self._min_change_pct:
                found.append(Opportunity(
                    venue=self._venue,
                    instrument=symbol,
                    symbol=symbol,
                    side=BUY,
                    strategy=self.name,
                    reason=f"{change:.2f}% rise over {len(window)} samples",
                    score=round(change, 4),
                    amount=self._amount,
                ))
        return found
