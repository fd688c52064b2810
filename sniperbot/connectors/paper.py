"""Paper-trading chain connector.

Simulates DEX buys and sells against a wallet held in memory, filling at
the price returned by a pluggable async price source (DexScreener in
production, a dict-backed stub in tests).  Used whenever the engine runs
in paper mode or live trading is not explicitly enabled.
"""

from __future__ import annotations

import uuid
from typing import Awaitable, Callable

from sniperbot.connectors.base import ChainConnector, ExecutionResult
from sniperbot.observability.logger import get_logger

log = get_logger(__name__)

PriceSource = Callable[[str], Awaitable["float | None"]]


class PaperChainConnector(ChainConnector):
    """Dry-run wallet on one chain."""

    def __init__(
        self,
        venue: str,
        price_source: PriceSource,
        address: str = "",
        native_symbol: str = "ETH",
        native_balance: float = 1.0,
        native_price_usd: float | None = None,
        timeout_secs: float = 15.0,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ):
        self.venue = venue
        self.timeout_secs = timeout_secs
        self._price_source = price_source
        self._address = address or f"paper-{venue}"
        self._native_symbol = native_symbol
        # Value of the native coin; paper positions are denominated in USD
        self._native_price_usd = native_price_usd
        self._balances: dict[str, float] = {native_symbol: native_balance}
        self._on_close = on_close

    def get_address(self) -> str:
        return self._address

    async def close(self) -> None:
        if self._on_close is not None:
            await self._on_close()

    async def get_balances(self) -> dict[str, float]:
        return dict(self._balances)

    async def get_token_price(self, instrument: str) -> float | None:
        return await self._price_source(instrument)

    def _native_value_usd(self, quantity: float) -> float:
        return quantity * (self._native_price_usd or 1.0)

    async def execute_buy(self, instrument: str, wallet_fraction: float) -> ExecutionResult:
        if not 0 < wallet_fraction <= 1:
            return ExecutionResult.failed(f"Invalid wallet fraction: {wallet_fraction}")
        native = self._balances.get(self._native_symbol, 0.0)
        spend = native * wallet_fraction
        if spend <= 0:
            return ExecutionResult.failed("Insufficient native balance")

        price = await self._price_source(instrument)
        if price is None or price <= 0:
            return ExecutionResult.failed("Token price unavailable")

        quantity = self._native_value_usd(spend) / price
        self._balances = {
            **self._balances,
            self._native_symbol: native - spend,
            instrument: self._balances.get(instrument, 0.0) + quantity,
        }
        ref = f"0xpaper{uuid.uuid4().hex[:24]}"
        log.info(
            "paper_chain.buy",
            venue=self.venue, token=instrument, spend=spend, price=price, quantity=quantity,
        )
        return ExecutionResult(success=True, price=price, quantity=quantity, ref=ref)

    async def execute_sell(self, instrument: str) -> ExecutionResult:
        quantity = self._balances.get(instrument, 0.0)
        if quantity <= 0:
            return ExecutionResult.failed(f"No {instrument} balance to sell")

        price = await self._price_source(instrument)
        if price is None or price <= 0:
            return ExecutionResult.failed("Token price unavailable")

        proceeds_usd = quantity * price
        native_received = proceeds_usd / (self._native_price_usd or 1.0)
        balances = dict(self._balances)
        balances.pop(instrument, None)
        balances[self._native_symbol] = balances.get(self._native_symbol, 0.0) + native_received
        self._balances = balances
        ref = f"0xpaper{uuid.uuid4().hex[:24]}"
        log.info(
            "paper_chain.sell",
            venue=self.venue, token=instrument, price=price, quantity=quantity,
        )
        return ExecutionResult(success=True, price=price, quantity=quantity, ref=ref)
