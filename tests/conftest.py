"""Shared test fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure sniperbot is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sniperbot.config import (  # noqa: E402
    BotConfig,
    RiskManagementConfig,
    StorageConfig,
    TradingConfig,
)
from sniperbot.connectors.base import (  # noqa: E402
    ChainConnector,
    ConnectorRegistry,
    ExchangeConnector,
    ExecutionResult,
)
from sniperbot.connectors.paper import PaperChainConnector  # noqa: E402
from sniperbot.engine.models import BUY, Opportunity  # noqa: E402
from sniperbot.observability.events import EventBus  # noqa: E402
from sniperbot.observability.metrics import metrics  # noqa: E402
from sniperbot.storage.history import HistoryStore  # noqa: E402
from sniperbot.strategies.base import Strategy  # noqa: E402

T0 = 1_700_000_000.0


class FakeClock:
    """Settable clock passed wherever components take ``clock``."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class FakeExchange(ExchangeConnector):
    """In-memory exchange: fills at ``prices[symbol]``."""

    timeout_secs = 1.0

    def __init__(self, prices: dict[str, float] | None = None):
        self.prices: dict[str, float] = dict(prices or {})
        self.balances: dict[str, float] = {"USDT": 1000.0}
        self.orders: list[tuple[str, str, float | None]] = []
        self.fail_orders = False
        self.price_error: Exception | None = None
        self.balance_error: Exception | None = None

    async def get_balances(self) -> dict[str, float]:
        if self.balance_error is not None:
            raise self.balance_error
        return dict(self.balances)

    async def get_current_price(self, symbol: str) -> float | None:
        if self.price_error is not None:
            raise self.price_error
        return self.prices.get(symbol)

    async def execute_trade(self, symbol: str, side: str, amount: float | None) -> ExecutionResult:
        self.orders.append((symbol, side, amount))
        if self.fail_orders:
            return ExecutionResult.failed("order rejected")
        return ExecutionResult(
            success=True, price=self.prices.get(symbol), quantity=amount,
            ref=f"order-{len(self.orders)}",
        )


class FakeChain(ChainConnector):
    """In-memory chain wallet."""

    timeout_secs = 1.0

    def __init__(self, prices: dict[str, float] | None = None):
        self.prices: dict[str, float] = dict(prices or {})
        self.buys: list[tuple[str, float]] = []
        self.sells: list[str] = []
        self.fail_orders = False

    def get_address(self) -> str:
        return "0xwallet"

    async def get_balances(self) -> dict[str, float]:
        return {"ETH": 1.0}

    async def get_token_price(self, instrument: str) -> float | None:
        return self.prices.get(instrument)

    async def execute_buy(self, instrument: str, wallet_fraction: float) -> ExecutionResult:
        self.buys.append((instrument, wallet_fraction))
        if self.fail_orders:
            return ExecutionResult.failed("swap reverted")
        return ExecutionResult(success=True, price=self.prices.get(instrument), ref="0xbuy")

    async def execute_sell(self, instrument: str) -> ExecutionResult:
        self.sells.append(instrument)
        if self.fail_orders:
            return ExecutionResult.failed("swap reverted")
        return ExecutionResult(success=True, price=self.prices.get(instrument), ref="0xsell")


class FakeStrategy(Strategy):
    """Returns a fixed list of opportunities (or raises ``error``)."""

    def __init__(
        self,
        name: str,
        opportunities: list[Opportunity] | None = None,
        error: Exception | None = None,
    ):
        self.name = name
        self.opportunities = list(opportunities or [])
        self.error = error
        self.calls = 0

    async def find_opportunities(self) -> list[Opportunity]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.opportunities)


def make_paper_chain(prices: dict[str, float], native_balance: float = 1.0) -> PaperChainConnector:
    """Paper wallet on ``ethereum`` priced from a mutable dict."""
    async def source(token: str) -> float | None:
        return prices.get(token)

    return PaperChainConnector(
        venue="ethereum", price_source=source, native_symbol="ETH",
        native_balance=native_balance, timeout_secs=1.0,
    )


def make_opportunity(
    instrument: str = "BTC/USDT",
    venue: str = "binance",
    score: float | None = None,
    amount: float | None = 1.0,
    side: str = BUY,
    discovered_at: float = T0,
    strategy: str = "",
) -> Opportunity:
    return Opportunity(
        venue=venue,
        instrument=instrument,
        symbol=instrument,
        side=side,
        strategy=strategy,
        reason="test",
        score=score,
        amount=amount,
        discovered_at=discovered_at,
    )


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def exchange() -> FakeExchange:
    return FakeExchange({"BTC/USDT": 100.0, "ETH/USDT": 10.0})


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain({"0xtoken": 2.0})


@pytest.fixture
def registry(exchange: FakeExchange, chain: FakeChain) -> ConnectorRegistry:
    reg = ConnectorRegistry()
    reg.register_exchange("binance", exchange)
    reg.register_chain("ethereum", chain)
    return reg


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def storage_config(tmp_path: Path) -> StorageConfig:
    return StorageConfig(sqlite_path=str(tmp_path / "history.db"))


@pytest.fixture
def history_store(storage_config: StorageConfig):
    store = HistoryStore(storage_config)
    yield store
    store.close()


@pytest.fixture
def trading_config() -> TradingConfig:
    return TradingConfig(
        take_profit=5.0, stop_loss=2.0, max_trade_time=3600,
        max_concurrent_trades=5, max_trades_per_hour=10,
    )


@pytest.fixture
def bot_config(trading_config: TradingConfig, storage_config: StorageConfig) -> BotConfig:
    return BotConfig(
        trading=trading_config,
        risk_management=RiskManagementConfig(),
        storage=storage_config,
    )
