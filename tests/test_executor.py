"""Tests for the trade executor."""

from __future__ import annotations

import asyncio

import pytest

from sniperbot.engine.executor import TradeExecutor
from sniperbot.engine.models import SELL, STATUS_ACTIVE, STATUS_FAILED
from sniperbot.engine.state import EngineState
from sniperbot.observability.events import STATS_UPDATED, TRADE_OPENED
from sniperbot.observability.metrics import metrics

from conftest import T0, make_opportunity


@pytest.fixture
def state() -> EngineState:
    return EngineState(running=True, start_time=T0)


@pytest.fixture
def executor(registry, events, history_store, clock) -> TradeExecutor:
    return TradeExecutor(registry, events, history_store, clock)


class TestExchangeExecution:
    @pytest.mark.asyncio
    async def test_success_opens_trade(self, executor, state, exchange, events, trading_config):
        trade = await executor.execute(
            make_opportunity("BTC/USDT", amount=0.5), state, trading_config,
        )
        assert trade is not None
        assert trade.status == STATUS_ACTIVE
        assert trade.entry_price == 100.0
        assert trade.created_at == T0
        assert trade.entry_ref == "order-1"
        assert exchange.orders == [("BTC/USDT", "buy", 0.5)]
        assert state.open_trades == {trade.id: trade}
        assert state.stats.total_trades == 1
        assert metrics.counter("trades.opened") == 1
        assert [e.type for e in events.history] == [TRADE_OPENED, STATS_UPDATED]

    @pytest.mark.asyncio
    async def test_thresholds_frozen_from_config(self, executor, state, trading_config):
        trade = await executor.execute(make_opportunity(), state, trading_config)
        trading_config.take_profit = 50.0
        assert trade.thresholds.take_profit == 5.0
        assert trade.thresholds.stop_loss == 2.0
        assert trade.thresholds.max_trade_time == 3600

    @pytest.mark.asyncio
    async def test_failure_recorded_as_failed(
        self, executor, state, exchange, history_store, trading_config,
    ):
        exchange.fail_orders = True
        trade = await executor.execute(make_opportunity(), state, trading_config)
        assert trade is None
        assert state.open_trades == {}
        assert len(state.history) == 1
        assert state.history[0].status == STATUS_FAILED
        assert state.history[0].error == "order rejected"
        assert state.stats.failed_trades == 1
        assert metrics.counter("trades.failed") == 1
        assert [t.status for t in history_store.load()] == [STATUS_FAILED]

    @pytest.mark.asyncio
    async def test_connector_exception_is_a_failure(self, executor, state, exchange, trading_config):
        async def boom(symbol, side, amount):
            raise ConnectionError("socket closed")

        exchange.execute_trade = boom
        assert await executor.execute(make_opportunity(), state, trading_config) is None
        assert state.stats.failed_trades == 1

    @pytest.mark.asyncio
    async def test_timeout_is_a_failure(self, executor, state, exchange, trading_config):
        exchange.timeout_secs = 0.01

        async def slow(symbol, side, amount):
            await asyncio.sleep(1)

        exchange.execute_trade = slow
        assert await executor.execute(make_opportunity(), state, trading_config) is None
        assert state.history[0].error == "Execution timed out"

    @pytest.mark.asyncio
    async def test_missing_fill_price_falls_back_to_ticker(
        self, executor, state, exchange, trading_config,
    ):
        from sniperbot.connectors.base import ExecutionResult

        async def no_price(symbol, side, amount):
            return ExecutionResult(success=True, ref="o-1")

        exchange.execute_trade = no_price
        trade = await executor.execute(make_opportunity(), state, trading_config)
        assert trade is not None
        assert trade.entry_price == 100.0

    @pytest.mark.asyncio
    async def test_result_discarded_after_stop(self, executor, state, exchange, trading_config):
        from sniperbot.connectors.base import ExecutionResult

        async def stop_midway(symbol, side, amount):
            state.running = False
            return ExecutionResult(success=True, price=100.0)

        exchange.execute_trade = stop_midway
        assert await executor.execute(make_opportunity(), state, trading_config) is None
        assert state.open_trades == {}
        assert state.history == ()

    @pytest.mark.asyncio
    async def test_unknown_venue_ignored(self, executor, state, trading_config):
        assert await executor.execute(
            make_opportunity(venue="kraken"), state, trading_config,
        ) is None
        assert state.stats.total_trades == 0


class TestChainExecution:
    @pytest.mark.asyncio
    async def test_buy_spends_wallet_fraction(self, executor, state, chain, trading_config):
        trading_config.wallet_buy_percentage = 25
        trade = await executor.execute(
            make_opportunity("0xtoken", venue="ethereum"), state, trading_config,
        )
        assert chain.buys == [("0xtoken", 0.25)]
        assert trade.entry_price == 2.0
        assert trade.wallet_fraction == 0.25

    @pytest.mark.asyncio
    async def test_sell_routes_to_execute_sell(self, executor, state, chain, trading_config):
        trade = await executor.execute(
            make_opportunity("0xtoken", venue="ethereum", side=SELL), state, trading_config,
        )
        assert chain.sells == ["0xtoken"]
        assert trade.side == SELL

    @pytest.mark.asyncio
    async def test_sell_records_buy_back_fraction(self, executor, state, chain, trading_config):
        trading_config.wallet_buy_percentage = 20
        trade = await executor.execute(
            make_opportunity("0xtoken", venue="ethereum", side=SELL), state, trading_config,
        )
        assert chain.buys == []
        assert trade.wallet_fraction == 0.2
