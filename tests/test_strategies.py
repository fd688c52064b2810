"""Tests for the momentum strategy and strategy factory."""

from __future__ import annotations

import pytest

from sniperbot.config import BotConfig, StrategyConfig
from sniperbot.strategies.factory import build_strategies
from sniperbot.strategies.momentum import MomentumStrategy


class TestMomentum:
    @pytest.mark.asyncio
    async def test_needs_full_window(self, exchange):
        strat = MomentumStrategy("m", "binance", exchange, ["BTC/USDT"], amount=1.0, window=3)
        assert await strat.find_opportunities() == []
        assert await strat.find_opportunities() == []

    @pytest.mark.asyncio
    async def test_emits_buy_on_rise(self, exchange):
        strat = MomentumStrategy(
            "m", "binance", exchange, ["BTC/USDT"], amount=0.5, window=3, min_change_pct=1.0,
        )
        for price in (100.0, 101.0, 103.0):
            exchange.prices["BTC/USDT"] = price
            found = await strat.find_opportunities()
        assert len(found) == 1
        opp = found[0]
        assert opp.side == "buy"
        assert opp.score == pytest.approx(3.0)
        assert opp.amount == 0.5
        assert opp.strategy == "m"

    @pytest.mark.asyncio
    async def test_flat_market_emits_nothing(self, exchange):
        strat = MomentumStrategy("m", "binance", exchange, ["BTC/USDT"], amount=1.0, window=2)
        await strat.find_opportunities()
        assert await strat.find_opportunities() == []

    @pytest.mark.asyncio
    async def test_price_errors_skip_symbol(self, exchange):
        strat = MomentumStrategy("m", "binance", exchange, ["BTC/USDT"], amount=1.0, window=2)
        exchange.price_error = ConnectionError("down")
        assert await strat.find_opportunities() == []

    def test_window_too_small(self, exchange):
        with pytest.raises(ValueError):
            MomentumStrategy("m", "binance", exchange, ["BTC/USDT"], amount=1.0, window=1)


class TestFactory:
    def test_builds_enabled_momentum_strategies(self, registry):
        cfg = BotConfig(strategies={
            "a": StrategyConfig(venue="binance", symbols=["BTC/USDT"], amount=1.0),
            "off": StrategyConfig(enabled=False, venue="binance"),
            "chain": StrategyConfig(venue="ethereum"),
            "odd": StrategyConfig(kind="arbitrage", venue="binance"),
        })
        assert [s.name for s in build_strategies(cfg, registry)] == ["a"]
