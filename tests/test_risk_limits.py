"""Tests for risk limits: trade size and daily loss gates."""

from __future__ import annotations

import datetime as dt

import pytest

from sniperbot.config import RiskManagementConfig
from sniperbot.engine.models import BUY, TAKE_PROFIT, STOP_LOSS, ExitThresholds, Trade
from sniperbot.observability.metrics import metrics
from sniperbot.policy.risk_limits import (
    GATE_DAILY_LOSS,
    GATE_MAX_TRADE_SIZE,
    check_risk_limits,
    local_midnight,
)

from conftest import make_opportunity

MIDNIGHT = dt.datetime(2024, 5, 1).timestamp()
NOON = dt.datetime(2024, 5, 1, 12, 0).timestamp()
LIMITS = ExitThresholds(take_profit=5.0, stop_loss=2.0, max_trade_time=3600)


def _closed_trade(close_price: float, closed_at: float, reason: str = STOP_LOSS) -> Trade:
    trade = Trade(
        venue="binance", instrument="BTC/USDT", side=BUY, strategy="s1",
        thresholds=LIMITS, entry_price=100.0, created_at=closed_at - 60,
    )
    return trade.closed(reason, close_price, closed_at)


class TestLocalMidnight:
    def test_noon_maps_to_same_day_midnight(self):
        assert local_midnight(NOON) == MIDNIGHT

    def test_midnight_is_its_own_midnight(self):
        assert local_midnight(MIDNIGHT) == MIDNIGHT


class TestMaxTradeSize:
    def test_within_limit_passes(self):
        result = check_risk_limits(
            make_opportunity(amount=50.0), RiskManagementConfig(max_trade_size=100.0), [], NOON,
        )
        assert result.allowed
        assert result.decision == "TRADE"

    def test_over_limit_rejected(self):
        result = check_risk_limits(
            make_opportunity(amount=150.0), RiskManagementConfig(max_trade_size=100.0), [], NOON,
        )
        assert not result.allowed
        assert result.decision == "NO TRADE"
        assert result.gate == GATE_MAX_TRADE_SIZE
        assert metrics.counter(f"risk.rejected.{GATE_MAX_TRADE_SIZE}") == 1

    def test_unsized_opportunity_passes(self):
        result = check_risk_limits(
            make_opportunity(amount=None), RiskManagementConfig(max_trade_size=100.0), [], NOON,
        )
        assert result.allowed

    def test_no_limits_configured(self):
        result = check_risk_limits(make_opportunity(amount=1e9), RiskManagementConfig(), [], NOON)
        assert result.allowed
        assert result.violations == []


class TestDailyLoss:
    def test_losses_reaching_limit_reject_next_opportunity(self):
        """Three losses (20, 20, 15) today reach 55 >= 50."""
        cfg = RiskManagementConfig(daily_loss_limit=50.0)
        history = [
            _closed_trade(80.0, MIDNIGHT + 3600),
            _closed_trade(80.0, MIDNIGHT + 7200),
        ]
        assert check_risk_limits(make_opportunity(), cfg, history, NOON).allowed

        history.append(_closed_trade(85.0, MIDNIGHT + 10800))
        result = check_risk_limits(make_opportunity(), cfg, history, NOON)
        assert not result.allowed
        assert result.gate == GATE_DAILY_LOSS
        assert result.daily_loss == pytest.approx(55.0)

    def test_yesterdays_losses_do_not_count(self):
        cfg = RiskManagementConfig(daily_loss_limit=50.0)
        history = [_closed_trade(10.0, MIDNIGHT - 60)]
        assert check_risk_limits(make_opportunity(), cfg, history, NOON).allowed

    def test_wins_do_not_offset_losses(self):
        cfg = RiskManagementConfig(daily_loss_limit=50.0)
        history = [
            _closed_trade(40.0, MIDNIGHT + 60),
            _closed_trade(200.0, MIDNIGHT + 120, reason=TAKE_PROFIT),
        ]
        result = check_risk_limits(make_opportunity(), cfg, history, NOON)
        assert not result.allowed
        assert result.daily_loss == pytest.approx(60.0)

    def test_both_gates_report_violations(self):
        cfg = RiskManagementConfig(max_trade_size=10.0, daily_loss_limit=5.0)
        history = [_closed_trade(90.0, MIDNIGHT + 60)]
        result = check_risk_limits(make_opportunity(amount=20.0), cfg, history, NOON)
        assert not result.allowed
        assert len(result.violations) == 2
        assert result.gate == GATE_MAX_TRADE_SIZE
