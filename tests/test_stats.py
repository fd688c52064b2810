"""Tests for trade models and stats derivation."""

from __future__ import annotations

from dataclasses import replace

import pytest

from sniperbot.engine.models import (
    BUY,
    SELL,
    STATUS_FAILED,
    TAKE_PROFIT,
    ExitThresholds,
    Opportunity,
    Trade,
    profit_loss_pct,
)
from sniperbot.engine.stats import derive_stats, losses_since

from conftest import T0

LIMITS = ExitThresholds(take_profit=5.0, stop_loss=2.0, max_trade_time=3600)


def _trade(**overrides) -> Trade:
    defaults = dict(
        venue="binance", instrument="BTC/USDT", side=BUY, strategy="s1",
        thresholds=LIMITS, entry_price=100.0, created_at=T0,
    )
    defaults.update(overrides)
    return Trade(**defaults)


def _closed(close_price: float, side: str = BUY, closed_at: float = T0 + 60) -> Trade:
    return _trade(side=side).closed(TAKE_PROFIT, close_price, closed_at)


# ─── models ─────────────────────────────────────────────────────────────

class TestTradeModel:
    def test_closed_sets_price_and_pnl(self):
        t = _closed(110.0)
        assert t.status == "closed"
        assert t.close_price == 110.0
        assert t.profit_loss == pytest.approx(10.0)
        assert t.price_change == pytest.approx(10.0)
        assert t.closed_at == T0 + 60

    def test_sell_pnl_is_inverted(self):
        t = _closed(90.0, side=SELL)
        assert t.price_change == pytest.approx(-10.0)
        assert t.profit_loss == pytest.approx(10.0)

    def test_cannot_close_twice(self):
        t = _closed(110.0)
        with pytest.raises(ValueError):
            t.closed(TAKE_PROFIT, 120.0, T0 + 120)

    def test_with_price_keeps_original_immutable(self):
        t = _trade()
        updated = t.with_price(103.0)
        assert t.current_price is None
        assert updated.current_price == 103.0
        assert updated.price_change == pytest.approx(3.0)
        assert updated.id == t.id

    def test_profit_loss_pct(self):
        assert profit_loss_pct(BUY, 100.0, 95.0) == pytest.approx(-5.0)
        assert profit_loss_pct(SELL, 100.0, 95.0) == pytest.approx(5.0)

    def test_opportunity_rejects_bad_side(self):
        with pytest.raises(ValueError):
            Opportunity(venue="binance", instrument="X", side="hold")


# ─── stats ──────────────────────────────────────────────────────────────

class TestDeriveStats:
    def test_empty_history(self):
        s = derive_stats([])
        assert s.total_trades == 0
        assert s.win_rate == 0.0
        assert s.last_trade_time is None

    def test_counts_and_win_rate(self):
        history = [
            _closed(110.0),
            _closed(95.0),
            replace(_trade(entry_price=None), status=STATUS_FAILED, closed_at=T0 + 5),
        ]
        s = derive_stats(history)
        assert s.total_trades == 3
        assert s.successful_trades == 1
        assert s.losing_trades == 1
        assert s.failed_trades == 1
        assert s.profit_loss == pytest.approx(5.0)
        assert s.win_rate == pytest.approx(1 / 3)

    def test_open_trades_count_towards_total(self):
        s = derive_stats([_closed(110.0)], open_trades=[_trade()])
        assert s.total_trades == 2
        assert s.successful_trades == 1
        assert s.win_rate == pytest.approx(0.5)

    def test_replay_is_idempotent(self):
        history = [_closed(110.0), _closed(97.0), _closed(104.0)]
        first = derive_stats(history, start_time=T0)
        second = derive_stats(list(history), start_time=T0)
        assert first == second

    def test_last_trade_time_uses_latest_stamp(self):
        history = [_closed(110.0, closed_at=T0 + 500), _closed(90.0, closed_at=T0 + 100)]
        assert derive_stats(history).last_trade_time == T0 + 500


class TestLossesSince:
    def test_sums_only_losses_after_cutoff(self):
        history = [
            _closed(96.0, closed_at=T0 + 10),   # -4
            _closed(99.0, closed_at=T0 + 20),   # -1
            _closed(90.0, closed_at=T0 - 10),   # before cutoff
            _closed(120.0, closed_at=T0 + 30),  # a win
        ]
        assert losses_since(history, T0) == pytest.approx(5.0)
