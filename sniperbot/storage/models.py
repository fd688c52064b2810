"""Database models — Pydantic models for storage records."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from sniperbot.engine.models import ExitThresholds, Trade


class TradeHistoryRecord(BaseModel):
    """One terminal (closed or failed) trade — the sole durable record."""
    id: str
    venue: str
    instrument: str
    symbol: str = ""
    side: str
    strategy: str = ""
    amount: Optional[float] = None
    status: str
    entry_price: Optional[float] = None
    entry_time: float
    close_price: Optional[float] = None
    close_time: Optional[float] = None
    close_reason: Optional[str] = None
    profit_loss: Optional[float] = None
    take_profit: float = 0.0
    stop_loss: float = 0.0
    max_trade_time: float = 0.0
    entry_ref: str = ""
    close_ref: str = ""
    error: str = ""

    @classmethod
    def from_trade(cls, trade: Trade) -> "TradeHistoryRecord":
        return cls(
            id=trade.id,
            venue=trade.venue,
            instrument=trade.instrument,
            symbol=trade.symbol,
            side=trade.side,
            strategy=trade.strategy,
            amount=trade.amount,
            status=trade.status,
            entry_price=trade.entry_price,
            entry_time=trade.created_at,
            close_price=trade.close_price,
            close_time=trade.closed_at,
            close_reason=trade.close_reason,
            profit_loss=trade.profit_loss,
            take_profit=trade.thresholds.take_profit,
            stop_loss=trade.thresholds.stop_loss,
            max_trade_time=trade.thresholds.max_trade_time,
            entry_ref=trade.entry_ref,
            close_ref=trade.close_ref,
            error=trade.error,
        )

    def to_trade(self) -> Trade:
        return Trade(
            id=self.id,
            venue=self.venue,
            instrument=self.instrument,
            symbol=self.symbol,
            side=self.side,
            strategy=self.strategy,
            amount=self.amount,
            status=self.status,
            entry_price=self.entry_price,
            current_price=self.close_price,
            created_at=self.entry_time,
            close_price=self.close_price,
            closed_at=self.close_time,
            close_reason=self.close_reason,
            profit_loss=self.profit_loss,
            thresholds=ExitThresholds(
                take_profit=self.take_profit,
                stop_loss=self.stop_loss,
                max_trade_time=self.max_trade_time,
            ),
            entry_ref=self.entry_ref,
            close_ref=self.close_ref,
            error=self.error,
        )
