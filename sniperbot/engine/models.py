"""Core trading entities: opportunities, trades and derived stats."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from typing import Any

BUY = "buy"
SELL = "sell"
SIDES = (BUY, SELL)

STATUS_ACTIVE = "active"
STATUS_CLOSED = "closed"
STATUS_FAILED = "failed"

TAKE_PROFIT = "take_profit"
STOP_LOSS = "stop_loss"
TIMEOUT = "timeout"
MANUAL = "manual"
BOT_STOPPED = "bot_stopped"
CLOSE_REASONS = (TAKE_PROFIT, STOP_LOSS, TIMEOUT, MANUAL, BOT_STOPPED)


def inverse_side(side: str) -> str:
    return SELL if side == BUY else BUY


def price_change_pct(entry_price: float, price: float) -> float:
    """Percentage move from ``entry_price`` to ``price``."""
    return (price - entry_price) / entry_price * 100.0


def profit_loss_pct(side: str, entry_price: float, price: float) -> float:
    """Realised or unrealised P&L in percent for a position on ``side``."""
    change = price_change_pct(entry_price, price)
    return change if side == BUY else -change


@dataclass
class Opportunity:
    """A candidate trade from a strategy or the token scanner."""
    venue: str
    instrument: str
    side: str = BUY
    strategy: str = ""
    reason: str = ""
    score: float | None = None
    amount: float | None = None
    symbol: str = ""
    discovered_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if self.side not in SIDES:
            raise ValueError(f"Invalid side: {self.side!r}")

    @property
    def label(self) -> str:
        return self.symbol or self.instrument

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ExitThresholds:
    """Exit policy frozen into a Trade when it is opened."""
    take_profit: float
    stop_loss: float
    max_trade_time: float


@dataclass(frozen=True)
class Trade:
    """An engine-tracked position.

    Trades are immutable; every state change produces a new instance via
    ``dataclasses.replace`` so the open-trade map can be swapped
    atomically.
    """
    venue: str
    instrument: str
    side: str
    strategy: str
    thresholds: ExitThresholds
    entry_price: float | None
    amount: float | None = None
    symbol: str = ""
    reason: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: str = STATUS_ACTIVE
    current_price: float | None = None
    price_change: float = 0.0
    close_reason: str | None = None
    close_price: float | None = None
    profit_loss: float | None = None
    created_at: float = field(default_factory=time.time)
    closed_at: float | None = None
    entry_ref: str = ""
    close_ref: str = ""
    error: str = ""
    # Chain positions only: wallet share of the entry, reused to buy back sells
    wallet_fraction: float | None = None

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    @property
    def label(self) -> str:
        return self.symbol or self.instrument

    def with_price(self, price: float) -> "Trade":
        if self.entry_price is None:
            raise ValueError(f"Trade {self.id} has no entry price")
        return replace(
            self,
            current_price=price,
            price_change=price_change_pct(self.entry_price, price),
        )

    def closed(
        self, reason: str, close_price: float, closed_at: float, close_ref: str = ""
    ) -> "Trade":
        if self.status != STATUS_ACTIVE:
            raise ValueError(f"Trade {self.id} is already {self.status}")
        if self.entry_price is None:
            raise ValueError(f"Trade {self.id} has no entry price")
        return replace(
            self,
            status=STATUS_CLOSED,
            close_reason=reason,
            close_price=close_price,
            current_price=close_price,
            price_change=price_change_pct(self.entry_price, close_price),
            profit_loss=profit_loss_pct(self.side, self.entry_price, close_price),
            closed_at=closed_at,
            close_ref=close_ref,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Stats:
    """Running statistics derived from trade history."""
    total_trades: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    losing_trades: int = 0
    profit_loss: float = 0.0
    win_rate: float = 0.0
    start_time: float | None = None
    last_trade_time: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
