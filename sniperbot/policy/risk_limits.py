"""Risk limits — deterministic risk policy enforcement.

Checks every risk rule from config before allowing a trade.
Any single rule violation -> NO TRADE.

Rules:
  1. Maximum trade size (requested amount)
  2. Daily loss ceiling (realised losses since local midnight)

Rejections are decisions, not errors: they are logged with the gate and
values and returned to the caller.
"""

from __future__ import annotations

import datetime as dt
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

from sniperbot.config import RiskManagementConfig
from sniperbot.engine.models import Opportunity, Trade
from sniperbot.engine.stats import losses_since
from sniperbot.observability.logger import get_logger
from sniperbot.observability.metrics import metrics

log = get_logger(__name__)

GATE_MAX_TRADE_SIZE = "max_trade_size"
GATE_DAILY_LOSS = "daily_loss_limit"


@dataclass
class RiskCheckResult:
    """Result of risk limit checks."""
    allowed: bool
    decision: str  # "TRADE" | "NO TRADE"
    violations: list[str] = field(default_factory=list)
    checks_passed: list[str] = field(default_factory=list)
    gate: str = ""  # first violated gate
    daily_loss: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "decision": self.decision,
            "violations": self.violations,
            "checks_passed": self.checks_passed,
            "gate": self.gate,
            "daily_loss": self.daily_loss,
        }


def local_midnight(now: float | None = None) -> float:
    """Epoch seconds of the most recent local midnight."""
    moment = dt.datetime.fromtimestamp(time.time() if now is None else now)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0).timestamp()


def check_risk_limits(
    opportunity: Opportunity,
    risk_config: RiskManagementConfig,
    history: Iterable[Trade],
    now: float | None = None,
) -> RiskCheckResult:
    """Run all risk checks. Returns TRADE only if ALL pass."""
    violations: list[str] = []
    passed: list[str] = []
    gate = ""
    daily_loss = 0.0

    # 1. Maximum trade size
    max_size = risk_config.max_trade_size
    amount = opportunity.amount
    if max_size and amount is not None and amount > max_size:
        violations.append(f"MAX_TRADE_SIZE: amount {amount} > limit {max_size}")
        gate = gate or GATE_MAX_TRADE_SIZE
    elif max_size:
        passed.append(f"trade_size: {amount} <= {max_size}")

    # 2. Daily loss ceiling
    loss_limit = risk_config.daily_loss_limit
    if loss_limit:
        daily_loss = losses_since(history, local_midnight(now))
        if daily_loss >= loss_limit:
            violations.append(
                f"DAILY_LOSS_LIMIT: today's loss {daily_loss:.2f} >= limit {loss_limit:.2f}"
            )
            gate = gate or GATE_DAILY_LOSS
        else:
            passed.append(f"daily_loss: {daily_loss:.2f} < {loss_limit:.2f}")

    allowed = not violations
    result = RiskCheckResult(
        allowed=allowed,
        decision="TRADE" if allowed else "NO TRADE",
        violations=violations,
        checks_passed=passed,
        gate=gate,
        daily_loss=daily_loss,
    )

    if allowed:
        log.debug(
            "risk.passed",
            venue=opportunity.venue, instrument=opportunity.label, passed=len(passed),
        )
    else:
        metrics.incr(f"risk.rejected.{gate}")
        log.warning(
            "risk.rejected",
            venue=opportunity.venue,
            instrument=opportunity.label,
            strategy=opportunity.strategy,
            gate=gate,
            amount=amount,
            max_trade_size=max_size,
            daily_loss=round(daily_loss, 4),
            daily_loss_limit=loss_limit,
            violations=violations,
        )
    return result
