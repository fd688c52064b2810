"""Strategy contract.

A strategy discovers opportunities and nothing else: it never executes
trades.  "Nothing found" is an empty list, not an exception; any
exception a strategy does raise costs it the current discovery cycle
only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from sniperbot.engine.models import Opportunity


class Strategy(ABC):
    """A pluggable opportunity-discovery module."""

    name: str = ""

    @abstractmethod
    async def find_opportunities(self) -> list[Opportunity]: ...


def validate_strategy(strategy: object) -> None:
    """Reject objects that do not satisfy the strategy contract."""
    name = getattr(strategy, "name", "")
    if not isinstance(name, str) or not name:
        raise TypeError(f"Strategy {strategy!r} must define a non-empty name")
    if not callable(getattr(strategy, "find_opportunities", None)):
        raise TypeError(f"Strategy {name} is missing find_opportunities()")
