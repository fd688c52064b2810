"""Connector contracts for chain (DEX) and exchange (CEX) venues.

Every connector satisfies a fixed capability interface.  The registry
checks it when a connector is registered, so a missing operation is a
configuration error at startup rather than a runtime surprise.

Each connector owns its call timeout (``timeout_secs``); the engine wraps
every connector call with ``call_with_timeout`` and treats a timeout like
any other per-item failure.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, TypeVar

from sniperbot.observability.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

VENUE_CHAIN = "chain"
VENUE_EXCHANGE = "exchange"


class ConnectorConfigError(Exception):
    """A venue cannot be set up (missing credentials, bad capability)."""


@dataclass
class ExecutionResult:
    """Outcome of a buy/sell on any venue."""
    success: bool
    price: float | None = None
    quantity: float | None = None
    ref: str = ""            # tx hash or exchange order id
    error: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, error: str) -> "ExecutionResult":
        return cls(success=False, error=error)


class ChainConnector(ABC):
    """A blockchain wallet trading through a DEX router."""

    timeout_secs: float = 15.0

    @abstractmethod
    def get_address(self) -> str: ...

    @abstractmethod
    async def get_balances(self) -> dict[str, float]: ...

    @abstractmethod
    async def get_token_price(self, instrument: str) -> float | None: ...

    @abstractmethod
    async def execute_buy(self, instrument: str, wallet_fraction: float) -> ExecutionResult: ...

    @abstractmethod
    async def execute_sell(self, instrument: str) -> ExecutionResult: ...

    async def close(self) -> None:
        return None


class ExchangeConnector(ABC):
    """A centralised exchange account."""

    timeout_secs: float = 10.0

    @abstractmethod
    async def get_balances(self) -> dict[str, float]: ...

    @abstractmethod
    async def get_current_price(self, symbol: str) -> float | None: ...

    @abstractmethod
    async def execute_trade(self, symbol: str, side: str, amount: float | None) -> ExecutionResult: ...

    async def close(self) -> None:
        return None


_CHAIN_CAPABILITIES = (
    "get_address", "get_balances", "get_token_price", "execute_buy", "execute_sell",
)
_EXCHANGE_CAPABILITIES = ("get_balances", "get_current_price", "execute_trade")


def _check_capabilities(venue: str, connector: Any, required: tuple[str, ...]) -> None:
    missing = [name for name in required if not callable(getattr(connector, name, None))]
    if missing:
        raise ConnectorConfigError(
            f"Connector for {venue} is missing required operations: {', '.join(missing)}"
        )
    timeout = getattr(connector, "timeout_secs", None)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConnectorConfigError(f"Connector for {venue} must define a positive timeout_secs")


async def call_with_timeout(connector: Any, awaitable: Awaitable[T]) -> T:
    """Await a connector call bounded by the connector's own timeout."""
    return await asyncio.wait_for(awaitable, timeout=connector.timeout_secs)


class ConnectorRegistry:
    """Venue name -> connector, split by venue class."""

    def __init__(self) -> None:
        self._chains: dict[str, ChainConnector] = {}
        self._exchanges: dict[str, ExchangeConnector] = {}

    def register_chain(self, venue: str, connector: ChainConnector) -> None:
        _check_capabilities(venue, connector, _CHAIN_CAPABILITIES)
        if venue in self._exchanges:
            raise ConnectorConfigError(f"Venue {venue} is already registered as an exchange")
        self._chains[venue] = connector
        log.info("connectors.registered", venue=venue, kind=VENUE_CHAIN)

    def register_exchange(self, venue: str, connector: ExchangeConnector) -> None:
        _check_capabilities(venue, connector, _EXCHANGE_CAPABILITIES)
        if venue in self._chains:
            raise ConnectorConfigError(f"Venue {venue} is already registered as a chain")
        self._exchanges[venue] = connector
        log.info("connectors.registered", venue=venue, kind=VENUE_EXCHANGE)

    def venue_class(self, venue: str) -> str | None:
        if venue in self._chains:
            return VENUE_CHAIN
        if venue in self._exchanges:
            return VENUE_EXCHANGE
        return None

    def chain(self, venue: str) -> ChainConnector:
        return self._chains[venue]

    def exchange(self, venue: str) -> ExchangeConnector:
        return self._exchanges[venue]

    @property
    def chains(self) -> dict[str, ChainConnector]:
        return dict(self._chains)

    @property
    def exchanges(self) -> dict[str, ExchangeConnector]:
        return dict(self._exchanges)

    @property
    def venues(self) -> list[str]:
        return [*self._chains, *self._exchanges]

    def __len__(self) -> int:
        return len(self._chains) + len(self._exchanges)

    async def close(self) -> None:
        for venue, connector in [*self._chains.items(), *self._exchanges.items()]:
            try:
                await connector.close()
            except Exception as e:
                log.warning("connectors.close_error", venue=venue, error=str(e))
