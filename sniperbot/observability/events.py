"""Engine telemetry events.

The engine publishes every observable state change through an
``EventBus``.  Transports (web socket, log tail, dashboards) subscribe to
the bus; the engine never knows who is listening.

Event types:
  - trade_opened     a Trade entered the open set
  - trade_updated    price / percentage refresh of an open Trade
  - trade_closed     a Trade left the open set for history
  - stats_updated    Stats were recomputed
  - engine_status    running/stopped + open-trade snapshot + stats
  - cycle_error      a cycle caught an unexpected error
  - new_token        a token-scanner event was received
  - balances_updated a balance refresh finished
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from sniperbot.observability.logger import get_logger

log = get_logger(__name__)

TRADE_OPENED = "trade_opened"
TRADE_UPDATED = "trade_updated"
TRADE_CLOSED = "trade_closed"
STATS_UPDATED = "stats_updated"
ENGINE_STATUS = "engine_status"
CYCLE_ERROR = "cycle_error"
NEW_TOKEN = "new_token"
BALANCES_UPDATED = "balances_updated"

EVENT_TYPES = frozenset({
    TRADE_OPENED, TRADE_UPDATED, TRADE_CLOSED, STATS_UPDATED,
    ENGINE_STATUS, CYCLE_ERROR, NEW_TOKEN, BALANCES_UPDATED,
})


@dataclass
class EngineEvent:
    """A single published event."""
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        if self.timestamp == 0.0:
            self.timestamp = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "payload": self.payload, "timestamp": self.timestamp}


Subscriber = Callable[[EngineEvent], Any]


class EventBus:
    """Fan engine events out to subscribers.

    Subscribers may be plain or ``async`` callables.  A subscriber that
    raises is logged and otherwise ignored, so a broken transport can
    never disturb a trading cycle.
    """

    def __init__(self, history_size: int = 200):
        self._subscribers: list[tuple[str | None, Subscriber]] = []
        self._history: list[EngineEvent] = []
        self._history_size = history_size
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, callback: Subscriber, event_type: str | None = None) -> None:
        """Register ``callback`` for ``event_type`` (or every event if None)."""
        if event_type is not None and event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        self._subscribers.append((event_type, callback))

    def unsubscribe(self, callback: Subscriber) -> None:
        self._subscribers = [(t, cb) for t, cb in self._subscribers if cb is not callback]

    @property
    def history(self) -> list[EngineEvent]:
        return list(self._history)

    def publish(self, event_type: str, **payload: Any) -> EngineEvent:
        event = EngineEvent(type=event_type, payload=payload)
        self._history.append(event)
        if len(self._history) > self._history_size:
            self._history = self._history[-self._history_size:]

        for wanted, callback in list(self._subscribers):
            if wanted is not None and wanted != event_type:
                continue
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_task_done)
            except Exception as e:
                log.warning("events.subscriber_error", event=event_type, error=str(e))
        return event

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning("events.subscriber_error", error=str(exc))
