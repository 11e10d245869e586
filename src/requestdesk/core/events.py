"""Async event bus for processor lifecycle notifications.

The processor publishes what it did on each tick; subscribers (the app's
audit logger, tests) react without the processor knowing about them.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Events emitted by the request processor."""

    HOLD_EXPIRED = "hold.expired"
    REQUEST_DELIVERED = "request.delivered"
    DELIVERY_FAILED = "request.delivery_failed"
    TICK_COMPLETED = "tick.completed"
    TICK_FAILED = "tick.failed"


@dataclass(frozen=True)
class Event:
    """An immutable event carrying contextual payload."""

    event_type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def request_id(self) -> str | None:
        return self.payload.get("request_id")


Subscriber = Callable[[Event], Coroutine[Any, Any, None]]


class EventBus:
    """In-process async event bus.

    Subscribers of one event run concurrently; one failing subscriber
    does not stop the others.
    """

    def __init__(self) -> None:
        self._subscribers: dict[EventType, list[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: Subscriber) -> None:
        self._subscribers[event_type].append(handler)

    def subscribe_all(self, handler: Subscriber) -> None:
        for event_type in EventType:
            self.subscribe(event_type, handler)

    def unsubscribe(self, event_type: EventType, handler: Subscriber) -> None:
        with contextlib.suppress(ValueError):
            self._subscribers[event_type].remove(handler)

    async def publish(self, event: Event) -> None:
        # Snapshot: a handler may subscribe or unsubscribe while we await.
        handlers = tuple(self._subscribers.get(event.event_type, ()))
        if not handlers:
            return

        outcomes = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for handler, outcome in zip(handlers, outcomes, strict=True):
            if isinstance(outcome, Exception):
                logger.error(
                    "Event subscriber %s failed on %s: %s",
                    handler.__qualname__,
                    event.event_type.value,
                    outcome,
                )
