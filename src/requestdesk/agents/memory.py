"""In-memory playout agent for development and testing.

Slots are supplied by the caller and consumed by successful deliveries.
Individual deliveries can be scripted to fail or raise so processor
behaviour under partial outages can be exercised.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass

from requestdesk.agents.base import PlayoutAgent, PlayoutSlot
from requestdesk.core.errors import AgentError


@dataclass(frozen=True)
class Delivery:
    slot: PlayoutSlot
    track_guid: str
    requester_label: str


class InMemoryPlayoutAgent(PlayoutAgent):
    """Agent backed by a local slot list."""

    def __init__(self, slots: int | list[PlayoutSlot] = 0, delay_seconds: float = 0.0) -> None:
        self._slots: list[PlayoutSlot] = []
        self._delay = delay_seconds
        self._outcomes: list[bool | Exception] = []
        self.deliveries: list[Delivery] = []
        self.attempts: list[Delivery] = []
        self.slot_queries = 0
        self.unavailable: Exception | None = None
        self.add_slots(slots)

    def add_slots(self, slots: int | list[PlayoutSlot]) -> None:
        if isinstance(slots, int):
            slots = [PlayoutSlot(request_item_guid=uuid.uuid4().hex) for _ in range(slots)]
        self._slots.extend(slots)

    def script(self, *outcomes: bool | Exception) -> None:
        """Queue outcomes for the next deliveries; unscripted deliveries succeed."""
        self._outcomes.extend(outcomes)

    @property
    def free_slots(self) -> int:
        return len(self._slots)

    async def get_available_slots(self) -> list[PlayoutSlot]:
        self.slot_queries += 1
        if self.unavailable is not None:
            raise self.unavailable
        return list(self._slots)

    async def deliver(self, slot: PlayoutSlot, track_guid: str, requester_label: str) -> bool:
        delivery = Delivery(slot, track_guid, requester_label)
        self.attempts.append(delivery)
        if self._delay:
            await asyncio.sleep(self._delay)
        outcome = self._outcomes.pop(0) if self._outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        if not outcome:
            return False
        if slot not in self._slots:
            raise AgentError(f"Slot {slot.request_item_guid} is no longer available")
        self._slots.remove(slot)
        self.deliveries.append(delivery)
        return True
