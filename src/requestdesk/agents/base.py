"""Port for the external playout system.

The automation system exposes a limited number of request slots in its
upcoming schedule.  An agent reports which slots are free and places a
track into one of them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class PlayoutSlot:
    """One free request position in the playout schedule."""

    request_item_guid: str
    break_note_item_guid: str | None = None


class PlayoutAgent(ABC):
    """Abstract client for the playout system."""

    @abstractmethod
    async def get_available_slots(self) -> list[PlayoutSlot]:
        """Return the currently free request slots."""
        ...

    @abstractmethod
    async def deliver(self, slot: PlayoutSlot, track_guid: str, requester_label: str) -> bool:
        """Place *track_guid* into *slot*.

        Returns ``False`` if the playout system rejected the placement;
        may raise :class:`~requestdesk.core.errors.AgentError` on
        transport failures.
        """
        ...
