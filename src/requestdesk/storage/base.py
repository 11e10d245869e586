"""Abstract persistence port for song requests.

The :class:`~requestdesk.core.store.RequestStore` keeps the authoritative
state in memory and writes whole snapshots through this interface, so
any backend only has to load and save a list of requests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from requestdesk.core.models import SongRequest


class RequestRepository(ABC):
    """Abstract snapshot repository for request persistence."""

    @abstractmethod
    async def load_all(self) -> list[SongRequest]: ...

    @abstractmethod
    async def save_all(self, requests: list[SongRequest]) -> None: ...

    def close(self) -> None:
        """Release any held resources."""
