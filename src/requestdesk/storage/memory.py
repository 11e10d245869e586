"""In-memory implementation of :class:`RequestRepository`.

Suitable for development, testing, and deployments that accept losing
requests on restart.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING

from requestdesk.storage.base import RequestRepository

if TYPE_CHECKING:
    from requestdesk.core.models import SongRequest


class InMemoryRequestRepository(RequestRepository):
    """List-backed request repository."""

    def __init__(self, initial: list[SongRequest] | None = None) -> None:
        self._requests: list[SongRequest] = copy.deepcopy(initial or [])
        self.save_count = 0

    async def load_all(self) -> list[SongRequest]:
        return copy.deepcopy(self._requests)

    async def save_all(self, requests: list[SongRequest]) -> None:
        self._requests = copy.deepcopy(requests)
        self.save_count += 1
