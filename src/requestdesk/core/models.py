"""Domain models for RequestDesk.

Defines the song request entity, its lifecycle states, and the grouped
view handed to the admin UI.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime


class RequestStatus(str, enum.Enum):
    """Lifecycle states of a song request."""

    PENDING = "pending"
    PROCESSING = "processing"
    HELD = "held"
    PROCESSED = "processed"
    DELETED = "deleted"


# Allowed transitions.  Every status change in the store is checked
# against this table; ``deleted`` has no exits.
TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset(
        {RequestStatus.HELD, RequestStatus.PROCESSING, RequestStatus.DELETED}
    ),
    RequestStatus.HELD: frozenset({RequestStatus.PENDING, RequestStatus.DELETED}),
    RequestStatus.PROCESSING: frozenset(
        {RequestStatus.PROCESSED, RequestStatus.PENDING, RequestStatus.DELETED}
    ),
    RequestStatus.PROCESSED: frozenset({RequestStatus.DELETED}),
    RequestStatus.DELETED: frozenset(),
}

LABEL_SEPARATOR = " — "


@dataclass
class SongRequest:
    """A single listener request for a catalog track.

    ``processed_at`` is set if and only if the request is ``processed``;
    ``auto_process_at`` is always meaningful while the request is
    ``pending``.
    """

    id: str
    track_guid: str
    requested_by: str
    requested_at: datetime
    auto_process_at: datetime
    message: str | None = None
    ip_address: str | None = None
    status: RequestStatus = RequestStatus.PENDING
    processed_at: datetime | None = None
    hold_expires_at: datetime | None = None

    @property
    def requester_label(self) -> str:
        """Text shown alongside the track in the playout log."""
        if self.message:
            return f"{self.requested_by}{LABEL_SEPARATOR}{self.message}"
        return self.requested_by

    def can_transition_to(self, target: RequestStatus) -> bool:
        return target in TRANSITIONS[self.status]

    @property
    def last_activity_at(self) -> datetime:
        """Latest of the request and delivery timestamps."""
        if self.processed_at and self.processed_at > self.requested_at:
            return self.processed_at
        return self.requested_at


@dataclass
class StatusBuckets:
    """Requests grouped for admin display (deleted requests are omitted)."""

    pending: list[SongRequest] = field(default_factory=list)
    held: list[SongRequest] = field(default_factory=list)
    processing: list[SongRequest] = field(default_factory=list)
    processed: list[SongRequest] = field(default_factory=list)
