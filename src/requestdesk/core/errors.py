"""Exception hierarchy shared by the core and the HTTP layer.

Submission rejections carry a machine-readable ``code`` plus the fields
a client needs to render a countdown; the API turns them into JSON
bodies without further interpretation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class RequestDeskError(Exception):
    """Base class for all RequestDesk errors."""


class RequestValidationError(RequestDeskError, ValueError):
    """A submission is missing a field or has an invalid value."""

    code = "VALIDATION_FAILED"


class SubmissionRejected(RequestDeskError):
    """A valid submission refused by policy (cooldown, rate limit, blocklist)."""

    code = "REJECTED"

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class CooldownActiveError(SubmissionRejected):
    code = "COOLDOWN_ACTIVE"

    def __init__(self, track_guid: str, next_allowed_at: datetime, cooldown_hours: float) -> None:
        super().__init__(f"Track {track_guid} was requested recently")
        self.track_guid = track_guid
        self.next_allowed_at = next_allowed_at
        self.cooldown_hours = cooldown_hours

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["nextAllowedAt"] = self.next_allowed_at.isoformat()
        payload["cooldownHours"] = self.cooldown_hours
        return payload


class TooManyRequestsError(SubmissionRejected):
    code = "TOO_MANY_REQUESTS"

    def __init__(self, window: str, limit: int, next_allowed_at: datetime) -> None:
        super().__init__(f"Request limit of {limit} per {window} reached")
        self.window = window
        self.limit = limit
        self.next_allowed_at = next_allowed_at

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["window"] = self.window
        payload["limit"] = self.limit
        payload["nextAllowedAt"] = self.next_allowed_at.isoformat()
        return payload


class ClientBlockedError(SubmissionRejected):
    code = "CLIENT_BLOCKED"


class RequestNotFoundError(RequestDeskError):
    """An admin action referenced an unknown request id."""


class InvalidTransitionError(RequestDeskError):
    """An admin action is not valid from the request's current status."""


class AgentError(RequestDeskError):
    """The playout agent failed to report slots or place a track."""
