"""Eligibility policy: rate limits, per-track cooldown and submission checks.

These are decisions, not mutations.  :class:`EligibilityPolicy` reads
counts and timestamps from the store and combines them with the
configuration; it never changes a request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from requestdesk.core.config import RequestDeskConfig

if TYPE_CHECKING:
    from requestdesk.core.store import RequestStore

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    window: str | None = None
    limit: int | None = None
    next_allowed_at: datetime | None = None


@dataclass(frozen=True)
class CooldownDecision:
    allowed: bool
    next_allowed_at: datetime | None = None


@dataclass(frozen=True)
class ValidationDecision:
    valid: bool
    reason: str | None = None


def normalize_text(value: str | None) -> str | None:
    """Strip *value*; blank strings become ``None``."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_submission(
    requested_by: str | None, message: str | None, max_message_length: int
) -> ValidationDecision:
    """Check the listener-supplied fields of a submission.

    Over-length messages are rejected rather than truncated; the cap is
    published through the settings endpoint so clients can enforce it
    before submitting.
    """
    if normalize_text(requested_by) is None:
        return ValidationDecision(False, "requestedBy is required")
    text = normalize_text(message)
    if text is not None and len(text) > max_message_length:
        return ValidationDecision(
            False, f"message must be at most {max_message_length} characters"
        )
    return ValidationDecision(True)


class EligibilityPolicy:
    """Stateless decisions over :class:`RequestStore` queries."""

    def __init__(self, store: RequestStore, config: RequestDeskConfig | None = None) -> None:
        self._store = store
        self._config = config or store.config

    def check_rate_limit(self, ip_address: str | None, now: datetime | None = None) -> RateLimitDecision:
        """Apply the per-client hourly then daily request limits.

        Unknown clients cannot be attributed and are always allowed.  A
        limit of zero disables that window.
        """
        if not ip_address:
            return RateLimitDecision(allowed=True)
        now = now or self._store.clock.now()

        for window, span, limit in (
            ("hour", HOUR, self._config.max_requests_per_hour),
            ("day", DAY, self._config.max_requests_per_day),
        ):
            if limit <= 0:
                continue
            stamps = self._store.get_activity_timestamps(ip_address, span, now)
            if len(stamps) >= limit:
                return RateLimitDecision(
                    allowed=False,
                    window=window,
                    limit=limit,
                    next_allowed_at=stamps[0] + span,
                )
        return RateLimitDecision(allowed=True)

    def check_cooldown(self, track_guid: str, now: datetime | None = None) -> CooldownDecision:
        """Block a track until ``per_track_cooldown`` after its last activity."""
        cooldown = self._config.per_track_cooldown
        if cooldown <= timedelta(0):
            return CooldownDecision(allowed=True)
        last = self._store.get_last_activity_timestamp(track_guid)
        if last is None:
            return CooldownDecision(allowed=True)
        now = now or self._store.clock.now()
        next_allowed_at = last + cooldown
        if now < next_allowed_at:
            return CooldownDecision(allowed=False, next_allowed_at=next_allowed_at)
        return CooldownDecision(allowed=True)

    def validate_submission(
        self,
        requested_by: str | None,
        message: str | None,
        max_message_length: int | None = None,
    ) -> ValidationDecision:
        return validate_submission(
            requested_by,
            message,
            max_message_length or self._config.max_message_length,
        )
