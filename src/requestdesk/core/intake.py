"""Listener submission flow.

Runs the checks in a fixed order (blocklist, field validation, track
cooldown, client rate limit) and only then adds the request to the
store.  Each failed check raises its own exception so the HTTP layer
can report a machine-readable reason.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from requestdesk.core.errors import (
    ClientBlockedError,
    CooldownActiveError,
    RequestValidationError,
    TooManyRequestsError,
)
from requestdesk.core.policy import EligibilityPolicy, normalize_text

if TYPE_CHECKING:
    from requestdesk.core.blocklist import ClientBlocklist
    from requestdesk.core.models import SongRequest
    from requestdesk.core.store import RequestStore

logger = logging.getLogger(__name__)


class RequestIntake:
    """Validates and admits listener submissions."""

    def __init__(
        self,
        store: RequestStore,
        policy: EligibilityPolicy | None = None,
        blocklist: ClientBlocklist | None = None,
    ) -> None:
        self._store = store
        self._policy = policy or EligibilityPolicy(store)
        self._blocklist = blocklist

    @property
    def policy(self) -> EligibilityPolicy:
        return self._policy

    def submit(
        self,
        track_guid: str | None,
        requested_by: str | None,
        message: str | None = None,
        ip_address: str | None = None,
    ) -> SongRequest:
        if self._blocklist is not None and self._blocklist.is_blocked(ip_address):
            logger.info("Rejected submission from blocked client %s", ip_address)
            raise ClientBlockedError("Requests from this client are blocked")

        track_guid = normalize_text(track_guid)
        if track_guid is None:
            raise RequestValidationError("trackGuid is required")
        decision = self._policy.validate_submission(requested_by, message)
        if not decision.valid:
            raise RequestValidationError(decision.reason)

        now = self._store.clock.now()
        cooldown = self._policy.check_cooldown(track_guid, now)
        if not cooldown.allowed:
            assert cooldown.next_allowed_at is not None
            logger.info("Track %s in cooldown until %s", track_guid, cooldown.next_allowed_at)
            raise CooldownActiveError(
                track_guid, cooldown.next_allowed_at, self._store.config.cooldown_hours
            )

        limit = self._policy.check_rate_limit(ip_address, now)
        if not limit.allowed:
            assert limit.window and limit.limit and limit.next_allowed_at
            logger.info(
                "Client %s hit the %s limit (%d)", ip_address, limit.window, limit.limit
            )
            raise TooManyRequestsError(limit.window, limit.limit, limit.next_allowed_at)

        return self._store.add_request(track_guid, requested_by or "", message, ip_address)
