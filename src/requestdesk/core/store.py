"""The request store: single source of truth for every song request.

All status transitions and time-window queries go through
:class:`RequestStore`.  Each operation holds one re-entrant lock for its
whole read-check-write, so HTTP handlers and the processor can call it
concurrently without double-claiming a request.

Persistence is best effort.  After each mutation the store schedules a
snapshot write through its :class:`RequestRepository` on the running
event loop; a failing write is logged and never undoes the in-memory
transition.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
from collections import Counter
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from requestdesk.core.clock import Clock, SystemClock, new_request_id
from requestdesk.core.config import RequestDeskConfig
from requestdesk.core.errors import InvalidTransitionError, RequestValidationError
from requestdesk.core.models import RequestStatus, SongRequest, StatusBuckets
from requestdesk.core.policy import normalize_text, validate_submission

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from requestdesk.storage.base import RequestRepository

logger = logging.getLogger(__name__)


class RequestStore:
    """In-memory, lock-guarded request collection with optional persistence."""

    def __init__(
        self,
        config: RequestDeskConfig | None = None,
        clock: Clock | None = None,
        repository: RequestRepository | None = None,
        id_factory: Callable[[], str] = new_request_id,
    ) -> None:
        self._config = config or RequestDeskConfig()
        self._clock = clock or SystemClock()
        self._repository = repository
        self._new_id = id_factory
        self._requests: dict[str, SongRequest] = {}
        self._lock = threading.RLock()
        self._dirty = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._flush_task: asyncio.Task[None] | None = None

    @property
    def config(self) -> RequestDeskConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    def _now(self, now: datetime | None) -> datetime:
        return now if now is not None else self._clock.now()

    @staticmethod
    def _move(request: SongRequest, target: RequestStatus) -> None:
        """Apply one checked status change.  ``processed_at`` only survives on ``processed``."""
        if not request.can_transition_to(target):
            raise InvalidTransitionError(
                f"Request {request.id} cannot go from {request.status.value} to {target.value}"
            )
        request.status = target
        if target is not RequestStatus.PROCESSED:
            request.processed_at = None

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def add_request(
        self,
        track_guid: str,
        requested_by: str,
        message: str | None = None,
        ip_address: str | None = None,
    ) -> SongRequest:
        """Create a new ``pending`` request and return a copy of it.

        Raises :class:`RequestValidationError` if the track or requester
        is blank, or the message exceeds the configured cap.
        """
        track_guid = normalize_text(track_guid) or ""
        if not track_guid:
            raise RequestValidationError("trackGuid is required")
        decision = validate_submission(requested_by, message, self._config.max_message_length)
        if not decision.valid:
            raise RequestValidationError(decision.reason)

        with self._lock:
            now = self._clock.now()
            request_id = self._new_id()
            if request_id in self._requests:
                raise RuntimeError(f"Id factory returned duplicate id {request_id!r}")
            request = SongRequest(
                id=request_id,
                track_guid=track_guid,
                requested_by=normalize_text(requested_by) or "",
                message=normalize_text(message),
                ip_address=ip_address or None,
                requested_at=now,
                auto_process_at=now + self._config.auto_process_delay,
            )
            self._requests[request.id] = request
            snapshot = copy.copy(request)

        logger.info(
            "Request %s added for track %s by %r",
            snapshot.id,
            snapshot.track_guid,
            snapshot.requested_by,
        )
        self._changed()
        return snapshot

    # ------------------------------------------------------------------
    # Admin moderation
    # ------------------------------------------------------------------

    def hold_request(self, request_id: str) -> bool:
        """Pause a pending request until unheld or until the hold lapses."""
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or not request.can_transition_to(RequestStatus.HELD):
                return False
            self._move(request, RequestStatus.HELD)
            request.hold_expires_at = self._clock.now() + self._config.hold_max_duration
        logger.info("Request %s held", request_id)
        self._changed()
        return True

    def unhold_request(self, request_id: str) -> bool:
        """Return a held request to ``pending`` with a fresh auto-process delay."""
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.status is not RequestStatus.HELD:
                return False
            self._move(request, RequestStatus.PENDING)
            request.hold_expires_at = None
            request.auto_process_at = self._clock.now() + self._config.auto_process_delay
        logger.info("Request %s unheld", request_id)
        self._changed()
        return True

    def force_process_now(self, request_id: str) -> bool:
        """Make a pending or held request eligible on the next processor tick."""
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.status not in (
                RequestStatus.PENDING,
                RequestStatus.HELD,
            ):
                return False
            if request.status is RequestStatus.HELD:
                self._move(request, RequestStatus.PENDING)
            request.hold_expires_at = None
            request.auto_process_at = self._clock.now()
        logger.info("Request %s forced for next tick", request_id)
        self._changed()
        return True

    def delete_request(self, request_id: str) -> bool:
        """Mark a request deleted.  The record itself is kept for auditing.

        Deleting a delivered request drops its ``processed_at``; the
        delivery time is logged instead.
        """
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or not request.can_transition_to(RequestStatus.DELETED):
                return False
            previous = request.status
            delivered_at = request.processed_at
            self._move(request, RequestStatus.DELETED)
            request.hold_expires_at = None
        if delivered_at is not None:
            logger.info(
                "Request %s deleted (was %s, delivered at %s)",
                request_id,
                previous.value,
                delivered_at.isoformat(),
            )
        else:
            logger.info("Request %s deleted (was %s)", request_id, previous.value)
        self._changed()
        return True

    # ------------------------------------------------------------------
    # Processor claim protocol
    # ------------------------------------------------------------------

    def claim_for_processing(self, request_id: str) -> bool:
        """Atomically move a pending request to ``processing``.

        Exactly one of any number of concurrent callers succeeds; the
        rest get ``False``.
        """
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or not request.can_transition_to(RequestStatus.PROCESSING):
                return False
            self._move(request, RequestStatus.PROCESSING)
        self._changed()
        return True

    def commit_processed(self, request_id: str) -> bool:
        """Record a successful delivery of a claimed request."""
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or not request.can_transition_to(RequestStatus.PROCESSED):
                return False
            self._move(request, RequestStatus.PROCESSED)
            request.processed_at = self._clock.now()
        self._changed()
        return True

    def release_claim(self, request_id: str) -> bool:
        """Return a claimed request to ``pending``, keeping it immediately eligible."""
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.status is not RequestStatus.PROCESSING:
                return False
            self._move(request, RequestStatus.PENDING)
        self._changed()
        return True

    def release_expired_holds(self, now: datetime | None = None) -> list[str]:
        """Release every hold whose expiry has passed; return the released ids."""
        released: list[str] = []
        with self._lock:
            now = self._now(now)
            for request in self._requests.values():
                if (
                    request.status is RequestStatus.HELD
                    and request.hold_expires_at is not None
                    and request.hold_expires_at <= now
                ):
                    self._move(request, RequestStatus.PENDING)
                    request.hold_expires_at = None
                    request.auto_process_at = now
                    released.append(request.id)
        if released:
            logger.info("Released %d expired hold(s)", len(released))
            self._changed()
        return released

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, request_id: str) -> SongRequest | None:
        with self._lock:
            request = self._requests.get(request_id)
            return copy.copy(request) if request else None

    def all(self) -> list[SongRequest]:
        with self._lock:
            return self._snapshot()

    def list_by_status_bucket(self) -> StatusBuckets:
        """Group non-deleted requests for admin display, newest first."""
        buckets = StatusBuckets()
        with self._lock:
            for request in self._snapshot():
                if request.status is RequestStatus.PENDING:
                    buckets.pending.append(request)
                elif request.status is RequestStatus.HELD:
                    buckets.held.append(request)
                elif request.status is RequestStatus.PROCESSING:
                    buckets.processing.append(request)
                elif request.status is RequestStatus.PROCESSED:
                    buckets.processed.append(request)

        for bucket in (buckets.pending, buckets.held, buckets.processing):
            bucket.sort(key=lambda r: r.requested_at, reverse=True)
        buckets.processed.sort(key=lambda r: r.processed_at or r.requested_at, reverse=True)
        return buckets

    def get_eligible_for_auto_process(self, now: datetime | None = None) -> list[SongRequest]:
        """Pending requests whose ``auto_process_at`` has passed, oldest first."""
        with self._lock:
            now = self._now(now)
            eligible = [
                copy.copy(r)
                for r in self._requests.values()
                if r.status is RequestStatus.PENDING and r.auto_process_at <= now
            ]
        eligible.sort(key=lambda r: (r.auto_process_at, r.requested_at))
        return eligible

    def get_activity_timestamps(
        self, ip_address: str | None, window: timedelta, now: datetime | None = None
    ) -> list[datetime]:
        """``requested_at`` of non-deleted requests from *ip_address* within the window, ascending."""
        if not ip_address:
            return []
        with self._lock:
            now = self._now(now)
            start = now - window
            stamps = [
                r.requested_at
                for r in self._requests.values()
                if r.ip_address == ip_address
                and r.status is not RequestStatus.DELETED
                and start <= r.requested_at <= now
            ]
        return sorted(stamps)

    def get_activity_window_count(
        self, ip_address: str | None, window: timedelta, now: datetime | None = None
    ) -> int:
        return len(self.get_activity_timestamps(ip_address, window, now))

    def get_last_activity_timestamp(self, track_guid: str) -> datetime | None:
        """Latest request or delivery time for *track_guid*, ignoring deleted requests."""
        with self._lock:
            stamps = [
                r.last_activity_at
                for r in self._requests.values()
                if r.track_guid == track_guid and r.status is not RequestStatus.DELETED
            ]
        return max(stamps) if stamps else None

    def count_by_status(self) -> dict[str, int]:
        with self._lock:
            counts = Counter(r.status.value for r in self._requests.values())
        return {status.value: counts.get(status.value, 0) for status in RequestStatus}

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """Replace the store contents with the repository's snapshot.

        Requests left ``processing`` by an interrupted run go back to
        ``pending`` so the next tick retries them.
        """
        self._loop = asyncio.get_running_loop()
        if self._repository is None:
            return 0
        records = await self._repository.load_all()
        recovered = self._replace(records)
        if recovered:
            logger.warning("Recovered %d interrupted claim(s) after restart", recovered)
        logger.info("Loaded %d request(s) from storage", len(records))
        return len(records)

    async def flush(self) -> None:
        """Write the current snapshot now."""
        if self._repository is None:
            return
        self._dirty = False
        if not await self._write_snapshot():
            self._dirty = True

    def _replace(self, records: Iterable[SongRequest]) -> int:
        recovered = 0
        with self._lock:
            self._requests = {r.id: copy.copy(r) for r in records}
            for request in self._requests.values():
                if request.status is RequestStatus.PROCESSING:
                    self._move(request, RequestStatus.PENDING)
                    recovered += 1
        return recovered

    def _snapshot(self) -> list[SongRequest]:
        with self._lock:
            return [copy.copy(r) for r in self._requests.values()]

    def _changed(self) -> None:
        if self._repository is None:
            return
        self._dirty = True
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Called off the loop: hand the flush to the loop thread if we
            # know it, otherwise the next flush() picks it up.
            if self._loop is not None and self._loop.is_running():
                self._loop.call_soon_threadsafe(self._schedule_flush)
            return
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._dirty:
            self._dirty = False
            if not await self._write_snapshot():
                self._dirty = True
                return

    async def _write_snapshot(self) -> bool:
        assert self._repository is not None
        snapshot = self._snapshot()
        try:
            await self._repository.save_all(snapshot)
        except Exception:
            logger.exception("Failed to persist %d request(s)", len(snapshot))
            return False
        return True
