"""Polling processor that places eligible requests into playout slots.

Each tick releases expired holds, asks the playout agent for free slots,
then walks the eligible requests oldest first: claim, deliver, commit.
A failed delivery releases the claim and, by default, ends the tick so a
struggling playout system is not hammered with the rest of the queue.

The processor is one long-lived asyncio task.  Ticks never overlap: a
tick requested while another is running is skipped, not queued.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from requestdesk.core.events import Event, EventBus, EventType

if TYPE_CHECKING:
    from requestdesk.agents.base import PlayoutAgent, PlayoutSlot
    from requestdesk.core.config import RequestDeskConfig
    from requestdesk.core.models import SongRequest
    from requestdesk.core.store import RequestStore

logger = logging.getLogger(__name__)


@dataclass
class ProcessorConfig:
    """Tuning knobs for the processor."""

    tick_interval_seconds: float = 10.0
    agent_timeout_seconds: float = 15.0
    abort_on_failure: bool = True

    @classmethod
    def from_config(cls, config: RequestDeskConfig) -> ProcessorConfig:
        return cls(
            tick_interval_seconds=config.tick_interval_seconds,
            agent_timeout_seconds=config.agent_timeout_seconds,
            abort_on_failure=config.abort_tick_on_failure,
        )


@dataclass
class TickReport:
    """What a single tick did."""

    started_at: datetime
    skipped: bool = False
    slots: int = 0
    eligible: int = 0
    holds_released: list[str] = field(default_factory=list)
    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    error: str | None = None


class RequestProcessor:
    """Reconciles pending demand against the agent's slot supply."""

    def __init__(
        self,
        store: RequestStore,
        agent: PlayoutAgent,
        config: ProcessorConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._agent = agent
        self._config = config or ProcessorConfig()
        self._event_bus = event_bus or EventBus()
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._in_flight = False
        self._claimed: set[str] = set()
        self.last_report: TickReport | None = None

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def config(self) -> ProcessorConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Start the polling loop.  Returns ``False`` if it was already running."""
        if self.is_running:
            return False
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="request-processor")
        return True

    async def stop(self) -> None:
        """Stop polling, letting an in-flight tick finish first."""
        if self._task is None:
            return
        self._stopping.set()
        task, self._task = self._task, None
        try:
            await task
        finally:
            self._release_outstanding()

    async def _run(self) -> None:
        logger.info(
            "Request processor started (interval %.1fs)", self._config.tick_interval_seconds
        )
        while not self._stopping.is_set():
            await self.tick()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    self._stopping.wait(), timeout=self._config.tick_interval_seconds
                )
        logger.info("Request processor stopped")

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> TickReport:
        """Run one reconciliation pass.  Never raises."""
        report = TickReport(started_at=self._store.clock.now())
        if self._in_flight:
            logger.debug("Tick skipped: previous tick still running")
            report.skipped = True
            return report

        self._in_flight = True
        try:
            await self._run_tick(report)
        except Exception as exc:
            report.error = str(exc) or type(exc).__name__
            logger.exception("Request processor tick failed")
            await self._publish(EventType.TICK_FAILED, error=report.error)
        finally:
            self._release_outstanding()
            self._in_flight = False

        self.last_report = report
        return report

    async def _run_tick(self, report: TickReport) -> None:
        now = report.started_at
        started = time.monotonic()
        report.holds_released = self._store.release_expired_holds(now)
        for request_id in report.holds_released:
            await self._publish(EventType.HOLD_EXPIRED, request_id=request_id)

        try:
            slots = await asyncio.wait_for(
                self._agent.get_available_slots(),
                timeout=self._config.agent_timeout_seconds,
            )
        except Exception as exc:
            report.error = f"slot query failed: {str(exc) or type(exc).__name__}"
            logger.warning("Playout agent unavailable: %s", report.error)
            await self._publish(EventType.TICK_FAILED, error=report.error)
            return

        report.slots = len(slots)
        pool: list[PlayoutSlot] = list(slots)
        if pool:
            await self._fill_slots(report, pool)

        for request_id in report.delivered:
            await self._publish(EventType.REQUEST_DELIVERED, request_id=request_id)
        await self._publish(
            EventType.TICK_COMPLETED,
            idle=not (report.delivered or report.failed),
            delivered=len(report.delivered),
            failed=len(report.failed),
            remaining_slots=len(pool),
            duration_seconds=round(time.monotonic() - started, 4),
        )

    async def _fill_slots(self, report: TickReport, pool: list[PlayoutSlot]) -> None:
        """Deliver eligible requests into *pool*, consuming a slot per success."""
        eligible = self._store.get_eligible_for_auto_process(report.started_at)
        report.eligible = len(eligible)
        for request in eligible:
            if not pool:
                break
            if not self._store.claim_for_processing(request.id):
                report.conflicts.append(request.id)
                continue
            self._claimed.add(request.id)

            slot = pool[0]
            if await self._deliver(request, slot):
                pool.pop(0)
                self._commit(request, report)
                continue

            self._store.release_claim(request.id)
            self._claimed.discard(request.id)
            report.failed.append(request.id)
            await self._publish(
                EventType.DELIVERY_FAILED, request_id=request.id, track_guid=request.track_guid
            )
            if self._config.abort_on_failure:
                logger.info("Ending tick early after failed delivery of %s", request.id)
                break
            pool.pop(0)

    async def _deliver(self, request: SongRequest, slot: PlayoutSlot) -> bool:
        try:
            ok = await asyncio.wait_for(
                self._agent.deliver(slot, request.track_guid, request.requester_label),
                timeout=self._config.agent_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "Delivery of request %s timed out after %.1fs",
                request.id,
                self._config.agent_timeout_seconds,
            )
            return False
        except Exception as exc:
            logger.warning("Delivery of request %s failed: %s", request.id, exc)
            return False
        if not ok:
            logger.warning("Playout agent rejected request %s", request.id)
        return bool(ok)

    def _commit(self, request: SongRequest, report: TickReport) -> None:
        committed = self._store.commit_processed(request.id)
        self._claimed.discard(request.id)
        if not committed:
            # Deleted by an admin while the delivery was in flight.
            logger.warning("Request %s changed state during delivery; not committed", request.id)
            return
        report.delivered.append(request.id)
        logger.info(
            "Delivered request %s (track %s) for %r",
            request.id,
            request.track_guid,
            request.requested_by,
        )

    def _release_outstanding(self) -> None:
        for request_id in list(self._claimed):
            if self._store.release_claim(request_id):
                logger.warning("Released interrupted claim on request %s", request_id)
        self._claimed.clear()

    async def _publish(self, event_type: EventType, **payload: object) -> None:
        await self._event_bus.publish(Event(event_type, dict(payload)))
