"""Unit tests for domain models and the in-memory playout agent."""

from __future__ import annotations

from datetime import timedelta

import pytest

from requestdesk.agents.base import PlayoutSlot
from requestdesk.agents.memory import InMemoryPlayoutAgent
from requestdesk.core.clock import ManualClock
from requestdesk.core.errors import AgentError
from requestdesk.core.models import RequestStatus, SongRequest


def _request(clock: ManualClock, **overrides: object) -> SongRequest:
    fields: dict[str, object] = {
        "id": "req-1",
        "track_guid": "T1",
        "requested_by": "Ann",
        "requested_at": clock.now(),
        "auto_process_at": clock.now() + timedelta(minutes=5),
    }
    fields.update(overrides)
    return SongRequest(**fields)  # type: ignore[arg-type]


class TestSongRequest:
    def test_defaults(self, clock: ManualClock) -> None:
        req = _request(clock)
        assert req.status is RequestStatus.PENDING
        assert req.processed_at is None

    def test_requester_label(self, clock: ManualClock) -> None:
        assert _request(clock).requester_label == "Ann"
        assert _request(clock, message="Hi mum").requester_label == "Ann — Hi mum"

    def test_transitions(self, clock: ManualClock) -> None:
        req = _request(clock)
        assert req.can_transition_to(RequestStatus.HELD)
        assert req.can_transition_to(RequestStatus.PROCESSING)
        assert not req.can_transition_to(RequestStatus.PROCESSED)
        req.status = RequestStatus.DELETED
        assert not any(req.can_transition_to(s) for s in RequestStatus)

    def test_last_activity(self, clock: ManualClock) -> None:
        req = _request(clock)
        assert req.last_activity_at == req.requested_at
        req.processed_at = req.requested_at + timedelta(hours=1)
        assert req.last_activity_at == req.processed_at

    def test_status_serializes_as_string(self) -> None:
        assert RequestStatus("held") is RequestStatus.HELD
        assert RequestStatus.PROCESSED.value == "processed"


class TestInMemoryPlayoutAgent:
    @pytest.mark.asyncio
    async def test_successful_delivery_consumes_slot(self) -> None:
        agent = InMemoryPlayoutAgent(slots=2)
        (slot, _) = await agent.get_available_slots()

        assert await agent.deliver(slot, "T1", "Ann")
        assert agent.free_slots == 1
        assert agent.deliveries[0].track_guid == "T1"
        assert agent.slot_queries == 1

    @pytest.mark.asyncio
    async def test_scripted_outcomes(self) -> None:
        agent = InMemoryPlayoutAgent(slots=[PlayoutSlot("s1"), PlayoutSlot("s2")])
        agent.script(False, AgentError("timeout"))

        assert not await agent.deliver(PlayoutSlot("s1"), "T1", "Ann")
        with pytest.raises(AgentError):
            await agent.deliver(PlayoutSlot("s1"), "T1", "Ann")
        assert await agent.deliver(PlayoutSlot("s1"), "T1", "Ann")
        assert len(agent.attempts) == 3
        assert agent.free_slots == 1

    @pytest.mark.asyncio
    async def test_used_slot_rejected(self) -> None:
        agent = InMemoryPlayoutAgent(slots=[PlayoutSlot("s1")])
        await agent.deliver(PlayoutSlot("s1"), "T1", "Ann")
        with pytest.raises(AgentError):
            await agent.deliver(PlayoutSlot("s1"), "T2", "Bob")

    @pytest.mark.asyncio
    async def test_unavailable(self) -> None:
        agent = InMemoryPlayoutAgent()
        agent.unavailable = AgentError("offline")
        with pytest.raises(AgentError):
            await agent.get_available_slots()
