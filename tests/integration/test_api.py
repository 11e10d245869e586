"""Integration tests for the FastAPI REST API."""

from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from requestdesk.agents.memory import InMemoryPlayoutAgent
from requestdesk.api.app import create_app
from requestdesk.core.clock import ManualClock
from requestdesk.core.config import RequestDeskConfig
from requestdesk.core.models import RequestStatus
from requestdesk.storage.memory import InMemoryRequestRepository


@pytest.fixture()
def agent() -> InMemoryPlayoutAgent:
    return InMemoryPlayoutAgent()


@pytest.fixture()
def app(clock: ManualClock, agent: InMemoryPlayoutAgent):
    return create_app(
        config=RequestDeskConfig(tick_interval_seconds=60, trust_forwarded_for=True),
        agent=agent,
        repository=InMemoryRequestRepository(),
        clock=clock,
    )


@pytest.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c


async def _submit(client: AsyncClient, track: str = "T1", ip: str = "1.2.3.4", **body: object):
    payload = {"trackGuid": track, "requestedBy": "Ann", **body}
    return await client.post(
        "/api/requestTrack", json=payload, headers={"X-Forwarded-For": f"{ip}, 10.0.0.1"}
    )


class TestHealthAndSettings:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["processor_running"] is True
        assert "version" in data

    @pytest.mark.asyncio
    async def test_settings(self, client: AsyncClient) -> None:
        resp = await client.get("/api/settings")
        assert resp.status_code == 200
        assert resp.json() == {
            "maxMessageLength": 150,
            "cooldownHours": 4.0,
            "maxRequestsPerHour": 4,
            "maxRequestsPerDay": 12,
        }

    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient) -> None:
        await _submit(client)
        resp = await client.get("/metrics")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert 'requestdesk_requests{status="pending"} 1' in resp.text


class TestSubmission:
    @pytest.mark.asyncio
    async def test_submit(self, client: AsyncClient, app, clock: ManualClock) -> None:
        resp = await _submit(client, message="Happy birthday")
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["request"]["trackGuid"] == "T1"
        assert body["request"]["status"] == "pending"
        assert "ipAddress" not in body["request"]

        stored = app.state.desk.store.get(body["request"]["id"])
        assert stored.ip_address == "1.2.3.4"
        assert stored.message == "Happy birthday"
        assert stored.auto_process_at == clock.now() + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_missing_fields(self, client: AsyncClient) -> None:
        resp = await client.post("/api/requestTrack", json={"requestedBy": "Ann"})
        assert resp.status_code == 400
        assert resp.json() == {
            "success": False,
            "error": "VALIDATION_FAILED",
            "message": "trackGuid is required",
        }

    @pytest.mark.asyncio
    async def test_message_too_long(self, client: AsyncClient) -> None:
        resp = await _submit(client, message="x" * 151)
        assert resp.status_code == 400
        assert resp.json()["message"] == "message must be at most 150 characters"

    @pytest.mark.asyncio
    async def test_cooldown(self, client: AsyncClient, clock: ManualClock) -> None:
        first = await _submit(client, ip="1.1.1.1")
        requested_at = clock.now()
        assert first.status_code == 201

        resp = await _submit(client, ip="2.2.2.2")
        assert resp.status_code == 429
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "COOLDOWN_ACTIVE"
        assert body["cooldownHours"] == 4
        assert body["nextAllowedAt"] == (requested_at + timedelta(hours=4)).isoformat()

    @pytest.mark.asyncio
    async def test_rate_limit(self, client: AsyncClient, clock: ManualClock) -> None:
        first_at = clock.now()
        for i in range(4):
            assert (await _submit(client, track=f"T{i}")).status_code == 201
            clock.advance(minutes=1)

        resp = await _submit(client, track="T9")
        assert resp.status_code == 429
        body = resp.json()
        assert body["error"] == "TOO_MANY_REQUESTS"
        assert body["window"] == "hour"
        assert body["limit"] == 4
        assert body["nextAllowedAt"] == (first_at + timedelta(hours=1)).isoformat()

        other = await _submit(client, track="T9", ip="5.6.7.8")
        assert other.status_code == 201

    @pytest.mark.asyncio
    async def test_blocked_client(self, client: AsyncClient) -> None:
        resp = await client.post("/api/admin/blocked-ips", json={"ip": "6.6.6.6"})
        assert resp.status_code == 201

        resp = await _submit(client, ip="6.6.6.6")
        assert resp.status_code == 403
        assert resp.json()["error"] == "CLIENT_BLOCKED"


class TestModeration:
    @pytest.mark.asyncio
    async def test_list_buckets(self, client: AsyncClient) -> None:
        held_id = (await _submit(client, track="T1")).json()["request"]["id"]
        await _submit(client, track="T2")
        await client.post(f"/api/requests/{held_id}/hold")

        resp = await client.get("/api/requests")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert [r["trackGuid"] for r in data["pending"]] == ["T2"]
        assert [r["id"] for r in data["held"]] == [held_id]
        assert data["held"][0]["holdExpiresAt"] is not None
        assert data["held"][0]["ipAddress"] == "1.2.3.4"
        assert data["processing"] == []
        assert data["processed"] == []

    @pytest.mark.asyncio
    async def test_hold_unhold_delete(self, client: AsyncClient, app) -> None:
        request_id = (await _submit(client)).json()["request"]["id"]
        store = app.state.desk.store

        assert (await client.post(f"/api/requests/{request_id}/hold")).json() == {"success": True}
        assert store.get(request_id).status is RequestStatus.HELD

        resp = await client.post(f"/api/requests/{request_id}/hold")
        assert resp.status_code == 409
        assert resp.json() == {"success": False, "message": "Cannot hold a request that is held"}

        assert (await client.post(f"/api/requests/{request_id}/unhold")).status_code == 200
        assert store.get(request_id).status is RequestStatus.PENDING

        assert (await client.delete(f"/api/requests/{request_id}")).status_code == 200
        assert (await client.delete(f"/api/requests/{request_id}")).status_code == 409
        assert store.get(request_id).status is RequestStatus.DELETED

    @pytest.mark.asyncio
    async def test_unknown_request(self, client: AsyncClient) -> None:
        for method, path in (
            ("POST", "/api/requests/nope/hold"),
            ("POST", "/api/requests/nope/unhold"),
            ("POST", "/api/requests/nope/process"),
            ("DELETE", "/api/requests/nope"),
        ):
            resp = await client.request(method, path)
            assert resp.status_code == 404
            assert resp.json()["success"] is False

    @pytest.mark.asyncio
    async def test_force_process_delivers_on_next_tick(
        self, client: AsyncClient, app, agent: InMemoryPlayoutAgent
    ) -> None:
        request_id = (await _submit(client)).json()["request"]["id"]
        assert (await client.post(f"/api/requests/{request_id}/process")).status_code == 200

        agent.add_slots(1)
        report = await app.state.desk.processor.tick()

        assert report.delivered == [request_id]
        assert agent.deliveries[0].requester_label == "Ann"
        data = (await client.get("/api/requests")).json()["data"]
        assert data["processed"][0]["processedAt"] is not None

    @pytest.mark.asyncio
    async def test_stats(self, client: AsyncClient, app, agent: InMemoryPlayoutAgent) -> None:
        first = (await _submit(client, track="T1")).json()["request"]["id"]
        second = (await _submit(client, track="T2")).json()["request"]["id"]
        await client.post(f"/api/requests/{first}/process")
        await client.delete(f"/api/requests/{second}")
        agent.add_slots(1)
        await app.state.desk.processor.tick()

        data = (await client.get("/api/stats")).json()
        assert data["total_requests"] == 2
        assert data["processed"] == 1
        assert data["deleted"] == 1
        assert data["pending"] == 0
        assert data["last_tick_delivered"] == 1
        assert data["last_tick_at"] is not None


class TestBlockedClients:
    @pytest.mark.asyncio
    async def test_crud(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/admin/blocked-ips",
            json={"ip": "6.6.6.6", "reason": "spam"},
            headers={"X-Forwarded-For": "10.0.0.9"},
        )
        assert resp.status_code == 201
        created = resp.json()
        assert created["ip"] == "6.6.6.6"
        assert created["reason"] == "spam"
        assert created["addedBy"] == "10.0.0.9"

        listing = (await client.get("/api/admin/blocked-ips")).json()
        assert listing["ok"] is True
        assert [item["ip"] for item in listing["items"]] == ["6.6.6.6"]

        assert (await client.delete("/api/admin/blocked-ips/6.6.6.6")).status_code == 200
        assert (await client.delete("/api/admin/blocked-ips/6.6.6.6")).status_code == 404
        assert (await client.get("/api/admin/blocked-ips")).json()["items"] == []

    @pytest.mark.asyncio
    async def test_empty_ip_rejected(self, client: AsyncClient) -> None:
        resp = await client.post("/api/admin/blocked-ips", json={"ip": ""})
        assert resp.status_code == 422


class TestLifespan:
    @pytest.mark.asyncio
    async def test_startup_loads_and_shutdown_flushes(self, clock: ManualClock) -> None:
        repository = InMemoryRequestRepository()
        app = create_app(
            config=RequestDeskConfig(tick_interval_seconds=60, trust_forwarded_for=True),
            agent=InMemoryPlayoutAgent(),
            repository=repository,
            clock=clock,
        )
        transport = ASGITransport(app=app)
        async with app.router.lifespan_context(app):
            async with AsyncClient(transport=transport, base_url="http://test") as c:
                assert (await _submit(c)).status_code == 201
        assert not app.state.desk.processor.is_running
        assert [r.track_guid for r in await repository.load_all()] == ["T1"]

        restarted = create_app(
            config=RequestDeskConfig(tick_interval_seconds=60, trust_forwarded_for=True),
            agent=InMemoryPlayoutAgent(),
            repository=repository,
            clock=clock,
        )
        async with restarted.router.lifespan_context(restarted):
            assert len(restarted.state.desk.store) == 1


class TestClientAddress:
    @pytest.mark.asyncio
    async def test_forwarded_header_ignored_by_default(self, clock: ManualClock) -> None:
        app = create_app(
            config=RequestDeskConfig(tick_interval_seconds=60),
            agent=InMemoryPlayoutAgent(),
            repository=InMemoryRequestRepository(),
            clock=clock,
        )
        transport = ASGITransport(app=app, client=("127.0.0.1", 5000))
        async with app.router.lifespan_context(app):
            async with AsyncClient(transport=transport, base_url="http://test") as c:
                for i in range(4):
                    resp = await _submit(c, track=f"T{i}", ip=f"9.9.9.{i}")
                    assert resp.status_code == 201
                    clock.advance(minutes=1)
                blocked = await _submit(c, track="T9", ip="9.9.9.9")

        assert blocked.status_code == 429
        assert blocked.json()["error"] == "TOO_MANY_REQUESTS"
        stored = app.state.desk.store.all()
        assert {r.ip_address for r in stored} == {"127.0.0.1"}
