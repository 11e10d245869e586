"""API route definitions, kept apart from the app factory for testability."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, Response, status

from requestdesk import __version__
from requestdesk.api.schemas import (
    ActionResponse,
    BlockedClientCreate,
    BlockedClientList,
    BlockedClientResponse,
    HealthResponse,
    PublicRequestResponse,
    RequestBuckets,
    RequestListResponse,
    SettingsResponse,
    StatsResponse,
    SubmitResponse,
    TrackRequestCreate,
)
from requestdesk.core.desk import RequestDesk  # noqa: TC001
from requestdesk.core.errors import InvalidTransitionError, RequestNotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable

router = APIRouter()

_start_time: float = time.monotonic()


def get_desk(request: Request) -> RequestDesk:
    return request.app.state.desk


def resolve_client_ip(request: Request, trust_forwarded_for: bool = False) -> str | None:
    """First ``X-Forwarded-For`` hop when trusted, else the socket peer."""
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return None


def _apply_admin_action(
    desk: RequestDesk, request_id: str, action: Callable[[str], bool], verb: str
) -> ActionResponse:
    current = desk.store.get(request_id)
    if current is None:
        raise RequestNotFoundError(f"Request {request_id} not found")
    if not action(request_id):
        raise InvalidTransitionError(
            f"Cannot {verb} a request that is {current.status.value}"
        )
    return ActionResponse()


# ------------------------------------------------------------------
# Health & settings
# ------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, tags=["ops"])
async def health(desk: RequestDesk = Depends(get_desk)) -> HealthResponse:
    return HealthResponse(
        version=__version__,
        uptime_seconds=round(time.monotonic() - _start_time, 2),
        processor_running=desk.processor.is_running,
    )


@router.get("/metrics", tags=["ops"])
async def metrics(desk: RequestDesk = Depends(get_desk)) -> Response:
    return Response(content=desk.metrics.export(), media_type="text/plain; version=0.0.4")


@router.get("/api/settings", response_model=SettingsResponse, tags=["listener"])
async def settings(desk: RequestDesk = Depends(get_desk)) -> SettingsResponse:
    config = desk.config
    return SettingsResponse(
        max_message_length=config.max_message_length,
        cooldown_hours=config.cooldown_hours,
        max_requests_per_hour=config.max_requests_per_hour,
        max_requests_per_day=config.max_requests_per_day,
    )


# ------------------------------------------------------------------
# Listener submission
# ------------------------------------------------------------------


@router.post(
    "/api/requestTrack",
    response_model=SubmitResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["listener"],
)
async def request_track(
    body: TrackRequestCreate, request: Request, desk: RequestDesk = Depends(get_desk)
) -> SubmitResponse:
    """Submit a song request.  Rejections are rendered by the app's exception handlers."""
    ip_address = resolve_client_ip(request, desk.config.trust_forwarded_for)
    created = desk.intake.submit(body.track_guid, body.requested_by, body.message, ip_address)
    return SubmitResponse(
        request=PublicRequestResponse(
            id=created.id,
            track_guid=created.track_guid,
            status=created.status.value,
            requested_at=created.requested_at,
        )
    )


# ------------------------------------------------------------------
# Admin moderation
# ------------------------------------------------------------------


@router.get("/api/requests", response_model=RequestListResponse, tags=["admin"])
async def list_requests(desk: RequestDesk = Depends(get_desk)) -> RequestListResponse:
    return RequestListResponse(data=RequestBuckets.from_buckets(desk.store.list_by_status_bucket()))


@router.post("/api/requests/{request_id}/hold", response_model=ActionResponse, tags=["admin"])
async def hold_request(request_id: str, desk: RequestDesk = Depends(get_desk)) -> ActionResponse:
    return _apply_admin_action(desk, request_id, desk.store.hold_request, "hold")


@router.post("/api/requests/{request_id}/unhold", response_model=ActionResponse, tags=["admin"])
async def unhold_request(request_id: str, desk: RequestDesk = Depends(get_desk)) -> ActionResponse:
    return _apply_admin_action(desk, request_id, desk.store.unhold_request, "unhold")


@router.post("/api/requests/{request_id}/process", response_model=ActionResponse, tags=["admin"])
async def process_request(request_id: str, desk: RequestDesk = Depends(get_desk)) -> ActionResponse:
    return _apply_admin_action(desk, request_id, desk.store.force_process_now, "process")


@router.delete("/api/requests/{request_id}", response_model=ActionResponse, tags=["admin"])
async def delete_request(request_id: str, desk: RequestDesk = Depends(get_desk)) -> ActionResponse:
    return _apply_admin_action(desk, request_id, desk.store.delete_request, "delete")


@router.get("/api/stats", response_model=StatsResponse, tags=["admin"])
async def stats(desk: RequestDesk = Depends(get_desk)) -> StatsResponse:
    counts = desk.store.count_by_status()
    report = desk.processor.last_report
    return StatsResponse(
        total_requests=sum(counts.values()),
        pending=counts["pending"],
        held=counts["held"],
        processing=counts["processing"],
        processed=counts["processed"],
        deleted=counts["deleted"],
        last_tick_at=report.started_at if report else None,
        last_tick_delivered=len(report.delivered) if report else 0,
    )


# ------------------------------------------------------------------
# Blocked clients
# ------------------------------------------------------------------


@router.get("/api/admin/blocked-ips", response_model=BlockedClientList, tags=["admin"])
async def list_blocked(desk: RequestDesk = Depends(get_desk)) -> BlockedClientList:
    return BlockedClientList(
        items=[BlockedClientResponse.from_entry(e) for e in desk.blocklist.list()]
    )


@router.post(
    "/api/admin/blocked-ips",
    response_model=BlockedClientResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["admin"],
)
async def block_client(
    body: BlockedClientCreate, request: Request, desk: RequestDesk = Depends(get_desk)
) -> BlockedClientResponse:
    entry = desk.blocklist.add(
        body.ip,
        reason=body.reason,
        added_by=resolve_client_ip(request, desk.config.trust_forwarded_for),
    )
    return BlockedClientResponse.from_entry(entry)


@router.delete("/api/admin/blocked-ips/{ip}", response_model=ActionResponse, tags=["admin"])
async def unblock_client(ip: str, desk: RequestDesk = Depends(get_desk)) -> ActionResponse:
    if not desk.blocklist.remove(ip):
        raise RequestNotFoundError(f"{ip} is not blocked")
    return ActionResponse()
