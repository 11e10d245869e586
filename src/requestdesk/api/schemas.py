"""Pydantic schemas for request / response serialisation.

Field aliases keep the camelCase wire format the listener and admin
clients already speak.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from requestdesk.core.blocklist import BlockedClient
    from requestdesk.core.models import SongRequest, StatusBuckets


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TrackRequestCreate(CamelModel):
    """Listener submission.  Blank and over-length values are checked by the intake."""

    track_guid: str | None = Field(default=None, alias="trackGuid")
    requested_by: str | None = Field(default=None, alias="requestedBy")
    message: str | None = None


class SongRequestResponse(CamelModel):
    id: str
    track_guid: str = Field(alias="trackGuid")
    requested_by: str = Field(alias="requestedBy")
    message: str | None = None
    ip_address: str | None = Field(default=None, alias="ipAddress")
    requested_at: datetime = Field(alias="requestedAt")
    processed_at: datetime | None = Field(default=None, alias="processedAt")
    status: str
    auto_process_at: datetime = Field(alias="autoProcessAt")
    hold_expires_at: datetime | None = Field(default=None, alias="holdExpiresAt")

    @classmethod
    def from_request(cls, request: SongRequest) -> SongRequestResponse:
        return cls(
            id=request.id,
            track_guid=request.track_guid,
            requested_by=request.requested_by,
            message=request.message,
            ip_address=request.ip_address,
            requested_at=request.requested_at,
            processed_at=request.processed_at,
            status=request.status.value,
            auto_process_at=request.auto_process_at,
            hold_expires_at=request.hold_expires_at,
        )


class PublicRequestResponse(CamelModel):
    """What the submitting listener gets back (no client address)."""

    id: str
    track_guid: str = Field(alias="trackGuid")
    status: str
    requested_at: datetime = Field(alias="requestedAt")


class SubmitResponse(BaseModel):
    success: bool = True
    request: PublicRequestResponse


class RequestBuckets(BaseModel):
    pending: list[SongRequestResponse] = Field(default_factory=list)
    held: list[SongRequestResponse] = Field(default_factory=list)
    processing: list[SongRequestResponse] = Field(default_factory=list)
    processed: list[SongRequestResponse] = Field(default_factory=list)

    @classmethod
    def from_buckets(cls, buckets: StatusBuckets) -> RequestBuckets:
        return cls(
            pending=[SongRequestResponse.from_request(r) for r in buckets.pending],
            held=[SongRequestResponse.from_request(r) for r in buckets.held],
            processing=[SongRequestResponse.from_request(r) for r in buckets.processing],
            processed=[SongRequestResponse.from_request(r) for r in buckets.processed],
        )


class RequestListResponse(BaseModel):
    success: bool = True
    data: RequestBuckets


class ActionResponse(BaseModel):
    success: bool = True


class SettingsResponse(CamelModel):
    max_message_length: int = Field(alias="maxMessageLength")
    cooldown_hours: float = Field(alias="cooldownHours")
    max_requests_per_hour: int = Field(alias="maxRequestsPerHour")
    max_requests_per_day: int = Field(alias="maxRequestsPerDay")


class BlockedClientCreate(BaseModel):
    ip: str = Field(..., min_length=1, max_length=64)
    reason: str | None = Field(default=None, max_length=256)


class BlockedClientResponse(CamelModel):
    ip: str
    reason: str | None = None
    added_by: str | None = Field(default=None, alias="addedBy")
    added_at: datetime = Field(alias="addedAt")

    @classmethod
    def from_entry(cls, entry: BlockedClient) -> BlockedClientResponse:
        return cls(ip=entry.ip, reason=entry.reason, added_by=entry.added_by, added_at=entry.added_at)


class BlockedClientList(BaseModel):
    ok: bool = True
    items: list[BlockedClientResponse] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    uptime_seconds: float
    processor_running: bool


class StatsResponse(BaseModel):
    total_requests: int
    pending: int
    held: int
    processing: int
    processed: int
    deleted: int
    last_tick_at: datetime | None = None
    last_tick_delivered: int = 0
