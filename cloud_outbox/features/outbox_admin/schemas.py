"""Pydantic schemas for outbox operator endpoints."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from cloud_outbox.infra.events.outbox.models import OutboxStatus


class OutboxEventResponse(BaseModel):
    """One outbox row as shown to operators."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    topic: str
    event_type: str
    status: OutboxStatus
    retry_count: int
    last_error: str | None
    workspace_id: str | None
    correlation_id: str | None
    payload: str
    created_at: datetime
    available_at: datetime
    published_at: datetime | None


class FailedEventListResponse(BaseModel):
    items: list[OutboxEventResponse]
    total: int = Field(description="Number of items returned")


class ReplayRequest(BaseModel):
    """Which dead-lettered events to replay."""

    ids: list[UUID] | None = Field(
        default=None,
        description="Event ids to replay; omit to replay every failed event",
    )


class ReplayResponse(BaseModel):
    replayed: int


class ReleaseStaleResponse(BaseModel):
    released: int
    stale_after_seconds: float


class SweepResponse(BaseModel):
    deleted: int
    retention_days: float


class OutboxStatsResponse(BaseModel):
    """Row counts per status plus relay state."""

    counts: dict[OutboxStatus, int]
    total: int
    dispatcher_running: bool
    sweeper_running: bool


__all__ = [
    "FailedEventListResponse",
    "OutboxEventResponse",
    "OutboxStatsResponse",
    "ReleaseStaleResponse",
    "ReplayRequest",
    "ReplayResponse",
    "SweepResponse",
]
