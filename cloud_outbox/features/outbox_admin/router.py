"""Operator endpoints for the transactional outbox.

Endpoints:
    GET  /admin/outbox/failed                    - List dead-lettered events
    POST /admin/outbox/replay                    - Replay failed events (all or by id)
    POST /admin/outbox/failed/{event_id}/replay  - Replay one failed event
    GET  /admin/outbox/stats                     - Row counts per status
    POST /admin/outbox/release-stale             - Release stuck claims now
    POST /admin/outbox/sweep                     - Run the retention sweep now

Replay keeps the event id, so consumers still deduplicate against any
earlier partial delivery.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from cloud_outbox.core.database import TransactionContext
from cloud_outbox.core.exceptions import ConflictException
from cloud_outbox.core.settings import OutboxSettings
from cloud_outbox.features.outbox_admin.dependencies import get_ctx, get_outbox_repository, get_settings
from cloud_outbox.features.outbox_admin.schemas import (
    FailedEventListResponse,
    OutboxEventResponse,
    OutboxStatsResponse,
    ReleaseStaleResponse,
    ReplayRequest,
    ReplayResponse,
    SweepResponse,
)
from cloud_outbox.infra.events.outbox.dispatcher import get_outbox_dispatcher
from cloud_outbox.infra.events.outbox.models import OutboxStatus
from cloud_outbox.infra.events.outbox.repository import OutboxRepository
from cloud_outbox.infra.events.outbox.sweeper import RetentionSweeper, get_retention_sweeper
from cloud_outbox.infra.metrics.prometheus import (
    outbox_events_by_status,
    outbox_events_replayed_total,
    outbox_stale_released_total,
)

router = APIRouter(prefix="/admin/outbox", tags=["outbox-admin"])
logger = logging.getLogger(__name__)

CtxDep = Annotated[TransactionContext, Depends(get_ctx)]
RepoDep = Annotated[OutboxRepository, Depends(get_outbox_repository)]
SettingsDep = Annotated[OutboxSettings, Depends(get_settings)]


@router.get(
    "/failed",
    response_model=FailedEventListResponse,
    summary="List dead-lettered events",
)
async def list_failed_events(
    ctx: CtxDep,
    repo: RepoDep,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> FailedEventListResponse:
    events = await repo.list_failed(ctx, limit=limit)
    items = [OutboxEventResponse.model_validate(event) for event in events]
    return FailedEventListResponse(items=items, total=len(items))


@router.post(
    "/replay",
    response_model=ReplayResponse,
    summary="Replay failed events",
    description="Reset failed events to pending with a fresh retry budget. Ids that are not failed are ignored.",
)
async def replay_failed_events(
    ctx: CtxDep,
    repo: RepoDep,
    body: ReplayRequest | None = None,
) -> ReplayResponse:
    ids = body.ids if body is not None else None
    replayed = await repo.replay_failed(ctx, ids)
    outbox_events_replayed_total.inc(replayed)
    logger.info("Operator replayed failed events", extra={"replayed": replayed, "selective": ids is not None})
    return ReplayResponse(replayed=replayed)


@router.post(
    "/failed/{event_id}/replay",
    response_model=OutboxEventResponse,
    summary="Replay one failed event",
    responses={404: {"description": "Event not found"}, 409: {"description": "Event is not failed"}},
)
async def replay_failed_event(event_id: UUID, ctx: CtxDep, repo: RepoDep) -> OutboxEventResponse:
    """Replay a single event.

    Raises:
        NotFoundError: If the event does not exist (404).
        ConflictException: If the event is not dead-lettered (409).
    """
    event = await repo.get_or_raise(ctx, event_id)
    if event.status is not OutboxStatus.FAILED:
        raise _not_failed(event_id, event.status)

    if not await repo.replay_failed(ctx, [event_id]):
        # A concurrent replay got there first
        current = await repo.get_or_raise(ctx, event_id)
        raise _not_failed(event_id, current.status)

    outbox_events_replayed_total.inc()
    replayed = await repo.get_or_raise(ctx, event_id)
    return OutboxEventResponse.model_validate(replayed)


def _not_failed(event_id: UUID, current: OutboxStatus) -> ConflictException:
    return ConflictException(
        detail=f"Event {event_id} is {current.value}, only failed events can be replayed",
        type="outbox-event-not-failed",
        extra={"event_id": str(event_id), "current_status": current.value},
    )


@router.get(
    "/stats",
    response_model=OutboxStatsResponse,
    summary="Outbox row counts per status",
)
async def outbox_stats(ctx: CtxDep, repo: RepoDep) -> OutboxStatsResponse:
    counts = await repo.count_by_status(ctx)
    for outbox_status, count in counts.items():
        outbox_events_by_status.labels(status=outbox_status.value).set(count)

    dispatcher = get_outbox_dispatcher()
    sweeper = get_retention_sweeper()
    return OutboxStatsResponse(
        counts=counts,
        total=sum(counts.values()),
        dispatcher_running=dispatcher is not None and dispatcher.running,
        sweeper_running=sweeper is not None and sweeper.running,
    )


@router.post(
    "/release-stale",
    response_model=ReleaseStaleResponse,
    summary="Release stuck claims",
)
async def release_stale_claims(
    ctx: CtxDep,
    repo: RepoDep,
    settings: SettingsDep,
    stale_after_seconds: Annotated[float | None, Query(gt=0)] = None,
) -> ReleaseStaleResponse:
    """Return processing events claimed longer than the threshold to pending."""
    stale_after = stale_after_seconds if stale_after_seconds is not None else settings.stale_after
    released = await repo.release_stale_processing(ctx, timedelta(seconds=stale_after))
    outbox_stale_released_total.inc(released)
    return ReleaseStaleResponse(released=released, stale_after_seconds=stale_after)


@router.post(
    "/sweep",
    response_model=SweepResponse,
    status_code=status.HTTP_200_OK,
    summary="Run the retention sweep now",
)
async def sweep_published_events(
    ctx: CtxDep,
    repo: RepoDep,
    settings: SettingsDep,
    retention_days: Annotated[float | None, Query(gt=0)] = None,
) -> SweepResponse:
    days = retention_days if retention_days is not None else float(settings.retention_days)
    sweeper = RetentionSweeper(ctx, retention=timedelta(days=days), repository=repo, settings=settings)
    deleted = await sweeper.sweep()
    return SweepResponse(deleted=deleted, retention_days=days)


__all__ = ["router"]
