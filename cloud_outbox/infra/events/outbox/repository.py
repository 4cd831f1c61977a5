"""Repository for the outbox store.

Provides methods for:
- Enqueueing events inside a producer's transaction
- Claiming due events atomically for one dispatcher, and renewing a claim
  when its publish starts
- Recording publish outcomes (published, retry, dead letter)
- Releasing claims left behind by a crashed dispatcher
- Operator inspection and replay of dead-lettered events
- Deleting old published events

Every write is one SQL statement. Status changes are guarded by the
expected current status in the WHERE clause, so a late or duplicate
acknowledgement can never move an event backwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import case, delete, func, literal, select, update

from cloud_outbox.core.database.base import generate_uuid7, utcnow
from cloud_outbox.core.database.exceptions import InvalidTransitionError, NotFoundError
from cloud_outbox.core.database.repository import BaseRepository
from cloud_outbox.core.database.transaction import require_transaction, resolve_handle
from cloud_outbox.core.database.types import UTCDateTime
from cloud_outbox.infra.events.outbox.models import EventOutbox, OutboxStatus, truncate_error
from cloud_outbox.infra.metrics.prometheus import outbox_events_enqueued_total

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable, Sequence
    from datetime import datetime, timedelta

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

    from cloud_outbox.core.database.transaction import TransactionContext


@dataclass(frozen=True, slots=True)
class RetryOutcome:
    """Result of recording a failed publish attempt.

    Attributes:
        event_id: The event that failed
        retry_count: Failed attempts after this one
        dead_lettered: True when the event moved to failed
        available_at: When the event becomes claimable again (unchanged when dead-lettered)
    """

    event_id: uuid.UUID
    retry_count: int
    dead_lettered: bool
    available_at: datetime


class OutboxRepository(BaseRepository[EventOutbox]):
    """Outbox store operations on top of the generic CRUD repository."""

    def __init__(self) -> None:
        super().__init__(EventOutbox)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(self, ctx: TransactionContext, event: EventOutbox) -> EventOutbox:
        """Insert a new pending event into the caller's transaction.

        ``id``, ``created_at`` and ``available_at`` are generated when the
        caller left them unset; status and bookkeeping fields are always
        reset to a fresh pending event.

        Args:
            ctx: Context carrying the producer's active transaction
            event: Unsaved event row

        Returns:
            The event, flushed (visible to later statements of the same
            transaction, durable only once the caller commits).

        Raises:
            NoActiveTransactionError: If ``ctx`` carries no active transaction.
        """
        session = require_transaction(ctx, "enqueue")
        now = utcnow()

        if event.id is None:
            event.id = generate_uuid7()
        if event.created_at is None:
            event.created_at = now
        if event.available_at is None:
            event.available_at = event.created_at
        event.status = OutboxStatus.PENDING
        event.retry_count = 0
        event.last_error = None
        event.claimed_at = None
        event.published_at = None
        event.updated_at = now

        session.add(event)
        await session.flush()

        outbox_events_enqueued_total.labels(topic=event.topic, event_type=event.event_type).inc()
        self._lazy.debug(
            lambda: f"outbox.enqueue: {event.event_type} on {event.topic} (id={event.id})"
        )
        return event

    # ------------------------------------------------------------------
    # Dispatcher side
    # ------------------------------------------------------------------

    async def claim_batch(
        self,
        ctx: TransactionContext,
        limit: int,
        *,
        now: datetime | None = None,
    ) -> list[EventOutbox]:
        """Atomically claim up to ``limit`` due pending events.

        Selection and the pending -> processing transition are one
        ``UPDATE ... WHERE id IN (SELECT ... FOR UPDATE SKIP LOCKED)
        RETURNING`` statement. Concurrent dispatchers skip each other's
        locked rows on PostgreSQL; on SQLite the statement holds the write
        lock. Either way no event lands in two claims.

        Args:
            ctx: Transaction context (normally without an active transaction)
            limit: Maximum number of events to claim
            now: Claim time; defaults to the current UTC time

        Returns:
            Claimed events, oldest ``created_at`` first.
        """
        if limit <= 0:
            return []
        now = now or utcnow()

        due = (
            select(EventOutbox.id)
            .where(
                EventOutbox.status == OutboxStatus.PENDING,
                EventOutbox.available_at <= now,
            )
            .order_by(EventOutbox.created_at.asc(), EventOutbox.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(EventOutbox)
            .where(
                EventOutbox.id.in_(due),
                # Re-checked on the locked row
                EventOutbox.status == OutboxStatus.PENDING,
            )
            .values(status=OutboxStatus.PROCESSING, claimed_at=now, updated_at=now)
            .returning(EventOutbox)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)
            events = list(result.scalars().all())

        # RETURNING order is unspecified
        events.sort(key=lambda e: (e.created_at, e.id))
        self._lazy.debug(lambda: f"outbox.claim_batch: limit={limit} -> {len(events)} claimed")
        return events

    async def renew_claim(
        self,
        ctx: TransactionContext,
        event_id: uuid.UUID,
        claimed_at: datetime,
        *,
        now: datetime | None = None,
    ) -> datetime | None:
        """Re-stamp ``claimed_at`` as the publish of a claimed event starts.

        Events of one batch wait for a publish slot after the claim, so the
        stale threshold must count from the moment the publish begins. The
        update only matches the claim taken at ``claimed_at``; a claim that
        was released (and possibly re-claimed elsewhere) is left alone.

        Returns:
            The new claim time, or None when the claim is no longer held.
        """
        now = now or utcnow()
        stmt = (
            update(EventOutbox)
            .where(
                EventOutbox.id == event_id,
                EventOutbox.status == OutboxStatus.PROCESSING,
                EventOutbox.claimed_at == claimed_at,
            )
            .values(claimed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)
        return now if result.rowcount else None

    async def mark_published(
        self,
        ctx: TransactionContext,
        event_id: uuid.UUID,
        *,
        claimed_at: datetime | None = None,
        now: datetime | None = None,
    ) -> None:
        """Transition ``processing -> published`` and stamp ``published_at``.

        With ``claimed_at`` the update only applies to that claim, so a
        dispatcher whose claim was released cannot acknowledge another's.

        Raises:
            InvalidTransitionError: If the event is not currently processing
                under the given claim (e.g., a duplicate acknowledgement).
            NotFoundError: If the event does not exist.
        """
        now = now or utcnow()
        stmt = (
            update(EventOutbox)
            .where(*self._claim_criteria(event_id, claimed_at))
            .values(
                status=OutboxStatus.PUBLISHED,
                published_at=now,
                claimed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await self._reject_transition(
                    session, event_id, expected=OutboxStatus.PROCESSING, target=OutboxStatus.PUBLISHED
                )

    async def mark_failed(
        self,
        ctx: TransactionContext,
        event_id: uuid.UUID,
        error: str,
        *,
        max_retries: int,
        retry_delay: timedelta,
        claimed_at: datetime | None = None,
        now: datetime | None = None,
    ) -> RetryOutcome:
        """Record a failed publish attempt.

        Increments ``retry_count`` and stores ``error`` (truncated). When the
        new count reaches ``max_retries`` the event is dead-lettered
        (``failed``); otherwise it returns to ``pending`` and becomes
        claimable again after ``retry_delay``. Increment and status decision
        are one conditional UPDATE.

        Args:
            ctx: Transaction context
            event_id: Event that failed to publish
            error: Diagnostic message from the failure
            max_retries: Attempts after which the event is dead-lettered
            retry_delay: Backoff before the next attempt
            claimed_at: Claim the failure belongs to; when given, a claim
                taken by another dispatcher is not touched
            now: Failure time; defaults to the current UTC time

        Returns:
            RetryOutcome describing where the event went.

        Raises:
            InvalidTransitionError: If the event is not currently processing
                under the given claim.
            NotFoundError: If the event does not exist.
        """
        now = now or utcnow()
        attempts = EventOutbox.retry_count + 1
        exhausted = attempts >= max_retries

        stmt = (
            update(EventOutbox)
            .where(*self._claim_criteria(event_id, claimed_at))
            .values(
                retry_count=attempts,
                last_error=truncate_error(error),
                status=case(
                    (exhausted, literal(OutboxStatus.FAILED.value)),
                    else_=literal(OutboxStatus.PENDING.value),
                ),
                available_at=case(
                    (exhausted, EventOutbox.available_at),
                    else_=literal(now + retry_delay, UTCDateTime()),
                ),
                claimed_at=None,
                updated_at=now,
            )
            .returning(EventOutbox.status, EventOutbox.retry_count, EventOutbox.available_at)
            .execution_options(synchronize_session=False)
        )

        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)
            row = result.one_or_none()
            if row is None:
                await self._reject_transition(
                    session, event_id, expected=OutboxStatus.PROCESSING, target=OutboxStatus.PENDING
                )

        status, retry_count, available_at = row  # type: ignore[misc]
        return RetryOutcome(
            event_id=event_id,
            retry_count=retry_count,
            dead_lettered=OutboxStatus(status) is OutboxStatus.FAILED,
            available_at=available_at,
        )

    async def release_stale_processing(
        self,
        ctx: TransactionContext,
        stale_after: timedelta,
        *,
        now: datetime | None = None,
    ) -> int:
        """Return events stuck in ``processing`` to ``pending``.

        An event claimed longer than ``stale_after`` ago belongs to a
        dispatcher that died or hung between claim and acknowledgement. It
        becomes claimable immediately; its ``retry_count`` is unchanged
        because no publish failure was observed.

        Returns:
            Number of events released.
        """
        now = now or utcnow()
        stmt = (
            update(EventOutbox)
            .where(
                EventOutbox.status == OutboxStatus.PROCESSING,
                EventOutbox.claimed_at < now - stale_after,
            )
            .values(status=OutboxStatus.PENDING, claimed_at=None, available_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)

        released = result.rowcount or 0
        if released:
            self._logger.warning(
                "Released stale outbox claims",
                extra={"released": released, "stale_after_seconds": stale_after.total_seconds()},
            )
        return released

    # ------------------------------------------------------------------
    # Operator side
    # ------------------------------------------------------------------

    async def list_failed(self, ctx: TransactionContext, limit: int = 100) -> Sequence[EventOutbox]:
        """Dead-lettered events, newest first."""
        stmt = (
            select(EventOutbox)
            .where(EventOutbox.status == OutboxStatus.FAILED)
            .order_by(EventOutbox.created_at.desc())
            .limit(limit)
        )
        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)
            return result.scalars().all()

    async def replay_failed(
        self,
        ctx: TransactionContext,
        ids: Iterable[uuid.UUID] | None = None,
        *,
        now: datetime | None = None,
    ) -> int:
        """Reset dead-lettered events to ``pending`` for another round.

        The event keeps its id, so consumers still dedupe a replay against
        any earlier partial delivery. ``retry_count`` restarts at zero to
        give the event a full retry budget; ``last_error`` is kept until the
        next attempt overwrites it.

        Args:
            ctx: Transaction context
            ids: Events to replay; None replays every failed event
            now: Replay time; defaults to the current UTC time

        Returns:
            Number of events reset. Ids that are not failed are ignored.
        """
        now = now or utcnow()
        stmt = update(EventOutbox).where(EventOutbox.status == OutboxStatus.FAILED)
        if ids is not None:
            id_list = list(ids)
            if not id_list:
                return 0
            stmt = stmt.where(EventOutbox.id.in_(id_list))
        stmt = stmt.values(
            status=OutboxStatus.PENDING,
            retry_count=0,
            available_at=now,
            claimed_at=None,
            updated_at=now,
        ).execution_options(synchronize_session=False)

        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)

        replayed = result.rowcount or 0
        self._logger.info("Replayed failed outbox events", extra={"replayed": replayed})
        return replayed

    async def count_by_status(self, ctx: TransactionContext) -> dict[OutboxStatus, int]:
        """Row count per status; statuses without rows report zero."""
        stmt = select(EventOutbox.status, func.count()).group_by(EventOutbox.status)
        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)
            rows = result.all()

        counts = dict.fromkeys(OutboxStatus, 0)
        for status, count in rows:
            counts[OutboxStatus(status)] = int(count)
        return counts

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def delete_older_than(self, ctx: TransactionContext, cutoff: datetime) -> int:
        """Delete published events with ``published_at`` before ``cutoff``.

        Pending, processing and failed events are never touched,
        whatever their age.

        Returns:
            Number of events deleted.
        """
        stmt = (
            delete(EventOutbox)
            .where(
                EventOutbox.status == OutboxStatus.PUBLISHED,
                EventOutbox.published_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)
        return result.rowcount or 0

    # ------------------------------------------------------------------

    @staticmethod
    def _claim_criteria(event_id: uuid.UUID, claimed_at: datetime | None) -> list[ColumnElement[bool]]:
        criteria = [EventOutbox.id == event_id, EventOutbox.status == OutboxStatus.PROCESSING]
        if claimed_at is not None:
            criteria.append(EventOutbox.claimed_at == claimed_at)
        return criteria

    async def _reject_transition(
        self,
        session: AsyncSession,
        event_id: uuid.UUID,
        *,
        expected: OutboxStatus,
        target: OutboxStatus,
    ) -> None:
        current = await session.scalar(select(EventOutbox.status).where(EventOutbox.id == event_id))
        if current is None:
            raise NotFoundError(self.model.__name__, {"id": event_id})
        self._logger.warning(
            "Rejected outbox status transition",
            extra={
                "event_id": str(event_id),
                "current": OutboxStatus(current).value,
                "expected": expected.value,
                "target": target.value,
            },
        )
        raise InvalidTransitionError(
            self.model.__name__, event_id, expected=expected.value, target=target.value
        )


__all__ = ["OutboxRepository", "RetryOutcome"]
