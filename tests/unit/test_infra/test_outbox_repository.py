"""Tests for OutboxRepository against SQLite."""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from cloud_outbox.core.database import (
    InvalidTransitionError,
    NoActiveTransactionError,
    NotFoundError,
    resolve_handle,
    transaction,
    utcnow,
)
from cloud_outbox.infra.events.outbox.models import MAX_ERROR_LENGTH, OutboxStatus
from cloud_outbox.infra.events.outbox.repository import OutboxRepository
from tests.utils import enqueue_events, fetch_event, make_event, seed_event

# ──────────────────────────────────────────────────────────────
# Enqueue
# ──────────────────────────────────────────────────────────────


class TestEnqueue:
    """Tests for OutboxRepository.enqueue."""

    async def test_enqueue_creates_pending_event(self, ctx, outbox_repository):
        async with transaction(ctx) as tx:
            event = await outbox_repository.enqueue(tx, make_event(workspace_id="ws-1"))

        stored = await fetch_event(ctx, event.id)
        assert stored.status is OutboxStatus.PENDING
        assert stored.retry_count == 0
        assert stored.last_error is None
        assert stored.published_at is None
        assert stored.workspace_id == "ws-1"
        assert stored.available_at == stored.created_at

    async def test_enqueue_generates_time_ordered_ids(self, ctx, outbox_repository):
        async with transaction(ctx) as tx:
            first = await outbox_repository.enqueue(tx, make_event())
            await asyncio.sleep(0.002)
            second = await outbox_repository.enqueue(tx, make_event())

        assert first.id.version == 7
        assert first.id != second.id
        assert first.id < second.id

    async def test_enqueue_keeps_caller_supplied_id(self, ctx, outbox_repository):
        event_id = uuid.uuid4()
        async with transaction(ctx) as tx:
            event = await outbox_repository.enqueue(tx, make_event(id=event_id))

        assert event.id == event_id

    async def test_enqueue_resets_bookkeeping(self, ctx, outbox_repository):
        async with transaction(ctx) as tx:
            event = await outbox_repository.enqueue(
                tx,
                make_event(status=OutboxStatus.PUBLISHED, retry_count=9, last_error="old"),
            )

        stored = await fetch_event(ctx, event.id)
        assert stored.status is OutboxStatus.PENDING
        assert stored.retry_count == 0
        assert stored.last_error is None

    async def test_enqueue_requires_transaction(self, ctx, outbox_repository):
        with pytest.raises(NoActiveTransactionError):
            await outbox_repository.enqueue(ctx, make_event())

        assert await outbox_repository.count(ctx) == 0

    async def test_enqueue_is_discarded_on_rollback(self, ctx, outbox_repository):
        with pytest.raises(RuntimeError):
            async with transaction(ctx) as tx:
                await outbox_repository.enqueue(tx, make_event())
                raise RuntimeError

        assert await outbox_repository.count(ctx) == 0


# ──────────────────────────────────────────────────────────────
# Claim
# ──────────────────────────────────────────────────────────────


class TestClaimBatch:
    """Tests for OutboxRepository.claim_batch."""

    async def test_claims_oldest_first_up_to_limit(self, ctx, outbox_repository):
        events = await enqueue_events(ctx, outbox_repository, 5)

        claimed = await outbox_repository.claim_batch(ctx, 3)

        assert [e.id for e in claimed] == [e.id for e in events[:3]]
        assert all(e.status is OutboxStatus.PROCESSING for e in claimed)
        assert all(e.claimed_at is not None for e in claimed)

    async def test_claimed_events_are_not_claimed_again(self, ctx, outbox_repository):
        await enqueue_events(ctx, outbox_repository, 4)

        first = await outbox_repository.claim_batch(ctx, 3)
        second = await outbox_repository.claim_batch(ctx, 3)
        third = await outbox_repository.claim_batch(ctx, 3)

        assert len(first) == 3
        assert len(second) == 1
        assert third == []
        assert not {e.id for e in first} & {e.id for e in second}

    async def test_empty_store_returns_empty_batch(self, ctx, outbox_repository):
        assert await outbox_repository.claim_batch(ctx, 10) == []

    async def test_non_positive_limit_claims_nothing(self, ctx, outbox_repository):
        await enqueue_events(ctx, outbox_repository, 2)

        assert await outbox_repository.claim_batch(ctx, 0) == []
        counts = await outbox_repository.count_by_status(ctx)
        assert counts[OutboxStatus.PENDING] == 2

    async def test_events_not_yet_available_are_skipped(self, ctx, outbox_repository):
        now = utcnow()
        due = await seed_event(ctx, available_at=now - timedelta(seconds=1))
        await seed_event(ctx, available_at=now + timedelta(minutes=5))

        claimed = await outbox_repository.claim_batch(ctx, 10, now=now)

        assert [e.id for e in claimed] == [due.id]

    @pytest.mark.parametrize(
        "status", [OutboxStatus.PROCESSING, OutboxStatus.PUBLISHED, OutboxStatus.FAILED]
    )
    async def test_only_pending_events_are_claimed(self, ctx, outbox_repository, status):
        await seed_event(ctx, status=status)

        assert await outbox_repository.claim_batch(ctx, 10) == []

    async def test_concurrent_claims_never_overlap(self, ctx, outbox_repository):
        """Many claimers racing for one pool: every event lands in exactly one claim."""
        await enqueue_events(ctx, outbox_repository, 40)

        batches = await asyncio.gather(
            *(OutboxRepository().claim_batch(ctx, 7) for _ in range(8))
        )

        claimed_ids = [e.id for batch in batches for e in batch]
        assert len(claimed_ids) == 40
        assert len(set(claimed_ids)) == 40


# ──────────────────────────────────────────────────────────────
# Outcomes
# ──────────────────────────────────────────────────────────────


class TestMarkPublished:
    """Tests for OutboxRepository.mark_published."""

    async def test_processing_to_published(self, ctx, outbox_repository):
        await enqueue_events(ctx, outbox_repository, 1)
        [event] = await outbox_repository.claim_batch(ctx, 1)

        await outbox_repository.mark_published(ctx, event.id)

        stored = await fetch_event(ctx, event.id)
        assert stored.status is OutboxStatus.PUBLISHED
        assert stored.published_at is not None
        assert stored.claimed_at is None

    async def test_second_acknowledgement_is_rejected(self, ctx, outbox_repository):
        await enqueue_events(ctx, outbox_repository, 1)
        [event] = await outbox_repository.claim_batch(ctx, 1)
        await outbox_repository.mark_published(ctx, event.id)
        published_at = (await fetch_event(ctx, event.id)).published_at

        with pytest.raises(InvalidTransitionError):
            await outbox_repository.mark_published(ctx, event.id)

        assert (await fetch_event(ctx, event.id)).published_at == published_at

    async def test_pending_event_cannot_be_published(self, ctx, outbox_repository):
        [event] = await enqueue_events(ctx, outbox_repository, 1)

        with pytest.raises(InvalidTransitionError):
            await outbox_repository.mark_published(ctx, event.id)

    async def test_unknown_event_raises_not_found(self, ctx, outbox_repository):
        with pytest.raises(NotFoundError):
            await outbox_repository.mark_published(ctx, uuid.uuid4())


class TestMarkFailed:
    """Tests for OutboxRepository.mark_failed."""

    async def _claim_one(self, ctx, repository):
        [event] = await repository.claim_batch(ctx, 1)
        return event

    async def test_failure_schedules_retry(self, ctx, outbox_repository):
        await enqueue_events(ctx, outbox_repository, 1)
        event = await self._claim_one(ctx, outbox_repository)
        now = utcnow()

        outcome = await outbox_repository.mark_failed(
            ctx, event.id, "connection refused", max_retries=3, retry_delay=timedelta(seconds=30), now=now
        )

        assert outcome.dead_lettered is False
        assert outcome.retry_count == 1
        stored = await fetch_event(ctx, event.id)
        assert stored.status is OutboxStatus.PENDING
        assert stored.retry_count == 1
        assert stored.last_error == "connection refused"
        assert stored.available_at == now + timedelta(seconds=30)
        assert stored.claimed_at is None

    async def test_backoff_delays_the_next_claim(self, ctx, outbox_repository):
        await enqueue_events(ctx, outbox_repository, 1)
        event = await self._claim_one(ctx, outbox_repository)
        now = utcnow()
        await outbox_repository.mark_failed(
            ctx, event.id, "boom", max_retries=3, retry_delay=timedelta(seconds=30), now=now
        )

        assert await outbox_repository.claim_batch(ctx, 1, now=now + timedelta(seconds=10)) == []
        assert len(await outbox_repository.claim_batch(ctx, 1, now=now + timedelta(seconds=31))) == 1

    async def test_dead_letters_after_max_retries(self, ctx, outbox_repository):
        """Exactly max_retries failed attempts move the event to failed."""
        await enqueue_events(ctx, outbox_repository, 1)
        outcomes = []
        for attempt in range(3):
            event = await self._claim_one(ctx, outbox_repository)
            outcomes.append(
                await outbox_repository.mark_failed(
                    ctx, event.id, f"attempt {attempt}", max_retries=3, retry_delay=timedelta(0)
                )
            )

        assert [o.dead_lettered for o in outcomes] == [False, False, True]
        stored = await fetch_event(ctx, event.id)
        assert stored.status is OutboxStatus.FAILED
        assert stored.retry_count == 3
        assert stored.last_error == "attempt 2"
        assert await outbox_repository.claim_batch(ctx, 10) == []

    async def test_long_errors_are_truncated(self, ctx, outbox_repository):
        await enqueue_events(ctx, outbox_repository, 1)
        event = await self._claim_one(ctx, outbox_repository)

        await outbox_repository.mark_failed(
            ctx, event.id, "x" * 5000, max_retries=3, retry_delay=timedelta(0)
        )

        assert len((await fetch_event(ctx, event.id)).last_error) == MAX_ERROR_LENGTH

    async def test_requires_processing_status(self, ctx, outbox_repository):
        [event] = await enqueue_events(ctx, outbox_repository, 1)

        with pytest.raises(InvalidTransitionError):
            await outbox_repository.mark_failed(
                ctx, event.id, "boom", max_retries=3, retry_delay=timedelta(0)
            )

        assert (await fetch_event(ctx, event.id)).retry_count == 0


# ──────────────────────────────────────────────────────────────
# Stale release, replay, stats
# ──────────────────────────────────────────────────────────────


class TestReleaseStaleProcessing:
    """Tests for OutboxRepository.release_stale_processing."""

    async def test_releases_only_old_claims(self, ctx, outbox_repository):
        now = utcnow()
        stale = await seed_event(
            ctx, status=OutboxStatus.PROCESSING, claimed_at=now - timedelta(minutes=10), retry_count=2
        )
        fresh = await seed_event(
            ctx, status=OutboxStatus.PROCESSING, claimed_at=now - timedelta(seconds=10)
        )

        released = await outbox_repository.release_stale_processing(ctx, timedelta(minutes=5), now=now)

        assert released == 1
        stored = await fetch_event(ctx, stale.id)
        assert stored.status is OutboxStatus.PENDING
        assert stored.retry_count == 2
        assert stored.claimed_at is None
        assert stored.available_at == now
        assert (await fetch_event(ctx, fresh.id)).status is OutboxStatus.PROCESSING

    async def test_released_event_can_be_claimed_again(self, ctx, outbox_repository):
        [event] = await enqueue_events(ctx, outbox_repository, 1)
        await outbox_repository.claim_batch(ctx, 1)
        later = utcnow() + timedelta(minutes=10)

        await outbox_repository.release_stale_processing(ctx, timedelta(minutes=5), now=later)
        [reclaimed] = await outbox_repository.claim_batch(ctx, 1, now=later)

        assert reclaimed.id == event.id

    async def test_nothing_to_release(self, ctx, outbox_repository):
        assert await outbox_repository.release_stale_processing(ctx, timedelta(minutes=5)) == 0


class TestRenewClaim:
    """Tests for claim renewal and claim-guarded outcomes."""

    async def _released_and_reclaimed(self, ctx, repository):
        """Claim an event, release it as stale and claim it again."""
        await enqueue_events(ctx, repository, 1)
        [old] = await repository.claim_batch(ctx, 1)
        later = utcnow() + timedelta(minutes=10)
        await repository.release_stale_processing(ctx, timedelta(minutes=5), now=later)
        [new] = await repository.claim_batch(ctx, 1, now=later)
        return old, new

    async def test_renewal_restarts_the_stale_clock(self, ctx, outbox_repository):
        claimed_at = utcnow() - timedelta(minutes=10)
        await enqueue_events(ctx, outbox_repository, 1, start=claimed_at - timedelta(minutes=1))
        [event] = await outbox_repository.claim_batch(ctx, 1, now=claimed_at)

        renewed = await outbox_repository.renew_claim(ctx, event.id, event.claimed_at)

        assert renewed is not None
        assert renewed > claimed_at
        assert (await fetch_event(ctx, event.id)).claimed_at == renewed
        assert await outbox_repository.release_stale_processing(ctx, timedelta(minutes=5)) == 0

    async def test_released_claim_cannot_be_renewed(self, ctx, outbox_repository):
        await enqueue_events(ctx, outbox_repository, 1)
        [event] = await outbox_repository.claim_batch(ctx, 1)
        later = utcnow() + timedelta(minutes=10)
        await outbox_repository.release_stale_processing(ctx, timedelta(minutes=5), now=later)

        assert await outbox_repository.renew_claim(ctx, event.id, event.claimed_at) is None
        assert (await fetch_event(ctx, event.id)).status is OutboxStatus.PENDING

    async def test_another_dispatchers_claim_is_not_renewed(self, ctx, outbox_repository):
        old, new = await self._released_and_reclaimed(ctx, outbox_repository)

        assert await outbox_repository.renew_claim(ctx, old.id, old.claimed_at) is None
        assert (await fetch_event(ctx, new.id)).claimed_at == new.claimed_at

    async def test_old_claim_cannot_record_failure(self, ctx, outbox_repository):
        old, new = await self._released_and_reclaimed(ctx, outbox_repository)

        with pytest.raises(InvalidTransitionError):
            await outbox_repository.mark_failed(
                ctx,
                old.id,
                "late failure",
                max_retries=3,
                retry_delay=timedelta(0),
                claimed_at=old.claimed_at,
            )

        stored = await fetch_event(ctx, new.id)
        assert stored.status is OutboxStatus.PROCESSING
        assert stored.retry_count == 0
        assert stored.last_error is None

    async def test_old_claim_cannot_acknowledge(self, ctx, outbox_repository):
        old, new = await self._released_and_reclaimed(ctx, outbox_repository)

        with pytest.raises(InvalidTransitionError):
            await outbox_repository.mark_published(ctx, old.id, claimed_at=old.claimed_at)

        await outbox_repository.mark_published(ctx, new.id, claimed_at=new.claimed_at)
        assert (await fetch_event(ctx, new.id)).status is OutboxStatus.PUBLISHED


class TestReplayFailed:
    """Tests for listing and replaying dead-lettered events."""

    async def test_list_failed_newest_first(self, ctx, outbox_repository):
        now = utcnow()
        older = await seed_event(ctx, status=OutboxStatus.FAILED, created_at=now - timedelta(hours=2))
        newer = await seed_event(ctx, status=OutboxStatus.FAILED, created_at=now - timedelta(hours=1))
        await seed_event(ctx, status=OutboxStatus.PENDING)

        failed = await outbox_repository.list_failed(ctx)

        assert [e.id for e in failed] == [newer.id, older.id]

    async def test_replay_selected_ids(self, ctx, outbox_repository):
        first = await seed_event(ctx, status=OutboxStatus.FAILED, retry_count=3, last_error="boom")
        second = await seed_event(ctx, status=OutboxStatus.FAILED, retry_count=3)

        replayed = await outbox_repository.replay_failed(ctx, [first.id])

        assert replayed == 1
        stored = await fetch_event(ctx, first.id)
        assert stored.status is OutboxStatus.PENDING
        assert stored.retry_count == 0
        assert stored.last_error == "boom"
        assert stored.id == first.id
        assert (await fetch_event(ctx, second.id)).status is OutboxStatus.FAILED

    async def test_replay_all(self, ctx, outbox_repository):
        for _ in range(3):
            await seed_event(ctx, status=OutboxStatus.FAILED, retry_count=3)
        published = await seed_event(ctx, status=OutboxStatus.PUBLISHED, published_at=utcnow())

        assert await outbox_repository.replay_failed(ctx) == 3
        assert (await fetch_event(ctx, published.id)).status is OutboxStatus.PUBLISHED

    async def test_replay_ignores_events_that_are_not_failed(self, ctx, outbox_repository):
        pending = await seed_event(ctx, status=OutboxStatus.PENDING)

        assert await outbox_repository.replay_failed(ctx, [pending.id, uuid.uuid4()]) == 0

    async def test_replay_with_empty_id_list(self, ctx, outbox_repository):
        await seed_event(ctx, status=OutboxStatus.FAILED)

        assert await outbox_repository.replay_failed(ctx, []) == 0

    async def test_count_by_status_reports_every_status(self, ctx, outbox_repository):
        await seed_event(ctx, status=OutboxStatus.FAILED)
        await seed_event(ctx, status=OutboxStatus.PENDING)
        await seed_event(ctx, status=OutboxStatus.PENDING)

        counts = await outbox_repository.count_by_status(ctx)

        assert counts == {
            OutboxStatus.PENDING: 2,
            OutboxStatus.PROCESSING: 0,
            OutboxStatus.PUBLISHED: 0,
            OutboxStatus.FAILED: 1,
        }


# ──────────────────────────────────────────────────────────────
# Retention
# ──────────────────────────────────────────────────────────────


class TestDeleteOlderThan:
    """Tests for OutboxRepository.delete_older_than."""

    async def test_deletes_only_old_published_events(self, ctx, outbox_repository):
        now = utcnow()
        old_published = await seed_event(
            ctx, status=OutboxStatus.PUBLISHED, published_at=now - timedelta(days=31)
        )
        recent_published = await seed_event(
            ctx, status=OutboxStatus.PUBLISHED, published_at=now - timedelta(days=1)
        )
        ancient = now - timedelta(days=365)
        old_failed = await seed_event(ctx, status=OutboxStatus.FAILED, created_at=ancient)
        old_pending = await seed_event(ctx, status=OutboxStatus.PENDING, created_at=ancient)
        old_processing = await seed_event(
            ctx, status=OutboxStatus.PROCESSING, created_at=ancient, claimed_at=ancient
        )

        deleted = await outbox_repository.delete_older_than(ctx, now - timedelta(days=30))

        assert deleted == 1
        assert await outbox_repository.get(ctx, old_published.id) is None
        for kept in (recent_published, old_failed, old_pending, old_processing):
            assert await outbox_repository.get(ctx, kept.id) is not None

    async def test_delete_is_idempotent(self, ctx, outbox_repository):
        now = utcnow()
        await seed_event(ctx, status=OutboxStatus.PUBLISHED, published_at=now - timedelta(days=40))
        cutoff = now - timedelta(days=30)

        assert await outbox_repository.delete_older_than(ctx, cutoff) == 1
        assert await outbox_repository.delete_older_than(ctx, cutoff) == 0


# ──────────────────────────────────────────────────────────────
# Storage constraints
# ──────────────────────────────────────────────────────────────


class TestStorageConstraints:
    """The table itself rejects rows outside the status machine."""

    async def _execute(self, ctx, sql: str) -> None:
        async with resolve_handle(ctx) as session:
            await session.execute(text(sql))

    async def test_unknown_status_is_rejected(self, ctx):
        await seed_event(ctx)

        with pytest.raises(IntegrityError):
            await self._execute(ctx, "UPDATE event_outbox SET status = 'archived'")

    async def test_published_requires_published_at(self, ctx):
        await seed_event(ctx, status=OutboxStatus.PROCESSING, claimed_at=utcnow())

        with pytest.raises(IntegrityError):
            await self._execute(ctx, "UPDATE event_outbox SET status = 'published'")

    async def test_published_at_only_on_published_rows(self, ctx):
        await seed_event(ctx, status=OutboxStatus.FAILED, retry_count=3)

        with pytest.raises(IntegrityError):
            await self._execute(ctx, "UPDATE event_outbox SET published_at = CURRENT_TIMESTAMP")
