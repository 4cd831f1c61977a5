"""Relay dispatcher: drains the outbox to the message bus.

One iteration:
1. Claim up to ``batch_size`` due events (atomic, bounded by ``claim_timeout``)
2. Publish them concurrently (at most ``publish_concurrency`` in flight,
   each bounded by ``publish_timeout``). Each claim is renewed as its
   publish starts; an event whose claim was released while it waited for a
   slot is skipped
3. Acknowledge successes, record failures with exponential backoff, and
   dead-letter events that ran out of retries

The loop repeats every ``poll_interval`` whatever the outcome. A separate
reaper task releases claims whose dispatcher died before acknowledging.

Any number of dispatchers may run against one database: correctness
rests on the atomic claim alone. Delivery is at-least-once, and the event
id is sent as the message id so consumers can drop duplicates.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import socket
import time
from collections import Counter
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Literal

from cloud_outbox.core.database.exceptions import InvalidTransitionError
from cloud_outbox.core.settings import get_outbox_settings
from cloud_outbox.infra.events.outbox.backoff import retry_delay
from cloud_outbox.infra.events.outbox.repository import OutboxRepository
from cloud_outbox.infra.logging import get_lazy_logger, set_log_context
from cloud_outbox.infra.metrics.prometheus import (
    outbox_dispatch_iterations_total,
    outbox_events_claimed_total,
    outbox_events_dead_lettered_total,
    outbox_events_published_total,
    outbox_publish_duration_seconds,
    outbox_publish_failures_total,
    outbox_retry_delay_seconds,
    outbox_stale_released_total,
)

if TYPE_CHECKING:
    from datetime import datetime

    from cloud_outbox.core.database.transaction import TransactionContext
    from cloud_outbox.core.settings import OutboxSettings
    from cloud_outbox.infra.events.outbox.models import EventOutbox
    from cloud_outbox.infra.messaging.publisher import Publisher

logger = logging.getLogger(__name__)
_lazy = get_lazy_logger(__name__)

Outcome = Literal["published", "retried", "dead_lettered", "unacknowledged", "released"]

# Global dispatcher instance
_dispatcher: OutboxDispatcher | None = None


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """What one dispatcher iteration did.

    Attributes:
        claimed: Events claimed this iteration
        published: Events acknowledged as published
        retried: Events returned to pending for a later attempt
        dead_lettered: Events moved to failed
        unacknowledged: Events whose outcome could not be recorded; they
            stay processing until the stale release picks them up
        released: Events whose claim was released while they waited for a
            publish slot; they were not published by this dispatcher
    """

    claimed: int = 0
    published: int = 0
    retried: int = 0
    dead_lettered: int = 0
    unacknowledged: int = 0
    released: int = 0

    @property
    def idle(self) -> bool:
        return self.claimed == 0


def default_dispatcher_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class OutboxDispatcher:
    """Background relay from the outbox table to a Publisher.

    Attributes:
        batch_size: Events claimed per iteration
        poll_interval: Seconds between iterations
        max_retries: Failed attempts before an event is dead-lettered
        dispatcher_id: Name of this instance in logs
    """

    def __init__(
        self,
        ctx: TransactionContext,
        publisher: Publisher,
        *,
        settings: OutboxSettings | None = None,
        repository: OutboxRepository | None = None,
        dispatcher_id: str | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            ctx: Context without an active transaction; every repository
                call gets its own short auto-committed session from it.
            publisher: Message bus capability.
            settings: Relay tunables; defaults to the cached OutboxSettings.
            repository: Outbox store; defaults to a new OutboxRepository.
            dispatcher_id: Name used in logs; defaults to ``<host>-<pid>``.
        """
        settings = settings or get_outbox_settings()

        self._ctx = ctx.detached()
        self._publisher = publisher
        self._repository = repository or OutboxRepository()
        self.dispatcher_id = dispatcher_id or default_dispatcher_id()

        self.batch_size = settings.batch_size
        self.poll_interval = settings.poll_interval
        self.claim_timeout = settings.claim_timeout
        self.publish_timeout = settings.publish_timeout
        self.max_retries = settings.max_retries
        self.retry_base_delay = settings.retry_base_delay
        self.retry_max_delay = settings.retry_max_delay
        self.retry_jitter = settings.retry_jitter
        self.stale_after = timedelta(seconds=settings.stale_after)
        self.stale_check_interval = settings.stale_check_interval
        self.shutdown_timeout = settings.shutdown_timeout

        self._semaphore = asyncio.Semaphore(settings.publish_concurrency)
        self._running = False
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._reaper_task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the dispatch loop and the stale-claim reaper."""
        if self._running:
            logger.warning("Outbox dispatcher already running")
            return

        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name=f"outbox-dispatch-{self.dispatcher_id}")
        self._reaper_task = asyncio.create_task(
            self._reaper_loop(), name=f"outbox-reaper-{self.dispatcher_id}"
        )
        logger.info(
            "Outbox dispatcher started",
            extra={
                "dispatcher_id": self.dispatcher_id,
                "batch_size": self.batch_size,
                "poll_interval": self.poll_interval,
                "max_retries": self.max_retries,
            },
        )

    async def stop(self) -> None:
        """Stop gracefully, letting an in-flight batch finish.

        Waits up to ``shutdown_timeout`` seconds, then cancels. Events of a
        cancelled batch stay processing and are released as stale later.
        """
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        tasks = [t for t in (self._task, self._reaper_task) if t is not None]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.shutdown_timeout)
            if pending:
                logger.warning(
                    "Outbox dispatcher shutdown timed out, cancelling",
                    extra={"dispatcher_id": self.dispatcher_id, "timeout": self.shutdown_timeout},
                )
                for task in pending:
                    task.cancel()
                for task in pending:
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        self._task = None
        self._reaper_task = None
        logger.info("Outbox dispatcher stopped", extra={"dispatcher_id": self.dispatcher_id})

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early when stop() is called."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)

    async def _run_loop(self) -> None:
        set_log_context(dispatcher_id=self.dispatcher_id)
        while self._running:
            delay = self.poll_interval
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("Outbox dispatch loop cancelled")
                raise
            except Exception:
                outbox_dispatch_iterations_total.labels(outcome="error").inc()
                logger.exception("Error in outbox dispatch loop")
                # Back off on storage errors to avoid a tight error loop
                delay = self.poll_interval * 2
            await self._sleep(delay)

    async def _reaper_loop(self) -> None:
        set_log_context(dispatcher_id=self.dispatcher_id)
        while self._running:
            await self._sleep(self.stale_check_interval)
            if not self._running:
                break
            try:
                await self.release_stale()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error releasing stale outbox claims")

    # ------------------------------------------------------------------
    # Work
    # ------------------------------------------------------------------

    async def run_once(self) -> DispatchResult:
        """Claim one batch and drive every event in it to an outcome.

        Returns:
            Counts of what happened. An empty claim is an idle iteration,
            not an error.

        Raises:
            TimeoutError: If the claim exceeds ``claim_timeout``.
            sqlalchemy.exc.SQLAlchemyError: If the claim fails.
        """
        events = await asyncio.wait_for(
            self._repository.claim_batch(self._ctx, self.batch_size),
            timeout=self.claim_timeout,
        )
        if not events:
            outbox_dispatch_iterations_total.labels(outcome="idle").inc()
            return DispatchResult()

        outbox_events_claimed_total.inc(len(events))
        _lazy.debug(lambda: f"Claimed outbox batch: {[str(e.id) for e in events]}")

        outcomes = Counter(await asyncio.gather(*(self._dispatch(event) for event in events)))
        result = DispatchResult(
            claimed=len(events),
            published=outcomes["published"],
            retried=outcomes["retried"],
            dead_lettered=outcomes["dead_lettered"],
            unacknowledged=outcomes["unacknowledged"],
            released=outcomes["released"],
        )
        outbox_dispatch_iterations_total.labels(outcome="work").inc()
        logger.info(
            "Outbox batch dispatched",
            extra={
                "claimed": result.claimed,
                "published": result.published,
                "retried": result.retried,
                "dead_lettered": result.dead_lettered,
                "unacknowledged": result.unacknowledged,
                "released": result.released,
            },
        )
        return result

    async def release_stale(self) -> int:
        """Release claims older than ``stale_after`` back to pending."""
        released = await self._repository.release_stale_processing(self._ctx, self.stale_after)
        if released:
            outbox_stale_released_total.inc(released)
        return released

    async def _dispatch(self, event: EventOutbox) -> Outcome:
        """Publish one claimed event and record the outcome.

        Never raises (except on cancellation): one bad event must not
        abort the rest of the batch.
        """
        set_log_context(event_id=str(event.id), topic=event.topic, event_type=event.event_type)

        async with self._semaphore:
            # Restart the stale clock now that the publish actually starts
            try:
                claimed_at = await self._repository.renew_claim(
                    self._ctx, event.id, event.claimed_at  # type: ignore[arg-type]
                )
            except Exception:
                logger.exception("Failed to renew outbox claim; stale release will redeliver it")
                return "unacknowledged"
            if claimed_at is None:
                logger.warning("Outbox claim was released before publishing, skipping event")
                return "released"
            error, reason = await self._publish(event)

        if error is None:
            return await self._acknowledge(event, claimed_at)
        return await self._record_failure(event, claimed_at, error, reason)

    async def _publish(self, event: EventOutbox) -> tuple[str | None, str]:
        headers = {"workspace_id": event.workspace_id} if event.workspace_id else None
        start = time.perf_counter()
        try:
            await asyncio.wait_for(
                self._publisher.publish(
                    event.topic,
                    event.event_type,
                    event.payload,
                    message_id=str(event.id),
                    correlation_id=event.correlation_id,
                    headers=headers,
                ),
                timeout=self.publish_timeout,
            )
        except TimeoutError:
            return f"publish timed out after {self.publish_timeout}s", "timeout"
        except Exception as e:
            return str(e) or e.__class__.__name__, "error"
        finally:
            outbox_publish_duration_seconds.labels(topic=event.topic).observe(time.perf_counter() - start)
        return None, ""

    async def _acknowledge(self, event: EventOutbox, claimed_at: datetime) -> Outcome:
        try:
            await self._repository.mark_published(self._ctx, event.id, claimed_at=claimed_at)
        except InvalidTransitionError:
            # Claim was released as stale and may belong to another dispatcher now
            logger.warning("Published event was no longer claimed; it may be delivered again")
            return "unacknowledged"
        except Exception:
            logger.exception("Failed to acknowledge published event; stale release will redeliver it")
            return "unacknowledged"

        outbox_events_published_total.labels(topic=event.topic).inc()
        logger.debug("Event published")
        return "published"

    async def _record_failure(
        self, event: EventOutbox, claimed_at: datetime, error: str, reason: str
    ) -> Outcome:
        outbox_publish_failures_total.labels(topic=event.topic, reason=reason).inc()
        delay = retry_delay(
            event.retry_count + 1,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            jitter=self.retry_jitter,
        )
        try:
            outcome = await self._repository.mark_failed(
                self._ctx,
                event.id,
                error,
                max_retries=self.max_retries,
                retry_delay=delay,
                claimed_at=claimed_at,
            )
        except InvalidTransitionError:
            logger.warning("Failed event was no longer claimed; its new owner decides the outcome")
            return "unacknowledged"
        except Exception:
            logger.exception("Failed to record publish failure", extra={"error": error})
            return "unacknowledged"

        if outcome.dead_lettered:
            outbox_events_dead_lettered_total.labels(topic=event.topic).inc()
            logger.error(
                "Event dead-lettered after exhausting retries",
                extra={"retry_count": outcome.retry_count, "error": error},
            )
            return "dead_lettered"

        outbox_retry_delay_seconds.observe(delay.total_seconds())
        logger.warning(
            "Failed to publish event, scheduled for retry",
            extra={
                "retry_count": outcome.retry_count,
                "retry_in_seconds": delay.total_seconds(),
                "error": error,
            },
        )
        return "retried"


# ============================================================================
# Process-wide dispatcher
# ============================================================================


async def start_outbox_dispatcher(
    publisher: Publisher | None = None,
    *,
    settings: OutboxSettings | None = None,
) -> OutboxDispatcher | None:
    """Start the global dispatcher.

    Args:
        publisher: Publisher to use; defaults to a RabbitPublisher on the
            process broker.
        settings: Relay tunables; defaults to the cached OutboxSettings.

    Returns:
        The running dispatcher, or None when no publisher is available
        (RabbitMQ disabled).
    """
    global _dispatcher

    if _dispatcher is not None and _dispatcher.running:
        return _dispatcher

    if publisher is None:
        from cloud_outbox.infra.messaging.broker import get_broker, get_exchange
        from cloud_outbox.infra.messaging.publisher import RabbitPublisher

        broker = get_broker()
        if broker is None:
            logger.info("RabbitMQ not configured, skipping outbox dispatcher")
            return None
        publisher = RabbitPublisher(broker, exchange=get_exchange())

    from cloud_outbox.infra.database.session import get_transaction_context

    _dispatcher = OutboxDispatcher(get_transaction_context(), publisher, settings=settings)
    await _dispatcher.start()
    return _dispatcher


async def stop_outbox_dispatcher() -> None:
    """Stop the global dispatcher."""
    global _dispatcher

    if _dispatcher is not None:
        await _dispatcher.stop()
        _dispatcher = None


def get_outbox_dispatcher() -> OutboxDispatcher | None:
    """Get the global dispatcher instance."""
    return _dispatcher


__all__ = [
    "DispatchResult",
    "OutboxDispatcher",
    "get_outbox_dispatcher",
    "start_outbox_dispatcher",
    "stop_outbox_dispatcher",
]
