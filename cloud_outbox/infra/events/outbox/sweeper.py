"""Retention sweeper for published outbox events.

Deletes published events older than the retention window on an APScheduler
interval. Failed, pending and processing events are never touched: failed
events stay until an operator replays or removes them.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cloud_outbox.core.database.base import utcnow
from cloud_outbox.core.settings import get_outbox_settings
from cloud_outbox.infra.events.outbox.repository import OutboxRepository
from cloud_outbox.infra.metrics.prometheus import outbox_events_by_status, outbox_events_swept_total

if TYPE_CHECKING:
    from datetime import datetime

    from cloud_outbox.core.database.transaction import TransactionContext
    from cloud_outbox.core.settings import OutboxSettings

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "outbox_retention_sweep"

# Global sweeper instance
_sweeper: RetentionSweeper | None = None


class RetentionSweeper:
    """Periodic deletion of published events past their retention.

    Example:
        sweeper = RetentionSweeper(ctx, retention=timedelta(days=30))
        deleted = await sweeper.sweep()
    """

    def __init__(
        self,
        ctx: TransactionContext,
        *,
        retention: timedelta | None = None,
        interval: timedelta | None = None,
        repository: OutboxRepository | None = None,
        settings: OutboxSettings | None = None,
    ) -> None:
        settings = settings or get_outbox_settings()
        self._ctx = ctx.detached()
        self._repository = repository or OutboxRepository()
        self.retention = retention if retention is not None else timedelta(days=settings.retention_days)
        self.interval = interval if interval is not None else timedelta(hours=settings.sweep_interval_hours)
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def sweep(self, now: datetime | None = None) -> int:
        """Delete published events with ``published_at`` before ``now - retention``.

        Idempotent: a second sweep with the same ``now`` deletes nothing.

        Returns:
            Number of events deleted.
        """
        now = now or utcnow()
        cutoff = now - self.retention
        deleted = await self._repository.delete_older_than(self._ctx, cutoff)
        outbox_events_swept_total.inc(deleted)
        logger.info(
            "Outbox retention sweep finished",
            extra={"deleted": deleted, "cutoff": cutoff.isoformat()},
        )
        await self._refresh_status_gauge()
        return deleted

    async def _refresh_status_gauge(self) -> None:
        counts = await self._repository.count_by_status(self._ctx)
        for status, count in counts.items():
            outbox_events_by_status.labels(status=status.value).set(count)

    async def _run_job(self) -> None:
        try:
            await self.sweep()
        except Exception:
            # Keep the schedule alive; the next run retries
            logger.exception("Outbox retention sweep failed")

    def start(self) -> None:
        """Schedule :meth:`sweep` every ``interval``.

        Must be called from a running event loop.
        """
        if self.running:
            logger.warning("Retention sweeper already running")
            return

        self._scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Collapse missed runs into one
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
        )
        self._scheduler.add_job(
            func=self._run_job,
            trigger=IntervalTrigger(seconds=self.interval.total_seconds()),
            id=SWEEP_JOB_ID,
            name="Delete published outbox events past retention",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            "Retention sweeper started",
            extra={
                "retention_days": self.retention.total_seconds() / 86400,
                "interval_hours": self.interval.total_seconds() / 3600,
            },
        )

    def stop(self) -> None:
        """Stop the schedule. A sweep already running is not interrupted."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Retention sweeper stopped")
        self._scheduler = None


async def start_retention_sweeper(settings: OutboxSettings | None = None) -> RetentionSweeper:
    """Start the global sweeper on the process database."""
    global _sweeper

    if _sweeper is not None and _sweeper.running:
        return _sweeper

    from cloud_outbox.infra.database.session import get_transaction_context

    _sweeper = RetentionSweeper(get_transaction_context(), settings=settings)
    _sweeper.start()
    return _sweeper


async def stop_retention_sweeper() -> None:
    """Stop the global sweeper."""
    global _sweeper

    if _sweeper is not None:
        _sweeper.stop()
        _sweeper = None


def get_retention_sweeper() -> RetentionSweeper | None:
    return _sweeper


__all__ = [
    "SWEEP_JOB_ID",
    "RetentionSweeper",
    "get_retention_sweeper",
    "start_retention_sweeper",
    "stop_retention_sweeper",
]
