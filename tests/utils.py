"""Test helpers: fake publishers and outbox row factories."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from cloud_outbox.core.database import resolve_handle, transaction, utcnow
from cloud_outbox.infra.events.outbox.models import EventOutbox, OutboxStatus

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

    from cloud_outbox.core.database import TransactionContext
    from cloud_outbox.infra.events.outbox.repository import OutboxRepository


@dataclass
class PublishedMessage:
    topic: str
    event_type: str
    payload: str
    message_id: str
    correlation_id: str | None
    headers: dict[str, str]


@dataclass
class RecordingPublisher:
    """Publisher that accepts everything and remembers it."""

    messages: list[PublishedMessage] = field(default_factory=list)

    async def publish(
        self,
        topic: str,
        event_type: str,
        payload: str,
        *,
        message_id: str,
        correlation_id: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.messages.append(
            PublishedMessage(
                topic=topic,
                event_type=event_type,
                payload=payload,
                message_id=message_id,
                correlation_id=correlation_id,
                headers=dict(headers or {}),
            )
        )

    @property
    def message_ids(self) -> list[str]:
        return [m.message_id for m in self.messages]


@dataclass
class FailingPublisher(RecordingPublisher):
    """Publisher that raises for the first ``failures`` calls (all calls by default)."""

    failures: int | None = None
    error: str = "broker unavailable"
    calls: int = 0

    async def publish(self, topic: str, event_type: str, payload: str, **kwargs: Any) -> None:
        self.calls += 1
        if self.failures is None or self.calls <= self.failures:
            raise ConnectionError(self.error)
        await super().publish(topic, event_type, payload, **kwargs)


@dataclass
class SlowPublisher(RecordingPublisher):
    """Publisher that takes ``delay`` seconds per message."""

    delay: float = 10.0
    started: asyncio.Event = field(default_factory=asyncio.Event)

    async def publish(self, topic: str, event_type: str, payload: str, **kwargs: Any) -> None:
        self.started.set()
        await asyncio.sleep(self.delay)
        await super().publish(topic, event_type, payload, **kwargs)


def make_event(
    topic: str = "vm-events",
    event_type: str = "vm-created",
    payload: dict[str, Any] | None = None,
    **fields: Any,
) -> EventOutbox:
    """Unsaved outbox row with a JSON payload."""
    return EventOutbox(
        topic=topic,
        event_type=event_type,
        payload=json.dumps(payload or {"vm_id": "vm-1"}),
        **fields,
    )


async def enqueue_events(
    ctx: TransactionContext,
    repository: OutboxRepository,
    count: int,
    *,
    start: datetime | None = None,
    **fields: Any,
) -> list[EventOutbox]:
    """Enqueue ``count`` pending events one second apart, oldest first."""
    start = start or utcnow() - timedelta(minutes=5)
    async with transaction(ctx) as tx:
        return [
            await repository.enqueue(
                tx,
                make_event(payload={"n": i}, created_at=start + timedelta(seconds=i), **fields),
            )
            for i in range(count)
        ]


async def seed_event(ctx: TransactionContext, **fields: Any) -> EventOutbox:
    """Insert a row in any state, bypassing enqueue's reset to pending.

    Published rows get ``published_at`` stamped unless one is given.
    """
    now = utcnow()
    defaults: dict[str, Any] = {
        "status": OutboxStatus.PENDING,
        "retry_count": 0,
        "created_at": now,
        "available_at": now,
        "updated_at": now,
    }
    if fields.get("status") is OutboxStatus.PUBLISHED:
        defaults["published_at"] = now
    event = make_event(**{**defaults, **fields})
    async with resolve_handle(ctx) as session:
        session.add(event)
    return event


async def fetch_event(ctx: TransactionContext, event_id: Any) -> EventOutbox:
    async with resolve_handle(ctx) as session:
        event = await session.get(EventOutbox, event_id, populate_existing=True)
    assert event is not None
    return event
