"""Event publisher service for reliable event delivery.

The EventPublisher uses the transactional outbox pattern to ensure
events are reliably published even in the face of failures:

1. Events are written to the outbox table in the same transaction
   as the domain changes
2. The relay dispatcher claims them after commit and publishes them to
   the message bus
3. Successfully published events are marked as published

This guarantees at-least-once delivery semantics.

Usage:
    from cloud_outbox.core.database import run_in_transaction
    from cloud_outbox.core.events import EventPublisher

    async def create_vm(tx: TransactionContext) -> VirtualMachine:
        vm = await vm_repository.create(tx, VirtualMachine(name="web-1"))
        await EventPublisher().publish(tx, VMCreated(vm_id=str(vm.id), name=vm.name))
        return vm

    vm = await run_in_transaction(ctx, create_vm)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cloud_outbox.infra.events.outbox.models import EventOutbox
from cloud_outbox.infra.events.outbox.repository import OutboxRepository

if TYPE_CHECKING:
    from collections.abc import Iterable

    from cloud_outbox.core.database.transaction import TransactionContext
    from cloud_outbox.core.events.base import DomainEvent

logger = logging.getLogger(__name__)


class EventPublisher:
    """Stages domain events in the outbox.

    Events are written to the caller's transaction rather than sent
    directly, so a rolled-back change never emits an event and a committed
    one never misses it.

    Attributes:
        correlation_id: Correlation ID attached to events that carry none
    """

    def __init__(
        self,
        repository: OutboxRepository | None = None,
        *,
        correlation_id: str | None = None,
    ) -> None:
        self._repository = repository or OutboxRepository()
        self.correlation_id = correlation_id

    async def publish(
        self,
        ctx: TransactionContext,
        event: DomainEvent,
        *,
        correlation_id: str | None = None,
    ) -> EventOutbox:
        """Stage one event in the caller's transaction.

        Args:
            ctx: Context carrying the producer's active transaction
            event: Domain event to stage
            correlation_id: Override correlation ID for this event

        Returns:
            The outbox row (pending, durable once the caller commits).

        Raises:
            NoActiveTransactionError: If ``ctx`` carries no active transaction.
        """
        effective_correlation_id = correlation_id or self.correlation_id
        if effective_correlation_id and not event.correlation_id:
            event = event.with_correlation(effective_correlation_id)

        row = EventOutbox(
            id=event.event_id,
            topic=event.topic,
            event_type=event.event_type,
            payload=event.to_payload(),
            workspace_id=event.workspace_id,
            correlation_id=event.correlation_id,
            created_at=event.timestamp,
        )
        row = await self._repository.enqueue(ctx, row)

        logger.debug(
            "Event staged in outbox",
            extra={
                "event_type": event.event_type,
                "event_id": str(event.event_id),
                "topic": event.topic,
                "correlation_id": event.correlation_id,
            },
        )
        return row

    async def publish_many(
        self,
        ctx: TransactionContext,
        events: Iterable[DomainEvent],
        *,
        correlation_id: str | None = None,
    ) -> list[EventOutbox]:
        """Stage several events in the same transaction, in order."""
        return [await self.publish(ctx, event, correlation_id=correlation_id) for event in events]


__all__ = ["EventPublisher"]
