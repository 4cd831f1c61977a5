"""Publisher capability used by the relay dispatcher.

The dispatcher only needs "publish this or raise"; ``Publisher`` is that
contract. ``RabbitPublisher`` implements it on a FastStream broker, routing
each event by its topic through one exchange.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from faststream.rabbit import RabbitBroker, RabbitExchange

logger = logging.getLogger(__name__)


class PublishError(Exception):
    """The message bus rejected or failed to accept an event.

    Attributes:
        topic: Topic the event was routed to
        message_id: Idempotency key of the event
    """

    def __init__(self, message: str, *, topic: str, message_id: str) -> None:
        super().__init__(message)
        self.topic = topic
        self.message_id = message_id


@runtime_checkable
class Publisher(Protocol):
    """Anything that can hand one event to the message bus.

    Implementations return only once the bus has accepted the event and
    raise on any failure. They make no ordering or partitioning promises.
    """

    async def publish(
        self,
        topic: str,
        event_type: str,
        payload: str,
        *,
        message_id: str,
        correlation_id: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None: ...


class RabbitPublisher:
    """Publisher backed by a FastStream RabbitBroker.

    The topic becomes the routing key, the event id the AMQP ``message_id``
    (consumers dedupe on it) and the event type the AMQP ``type`` plus an
    ``event_type`` header. Messages are persistent.
    """

    def __init__(self, broker: RabbitBroker, *, exchange: RabbitExchange) -> None:
        self._broker = broker
        self._exchange = exchange

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
        try:
            await self._broker.publish(
                payload.encode("utf-8"),
                exchange=self._exchange,
                routing_key=topic,
                message_id=message_id,
                correlation_id=correlation_id,
                message_type=event_type,
                content_type="application/json",
                headers={"event_type": event_type, **(headers or {})},
                persist=True,
            )
        except Exception as e:
            msg = f"publish to {topic!r} failed: {e}"
            raise PublishError(msg, topic=topic, message_id=message_id) from e

        logger.debug(
            "Event handed to RabbitMQ",
            extra={"topic": topic, "event_type": event_type, "message_id": message_id},
        )


__all__ = ["PublishError", "Publisher", "RabbitPublisher"]
