"""RabbitMQ broker lifecycle using FastStream.

The relay only publishes, so a bare ``RabbitBroker`` is connected (no
subscribers, no FastAPI router). The broker is created on first use from
``RabbitSettings``; when RabbitMQ is disabled every accessor returns None
and callers decide how to degrade.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any

from faststream.rabbit import ExchangeType, RabbitBroker, RabbitExchange

from cloud_outbox.core.settings import get_rabbit_settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Connection states for the RabbitMQ broker."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


_broker: RabbitBroker | None = None
_state = ConnectionState.DISCONNECTED


def get_broker() -> RabbitBroker | None:
    """Return the process broker, creating it on first call.

    Returns:
        RabbitBroker instance or None if RabbitMQ is not configured.
    """
    global _broker

    if _broker is not None:
        return _broker

    rabbit_settings = get_rabbit_settings()
    if not rabbit_settings.is_configured:
        logger.warning("RabbitMQ not configured - relay publishing disabled")
        return None

    _broker = RabbitBroker(
        rabbit_settings.url,
        publisher_confirms=rabbit_settings.publisher_confirms,
        logger=logger,
    )
    return _broker


def get_exchange() -> RabbitExchange:
    """Exchange that outbox topics are routed through."""
    rabbit_settings = get_rabbit_settings()
    return RabbitExchange(
        rabbit_settings.exchange_name,
        type=ExchangeType(rabbit_settings.exchange_type),
        durable=True,
    )


async def start_broker() -> RabbitBroker | None:
    """Connect the broker and declare the outbox exchange.

    The connection is wrapped with a timeout so an unreachable RabbitMQ
    cannot block startup indefinitely.

    Raises:
        ConnectionError: If connecting times out.
    """
    global _state

    broker = get_broker()
    if broker is None:
        return None

    rabbit_settings = get_rabbit_settings()
    logger.info(
        "Connecting RabbitMQ broker",
        extra={"exchange": rabbit_settings.exchange_name, "connection_timeout": rabbit_settings.connection_timeout},
    )
    _state = ConnectionState.CONNECTING

    try:
        await asyncio.wait_for(broker.connect(), timeout=rabbit_settings.connection_timeout)
        await broker.declare_exchange(get_exchange())
    except TimeoutError:
        _state = ConnectionState.FAILED
        error_msg = f"RabbitMQ connection timeout after {rabbit_settings.connection_timeout}s"
        logger.error(error_msg, extra={"connection_timeout": rabbit_settings.connection_timeout})
        raise ConnectionError(error_msg) from None
    except Exception as e:
        _state = ConnectionState.FAILED
        logger.exception("Failed to connect RabbitMQ broker", extra={"error": str(e)})
        raise

    _state = ConnectionState.CONNECTED
    logger.info("RabbitMQ broker connected")
    return broker


async def stop_broker() -> None:
    """Close the broker connection, if any."""
    global _broker, _state

    if _broker is None:
        return

    logger.info("Stopping RabbitMQ broker")
    try:
        await _broker.close()
    except Exception as e:
        logger.exception("Error stopping RabbitMQ broker", extra={"error": str(e)})
    finally:
        _broker = None
        _state = ConnectionState.DISCONNECTED


@asynccontextmanager
async def broker_context() -> AsyncIterator[RabbitBroker | None]:
    """Connected broker for the duration of the block (CLI relay, scripts).

    Example:
        async with broker_context() as broker:
            if broker is not None:
                publisher = RabbitPublisher(broker, exchange=get_exchange())
    """
    broker = await start_broker()
    try:
        yield broker
    finally:
        await stop_broker()


def check_broker_health() -> dict[str, Any]:
    """Report the broker connection state for health endpoints."""
    if _broker is None:
        reason = "not_started" if get_rabbit_settings().is_configured else "rabbitmq_not_enabled"
        return {"status": "unavailable", "state": ConnectionState.DISCONNECTED.value, "reason": reason}

    healthy = _state is ConnectionState.CONNECTED
    return {
        "status": "healthy" if healthy else "unhealthy",
        "state": _state.value,
    }


__all__ = [
    "ConnectionState",
    "broker_context",
    "check_broker_health",
    "get_broker",
    "get_exchange",
    "start_broker",
    "stop_broker",
]
