"""RabbitMQ broker lifespan management."""

from __future__ import annotations

import logging

from cloud_outbox.core.settings import RabbitSettings
from cloud_outbox.infra.messaging.broker import start_broker, stop_broker

from .registry import lifespan_registry

logger = logging.getLogger(__name__)


@lifespan_registry.register(name="messaging", startup_order=20, requires=["core"])
async def startup_messaging(rabbit_settings: RabbitSettings, **kwargs: object) -> None:
    """Connect the broker.

    Producers never touch the broker, so the API stays usable while
    RabbitMQ is down; events accumulate in the outbox until it is back.
    """
    if not rabbit_settings.is_configured:
        logger.info("RabbitMQ not configured, outbox events will stay pending")
        return

    try:
        await start_broker()
    except Exception as e:
        if rabbit_settings.startup_require_rabbit:
            logger.exception("RabbitMQ required but unavailable, failing startup")
            raise
        logger.warning(
            "RabbitMQ unavailable, continuing in degraded mode",
            extra={"error": str(e), "startup_require_rabbit": False},
        )


@lifespan_registry.register(name="messaging")
async def shutdown_messaging(**kwargs: object) -> None:
    await stop_broker()
