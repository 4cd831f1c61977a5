"""Outbox relay and retention sweeper lifespan management."""

from __future__ import annotations

import logging

from cloud_outbox.core.settings import OutboxSettings
from cloud_outbox.infra.events.outbox.dispatcher import start_outbox_dispatcher, stop_outbox_dispatcher
from cloud_outbox.infra.events.outbox.sweeper import start_retention_sweeper, stop_retention_sweeper

from .registry import lifespan_registry

logger = logging.getLogger(__name__)


@lifespan_registry.register(name="outbox", startup_order=30, requires=["database", "messaging"])
async def startup_outbox(outbox_settings: OutboxSettings, **kwargs: object) -> None:
    """Start the in-process dispatcher and sweeper when enabled.

    Deployments that run dedicated relay processes (``cloud-outbox relay
    run``) set OUTBOX_ENABLED=false on the API.
    """
    if outbox_settings.enabled:
        dispatcher = await start_outbox_dispatcher(settings=outbox_settings)
        if dispatcher is None:
            logger.warning("Outbox dispatcher not started, events will not be published")
    else:
        logger.info("Outbox dispatcher disabled")

    if outbox_settings.sweeper_enabled:
        await start_retention_sweeper(settings=outbox_settings)


@lifespan_registry.register(name="outbox")
async def shutdown_outbox(**kwargs: object) -> None:
    """Stop the relay before the broker and database close."""
    await stop_retention_sweeper()
    await stop_outbox_dispatcher()
