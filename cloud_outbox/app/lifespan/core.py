"""Logging lifespan management."""

from __future__ import annotations

import logging

from cloud_outbox.core.settings import LoggingSettings
from cloud_outbox.infra.logging import setup_logging
from cloud_outbox.infra.logging import shutdown as shutdown_log_listener

from .registry import lifespan_registry

logger = logging.getLogger(__name__)


@lifespan_registry.register(name="core", startup_order=0)
async def startup_core(log_settings: LoggingSettings, **kwargs: object) -> None:
    """Configure logging before anything else logs."""
    setup_logging(log_settings)
    logger.debug("Logging configured", extra={"level": log_settings.level})


@lifespan_registry.register(name="core")
async def shutdown_core(**kwargs: object) -> None:
    """Flush queued log records last."""
    shutdown_log_listener()
