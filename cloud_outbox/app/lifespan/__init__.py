"""Application lifespan management.

This module provides the lifespan context manager that runs every
registered startup hook (logging, database, broker, outbox relay) and
shuts them down in reverse order.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

# Import all lifespan modules to register their hooks
from cloud_outbox.app.lifespan import core, database, messaging, outbox
from cloud_outbox.app.lifespan.registry import lifespan_registry
from cloud_outbox.core.settings import (
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_outbox_settings,
    get_rabbit_settings,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

# Ensure modules are imported (for side effects - hook registration)
_ = (core, database, messaging, outbox)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.
    """
    _ = app

    app_settings = get_app_settings()
    db_settings = get_db_settings()
    rabbit_settings = get_rabbit_settings()
    outbox_settings = get_outbox_settings()

    settings_dict = {
        "app_settings": app_settings,
        "db_settings": db_settings,
        "rabbit_settings": rabbit_settings,
        "log_settings": get_logging_settings(),
        "outbox_settings": outbox_settings,
    }

    await lifespan_registry.startup(**settings_dict)
    logger.info(
        "Application startup complete - listening on %s:%s",
        app_settings.host,
        app_settings.port,
        extra={
            "service": app_settings.service_name,
            "environment": app_settings.environment,
            "messaging_enabled": rabbit_settings.is_configured,
            "outbox_enabled": outbox_settings.enabled,
            "sweeper_enabled": outbox_settings.sweeper_enabled,
        },
    )

    try:
        yield
    finally:
        logger.info("Application shutdown initiated")
        await lifespan_registry.shutdown(**settings_dict)


__all__ = ["lifespan", "lifespan_registry"]
