"""Router registry and setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cloud_outbox.core.settings import get_app_settings
from cloud_outbox.features.observability.router import router as observability_router
from cloud_outbox.features.outbox_admin.router import router as outbox_admin_router

if TYPE_CHECKING:
    from fastapi import FastAPI

    from cloud_outbox.core.settings import AppSettings

logger = logging.getLogger(__name__)


def setup_routers(app: FastAPI, app_settings: AppSettings | None = None) -> None:
    """Register all routers with the application.

    Operator endpoints live under the API prefix; health and metrics stay
    at the root where probes and scrapers expect them.
    """
    settings = app_settings or get_app_settings()

    app.include_router(observability_router)
    app.include_router(outbox_admin_router, prefix=settings.api_prefix)

    logger.debug("Routers configured", extra={"api_prefix": settings.api_prefix})


__all__ = ["setup_routers"]
