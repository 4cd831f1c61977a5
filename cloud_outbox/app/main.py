"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from cloud_outbox.app.exception_handlers import configure_exception_handlers
from cloud_outbox.app.lifespan import lifespan
from cloud_outbox.app.router import setup_routers
from cloud_outbox.core.settings import get_app_settings


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    app_settings = get_app_settings()

    app = FastAPI(
        title=app_settings.title,
        version=app_settings.version,
        debug=app_settings.debug,
        lifespan=lifespan,
    )

    # Configure exception handlers (must be before routers)
    configure_exception_handlers(app)
    setup_routers(app, app_settings)

    return app
