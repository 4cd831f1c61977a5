"""Database connection lifespan management."""

from __future__ import annotations

import logging

from cloud_outbox.core.settings import PostgresSettings
from cloud_outbox.infra.database.session import close_database, init_database

from .registry import lifespan_registry

logger = logging.getLogger(__name__)


@lifespan_registry.register(name="database", startup_order=10, requires=["core"])
async def startup_database(db_settings: PostgresSettings, **kwargs: object) -> None:
    """Connect to the database.

    The outbox lives in the database, so startup fails when it stays
    unreachable after the configured retries.
    """
    await init_database(create_tables=db_settings.create_tables)
    logger.info(
        "Database connection initialized",
        extra={"sqlite": db_settings.is_sqlite, "pool_size": db_settings.pool_size},
    )


@lifespan_registry.register(name="database")
async def shutdown_database(**kwargs: object) -> None:
    await close_database()
    logger.info("Database connection closed")
