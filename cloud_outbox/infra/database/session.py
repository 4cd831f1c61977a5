"""Database engine and session factory with psycopg3 async driver.

The engine is created on first use from ``PostgresSettings`` so importing
this module never opens connections; ``configure_database()`` swaps in a
different URL (CLI ``--database-url``, tests).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from cloud_outbox.core.database import Base, TransactionContext
from cloud_outbox.core.settings import get_db_settings
from cloud_outbox.infra.metrics.prometheus import database_query_duration_seconds

logger = logging.getLogger(__name__)

DEFAULT_SQLITE_URL = "sqlite+aiosqlite:///./cloud_outbox.db"

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _default_url() -> str:
    db_settings = get_db_settings()
    return db_settings.url if db_settings.is_configured else DEFAULT_SQLITE_URL


def configure_database(url: str | None = None, **engine_kwargs: Any) -> AsyncEngine:
    """Create (or replace) the process-wide engine and session factory.

    Args:
        url: SQLAlchemy async URL. Defaults to the configured database.
        **engine_kwargs: Overrides for create_async_engine.

    Returns:
        The new engine. A previous engine is not disposed here; call
        close_database() first when replacing a live one.
    """
    global _engine, _session_factory

    db_settings = get_db_settings()
    url = url or _default_url()
    kwargs = db_settings.sqlalchemy_engine_kwargs() if url == db_settings.url else {}
    if url.startswith("sqlite"):
        kwargs.pop("connect_args", None)
    kwargs.update(engine_kwargs)

    _engine = create_async_engine(url, **kwargs)
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    _instrument(_engine)
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        configure_database()
    return _engine  # type: ignore[return-value]


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        configure_database()
    return _session_factory  # type: ignore[return-value]


def get_transaction_context() -> TransactionContext:
    """Fresh context without an active unit of work."""
    return TransactionContext(get_session_factory())


# ============================================================================
# Query Metrics Instrumentation
# ============================================================================


def _instrument(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany) -> None:
        context._query_start_time = time.perf_counter()

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany) -> None:
        duration = time.perf_counter() - context._query_start_time
        operation = statement.lstrip().split(None, 1)[0].upper() if statement else "UNKNOWN"
        database_query_duration_seconds.labels(operation=operation).observe(duration)


# ============================================================================
# Lifecycle
# ============================================================================


async def init_database(*, create_tables: bool | None = None) -> None:
    """Check connectivity, retrying while the database comes up.

    Uses ``startup_retry_attempts``/``startup_retry_delay`` from
    PostgresSettings, doubling the delay between attempts.

    Args:
        create_tables: Create missing tables from model metadata. Defaults
            to ``DB_CREATE_TABLES``; production schemas come from alembic.

    Raises:
        sqlalchemy.exc.OperationalError: If every attempt fails.
    """
    db_settings = get_db_settings()
    engine = get_engine()
    attempts = db_settings.startup_retry_attempts
    delay = db_settings.startup_retry_delay

    for attempt in range(1, attempts + 1):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            break
        except Exception as e:
            if attempt == attempts:
                logger.error(
                    "Failed to connect to database",
                    extra={"url": engine.url.render_as_string(hide_password=True), "error": str(e)},
                )
                raise
            logger.warning(
                "Database not reachable, retrying",
                extra={"attempt": attempt, "max_attempts": attempts, "delay": delay, "error": str(e)},
            )
            await asyncio.sleep(delay)
            delay *= 2

    if create_tables if create_tables is not None else db_settings.create_tables:
        await create_all()

    logger.info(
        "Database connection established",
        extra={"url": engine.url.render_as_string(hide_password=True)},
    )


async def create_all() -> None:
    """Create every mapped table that does not exist yet."""
    # Register models on Base.metadata
    import cloud_outbox.features.vms.models
    import cloud_outbox.features.workspaces.models
    import cloud_outbox.infra.events.outbox.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """Dispose of the engine; the next use creates a new one."""
    global _engine, _session_factory

    if _engine is None:
        return
    logger.info("Closing database connection")
    await _engine.dispose()
    _engine = None
    _session_factory = None


__all__ = [
    "DEFAULT_SQLITE_URL",
    "close_database",
    "configure_database",
    "create_all",
    "get_engine",
    "get_session_factory",
    "get_transaction_context",
    "init_database",
]
