"""Pytest configuration and shared fixtures.

Organization:
    - Environment: settings that keep tests off external infrastructure
    - Database Fixtures: file-backed SQLite engine, session factory, context
    - Outbox Fixtures: repository, relay settings and fake publishers

Every test gets its own SQLite file under ``tmp_path``; a file rather than
``:memory:`` so several connections (concurrent dispatchers) share it.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Iterator
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from cloud_outbox.core.database import TransactionContext
    from cloud_outbox.core.settings import OutboxSettings
    from cloud_outbox.infra.events.outbox.repository import OutboxRepository

# Ensure tests run without external infrastructure
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("RABBIT_ENABLED", "false")
os.environ.setdefault("OUTBOX_ENABLED", "false")
os.environ.setdefault("OUTBOX_SWEEPER_ENABLED", "false")
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("LOG_JSON_LOGS", "false")


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    """Reload settings for every test so monkeypatched env vars apply."""
    from cloud_outbox.core.settings import clear_settings_cache

    clear_settings_cache()
    yield
    clear_settings_cache()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """SQLAlchemy URL of a fresh SQLite file for this test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'outbox.db'}"


@pytest.fixture
async def db_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Async engine with every table created.

    The busy timeout lets concurrent writers queue on SQLite's write lock
    instead of failing with "database is locked".
    """
    import cloud_outbox.features.vms.models
    import cloud_outbox.features.workspaces.models
    import cloud_outbox.infra.events.outbox.models  # noqa: F401
    from cloud_outbox.core.database import Base

    engine = create_async_engine(database_url, connect_args={"timeout": 30})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def ctx(session_factory: async_sessionmaker[AsyncSession]) -> TransactionContext:
    """Transaction context without an active unit of work.

    Example:
        async def test_enqueue(ctx, outbox_repository):
            async with transaction(ctx) as tx:
                await outbox_repository.enqueue(tx, make_event())
    """
    from cloud_outbox.core.database import TransactionContext

    return TransactionContext(session_factory)


# ============================================================================
# Outbox Fixtures
# ============================================================================


@pytest.fixture
def outbox_repository() -> OutboxRepository:
    from cloud_outbox.infra.events.outbox.repository import OutboxRepository

    return OutboxRepository()


@pytest.fixture
def outbox_settings() -> OutboxSettings:
    """Relay settings tuned for fast tests.

    Retries are due immediately (zero backoff) and three failed attempts
    dead-letter an event.
    """
    from cloud_outbox.core.settings import OutboxSettings

    return OutboxSettings(
        batch_size=10,
        poll_interval=0.02,
        claim_timeout=5.0,
        publish_timeout=1.0,
        publish_concurrency=4,
        max_retries=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        stale_after=60.0,
        stale_check_interval=60.0,
        retention_days=30,
        shutdown_timeout=2.0,
    )


@pytest.fixture
def publisher():
    """Publisher that records every message and always succeeds."""
    from tests.utils import RecordingPublisher

    return RecordingPublisher()
