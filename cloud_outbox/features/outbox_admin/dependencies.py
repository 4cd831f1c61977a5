"""FastAPI dependencies for outbox operator endpoints.

Overridable in tests through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from cloud_outbox.core.database import TransactionContext
from cloud_outbox.core.settings import OutboxSettings, get_outbox_settings
from cloud_outbox.infra.database.session import get_transaction_context
from cloud_outbox.infra.events.outbox.repository import OutboxRepository


def get_ctx() -> TransactionContext:
    """Context without a unit of work; each repository call auto-commits."""
    return get_transaction_context()


@lru_cache
def get_outbox_repository() -> OutboxRepository:
    return OutboxRepository()


def get_settings() -> OutboxSettings:
    return get_outbox_settings()


__all__ = ["get_ctx", "get_outbox_repository", "get_settings"]
