"""Database foundation: declarative base, transaction scope and repositories."""

from __future__ import annotations

from .base import NAMING_CONVENTION, Base, TimestampMixin, UUIDv7PKMixin, generate_uuid7, utcnow
from .exceptions import (
    InvalidTransitionError,
    NoActiveTransactionError,
    NotFoundError,
    RepositoryError,
    TransactionError,
)
from .repository import BaseRepository
from .transaction import (
    TransactionContext,
    begin,
    commit,
    require_transaction,
    resolve_handle,
    rollback,
    run_in_transaction,
    transaction,
)
from .types import UTCDateTime

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "InvalidTransitionError",
    "NoActiveTransactionError",
    "NotFoundError",
    "RepositoryError",
    "TimestampMixin",
    "TransactionContext",
    "TransactionError",
    "UTCDateTime",
    "UUIDv7PKMixin",
    "begin",
    "commit",
    "generate_uuid7",
    "require_transaction",
    "resolve_handle",
    "rollback",
    "run_in_transaction",
    "transaction",
    "utcnow",
]
