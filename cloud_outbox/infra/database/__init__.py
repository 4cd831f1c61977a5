"""Database engine and session management."""

from __future__ import annotations

from .session import (
    close_database,
    configure_database,
    create_all,
    get_engine,
    get_session_factory,
    get_transaction_context,
    init_database,
)

__all__ = [
    "close_database",
    "configure_database",
    "create_all",
    "get_engine",
    "get_session_factory",
    "get_transaction_context",
    "init_database",
]
