"""CLI helpers."""

from __future__ import annotations

from .async_runner import coro, database_context
from .formatters import error, header, info, success, table, warning

__all__ = ["coro", "database_context", "error", "header", "info", "success", "table", "warning"]
