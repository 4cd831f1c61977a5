"""Utilities for running async operations in CLI commands."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import wraps
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from cloud_outbox.core.database import TransactionContext


T = TypeVar("T")


def coro(f: Callable[..., Awaitable[T]]) -> Callable[..., T]:
    """Decorator that makes an async function synchronous for Click.

    Usage:
        @cli.command()
        @coro
        async def my_command():
            result = await some_async_function()
            click.echo(result)
    """

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        return asyncio.run(f(*args, **kwargs))  # type: ignore[arg-type]

    return wrapper


@asynccontextmanager
async def database_context() -> AsyncIterator[TransactionContext]:
    """Transaction context for one command; disposes the engine afterwards.

    The engine's connections belong to the event loop of this command, so
    they must not outlive ``asyncio.run``.
    """
    from cloud_outbox.infra.database.session import close_database, get_transaction_context

    try:
        yield get_transaction_context()
    finally:
        await close_database()


__all__ = ["coro", "database_context"]
