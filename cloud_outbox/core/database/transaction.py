"""Explicit transaction scope for repositories.

A :class:`TransactionContext` is an immutable value passed down the call
chain. It always knows how to open a session (its factory) and, inside a
unit of work, also carries the session that unit of work runs on. There is
no ambient "current transaction": the relay and the request handlers run
concurrently in one event loop and must never share one by accident.

Repositories never decide whether they run transactionally. They call
:func:`resolve_handle`, which yields the active session when there is one
and an auto-committing ad-hoc session otherwise.

Example:
    ctx = TransactionContext(AsyncSessionLocal)

    async def create_vm(tx: TransactionContext) -> VirtualMachine:
        vm = await vm_repository.create(tx, VirtualMachine(name="web-1"))
        await outbox_repository.enqueue(tx, EventOutbox(topic="vm-events", ...))
        return vm

    vm = await run_in_transaction(ctx, create_vm)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, TypeVar

from .exceptions import NoActiveTransactionError, TransactionError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransactionContext:
    """Immutable handle on the current unit of work.

    Attributes:
        session_factory: Factory for new sessions; used by :func:`begin` and
            as the default fallback of :func:`resolve_handle`.
        session: Session bound to the active unit of work, or None.
    """

    session_factory: async_sessionmaker[AsyncSession]
    session: AsyncSession | None = None

    @property
    def in_transaction(self) -> bool:
        """True while the carried session has an open transaction."""
        return self.session is not None and self.session.in_transaction()

    def detached(self) -> TransactionContext:
        """Same factory, no unit of work."""
        return replace(self, session=None)


def require_transaction(ctx: TransactionContext, operation: str) -> AsyncSession:
    """Return the active session or raise NoActiveTransactionError."""
    if not ctx.in_transaction:
        raise NoActiveTransactionError(operation)
    return ctx.session  # type: ignore[return-value]


async def begin(ctx: TransactionContext) -> TransactionContext:
    """Open a new unit of work and return a context carrying it.

    The connection is acquired eagerly so an unreachable store fails here
    rather than at the first statement.

    Raises:
        TransactionError: If ``ctx`` already carries an active transaction.
        sqlalchemy.exc.OperationalError: If the store cannot be reached.
    """
    if ctx.in_transaction:
        msg = "context already carries an active transaction"
        raise TransactionError(msg)

    session = ctx.session_factory()
    try:
        await session.begin()
        await session.connection()
    except BaseException:
        await session.close()
        raise
    return replace(ctx, session=session)


async def commit(ctx: TransactionContext) -> None:
    """Commit the unit of work carried by ``ctx`` and release its session.

    Raises:
        NoActiveTransactionError: If ``ctx`` carries no active transaction.
    """
    session = require_transaction(ctx, "commit")
    try:
        await session.commit()
    finally:
        # close() rolls back whatever a failed commit left behind
        await session.close()


async def rollback(ctx: TransactionContext) -> None:
    """Roll back the unit of work carried by ``ctx`` and release its session.

    Raises:
        NoActiveTransactionError: If ``ctx`` carries no active transaction.
    """
    session = require_transaction(ctx, "rollback")
    try:
        await session.rollback()
    finally:
        await session.close()


R = TypeVar("R")


async def run_in_transaction(
    ctx: TransactionContext,
    fn: Callable[[TransactionContext], Awaitable[R]],
) -> R:
    """Run ``fn`` inside one unit of work.

    Begins a transaction, awaits ``fn(ctx')``, commits on success. Any
    exception, cancellation included, rolls back and propagates. When
    ``ctx`` is already inside a transaction, ``fn`` joins it and the outer
    owner decides the outcome.

    Args:
        ctx: Caller's context.
        fn: Coroutine function receiving the transactional context.

    Returns:
        Whatever ``fn`` returned.
    """
    if ctx.in_transaction:
        return await fn(ctx)

    tx = await begin(ctx)
    try:
        result = await fn(tx)
    except BaseException:
        logger.debug("Rolling back unit of work", exc_info=True)
        await rollback(tx)
        raise
    await commit(tx)
    return result


@asynccontextmanager
async def transaction(ctx: TransactionContext) -> AsyncIterator[TransactionContext]:
    """Context-manager form of :func:`run_in_transaction`.

    Example:
        async with transaction(ctx) as tx:
            await workspace_repository.create(tx, workspace)
            await publisher.publish(tx, WorkspaceCreated(...))
    """
    if ctx.in_transaction:
        yield ctx
        return

    tx = await begin(ctx)
    try:
        yield tx
    except BaseException:
        await rollback(tx)
        raise
    await commit(tx)


@asynccontextmanager
async def resolve_handle(
    ctx: TransactionContext,
    fallback: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Yield the session repository code should use.

    Inside a unit of work this is the transaction's session and nothing is
    committed here. Outside one, an ad-hoc session is opened from
    ``fallback`` (default: the context's factory), committed when the block
    succeeds and rolled back when it raises.
    """
    if ctx.in_transaction:
        yield ctx.session  # type: ignore[misc]
        return

    factory = fallback or ctx.session_factory
    async with factory() as session:
        try:
            yield session
        except BaseException:
            await session.rollback()
            raise
        await session.commit()


__all__ = [
    "TransactionContext",
    "begin",
    "commit",
    "require_transaction",
    "resolve_handle",
    "rollback",
    "run_in_transaction",
    "transaction",
]
