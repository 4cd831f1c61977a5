"""Minimal generic repository for SQLAlchemy models.

Every method takes a :class:`TransactionContext` first and resolves its
session through :func:`resolve_handle`, so the same repository code runs
inside a caller's unit of work or standalone with auto-commit.

Example:
    class WorkspaceRepository(BaseRepository[Workspace]):
        async def get_by_name(self, ctx: TransactionContext, name: str) -> Workspace | None:
            return await self.get_by(ctx, Workspace.name, name)

    repo = WorkspaceRepository()
    workspace = await repo.get(ctx, workspace_id)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import func, select

from cloud_outbox.core.database.exceptions import NotFoundError
from cloud_outbox.core.database.transaction import resolve_handle
from cloud_outbox.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.orm import InstrumentedAttribute

    from cloud_outbox.core.database.transaction import TransactionContext


T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Minimal generic repository for CRUD operations.

    Provides:
        - get(ctx, id) -> T | None
        - get_or_raise(ctx, id) -> T (raises NotFoundError)
        - get_by(ctx, attr, value) -> T | None
        - list(ctx, limit, offset) -> Sequence[T]
        - count(ctx) -> int
        - create(ctx, instance) -> T
        - delete(ctx, instance) -> None
    """

    __slots__ = ("model", "_logger", "_lazy")

    def __init__(self, model: type[T]) -> None:
        """Initialize repository with model class.

        Args:
            model: SQLAlchemy model class (e.g., Workspace, EventOutbox)
        """
        self.model = model
        self._logger = logging.getLogger(f"repository.{model.__name__}")
        # Lazy logger for DEBUG (no formatting cost when DEBUG is disabled)
        self._lazy = get_lazy_logger(f"repository.{model.__name__}")

    async def get(self, ctx: TransactionContext, id: Any) -> T | None:  # noqa: A002
        """Get entity by primary key.

        Args:
            ctx: Transaction context
            id: Primary key value

        Returns:
            Entity if found, None otherwise
        """
        async with resolve_handle(ctx) as session:
            instance = await session.get(self.model, id)

        self._lazy.debug(
            lambda: f"db.get: {self.model.__name__}({id}) -> {'found' if instance else 'not found'}"
        )
        return instance

    async def get_or_raise(self, ctx: TransactionContext, id: Any) -> T:  # noqa: A002
        """Get entity by primary key or raise NotFoundError.

        Raises:
            NotFoundError: If entity doesn't exist
        """
        instance = await self.get(ctx, id)
        if instance is None:
            self._logger.info(
                "Entity not found",
                extra={"entity": self.model.__name__, "id": str(id), "operation": "db.get_or_raise"},
            )
            raise NotFoundError(self.model.__name__, {"id": id})
        return instance

    async def get_by(
        self,
        ctx: TransactionContext,
        attr: InstrumentedAttribute[Any],
        value: Any,
    ) -> T | None:
        """Get entity by arbitrary attribute.

        Args:
            ctx: Transaction context
            attr: Model attribute to filter by (e.g., Workspace.name)
            value: Value to match

        Returns:
            Matching entity or None
        """
        stmt = select(self.model).where(attr == value)
        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)
            instance = result.scalar_one_or_none()

        self._lazy.debug(
            lambda: f"db.get_by: {self.model.__name__}.{attr.key}={value!r} -> {'found' if instance else 'not found'}"
        )
        return instance

    async def list(
        self,
        ctx: TransactionContext,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[T]:
        """List entities with pagination."""
        stmt = select(self.model).limit(limit).offset(offset)
        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)
            items = result.scalars().all()

        self._lazy.debug(
            lambda: f"db.list: {self.model.__name__}(limit={limit}, offset={offset}) -> {len(items)} items"
        )
        return items

    async def count(self, ctx: TransactionContext) -> int:
        """Count all rows of the model."""
        stmt = select(func.count()).select_from(self.model)
        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def create(self, ctx: TransactionContext, instance: T) -> T:
        """Persist a new entity.

        Adds to the session, flushes to populate generated values and
        refreshes so server defaults are visible.

        Args:
            ctx: Transaction context
            instance: Entity instance to persist

        Returns:
            Persisted entity with generated fields populated
        """
        async with resolve_handle(ctx) as session:
            session.add(instance)
            await session.flush()
            await session.refresh(instance)

        entity_id = getattr(instance, "id", None)
        self._lazy.debug(lambda: f"db.create: {self.model.__name__}(id={entity_id})")
        return instance

    async def delete(self, ctx: TransactionContext, instance: T) -> None:
        """Delete an entity."""
        async with resolve_handle(ctx) as session:
            await session.delete(instance)
            await session.flush()

        entity_id = getattr(instance, "id", None)
        self._lazy.debug(lambda: f"db.delete: {self.model.__name__}(id={entity_id})")


__all__ = ["BaseRepository"]
