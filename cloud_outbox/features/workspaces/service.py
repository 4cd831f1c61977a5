"""Service layer for the workspaces feature.

Each state change and its event are written in one unit of work: the
workspace row and the outbox row commit together or not at all.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cloud_outbox.core.database import run_in_transaction
from cloud_outbox.core.events import EventPublisher
from cloud_outbox.core.exceptions import ConflictException
from cloud_outbox.features.workspaces.events import WorkspaceCreated, WorkspaceDeleted
from cloud_outbox.features.workspaces.models import Workspace
from cloud_outbox.features.workspaces.repository import WorkspaceRepository, get_workspace_repository

if TYPE_CHECKING:
    from uuid import UUID

    from cloud_outbox.core.database import TransactionContext
    from cloud_outbox.features.workspaces.schemas import WorkspaceCreate

logger = logging.getLogger(__name__)


class WorkspaceService:
    """Workspace lifecycle operations that emit domain events."""

    def __init__(
        self,
        repo: WorkspaceRepository | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self._repo = repo or get_workspace_repository()
        self._publisher = publisher or EventPublisher()

    async def create_workspace(self, ctx: TransactionContext, data: WorkspaceCreate) -> Workspace:
        """Create a workspace and stage ``workspace-created``.

        Raises:
            ConflictException: If a workspace with the same name exists.
        """

        async def _create(tx: TransactionContext) -> Workspace:
            if await self._repo.get_by_name(tx, data.name) is not None:
                raise ConflictException(
                    detail=f"Workspace {data.name!r} already exists",
                    type="workspace-exists",
                    extra={"name": data.name},
                )
            workspace = await self._repo.create(
                tx,
                Workspace(name=data.name, description=data.description, owner_id=data.owner_id),
            )
            await self._publisher.publish(
                tx,
                WorkspaceCreated(
                    workspace_id=str(workspace.id),
                    name=workspace.name,
                    owner_id=workspace.owner_id,
                ),
            )
            return workspace

        workspace = await run_in_transaction(ctx, _create)
        logger.info("Workspace created", extra={"workspace_id": str(workspace.id), "name": workspace.name})
        return workspace

    async def delete_workspace(self, ctx: TransactionContext, workspace_id: UUID) -> None:
        """Delete a workspace and stage ``workspace-deleted``.

        Raises:
            NotFoundError: If the workspace does not exist.
        """

        async def _delete(tx: TransactionContext) -> None:
            workspace = await self._repo.get_or_raise(tx, workspace_id)
            name = workspace.name
            await self._repo.delete(tx, workspace)
            await self._publisher.publish(
                tx,
                WorkspaceDeleted(workspace_id=str(workspace_id), name=name),
            )

        await run_in_transaction(ctx, _delete)
        logger.info("Workspace deleted", extra={"workspace_id": str(workspace_id)})


__all__ = ["WorkspaceService"]
