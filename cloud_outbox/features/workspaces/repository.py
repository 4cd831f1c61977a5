"""Repository for the workspaces feature."""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

from cloud_outbox.core.database import BaseRepository
from cloud_outbox.features.workspaces.models import Workspace

if TYPE_CHECKING:
    from cloud_outbox.core.database import TransactionContext


class WorkspaceRepository(BaseRepository[Workspace]):
    """Data access for workspaces."""

    def __init__(self) -> None:
        super().__init__(Workspace)

    async def get_by_name(self, ctx: TransactionContext, name: str) -> Workspace | None:
        return await self.get_by(ctx, Workspace.name, name)


@lru_cache
def get_workspace_repository() -> WorkspaceRepository:
    return WorkspaceRepository()


__all__ = ["WorkspaceRepository", "get_workspace_repository"]
