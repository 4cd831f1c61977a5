"""Repository for the virtual machines feature."""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

from sqlalchemy import select

from cloud_outbox.core.database import BaseRepository, resolve_handle
from cloud_outbox.features.vms.models import VirtualMachine

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence

    from cloud_outbox.core.database import TransactionContext


class VirtualMachineRepository(BaseRepository[VirtualMachine]):
    """Data access for virtual machines."""

    def __init__(self) -> None:
        super().__init__(VirtualMachine)

    async def list_for_workspace(
        self,
        ctx: TransactionContext,
        workspace_id: uuid.UUID,
        *,
        limit: int = 100,
    ) -> Sequence[VirtualMachine]:
        stmt = (
            select(VirtualMachine)
            .where(VirtualMachine.workspace_id == workspace_id)
            .order_by(VirtualMachine.created_at)
            .limit(limit)
        )
        async with resolve_handle(ctx) as session:
            result = await session.execute(stmt)
            vms = result.scalars().all()

        self._lazy.debug(lambda: f"db.list_for_workspace: {workspace_id} -> {len(vms)} vms")
        return vms


@lru_cache
def get_vm_repository() -> VirtualMachineRepository:
    return VirtualMachineRepository()


__all__ = ["VirtualMachineRepository", "get_vm_repository"]
