"""Service layer for the virtual machines feature."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cloud_outbox.core.database import run_in_transaction
from cloud_outbox.core.events import EventPublisher
from cloud_outbox.features.vms.events import VMCreated, VMDeleted, VMStatusChanged
from cloud_outbox.features.vms.models import VirtualMachine, VMStatus
from cloud_outbox.features.vms.repository import VirtualMachineRepository, get_vm_repository
from cloud_outbox.features.workspaces.repository import WorkspaceRepository, get_workspace_repository
from cloud_outbox.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from uuid import UUID

    from cloud_outbox.core.database import TransactionContext
    from cloud_outbox.features.vms.schemas import VMCreate

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


class VirtualMachineService:
    """VM lifecycle operations.

    Handles business logic for:
    - Registering a VM in a workspace
    - Recording provider status changes
    - Removing a VM

    Every operation writes the VM row and its ``vm-events`` event in one
    transaction.
    """

    def __init__(
        self,
        repo: VirtualMachineRepository | None = None,
        workspaces: WorkspaceRepository | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self._repo = repo or get_vm_repository()
        self._workspaces = workspaces or get_workspace_repository()
        self._publisher = publisher or EventPublisher()

    async def create_vm(
        self,
        ctx: TransactionContext,
        workspace_id: UUID,
        data: VMCreate,
    ) -> VirtualMachine:
        """Register a VM and stage ``vm-created``.

        Raises:
            NotFoundError: If the workspace does not exist.
        """

        async def _create(tx: TransactionContext) -> VirtualMachine:
            await self._workspaces.get_or_raise(tx, workspace_id)
            vm = await self._repo.create(
                tx,
                VirtualMachine(
                    workspace_id=workspace_id,
                    name=data.name,
                    provider=data.provider,
                    region=data.region,
                    instance_type=data.instance_type,
                    status=VMStatus.PENDING,
                ),
            )
            await self._publisher.publish(
                tx,
                VMCreated(
                    workspace_id=str(workspace_id),
                    vm_id=str(vm.id),
                    name=vm.name,
                    provider=vm.provider,
                    region=vm.region,
                    instance_type=vm.instance_type,
                    status=vm.status.value,
                ),
            )
            return vm

        vm = await run_in_transaction(ctx, _create)
        logger.info(
            "VM created",
            extra={"vm_id": str(vm.id), "workspace_id": str(workspace_id), "provider": vm.provider},
        )
        return vm

    async def update_vm_status(
        self,
        ctx: TransactionContext,
        vm_id: UUID,
        status: VMStatus,
    ) -> VirtualMachine:
        """Record a status change and stage ``vm-status-changed``.

        Setting the current status again is a no-op and emits nothing.

        Raises:
            NotFoundError: If the VM does not exist.
        """

        async def _update(tx: TransactionContext) -> VirtualMachine:
            vm = await self._repo.get_or_raise(tx, vm_id)
            previous = vm.status
            if previous is status:
                lazy_logger.debug(lambda: f"service.update_vm_status: {vm_id} already {status.value}")
                return vm

            vm.status = status
            await tx.session.flush()  # type: ignore[union-attr]
            await self._publisher.publish(
                tx,
                VMStatusChanged(
                    workspace_id=str(vm.workspace_id),
                    vm_id=str(vm.id),
                    name=vm.name,
                    provider=vm.provider,
                    region=vm.region,
                    previous_status=previous.value,
                    status=status.value,
                ),
            )
            return vm

        return await run_in_transaction(ctx, _update)

    async def delete_vm(self, ctx: TransactionContext, vm_id: UUID) -> None:
        """Remove a VM and stage ``vm-deleted``.

        Raises:
            NotFoundError: If the VM does not exist.
        """

        async def _delete(tx: TransactionContext) -> None:
            vm = await self._repo.get_or_raise(tx, vm_id)
            event = VMDeleted(
                workspace_id=str(vm.workspace_id),
                vm_id=str(vm.id),
                name=vm.name,
                provider=vm.provider,
                region=vm.region,
            )
            await self._repo.delete(tx, vm)
            await self._publisher.publish(tx, event)

        await run_in_transaction(ctx, _delete)
        logger.info("VM deleted", extra={"vm_id": str(vm_id)})


__all__ = ["VirtualMachineService"]
