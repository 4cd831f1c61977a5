"""Tests for VirtualMachineService."""

from __future__ import annotations

import json

import pytest

from cloud_outbox.core.database import NotFoundError, generate_uuid7
from cloud_outbox.core.events import EventPublisher
from cloud_outbox.features.vms.models import VMStatus
from cloud_outbox.features.vms.repository import VirtualMachineRepository
from cloud_outbox.features.vms.schemas import VMCreate
from cloud_outbox.features.vms.service import VirtualMachineService
from cloud_outbox.features.workspaces.schemas import WorkspaceCreate
from cloud_outbox.features.workspaces.service import WorkspaceService


@pytest.fixture
def service() -> VirtualMachineService:
    return VirtualMachineService()


@pytest.fixture
async def workspace(ctx):
    return await WorkspaceService().create_workspace(ctx, WorkspaceCreate(name="platform"))


def _vm_data(**overrides) -> VMCreate:
    data = {"name": "web-1", "provider": "AWS", "region": "us-east-1", "instance_type": "t3.micro"}
    return VMCreate(**{**data, **overrides})


async def _vm_events(ctx, repository):
    return [e for e in await repository.list(ctx) if e.topic == "vm-events"]


# ──────────────────────────────────────────────────────────────
# Create
# ──────────────────────────────────────────────────────────────


class TestCreateVM:
    async def test_creates_vm_and_stages_event(self, ctx, service, workspace, outbox_repository):
        vm = await service.create_vm(ctx, workspace.id, _vm_data())

        assert vm.status is VMStatus.PENDING
        assert vm.provider == "aws"
        events = await _vm_events(ctx, outbox_repository)
        assert len(events) == 1
        assert events[0].event_type == "vm-created"
        assert events[0].workspace_id == str(workspace.id)
        payload = json.loads(events[0].payload)
        assert payload["vm_id"] == str(vm.id)
        assert payload["instance_type"] == "t3.micro"
        assert payload["status"] == "pending"

    async def test_missing_workspace_writes_nothing(self, ctx, service, outbox_repository):
        with pytest.raises(NotFoundError):
            await service.create_vm(ctx, generate_uuid7(), _vm_data())

        assert await VirtualMachineRepository().count(ctx) == 0
        assert await outbox_repository.count(ctx) == 0

    async def test_correlation_id_from_publisher(self, ctx, workspace, outbox_repository):
        service = VirtualMachineService(publisher=EventPublisher(correlation_id="req-42"))

        await service.create_vm(ctx, workspace.id, _vm_data())

        events = await _vm_events(ctx, outbox_repository)
        assert events[0].correlation_id == "req-42"

    def test_unknown_provider_is_rejected(self):
        with pytest.raises(ValueError, match="provider must be one of"):
            _vm_data(provider="oracle")


# ──────────────────────────────────────────────────────────────
# Status changes
# ──────────────────────────────────────────────────────────────


class TestUpdateVMStatus:
    async def test_status_change_stages_event(self, ctx, service, workspace, outbox_repository):
        vm = await service.create_vm(ctx, workspace.id, _vm_data())

        updated = await service.update_vm_status(ctx, vm.id, VMStatus.RUNNING)

        assert updated.status is VMStatus.RUNNING
        stored = await VirtualMachineRepository().get(ctx, vm.id)
        assert stored.status is VMStatus.RUNNING
        changes = [
            e for e in await _vm_events(ctx, outbox_repository) if e.event_type == "vm-status-changed"
        ]
        assert len(changes) == 1
        payload = json.loads(changes[0].payload)
        assert payload["previous_status"] == "pending"
        assert payload["status"] == "running"

    async def test_same_status_is_noop(self, ctx, service, workspace, outbox_repository):
        vm = await service.create_vm(ctx, workspace.id, _vm_data())

        await service.update_vm_status(ctx, vm.id, VMStatus.PENDING)

        assert len(await _vm_events(ctx, outbox_repository)) == 1

    async def test_missing_vm(self, ctx, service):
        with pytest.raises(NotFoundError):
            await service.update_vm_status(ctx, generate_uuid7(), VMStatus.RUNNING)


# ──────────────────────────────────────────────────────────────
# Delete
# ──────────────────────────────────────────────────────────────


class TestDeleteVM:
    async def test_delete_stages_event(self, ctx, service, workspace, outbox_repository):
        vm = await service.create_vm(ctx, workspace.id, _vm_data())

        await service.delete_vm(ctx, vm.id)

        assert await VirtualMachineRepository().get(ctx, vm.id) is None
        deleted = [e for e in await _vm_events(ctx, outbox_repository) if e.event_type == "vm-deleted"]
        assert len(deleted) == 1
        assert json.loads(deleted[0].payload)["vm_id"] == str(vm.id)

    async def test_list_for_workspace(self, ctx, service, workspace):
        first = await service.create_vm(ctx, workspace.id, _vm_data(name="web-1"))
        second = await service.create_vm(ctx, workspace.id, _vm_data(name="web-2"))

        vms = await VirtualMachineRepository().list_for_workspace(ctx, workspace.id)

        assert {vm.id for vm in vms} == {first.id, second.id}
