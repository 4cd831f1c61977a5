"""Domain events emitted by the virtual machines feature.

All VM events share the ``vm-events`` topic; dashboards and SSE streams
subscribe to it and refresh the affected workspace.
"""

from __future__ import annotations

from typing import ClassVar

from cloud_outbox.core.events import VM_EVENTS, DomainEvent


class VMEvent(DomainEvent):
    __abstract__ = True

    topic: ClassVar[str] = VM_EVENTS

    vm_id: str
    name: str
    provider: str
    region: str


class VMCreated(VMEvent):
    event_type: ClassVar[str] = "vm-created"

    instance_type: str
    status: str


class VMStatusChanged(VMEvent):
    event_type: ClassVar[str] = "vm-status-changed"

    previous_status: str
    status: str


class VMDeleted(VMEvent):
    event_type: ClassVar[str] = "vm-deleted"


__all__ = ["VMCreated", "VMDeleted", "VMEvent", "VMStatusChanged"]
