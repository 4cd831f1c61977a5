"""Domain events emitted by the workspaces feature."""

from __future__ import annotations

from typing import ClassVar

from cloud_outbox.core.events import WORKSPACE_EVENTS, DomainEvent


class WorkspaceEvent(DomainEvent):
    __abstract__ = True

    topic: ClassVar[str] = WORKSPACE_EVENTS

    name: str


class WorkspaceCreated(WorkspaceEvent):
    """A workspace was created."""

    event_type: ClassVar[str] = "workspace-created"

    owner_id: str | None = None


class WorkspaceDeleted(WorkspaceEvent):
    """A workspace was deleted."""

    event_type: ClassVar[str] = "workspace-deleted"


__all__ = ["WorkspaceCreated", "WorkspaceDeleted", "WorkspaceEvent"]
