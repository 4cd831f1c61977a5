"""Domain events and the outbox-backed publisher."""

from __future__ import annotations

from .base import DomainEvent
from .publisher import EventPublisher
from .topics import VM_EVENTS, WORKSPACE_EVENTS, build_resource_topic

__all__ = [
    "VM_EVENTS",
    "WORKSPACE_EVENTS",
    "DomainEvent",
    "EventPublisher",
    "build_resource_topic",
]
