"""Domain event base class.

Domain events represent something meaningful that happened to a cloud
resource (a workspace was created, a VM changed status). They are staged in
the outbox by :class:`~cloud_outbox.core.events.publisher.EventPublisher`
and broadcast by the relay dispatcher after the producing transaction
commits.

Key features:
- ``topic`` and ``event_type`` declared once per event class
- Time-sortable UUID v7 ids, reused as the outbox row id and message id
- Correlation and tenant ids carried alongside the payload
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from cloud_outbox.core.database.base import generate_uuid7, utcnow


class DomainEvent(BaseModel):
    """Base class for all domain events.

    Subclasses must define:
    - topic: ClassVar[str] - Destination category (e.g., "vm-events")
    - event_type: ClassVar[str] - Unique event type identifier (e.g., "vm-created")

    Example:
        class VMCreated(DomainEvent):
            topic: ClassVar[str] = "vm-events"
            event_type: ClassVar[str] = "vm-created"

            vm_id: str
            name: str

        event = VMCreated(vm_id="...", name="web-1", workspace_id="ws-1")

    Attributes:
        event_id: Unique identifier for this event instance (UUID v7)
        timestamp: When the event occurred (UTC)
        correlation_id: ID linking the event to the request that caused it
        workspace_id: Tenant the event belongs to
        metadata: Additional context (actor, request path, ...)
    """

    topic: ClassVar[str] = ""
    event_type: ClassVar[str] = "domain.event"
    event_version: ClassVar[int] = 1

    event_id: uuid.UUID = Field(
        default_factory=generate_uuid7,
        description="Unique event identifier (UUID v7 for time-ordering)",
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="Event timestamp in UTC",
    )
    correlation_id: str | None = Field(
        default=None,
        description="Correlation ID for distributed tracing",
    )
    workspace_id: str | None = Field(
        default=None,
        description="Workspace (tenant) the event belongs to",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event metadata",
    )

    model_config = ConfigDict(
        frozen=True,  # Events are immutable
        str_strip_whitespace=True,
        extra="forbid",
    )

    def __init_subclass__(cls, **kwargs: Any) -> None:
        """Validate concrete subclasses declare where and what they are."""
        super().__init_subclass__(**kwargs)
        # Intermediate bases group events by resource and set only the topic
        if cls.__dict__.get("__abstract__", False):
            return
        if not cls.topic:
            msg = f"{cls.__name__} must define 'topic' class variable"
            raise TypeError(msg)
        if cls.event_type == "domain.event":
            msg = f"{cls.__name__} must define 'event_type' class variable"
            raise TypeError(msg)

    def with_correlation(self, correlation_id: str) -> DomainEvent:
        """Copy of this event carrying ``correlation_id``."""
        return self.model_copy(update={"correlation_id": correlation_id})

    def to_payload(self) -> str:
        """Serialize the event body as JSON.

        The envelope fields travel in the payload too, so consumers that
        only see the message body still get the id, type and timestamp.
        """
        body = {
            "event_type": self.event_type,
            "event_version": self.event_version,
            **self.model_dump(mode="json"),
        }
        return json.dumps(body, separators=(",", ":"))


__all__ = ["DomainEvent"]
