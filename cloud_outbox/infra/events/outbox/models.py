"""EventOutbox SQLAlchemy model for the transactional outbox pattern.

The outbox table stores events that need to be published to the message
bus. Producers insert a row in the same transaction as their domain change,
so either both commit or neither does. The relay dispatcher later claims
rows, publishes them and records the outcome.

Lifecycle::

    pending --claim--> processing --ack--> published --(retention)--> deleted
                          |    ^
             publish error|    |stale claim released
                          v    |
                  pending (retry, delayed) / failed (dead letter)

``failed`` rows are only left by an explicit operator replay.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Index, Integer, String, Text, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from cloud_outbox.core.database.base import Base, UUIDv7PKMixin, utcnow
from cloud_outbox.core.database.types import UTCDateTime

# Longest last_error kept on a row
MAX_ERROR_LENGTH = 1000


class OutboxStatus(str, Enum):
    """Delivery state of an outbox event."""

    PENDING = "pending"
    PROCESSING = "processing"
    PUBLISHED = "published"
    FAILED = "failed"


class EventOutbox(Base, UUIDv7PKMixin):
    """Outbox table for reliable event publishing.

    Attributes:
        id: UUID v7 assigned at enqueue; consumers dedupe on it
        topic: Destination category (e.g., "vm-events")
        event_type: Specific event name (e.g., "vm-created")
        payload: JSON-serialized event body, opaque to the relay
        status: pending | processing | published | failed
        retry_count: Failed publish attempts so far
        last_error: Diagnostic from the most recent failed attempt
        workspace_id: Tenant the event belongs to, if any
        correlation_id: Request correlation ID of the producing call
        created_at: Enqueue time; claim order key
        available_at: Earliest time the event may be claimed (retry backoff)
        claimed_at: When the current claim was taken (processing only)
        published_at: Set exactly when status is published
        updated_at: Last status change
    """

    __tablename__ = "event_outbox"

    topic: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Destination category (routing key)",
    )
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Event type identifier",
    )
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="JSON-serialized event data",
    )

    status: Mapped[OutboxStatus] = mapped_column(
        SAEnum(
            OutboxStatus,
            name="outbox_status",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=lambda enum: [member.value for member in enum],
            validate_strings=True,
        ),
        nullable=False,
        default=OutboxStatus.PENDING,
        comment="Delivery state",
    )
    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of failed publish attempts",
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Last error message if publishing failed",
    )

    # Tenant and tracing context
    workspace_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Workspace (tenant) the event belongs to",
    )
    correlation_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Request correlation ID",
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        comment="Enqueue time",
    )
    available_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        comment="Earliest time the event may be claimed",
    )
    claimed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="When the current claim was taken",
    )
    published_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="When the event was acknowledged by the bus",
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        comment="Last status change",
    )

    __table_args__ = (
        CheckConstraint(
            "(status = 'published' AND published_at IS NOT NULL)"
            " OR (status <> 'published' AND published_at IS NULL)",
            name="published_at_iff_published",
        ),
        # Claim query: pending rows that are due, oldest first
        Index(
            "ix_event_outbox_claim",
            "status",
            "available_at",
            "created_at",
        ),
        # Stale release scans processing rows by claim time
        Index(
            "ix_event_outbox_processing",
            "claimed_at",
            postgresql_where=text("status = 'processing'"),
        ),
        # Retention sweep scans published rows by publish time
        Index(
            "ix_event_outbox_published",
            "published_at",
            postgresql_where=text("status = 'published'"),
        ),
    )

    @property
    def is_published(self) -> bool:
        return self.status is OutboxStatus.PUBLISHED

    @property
    def is_dead_lettered(self) -> bool:
        return self.status is OutboxStatus.FAILED

    def __repr__(self) -> str:
        return (
            f"EventOutbox("
            f"id={self.id}, "
            f"topic={self.topic!r}, "
            f"event_type={self.event_type!r}, "
            f"status={self.status.value if self.status else None}, "
            f"retries={self.retry_count}"
            f")"
        )


def truncate_error(error: str) -> str:
    """Clip an error message to what ``last_error`` keeps."""
    return error[:MAX_ERROR_LENGTH]


__all__ = ["MAX_ERROR_LENGTH", "EventOutbox", "OutboxStatus", "truncate_error"]
