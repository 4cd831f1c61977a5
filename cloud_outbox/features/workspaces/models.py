"""SQLAlchemy models for the workspaces feature."""

from __future__ import annotations

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cloud_outbox.core.database import Base, TimestampMixin, UUIDv7PKMixin


class Workspace(Base, UUIDv7PKMixin, TimestampMixin):
    """Tenant boundary grouping credentials and cloud resources.

    Every resource event carries the id of the workspace it belongs to so
    consumers can route it to the right tenant.
    """

    __tablename__ = "workspaces"
    __table_args__ = (UniqueConstraint("name", name="uq_workspaces_name"),)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Unique workspace name",
    )
    description: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )
    owner_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="User that created the workspace",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    def __repr__(self) -> str:
        return f"<Workspace(id={self.id}, name={self.name!r})>"


__all__ = ["Workspace"]
