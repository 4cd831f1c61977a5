"""SQLAlchemy models for the virtual machines feature."""

from __future__ import annotations

import uuid
from enum import Enum

from sqlalchemy import ForeignKey, String
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from cloud_outbox.core.database import Base, TimestampMixin, UUIDv7PKMixin


class VMStatus(str, Enum):
    """Provider-reported lifecycle state of a virtual machine."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    TERMINATED = "terminated"


class VirtualMachine(Base, UUIDv7PKMixin, TimestampMixin):
    """A compute instance managed through one of the cloud providers."""

    __tablename__ = "virtual_machines"

    workspace_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    provider: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="aws | gcp | azure | ncp",
    )
    region: Mapped[str] = mapped_column(String(50), nullable=False)
    instance_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[VMStatus] = mapped_column(
        SAEnum(
            VMStatus,
            name="vm_status",
            native_enum=False,
            length=20,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=VMStatus.PENDING,
    )

    def __repr__(self) -> str:
        return f"<VirtualMachine(id={self.id}, name={self.name!r}, status={self.status})>"


__all__ = ["VMStatus", "VirtualMachine"]
