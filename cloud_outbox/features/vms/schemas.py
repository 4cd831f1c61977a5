"""Pydantic schemas for the virtual machines feature."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from cloud_outbox.core.events.topics import SUPPORTED_PROVIDERS


class VMCreate(BaseModel):
    """Payload used when registering a virtual machine."""

    name: str = Field(..., min_length=1, max_length=100)
    provider: str = Field(..., description="aws | gcp | azure | ncp")
    region: str = Field(..., min_length=1, max_length=50)
    instance_type: str = Field(..., min_length=1, max_length=50)

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in SUPPORTED_PROVIDERS:
            msg = f"provider must be one of {sorted(SUPPORTED_PROVIDERS)}"
            raise ValueError(msg)
        return v


__all__ = ["VMCreate"]
