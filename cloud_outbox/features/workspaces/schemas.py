"""Pydantic schemas for the workspaces feature."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class WorkspaceCreate(BaseModel):
    """Payload used when creating a workspace."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    owner_id: str | None = Field(default=None, max_length=64)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        """Strip surrounding whitespace from the name."""
        v = v.strip()
        if not v:
            msg = "name must not be blank"
            raise ValueError(msg)
        return v


__all__ = ["WorkspaceCreate"]
