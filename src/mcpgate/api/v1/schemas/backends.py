# Backend and capability schemas.
# Created: 2026-10-18

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from mcpgate.pool import AggregatedCapability, BackendStatus


class BackendStatusModel(BaseModel):
    id: str
    name: str
    connected: bool
    capability_count: int = 0
    error: str | None = None

    @classmethod
    def from_status(cls, status: BackendStatus) -> BackendStatusModel:
        return cls(
            id=status.id,
            name=status.name,
            connected=status.connected,
            capability_count=status.capability_count,
            error=status.error,
        )


class CapabilityModel(BaseModel):
    """A namespaced tool as advertised to callers."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = {}

    @classmethod
    def from_capability(cls, capability: AggregatedCapability) -> CapabilityModel:
        return cls(
            name=capability.name,
            description=capability.description,
            input_schema=capability.input_schema,
        )


class RefreshResponse(BaseModel):
    capability_count: int
