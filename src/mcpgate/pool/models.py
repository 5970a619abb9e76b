"""Data model for the backend pool.

BackendDefinition is validated configuration (pydantic); the remaining types
are small frozen dataclasses passed between the connection, registry and
manager layers.

Created: 2026-10-18
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Joins a backend id and a capability name. Backend ids may not contain it.
NAMESPACE_SEPARATOR = "_"


class BackendDefinition(BaseModel):
    """A local MCP server the gateway launches over stdio."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str | None = None
    command: str = Field(..., min_length=1)
    args: tuple[str, ...] = ()
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    enabled: bool = True
    required_scopes: frozenset[str] = Field(default=frozenset(), alias="requiredScopes")
    call_timeout: float | None = Field(default=None, gt=0, alias="callTimeout")

    @field_validator("id")
    @classmethod
    def _id_without_separator(cls, value: str) -> str:
        if NAMESPACE_SEPARATOR in value:
            raise ValueError(
                f"backend id {value!r} must not contain the namespace separator "
                f"{NAMESPACE_SEPARATOR!r}"
            )
        return value


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class PoolState(enum.Enum):
    EMPTY = "empty"
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"


@dataclass(frozen=True)
class Capability:
    """A tool as reported by one backend's ``list_tools``."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AggregatedCapability:
    """A capability as exposed by the gateway, under its namespaced name."""

    name: str
    backend_id: str
    original_name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


@dataclass(frozen=True)
class CallerIdentity:
    """An authenticated caller and the scopes granted to it."""

    id: str
    scopes: frozenset[str] = frozenset()

    @classmethod
    def of(cls, id: str, scopes: Iterable[str] = ()) -> CallerIdentity:
        return cls(id=id, scopes=frozenset(scopes))


@dataclass(frozen=True)
class BackendStatus:
    id: str
    name: str
    connected: bool
    capability_count: int
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "connected": self.connected,
            "toolCount": self.capability_count,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


def has_required_scopes(granted: Iterable[str], required: Iterable[str]) -> bool:
    """True when every required scope is among the granted ones."""
    return set(required) <= set(granted)
