# Health schemas.
# Created: 2026-10-18

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from mcpgate.api.v1.schemas.backends import BackendStatusModel


class HealthStatus(BaseModel):
    """Gateway health: ok when every enabled backend is connected."""

    status: Literal["ok", "degraded", "error"]
    uptime: float
    servers: list[BackendStatusModel]
    timestamp: str
