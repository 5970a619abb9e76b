# Health router: gateway health summary for load balancers and dashboards.
# Created: 2026-10-18

from __future__ import annotations

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from mcpgate.api.deps import get_pool
from mcpgate.api.v1.schemas.backends import BackendStatusModel
from mcpgate.api.v1.schemas.health import HealthStatus
from mcpgate.pool import PoolManager

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthStatus)
async def get_health(request: Request, pool: PoolManager = Depends(get_pool)):
    """Summarize backend connectivity. Does not require authentication."""
    servers = pool.status()
    connected = sum(1 for s in servers if s.connected)
    if connected == len(servers):
        status = "ok"
    elif connected:
        status = "degraded"
    else:
        status = "error"

    started_at = getattr(request.app.state, "started_at", time.monotonic())
    return HealthStatus(
        status=status,
        uptime=round(time.monotonic() - started_at, 3),
        servers=[BackendStatusModel.from_status(s) for s in servers],
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
