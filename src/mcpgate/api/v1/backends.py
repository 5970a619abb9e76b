# Backends router: pool status, catalog, restart and refresh.
# Created: 2026-10-18

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from mcpgate.api.deps import get_caller, get_pool, require_scope
from mcpgate.api.v1.schemas.backends import (
    BackendStatusModel,
    CapabilityModel,
    RefreshResponse,
)
from mcpgate.pool import CallerIdentity, PoolManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Backends"])


@router.get(
    "/backends",
    response_model=list[BackendStatusModel],
    dependencies=[Depends(get_caller)],
)
async def list_backends(pool: PoolManager = Depends(get_pool)):
    """Status of every enabled backend."""
    return [BackendStatusModel.from_status(s) for s in pool.status()]


@router.get("/capabilities", response_model=list[CapabilityModel])
async def list_capabilities(
    pool: PoolManager = Depends(get_pool),
    caller: CallerIdentity | None = Depends(get_caller),
):
    """Namespaced tools visible to the caller."""
    return [CapabilityModel.from_capability(c) for c in pool.get_capabilities_for(caller)]


@router.post(
    "/backends/{backend_id}/restart",
    response_model=BackendStatusModel,
    dependencies=[Depends(require_scope("admin"))],
)
async def restart_backend(backend_id: str, pool: PoolManager = Depends(get_pool)):
    """Stop and relaunch one backend, then rebuild the catalog."""
    await pool.restart_backend(backend_id)
    status = next(s for s in pool.status() if s.id == backend_id)
    return BackendStatusModel.from_status(status)


@router.post(
    "/capabilities/refresh",
    response_model=RefreshResponse,
    dependencies=[Depends(require_scope("admin"))],
)
async def refresh_capabilities(pool: PoolManager = Depends(get_pool)):
    """Re-fetch tool lists from all connected backends."""
    capabilities = await pool.refresh_capabilities()
    logger.info("Catalog refreshed via API (%d tools)", len(capabilities))
    return RefreshResponse(capability_count=len(capabilities))
