# API v1 router aggregation.
# Created: 2026-10-18
#
# mount_v1_routers(app) registers the domain routers at /api/v1/.

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI


def mount_v1_routers(app: FastAPI) -> None:
    """Mount the v1 routers on *app*; health is also served at ``/health``."""
    from mcpgate.api.v1.backends import router as backends_router
    from mcpgate.api.v1.health import router as health_router

    app.include_router(health_router)
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(backends_router, prefix="/api/v1")
