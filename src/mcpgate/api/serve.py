"""Diagnostics API server.

Builds the FastAPI app around a PoolManager. The lifespan starts the pool
(in a background task by default, so ``/health`` answers while backends are
still connecting) and stops it on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mcpgate.config import GatewayConfig
from mcpgate.errors import GatewayError
from mcpgate.pool import PoolManager

logger = logging.getLogger(__name__)


async def _start_pool(pool: PoolManager) -> None:
    try:
        await pool.start_all()
        logger.info(
            "Backend pool initialized: %d connected, %d tools",
            pool.connected_count,
            pool.capability_count,
        )
    except Exception:
        logger.exception("Failed to initialize backend pool")


def create_app(
    config: GatewayConfig,
    pool: PoolManager | None = None,
    background_start: bool = True,
) -> FastAPI:
    """Build the FastAPI application."""
    from mcpgate import __version__
    from mcpgate.api.v1 import mount_v1_routers

    if pool is None:
        pool = PoolManager(config.mcp_servers)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.started_at = time.monotonic()
        start_task: asyncio.Task | None = None
        if background_start:
            start_task = asyncio.create_task(_start_pool(pool), name="mcpgate-pool-start")
        else:
            await _start_pool(pool)
        try:
            yield
        finally:
            if start_task is not None:
                await start_task
            await pool.stop_all()

    app = FastAPI(
        title="mcpgate",
        description="MCP gateway: backend pool status and tool catalog.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url=None,
        openapi_url="/api/v1/openapi.json",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.pool = pool
    app.state.started_at = time.monotonic()

    @app.exception_handler(GatewayError)
    async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code, content={"error": exc.to_dict()}, headers=headers
        )

    mount_v1_routers(app)
    return app


def run_server(config: GatewayConfig, host: str | None = None, port: int | None = None) -> None:
    """Serve the diagnostics API with uvicorn until interrupted."""
    import uvicorn

    host = host or config.server.host
    port = port or config.server.port
    app = create_app(config)

    logger.info("Gateway listening on %s:%d", host, port)
    logger.info("Health check: %s/health", config.server.base_url)
    logger.info("API docs: %s/api/v1/docs", config.server.base_url)
    uvicorn.run(app, host=host, port=port, log_config=None)
