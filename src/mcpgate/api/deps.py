# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-18

from __future__ import annotations

import hmac

from fastapi import Depends, Request

from mcpgate.config import GatewayConfig
from mcpgate.errors import AuthenticationError, AuthorizationError
from mcpgate.pool import CallerIdentity, PoolManager, has_required_scopes


def get_pool(request: Request) -> PoolManager:
    return request.app.state.pool


def get_config(request: Request) -> GatewayConfig:
    return request.app.state.config


async def get_caller(
    request: Request, config: GatewayConfig = Depends(get_config)
) -> CallerIdentity | None:
    """Resolve the ``Authorization: Bearer`` token to a configured user.

    Returns None when auth is disabled (every backend visible).
    """
    if not config.auth.enabled:
        return None

    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError()

    token = token.strip()
    for user in config.auth.users:
        if hmac.compare_digest(user.token.encode(), token.encode()):
            return CallerIdentity.of(user.id, user.scopes)
    raise AuthenticationError("Invalid token")


def require_scope(*scopes: str):
    """FastAPI dependency that checks the caller holds every scope given.

    Usage::

        @router.post("/backends/{backend_id}/restart", dependencies=[Depends(require_scope("admin"))])
        async def restart_backend(...): ...
    """

    async def _check(caller: CallerIdentity | None = Depends(get_caller)) -> None:
        if caller is None:
            return
        if not has_required_scopes(caller.scopes, scopes):
            raise AuthorizationError(
                f"Missing required scope: {' and '.join(sorted(scopes))}",
                required=sorted(scopes),
            )

    return _check
