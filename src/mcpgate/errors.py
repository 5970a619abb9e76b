# Gateway error hierarchy.
# Created: 2026-10-18
#
# Every error carries a stable code and an HTTP-ish status so the API layer
# can render it without re-deriving context.

from __future__ import annotations

from typing import Any


def _describe(cause: BaseException | str | None) -> str | None:
    if cause is None:
        return None
    if isinstance(cause, BaseException):
        return str(cause) or type(cause).__name__
    return cause


class GatewayError(Exception):
    """Base class for all gateway errors."""

    code = "GATEWAY_ERROR"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "statusCode": self.status_code,
            "details": self.details,
        }


class AuthenticationError(GatewayError):
    code = "AUTHENTICATION_ERROR"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AuthorizationError(GatewayError):
    """Caller lacks the scopes a backend requires."""

    code = "AUTHORIZATION_ERROR"
    status_code = 403

    def __init__(self, message: str = "Insufficient permissions", **details: Any):
        super().__init__(message, details)


class NotFoundError(GatewayError):
    code = "NOT_FOUND"
    status_code = 404


class BackendNotFoundError(NotFoundError):
    code = "SERVER_NOT_FOUND"

    def __init__(self, backend_id: str):
        super().__init__(f"Server not found: {backend_id}", {"backend_id": backend_id})
        self.backend_id = backend_id


class CapabilityNotFoundError(NotFoundError):
    code = "TOOL_NOT_FOUND"

    def __init__(self, name: str, backend_id: str | None = None):
        details = {"tool": name}
        if backend_id is not None:
            details["backend_id"] = backend_id
        super().__init__(f"Tool not found: {name}", details)
        self.name = name
        self.backend_id = backend_id


class BackendConnectionError(GatewayError):
    """A backend process or channel could not be established or used."""

    code = "SERVER_CONNECTION_ERROR"
    status_code = 502

    def __init__(self, backend_id: str, cause: BaseException | str | None = None):
        super().__init__(
            f"Failed to connect to server: {backend_id}",
            {"backend_id": backend_id, "cause": _describe(cause)},
        )
        self.backend_id = backend_id
        self.cause = cause


class BackendExecutionError(GatewayError):
    """A connected backend failed to complete one invocation."""

    code = "SERVER_EXECUTION_ERROR"
    status_code = 500

    def __init__(
        self, backend_id: str, capability: str, cause: BaseException | str | None = None
    ):
        super().__init__(
            f"Failed to execute tool {capability} on server {backend_id}",
            {"backend_id": backend_id, "capability": capability, "cause": _describe(cause)},
        )
        self.backend_id = backend_id
        self.capability = capability
        self.cause = cause


class ConfigurationError(GatewayError):
    code = "CONFIGURATION_ERROR"
    status_code = 500

    def __init__(self, message: str, issues: list[str] | None = None):
        super().__init__(message, {"issues": issues} if issues else None)
        self.issues = issues or []


class PoolNotReadyError(GatewayError):
    """The pool is not started, or is still starting or stopping."""

    code = "POOL_NOT_READY"
    status_code = 503

    def __init__(self, state: str):
        super().__init__(f"Backend pool is not ready (state={state})", {"state": state})
        self.state = state
