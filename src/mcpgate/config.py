"""Gateway configuration.

Loaded from JSON (explicit path, ``CONFIG_PATH``, or ``./config.json``) with
an environment-variable fallback, ``${VAR}`` substitution in every string
value, and pydantic validation.

Created: 2026-10-18
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from mcpgate.errors import ConfigurationError
from mcpgate.pool.models import BackendDefinition

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config.json"

_ENV_REF = re.compile(r"\$\{([^}]+)\}")


class ServerSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    host: str = "0.0.0.0"
    port: int = Field(default=3000, gt=0)
    base_url: str = Field(default="", alias="baseUrl")

    @model_validator(mode="after")
    def _default_base_url(self) -> ServerSettings:
        if not self.base_url:
            self.base_url = f"http://localhost:{self.port}"
        return self


class UserConfig(BaseModel):
    """A statically configured caller and its bearer token."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    email: str = ""
    token: str = Field(..., min_length=1)
    scopes: list[str] = []


class AuthSettings(BaseModel):
    enabled: bool = True
    users: list[UserConfig] = []


class GatewayConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    server: ServerSettings = Field(default_factory=ServerSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    mcp_servers: list[BackendDefinition] = Field(default_factory=list, alias="mcpServers")

    @model_validator(mode="after")
    def _unique_backend_ids(self) -> GatewayConfig:
        seen: set[str] = set()
        for definition in self.mcp_servers:
            if definition.id in seen:
                raise ValueError(f"duplicate backend id: {definition.id}")
            seen.add(definition.id)
        return self

    @property
    def enabled_backends(self) -> list[BackendDefinition]:
        return [d for d in self.mcp_servers if d.enabled]


def resolve_env_vars(value: Any) -> Any:
    """Replace ``${VAR}`` references in every string, recursively.

    Unset variables become empty strings.
    """
    if isinstance(value, str):

        def _sub(match: re.Match[str]) -> str:
            var = match.group(1)
            resolved = os.environ.get(var)
            if resolved is None:
                logger.warning("Environment variable %s not set, using empty string", var)
                return ""
            return resolved

        return _ENV_REF.sub(_sub, value)
    if isinstance(value, list):
        return [resolve_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}
    return value


def _load_file(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to load config from {path}: {e}") from e


def _load_env() -> dict[str, Any]:
    raw: dict[str, Any] = {}

    port = os.environ.get("GATEWAY_PORT") or os.environ.get("PORT")
    host = os.environ.get("GATEWAY_HOST")
    base_url = os.environ.get("GATEWAY_BASE_URL")
    if port or host or base_url:
        server: dict[str, Any] = {}
        if port:
            server["port"] = port
        if host:
            server["host"] = host
        if base_url:
            server["baseUrl"] = base_url
        raw["server"] = server

    auth_enabled = os.environ.get("GATEWAY_AUTH_ENABLED")
    if auth_enabled is not None:
        raw["auth"] = {"enabled": auth_enabled.lower() == "true", "users": []}

    return raw


def _format_issues(error: ValidationError) -> list[str]:
    issues = []
    for issue in error.errors():
        location = ".".join(str(part) for part in issue["loc"])
        issues.append(f"{location}: {issue['msg']}" if location else issue["msg"])
    return issues


def parse_config(raw: Any) -> GatewayConfig:
    """Resolve env references in *raw* and validate it."""
    try:
        return GatewayConfig.model_validate(resolve_env_vars(raw or {}))
    except ValidationError as e:
        issues = _format_issues(e)
        raise ConfigurationError(f"Invalid configuration: {', '.join(issues)}", issues) from e


def load_config(path: str | Path | None = None) -> GatewayConfig:
    """Load and validate the gateway configuration."""
    env_path = os.environ.get("CONFIG_PATH")

    if path is not None:
        logger.info("Loading config from %s", path)
        raw = _load_file(Path(path))
    elif env_path and Path(env_path).exists():
        logger.info("Loading config from CONFIG_PATH: %s", env_path)
        raw = _load_file(Path(env_path))
    elif Path(DEFAULT_CONFIG_FILE).exists():
        logger.info("Loading config from ./%s", DEFAULT_CONFIG_FILE)
        raw = _load_file(Path(DEFAULT_CONFIG_FILE))
    else:
        logger.info("Loading config from environment variables")
        raw = _load_env()

    return parse_config(raw)
