"""Backend pool: connections to local MCP servers, the namespaced tool
catalog built from them, and call routing.

Created: 2026-10-18
"""

from mcpgate.pool.connection import BackendConnection
from mcpgate.pool.manager import PoolManager
from mcpgate.pool.models import (
    NAMESPACE_SEPARATOR,
    AggregatedCapability,
    BackendDefinition,
    BackendStatus,
    CallerIdentity,
    Capability,
    ConnectionState,
    PoolState,
    has_required_scopes,
)
from mcpgate.pool.registry import CapabilityRegistry, build_namespaced_name, parse_namespaced_name

__all__ = [
    "NAMESPACE_SEPARATOR",
    "AggregatedCapability",
    "BackendConnection",
    "BackendDefinition",
    "BackendStatus",
    "CallerIdentity",
    "Capability",
    "CapabilityRegistry",
    "ConnectionState",
    "PoolManager",
    "PoolState",
    "build_namespaced_name",
    "has_required_scopes",
    "parse_namespaced_name",
]
