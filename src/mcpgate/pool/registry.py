# Capability registry: flat, namespaced index of tools across backends.
# Created: 2026-10-18
#
# The snapshot is rebuilt from scratch on every rebuild() and swapped in with
# a single assignment, so readers see either the old or the new index.

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from mcpgate.errors import CapabilityNotFoundError
from mcpgate.pool.models import NAMESPACE_SEPARATOR, AggregatedCapability

if TYPE_CHECKING:
    from mcpgate.pool.connection import BackendConnection

logger = logging.getLogger(__name__)


def build_namespaced_name(backend_id: str, capability_name: str) -> str:
    return f"{backend_id}{NAMESPACE_SEPARATOR}{capability_name}"


def parse_namespaced_name(name: str) -> tuple[str, str] | None:
    """Split on the first separator. Returns None when there is none."""
    backend_id, sep, capability_name = name.partition(NAMESPACE_SEPARATOR)
    if not sep:
        return None
    return backend_id, capability_name


class CapabilityRegistry:
    """
    Namespaced tool index built from the connected backends.

    Usage:
        registry = CapabilityRegistry()
        registry.rebuild({"fs": fs_connection, "gh": gh_connection})

        registry.resolve("fs_read_file")   # -> ("fs", "read_file")
    """

    def __init__(self) -> None:
        self._snapshot: dict[str, AggregatedCapability] = {}

    def rebuild(self, connections: Mapping[str, BackendConnection]) -> list[AggregatedCapability]:
        """Replace the snapshot with the tools of every connected backend.

        Iterates ``connections`` in its own order; on a namespaced-name
        collision the later backend wins.
        """
        snapshot: dict[str, AggregatedCapability] = {}
        for backend_id, connection in connections.items():
            if not connection.connected:
                logger.warning("Skipping disconnected backend '%s' during rebuild", backend_id)
                continue

            for capability in connection.capabilities:
                name = build_namespaced_name(backend_id, capability.name)
                if name in snapshot:
                    logger.warning("Duplicate namespaced tool name: %s", name)
                snapshot[name] = AggregatedCapability(
                    name=name,
                    backend_id=backend_id,
                    original_name=capability.name,
                    description=f"[{connection.name}] {capability.description or capability.name}",
                    input_schema=capability.input_schema,
                )

        self._snapshot = snapshot
        logger.info(
            "Aggregated %d tools from %d backends", len(snapshot), len(connections)
        )
        return list(snapshot.values())

    def resolve(self, name: str) -> tuple[str, str]:
        """Map a namespaced name to ``(backend_id, original_name)``."""
        capability = self.get(name)
        if capability is None:
            parsed = parse_namespaced_name(name)
            raise CapabilityNotFoundError(name, parsed[0] if parsed else None)
        return capability.backend_id, capability.original_name

    def get(self, name: str) -> AggregatedCapability | None:
        return self._snapshot.get(name)

    def list(self) -> list[AggregatedCapability]:
        return list(self._snapshot.values())

    def list_for_backend(self, backend_id: str) -> list[AggregatedCapability]:
        return [c for c in self._snapshot.values() if c.backend_id == backend_id]

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, name: object) -> bool:
        return name in self._snapshot
