"""Pool manager: lifecycle, capability catalog and call routing.

Owns every BackendConnection and the CapabilityRegistry:
- Starting/stopping all enabled backends concurrently, tolerating failures
- Rebuilding the registry whenever the set of live connections changes
- Filtering the catalog by caller scopes
- Routing a namespaced tool call to its backend after a scope check

Created: 2026-10-18
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from mcpgate.errors import (
    AuthorizationError,
    BackendConnectionError,
    BackendNotFoundError,
    PoolNotReadyError,
)
from mcpgate.pool.connection import BackendConnection
from mcpgate.pool.models import (
    AggregatedCapability,
    BackendDefinition,
    BackendStatus,
    CallerIdentity,
    PoolState,
    has_required_scopes,
)
from mcpgate.pool.registry import CapabilityRegistry

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[BackendDefinition], BackendConnection]


class PoolManager:
    """Manages the pool of local backend connections."""

    def __init__(
        self,
        definitions: Sequence[BackendDefinition],
        connection_factory: ConnectionFactory = BackendConnection,
        registry: CapabilityRegistry | None = None,
    ) -> None:
        self._definitions = list(definitions)
        self._connection_factory = connection_factory
        self._registry = registry if registry is not None else CapabilityRegistry()
        self._connections: dict[str, BackendConnection] = {}
        self._errors: dict[str, str] = {}
        self._state = PoolState.EMPTY
        self._lock = asyncio.Lock()
        logger.info("Pool manager initialized with %d backend configs", len(self._definitions))

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def definitions(self) -> list[BackendDefinition]:
        return list(self._definitions)

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    @property
    def connected_count(self) -> int:
        return sum(1 for c in self._connections.values() if c.connected)

    @property
    def capability_count(self) -> int:
        return len(self._registry)

    def _enabled_definitions(self) -> list[BackendDefinition]:
        return [d for d in self._definitions if d.enabled]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_all(self) -> None:
        """Connect every enabled backend concurrently.

        A backend that fails to connect is logged and left out of the pool;
        it never stops the others from starting.
        """
        async with self._lock:
            if self._state is not PoolState.EMPTY:
                logger.warning("Pool already started (state=%s)", self._state.value)
                return

            self._state = PoolState.STARTING
            enabled = self._enabled_definitions()
            logger.info("Starting %d enabled backends", len(enabled))

            candidates = [self._connection_factory(d) for d in enabled]
            results = await asyncio.gather(
                *(self._connect_one(c) for c in candidates), return_exceptions=True
            )

            live: dict[str, BackendConnection] = {}
            for connection, result in zip(candidates, results):
                if isinstance(result, BaseException):
                    self._record_failure(connection.id, result)
                elif connection.connected:
                    live[connection.id] = connection

            self._connections = live
            self.rebuild_registry()
            self._state = PoolState.READY
            logger.info(
                "Backend pool started: %d/%d connected, %d tools",
                len(live),
                len(enabled),
                len(self._registry),
            )

    async def _connect_one(self, connection: BackendConnection) -> None:
        self._errors.pop(connection.id, None)
        await connection.connect()

    def _record_failure(self, backend_id: str, error: BaseException) -> None:
        cause = getattr(error, "cause", None) or error
        self._errors[backend_id] = str(cause) or type(cause).__name__
        logger.error("Failed to start backend '%s': %s", backend_id, self._errors[backend_id])

    async def stop_all(self) -> None:
        """Disconnect every backend concurrently. Never raises."""
        async with self._lock:
            self._state = PoolState.STOPPING
            connections = list(self._connections.values())
            logger.info("Stopping %d backends", len(connections))

            results = await asyncio.gather(
                *(c.disconnect() for c in connections), return_exceptions=True
            )
            for connection, result in zip(connections, results):
                if isinstance(result, BaseException):
                    logger.error("Error stopping backend '%s': %s", connection.id, result)

            self._connections.clear()
            self._errors.clear()
            self.rebuild_registry()
            self._state = PoolState.EMPTY
            logger.info("All backends stopped")

    async def restart_backend(self, backend_id: str) -> BackendConnection:
        """Replace one backend's connection with a freshly started one.

        Only allowed once the pool is ready; raises ``PoolNotReadyError``
        before start_all() or after stop_all().
        """
        definition = next(
            (d for d in self._enabled_definitions() if d.id == backend_id), None
        )
        if definition is None:
            raise BackendNotFoundError(backend_id)

        async with self._lock:
            if self._state is not PoolState.READY:
                raise PoolNotReadyError(self._state.value)

            old = self._connections.pop(backend_id, None)
            if old is not None:
                await old.disconnect()

            connection = self._connection_factory(definition)
            try:
                await self._connect_one(connection)
            except Exception as e:
                self._record_failure(backend_id, e)
                raise
            finally:
                if connection.connected:
                    self._connections[backend_id] = connection
                    self._connections = self._ordered(self._connections)
                self.rebuild_registry()

            logger.info("Backend '%s' restarted", backend_id)
            return connection

    async def refresh_capabilities(self) -> list[AggregatedCapability]:
        """Re-fetch tool lists from every connected backend and rebuild."""
        async with self._lock:
            connections = [c for c in self._connections.values() if c.connected]
            results = await asyncio.gather(
                *(c.refresh_capabilities() for c in connections), return_exceptions=True
            )
            for connection, result in zip(connections, results):
                if isinstance(result, BaseException):
                    logger.warning(
                        "Failed to refresh tools for backend '%s': %s", connection.id, result
                    )
            return self.rebuild_registry()

    def rebuild_registry(self) -> list[AggregatedCapability]:
        return self._registry.rebuild(self._connections)

    def _ordered(self, connections: dict[str, BackendConnection]) -> dict[str, BackendConnection]:
        return {d.id: connections[d.id] for d in self._definitions if d.id in connections}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_connection(self, backend_id: str) -> BackendConnection:
        connection = self._connections.get(backend_id)
        if connection is None:
            raise BackendNotFoundError(backend_id)
        return connection

    def has_backend(self, backend_id: str) -> bool:
        connection = self._connections.get(backend_id)
        return connection is not None and connection.connected

    def get_capabilities_for(
        self, caller: CallerIdentity | None = None
    ) -> list[AggregatedCapability]:
        """Return the catalog, limited to backends the caller may use.

        Backends that dropped since the last rebuild are left out.
        """
        visible = []
        for capability in self._registry.list():
            connection = self._connections.get(capability.backend_id)
            if connection is None or not connection.connected:
                continue
            if caller is None or has_required_scopes(caller.scopes, connection.required_scopes):
                visible.append(capability)
        return visible

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        caller: CallerIdentity | None = None,
    ) -> Any:
        """Route a namespaced tool call to the backend that owns it.

        Raises ``CapabilityNotFoundError`` for unknown names,
        ``AuthorizationError`` when the caller lacks the backend's scopes,
        and otherwise whatever the backend connection raises.
        """
        backend_id, original_name = self._registry.resolve(name)
        connection = self.get_connection(backend_id)

        if caller is not None and not has_required_scopes(
            caller.scopes, connection.required_scopes
        ):
            raise AuthorizationError(
                f"Insufficient scopes to access server {backend_id}",
                backend_id=backend_id,
                required=sorted(connection.required_scopes),
            )

        logger.info(
            "Routing tool call %s -> %s/%s (caller=%s)",
            name,
            backend_id,
            original_name,
            caller.id if caller else None,
        )
        try:
            return await connection.invoke(original_name, arguments or {})
        except BackendConnectionError:
            if not connection.connected:
                self._errors[backend_id] = connection.last_error or "disconnected"
                self.rebuild_registry()
            raise

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> list[BackendStatus]:
        """Point-in-time status for every enabled backend."""
        result = []
        for definition in self._enabled_definitions():
            connection = self._connections.get(definition.id)
            connected = connection is not None and connection.connected
            error = None
            if not connected:
                error = (
                    self._errors.get(definition.id)
                    or (connection.last_error if connection is not None else None)
                    or "Not connected"
                )
            result.append(
                BackendStatus(
                    id=definition.id,
                    name=definition.name,
                    connected=connected,
                    capability_count=len(connection.capabilities) if connected else 0,
                    error=error,
                )
            )
        return result
