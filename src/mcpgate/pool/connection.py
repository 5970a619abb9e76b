"""Backend connection: one local MCP server process and its client session.

A BackendConnection launches its server over stdio, performs the MCP
handshake, caches the tool list and forwards tool calls. It knows nothing
about callers or scopes; the pool manager enforces those.

The stdio client and the ClientSession are entered and exited inside a single
owner task per connection. connect() waits for that task to report a ready
session, disconnect() signals it and waits for it to finish.

Created: 2026-10-18
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import anyio
from mcp.shared.exceptions import McpError
from mcp.types import CONNECTION_CLOSED

from mcpgate.errors import BackendConnectionError, BackendExecutionError
from mcpgate.pool.models import BackendDefinition, Capability, ConnectionState

logger = logging.getLogger(__name__)

# Seconds to wait for the owner task to close the session and stop the process.
CLOSE_TIMEOUT = 5.0

_CHANNEL_CLOSED = (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream)


def is_channel_lost(error: BaseException) -> bool:
    """True when ``error`` means the backend's stdio channel is gone.

    The client session reports a dead process to pending and later requests
    as ``McpError`` with the ``CONNECTION_CLOSED`` code.
    """
    if isinstance(error, McpError):
        return error.error.code == CONNECTION_CLOSED
    return isinstance(error, _CHANNEL_CLOSED)


def result_text(result: Any) -> str:
    """Join the text blocks of a ``CallToolResult``."""
    texts = []
    for block in getattr(result, "content", None) or []:
        if hasattr(block, "text"):
            texts.append(block.text)
    return "\n".join(texts)


class BackendConnection:
    """Owns exactly one backend process and its MCP session."""

    def __init__(self, definition: BackendDefinition) -> None:
        self.definition = definition
        self.last_error: str | None = None
        self._state = ConnectionState.DISCONNECTED
        self._session: Any = None  # mcp.ClientSession
        self._owner: asyncio.Task | None = None
        self._closing: asyncio.Event | None = None
        self._capabilities: list[Capability] = []
        self._lock = asyncio.Lock()

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def description(self) -> str | None:
        return self.definition.description

    @property
    def required_scopes(self) -> frozenset[str]:
        return self.definition.required_scopes

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def capabilities(self) -> list[Capability]:
        """Snapshot of the cached tool list."""
        return list(self._capabilities)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Launch the backend, perform the handshake and fetch its tools.

        Calling this while already connected logs a warning and returns.
        Any failure leaves the connection torn down and raises
        ``BackendConnectionError`` chained to the underlying cause.
        """
        async with self._lock:
            if self._state is ConnectionState.CONNECTED:
                logger.warning("Backend '%s' already connected", self.id)
                return

            logger.info(
                "Connecting to backend '%s': %s %s",
                self.id,
                self.definition.command,
                " ".join(self.definition.args),
            )
            self._state = ConnectionState.CONNECTING
            self.last_error = None

            ready: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
            closing = asyncio.Event()
            self._closing = closing
            self._owner = asyncio.create_task(
                self._own_channel(ready, closing), name=f"mcpgate-backend-{self.id}"
            )

            try:
                self._session = await ready
                self._state = ConnectionState.CONNECTED
                await self.refresh_capabilities()
            except asyncio.CancelledError:
                await self._teardown()
                raise
            except Exception as e:
                self.last_error = str(e) or type(e).__name__
                logger.error("Failed to connect to backend '%s': %s", self.id, e)
                await self._teardown()
                raise BackendConnectionError(self.id, e) from e

            logger.info(
                "Connected to backend '%s' (%d tools)", self.id, len(self._capabilities)
            )

    async def disconnect(self) -> None:
        """Close the session and stop the process. Never raises.

        Safe to call repeatedly; the connection always ends up disconnected.
        """
        async with self._lock:
            if self._owner is None and self._state is ConnectionState.DISCONNECTED:
                return
            logger.info("Disconnecting from backend '%s'", self.id)
            try:
                await self._teardown()
            except Exception as e:
                logger.error("Error disconnecting from backend '%s': %s", self.id, e)
            finally:
                self._mark_disconnected()
            logger.info("Disconnected from backend '%s'", self.id)

    @asynccontextmanager
    async def _open_channel(self) -> AsyncIterator[Any]:
        """Spawn the stdio process and yield an initialized ClientSession."""
        from mcp import ClientSession, StdioServerParameters
        from mcp.client.stdio import stdio_client

        params = StdioServerParameters(
            command=self.definition.command,
            args=list(self.definition.args),
            env=self._build_env(),
            cwd=self.definition.cwd,
        )
        async with stdio_client(params) as (read_stream, write_stream):
            async with ClientSession(read_stream, write_stream) as session:
                await session.initialize()
                yield session

    def _build_env(self) -> dict[str, str]:
        return {**os.environ, **self.definition.env}

    async def _own_channel(self, ready: asyncio.Future[Any], closing: asyncio.Event) -> None:
        try:
            async with self._open_channel() as session:
                ready.set_result(session)
                await closing.wait()
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
                return
            # Task groups inside the stdio client wrap the real failure.
            while isinstance(e, BaseExceptionGroup) and len(e.exceptions) == 1:
                e = e.exceptions[0]
            self.last_error = str(e) or type(e).__name__
            logger.warning("Channel to backend '%s' closed with error: %s", self.id, e)
        finally:
            if not ready.done():
                ready.cancel()
            if not closing.is_set() and self._state is ConnectionState.CONNECTED:
                logger.warning("Backend '%s' disconnected unexpectedly", self.id)
                self.last_error = self.last_error or "disconnected unexpectedly"
                self._mark_disconnected()

    async def _teardown(self) -> None:
        owner, closing = self._owner, self._closing
        self._owner = None
        self._closing = None
        try:
            if owner is None:
                return
            if closing is not None:
                closing.set()
            done, _ = await asyncio.wait({owner}, timeout=CLOSE_TIMEOUT)
            if not done:
                logger.warning(
                    "Backend '%s' did not close within %.0fs, cancelling",
                    self.id,
                    CLOSE_TIMEOUT,
                )
                owner.cancel()
                await asyncio.wait({owner})
            if not owner.cancelled() and owner.exception() is not None:
                logger.error(
                    "Backend '%s' owner task failed: %s", self.id, owner.exception()
                )
        finally:
            self._mark_disconnected()

    def _mark_disconnected(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        self._session = None
        self._capabilities = []

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def refresh_capabilities(self) -> list[Capability]:
        """Re-fetch the tool list and replace the cache in one assignment.

        Errors from the backend's ``list_tools`` propagate unchanged.
        """
        session = self._session
        if session is None or self._state is not ConnectionState.CONNECTED:
            raise BackendConnectionError(self.id, "not connected")

        try:
            result = await session.list_tools()
        except Exception as e:
            logger.error("Failed to refresh tools for backend '%s': %s", self.id, e)
            raise

        self._capabilities = [
            Capability(
                name=tool.name,
                description=getattr(tool, "description", "") or "",
                input_schema=getattr(tool, "inputSchema", {}) or {},
            )
            for tool in result.tools
        ]
        logger.debug(
            "Refreshed tools for backend '%s' (%d tools)", self.id, len(self._capabilities)
        )
        return list(self._capabilities)

    async def invoke(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        """Call one tool and return the raw ``CallToolResult``.

        Any failure, including a result flagged ``isError`` or an expired
        ``call_timeout``, raises ``BackendExecutionError``. A channel that has
        gone away raises ``BackendConnectionError`` instead. Never retried.
        """
        session = self._session
        if session is None or self._state is not ConnectionState.CONNECTED:
            raise BackendConnectionError(self.id, "not connected")

        timeout = self.definition.call_timeout
        logger.debug("Calling tool '%s' on backend '%s'", name, self.id)
        try:
            result = await asyncio.wait_for(session.call_tool(name, arguments or {}), timeout)
        except asyncio.TimeoutError as e:
            logger.error(
                "Tool '%s' on backend '%s' timed out after %ss", name, self.id, timeout
            )
            raise BackendExecutionError(self.id, name, f"timed out after {timeout}s") from e
        except Exception as e:
            if is_channel_lost(e):
                logger.error("Backend '%s' channel closed during '%s': %s", self.id, name, e)
                self.last_error = str(e) or "channel closed"
                self._mark_disconnected()
                raise BackendConnectionError(self.id, e) from e
            logger.error("Tool call failed (%s/%s): %s", self.id, name, e)
            raise BackendExecutionError(self.id, name, e) from e

        if getattr(result, "isError", False):
            raise BackendExecutionError(
                self.id, name, result_text(result) or "tool reported an error"
            )
        return result

    def __repr__(self) -> str:
        return f"BackendConnection(id={self.id!r}, state={self._state.value})"
