"""mcpgate: aggregates local MCP servers into one namespaced tool catalog.

Created: 2026-10-18
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mcpgate")
except PackageNotFoundError:
    __version__ = "0.0.0"
