"""mcpgate entry point.

Without flags, loads the configuration and serves the diagnostics API while
the backend pool runs. ``--check`` starts the pool once, prints a status
table and exits.
"""

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.table import Table

from mcpgate import __version__
from mcpgate.config import GatewayConfig, load_config
from mcpgate.errors import ConfigurationError
from mcpgate.logging_setup import setup_logging
from mcpgate.pool import BackendStatus, PoolManager

logger = logging.getLogger(__name__)


def _render_status(statuses: list[BackendStatus], capability_count: int) -> Table:
    table = Table(title=f"Backends ({capability_count} tools)")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Connected")
    table.add_column("Tools", justify="right")
    table.add_column("Error")
    for s in statuses:
        table.add_row(
            s.id,
            s.name,
            "[green]yes[/green]" if s.connected else "[red]no[/red]",
            str(s.capability_count),
            s.error or "",
        )
    return table


async def run_check(config: GatewayConfig, console: Console | None = None) -> int:
    """Start every enabled backend, report, stop. Returns an exit code."""
    console = console or Console()
    pool = PoolManager(config.mcp_servers)
    await pool.start_all()
    try:
        statuses = pool.status()
        console.print(_render_status(statuses, pool.capability_count))
    finally:
        await pool.stop_all()
    return 0 if all(s.connected for s in statuses) else 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="mcpgate",
        description="Aggregate local MCP servers behind one namespaced tool catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mcpgate                            Serve using ./config.json or CONFIG_PATH
  mcpgate --config gateway.json      Serve using an explicit config file
  mcpgate --check                    Start every backend once and print status
""",
    )
    parser.add_argument("--config", "-c", help="Path to the JSON configuration file")
    parser.add_argument("--host", help="Override server.host")
    parser.add_argument("--port", "-p", type=int, help="Override server.port")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--check", action="store_true", help="Start all backends, print status, then exit"
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 2

    logger.info(
        "Configuration loaded: %d backends (%d enabled), auth %s",
        len(config.mcp_servers),
        len(config.enabled_backends),
        "enabled" if config.auth.enabled else "disabled",
    )

    if args.check:
        return asyncio.run(run_check(config))

    from mcpgate.api.serve import run_server

    run_server(config, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
