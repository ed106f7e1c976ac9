"""MCP server for padsync using stdio transport.

Exposes profile sync, status and conflict resolution as MCP tools so an
agent can drive syncs and relay conflict decisions from a human.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.async_utils import run_sync
from ..logger import setup_logging
from ..sync.engine import SyncEngine
from ..version import check_version_consistency
from .lifespan import server_lifespan
from .tools import ALL_SPECS, ToolRegistry, build_error_response
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

server = Server("padsync")

# Initialized in main() from the lifespan context
_engine: SyncEngine | None = None
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available)
# ---------------------------------------------------------------------------


async def _handle_ping(engine: SyncEngine, args: dict) -> types.CallToolResult:
    """Handle ping tool -- test Google Drive connectivity."""
    try:
        account = await run_sync(engine.client.validate_connection)
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"padsync connected to Google Drive as {account or 'unknown user'}.",
                )
            ]
        )
    except Exception as e:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"Google Drive connection failed: {e}. Check PADSYNC_ACCESS_TOKEN or PADSYNC_TOKEN_FILE.",
                )
            ],
            isError=True,
        )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test Google Drive connectivity and return the signed-in account",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    writes=False,
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_engine() -> SyncEngine:
    """Return the global SyncEngine.

    Raises:
        RuntimeError: If the server lifespan has not started.
    """
    if _engine is None:
        raise RuntimeError("SyncEngine not initialized. Server lifespan not started.")
    return _engine


def set_engine(engine: SyncEngine | None) -> None:
    global _engine
    _engine = engine


def get_registry() -> ToolRegistry:
    """Return the global ToolRegistry.

    Raises:
        RuntimeError: If the registry is not initialized.
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(name: str, arguments: dict | None) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch."""
    engine = get_engine()
    try:
        return await get_registry().call_tool(name, arguments, engine)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Logging goes to a file only (stdout carries JSON-RPC).  The lifespan
    loads config, builds the engine and starts the scheduler.

    Args:
        config_overrides: Optional dict with CLI values (access_token,
            token_file, data_dir, debug, log_file, read_only, no_scheduler)
    """
    overrides = config_overrides or {}

    # Must run before stdio_server so nothing reaches stdout
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    is_consistent, message = check_version_consistency()
    if not is_consistent:
        logger.warning(message)
        sys.stderr.write(f"Warning: {message}\n")
    else:
        logger.info(message)

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, read_only=overrides.get("read_only", False))
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    if overrides.get("read_only"):
        print(
            f"Read-only mode: {registry.tool_count()} of {len(all_specs)} tools enabled",
            file=sys.stderr,
        )
    set_registry(registry)

    # set_engine() is called here rather than in the lifespan because
    # `python -m padsync.mcp.server` loads this module as __main__.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_engine(ctx["engine"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="padsync",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_engine(None)
            set_registry(None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="padsync MCP server - sync soundboard profiles with Google Drive",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .padsync/config.yml)
  padsync-mcp

  # Token kept current by an external OAuth helper
  padsync-mcp --token-file ~/.config/padsync/token

  # Inspect only, never write
  padsync-mcp --read-only --no-scheduler

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )
    parser.add_argument(
        "--access-token",
        help="Google Drive access token (visible in process list -- prefer PADSYNC_ACCESS_TOKEN)",
    )
    parser.add_argument(
        "--token-file",
        help="File holding the current access token, re-read after a 401",
    )
    parser.add_argument(
        "--data-dir",
        help="Local store directory (default: PADSYNC_DATA_DIR or .padsync/data)",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path (default: LOG_FILE or /tmp/padsync-mcp.log)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Only expose tools that do not write locally or to Drive",
    )
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Disable startup and periodic syncs",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"padsync version {__version__}",
    )
    return parser


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args()

    config_overrides = {
        key: value
        for key, value in {
            "access_token": args.access_token,
            "token_file": args.token_file,
            "data_dir": args.data_dir,
            "log_file": args.log_file,
            "debug": args.debug,
            "read_only": args.read_only,
            "no_scheduler": args.no_scheduler,
        }.items()
        if value
    }

    if config_overrides:
        shown = [k for k in config_overrides if k != "access_token"]
        if shown:
            print(f"Config overrides from CLI: {', '.join(shown)}", file=sys.stderr)

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
