"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from ..config import load_config
from ..config_loader import discover_config_files, load_hierarchical_config
from ..config_schema import UnifiedConfig, build_config
from ..core.async_utils import init_semaphore, run_sync
from ..core.auth import token_provider_from_config
from ..core.client import DriveClient
from ..errors import NotAuthenticatedError, SyncError
from ..logger import resolve_level
from ..sync.engine import SyncEngine
from ..sync.scheduler import SyncScheduler
from ..sync.state import LocalStore

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config files if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Create the Drive client, local store and sync engine
    - Validate Drive credentials (a missing token is allowed: remote
      profiles then report not_authenticated)
    - Start the periodic sync scheduler

    On shutdown:
    - Stop the scheduler

    Args:
        config_overrides: Optional dict with config values from CLI
            (access_token, token_file, data_dir, debug, no_scheduler)

    Yields:
        Dict with 'client', 'engine' and 'scheduler' keys

    Raises:
        RuntimeError: If configuration is invalid or Drive rejects the
            credentials.
    """
    logger.info("MCP server starting...")
    _stderr_print("padsync MCP server starting...")
    overrides = config_overrides or {}

    try:
        # .env first so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        unified = UnifiedConfig()
        sources = []
        config_files = discover_config_files()
        if config_files:
            unified = build_config(load_hierarchical_config())
            sources.append(f"config file: {config_files[0]}")

        config = load_config(
            access_token=overrides.get("access_token"),
            token_file=overrides.get("token_file"),
            data_dir=overrides.get("data_dir"),
            debug=overrides.get("debug", False),
            yaml_fallbacks=unified.fallbacks(),
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        _stderr_print(f"  Data directory: {config.data_dir}")

        # The YAML logging section is only known once the config is loaded
        logging.getLogger().setLevel(
            resolve_level("mcp", config.debug, unified.logging.level)
        )
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise RuntimeError(f"Configuration error: {e}") from e

    client = DriveClient(config, token_provider_from_config(config))
    store = LocalStore(Path(config.data_dir))
    engine = SyncEngine(client, store)

    logger.info("Validating Google Drive connection...")
    _stderr_print("  Validating Google Drive connection...")
    try:
        account = await run_sync(client.validate_connection)
        logger.info("Connected to Google Drive as %s", account)
        _stderr_print(f"  Connected to Google Drive as {account}")
    except NotAuthenticatedError:
        logger.warning("No access token; remote profiles will not sync")
        _stderr_print("  No access token configured; remote sync disabled until one is set.")
    except SyncError as e:
        logger.error("Failed to connect to Google Drive: %s", e)
        _stderr_print("ERROR: Google Drive connection failed.")
        _stderr_print(f"  {e}")
        raise RuntimeError(f"Google Drive connection failed: {e}") from e

    init_semaphore(config.max_parallel_requests)

    scheduler = SyncScheduler(
        engine,
        interval_seconds=config.sync_interval,
        sync_on_start=unified.sync.sync_on_start,
    )
    if not overrides.get("no_scheduler"):
        scheduler.start()
        _stderr_print(f"  Periodic sync every {config.sync_interval}s")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield {"client": client, "engine": engine, "scheduler": scheduler}
    finally:
        await scheduler.stop()
        logger.info("MCP server shutting down")
        _stderr_print("padsync MCP server shutting down.")
