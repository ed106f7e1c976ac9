"""Unified configuration schema for padsync.

Defines Pydantic models for the unified config structure with dedicated
sections for the Drive connection, sync behaviour and logging.  Includes
an adapter that flattens it into the runtime ``Config`` dataclass.

Usage:
    from padsync.config_schema import build_config, to_legacy_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_legacy_config(unified, cli_overrides={"debug": True})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class DriveConfig(BaseModel):
    """Google Drive connection settings.

    All fields are optional: env vars and CLI args can supply them at
    runtime instead.
    """

    access_token: str | None = Field(
        default=None, description="OAuth access token"
    )
    token_file: str | None = Field(
        default=None,
        description="File holding the current access token (re-read on refresh)",
    )
    api_url: str | None = Field(default=None, description="Drive v3 API URL")
    upload_url: str | None = Field(
        default=None, description="Drive v3 upload URL"
    )
    request_timeout: int = Field(
        default=60, ge=1, le=600, description="HTTP read timeout in seconds"
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Sync scheduling and local store settings."""

    data_dir: str | None = Field(
        default=None, description="Local store directory"
    )
    interval_seconds: int = Field(
        default=300,
        ge=0,
        le=86400,
        description="Seconds between periodic syncs (0 disables the timer)",
    )
    sync_on_start: bool = Field(
        default=True, description="Sync all remote profiles at startup"
    )
    max_parallel_requests: int = Field(
        default=2,
        ge=1,
        le=16,
        description="Profiles synced concurrently by the scheduler (1-16)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    drive: DriveConfig = Field(default_factory=DriveConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    def fallbacks(self) -> dict:
        """Flatten the ``drive`` and ``sync`` sections for ``load_config``.

        Only values that were set explicitly are included, so unset YAML
        keys never shadow environment variables or defaults.
        """
        flat: dict = {}
        flat.update(self.drive.model_dump(exclude_unset=True, exclude_none=True))
        flat.update(self.sync.model_dump(exclude_unset=True, exclude_none=True))
        return flat


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> Config dataclass
# ---------------------------------------------------------------------------


def to_legacy_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the ``Config`` dataclass,
    applying CLI overrides on top.

    CLI overrides dict keys: access_token, token_file, data_dir, debug.

    Returns:
        ``Config`` instance (NOT validated; call ``validate_config()``
        separately if needed).
    """
    # Import here to avoid circular imports (config.py imports config_schema)
    from .config import (
        DEFAULT_API_URL,
        DEFAULT_DATA_DIR,
        DEFAULT_UPLOAD_URL,
        Config,
    )

    overrides = cli_overrides or {}

    return Config(
        access_token=overrides.get("access_token") or unified.drive.access_token,
        token_file=overrides.get("token_file") or unified.drive.token_file,
        api_url=unified.drive.api_url or DEFAULT_API_URL,
        upload_url=unified.drive.upload_url or DEFAULT_UPLOAD_URL,
        data_dir=overrides.get("data_dir")
        or unified.sync.data_dir
        or DEFAULT_DATA_DIR,
        sync_interval=unified.sync.interval_seconds,
        request_timeout=unified.drive.request_timeout,
        max_parallel_requests=unified.sync.max_parallel_requests,
        debug=overrides.get("debug", False) or unified.sync.debug,
    )
