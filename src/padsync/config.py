"""Runtime configuration for the padsync MCP server.

Reads Drive and sync settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    PADSYNC_ACCESS_TOKEN: OAuth access token for Google Drive (optional)
    PADSYNC_TOKEN_FILE: File holding the current access token; re-read on
        refresh (optional)
    PADSYNC_API_URL: Drive v3 REST base URL (optional)
    PADSYNC_UPLOAD_URL: Drive v3 upload base URL (optional)
    PADSYNC_DATA_DIR: Local store directory (optional, default: .padsync/data)
    PADSYNC_SYNC_INTERVAL: Seconds between periodic syncs, 0 disables
        (optional, default: 300)
    PADSYNC_REQUEST_TIMEOUT: HTTP read timeout in seconds (optional, default: 60)
    PADSYNC_MAX_PARALLEL_REQUESTS: Profiles synced concurrently (optional, default: 2)
    PADSYNC_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://www.googleapis.com/drive/v3"
DEFAULT_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"
DEFAULT_DATA_DIR = ".padsync/data"


@dataclass
class Config:
    access_token: str | None = None
    token_file: str | None = None
    api_url: str = DEFAULT_API_URL
    upload_url: str = DEFAULT_UPLOAD_URL
    data_dir: str = DEFAULT_DATA_DIR
    sync_interval: int = 300
    request_timeout: int = 60
    max_parallel_requests: int = 2
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If an endpoint URL is malformed or the data directory
            is empty.
    """
    for label in ("api_url", "upload_url"):
        url = getattr(config, label).strip()
        if not url.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid {label} '{url}': must start with http:// or https://"
            )
        if not urlparse(url).hostname:
            raise ValueError(
                f"Invalid {label} '{url}': URL must include a hostname"
            )
        setattr(config, label, url.removesuffix("/"))

    if not config.data_dir.strip():
        raise ValueError(
            "Data directory cannot be empty. Set PADSYNC_DATA_DIR environment variable."
        )

    if not config.access_token and not config.token_file:
        logger.warning(
            "No access token configured; remote profiles will fail with "
            "not_authenticated until PADSYNC_ACCESS_TOKEN or "
            "PADSYNC_TOKEN_FILE is set."
        )


def get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _resolve_int(
    env_key: str,
    fallbacks: dict,
    fallback_key: str,
    default: int,
    low: int,
    high: int,
) -> int:
    """Numeric field: env > YAML > default, range-checked."""
    raw = os.getenv(env_key)
    source = env_key
    if raw is None:
        if fallback_key not in fallbacks:
            return default
        raw = fallbacks[fallback_key]
        source = fallback_key
    message = f"Invalid {source} '{raw}': must be a number between {low} and {high}"
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValueError(message) from None
    if not (low <= value <= high):
        raise ValueError(message)
    return value


def load_config(
    access_token: str | None = None,
    token_file: str | None = None,
    data_dir: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        access_token: Override access token.
        token_file: Override token file path.
        data_dir: Override local store directory.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML ``drive`` and
            ``sync`` sections.  Used when CLI arg and env var are unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a value is malformed or out of range.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > default ---

    final_token = (
        access_token or os.getenv("PADSYNC_ACCESS_TOKEN") or fb.get("access_token")
    )
    final_token_file = (
        token_file or os.getenv("PADSYNC_TOKEN_FILE") or fb.get("token_file")
    )
    final_api_url = (
        os.getenv("PADSYNC_API_URL") or fb.get("api_url") or DEFAULT_API_URL
    )
    final_upload_url = (
        os.getenv("PADSYNC_UPLOAD_URL") or fb.get("upload_url") or DEFAULT_UPLOAD_URL
    )
    final_data_dir = (
        data_dir
        or os.getenv("PADSYNC_DATA_DIR")
        or fb.get("data_dir")
        or DEFAULT_DATA_DIR
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if debug:
        final_debug = True
    else:
        env_debug = get_bool_env("PADSYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    config = Config(
        access_token=final_token.strip() if final_token else None,
        token_file=final_token_file,
        api_url=final_api_url,
        upload_url=final_upload_url,
        data_dir=os.path.expanduser(final_data_dir),
        sync_interval=_resolve_int(
            "PADSYNC_SYNC_INTERVAL", fb, "interval_seconds", 300, 0, 86400
        ),
        request_timeout=_resolve_int(
            "PADSYNC_REQUEST_TIMEOUT", fb, "request_timeout", 60, 1, 600
        ),
        max_parallel_requests=_resolve_int(
            "PADSYNC_MAX_PARALLEL_REQUESTS", fb, "max_parallel_requests", 2, 1, 16
        ),
        debug=final_debug,
    )

    validate_config(config)

    return config
