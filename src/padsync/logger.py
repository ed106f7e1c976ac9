import json
import logging
import os
import sys

DEFAULT_MCP_LOG_FILE = "/tmp/padsync-mcp.log"
_DATEFMT = "%Y-%m-%d %H:%M:%S"
_TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured debug output.

    Produces one JSON object per log record with fields: ts, level, logger,
    msg.  Exception info is included as an "exc" field when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(debug_format: str) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=_DATEFMT)
    return logging.Formatter(_TEXT_FORMAT, datefmt=_DATEFMT)


def resolve_level(mode: str, debug: bool, level: str | None = None) -> int:
    """Pick the effective log level.

    ``debug`` wins, then the ``LOG_LEVEL`` env var, then *level* (from the
    YAML ``logging`` section), then WARNING for MCP mode or INFO for CLI.
    """
    if debug:
        return logging.DEBUG
    default_level = "WARNING" if mode == "mcp" else "INFO"
    name = (os.getenv("LOG_LEVEL") or level or default_level).upper()
    return getattr(logging, name, logging.INFO)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure logging based on execution mode.

    Args:
        mode: "mcp" logs to a file only (stdout carries JSON-RPC),
            "cli" logs to stderr.
        debug: If True, overrides LOG_LEVEL to DEBUG.
        log_file: Log file path (overrides LOG_FILE env var).  In CLI mode
            it adds a file handler next to stderr.
        debug_format: "text" (default) or "json".
        level: Level name from the config file, below LOG_LEVEL.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
        LOG_FILE: Log file path for MCP mode.
                  Default: /tmp/padsync-mcp.log
    """
    log_level = resolve_level(mode, debug, level)
    handlers: list[logging.Handler] = []

    if mode == "mcp":
        target = log_file or os.getenv("LOG_FILE", DEFAULT_MCP_LOG_FILE)
        handlers.append(logging.FileHandler(target, mode="a"))
    else:
        handlers.append(logging.StreamHandler(sys.stderr))
        if log_file:
            handlers.append(logging.FileHandler(log_file, mode="a"))

    for handler in handlers:
        handler.setFormatter(_formatter(debug_format))

    logging.basicConfig(level=log_level, handlers=handlers)

    # Silence HTTP client chatter unless DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("requests").setLevel(logging.WARNING)
