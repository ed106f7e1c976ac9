"""Error response builders and shared utilities for MCP tool handlers.

Structured error responses carry a corrective action so an agent can
recover without human intervention where possible.
"""

from datetime import datetime, timezone
from typing import Any

import mcp.types as types

from ...errors import SyncError


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (an error kind, validation_error,
            not_found, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Profile 3 not found", "Use profile_list to see profiles.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


# ---------------------------------------------------------------------------
# Shared formatting utilities
# ---------------------------------------------------------------------------


def format_timestamp(timestamp: Any) -> str:
    """Format a timestamp for display (YYYY-MM-DD HH:MM UTC).

    Integers are epoch milliseconds; ``None`` and 0 mean never.
    """
    match timestamp:
        case None | 0:
            return "never"
        case datetime() as dt:
            return dt.strftime("%Y-%m-%d %H:%M")
        case int() | float() as ms:
            dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
            return dt.strftime("%Y-%m-%d %H:%M")
        case _:
            return str(timestamp)


# ---------------------------------------------------------------------------
# Sync error translation
# ---------------------------------------------------------------------------

_KIND_ACTIONS: dict[str, str] = {
    "not_authenticated": "Set PADSYNC_ACCESS_TOKEN or PADSYNC_TOKEN_FILE and restart the server.",
    "auth_expired": "Refresh the token in PADSYNC_TOKEN_FILE, then retry profile_sync.",
    "network_error": "Retry later; the periodic sync will also retry automatically.",
    "remote_format_error": "Inspect the remote file in Google Drive; it may come from a newer version.",
    "local_store_error": "Use profile_list to verify the profile exists.",
    "local_apply_failure": "Check disk space and permissions of the data directory, then retry.",
    "unresolved_conflict": "Use profile_sync_status to list the conflicts and supply a choice for each.",
}


def corrective_action(kind: str | None) -> str:
    return _KIND_ACTIONS.get(kind or "", "Check the server log and retry.")


def translate_sync_error(error: SyncError) -> types.CallToolResult:
    """Translate a SyncError to a structured error response."""
    return build_error_response(error.kind, str(error), corrective_action(error.kind))
