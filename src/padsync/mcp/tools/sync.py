"""MCP tool handlers for profile sync.

Defines four tools:

- ``profile_list`` -- list local profiles with their sync state.
- ``profile_sync`` -- run a sync attempt for one or all remote profiles.
- ``profile_sync_status`` -- state, last result and pending conflicts.
- ``profile_sync_resolve`` -- commit human choices for pending conflicts,
  or dismiss them.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ...core.async_utils import run_sync
from ...sync.engine import SyncEngine
from ...sync.models import SyncOutcome, SyncTrigger
from ...sync.reporter import (
    format_conflicts,
    format_sync_result,
    result_to_json,
)
from .errors import build_error_response, corrective_action, format_timestamp
from .registry import ToolSpec

logger = logging.getLogger(__name__)

_PROFILE_ID_SCHEMA = {
    "type": "integer",
    "minimum": 1,
    "description": "Local profile id (see profile_list)",
}


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="profile_list",
        description=(
            "List local soundboard profiles with their sync type, linked "
            "Google Drive file and current sync state."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="profile_sync",
        description=(
            "Sync a profile with its Google Drive file. Non-conflicting "
            "changes merge automatically; conflicting changes are reported "
            "and nothing is written until they are resolved with "
            "profile_sync_resolve. Omit profile_id to sync every remote "
            "profile."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {"profile_id": _PROFILE_ID_SCHEMA},
            "required": [],
        },
    ),
    types.Tool(
        name="profile_sync_status",
        description=(
            "Show the sync state of a profile: last sync time, last result "
            "and any conflicts awaiting a decision (with their ids)."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"profile_id": _PROFILE_ID_SCHEMA},
            "required": ["profile_id"],
        },
    ),
    types.Tool(
        name="profile_sync_resolve",
        description=(
            "Resolve pending sync conflicts of a profile. 'choices' maps "
            "each conflict id to: 'local' or 'remote' (or an object "
            "{field: 'local'|'remote'}) for field conflicts, 'keep' or "
            "'delete' for items deleted remotely, 'accept' or 'discard' "
            "for items deleted locally. Set dismiss=true to drop the "
            "conflicts without writing anything."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "profile_id": _PROFILE_ID_SCHEMA,
                "choices": {
                    "type": "object",
                    "description": "Decision per conflict id",
                    "additionalProperties": {
                        "anyOf": [
                            {"type": "string"},
                            {
                                "type": "object",
                                "additionalProperties": {"type": "string"},
                            },
                        ]
                    },
                },
                "dismiss": {
                    "type": "boolean",
                    "default": False,
                    "description": "Drop the pending conflicts instead",
                },
            },
            "required": ["profile_id"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _profile_id(args: dict[str, Any]) -> int:
    value = args.get("profile_id")
    if value is None:
        raise ValueError("profile_id is required")
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"profile_id must be a positive integer, got {value!r}")
    return value


def _result_response(results: list) -> types.CallToolResult:
    text = "\n\n".join(format_sync_result(r) for r in results)
    if not results:
        text = "No remote profiles to sync."
    structured = {"results": [result_to_json(r) for r in results]}
    failed = [r for r in results if r.status == SyncOutcome.ERROR]
    if len(results) == 1 and failed:
        text += f"\n\nAction: {corrective_action(failed[0].error_kind)}"
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
        isError=len(results) == 1 and bool(failed),
    )


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


async def _handle_profile_list(
    engine: SyncEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``profile_list`` tool."""
    profiles = await run_sync(engine.store.list_profiles)

    rows = []
    lines = [f"{len(profiles)} profile(s):"]
    for profile in profiles:
        file_id = await run_sync(engine.store.get_remote_file_id, profile.id)
        status = engine.get_status(profile.id)
        rows.append(
            {
                "id": profile.id,
                "name": profile.name,
                "sync_type": profile.sync_type.value,
                "remote_file_id": file_id,
                "status": status.value,
            }
        )
        lines.append(
            f"  [{profile.id}] {profile.name} "
            f"({profile.sync_type.value}, {status.value})"
        )

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent={"profiles": rows},
    )


async def _handle_profile_sync(
    engine: SyncEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``profile_sync`` tool."""
    if args.get("profile_id") is None:
        results = await run_sync(engine.sync_all, SyncTrigger.MANUAL)
    else:
        result = await run_sync(
            engine.sync_profile, _profile_id(args), SyncTrigger.MANUAL
        )
        results = [result]
    return _result_response(results)


async def _handle_profile_sync_status(
    engine: SyncEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``profile_sync_status`` tool."""
    profile_id = _profile_id(args)
    profile = await run_sync(engine.store.get_profile, profile_id)
    last_sync = await run_sync(engine.store.read_last_sync_timestamp, profile_id)
    file_id = await run_sync(engine.store.get_remote_file_id, profile_id)
    status = engine.get_status(profile_id)
    last = engine.last_result(profile_id)
    pending = engine.pending_conflict(profile_id)

    lines = [
        f"Sync status for '{profile.name}' ({profile_id})",
        f"  Sync type:   {profile.sync_type.value}",
        f"  State:       {status.value}",
        f"  Remote file: {file_id or '(none)'}",
        f"  Last sync:   {format_timestamp(last_sync)}",
    ]
    if profile.sync_paused_until:
        lines.append(
            f"  Paused until: {format_timestamp(profile.sync_paused_until)}"
        )
    if last is not None:
        lines.append(f"  Last result: {last.status.value}")
        if last.error:
            lines.append(f"  Last error:  {last.error}")
    if pending is not None:
        lines.append("")
        lines.append(format_conflicts(pending.conflicts))

    structured = {
        "profile_id": profile_id,
        "name": profile.name,
        "sync_type": profile.sync_type.value,
        "status": status.value,
        "remote_file_id": file_id,
        "last_sync_timestamp": last_sync,
        "sync_paused_until": profile.sync_paused_until,
        "last_result": result_to_json(last) if last is not None else None,
        "pending_conflicts": (
            result_to_json(pending).get("conflicts", [])
            if pending is not None
            else []
        ),
    }
    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=structured,
    )


async def _handle_profile_sync_resolve(
    engine: SyncEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``profile_sync_resolve`` tool."""
    profile_id = _profile_id(args)

    if args.get("dismiss"):
        if engine.dismiss_conflict(profile_id):
            text = f"Conflicts of profile {profile_id} dismissed; nothing was written."
            return types.CallToolResult(
                content=[types.TextContent(type="text", text=text)],
                structuredContent={"profile_id": profile_id, "dismissed": True},
            )
        return build_error_response(
            "no_pending_conflict",
            f"Profile {profile_id} has no conflict awaiting resolution.",
            "Run profile_sync first; conflicts are only kept until resolved or dismissed.",
        )

    choices = args.get("choices")
    if not isinstance(choices, dict) or not choices:
        raise ValueError("choices must be a non-empty object keyed by conflict id")

    result = await run_sync(engine.resolve, profile_id, choices)
    return _result_response([result])


# ---------------------------------------------------------------------------
# Specs
# ---------------------------------------------------------------------------

_HANDLERS = {
    "profile_list": (False, _handle_profile_list),
    "profile_sync": (True, _handle_profile_sync),
    "profile_sync_status": (False, _handle_profile_sync_status),
    "profile_sync_resolve": (True, _handle_profile_sync_resolve),
}

SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(tool=tool, writes=_HANDLERS[tool.name][0], handler=_HANDLERS[tool.name][1])
    for tool in SYNC_TOOLS
]
