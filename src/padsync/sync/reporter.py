"""Sync result formatting functions.

Provides human-readable and machine-readable output for sync attempts:

- ``format_sync_result`` -- summary of one attempt.
- ``format_conflicts`` -- conflict listing with the ids to answer with.
- ``result_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Sequence

from .models import ConflictType, SyncOutcome

if TYPE_CHECKING:
    from .models import ItemConflict, SyncResult

_CHOICE_HINTS = {
    ConflictType.FIELD_CONFLICT: "local | remote | {field: local|remote}",
    ConflictType.LOCAL_ONLY: "keep | delete",
    ConflictType.REMOTE_ONLY: "accept | discard",
}


def _short(value: Any, limit: int = 60) -> str:
    text = json.dumps(value, default=str)
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


# ------------------------------------------------------------------
# Human-readable output
# ------------------------------------------------------------------


def format_conflicts(conflicts: Sequence[ItemConflict]) -> str:
    """List conflicts with their ids, details and allowed choices."""
    lines: list[str] = [f"{len(conflicts)} conflict(s) need a decision:"]
    for c in conflicts:
        lines.append("")
        lines.append(f"[{c.conflict_id}] {c.type.value}")
        if c.type == ConflictType.FIELD_CONFLICT:
            for fc in c.field_conflicts:
                lines.append(
                    f"  {fc.field}: local={_short(fc.local_value)} "
                    f"(t={fc.local_modified_at}) "
                    f"remote={_short(fc.remote_value)} "
                    f"(t={fc.remote_modified_at})"
                )
        elif c.type == ConflictType.LOCAL_ONLY:
            lines.append("  exists locally, deleted remotely")
        else:
            lines.append("  exists remotely, deleted locally")
        lines.append(f"  choices: {_CHOICE_HINTS[c.type]}")
    return "\n".join(lines)


def format_sync_result(result: SyncResult) -> str:
    """Format one sync result as human-readable text.

    Args:
        result: The result of ``sync_profile()`` or a resolution commit.

    Returns:
        Multi-line formatted string.
    """
    lines = [
        f"Sync of profile {result.profile_id} ({result.trigger.value}): "
        f"{result.status.value}"
    ]

    if result.status == SyncOutcome.SUCCESS and result.data is not None:
        data = result.data
        lines.append(
            f"  {len(data.pad_configurations)} pads, "
            f"{len(data.page_metadata)} pages, "
            f"{len(data.audio_files)} audio files"
        )
        lines.append(f"  last sync: {data.last_sync_timestamp}")
        if result.remote_file_id:
            lines.append(f"  remote file: {result.remote_file_id}")
    elif result.status == SyncOutcome.CONFLICT:
        lines.append("")
        lines.append(format_conflicts(result.conflicts))
    elif result.status == SyncOutcome.ERROR:
        lines.append(f"  error ({result.error_kind}): {result.error}")
        if result.conflicts:
            lines.append("")
            lines.append(format_conflicts(result.conflicts))
    elif result.status == SyncOutcome.PAUSED:
        lines.append(f"  paused until {result.resume_time}")
    elif result.reason:
        lines.append(f"  {result.reason}")

    return "\n".join(lines)


# ------------------------------------------------------------------
# Machine-readable output
# ------------------------------------------------------------------


def result_to_json(result: SyncResult) -> dict:
    """Convert a sync result to a JSON-serializable summary dict.

    Datasets are summarised by counts; conflicts are included in full.
    """
    out: dict[str, Any] = {
        "profile_id": result.profile_id,
        "status": result.status.value,
        "trigger": result.trigger.value,
        "started_at": result.started_at,
        "completed_at": result.completed_at,
    }
    if result.remote_file_id:
        out["remote_file_id"] = result.remote_file_id
    if result.data is not None:
        out["last_sync_timestamp"] = result.data.last_sync_timestamp
        out["counts"] = {
            "pads": len(result.data.pad_configurations),
            "pages": len(result.data.page_metadata),
            "audio_files": len(result.data.audio_files),
        }
    if result.conflicts:
        out["conflicts"] = [
            {
                "id": c.conflict_id,
                "type": c.type.value,
                "fields": [
                    fc.model_dump(mode="json") for fc in c.field_conflicts
                ],
            }
            for c in result.conflicts
        ]
    if result.error is not None:
        out["error"] = result.error
        out["error_kind"] = result.error_kind
    if result.resume_time is not None:
        out["resume_time"] = result.resume_time
    if result.reason is not None:
        out["reason"] = result.reason
    return out
