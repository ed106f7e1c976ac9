"""Build a resolved dataset from human decisions.

A human resolver receives the conflicts of a ``conflict`` outcome together
with the local and remote datasets and answers with one choice per
conflict id (``"<store_kind>:<key>"``):

- ``field_conflict``: ``"local"``, ``"remote"`` or a mapping
  ``{field: "local" | "remote"}`` covering every conflicting field.
- ``local_only``: ``"keep"`` or ``"delete"``.
- ``remote_only``: ``"accept"`` or ``"discard"``.

There is no automatic strategy: every conflict needs an explicit choice.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from padsync.errors import UnresolvedConflictError
from padsync.sync.detector import detect_profile_conflicts
from padsync.sync.models import (
    ConflictType,
    ItemConflict,
    Resolution,
    SyncDataset,
)

logger = logging.getLogger(__name__)

_ALLOWED: dict[ConflictType, tuple[Resolution, ...]] = {
    ConflictType.FIELD_CONFLICT: (Resolution.LOCAL, Resolution.REMOTE),
    ConflictType.LOCAL_ONLY: (Resolution.KEEP, Resolution.DELETE),
    ConflictType.REMOTE_ONLY: (Resolution.ACCEPT, Resolution.DISCARD),
}


def _is_complete(conflict: ItemConflict, choice: Any) -> bool:
    allowed = _ALLOWED[conflict.type]
    if isinstance(choice, Mapping):
        if conflict.type != ConflictType.FIELD_CONFLICT:
            return False
        for fc in conflict.field_conflicts:
            value = choice.get(fc.field)
            try:
                if value is None or Resolution(value) not in allowed:
                    return False
            except ValueError:
                return False
        return True
    try:
        return Resolution(choice) in allowed
    except ValueError:
        return False


def missing_choices(
    conflicts: Sequence[ItemConflict], choices: Mapping[str, Any]
) -> list[str]:
    """Return the ids of conflicts that lack a valid, complete choice."""
    return [
        c.conflict_id
        for c in conflicts
        if c.conflict_id not in choices
        or not _is_complete(c, choices[c.conflict_id])
    ]


def resolve_conflicts(
    local: SyncDataset,
    remote: SyncDataset,
    conflicts: Sequence[ItemConflict],
    choices: Mapping[str, Any],
) -> SyncDataset:
    """Apply human *choices* and return the fully resolved dataset.

    The detector is re-run with the choices, so everything that did not
    conflict merges exactly as during the sync attempt.

    Args:
        local: Local dataset of the conflict outcome.
        remote: Remote dataset of the conflict outcome.
        conflicts: The conflicts that were presented.
        choices: Decisions keyed by conflict id.

    Returns:
        The resolved dataset, ready for commit.

    Raises:
        UnresolvedConflictError: If a conflict has no valid choice, or new
            conflicts appear when re-running detection.
    """
    missing = missing_choices(conflicts, choices)
    if missing:
        raise UnresolvedConflictError(
            f"No valid choice for {len(missing)} conflict(s)", missing=missing
        )

    known = {c.conflict_id for c in conflicts}
    for cid in choices:
        if cid not in known:
            logger.warning("Ignoring choice for unknown conflict %s", cid)

    detection = detect_profile_conflicts(local, remote, choices=choices)
    if detection.requires_manual_resolution:
        remaining = [c.conflict_id for c in detection.conflicts]
        raise UnresolvedConflictError(
            "Datasets changed since the conflicts were detected",
            missing=remaining,
        )

    logger.info("Resolved %d conflict(s)", len(conflicts))
    return detection.merged_dataset
