"""Dataset-level conflict detection.

Combines the field merge of the profile records with the collection diff
of pads and pages, after re-basing the remote assets into the local id
space.  The result tells the orchestrator whether the merged dataset can
be committed as-is or a human has to decide first.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from .assets import rebase_remote_assets, referenced_assets
from .differ import diff_collections, field_choices_for
from .mapper import conflict_id
from .merger import merge_records
from .models import (
    ConflictType,
    DetectionResult,
    ItemConflict,
    Resolution,
    StoreKind,
    SyncDataset,
)

logger = logging.getLogger(__name__)


def profile_key(dataset: SyncDataset) -> str:
    """Key of the profile record in conflicts (the local profile id)."""
    if dataset.profile.id is None:
        return "profile"
    return str(dataset.profile.id)


def detect_profile_conflicts(
    local: SyncDataset,
    remote: SyncDataset | None,
    choices: Mapping[str, Any] | None = None,
) -> DetectionResult:
    """Compare a local and a remote dataset.

    Args:
        local: Dataset read from the local store.
        remote: Downloaded dataset, or ``None`` if no remote file exists.
        choices: Optional human decisions keyed by conflict id.  Conflicts
            with a choice are decided instead of reported.

    Returns:
        ``DetectionResult``.  When the profile record itself conflicts,
        ``merged_dataset.profile`` holds local values for the conflicting
        fields and merged values for all others.
    """
    if remote is None:
        return DetectionResult(merged_dataset=local)

    choices = choices or {}
    rebased = rebase_remote_assets(local, remote)
    local_sync = local.last_sync_timestamp
    remote_sync = rebased.last_sync_timestamp

    conflicts: list[ItemConflict] = []

    key = profile_key(local)
    cid = conflict_id(StoreKind.PROFILE, key)
    profile_outcome = merge_records(
        local.profile,
        rebased.profile,
        local_sync,
        remote_sync,
        choices=field_choices_for(choices.get(cid), local.profile),
    )
    if profile_outcome.is_conflict:
        conflicts.append(
            ItemConflict(
                store_kind=StoreKind.PROFILE,
                key=key,
                type=ConflictType.FIELD_CONFLICT,
                local_item=local.profile,
                remote_item=rebased.profile,
                field_conflicts=profile_outcome.field_conflicts,
            )
        )
        placeholder = merge_records(
            local.profile,
            rebased.profile,
            local_sync,
            remote_sync,
            choices={
                fc.field: Resolution.LOCAL
                for fc in profile_outcome.field_conflicts
            },
        )
        merged_profile = placeholder.merged
    else:
        merged_profile = profile_outcome.merged

    pads = diff_collections(
        local.pad_configurations,
        rebased.pad_configurations,
        StoreKind.PAD_CONFIGURATION,
        local_sync,
        remote_sync,
        choices,
    )
    pages = diff_collections(
        local.page_metadata,
        rebased.page_metadata,
        StoreKind.PAGE_METADATA,
        local_sync,
        remote_sync,
        choices,
    )
    conflicts.extend(pads.conflicts)
    conflicts.extend(pages.conflicts)

    merged_dataset = SyncDataset(
        format_version=local.format_version,
        last_sync_timestamp=local.last_sync_timestamp,
        profile=merged_profile,
        pad_configurations=pads.merged_items,
        page_metadata=pages.merged_items,
        audio_files=referenced_assets(
            pads.merged_items, local.audio_files, rebased.audio_files
        ),
    )

    if conflicts:
        logger.info(
            "Profile %s: %d conflict(s) need a decision", key, len(conflicts)
        )

    return DetectionResult(
        conflicts=conflicts,
        requires_manual_resolution=bool(conflicts),
        merged_dataset=merged_dataset,
        remote_dataset=rebased,
    )
