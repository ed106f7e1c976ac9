"""Field-level two-way merge of syncable records.

Each data field is decided on its own, using the per-field modification
timestamps and the last-sync timestamps of both datasets:

* changed on both sides since the common sync and the values differ:
  field conflict (unless a human choice for that field is supplied),
* changed on one side only: that side wins, with its timestamp,
* otherwise: the value of the more recently modified record is kept and
  the field timestamp becomes the max of both.

The merge is pure and deterministic.  For the non-conflicting path it is
also commutative: swapping local and remote (and their last-sync values)
yields the same data values.
"""

from __future__ import annotations

from typing import Mapping

from .models import (
    FieldConflict,
    MergeOutcome,
    Resolution,
    SyncableRecord,
    canonical_json,
    values_equal,
)


def _local_preferred(
    local: SyncableRecord, remote: SyncableRecord, field: str
) -> bool:
    """Decide which side supplies an unchanged (or tied) field value."""
    if local.modified_at != remote.modified_at:
        return local.modified_at > remote.modified_at

    local_ts = local.field_timestamp(field)
    remote_ts = remote.field_timestamp(field)
    if local_ts != remote_ts:
        return local_ts > remote_ts

    return canonical_json(getattr(local, field)) >= canonical_json(
        getattr(remote, field)
    )


def merge_records(
    local: SyncableRecord,
    remote: SyncableRecord,
    local_last_sync: int | None,
    remote_last_sync: int | None,
    choices: Mapping[str, Resolution | str] | None = None,
) -> MergeOutcome:
    """Merge two versions of the same logical record.

    Args:
        local: The local version.
        remote: The remote version (same type and logical key).
        local_last_sync: ``last_sync_timestamp`` of the local dataset.
        remote_last_sync: ``last_sync_timestamp`` of the remote dataset.
        choices: Optional human decisions, field name -> ``local`` or
            ``remote``.  Only consulted for fields that conflict.

    Returns:
        A ``MergeOutcome`` holding either the merged record or the list of
        field conflicts.

    Raises:
        ValueError: If the records differ in type or logical key, or a
            choice is neither ``local`` nor ``remote``.
    """
    if type(local) is not type(remote):
        raise ValueError(
            f"Cannot merge {type(local).__name__} with {type(remote).__name__}"
        )
    if local.logical_key() != remote.logical_key():
        raise ValueError(
            f"Logical keys differ: {local.logical_key()} != {remote.logical_key()}"
        )

    local_sync = local_last_sync or 0
    remote_sync = remote_last_sync or 0
    choices = choices or {}

    values: dict[str, object] = {}
    stamps: dict[str, int] = {}
    conflicts: list[FieldConflict] = []

    for field in local.data_fields():
        local_value = getattr(local, field)
        remote_value = getattr(remote, field)
        local_ts = local.field_timestamp(field)
        remote_ts = remote.field_timestamp(field)

        local_changed = local_ts > remote_sync
        remote_changed = remote_ts > local_sync
        differ = not values_equal(local_value, remote_value)

        if local_changed and remote_changed and differ:
            choice = choices.get(field)
            if choice is None:
                conflicts.append(
                    FieldConflict(
                        field=field,
                        local_value=local_value,
                        remote_value=remote_value,
                        local_modified_at=local_ts,
                        remote_modified_at=remote_ts,
                    )
                )
                continue
            choice = Resolution(choice)
            if choice == Resolution.LOCAL:
                values[field], stamps[field] = local_value, local_ts
            elif choice == Resolution.REMOTE:
                values[field], stamps[field] = remote_value, remote_ts
            else:
                raise ValueError(
                    f"Field choice for {field!r} must be local or remote, "
                    f"got {choice.value!r}"
                )
        elif remote_changed and differ:
            values[field], stamps[field] = remote_value, remote_ts
        elif local_changed and differ:
            values[field], stamps[field] = local_value, local_ts
        else:
            if _local_preferred(local, remote, field):
                values[field] = local_value
            else:
                values[field] = remote_value
            stamps[field] = max(local_ts, remote_ts)

    if conflicts:
        return MergeOutcome(field_conflicts=conflicts)

    merged = local.model_copy(
        update={
            **values,
            "field_modified_at": stamps,
            "created_at": min(local.created_at, remote.created_at),
            "modified_at": max(local.modified_at, remote.modified_at),
        }
    )
    return MergeOutcome(merged=merged)
