"""Two-way diff of one collection of syncable records.

Items are matched by logical key.  Matched pairs go through
:func:`~padsync.sync.merger.merge_records`; unmatched items are classified
by comparing their ``created_at`` against the other side's last sync:

* local-only, created after the remote's last sync: new, kept.
* local-only, older: deleted remotely, ``local_only`` conflict
  (human choice ``keep`` or ``delete``).
* remote-only, created after the local last sync: new, accepted.
* remote-only, older: deleted locally, ``remote_only`` conflict
  (human choice ``accept`` or ``discard``).
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from .mapper import conflict_id, index_by_key, item_key
from .merger import merge_records
from .models import (
    ConflictType,
    DiffOutcome,
    ItemConflict,
    Resolution,
    StoreKind,
    SyncableRecord,
)

# conflict id -> Resolution, or field name -> Resolution for field conflicts
Choices = Mapping[str, Any]


def field_choices_for(
    choice: Any, record: SyncableRecord
) -> Mapping[str, Resolution | str] | None:
    """Expand a conflict choice into per-field choices.

    A plain ``local``/``remote`` applies to every data field; a mapping is
    taken as-is.
    """
    if choice is None:
        return None
    if isinstance(choice, Mapping):
        return choice
    side = Resolution(choice)
    if side not in (Resolution.LOCAL, Resolution.REMOTE):
        raise ValueError(
            f"Field conflict choice must be local or remote, got {side.value!r}"
        )
    return {name: side for name in record.data_fields()}


def _as_resolution(choice: Any, allowed: tuple[Resolution, ...], cid: str):
    if choice is None:
        return None
    resolution = Resolution(choice)
    if resolution not in allowed:
        names = ", ".join(r.value for r in allowed)
        raise ValueError(
            f"Choice for {cid} must be one of {names}, got {resolution.value!r}"
        )
    return resolution


def _strip_storage_ids(record: SyncableRecord) -> SyncableRecord:
    update: dict[str, Any] = {"id": None}
    if "profile_id" in type(record).model_fields:
        update["profile_id"] = None
    return record.model_copy(update=update)


def diff_collections(
    local_items: Sequence[SyncableRecord],
    remote_items: Sequence[SyncableRecord],
    store_kind: StoreKind | str,
    local_last_sync: int | None,
    remote_last_sync: int | None,
    choices: Choices | None = None,
) -> DiffOutcome:
    """Diff two collections of the same entity kind.

    Args:
        local_items: Local records.
        remote_items: Remote records.
        store_kind: Which collection is being diffed.
        local_last_sync: ``last_sync_timestamp`` of the local dataset.
        remote_last_sync: ``last_sync_timestamp`` of the remote dataset.
        choices: Optional human decisions keyed by conflict id.

    Returns:
        ``DiffOutcome`` with the conflicts and the merged items.  Items
        that conflict are left out of ``merged_items``.

    Raises:
        ValueError: On duplicate logical keys within one side, or an
            invalid choice.
    """
    kind = StoreKind(store_kind)
    local_sync = local_last_sync or 0
    remote_sync = remote_last_sync or 0
    choices = choices or {}

    local_index = index_by_key(local_items, f"local {kind.value}")
    remote_index = index_by_key(remote_items, f"remote {kind.value}")

    conflicts: list[ItemConflict] = []
    merged_items: list[SyncableRecord] = []

    for key, local_item in local_index.items():
        key_str = item_key(local_item)
        cid = conflict_id(kind, key_str)
        remote_item = remote_index.get(key)

        if remote_item is not None:
            outcome = merge_records(
                local_item,
                remote_item,
                local_sync,
                remote_sync,
                choices=field_choices_for(choices.get(cid), local_item),
            )
            if outcome.is_conflict:
                conflicts.append(
                    ItemConflict(
                        store_kind=kind,
                        key=key_str,
                        type=ConflictType.FIELD_CONFLICT,
                        local_item=local_item,
                        remote_item=remote_item,
                        field_conflicts=outcome.field_conflicts,
                    )
                )
            else:
                merged_items.append(outcome.merged)
            continue

        if local_item.created_at > remote_sync:
            merged_items.append(local_item)
            continue

        choice = _as_resolution(
            choices.get(cid), (Resolution.KEEP, Resolution.DELETE), cid
        )
        if choice == Resolution.KEEP:
            merged_items.append(local_item)
        elif choice is None:
            conflicts.append(
                ItemConflict(
                    store_kind=kind,
                    key=key_str,
                    type=ConflictType.LOCAL_ONLY,
                    local_item=local_item,
                )
            )

    for key, remote_item in remote_index.items():
        if key in local_index:
            continue
        key_str = item_key(remote_item)
        cid = conflict_id(kind, key_str)

        if remote_item.created_at > local_sync:
            merged_items.append(_strip_storage_ids(remote_item))
            continue

        choice = _as_resolution(
            choices.get(cid), (Resolution.ACCEPT, Resolution.DISCARD), cid
        )
        if choice == Resolution.ACCEPT:
            merged_items.append(_strip_storage_ids(remote_item))
        elif choice is None:
            conflicts.append(
                ItemConflict(
                    store_kind=kind,
                    key=key_str,
                    type=ConflictType.REMOTE_ONLY,
                    remote_item=remote_item,
                )
            )

    return DiffOutcome(conflicts=conflicts, merged_items=merged_items)
