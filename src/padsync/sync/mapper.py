"""Naming rules shared by the sync modules.

Translates between datasets and the names used outside of them:

1. **Remote file name** -- derived from the profile name so that a broken
   link can be repaired by searching for the name.
2. **Item keys** -- the string form of a record's logical key, used in
   conflicts and in human choices.
3. **Conflict ids** -- ``"<store_kind>:<key>"``.
"""

from __future__ import annotations

import re
from typing import Iterable, TypeVar

from .models import StoreKind, SyncableRecord

REMOTE_FILE_PREFIX = "padsync-profile-"
REMOTE_FILE_SUFFIX = ".json"
REMOTE_MIME_TYPE = "application/json"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9._-]", re.IGNORECASE)

R = TypeVar("R", bound=SyncableRecord)


def profile_sync_filename(profile_name: str) -> str:
    """Return the remote file name for a profile.

    Characters outside ``[a-z0-9._-]`` are replaced by ``-`` and the result
    is lower-cased, e.g. ``"My Board!"`` -> ``padsync-profile-my-board-.json``.
    """
    safe = _UNSAFE_CHARS.sub("-", profile_name).lower()
    return f"{REMOTE_FILE_PREFIX}{safe}{REMOTE_FILE_SUFFIX}"


def item_key(record: SyncableRecord) -> str:
    """String form of a record's logical key (``"2-7"`` for a pad)."""
    return "-".join(str(part) for part in record.logical_key())


def conflict_id(store_kind: StoreKind | str, key: str) -> str:
    """Identifier under which a human choice for a conflict is submitted."""
    kind = StoreKind(store_kind)
    return f"{kind.value}:{key}"


def index_by_key(items: Iterable[R], label: str = "items") -> dict[tuple, R]:
    """Index records by logical key.

    Raises:
        ValueError: If two records share a logical key.
    """
    index: dict[tuple, R] = {}
    for item in items:
        key = item.logical_key()
        if key in index:
            raise ValueError(f"Duplicate logical key {key} in {label}")
        index[key] = item
    return index
