"""Profile sync and conflict-resolution engine.

Keeps one profile dataset (profile record, pads, pages and their audio)
consistent between the local store and a JSON file in Google Drive.

Architecture
------------
Every syncable record carries a per-field modification timestamp.  A sync
attempt diffs a fresh local snapshot against the downloaded remote one,
field by field, using the ``last_sync_timestamp`` of each side as the
common point.  Fields changed on one side only merge automatically;
fields changed on both sides with different values, and items that one
side deleted, become conflicts that a human must decide.

Modules:

- ``models``    -- records, datasets, conflicts and results.
- ``merger``    -- field-level merge of two versions of a record.
- ``differ``    -- keyed diff of a collection of records.
- ``assets``    -- re-basing of embedded audio ids.
- ``detector``  -- dataset-level conflict detection.
- ``resolver``  -- resolved dataset from human choices.
- ``engine``    -- ``SyncEngine``: sync attempts and resolution commits.
- ``state``     -- ``LocalStore``: JSON-file local store.
- ``mapper``    -- remote file naming and item keys.
- ``reporter``  -- human-readable and JSON result formatting.
- ``scheduler`` -- ``SyncScheduler``: periodic and on-demand triggers.

Usage example
-------------
::

    from pathlib import Path
    from padsync.config import load_config
    from padsync.core.auth import token_provider_from_config
    from padsync.core.client import DriveClient
    from padsync.sync import LocalStore, SyncEngine, format_sync_result

    config = load_config()
    client = DriveClient(config, token_provider_from_config(config))
    engine = SyncEngine(client, LocalStore(Path(config.data_dir)))

    result = engine.sync_profile(1)
    print(format_sync_result(result))

    if result.status == "conflict":
        choices = {c.conflict_id: "local" for c in result.conflicts
                   if c.type == "field_conflict"}
        print(format_sync_result(engine.resolve(1, choices)))
"""

from .detector import detect_profile_conflicts
from .differ import diff_collections
from .engine import SyncEngine
from .mapper import profile_sync_filename
from .merger import merge_records
from .models import (
    ConflictType,
    DetectionResult,
    FieldConflict,
    ItemConflict,
    PadConfiguration,
    PageMetadata,
    Profile,
    Resolution,
    SyncDataset,
    SyncOutcome,
    SyncResult,
    SyncStatus,
    SyncTrigger,
)
from .reporter import format_conflicts, format_sync_result, result_to_json
from .resolver import resolve_conflicts
from .state import LocalStore
from .scheduler import SyncScheduler

__all__ = [
    "ConflictType",
    "DetectionResult",
    "FieldConflict",
    "ItemConflict",
    "LocalStore",
    "PadConfiguration",
    "PageMetadata",
    "Profile",
    "Resolution",
    "SyncDataset",
    "SyncEngine",
    "SyncOutcome",
    "SyncResult",
    "SyncScheduler",
    "SyncStatus",
    "SyncTrigger",
    "detect_profile_conflicts",
    "diff_collections",
    "format_conflicts",
    "format_sync_result",
    "merge_records",
    "profile_sync_filename",
    "resolve_conflicts",
    "result_to_json",
]
