"""Pydantic models for the profile sync engine.

Defines the core data contracts used across all sync modules:

- ``SyncableRecord``: change-tracking base shared by every mergeable entity.
- ``Profile``, ``PadConfiguration``, ``PageMetadata``: the concrete entities.
- ``SyncDataset``: the unit exchanged with the remote store.
- ``FieldConflict``, ``ItemConflict``: output of conflict detection.
- ``MergeOutcome``, ``DiffOutcome``, ``DetectionResult``: intermediate
  results of the merge pipeline.
- ``SyncResult``: outcome of one sync attempt.

All models are frozen (immutable).  Edits go through
``SyncableRecord.with_changes()`` which returns a new record with the
per-field modification timestamps advanced.

Timestamps are integer milliseconds since the Unix epoch.
"""

from __future__ import annotations

import json
import time
from enum import Enum
from typing import Any, ClassVar, Union

from pydantic import BaseModel, Field

SYNC_FORMAT_VERSION = 1

# Never part of a record's data fields.
TRACKING_FIELDS = frozenset({"created_at", "modified_at", "field_modified_at"})
STORAGE_FIELDS = frozenset({"id", "profile_id"})


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Value equality
# ---------------------------------------------------------------------------


def _canonical(value: Any) -> Any:
    """Reduce *value* to a tagged, order-independent comparable form."""
    if isinstance(value, BaseModel):
        return _canonical(value.model_dump(mode="json"))
    if isinstance(value, Enum):
        return _canonical(value.value)
    if value is None:
        return ("none",)
    if isinstance(value, bool):
        return ("bool", value)
    if isinstance(value, (int, float)):
        return ("num", value)
    if isinstance(value, str):
        return ("str", value)
    if isinstance(value, (list, tuple)):
        return ("list", tuple(_canonical(v) for v in value))
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return ("dict", tuple((str(k), _canonical(v)) for k, v in items))
    return ("other", repr(value))


def values_equal(a: Any, b: Any) -> bool:
    """Structural equality for field values.

    Nested lists and dicts are compared deeply; dict key order is ignored.
    Booleans never equal numbers, enums equal their raw value.
    """
    return _canonical(a) == _canonical(b)


def canonical_json(value: Any) -> str:
    """Stable JSON text for *value*, used as a last-resort ordering."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    elif isinstance(value, Enum):
        value = value.value
    return json.dumps(value, sort_keys=True, default=str)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SyncType(str, Enum):
    """Where a profile lives."""

    LOCAL = "local"
    REMOTE = "remote"


class ActivePadBehavior(str, Enum):
    """What pressing an already playing pad does."""

    CONTINUE = "continue"
    STOP = "stop"
    RESTART = "restart"


class PlaybackType(str, Enum):
    """How a pad with several sounds picks the next one."""

    SEQUENTIAL = "sequential"
    RANDOM = "random"
    ROUND_ROBIN = "round-robin"


class StoreKind(str, Enum):
    """Which part of the dataset a record belongs to."""

    PROFILE = "profile"
    PAD_CONFIGURATION = "pad_configuration"
    PAGE_METADATA = "page_metadata"


class ConflictType(str, Enum):
    """Classification of a detected conflict."""

    FIELD_CONFLICT = "field_conflict"
    LOCAL_ONLY = "local_only"
    REMOTE_ONLY = "remote_only"


class Resolution(str, Enum):
    """A human decision for one conflict (or one conflicting field)."""

    LOCAL = "local"
    REMOTE = "remote"
    KEEP = "keep"
    DELETE = "delete"
    ACCEPT = "accept"
    DISCARD = "discard"


class SyncStatus(str, Enum):
    """State of the per-profile sync state machine."""

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    CONFLICT = "conflict"
    ERROR = "error"


class SyncOutcome(str, Enum):
    """Terminal outcome of one sync attempt."""

    SUCCESS = "success"
    CONFLICT = "conflict"
    ERROR = "error"
    PAUSED = "paused"
    SKIPPED = "skipped"


class SyncTrigger(str, Enum):
    """What started a sync attempt."""

    MANUAL = "manual"
    STARTUP = "startup"
    RECONNECT = "reconnect"
    PERIODIC = "periodic"
    RESOLUTION = "resolution"


# ---------------------------------------------------------------------------
# Syncable records
# ---------------------------------------------------------------------------


class SyncableRecord(BaseModel):
    """Common change-tracking shape of every mergeable entity.

    Attributes:
        id: Local storage id (storage-internal, never merged).
        created_at: Creation time; the oldest value wins on merge.
        modified_at: Time of the most recent change to any data field.
        field_modified_at: Per data field last-change time.
    """

    KEY_FIELDS: ClassVar[tuple[str, ...]] = ()
    STORE_KIND: ClassVar[StoreKind]

    id: int | None = None
    created_at: int = 0
    modified_at: int = 0
    field_modified_at: dict[str, int] = {}

    model_config = {"frozen": True}

    @classmethod
    def data_fields(cls) -> tuple[str, ...]:
        """Names of the fields that carry user data, in declaration order."""
        excluded = TRACKING_FIELDS | STORAGE_FIELDS | set(cls.KEY_FIELDS)
        return tuple(
            name for name in cls.model_fields if name not in excluded
        )

    @classmethod
    def create(cls, now: int | None = None, **fields: Any):
        """Build a new record with every data field stamped at *now*."""
        stamp = now if now is not None else now_ms()
        return cls(
            created_at=stamp,
            modified_at=stamp,
            field_modified_at={name: stamp for name in cls.data_fields()},
            **fields,
        )

    def logical_key(self) -> tuple:
        """Values of the key fields identifying this item across snapshots."""
        return tuple(getattr(self, name) for name in self.KEY_FIELDS)

    def field_timestamp(self, name: str) -> int:
        """Last-change time of data field *name* (0 when never tracked)."""
        return self.field_modified_at.get(name, 0)

    def with_changes(self, now: int | None = None, **changes: Any):
        """Return a copy with *changes* applied and tracked.

        Only fields whose value actually differs get a new timestamp.  If
        nothing changed, ``self`` is returned unchanged.

        Raises:
            ValueError: If a name in *changes* is not a data field.
        """
        allowed = set(self.data_fields())
        unknown = sorted(set(changes) - allowed)
        if unknown:
            raise ValueError(
                f"Not data fields of {type(self).__name__}: {unknown}"
            )

        data = self.model_dump()
        data.update(changes)
        candidate = type(self).model_validate(data)

        changed = [
            name
            for name in changes
            if not values_equal(getattr(self, name), getattr(candidate, name))
        ]
        if not changed:
            return self

        stamp = now if now is not None else now_ms()
        stamps = dict(self.field_modified_at)
        for name in changed:
            stamps[name] = stamp
        return candidate.model_copy(
            update={
                "modified_at": max(stamp, self.modified_at),
                "field_modified_at": stamps,
                "created_at": self.created_at or stamp,
            }
        )


class Profile(SyncableRecord):
    """Root record of a dataset.

    Identity is the dataset itself, so there are no key fields.
    """

    STORE_KIND: ClassVar[StoreKind] = StoreKind.PROFILE

    name: str
    sync_type: SyncType = SyncType.LOCAL
    active_pad_behavior: ActivePadBehavior = ActivePadBehavior.CONTINUE
    sync_paused_until: int | None = None
    last_backed_up_at: int = 0
    backup_reminder_period: int = 0


class PadConfiguration(SyncableRecord):
    """One pad on one page, keyed by ``(page_index, pad_index)``."""

    KEY_FIELDS: ClassVar[tuple[str, ...]] = ("page_index", "pad_index")
    STORE_KIND: ClassVar[StoreKind] = StoreKind.PAD_CONFIGURATION

    profile_id: int | None = None
    page_index: int
    pad_index: int
    key_binding: str | None = None
    name: str | None = None
    audio_file_ids: list[int] = []
    playback_type: PlaybackType = PlaybackType.SEQUENTIAL


class PageMetadata(SyncableRecord):
    """Name and flags of one page (bank), keyed by ``page_index``."""

    KEY_FIELDS: ClassVar[tuple[str, ...]] = ("page_index",)
    STORE_KIND: ClassVar[StoreKind] = StoreKind.PAGE_METADATA

    profile_id: int | None = None
    page_index: int
    name: str
    is_emergency: bool = False


AnyRecord = Union[Profile, PadConfiguration, PageMetadata]


# ---------------------------------------------------------------------------
# Dataset
# ---------------------------------------------------------------------------


class EmbeddedAsset(BaseModel):
    """An audio file carried inside a dataset for transport.

    Attributes:
        id: Id referenced by ``PadConfiguration.audio_file_ids``.
        name: Original file name.
        mime_type: MIME type of the payload.
        data: Base64-encoded file content.
    """

    id: int
    name: str
    mime_type: str
    data: str

    model_config = {"frozen": True}


class SyncDataset(BaseModel):
    """Everything that is synced for one profile.

    Stored as a single JSON document in the remote store.

    Attributes:
        format_version: Version of this document layout.
        last_sync_timestamp: When this dataset was last known to be
            consistent between local and remote.
        profile: The root record.
        pad_configurations: Pads of the profile (order irrelevant).
        page_metadata: Pages of the profile (order irrelevant).
        audio_files: Audio referenced by the pads.
    """

    format_version: int = SYNC_FORMAT_VERSION
    last_sync_timestamp: int | None = None
    profile: Profile
    pad_configurations: list[PadConfiguration] = []
    page_metadata: list[PageMetadata] = []
    audio_files: list[EmbeddedAsset] = []

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Conflicts and merge results
# ---------------------------------------------------------------------------


class FieldConflict(BaseModel):
    """One field changed on both sides since the last common sync."""

    field: str
    local_value: Any = None
    remote_value: Any = None
    local_modified_at: int
    remote_modified_at: int

    model_config = {"frozen": True}


class ItemConflict(BaseModel):
    """A record that needs a human decision.

    Attributes:
        store_kind: Which part of the dataset the record belongs to.
        key: String form of the logical key (``"2-7"`` for a pad,
            ``"2"`` for a page, the profile id for the profile).
        type: ``field_conflict``, ``local_only`` or ``remote_only``.
        local_item: Local version, ``None`` for remote-only items.
        remote_item: Remote version, ``None`` for local-only items.
        field_conflicts: Per-field details for ``field_conflict``.
    """

    store_kind: StoreKind
    key: str
    type: ConflictType
    local_item: AnyRecord | None = None
    remote_item: AnyRecord | None = None
    field_conflicts: list[FieldConflict] = []

    model_config = {"frozen": True}

    @property
    def conflict_id(self) -> str:
        """Identifier used to attach a human choice to this conflict."""
        return f"{self.store_kind.value}:{self.key}"


class MergeOutcome(BaseModel):
    """Result of merging two versions of one record.

    Exactly one of ``merged`` and ``field_conflicts`` is meaningful:
    a merged record is only produced when no field conflicted.
    """

    merged: AnyRecord | None = None
    field_conflicts: list[FieldConflict] = []

    model_config = {"frozen": True}

    @property
    def is_conflict(self) -> bool:
        return bool(self.field_conflicts)


class DiffOutcome(BaseModel):
    """Result of diffing two collections of one entity kind."""

    conflicts: list[ItemConflict] = []
    merged_items: list[AnyRecord] = []

    model_config = {"frozen": True}


class DetectionResult(BaseModel):
    """Result of comparing a local and a remote dataset.

    Attributes:
        conflicts: Everything that needs a human decision.
        requires_manual_resolution: ``True`` iff ``conflicts`` is non-empty.
        merged_dataset: All non-conflicting data, merged.
        remote_dataset: The remote dataset with asset ids re-based into
            the local id space (``None`` when there was no remote).
    """

    conflicts: list[ItemConflict] = []
    requires_manual_resolution: bool = False
    merged_dataset: SyncDataset
    remote_dataset: SyncDataset | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Sync attempt result
# ---------------------------------------------------------------------------


class SyncResult(BaseModel):
    """Outcome of one sync attempt or resolution commit.

    Attributes:
        profile_id: Local id of the synced profile.
        status: Terminal outcome.
        trigger: What started the attempt.
        data: The committed dataset on success.
        conflicts: Conflicts needing a decision (``conflict`` outcome).
        local_dataset: Local snapshot exposed to the resolver.
        remote_dataset: Remote snapshot exposed to the resolver.
        remote_file_id: Remote file the dataset lives in.
        error: Error message for ``error`` outcomes.
        error_kind: ``SyncError.kind`` of the failure.
        resume_time: When a paused profile resumes syncing.
        reason: Why an attempt was skipped.
        started_at: ISO 8601 start time.
        completed_at: ISO 8601 completion time.
    """

    profile_id: int
    status: SyncOutcome
    trigger: SyncTrigger = SyncTrigger.MANUAL
    data: SyncDataset | None = None
    conflicts: list[ItemConflict] = []
    local_dataset: SyncDataset | None = None
    remote_dataset: SyncDataset | None = None
    remote_file_id: str | None = None
    error: str | None = None
    error_kind: str | None = None
    resume_time: int | None = None
    reason: str | None = None
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return self.status == SyncOutcome.SUCCESS
