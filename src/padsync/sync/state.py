"""Local store for profiles, pads, pages and audio files.

Layout below ``root_dir``::

    profiles/<profile_id>.json   one document per profile
    assets/index.json            audio id -> name, MIME type, sha256
    assets/<sha256>.bin          audio payloads, content-addressed

A profile document holds the profile record, its pads and pages, the
linked remote file id and ``last_sync_timestamp``.

Key design choices:

* **Atomic writes** -- every document is written to a temp file in the
  same directory then ``os.replace()``'d, so ``apply_dataset()`` either
  replaces the whole profile or leaves it untouched.
* **Stable ids** -- records keep their local id across applies; matching
  is by logical key.
* **Assets are never deleted here** -- files no longer referenced by any
  pad are left for a separate cleanup.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable

from padsync.errors import LocalApplyError, LocalStoreError
from padsync.sync.mapper import index_by_key
from padsync.sync.models import (
    SYNC_FORMAT_VERSION,
    EmbeddedAsset,
    PadConfiguration,
    PageMetadata,
    Profile,
    SyncDataset,
    SyncType,
    now_ms,
)

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = 1


def _atomic_write_json(target: Path, data: Any) -> None:
    """Write *data* as JSON to *target* via temp file and ``os.replace``."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
        os.replace(tmp_path, target)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class LocalStore:
    """JSON-file backed store for profile datasets.

    Args:
        root_dir: Directory holding ``profiles/`` and ``assets/``.
        clock: Millisecond clock used to stamp edits.
    """

    def __init__(
        self, root_dir: Path, clock: Callable[[], int] = now_ms
    ) -> None:
        self._root = Path(root_dir)
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def root_dir(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Sync contract
    # ------------------------------------------------------------------

    def read_dataset(self, profile_id: int) -> SyncDataset:
        """Snapshot a profile with its pads, pages and referenced audio.

        Raises:
            LocalStoreError: If the profile does not exist or is unreadable.
        """
        with self._lock:
            doc = self._load(profile_id)
            pads = [PadConfiguration.model_validate(p) for p in doc["pads"]]
            pages = [PageMetadata.model_validate(p) for p in doc["pages"]]

            audio: list[EmbeddedAsset] = []
            wanted = sorted({i for pad in pads for i in pad.audio_file_ids})
            for audio_id in wanted:
                asset = self.get_audio_file(audio_id)
                if asset is None:
                    logger.warning(
                        "Profile %s references missing audio file %s",
                        profile_id,
                        audio_id,
                    )
                    continue
                audio.append(asset)

            return SyncDataset(
                format_version=SYNC_FORMAT_VERSION,
                last_sync_timestamp=doc.get("last_sync_timestamp"),
                profile=Profile.model_validate(doc["profile"]),
                pad_configurations=pads,
                page_metadata=pages,
                audio_files=audio,
            )

    def apply_dataset(self, profile_id: int, dataset: SyncDataset) -> None:
        """Replace a profile's synced content with *dataset*.

        Items are upserted by logical key (keeping their local ids) and
        local items absent from *dataset* are removed.  Embedded audio is
        written to the asset store.  ``last_sync_timestamp`` is not
        touched.

        Raises:
            LocalApplyError: If anything fails; the stored profile is then
                unchanged.
        """
        with self._lock:
            try:
                doc = self._load(profile_id)
                id_map = self._materialize_assets(dataset.audio_files)
                self._apply_to_document(doc, profile_id, dataset, id_map)
                self._save(profile_id, doc)
            except LocalApplyError:
                raise
            except (LocalStoreError, OSError, ValueError, binascii.Error) as exc:
                raise LocalApplyError(
                    f"Failed to apply dataset to profile {profile_id}: {exc}"
                ) from exc
        logger.info(
            "Applied dataset to profile %s (%d pads, %d pages)",
            profile_id,
            len(dataset.pad_configurations),
            len(dataset.page_metadata),
        )

    def read_last_sync_timestamp(self, profile_id: int) -> int | None:
        with self._lock:
            return self._load(profile_id).get("last_sync_timestamp")

    def write_last_sync_timestamp(self, profile_id: int, timestamp: int) -> None:
        with self._lock:
            doc = self._load(profile_id)
            doc["last_sync_timestamp"] = timestamp
            self._save(profile_id, doc)

    def get_remote_file_id(self, profile_id: int) -> str | None:
        with self._lock:
            return self._load(profile_id).get("remote_file_id")

    def link_remote_file(self, profile_id: int, file_id: str | None) -> None:
        """Remember (or forget, with ``None``) the remote file of a profile."""
        with self._lock:
            doc = self._load(profile_id)
            doc["remote_file_id"] = file_id
            self._save(profile_id, doc)
        logger.debug("Profile %s linked to remote file %s", profile_id, file_id)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def list_profiles(self) -> list[Profile]:
        profiles_dir = self._root / "profiles"
        if not profiles_dir.is_dir():
            return []
        profiles = []
        for path in sorted(profiles_dir.glob("*.json")):
            if not path.stem.isdigit():
                continue
            profiles.append(self.get_profile(int(path.stem)))
        return sorted(profiles, key=lambda p: p.id or 0)

    def get_profile(self, profile_id: int) -> Profile:
        with self._lock:
            return Profile.model_validate(self._load(profile_id)["profile"])

    def create_profile(
        self,
        name: str,
        sync_type: SyncType | str = SyncType.LOCAL,
        **fields: Any,
    ) -> Profile:
        """Create and persist a new profile with the next free id."""
        with self._lock:
            profile_id = self._next_profile_id()
            profile = Profile.create(
                now=self._clock(),
                id=profile_id,
                name=name,
                sync_type=sync_type,
                **fields,
            )
            doc = {
                "version": DOCUMENT_VERSION,
                "profile": profile.model_dump(mode="json"),
                "pads": [],
                "pages": [],
                "remote_file_id": None,
                "last_sync_timestamp": None,
                "next_item_id": 1,
            }
            self._save(profile_id, doc)
        logger.info("Created profile %s (%s)", profile_id, name)
        return profile

    def update_profile(self, profile_id: int, **changes: Any) -> Profile:
        """Edit profile fields, stamping only those that changed."""
        with self._lock:
            doc = self._load(profile_id)
            profile = Profile.model_validate(doc["profile"])
            updated = profile.with_changes(now=self._clock(), **changes)
            if updated is not profile:
                doc["profile"] = updated.model_dump(mode="json")
                self._save(profile_id, doc)
            return updated

    # ------------------------------------------------------------------
    # Pads and pages
    # ------------------------------------------------------------------

    def save_pad(
        self, profile_id: int, page_index: int, pad_index: int, **fields: Any
    ) -> PadConfiguration:
        """Create or edit the pad at ``(page_index, pad_index)``."""
        return self._save_item(
            profile_id,
            "pads",
            PadConfiguration,
            {"page_index": page_index, "pad_index": pad_index},
            fields,
        )

    def save_page(
        self, profile_id: int, page_index: int, **fields: Any
    ) -> PageMetadata:
        """Create or edit the metadata of page ``page_index``."""
        return self._save_item(
            profile_id, "pages", PageMetadata, {"page_index": page_index}, fields
        )

    def delete_pad(self, profile_id: int, page_index: int, pad_index: int) -> bool:
        return self._delete_item(profile_id, "pads", (page_index, pad_index))

    def delete_page(self, profile_id: int, page_index: int) -> bool:
        return self._delete_item(profile_id, "pages", (page_index,))

    # ------------------------------------------------------------------
    # Audio files
    # ------------------------------------------------------------------

    def add_audio_file(self, name: str, mime_type: str, data: bytes) -> int:
        """Store an audio file and return its id.

        Adding identical content under the same name and MIME type returns
        the existing id.
        """
        digest = hashlib.sha256(data).hexdigest()
        with self._lock:
            index = self._load_asset_index()
            for key, meta in index["files"].items():
                if (
                    meta["sha256"] == digest
                    and meta["name"] == name
                    and meta["mime_type"] == mime_type
                ):
                    return int(key)
            audio_id = index["next_id"]
            self._write_blob(digest, data)
            index["files"][str(audio_id)] = {
                "name": name,
                "mime_type": mime_type,
                "sha256": digest,
            }
            index["next_id"] = audio_id + 1
            self._save_asset_index(index)
        return audio_id

    def get_audio_file(self, audio_id: int) -> EmbeddedAsset | None:
        """Return an audio file as an embedded asset, or ``None``."""
        with self._lock:
            meta = self._load_asset_index()["files"].get(str(audio_id))
            if meta is None:
                return None
            blob = self._assets_dir / f"{meta['sha256']}.bin"
            if not blob.exists():
                return None
            return EmbeddedAsset(
                id=audio_id,
                name=meta["name"],
                mime_type=meta["mime_type"],
                data=base64.b64encode(blob.read_bytes()).decode("ascii"),
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @property
    def _assets_dir(self) -> Path:
        return self._root / "assets"

    def _profile_path(self, profile_id: int) -> Path:
        return self._root / "profiles" / f"{profile_id}.json"

    def _load(self, profile_id: int) -> dict:
        path = self._profile_path(profile_id)
        if not path.exists():
            raise LocalStoreError(f"Profile {profile_id} not found")
        try:
            with open(path, encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise LocalStoreError(
                f"Cannot read profile {profile_id}: {exc}"
            ) from exc

    def _save(self, profile_id: int, doc: dict) -> None:
        _atomic_write_json(self._profile_path(profile_id), doc)

    def _next_profile_id(self) -> int:
        profiles_dir = self._root / "profiles"
        ids = [
            int(p.stem)
            for p in profiles_dir.glob("*.json")
            if p.stem.isdigit()
        ] if profiles_dir.is_dir() else []
        return max(ids, default=0) + 1

    def _save_item(self, profile_id, collection, model, key_fields, fields):
        with self._lock:
            doc = self._load(profile_id)
            items = [model.model_validate(i) for i in doc[collection]]
            key = tuple(key_fields[name] for name in model.KEY_FIELDS)
            now = self._clock()

            for pos, item in enumerate(items):
                if item.logical_key() == key:
                    saved = item.with_changes(now=now, **fields)
                    items[pos] = saved
                    break
            else:
                saved = model.create(
                    now=now,
                    id=self._take_item_id(doc),
                    profile_id=profile_id,
                    **key_fields,
                    **fields,
                )
                items.append(saved)

            doc[collection] = [i.model_dump(mode="json") for i in items]
            self._save(profile_id, doc)
            return saved

    def _delete_item(self, profile_id: int, collection: str, key: tuple) -> bool:
        model = PadConfiguration if collection == "pads" else PageMetadata
        with self._lock:
            doc = self._load(profile_id)
            items = [model.model_validate(i) for i in doc[collection]]
            kept = [i for i in items if i.logical_key() != key]
            if len(kept) == len(items):
                return False
            doc[collection] = [i.model_dump(mode="json") for i in kept]
            self._save(profile_id, doc)
            return True

    @staticmethod
    def _take_item_id(doc: dict) -> int:
        item_id = doc.get("next_item_id", 1)
        doc["next_item_id"] = item_id + 1
        return item_id

    def _apply_to_document(
        self,
        doc: dict,
        profile_id: int,
        dataset: SyncDataset,
        id_map: dict[int, int],
    ) -> None:
        """Rewrite *doc* in memory to hold the content of *dataset*."""
        doc["profile"] = dataset.profile.model_copy(
            update={"id": profile_id}
        ).model_dump(mode="json")

        for collection, model, incoming in (
            ("pads", PadConfiguration, dataset.pad_configurations),
            ("pages", PageMetadata, dataset.page_metadata),
        ):
            existing = index_by_key(
                (model.model_validate(i) for i in doc[collection]),
                f"stored {collection}",
            )
            index_by_key(incoming, f"incoming {collection}")

            applied = []
            for item in incoming:
                current = existing.get(item.logical_key())
                item_id = (
                    current.id
                    if current is not None and current.id is not None
                    else self._take_item_id(doc)
                )
                update: dict[str, Any] = {"id": item_id, "profile_id": profile_id}
                if collection == "pads" and id_map:
                    update["audio_file_ids"] = [
                        id_map.get(i, i) for i in item.audio_file_ids
                    ]
                applied.append(item.model_copy(update=update))
            doc[collection] = [i.model_dump(mode="json") for i in applied]

    def _materialize_assets(self, assets: list[EmbeddedAsset]) -> dict[int, int]:
        """Store embedded audio; return ids that had to be reassigned."""
        if not assets:
            return {}
        index = self._load_asset_index()
        id_map: dict[int, int] = {}
        pending: list[tuple[EmbeddedAsset, str]] = []

        for asset in assets:
            data = base64.b64decode(asset.data, validate=True)
            digest = hashlib.sha256(data).hexdigest()
            meta = index["files"].get(str(asset.id))
            if meta is not None:
                if (
                    meta["sha256"] == digest
                    and meta["name"] == asset.name
                    and meta["mime_type"] == asset.mime_type
                ):
                    self._write_blob(digest, data)
                    continue
                pending.append((asset, digest))
            else:
                index["files"][str(asset.id)] = {
                    "name": asset.name,
                    "mime_type": asset.mime_type,
                    "sha256": digest,
                }
                index["next_id"] = max(index["next_id"], asset.id + 1)
            self._write_blob(digest, data)

        # Ids already taken by different content get fresh ids.
        for asset, digest in pending:
            for key, meta in index["files"].items():
                if (
                    meta["sha256"] == digest
                    and meta["name"] == asset.name
                    and meta["mime_type"] == asset.mime_type
                ):
                    id_map[asset.id] = int(key)
                    break
            if asset.id in id_map:
                continue
            new_id = index["next_id"]
            index["next_id"] = new_id + 1
            index["files"][str(new_id)] = {
                "name": asset.name,
                "mime_type": asset.mime_type,
                "sha256": digest,
            }
            id_map[asset.id] = new_id

        self._save_asset_index(index)
        return id_map

    def _write_blob(self, digest: str, data: bytes) -> None:
        blob = self._assets_dir / f"{digest}.bin"
        if blob.exists():
            return
        self._assets_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self._assets_dir), suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, blob)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def _load_asset_index(self) -> dict:
        path = self._assets_dir / "index.json"
        if not path.exists():
            return {"next_id": 1, "files": {}}
        try:
            with open(path, encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise LocalStoreError(f"Cannot read asset index: {exc}") from exc

    def _save_asset_index(self, index: dict) -> None:
        _atomic_write_json(self._assets_dir / "index.json", index)
