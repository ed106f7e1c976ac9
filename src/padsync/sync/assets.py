"""Embedded audio asset handling for datasets.

Asset ids are local storage ids, so the ids inside a downloaded dataset
belong to another device's id space.  Before comparing pads, the remote
assets are re-based into the local id space:

* an asset whose content (name, MIME type, data) matches a local asset
  takes that asset's id,
* any other asset gets a fresh id above every local id,
* ``audio_file_ids`` of remote pads are rewritten through the same map.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .models import EmbeddedAsset, PadConfiguration, SyncDataset

logger = logging.getLogger(__name__)


def _signature(asset: EmbeddedAsset) -> tuple[str, str, str]:
    return (asset.name, asset.mime_type, asset.data)


def rebase_remote_assets(
    local: SyncDataset, remote: SyncDataset
) -> SyncDataset:
    """Return *remote* with its asset ids moved into *local*'s id space.

    References to ids that the remote dataset does not embed are left
    unchanged.
    """
    by_content = {_signature(a): a.id for a in local.audio_files}
    next_id = max((a.id for a in local.audio_files), default=0) + 1

    id_map: dict[int, int] = {}
    rebased: list[EmbeddedAsset] = []
    seen: set[int] = set()
    for asset in remote.audio_files:
        sig = _signature(asset)
        new_id = by_content.get(sig)
        if new_id is None:
            new_id = next_id
            next_id += 1
            by_content[sig] = new_id
        id_map[asset.id] = new_id
        if new_id not in seen:
            seen.add(new_id)
            rebased.append(asset.model_copy(update={"id": new_id}))

    pads = []
    for pad in remote.pad_configurations:
        unknown = [i for i in pad.audio_file_ids if i not in id_map]
        if unknown:
            logger.warning(
                "Remote pad %s-%s references missing audio ids %s",
                pad.page_index,
                pad.pad_index,
                unknown,
            )
        ids = [id_map.get(i, i) for i in pad.audio_file_ids]
        pads.append(pad.model_copy(update={"audio_file_ids": ids}))

    return remote.model_copy(
        update={"audio_files": rebased, "pad_configurations": pads}
    )


def referenced_assets(
    pads: Iterable[PadConfiguration], *sources: Iterable[EmbeddedAsset]
) -> list[EmbeddedAsset]:
    """Collect the assets referenced by *pads*, earlier sources first.

    Returns:
        Assets sorted by id, one per id.
    """
    wanted = {i for pad in pads for i in pad.audio_file_ids}
    found: dict[int, EmbeddedAsset] = {}
    for source in sources:
        for asset in source:
            if asset.id in wanted and asset.id not in found:
                found[asset.id] = asset
    return [found[i] for i in sorted(found)]
