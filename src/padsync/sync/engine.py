"""Sync orchestrator and resolution committer.

The ``SyncEngine`` runs one sync attempt per call of ``sync_profile()``:

1. Skip paused and non-remote profiles.
2. Find the remote file (stored link, else by name) and relink it.
3. Download the remote dataset (a missing file is valid).
4. Detect conflicts against a fresh local snapshot.
5. On conflicts: enter the ``conflict`` state and hand them out.
6. Otherwise commit: stamp ``last_sync_timestamp``, upload, apply
   locally, relink, persist the timestamp.

``apply_resolution()`` reuses the commit step for a dataset resolved by a
human.  Errors are caught per attempt and returned as ``error`` results;
``last_sync_timestamp`` only moves after a complete commit.

Per profile states::

    idle -> syncing -> {success, conflict, error} -> idle

``success`` and ``error`` fall back to ``idle`` as soon as the attempt
returns.  ``conflict`` stays until a resolution is committed or dismissed.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol

from padsync.errors import (
    LocalApplyError,
    RemoteNotFoundError,
    SyncError,
    UnresolvedConflictError,
)
from padsync.sync.detector import detect_profile_conflicts
from padsync.sync.mapper import index_by_key, profile_sync_filename
from padsync.sync.models import (
    Profile,
    SyncDataset,
    SyncOutcome,
    SyncResult,
    SyncStatus,
    SyncTrigger,
    SyncType,
    now_ms,
)
from padsync.sync.resolver import resolve_conflicts
from padsync.sync.state import LocalStore

logger = logging.getLogger(__name__)

StatusListener = Callable[[int, SyncStatus], None]


class RemoteStore(Protocol):
    """The part of ``DriveClient`` the engine depends on."""

    def find_by_id(self, file_id: str) -> Any: ...  # pragma: no cover

    def find_by_name(self, name: str) -> Any: ...  # pragma: no cover

    def download(self, file_id: str) -> SyncDataset | None: ...  # pragma: no cover

    def upload(
        self,
        name: str,
        dataset: SyncDataset,
        existing_file_id: str | None = None,
        profile_id: int | None = None,
    ) -> Any: ...  # pragma: no cover


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _resolution_result(
    profile_id: int, started_at: str, status: SyncOutcome, **fields: Any
) -> SyncResult:
    return SyncResult(
        profile_id=profile_id,
        status=status,
        trigger=SyncTrigger.RESOLUTION,
        started_at=started_at,
        completed_at=_iso_now(),
        **fields,
    )


def _no_pending_conflict(profile_id: int, started_at: str) -> SyncResult:
    return _resolution_result(
        profile_id,
        started_at,
        SyncOutcome.ERROR,
        error="No conflict awaiting resolution",
        error_kind="no_pending_conflict",
    )


class SyncEngine:
    """Orchestrate sync attempts for the profiles of one local store.

    Args:
        client: Remote store client (``DriveClient`` or a fake).
        store: Local store.
        clock: Millisecond clock used for pause checks and commit stamps.
        status_listener: Called with ``(profile_id, status)`` on every
            state transition.
    """

    def __init__(
        self,
        client: RemoteStore,
        store: LocalStore,
        clock: Callable[[], int] = now_ms,
        status_listener: StatusListener | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.clock = clock
        self.status_listener = status_listener

        self._lock = threading.Lock()
        self._status: dict[int, SyncStatus] = {}
        self._pending: dict[int, SyncResult] = {}
        self._last_results: dict[int, SyncResult] = {}

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self, profile_id: int) -> SyncStatus:
        with self._lock:
            return self._status.get(profile_id, SyncStatus.IDLE)

    def pending_conflict(self, profile_id: int) -> SyncResult | None:
        """The conflict result awaiting a decision, if any."""
        with self._lock:
            return self._pending.get(profile_id)

    def last_result(self, profile_id: int) -> SyncResult | None:
        with self._lock:
            return self._last_results.get(profile_id)

    def _notify(self, profile_id: int, status: SyncStatus) -> None:
        if self.status_listener is None:
            return
        try:
            self.status_listener(profile_id, status)
        except Exception:
            logger.exception("Status listener failed for profile %s", profile_id)

    def _try_begin(self, profile_id: int) -> SyncStatus | None:
        """Enter ``syncing``; return the blocking status if not possible."""
        with self._lock:
            current = self._status.get(profile_id, SyncStatus.IDLE)
            if current in (SyncStatus.SYNCING, SyncStatus.CONFLICT):
                return current
            self._status[profile_id] = SyncStatus.SYNCING
        self._notify(profile_id, SyncStatus.SYNCING)
        return None

    def _finish(self, profile_id: int, result: SyncResult) -> SyncResult:
        """Record *result* and move to the state it implies."""
        if result.status == SyncOutcome.CONFLICT:
            with self._lock:
                self._status[profile_id] = SyncStatus.CONFLICT
                self._pending[profile_id] = result
                self._last_results[profile_id] = result
            self._notify(profile_id, SyncStatus.CONFLICT)
            return result

        terminal = (
            SyncStatus.SUCCESS
            if result.status == SyncOutcome.SUCCESS
            else SyncStatus.ERROR
        )
        with self._lock:
            self._status[profile_id] = SyncStatus.IDLE
            self._pending.pop(profile_id, None)
            self._last_results[profile_id] = result
        self._notify(profile_id, terminal)
        self._notify(profile_id, SyncStatus.IDLE)
        return result

    # ------------------------------------------------------------------
    # Sync attempt
    # ------------------------------------------------------------------

    def sync_profile(
        self, profile_id: int, trigger: SyncTrigger = SyncTrigger.MANUAL
    ) -> SyncResult:
        """Run one sync attempt for *profile_id*.

        Returns:
            A ``SyncResult`` with status ``success``, ``conflict``,
            ``error``, ``paused`` or ``skipped``.
        """
        started_at = _iso_now()
        trigger = SyncTrigger(trigger)

        def result(status: SyncOutcome, **fields: Any) -> SyncResult:
            return SyncResult(
                profile_id=profile_id,
                status=status,
                trigger=trigger,
                started_at=started_at,
                completed_at=_iso_now(),
                **fields,
            )

        try:
            profile = self.store.get_profile(profile_id)
        except SyncError as exc:
            logger.error("Cannot sync profile %s: %s", profile_id, exc)
            return result(SyncOutcome.ERROR, error=str(exc), error_kind=exc.kind)

        now = self.clock()
        if profile.sync_paused_until is not None and profile.sync_paused_until > now:
            logger.info(
                "Sync of profile %s paused until %s",
                profile_id,
                profile.sync_paused_until,
            )
            return result(
                SyncOutcome.PAUSED, resume_time=profile.sync_paused_until
            )

        if profile.sync_type != SyncType.REMOTE:
            return result(
                SyncOutcome.SKIPPED, reason="profile is not synced remotely"
            )

        blocking = self._try_begin(profile_id)
        if blocking is not None:
            reason = (
                "conflict awaiting resolution"
                if blocking == SyncStatus.CONFLICT
                else "sync already in progress"
            )
            logger.info("Skipping %s sync of profile %s: %s", trigger.value, profile_id, reason)
            return result(SyncOutcome.SKIPPED, reason=reason)

        logger.info("Syncing profile %s (%s)", profile_id, trigger.value)
        try:
            outcome = self._run_attempt(profile_id, profile, result)
        except SyncError as exc:
            logger.error("Sync of profile %s failed: %s", profile_id, exc)
            outcome = result(
                SyncOutcome.ERROR, error=str(exc), error_kind=exc.kind
            )
        except Exception as exc:
            logger.exception("Unexpected error syncing profile %s", profile_id)
            outcome = result(
                SyncOutcome.ERROR, error=str(exc), error_kind="unexpected_error"
            )
        return self._finish(profile_id, outcome)

    def _run_attempt(
        self,
        profile_id: int,
        profile: Profile,
        result: Callable[..., SyncResult],
    ) -> SyncResult:
        local = self.store.read_dataset(profile_id)
        file_id = self._locate_remote_file(profile_id, profile)

        remote = None
        if file_id is not None:
            remote = self.client.download(file_id)
            if remote is None:
                logger.warning(
                    "Remote file %s vanished before download", file_id
                )
                file_id = None

        detection = detect_profile_conflicts(local, remote)
        if detection.requires_manual_resolution:
            return result(
                SyncOutcome.CONFLICT,
                conflicts=detection.conflicts,
                local_dataset=local,
                remote_dataset=detection.remote_dataset,
                remote_file_id=file_id,
            )

        committed, file_id = self._commit(
            profile_id, detection.merged_dataset, file_id
        )
        logger.info("Profile %s synced (remote file %s)", profile_id, file_id)
        return result(
            SyncOutcome.SUCCESS, data=committed, remote_file_id=file_id
        )

    def _locate_remote_file(self, profile_id: int, profile: Profile) -> str | None:
        """Return the remote file id, relinking by name when the link broke."""
        linked = self.store.get_remote_file_id(profile_id)
        if linked:
            found = self.client.find_by_id(linked)
            if found is not None:
                return found.id
            logger.warning(
                "Remote file %s of profile %s is gone, searching by name",
                linked,
                profile_id,
            )

        found = self.client.find_by_name(profile_sync_filename(profile.name))
        file_id = found.id if found is not None else None
        if file_id != linked:
            self.store.link_remote_file(profile_id, file_id)
        return file_id

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _commit(
        self, profile_id: int, dataset: SyncDataset, file_id: str | None
    ) -> tuple[SyncDataset, str]:
        """Stamp, upload, apply locally, relink and persist the timestamp."""
        previous = self.store.read_last_sync_timestamp(profile_id) or 0
        stamp = max(self.clock(), previous)
        stamped = dataset.model_copy(update={"last_sync_timestamp": stamp})
        name = profile_sync_filename(stamped.profile.name)

        try:
            remote = self.client.upload(name, stamped, file_id, profile_id)
        except RemoteNotFoundError:
            if file_id is None:
                raise
            logger.warning(
                "Remote file %s disappeared, creating a new one", file_id
            )
            remote = self.client.upload(name, stamped, None, profile_id)

        try:
            self.store.apply_dataset(profile_id, stamped)
        except LocalApplyError:
            raise
        except Exception as exc:
            raise LocalApplyError(
                f"Failed to apply dataset to profile {profile_id}: {exc}"
            ) from exc

        if remote.id != file_id:
            self.store.link_remote_file(profile_id, remote.id)
        self.store.write_last_sync_timestamp(profile_id, stamp)
        return stamped, remote.id

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def apply_resolution(
        self,
        resolved: SyncDataset,
        remote_file_id: str | None,
        profile_id: int,
    ) -> SyncResult:
        """Commit a dataset in which a human decided every conflict.

        Every logical key must occur once in each collection.
        """
        started_at = _iso_now()
        with self._lock:
            if self._status.get(profile_id) == SyncStatus.SYNCING:
                return _resolution_result(
                    profile_id,
                    started_at,
                    SyncOutcome.SKIPPED,
                    reason="sync already in progress",
                )
            self._status[profile_id] = SyncStatus.SYNCING
            self._pending.pop(profile_id, None)
        self._notify(profile_id, SyncStatus.SYNCING)
        return self._commit_resolution(
            resolved, remote_file_id, profile_id, started_at
        )

    def _commit_resolution(
        self,
        resolved: SyncDataset,
        remote_file_id: str | None,
        profile_id: int,
        started_at: str,
    ) -> SyncResult:
        """Validate and commit *resolved*; the caller holds ``syncing``."""
        try:
            index_by_key(resolved.pad_configurations, "resolved pads")
            index_by_key(resolved.page_metadata, "resolved pages")
        except ValueError as exc:
            logger.error("Rejected resolution for profile %s: %s", profile_id, exc)
            return self._finish(
                profile_id,
                _resolution_result(
                    profile_id,
                    started_at,
                    SyncOutcome.ERROR,
                    error=str(exc),
                    error_kind="invalid_resolution",
                ),
            )

        try:
            committed, file_id = self._commit(profile_id, resolved, remote_file_id)
            logger.info("Resolution committed for profile %s", profile_id)
            outcome = _resolution_result(
                profile_id,
                started_at,
                SyncOutcome.SUCCESS,
                data=committed,
                remote_file_id=file_id,
            )
        except SyncError as exc:
            logger.error(
                "Committing resolution for profile %s failed: %s", profile_id, exc
            )
            outcome = _resolution_result(
                profile_id,
                started_at,
                SyncOutcome.ERROR,
                error=str(exc),
                error_kind=exc.kind,
            )
        except Exception as exc:
            logger.exception(
                "Unexpected error committing resolution for profile %s", profile_id
            )
            outcome = _resolution_result(
                profile_id,
                started_at,
                SyncOutcome.ERROR,
                error=str(exc),
                error_kind="unexpected_error",
            )
        return self._finish(profile_id, outcome)

    def resolve(self, profile_id: int, choices: Mapping[str, Any]) -> SyncResult:
        """Build the resolved dataset from *choices* and commit it.

        Incomplete choices leave the conflict pending and return an
        ``error`` result with kind ``unresolved_conflict``.  The conflict
        is claimed under the lock before committing, so it is committed
        at most once.
        """
        started_at = _iso_now()
        with self._lock:
            pending = (
                self._pending.get(profile_id)
                if self._status.get(profile_id) == SyncStatus.CONFLICT
                else None
            )
        if pending is None:
            return _no_pending_conflict(profile_id, started_at)

        try:
            resolved = resolve_conflicts(
                pending.local_dataset,
                pending.remote_dataset,
                pending.conflicts,
                choices,
            )
        except (UnresolvedConflictError, ValueError) as exc:
            missing = getattr(exc, "missing", [])
            logger.warning(
                "Incomplete resolution for profile %s: %s", profile_id, exc
            )
            return _resolution_result(
                profile_id,
                started_at,
                SyncOutcome.ERROR,
                conflicts=[c for c in pending.conflicts if c.conflict_id in missing]
                or pending.conflicts,
                error=str(exc),
                error_kind=UnresolvedConflictError.kind,
            )

        with self._lock:
            claimed = self._pending.get(profile_id) is pending
            if claimed:
                del self._pending[profile_id]
                self._status[profile_id] = SyncStatus.SYNCING
        if not claimed:
            logger.warning(
                "Conflict of profile %s was settled concurrently", profile_id
            )
            return _no_pending_conflict(profile_id, started_at)

        self._notify(profile_id, SyncStatus.SYNCING)
        return self._commit_resolution(
            resolved, pending.remote_file_id, profile_id, started_at
        )

    def dismiss_conflict(self, profile_id: int) -> bool:
        """Drop a pending conflict without committing anything."""
        with self._lock:
            if self._status.get(profile_id) != SyncStatus.CONFLICT:
                return False
            self._status[profile_id] = SyncStatus.IDLE
            self._pending.pop(profile_id, None)
        logger.info("Conflict of profile %s dismissed", profile_id)
        self._notify(profile_id, SyncStatus.IDLE)
        return True

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def remote_profile_ids(self) -> list[int]:
        return [
            p.id
            for p in self.store.list_profiles()
            if p.sync_type == SyncType.REMOTE and p.id is not None
        ]

    def sync_all(
        self, trigger: SyncTrigger = SyncTrigger.PERIODIC
    ) -> list[SyncResult]:
        """Sync every remote profile in turn."""
        return [self.sync_profile(pid, trigger) for pid in self.remote_profile_ids()]
