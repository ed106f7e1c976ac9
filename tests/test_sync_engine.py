"""Tests for the sync orchestrator and resolution committer.

Uses the in-memory ``FakeDriveClient`` and a real ``LocalStore`` in a
temp directory, both driven by a ``ManualClock``.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from padsync.errors import AuthExpiredError, LocalApplyError, NetworkError, RemoteNotFoundError
from padsync.sync.engine import SyncEngine
from padsync.sync.mapper import profile_sync_filename
from padsync.sync.models import (
    PageMetadata,
    Profile,
    SyncDataset,
    SyncOutcome,
    SyncStatus,
    SyncTrigger,
)
from padsync.sync.resolver import resolve_conflicts
from padsync.sync.state import LocalStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _remote_profile(store, name="Main"):
    return store.create_profile(name, sync_type="remote")


def _synced(engine, store, clock, name="Main"):
    """Create a remote profile with one pad and run a first sync."""
    profile = _remote_profile(store, name)
    clock.advance(100)
    store.save_pad(profile.id, 0, 1, name="Kick")
    clock.advance(100)
    result = engine.sync_profile(profile.id)
    assert result.status == SyncOutcome.SUCCESS
    return profile.id, result.remote_file_id


def _rename_remote_pad(drive, file_id, name, at):
    def change(dataset: SyncDataset) -> SyncDataset:
        pads = [
            p.with_changes(now=at, name=name) if p.logical_key() == (0, 1) else p
            for p in dataset.pad_configurations
        ]
        return dataset.model_copy(update={"pad_configurations": pads})

    drive.edit(file_id, change)


def _make_conflict(engine, store, drive, clock):
    pid, file_id = _synced(engine, store, clock)
    clock.advance(1000)
    store.save_pad(pid, 0, 1, name="Siren")
    _rename_remote_pad(drive, file_id, "Horn", clock.now + 500)
    clock.advance(1000)
    result = engine.sync_profile(pid)
    assert result.status == SyncOutcome.CONFLICT
    return pid, file_id, result


# ---------------------------------------------------------------------------
# Successful attempts
# ---------------------------------------------------------------------------


class TestSyncSuccess:
    def test_first_sync_creates_remote_file(self, engine, store, drive, clock):
        pid, file_id = _synced(engine, store, clock)

        assert file_id is not None
        assert drive.files[file_id][0] == profile_sync_filename("Main")
        assert drive.upload_calls == [(profile_sync_filename("Main"), None)]
        assert store.get_remote_file_id(pid) == file_id
        assert store.read_last_sync_timestamp(pid) == clock.now
        remote = drive.dataset(file_id)
        assert remote.last_sync_timestamp == clock.now
        assert [p.name for p in remote.pad_configurations] == ["Kick"]

    def test_second_sync_updates_in_place(self, engine, store, drive, clock):
        pid, file_id = _synced(engine, store, clock)
        clock.advance(1000)
        store.save_pad(pid, 0, 1, name="Snare")

        result = engine.sync_profile(pid)

        assert result.status == SyncOutcome.SUCCESS
        assert drive.upload_calls[-1] == (profile_sync_filename("Main"), file_id)
        assert drive.dataset(file_id).pad_configurations[0].name == "Snare"

    def test_remote_change_is_applied_locally(self, engine, store, drive, clock):
        pid, file_id = _synced(engine, store, clock)
        _rename_remote_pad(drive, file_id, "Horn", clock.now + 10)
        clock.advance(1000)

        result = engine.sync_profile(pid)

        assert result.success
        [pad] = store.read_dataset(pid).pad_configurations
        assert pad.name == "Horn"

    def test_adopts_remote_dataset_from_another_device(
        self, engine, store, drive, clock
    ):
        profile = _remote_profile(store)
        other = Profile.create(now=clock.now + 5, id=40, name="Main", sync_type="remote")
        page = PageMetadata.create(now=clock.now + 10, page_index=2, name="Drums", id=8, profile_id=40)
        file_id = drive.seed(
            profile_sync_filename("Main"),
            SyncDataset(
                last_sync_timestamp=clock.now + 10,
                profile=other,
                page_metadata=[page],
            ),
        )
        clock.advance(1000)

        result = engine.sync_profile(profile.id)

        assert result.success
        assert result.remote_file_id == file_id
        [local_page] = store.read_dataset(profile.id).page_metadata
        assert local_page.name == "Drums"
        assert local_page.profile_id == profile.id
        assert local_page.id is not None

    def test_relinks_by_name_when_link_is_broken(self, engine, store, drive, clock):
        pid, file_id = _synced(engine, store, clock)
        store.link_remote_file(pid, "deleted-file")
        clock.advance(1000)

        result = engine.sync_profile(pid)

        assert result.success
        assert store.get_remote_file_id(pid) == file_id

    def test_recreates_remote_file_when_gone(self, engine, store, drive, clock):
        pid, file_id = _synced(engine, store, clock)
        del drive.files[file_id]
        clock.advance(1000)

        result = engine.sync_profile(pid)

        assert result.success
        assert result.remote_file_id != file_id
        assert store.get_remote_file_id(pid) == result.remote_file_id

    def test_patch_on_vanished_file_falls_back_to_create(
        self, engine, store, drive, clock
    ):
        pid, file_id = _synced(engine, store, clock)
        clock.advance(1000)
        real_upload = drive.upload

        def flaky_upload(name, dataset, existing_file_id=None, profile_id=None):
            if existing_file_id:
                raise RemoteNotFoundError("gone")
            return real_upload(name, dataset, None, profile_id)

        with patch.object(drive, "upload", side_effect=flaky_upload):
            result = engine.sync_profile(pid)

        assert result.success
        assert result.remote_file_id != file_id
        assert store.get_remote_file_id(pid) == result.remote_file_id

    def test_last_sync_timestamp_is_monotonic(self, engine, store, drive, clock):
        profile = _remote_profile(store)
        future = clock.now + 10_000_000
        store.write_last_sync_timestamp(profile.id, future)

        result = engine.sync_profile(profile.id)

        assert result.success
        assert result.data.last_sync_timestamp == future
        assert store.read_last_sync_timestamp(profile.id) == future

    def test_status_transitions(self, drive, store, clock):
        seen = []
        engine = SyncEngine(
            drive, store, clock=clock, status_listener=lambda pid, s: seen.append(s)
        )
        profile = _remote_profile(store)

        engine.sync_profile(profile.id)

        assert seen == [SyncStatus.SYNCING, SyncStatus.SUCCESS, SyncStatus.IDLE]
        assert engine.get_status(profile.id) == SyncStatus.IDLE
        assert engine.last_result(profile.id).success

    def test_listener_failure_does_not_break_sync(self, drive, store, clock):
        def boom(pid, status):
            raise RuntimeError("listener broke")

        engine = SyncEngine(drive, store, clock=clock, status_listener=boom)
        profile = _remote_profile(store)

        assert engine.sync_profile(profile.id).success


# ---------------------------------------------------------------------------
# Skips
# ---------------------------------------------------------------------------


class TestSyncSkips:
    def test_local_profile_skipped(self, engine, store, drive):
        profile = store.create_profile("Offline")

        result = engine.sync_profile(profile.id)

        assert result.status == SyncOutcome.SKIPPED
        assert drive.upload_calls == []

    def test_paused_profile(self, engine, store, drive, clock):
        profile = _remote_profile(store)
        store.update_profile(profile.id, sync_paused_until=clock.now + 60_000)

        result = engine.sync_profile(profile.id)

        assert result.status == SyncOutcome.PAUSED
        assert result.resume_time == clock.now + 60_000
        assert drive.upload_calls == []

    def test_expired_pause_syncs(self, engine, store, clock):
        profile = _remote_profile(store)
        store.update_profile(profile.id, sync_paused_until=clock.now + 10)
        clock.advance(11)

        assert engine.sync_profile(profile.id).success

    def test_concurrent_attempt_skipped(self, engine, store):
        profile = _remote_profile(store)
        engine._status[profile.id] = SyncStatus.SYNCING

        result = engine.sync_profile(profile.id, SyncTrigger.PERIODIC)

        assert result.status == SyncOutcome.SKIPPED
        assert result.reason == "sync already in progress"
        assert result.trigger == SyncTrigger.PERIODIC

    def test_unknown_profile_is_an_error(self, engine):
        result = engine.sync_profile(99)
        assert result.status == SyncOutcome.ERROR
        assert result.error_kind == "local_store_error"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestSyncErrors:
    @pytest.mark.parametrize(
        "error, kind",
        [
            (NetworkError("timeout"), "network_error"),
            (AuthExpiredError("expired"), "auth_expired"),
        ],
    )
    def test_upload_failure_keeps_timestamp(self, engine, store, drive, error, kind):
        profile = _remote_profile(store)
        drive.fail_upload = error

        result = engine.sync_profile(profile.id)

        assert result.status == SyncOutcome.ERROR
        assert result.error_kind == kind
        assert store.read_last_sync_timestamp(profile.id) is None
        assert engine.get_status(profile.id) == SyncStatus.IDLE

    def test_download_failure(self, engine, store, drive, clock):
        pid, _ = _synced(engine, store, clock)
        before = store.read_last_sync_timestamp(pid)
        drive.fail_download = NetworkError("offline")
        clock.advance(1000)

        result = engine.sync_profile(pid)

        assert result.error_kind == "network_error"
        assert store.read_last_sync_timestamp(pid) == before

    def test_local_apply_failure(self, engine, store, drive, clock):
        pid, _ = _synced(engine, store, clock)
        before = store.read_last_sync_timestamp(pid)
        clock.advance(1000)

        with patch.object(
            store, "apply_dataset", side_effect=LocalApplyError("disk full")
        ):
            result = engine.sync_profile(pid)

        assert result.error_kind == "local_apply_failure"
        assert store.read_last_sync_timestamp(pid) == before

    def test_unexpected_exception_is_wrapped(self, engine, store, clock):
        pid, _ = _synced(engine, store, clock)

        with patch.object(store, "apply_dataset", side_effect=OSError("io")):
            result = engine.sync_profile(pid)

        assert result.error_kind == "local_apply_failure"

    def test_bug_in_detection_is_reported(self, engine, store):
        profile = _remote_profile(store)
        with patch(
            "padsync.sync.engine.detect_profile_conflicts",
            side_effect=KeyError("bad"),
        ):
            result = engine.sync_profile(profile.id)

        assert result.error_kind == "unexpected_error"
        assert engine.get_status(profile.id) == SyncStatus.IDLE


# ---------------------------------------------------------------------------
# Conflicts and resolution
# ---------------------------------------------------------------------------


class TestConflicts:
    def test_conflict_outcome_writes_nothing(self, engine, store, drive, clock):
        pid, file_id, result = _make_conflict(engine, store, drive, clock)

        [conflict] = result.conflicts
        assert conflict.conflict_id == "pad_configuration:0-1"
        assert result.local_dataset is not None
        assert result.remote_dataset is not None
        assert engine.get_status(pid) == SyncStatus.CONFLICT
        assert engine.pending_conflict(pid) is result
        assert store.read_dataset(pid).pad_configurations[0].name == "Siren"
        assert drive.dataset(file_id).pad_configurations[0].name == "Horn"

    def test_sync_blocked_while_conflict_pending(self, engine, store, drive, clock):
        pid, _, _ = _make_conflict(engine, store, drive, clock)

        result = engine.sync_profile(pid)

        assert result.status == SyncOutcome.SKIPPED
        assert result.reason == "conflict awaiting resolution"

    def test_resolve_commits_choice(self, engine, store, drive, clock):
        pid, file_id, _ = _make_conflict(engine, store, drive, clock)
        clock.advance(1000)

        result = engine.resolve(pid, {"pad_configuration:0-1": "remote"})

        assert result.success
        assert result.trigger == SyncTrigger.RESOLUTION
        assert store.read_dataset(pid).pad_configurations[0].name == "Horn"
        assert drive.dataset(file_id).pad_configurations[0].name == "Horn"
        assert store.read_last_sync_timestamp(pid) == clock.now
        assert engine.get_status(pid) == SyncStatus.IDLE
        assert engine.pending_conflict(pid) is None

    def test_resolved_profile_syncs_cleanly_afterwards(
        self, engine, store, drive, clock
    ):
        pid, _, _ = _make_conflict(engine, store, drive, clock)
        engine.resolve(pid, {"pad_configuration:0-1": "local"})
        clock.advance(1000)

        result = engine.sync_profile(pid)

        assert result.success
        assert result.data.pad_configurations[0].name == "Siren"

    def test_incomplete_resolution_keeps_conflict(self, engine, store, drive, clock):
        pid, _, _ = _make_conflict(engine, store, drive, clock)

        result = engine.resolve(pid, {"pad_configuration:0-1": "keep"})

        assert result.status == SyncOutcome.ERROR
        assert result.error_kind == "unresolved_conflict"
        assert [c.conflict_id for c in result.conflicts] == ["pad_configuration:0-1"]
        assert engine.get_status(pid) == SyncStatus.CONFLICT

    def test_resolve_without_pending_conflict(self, engine, store):
        profile = _remote_profile(store)
        result = engine.resolve(profile.id, {})
        assert result.error_kind == "no_pending_conflict"

    def test_failed_commit_returns_to_idle(self, engine, store, drive, clock):
        pid, _, _ = _make_conflict(engine, store, drive, clock)
        before = store.read_last_sync_timestamp(pid)
        drive.fail_upload = NetworkError("offline")

        result = engine.resolve(pid, {"pad_configuration:0-1": "local"})

        assert result.error_kind == "network_error"
        assert engine.get_status(pid) == SyncStatus.IDLE
        assert store.read_last_sync_timestamp(pid) == before

    def test_store_failure_during_commit_returns_to_idle(
        self, engine, store, drive, clock
    ):
        pid, _, _ = _make_conflict(engine, store, drive, clock)

        with patch.object(
            store, "write_last_sync_timestamp", side_effect=OSError("disk full")
        ):
            result = engine.resolve(pid, {"pad_configuration:0-1": "local"})

        assert result.status == SyncOutcome.ERROR
        assert result.error_kind == "unexpected_error"
        assert "disk full" in result.error
        assert engine.get_status(pid) == SyncStatus.IDLE
        clock.advance(1000)
        assert engine.sync_profile(pid).success

    def test_value_error_from_upload_is_not_invalid_resolution(
        self, engine, store, drive, clock
    ):
        pid, _, _ = _make_conflict(engine, store, drive, clock)
        drive.fail_upload = ValueError("unreadable upload response")

        result = engine.resolve(pid, {"pad_configuration:0-1": "local"})

        assert result.error_kind == "unexpected_error"
        assert engine.get_status(pid) == SyncStatus.IDLE

    def test_overlapping_resolve_commits_once(self, engine, store, drive, clock):
        pid, _, _ = _make_conflict(engine, store, drive, clock)
        uploads = len(drive.upload_calls)
        calls = []
        inner = []

        def racing(*args, **kwargs):
            calls.append(args)
            resolved = resolve_conflicts(*args, **kwargs)
            if len(calls) == 1:
                inner.append(engine.resolve(pid, {"pad_configuration:0-1": "remote"}))
            return resolved

        with patch("padsync.sync.engine.resolve_conflicts", side_effect=racing):
            outer = engine.resolve(pid, {"pad_configuration:0-1": "local"})

        assert inner[0].success
        assert outer.error_kind == "no_pending_conflict"
        assert len(drive.upload_calls) == uploads + 1
        assert store.read_dataset(pid).pad_configurations[0].name == "Horn"
        assert engine.get_status(pid) == SyncStatus.IDLE

    def test_dismissed_conflict_cannot_be_resolved(self, engine, store, drive, clock):
        pid, _, _ = _make_conflict(engine, store, drive, clock)
        engine.dismiss_conflict(pid)

        result = engine.resolve(pid, {"pad_configuration:0-1": "local"})

        assert result.error_kind == "no_pending_conflict"
        assert store.read_dataset(pid).pad_configurations[0].name == "Siren"

    def test_dismiss(self, engine, store, drive, clock):
        pid, _, _ = _make_conflict(engine, store, drive, clock)

        assert engine.dismiss_conflict(pid) is True
        assert engine.dismiss_conflict(pid) is False
        assert engine.get_status(pid) == SyncStatus.IDLE
        assert engine.pending_conflict(pid) is None

    def test_apply_resolution_rejects_duplicate_keys(
        self, engine, store, drive, clock
    ):
        pid, file_id = _synced(engine, store, clock)
        dataset = store.read_dataset(pid)
        pad = dataset.pad_configurations[0]
        broken = dataset.model_copy(update={"pad_configurations": [pad, pad]})

        result = engine.apply_resolution(broken, file_id, pid)

        assert result.error_kind == "invalid_resolution"
        assert engine.get_status(pid) == SyncStatus.IDLE


# ---------------------------------------------------------------------------
# Two devices sharing one remote file
# ---------------------------------------------------------------------------


def _pad_view(store, profile_id):
    """Pads by key with their name, key binding and audio content."""
    view = {}
    for pad in store.read_dataset(profile_id).pad_configurations:
        audio = [store.get_audio_file(i) for i in pad.audio_file_ids]
        view[pad.logical_key()] = (
            pad.name,
            pad.key_binding,
            [(a.name, a.data) for a in audio],
        )
    return view


class TestTwoDevices:
    def test_devices_converge_with_colliding_audio_ids(self, tmp_path, drive, clock):
        store_a = LocalStore(tmp_path / "a", clock=clock)
        store_b = LocalStore(tmp_path / "b", clock=clock)
        engine_a = SyncEngine(drive, store_a, clock=clock)
        engine_b = SyncEngine(drive, store_b, clock=clock)
        clap = store_b.add_audio_file("clap.wav", "audio/wav", b"CLAP")

        # Device A publishes a pad whose audio id is taken on device B.
        pid_a = store_a.create_profile("Main", sync_type="remote").id
        clock.advance(100)
        kick = store_a.add_audio_file("kick.wav", "audio/wav", b"KICK")
        assert kick == clap
        store_a.save_pad(pid_a, 0, 0, name="Kick", audio_file_ids=[kick])
        clock.advance(100)
        assert engine_a.sync_profile(pid_a).success

        # Device B adopts it; the audio gets a fresh local id.
        clock.advance(100)
        pid_b = store_b.create_profile("Main", sync_type="remote").id
        clock.advance(100)
        assert engine_b.sync_profile(pid_b).success
        [adopted] = store_b.read_dataset(pid_b).pad_configurations
        assert adopted.audio_file_ids != [clap]
        assert store_b.get_audio_file(adopted.audio_file_ids[0]).name == "kick.wav"

        # B edits and syncs, then A edits and syncs.
        clock.advance(100)
        store_b.save_pad(pid_b, 0, 0, key_binding="q")
        clock.advance(100)
        store_b.save_pad(pid_b, 1, 0, name="Horn", audio_file_ids=[clap])
        clock.advance(100)
        assert engine_b.sync_profile(pid_b).success

        clock.advance(100)
        snare = store_a.add_audio_file("snare.wav", "audio/wav", b"SNARE")
        store_a.save_pad(pid_a, 0, 1, name="Snare", audio_file_ids=[snare])
        clock.advance(100)
        assert engine_a.sync_profile(pid_a).success

        clock.advance(100)
        assert engine_b.sync_profile(pid_b).success

        view_a = _pad_view(store_a, pid_a)
        assert view_a == _pad_view(store_b, pid_b)
        assert {key: name for key, (name, _, _) in view_a.items()} == {
            (0, 0): "Kick",
            (0, 1): "Snare",
            (1, 0): "Horn",
        }
        assert view_a[(0, 0)][1] == "q"
        assert [name for name, _ in view_a[(1, 0)][2]] == ["clap.wav"]
        assert len(drive.files) == 1


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


class TestSyncAll:
    def test_only_remote_profiles(self, engine, store):
        store.create_profile("Local")
        remote = _remote_profile(store, "Shared")

        results = engine.sync_all()

        assert [r.profile_id for r in results] == [remote.id]
        assert results[0].trigger == SyncTrigger.PERIODIC
