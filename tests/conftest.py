"""Shared pytest fixtures for padsync tests."""

from __future__ import annotations

import itertools
from typing import Callable

import pytest
from dotenv import load_dotenv

from padsync.config import Config
from padsync.core.client import RemoteFile
from padsync.sync.engine import SyncEngine
from padsync.sync.models import SyncDataset
from padsync.sync.state import LocalStore

load_dotenv()


class ManualClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class FakeDriveClient:
    """In-memory stand-in for ``DriveClient``.

    Files are kept as JSON text so every download parses a fresh dataset,
    like the real client does.
    """

    def __init__(self) -> None:
        self.files: dict[str, tuple[str, str]] = {}
        self.upload_calls: list[tuple[str, str | None]] = []
        self.fail_upload: Exception | None = None
        self.fail_download: Exception | None = None
        self._ids = itertools.count(1)

    # Test helpers

    def seed(self, name: str, dataset: SyncDataset) -> str:
        file_id = f"file-{next(self._ids)}"
        self.files[file_id] = (name, dataset.model_dump_json())
        return file_id

    def dataset(self, file_id: str) -> SyncDataset:
        return SyncDataset.model_validate_json(self.files[file_id][1])

    def edit(
        self, file_id: str, change: Callable[[SyncDataset], SyncDataset]
    ) -> None:
        name, _ = self.files[file_id]
        self.files[file_id] = (name, change(self.dataset(file_id)).model_dump_json())

    # RemoteStore contract

    def find_by_id(self, file_id: str) -> RemoteFile | None:
        if file_id not in self.files:
            return None
        return RemoteFile(id=file_id, name=self.files[file_id][0])

    def find_by_name(self, name: str) -> RemoteFile | None:
        for file_id, (file_name, _) in self.files.items():
            if file_name == name:
                return RemoteFile(id=file_id, name=file_name)
        return None

    def download(self, file_id: str) -> SyncDataset | None:
        if self.fail_download is not None:
            raise self.fail_download
        if file_id not in self.files:
            return None
        return self.dataset(file_id)

    def upload(
        self,
        name: str,
        dataset: SyncDataset,
        existing_file_id: str | None = None,
        profile_id: int | None = None,
    ) -> RemoteFile:
        self.upload_calls.append((name, existing_file_id))
        if self.fail_upload is not None:
            raise self.fail_upload
        file_id = existing_file_id or f"file-{next(self._ids)}"
        self.files[file_id] = (name, dataset.model_dump_json())
        return RemoteFile(id=file_id, name=name)

    def list_app_files(self) -> list[RemoteFile]:
        return [RemoteFile(id=i, name=n) for i, (n, _) in self.files.items()]

    def validate_connection(self) -> str:
        return "tester@example.com"


@pytest.fixture
def mock_config():
    """A valid Config pointing at a fake Drive endpoint."""
    return Config(
        access_token="test-token",
        api_url="https://drive.example.com/drive/v3",
        upload_url="https://drive.example.com/upload/drive/v3",
        request_timeout=5,
    )


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store(tmp_path, clock):
    """Empty local store in a temp directory."""
    return LocalStore(tmp_path / "data", clock=clock)


@pytest.fixture
def drive():
    return FakeDriveClient()


@pytest.fixture
def engine(drive, store, clock):
    """SyncEngine wired to the fake Drive client and the temp store."""
    return SyncEngine(drive, store, clock=clock)
