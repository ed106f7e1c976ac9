import json
import logging
import threading
import uuid
from typing import Any

import requests
from pydantic import BaseModel, ValidationError

from ..config import Config
from ..errors import (
    AuthExpiredError,
    NetworkError,
    NotAuthenticatedError,
    RemoteFormatError,
    RemoteNotFoundError,
)
from ..sync.mapper import REMOTE_MIME_TYPE
from ..sync.models import SYNC_FORMAT_VERSION, SyncDataset
from .auth import TokenProvider

logger = logging.getLogger(__name__)

APP_IDENTIFIER = "padsync"
FILE_FIELDS = "id,name,modifiedTime,trashed,appProperties"


class RemoteFile(BaseModel):
    """Metadata of a file in the remote store."""

    id: str
    name: str
    modified_time: str | None = None
    app_properties: dict[str, str] = {}

    model_config = {"frozen": True}

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RemoteFile":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            modified_time=data.get("modifiedTime"),
            app_properties=data.get("appProperties") or {},
        )


def _quote(value: str) -> str:
    """Quote a string literal for a Drive ``q`` query."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


class DriveClient:
    """Google Drive v3 client for profile dataset files.

    Args:
        config: Runtime configuration (endpoints and timeouts).
        tokens: Provider of bearer tokens.
    """

    def __init__(self, config: Config, tokens: TokenProvider):
        self.config = config
        self.tokens = tokens
        self._thread_local = threading.local()
        self.api_url = config.api_url.rstrip("/")
        self.upload_url = config.upload_url.rstrip("/")

    @property
    def session(self) -> requests.Session:
        """Session of the current thread."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = requests.Session()
        return self._thread_local.session

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Send an authenticated request.

        A 401 triggers one token refresh and one retry.

        Raises:
            NotAuthenticatedError: No token is available.
            AuthExpiredError: The token was rejected and refresh did not help.
            RemoteNotFoundError: HTTP 404.
            NetworkError: Transport failure or any other HTTP error.
        """
        token = self.tokens.get_token()
        if not token:
            raise NotAuthenticatedError("Not signed in to Google Drive")

        headers = dict(kwargs.pop("headers", None) or {})
        for attempt in range(2):
            headers["Authorization"] = f"Bearer {token}"
            try:
                response = self._get_session().request(
                    method,
                    url,
                    headers=headers,
                    timeout=(10, self.config.request_timeout),
                    **kwargs,
                )
            except requests.RequestException as exc:
                raise NetworkError(f"{method} {url} failed: {exc}") from exc

            if response.status_code == 401:
                if attempt == 0:
                    logger.info("Access token rejected, refreshing")
                    token = self.tokens.refresh()
                    if token:
                        continue
                raise AuthExpiredError("Google Drive access token expired")
            break

        if response.status_code == 404:
            raise RemoteNotFoundError(f"{method} {url}: not found")
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise NetworkError(
                f"{method} {url} failed: HTTP {response.status_code}",
                status_code=response.status_code,
            ) from exc
        return response

    def _app_query(self, extra: str | None = None) -> str:
        clauses = [
            "trashed = false",
            "appProperties has { key='appIdentifier' and value="
            f"{_quote(APP_IDENTIFIER)} }}",
        ]
        if extra:
            clauses.append(extra)
        return " and ".join(clauses)

    def _list(self, query: str, order_by: str = "modifiedTime desc") -> list[RemoteFile]:
        files: list[RemoteFile] = []
        params: dict[str, Any] = {
            "q": query,
            "spaces": "drive",
            "orderBy": order_by,
            "fields": f"nextPageToken,files({FILE_FIELDS})",
            "pageSize": 100,
        }
        while True:
            data = self._request("GET", f"{self.api_url}/files", params=params).json()
            files.extend(RemoteFile.from_api(f) for f in data.get("files", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return files
            params["pageToken"] = page_token

    def find_by_id(self, file_id: str) -> RemoteFile | None:
        """Look up a file by id; trashed or missing files give ``None``."""
        try:
            data = self._request(
                "GET",
                f"{self.api_url}/files/{file_id}",
                params={"fields": FILE_FIELDS},
            ).json()
        except RemoteNotFoundError:
            return None
        if data.get("trashed"):
            return None
        return RemoteFile.from_api(data)

    def find_by_name(self, name: str) -> RemoteFile | None:
        """Return the most recently modified app file called *name*."""
        files = self._list(self._app_query(f"name = {_quote(name)}"))
        return files[0] if files else None

    def list_app_files(self) -> list[RemoteFile]:
        """Return every dataset file created by padsync."""
        return self._list(self._app_query(), order_by="name")

    def download(self, file_id: str) -> SyncDataset | None:
        """Download and parse a dataset; ``None`` if the file is gone.

        Raises:
            RemoteFormatError: The content is not a readable dataset.
        """
        try:
            response = self._request(
                "GET",
                f"{self.api_url}/files/{file_id}",
                params={"alt": "media"},
            )
        except RemoteNotFoundError:
            return None

        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteFormatError(f"Remote file {file_id} is not JSON") from exc
        if not isinstance(payload, dict):
            raise RemoteFormatError(f"Remote file {file_id} is not a dataset")

        version = payload.get("format_version", SYNC_FORMAT_VERSION)
        if not isinstance(version, int) or version > SYNC_FORMAT_VERSION:
            raise RemoteFormatError(
                f"Remote file {file_id} has unsupported format version {version}"
            )
        try:
            return SyncDataset.model_validate(payload)
        except ValidationError as exc:
            raise RemoteFormatError(
                f"Remote file {file_id} is not a valid dataset: {exc}"
            ) from exc

    def upload(
        self,
        name: str,
        dataset: SyncDataset,
        existing_file_id: str | None = None,
        profile_id: int | None = None,
    ) -> RemoteFile:
        """Create a file, or update *existing_file_id* in place.

        Uses a ``multipart/related`` upload carrying the metadata and the
        dataset JSON in one request.
        """
        metadata: dict[str, Any] = {
            "name": name,
            "mimeType": REMOTE_MIME_TYPE,
            "appProperties": {"appIdentifier": APP_IDENTIFIER},
        }
        if profile_id is not None:
            metadata["appProperties"]["profileId"] = str(profile_id)

        boundary = f"padsync-{uuid.uuid4().hex}"
        body = "\r\n".join(
            [
                f"--{boundary}",
                "Content-Type: application/json; charset=UTF-8",
                "",
                json.dumps(metadata),
                f"--{boundary}",
                f"Content-Type: {REMOTE_MIME_TYPE}",
                "",
                dataset.model_dump_json(),
                f"--{boundary}--",
                "",
            ]
        ).encode("utf-8")

        params = {"uploadType": "multipart", "fields": FILE_FIELDS}
        headers = {"Content-Type": f"multipart/related; boundary={boundary}"}
        if existing_file_id:
            method, url = "PATCH", f"{self.upload_url}/files/{existing_file_id}"
        else:
            method, url = "POST", f"{self.upload_url}/files"

        data = self._request(
            method, url, params=params, data=body, headers=headers
        ).json()
        remote = RemoteFile.from_api(data)
        logger.info(
            "%s remote file %s (%s)",
            "Updated" if existing_file_id else "Created",
            remote.id,
            name,
        )
        return remote

    def validate_connection(self) -> str:
        """Check credentials; return the account's display name or email."""
        data = self._request(
            "GET",
            f"{self.api_url}/about",
            params={"fields": "user(displayName,emailAddress)"},
        ).json()
        user = data.get("user") or {}
        return user.get("emailAddress") or user.get("displayName") or ""
