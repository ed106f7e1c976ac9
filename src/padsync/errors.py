"""Error taxonomy for sync attempts.

Every failure that can end a sync attempt derives from ``SyncError`` and
carries a short ``kind`` string.  The engine catches these per attempt and
surfaces them as ``SyncResult(status="error", error_kind=kind)``.

``RemoteNotFoundError`` is raised by the remote client for 404 responses
and is translated to "no remote file yet" by the callers that expect it.
Needing a human decision is not an error at all: it is the ``conflict``
outcome of a sync attempt.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for failures that terminate a sync attempt."""

    kind = "sync_error"
    retryable = False


class NotAuthenticatedError(SyncError):
    """No access token is available for the remote store."""

    kind = "not_authenticated"


class AuthExpiredError(SyncError):
    """The access token was rejected and one refresh attempt did not help."""

    kind = "auth_expired"
    retryable = True


class NetworkError(SyncError):
    """Transport failure or unexpected HTTP status from the remote store.

    Retried by the next periodic trigger.
    """

    kind = "network_error"
    retryable = True

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteNotFoundError(SyncError):
    """The requested remote file does not exist (HTTP 404)."""

    kind = "remote_not_found"


class LocalStoreError(SyncError):
    """The local store could not be read."""

    kind = "local_store_error"


class LocalApplyError(SyncError):
    """Applying a merged dataset to the local store failed.

    Fatal for the current attempt; ``last_sync_timestamp`` is not advanced.
    """

    kind = "local_apply_failure"


class UnresolvedConflictError(SyncError):
    """A resolution was submitted without a choice for every conflict."""

    kind = "unresolved_conflict"

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class RemoteFormatError(SyncError):
    """The remote file is not a dataset this version can read."""

    kind = "remote_format_error"
