"""Remote store access shared by the sync engine and the MCP server."""

from .async_utils import run_sync
from .auth import TokenAuth, TokenProvider
from .client import DriveClient, RemoteFile

__all__ = ["DriveClient", "RemoteFile", "TokenAuth", "TokenProvider", "run_sync"]
