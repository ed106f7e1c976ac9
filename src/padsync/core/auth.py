"""Access-token providers for the Drive client.

The OAuth flow itself lives outside padsync.  The client only needs a
current bearer token and a way to ask for a fresh one after a 401.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from ..config import Config

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    """Source of bearer tokens for the remote store."""

    def get_token(self) -> str | None:
        """Return the current token, or ``None`` when not signed in."""
        ...  # pragma: no cover

    def refresh(self) -> str | None:
        """Try to obtain a new token; ``None`` if that is not possible."""
        ...  # pragma: no cover


class TokenAuth:
    """Token from config, optionally backed by a file.

    When *token_file* is set it is the source of truth: an external
    process keeps it current and ``refresh()`` re-reads it.

    Args:
        access_token: Token to use until the file provides one.
        token_file: Path of a file holding the current token.
    """

    def __init__(
        self, access_token: str | None = None, token_file: str | None = None
    ) -> None:
        self._token = access_token
        self._token_file = Path(token_file).expanduser() if token_file else None
        if self._token_file is not None:
            self._token = self._read_file() or self._token

    def get_token(self) -> str | None:
        return self._token

    def refresh(self) -> str | None:
        if self._token_file is None:
            logger.info("Access token rejected and no token file to refresh from")
            return None
        new_token = self._read_file()
        if not new_token or new_token == self._token:
            logger.warning("Token file %s holds no new token", self._token_file)
            return None
        self._token = new_token
        logger.info("Access token refreshed from %s", self._token_file)
        return new_token

    def _read_file(self) -> str | None:
        try:
            text = self._token_file.read_text(encoding="utf-8").strip()
        except OSError as exc:
            logger.warning("Cannot read token file %s: %s", self._token_file, exc)
            return None
        return text or None


def token_provider_from_config(config: Config) -> TokenAuth:
    return TokenAuth(config.access_token, config.token_file)
