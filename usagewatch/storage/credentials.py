"""Credential store for the organisation ID and session token.

The refresh loop only needs ``load``/``save``/``delete`` of two strings, so
the store is a narrow :class:`CredentialStore` protocol.
:class:`FileCredentialStore` keeps both values in a JSON file readable only by
the current user (mode ``0600``).
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ValidationError

from usagewatch.core.exceptions import StorageError

__all__ = ["Credentials", "CredentialStore", "FileCredentialStore"]

logger = logging.getLogger(__name__)

_FILE_MODE = 0o600


class Credentials(BaseModel):
    organization_id: str
    session_token: str


class CredentialStore(Protocol):
    def load(self) -> Credentials | None: ...

    def save(self, organization_id: str, session_token: str) -> None: ...

    def delete(self) -> None: ...


class FileCredentialStore:
    """JSON-file implementation of :class:`CredentialStore`.

    Args:
        path: Location of the credential file.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    def load(self) -> Credentials | None:
        """Return the stored credentials, or ``None`` if absent or unreadable."""
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            logger.warning("Cannot read credential file %s.", self._path, exc_info=True)
            return None
        try:
            return Credentials.model_validate_json(text)
        except ValidationError:
            logger.warning("Credential file %s is corrupt; ignoring it.", self._path)
            return None

    def save(self, organization_id: str, session_token: str) -> None:
        """Write both values, replacing any previous credentials.

        Raises:
            StorageError: If the file cannot be written.
        """
        payload = Credentials(organization_id=organization_id, session_token=session_token)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload.model_dump(), fh)
            os.chmod(self._path, _FILE_MODE)
        except OSError as exc:
            raise StorageError(f"Cannot write credential file {self._path}: {exc}") from exc
        logger.info("Credentials saved to %s.", self._path)

    def delete(self) -> None:
        """Remove the credential file.  A missing file is not an error.

        Raises:
            StorageError: If the file exists but cannot be removed.
        """
        try:
            self._path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot delete credential file {self._path}: {exc}") from exc
        logger.info("Credentials removed from %s.", self._path)
