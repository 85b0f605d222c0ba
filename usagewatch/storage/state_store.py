"""JSON persistence for notification settings and notification state.

Both live in one small JSON file::

    {
        "notification_settings": {...},
        "notification_state": {...}
    }

A missing or unreadable file is not an error: defaults are returned and a
warning is logged, so a corrupted file can never stop the refresh loop.
Writes go to a temporary sibling file which then replaces the target, so a
crash mid-write leaves the previous content intact.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from usagewatch.core.exceptions import StorageError
from usagewatch.core.models import NotificationSettings, NotificationState

__all__ = ["JsonStateStore"]

logger = logging.getLogger(__name__)

_SETTINGS_KEY = "notification_settings"
_STATE_KEY = "notification_state"


class JsonStateStore:
    """Load and save :class:`NotificationSettings` and :class:`NotificationState`.

    Args:
        path: Location of the JSON file.  Parent directories are created on
            the first save.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load_settings(self) -> NotificationSettings:
        raw = self._read().get(_SETTINGS_KEY)
        if raw is None:
            return NotificationSettings()
        try:
            return NotificationSettings.model_validate(raw)
        except ValidationError:
            logger.warning(
                "Invalid notification settings in %s; using defaults.",
                self._path,
                exc_info=True,
            )
            return NotificationSettings()

    def load_state(self) -> NotificationState:
        raw = self._read().get(_STATE_KEY)
        if raw is None:
            return NotificationState()
        try:
            return NotificationState.model_validate(raw)
        except ValidationError:
            logger.warning(
                "Invalid notification state in %s; starting fresh.",
                self._path,
                exc_info=True,
            )
            return NotificationState()

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save_settings(self, settings: NotificationSettings) -> None:
        """Persist *settings*, keeping the stored state.

        Raises:
            StorageError: If the file cannot be written.
        """
        self._update(_SETTINGS_KEY, settings.model_dump(mode="json"))

    def save_state(self, state: NotificationState) -> None:
        """Persist *state*, keeping the stored settings.

        Raises:
            StorageError: If the file cannot be written.
        """
        self._update(_STATE_KEY, state.model_dump(mode="json"))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _read(self) -> dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError:
            logger.warning("Cannot read state file %s.", self._path, exc_info=True)
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("State file %s is not valid JSON; ignoring it.", self._path)
            return {}
        if not isinstance(data, dict):
            logger.warning("State file %s does not hold a JSON object; ignoring it.", self._path)
            return {}
        return data

    def _update(self, key: str, value: dict[str, Any]) -> None:
        data = self._read()
        data[key] = value
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp, self._path)
        except OSError as exc:
            raise StorageError(f"Cannot write state file {self._path}: {exc}") from exc
