"""User-facing commands that mutate shared state and wake the refresh loop.

Every command follows the same shape: validate, take the lock that guards
the piece being changed, swap in the new value, persist, release, and only
then poke :class:`~usagewatch.orchestrator.signals.RestartSignal`.  None of
them waits for the loop except :meth:`CommandHandler.refresh_now`.
"""

from __future__ import annotations

import logging

from usagewatch.client.validation import validate_org_id, validate_session_token
from usagewatch.core.exceptions import ConfigError, OrchestratorError
from usagewatch.core.models import NotificationSettings, ScheduleConfig
from usagewatch.orchestrator.runner import CycleResult, RefreshLoop
from usagewatch.orchestrator.state import AppState
from usagewatch.storage.credentials import CredentialStore
from usagewatch.storage.state_store import JsonStateStore

__all__ = ["CommandHandler"]

logger = logging.getLogger(__name__)


class CommandHandler:
    """Entry points for credential, schedule and notification changes.

    Args:
        state: Shared application state.
        credential_store: Where credentials are persisted.
        state_store: Where notification settings are persisted; ``None``
            keeps them in memory only.
        loop: The running refresh loop, needed by :meth:`refresh_now`.
    """

    def __init__(
        self,
        state: AppState,
        credential_store: CredentialStore,
        state_store: JsonStateStore | None = None,
        loop: RefreshLoop | None = None,
    ) -> None:
        self._state = state
        self._credentials = credential_store
        self._state_store = state_store
        self._loop = loop

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def save_credentials(self, organization_id: str, session_token: str) -> None:
        """Validate, store and activate a new pair of credentials.

        Raises:
            CredentialValidationError: If either value is malformed.
            StorageError: If the credential file cannot be written.
        """
        organization_id = validate_org_id(organization_id.strip())
        session_token = validate_session_token(session_token.strip())
        self._credentials.save(organization_id, session_token)

        async with self._state.config_lock:
            self._state.config = self._state.config.with_credentials(organization_id, session_token)
        logger.info("Credentials updated.")
        self._state.restart.notify()

    async def clear_credentials(self) -> None:
        """Forget the stored credentials; the loop goes idle."""
        self._credentials.delete()
        async with self._state.config_lock:
            self._state.config = self._state.config.with_credentials(None, None)
        logger.info("Credentials cleared.")
        self._state.restart.notify()

    async def get_is_configured(self) -> bool:
        async with self._state.config_lock:
            return self._state.config.has_credentials

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------

    async def set_auto_refresh(
        self,
        enabled: bool,
        interval_minutes: int,
        hourly_refresh_enabled: bool | None = None,
    ) -> ScheduleConfig:
        """Change the refresh schedule and wake the loop so it re-plans.

        Args:
            enabled: Turn automatic refresh on or off.
            interval_minutes: Regular interval, at least 1.
            hourly_refresh_enabled: New hourly-alignment flag, or ``None``
                to keep the current one.

        Returns:
            The schedule now in effect.

        Raises:
            ConfigError: If *interval_minutes* is below 1.
        """
        if interval_minutes < 1:
            raise ConfigError(f"Refresh interval must be at least 1 minute, got {interval_minutes}.")

        async with self._state.config_lock:
            current = self._state.config.schedule
            schedule = ScheduleConfig(
                enabled=enabled,
                interval_minutes=interval_minutes,
                hourly_align_enabled=(
                    current.hourly_align_enabled
                    if hourly_refresh_enabled is None
                    else hourly_refresh_enabled
                ),
            )
            self._state.config = self._state.config.with_schedule(schedule)

        logger.info(
            "Auto refresh set: enabled=%s interval=%d min hourly=%s.",
            schedule.enabled,
            schedule.interval_minutes,
            schedule.hourly_align_enabled,
        )
        self._state.restart.notify()
        return schedule

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def set_notification_settings(self, settings: NotificationSettings) -> None:
        """Replace the notification rules.  Applied from the next cycle on.

        Raises:
            StorageError: If the settings file cannot be written.
        """
        async with self._state.notification_lock:
            self._state.notification_settings = settings
            if self._state_store is not None:
                self._state_store.save_settings(settings)
        logger.info("Notification settings updated (enabled=%s).", settings.enabled)

    # ------------------------------------------------------------------
    # Manual refresh
    # ------------------------------------------------------------------

    async def refresh_now(self) -> CycleResult:
        """Run one cycle through the loop task and return its result.

        Raises:
            ConfigError: If no credentials are configured.
            OrchestratorError: If the refresh loop is not running.
        """
        if not await self.get_is_configured():
            raise ConfigError("Missing configuration: credentials")
        if self._loop is None:
            raise OrchestratorError("Refresh loop is not running.")
        return await self._loop.request_refresh()
