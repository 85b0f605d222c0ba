"""Shared application state for the refresh loop and the command handlers.

One :class:`AppState` is built at startup and handed to both the
:class:`~usagewatch.orchestrator.runner.RefreshLoop` and the
:class:`~usagewatch.orchestrator.commands.CommandHandler`.  Each mutable
piece has its own :class:`asyncio.Lock`, held only for the read-modify-write
itself and never across network I/O:

* ``config_lock`` guards :attr:`AppState.config`.
* ``notification_lock`` guards the notification settings and state.

Backoff is deliberately absent: only the loop task touches it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace

from usagewatch.core.models import (
    NotificationSettings,
    NotificationState,
    ScheduleConfig,
)
from usagewatch.core.settings import Settings
from usagewatch.orchestrator.signals import RestartSignal
from usagewatch.storage.credentials import Credentials
from usagewatch.storage.state_store import JsonStateStore

__all__ = ["RefreshConfig", "AppState"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshConfig:
    """Credentials plus schedule.  Replaced as a whole on every change."""

    organization_id: str | None = None
    session_token: str | None = None
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)

    @property
    def has_credentials(self) -> bool:
        return bool(self.organization_id and self.session_token)

    @property
    def should_refresh(self) -> bool:
        """``True`` when automatic polling is on and credentials exist."""
        return self.schedule.enabled and self.has_credentials

    def with_credentials(self, organization_id: str | None, session_token: str | None) -> RefreshConfig:
        return replace(self, organization_id=organization_id, session_token=session_token)

    def with_schedule(self, schedule: ScheduleConfig) -> RefreshConfig:
        return replace(self, schedule=schedule)


@dataclass
class AppState:
    """Everything the loop and the commands share."""

    config: RefreshConfig = field(default_factory=RefreshConfig)
    notification_settings: NotificationSettings = field(default_factory=NotificationSettings)
    notification_state: NotificationState = field(default_factory=NotificationState)
    restart: RestartSignal = field(default_factory=RestartSignal)
    config_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    notification_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        credentials: Credentials | None = None,
        state_store: JsonStateStore | None = None,
    ) -> AppState:
        """Build the initial state.

        Credentials from the environment take precedence over *credentials*
        (usually loaded from the credential file).  Notification settings
        and state come from *state_store*, or defaults.
        """
        if settings.env_credentials_configured:
            org_id: str | None = settings.organization_id
            token: str | None = settings.session_token
        elif credentials is not None:
            org_id, token = credentials.organization_id, credentials.session_token
        else:
            org_id, token = None, None

        state = cls(
            config=RefreshConfig(
                organization_id=org_id,
                session_token=token,
                schedule=settings.schedule_config(),
            ),
        )
        if state_store is not None:
            state.notification_settings = state_store.load_settings()
            state.notification_state = state_store.load_state()

        logger.debug(
            "App state initialised (credentials=%s, refresh_enabled=%s, interval=%d min).",
            state.config.has_credentials,
            state.config.schedule.enabled,
            state.config.schedule.interval_minutes,
        )
        return state
