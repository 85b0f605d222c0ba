"""usagewatch application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

The field name is the **lowercase** version of the env-var name
(e.g. ``REFRESH_INTERVAL_MINUTES`` → ``refresh_interval_minutes``).

Typical usage::

    from usagewatch.core.settings import Settings

    settings = Settings()                       # loads from env + .env
    schedule = settings.schedule_config()       # build ScheduleConfig
    print(settings.telegram_configured)         # True / False
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from usagewatch.core.models import ScheduleConfig

__all__ = ["Settings"]

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).

    ``organization_id`` and ``session_token`` are optional here: when they are
    blank the credential file written by ``usagewatch login`` is used instead.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------
    organization_id: str = Field(
        default="",
        description="Organisation UUID whose usage is polled.",
    )
    session_token: str = Field(
        default="",
        description="Value of the sessionKey cookie.",
    )

    # ------------------------------------------------------------------
    # Refresh schedule
    # ------------------------------------------------------------------
    refresh_enabled: bool = Field(
        default=True,
        description="Poll automatically in the background.",
    )
    refresh_interval_minutes: int = Field(
        default=5,
        ge=1,
        description="Regular polling interval in minutes.",
    )
    hourly_refresh_enabled: bool = Field(
        default=False,
        description="Also refresh a few seconds after each full UTC hour.",
    )
    fetch_timeout_s: float = Field(
        default=30.0,
        gt=0.0,
        description="Upper bound for one usage fetch, in seconds.",
    )
    usage_api_base_url: str = Field(
        default="https://claude.ai",
        description="Base URL of the usage endpoint.",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    database_path: str = Field(
        default="data/usagewatch.db",
        description="Path to the SQLite history database.",
    )
    state_path: str = Field(
        default="data/state.json",
        description="Path to the notification settings/state JSON file.",
    )
    credentials_path: str = Field(
        default="data/credentials.json",
        description="Path to the credential file written by 'login'.",
    )
    stats_path: str = Field(
        default="data/stats.json",
        description="Path to the lifetime statistics JSON file.",
    )
    history_retention_days: int = Field(
        default=30,
        ge=1,
        description="Days of history kept by 'cleanup'.",
    )

    # ------------------------------------------------------------------
    # Telegram
    # ------------------------------------------------------------------
    telegram_bot_token: str = Field(
        default="",
        description="Bot token from @BotFather (required for live alerts).",
    )
    telegram_chat_id: str = Field(
        default="",
        description="Numeric chat ID for alert delivery.",
    )

    # ------------------------------------------------------------------
    # Runtime flags
    # ------------------------------------------------------------------
    dry_run: bool = Field(
        default=False,
        description="Log alerts without sending Telegram messages.",
    )
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    @field_validator("usage_api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    # ------------------------------------------------------------------
    # Model validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _validate_credentials_pair(self) -> Settings:
        """Credentials from the environment must be given together."""
        if bool(self.organization_id) != bool(self.session_token):
            raise ValueError(
                "organization_id and session_token must both be set or both be empty"
            )
        return self

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    def schedule_config(self) -> ScheduleConfig:
        """Build the initial :class:`ScheduleConfig` from the refresh fields."""
        return ScheduleConfig(
            enabled=self.refresh_enabled,
            interval_minutes=self.refresh_interval_minutes,
            hourly_align_enabled=self.hourly_refresh_enabled,
        )

    @property
    def database_path_resolved(self) -> Path:
        """Return the database path as a resolved :class:`~pathlib.Path`."""
        return Path(self.database_path).resolve()

    @property
    def state_path_resolved(self) -> Path:
        return Path(self.state_path).resolve()

    @property
    def credentials_path_resolved(self) -> Path:
        return Path(self.credentials_path).resolve()

    @property
    def stats_path_resolved(self) -> Path:
        return Path(self.stats_path).resolve()

    @property
    def telegram_configured(self) -> bool:
        """``True`` if both Telegram credentials are set."""
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def env_credentials_configured(self) -> bool:
        """``True`` if credentials were supplied through the environment."""
        return bool(self.organization_id and self.session_token)
