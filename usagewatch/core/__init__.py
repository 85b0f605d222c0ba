"""Core domain models, settings, logging configuration, and shared utilities."""

from usagewatch.core.exceptions import (
    ConfigError,
    CredentialValidationError,
    FetchError,
    InvalidCredentialError,
    NotificationError,
    OrchestratorError,
    RateLimitedError,
    StorageError,
    TelegramError,
    TelegramRateLimitError,
    TransientFetchError,
    UsageWatchError,
)
from usagewatch.core.logging_config import JsonFormatter, configure_logging
from usagewatch.core.models import (
    Marker,
    MarkerKind,
    NotificationRule,
    NotificationSettings,
    NotificationState,
    PollOutcome,
    Quantity,
    ScheduleConfig,
    UsageAlert,
    UsageError,
    UsagePeriod,
    UsageSnapshot,
    UsageUpdated,
)
from usagewatch.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Domain models
    "Quantity",
    "PollOutcome",
    "Marker",
    "MarkerKind",
    "ScheduleConfig",
    "UsagePeriod",
    "UsageSnapshot",
    "NotificationRule",
    "NotificationSettings",
    "NotificationState",
    "UsageAlert",
    "UsageUpdated",
    "UsageError",
    # Settings
    "Settings",
    # Exceptions: base
    "UsageWatchError",
    # Exceptions: config
    "ConfigError",
    "CredentialValidationError",
    # Exceptions: storage
    "StorageError",
    # Exceptions: fetch
    "FetchError",
    "InvalidCredentialError",
    "RateLimitedError",
    "TransientFetchError",
    # Exceptions: notification
    "NotificationError",
    "TelegramError",
    "TelegramRateLimitError",
    # Exceptions: orchestrator
    "OrchestratorError",
]
