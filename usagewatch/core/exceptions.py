"""usagewatch exception taxonomy.

Every custom exception inherits from :class:`UsageWatchError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    UsageWatchError
    ├── ConfigError
    │   └── CredentialValidationError
    ├── StorageError
    ├── FetchError
    │   ├── InvalidCredentialError
    │   ├── RateLimitedError
    │   └── TransientFetchError
    ├── NotificationError
    │   └── TelegramError
    │       └── TelegramRateLimitError
    └── OrchestratorError

The string form of every :class:`FetchError` is written for end users and is
forwarded verbatim in ``UsageError`` events.

Usage:

    from usagewatch.core.exceptions import TransientFetchError

    raise TransientFetchError("HTTP 503") from exc
"""

from __future__ import annotations

import logging

__all__ = [
    "UsageWatchError",
    # Config
    "ConfigError",
    "CredentialValidationError",
    # Storage
    "StorageError",
    # Fetch
    "FetchError",
    "InvalidCredentialError",
    "RateLimitedError",
    "TransientFetchError",
    # Notification
    "NotificationError",
    "TelegramError",
    "TelegramRateLimitError",
    # Orchestrator
    "OrchestratorError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class UsageWatchError(Exception):
    """Root exception for all usagewatch errors."""


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(UsageWatchError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - Refresh interval set to zero minutes.
        - Live Telegram delivery requested without a chat ID.
    """


class CredentialValidationError(ConfigError):
    """Raised when an organisation ID or session token is malformed.

    Validation happens before the values are stored or put into an HTTP
    header, so a bad token can never be used for header injection.

    Args:
        field: Name of the rejected field (``"organization_id"`` or
            ``"session_token"``).
        message: Human-readable reason.
    """

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"Invalid {field}: {message}")


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StorageError(UsageWatchError):
    """Raised when a database, state file, or credential file operation fails."""


# ---------------------------------------------------------------------------
# Fetch layer
# ---------------------------------------------------------------------------


class FetchError(UsageWatchError):
    """Base class for failures while fetching usage data."""


class InvalidCredentialError(FetchError):
    """The upstream endpoint rejected the session token (HTTP 401).

    Terminal for the current cycle; does not affect backoff.
    """

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message or "Session expired. Please update your session token in Settings."
        )


class RateLimitedError(FetchError):
    """The upstream endpoint answered HTTP 429.

    The refresh loop reacts by growing its exponential backoff.

    Args:
        retry_after: Server-suggested delay in seconds, if one was sent.
    """

    def __init__(self, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__("Rate limited by Claude. Please wait a moment and try again.")


class TransientFetchError(FetchError):
    """Network failures, server errors and unparseable responses.

    Surfaced to the user; backoff is left unchanged.
    """


# ---------------------------------------------------------------------------
# Notification layer
# ---------------------------------------------------------------------------


class NotificationError(UsageWatchError):
    """Base class for notification delivery errors."""


class TelegramError(NotificationError):
    """Raised when the Telegram Bot API returns an error or is unreachable.

    Args:
        message: Human-readable error description.
        status_code: HTTP status code from the Telegram API, if available.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Telegram error{detail}: {message}")


class TelegramRateLimitError(TelegramError):
    """Raised when the Telegram Bot API returns HTTP 429 (Too Many Requests).

    Args:
        retry_after: Seconds to wait before retrying, as reported by Telegram.
    """

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(
            f"Rate limited, retry after {retry_after}s",
            status_code=429,
        )


# ---------------------------------------------------------------------------
# Orchestrator layer
# ---------------------------------------------------------------------------


class OrchestratorError(UsageWatchError):
    """Raised for errors originating in the refresh loop or command handlers.

    Examples:
        - ``refresh_now`` called after the loop has been stopped.
    """
