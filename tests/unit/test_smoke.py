"""Smoke tests: verify the test harness itself is wired up correctly.

These tests assert nothing about business logic.  Their sole purpose is to
confirm:

1. pytest discovers and runs tests in this suite.
2. pytest-asyncio's ``asyncio_mode = "auto"`` setting works (async tests
   run without any decorator).
3. Core usagewatch modules import without errors.
4. ``configure_logging()`` executes without raising.
5. The exception taxonomy is importable and the hierarchy is intact.
"""

from __future__ import annotations

import asyncio
import json
import logging

import pytest

from usagewatch.core import (
    ConfigError,
    CredentialValidationError,
    FetchError,
    InvalidCredentialError,
    JsonFormatter,
    NotificationError,
    OrchestratorError,
    RateLimitedError,
    StorageError,
    TelegramError,
    TelegramRateLimitError,
    TransientFetchError,
    UsageWatchError,
    configure_logging,
)
from usagewatch.core.logging_config import CYCLE_ID_CTX, CycleContextFilter

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Import & startup smoke
# ---------------------------------------------------------------------------


def test_orchestrator_package_imports() -> None:
    """The orchestrator package wires every layer together without import cycles."""
    import usagewatch.orchestrator as orchestrator  # noqa: PLC0415

    assert orchestrator.RefreshLoop is not None
    assert orchestrator.run_continuous is not None


def test_configure_logging_text() -> None:
    configure_logging(level="INFO", fmt="text", force=True)


def test_configure_logging_json() -> None:
    configure_logging(level="DEBUG", fmt="json", force=True)
    # Restore text mode so subsequent test output remains readable.
    configure_logging(level="DEBUG", fmt="text", force=True)


def test_configure_logging_invalid_level() -> None:
    with pytest.raises(ValueError, match="Unknown LOG_LEVEL"):
        configure_logging(level="VERBOSE", force=True)


def test_configure_logging_invalid_format() -> None:
    with pytest.raises(ValueError, match="Unknown LOG_FORMAT"):
        configure_logging(fmt="xml", force=True)


def test_json_formatter_includes_event_and_cycle_id() -> None:
    record = logging.LogRecord("usagewatch.test", logging.INFO, __file__, 1, "hello %s", ("x",), None)
    record.event = "FETCH_OK"
    token = CYCLE_ID_CTX.set("abcd1234")
    try:
        CycleContextFilter().filter(record)
    finally:
        CYCLE_ID_CTX.reset(token)

    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "hello x"
    assert payload["level"] == "INFO"
    assert payload["extra"]["event"] == "FETCH_OK"
    assert payload["extra"]["cycle_id"] == "abcd1234"


def test_cycle_filter_defaults_outside_cycle() -> None:
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
    CycleContextFilter().filter(record)
    assert record.cycle_id == "-"


# ---------------------------------------------------------------------------
# Exception taxonomy
# ---------------------------------------------------------------------------


def test_exception_hierarchy_base() -> None:
    """All custom exceptions are subclasses of ``UsageWatchError``."""
    for exc_class in (
        ConfigError,
        CredentialValidationError,
        StorageError,
        FetchError,
        InvalidCredentialError,
        RateLimitedError,
        TransientFetchError,
        NotificationError,
        TelegramError,
        TelegramRateLimitError,
        OrchestratorError,
    ):
        assert issubclass(exc_class, UsageWatchError), (
            f"{exc_class.__name__} is not a subclass of UsageWatchError"
        )


def test_exception_hierarchy_layers() -> None:
    assert issubclass(CredentialValidationError, ConfigError)
    assert issubclass(InvalidCredentialError, FetchError)
    assert issubclass(RateLimitedError, FetchError)
    assert issubclass(TransientFetchError, FetchError)
    assert issubclass(TelegramError, NotificationError)
    assert issubclass(TelegramRateLimitError, TelegramError)


def test_fetch_errors_carry_display_messages() -> None:
    assert str(InvalidCredentialError()) == (
        "Session expired. Please update your session token in Settings."
    )
    assert str(RateLimitedError()) == "Rate limited by Claude. Please wait a moment and try again."
    assert str(TransientFetchError("HTTP 503")) == "HTTP 503"


def test_rate_limited_carries_retry_after() -> None:
    assert RateLimitedError(retry_after=12.0).retry_after == 12.0
    assert RateLimitedError().retry_after is None


def test_credential_validation_error_names_field() -> None:
    exc = CredentialValidationError("session_token", "must not be empty")
    assert exc.field == "session_token"
    assert str(exc) == "Invalid session_token: must not be empty"


def test_telegram_rate_limit_carries_retry_after() -> None:
    exc = TelegramRateLimitError(retry_after=10.0)
    assert exc.retry_after == 10.0
    assert exc.status_code == 429


# ---------------------------------------------------------------------------
# Async harness
# ---------------------------------------------------------------------------


async def test_async_test_runs() -> None:
    await asyncio.sleep(0)
    assert True


async def test_async_exception_is_catchable() -> None:
    async def _failing_coro() -> None:
        raise TransientFetchError("simulated failure")

    with pytest.raises(TransientFetchError, match="simulated failure"):
        await _failing_coro()
