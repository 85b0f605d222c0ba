"""Telegram Bot API transport for usage alerts.

:class:`TelegramClient` posts to ``sendMessage`` over one keep-alive
:class:`httpx.AsyncClient`.  Transport errors, HTTP 5xx and HTTP 429 are
retried through :mod:`tenacity`; on 429 the delay Telegram asks for is
honoured.  Other 4xx responses fail immediately.

Formatting lives in :mod:`usagewatch.notifiers.formatter`; the decision of
whether to send at all lives in :mod:`usagewatch.notifiers.notifier`.

Typical usage::

    async with TelegramClient(token="123:ABC", chat_id="-1001234") as client:
        await client.send_message(format_alert(title, body))
"""

from __future__ import annotations

import logging
import random
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from usagewatch.core.exceptions import TelegramError, TelegramRateLimitError

__all__ = ["TelegramClient", "TELEGRAM_BASE_URL"]

logger = logging.getLogger(__name__)

TELEGRAM_BASE_URL: Final[str] = "https://api.telegram.org"

#: Default total send attempts (1 initial + 2 retries).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

_DEFAULT_TIMEOUT: Final[httpx.Timeout] = httpx.Timeout(10.0, connect=5.0, pool=5.0)

#: Hard cap on the exponential back-off base (seconds).
_MAX_BACKOFF_BASE: Final[float] = 30.0

#: Ceiling for any Retry-After we are willing to honour (seconds).
_MAX_RETRY_AFTER: Final[float] = 60.0


class _RetryableServerError(TelegramError):
    """Internal sentinel raised on 5xx so tenacity retries the send."""


def _telegram_wait(retry_state: RetryCallState) -> float:
    """Honour Telegram's ``retry_after`` on 429, otherwise back off exponentially."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, TelegramRateLimitError) and exc.retry_after > 0:
        return min(exc.retry_after, _MAX_RETRY_AFTER)

    attempt = max(retry_state.attempt_number, 1)
    base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    return base + random.uniform(0.0, 1.0)


class TelegramClient:
    """Async Telegram Bot API client.

    Args:
        token: Bot token from @BotFather.
        chat_id: Destination chat identifier.
        max_attempts: Total send attempts including the first (≥ 1).
        timeout: httpx timeout budget for one request.
        transport: Optional custom transport (e.g. :class:`httpx.MockTransport`).

    Raises:
        ValueError: If ``token``, ``chat_id`` or ``max_attempts`` are invalid.
    """

    def __init__(
        self,
        token: str,
        chat_id: str,
        *,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        timeout: httpx.Timeout = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not token:
            raise ValueError("TelegramClient requires a non-empty token.")
        if not chat_id:
            raise ValueError("TelegramClient requires a non-empty chat_id.")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._token = token
        self._chat_id = chat_id
        self._max_attempts = max_attempts
        self._timeout = timeout
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def __aenter__(self) -> TelegramClient:
        self._client()
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.close()

    async def send_message(self, text: str, *, parse_mode: str = "MarkdownV2") -> None:
        """Send *text* to the configured chat.

        Raises:
            TelegramRateLimitError: Still rate limited after the last attempt.
            TelegramError: Any other API or network failure.
        """
        payload: dict[str, Any] = {
            "chat_id": self._chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "Telegram send attempt %d/%d failed (%s). Retrying.",
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
            )

        try:
            async for attempt in AsyncRetrying(
                wait=_telegram_wait,
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type(
                    (TelegramRateLimitError, _RetryableServerError, httpx.TransportError)
                ),
                reraise=True,
                before_sleep=_before_sleep,
            ):
                with attempt:
                    await self._post(payload)
        except httpx.TransportError as exc:
            raise TelegramError(f"Network error: {exc}") from exc

    async def close(self) -> None:
        """Close the HTTP session.  Safe to call more than once."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("TelegramClient HTTP session closed.")
        self._http = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=TELEGRAM_BASE_URL,
                timeout=self._timeout,
                headers={"User-Agent": "usagewatch/0.1.0"},
                transport=self._transport,
            )
        return self._http

    async def _post(self, payload: dict[str, Any]) -> None:
        response = await self._client().post(f"/bot{self._token}/sendMessage", json=payload)
        logger.debug("Telegram sendMessage → HTTP %d", response.status_code)

        if response.status_code == 200:
            body = _json_or_empty(response)
            if not body.get("ok"):
                raise TelegramError(
                    f"Telegram ok=false: {body.get('description', '(no description)')}",
                    status_code=200,
                )
            return

        if response.status_code == 429:
            raise TelegramRateLimitError(retry_after=_parse_retry_after(response))

        if response.status_code >= 500:
            raise _RetryableServerError(
                f"Transient server error: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        description = _json_or_empty(response).get("description") or response.text
        raise TelegramError(description or "request rejected", status_code=response.status_code)


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _parse_retry_after(response: httpx.Response) -> float:
    """Delay requested by a 429: ``parameters.retry_after``, then the header, then 1 s."""
    parameters = _json_or_empty(response).get("parameters") or {}
    candidates = (parameters.get("retry_after"), response.headers.get("retry-after"))
    for value in candidates:
        if value is None:
            continue
        try:
            return max(float(value), 1.0)
        except (TypeError, ValueError):
            continue
    return 1.0
