"""Async HTTP client for the usage metering endpoint.

Wraps :class:`httpx.AsyncClient` with:

* **Input validation** before anything is sent: the org ID goes into the
  URL path and the token into the ``Cookie`` header.
* **Automatic retries** for transport errors and HTTP 5xx, with a short
  exponential back-off via :mod:`tenacity`.
* **No retries for 401 or 429**: an expired session will not fix itself,
  and rate-limit recovery belongs to the refresh loop's backoff.
* **Structured error mapping** onto
  :class:`~usagewatch.core.exceptions.FetchError` subclasses whose string
  form is ready to show to the user.

Typical usage::

    from usagewatch.client.usage_client import UsageClient

    async with UsageClient() as client:
        snapshot = await client.fetch_usage(org_id, session_token)
"""

from __future__ import annotations

import logging
import random
from types import TracebackType
from typing import Final

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from usagewatch.client.validation import validate_org_id, validate_session_token
from usagewatch.core.exceptions import (
    InvalidCredentialError,
    RateLimitedError,
    TransientFetchError,
)
from usagewatch.core.models import UsageSnapshot

__all__ = ["UsageClient", "DEFAULT_BASE_URL", "USER_AGENT", "NETWORK_ERROR_MESSAGE"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_BASE_URL: Final[str] = "https://claude.ai"

USER_AGENT: Final[str] = "usagewatch/0.1.0"

NETWORK_ERROR_MESSAGE: Final[str] = "Network error. Check your internet connection."

#: Default connection timeout in seconds.
_DEFAULT_CONNECT_TIMEOUT: Final[float] = 10.0

#: Default timeout waiting for the response.
_DEFAULT_READ_TIMEOUT: Final[float] = 20.0

#: Default total attempts (1 initial + 1 retry).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 2

#: Cap on the exponential back-off base between attempts (seconds).
_MAX_BACKOFF_BASE: Final[float] = 8.0


# ---------------------------------------------------------------------------
# Internal sentinel exception
# ---------------------------------------------------------------------------


class _RetryableServerError(TransientFetchError):
    """Internal: signals a 5xx status for tenacity to retry."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


def _fetch_wait(retry_state: RetryCallState) -> float:
    """Exponential back-off (1 s, 2 s, 4 s, ...) with up to 1 s of jitter."""
    attempt = max(retry_state.attempt_number, 1)
    base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    return base + random.uniform(0.0, 1.0)


# ---------------------------------------------------------------------------
# Public client
# ---------------------------------------------------------------------------


class UsageClient:
    """Fetch :class:`~usagewatch.core.models.UsageSnapshot` objects.

    Use as an ``async with`` context manager (preferred) to guarantee the
    underlying connection pool is closed on exit.  The pool is also opened
    lazily on first use, so a long-lived instance may be managed manually
    with :meth:`close`.

    Args:
        base_url: Scheme and host of the usage API.
        connect_timeout: TCP connection establishment timeout in seconds.
        read_timeout: Timeout for receiving the response.
        max_attempts: Total attempts for retryable failures (≥ 1).
        transport: Optional custom transport (e.g. :class:`httpx.MockTransport`
            in tests).

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        connect_timeout: float = _DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = _DEFAULT_READ_TIMEOUT,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._base_url = base_url.rstrip("/")
        self._max_attempts = max_attempts
        self._timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=10.0,
            pool=5.0,
        )
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> UsageClient:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_usage(self, org_id: str, session_token: str) -> UsageSnapshot:
        """Fetch the current usage of *org_id*.

        Args:
            org_id: Organisation identifier.
            session_token: Value of the ``sessionKey`` cookie.

        Returns:
            The parsed snapshot.

        Raises:
            CredentialValidationError: If either input is malformed.
            InvalidCredentialError: On HTTP 401.
            RateLimitedError: On HTTP 429.
            TransientFetchError: On network errors, other HTTP statuses, or
                an unparseable body.
        """
        validate_org_id(org_id)
        validate_session_token(session_token)

        url = f"/api/organizations/{org_id}/usage"
        response = await self._request_with_retry(url, session_token)

        try:
            return UsageSnapshot.model_validate_json(response.content)
        except ValidationError as exc:
            logger.warning("Failed to parse usage response: %s", exc)
            logger.debug("Response body: %s", response.text[:500])
            raise TransientFetchError(f"Failed to parse response: {exc}") from exc

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call multiple times."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("UsageClient HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={
                    "Accept": "application/json",
                    "User-Agent": USER_AGENT,
                },
                transport=self._transport,
            )
            logger.debug("UsageClient session opened (base_url=%r).", self._base_url)
        return self._http

    async def _request_with_retry(self, url: str, session_token: str) -> httpx.Response:
        retry_types = (_RetryableServerError, httpx.TransportError)

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "GET %s attempt %d/%d failed (%s). Retrying.",
                url,
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
            )

        response: httpx.Response | None = None
        try:
            async for attempt in AsyncRetrying(
                wait=_fetch_wait,
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type(retry_types),
                reraise=True,
                before_sleep=_before_sleep,
            ):
                with attempt:
                    response = await self._single_request(url, session_token)
        except _RetryableServerError as exc:
            raise TransientFetchError(str(exc)) from exc
        except httpx.TransportError as exc:
            logger.warning("Network error fetching usage: %s", exc)
            raise TransientFetchError(NETWORK_ERROR_MESSAGE) from exc

        assert response is not None, "tenacity exited without a response or exception"
        return response

    async def _single_request(self, url: str, session_token: str) -> httpx.Response:
        """Perform exactly one request and map its status.

        Raises:
            InvalidCredentialError: On HTTP 401.
            RateLimitedError: On HTTP 429.
            _RetryableServerError: On HTTP 5xx (internal sentinel).
            TransientFetchError: On any other non-200 status.
            httpx.TransportError: Network-level failures (propagated for retry).
        """
        client = await self._ensure_client()
        response = await client.get(url, headers={"Cookie": f"sessionKey={session_token}"})

        logger.debug("GET %s → %d", url, response.status_code)

        if response.status_code == 200:
            return response

        if response.status_code == 401:
            raise InvalidCredentialError()

        if response.status_code == 429:
            raise RateLimitedError(retry_after=_parse_retry_after(response))

        if response.status_code >= 500:
            raise _RetryableServerError(response.status_code)

        logger.debug("HTTP %d body: %s", response.status_code, response.text[:200])
        raise TransientFetchError(f"HTTP {response.status_code}")


def _parse_retry_after(response: httpx.Response) -> float | None:
    """Return the ``Retry-After`` header in seconds, or ``None`` if absent/invalid."""
    header = response.headers.get("retry-after", "")
    if not header:
        return None
    try:
        return max(float(header), 0.0)
    except ValueError:
        return None
