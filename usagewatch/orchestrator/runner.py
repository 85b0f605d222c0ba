"""The refresh loop: poll, react, plan, wait.

:class:`RefreshLoop` is driven by a single long-lived ``asyncio`` task.
Each iteration of :meth:`RefreshLoop.run` is in one of three states:

* ``IDLE``: refresh disabled or no credentials.  Backoff is reset and the
  loop waits only for the restart signal.
* ``POLLING``: :meth:`RefreshLoop.run_cycle` fetches usage (under a
  timeout), runs reset detection and the notification rules, stores
  history, persists state, delivers alerts, updates backoff, computes the
  :class:`~usagewatch.orchestrator.schedule.RefreshPlan` once, and
  publishes ``UsageUpdated``/``UsageError`` carrying that plan's timestamp.
* ``WAITING``: sleeps ``plan.wait_s`` unless the restart signal fires
  first.  A restart clears any active backoff.

Manual refreshes are serialised through the same task:
:meth:`RefreshLoop.request_refresh` queues a future, pokes the restart
signal, and the loop resolves the future with the result of the next cycle.

A failed cycle never stops the loop: every exception other than
cancellation is logged and classified as ``OTHER_ERROR``.

Typical usage::

    loop = RefreshLoop(state, client, notifier=notifier, history=repo)
    loop.bus.subscribe(print)
    task = asyncio.create_task(loop.run(), name="usagewatch-refresh-loop")
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Final, Protocol
from uuid import uuid4

from usagewatch.core import events
from usagewatch.core.exceptions import (
    ConfigError,
    FetchError,
    OrchestratorError,
    RateLimitedError,
    StorageError,
)
from usagewatch.core.logging_config import CYCLE_ID_CTX
from usagewatch.core.models import (
    PollOutcome,
    ScheduleConfig,
    UsageAlert,
    UsageError,
    UsageSnapshot,
    UsageUpdated,
)
from usagewatch.notifiers.notifier import Notifier
from usagewatch.notifiers.rules import detect_resets, evaluate
from usagewatch.orchestrator.backoff import next_backoff
from usagewatch.orchestrator.metrics import LifetimeStats, write_stats_file
from usagewatch.orchestrator.schedule import RefreshPlan, current_hourly_delay, plan_next_refresh
from usagewatch.orchestrator.state import AppState, RefreshConfig
from usagewatch.storage.history import HistoryRepository
from usagewatch.storage.state_store import JsonStateStore

__all__ = [
    "DEFAULT_FETCH_TIMEOUT_S",
    "RefreshState",
    "UsageFetcher",
    "EventBus",
    "CycleResult",
    "RefreshLoop",
]

logger = logging.getLogger(__name__)

#: Upper bound for one fetch; a timeout is classified as ``OTHER_ERROR``.
DEFAULT_FETCH_TIMEOUT_S: Final[float] = 30.0

UsageEvent = UsageUpdated | UsageError
Listener = Callable[[UsageEvent], Awaitable[None] | None]


class RefreshState(StrEnum):
    IDLE = "idle"
    POLLING = "polling"
    WAITING = "waiting"


class UsageFetcher(Protocol):
    async def fetch_usage(self, org_id: str, session_token: str) -> UsageSnapshot: ...


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


class EventBus:
    """Fan out usage events to any number of listeners.

    Listeners may be plain callables or coroutine functions.  A listener
    that raises is logged and skipped; the others still run.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* and return a function that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def publish(self, event: UsageEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Event listener %r failed.",
                    listener,
                    extra={"event": events.EVENT_LISTENER_ERROR},
                )


# ---------------------------------------------------------------------------
# Cycle result
# ---------------------------------------------------------------------------


@dataclass
class CycleResult:
    """What one :meth:`RefreshLoop.run_cycle` call did.

    Attributes:
        outcome: Poll classification fed to the backoff calculator.
        plan: The single refresh plan computed for this cycle.
        backoff_s: Backoff after this cycle.
        snapshot: Fetched usage on success.
        error: User-facing error message on failure.
        alerts: Alerts produced by the notification rules.
        alerts_sent: How many of them were delivered.
    """

    outcome: PollOutcome
    plan: RefreshPlan
    backoff_s: int
    snapshot: UsageSnapshot | None = None
    error: str | None = None
    alerts: list[UsageAlert] = field(default_factory=list)
    alerts_sent: int = 0


def _epoch_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Refresh loop
# ---------------------------------------------------------------------------


class RefreshLoop:
    """Adaptive polling loop with backoff, hourly alignment and alerting.

    Args:
        state: Shared application state.
        client: Anything with ``fetch_usage(org_id, session_token)``.
        notifier: Alert delivery; ``None`` disables delivery.
        history: History repository; ``None`` disables history.
        state_store: Where notification state is persisted; ``None`` keeps
            it in memory only.
        bus: Event bus; a new one is created when omitted.
        fetch_timeout_s: Timeout for one fetch.
        stats: Lifetime statistics accumulator.
        stats_path: When set, stats are written there after each cycle.
        clock_ms: Returns the current Unix time in milliseconds.
        hourly_delay: Returns the hourly-aligned delay for a given
            "enabled" flag.
    """

    def __init__(
        self,
        state: AppState,
        client: UsageFetcher,
        *,
        notifier: Notifier | None = None,
        history: HistoryRepository | None = None,
        state_store: JsonStateStore | None = None,
        bus: EventBus | None = None,
        fetch_timeout_s: float = DEFAULT_FETCH_TIMEOUT_S,
        stats: LifetimeStats | None = None,
        stats_path: Path | str | None = None,
        clock_ms: Callable[[], int] = _epoch_ms,
        hourly_delay: Callable[[bool], int | None] = current_hourly_delay,
    ) -> None:
        self._state = state
        self._client = client
        self._notifier = notifier
        self._history = history
        self._state_store = state_store
        self.bus = bus or EventBus()
        self._fetch_timeout_s = fetch_timeout_s
        self.stats = stats or LifetimeStats()
        self._stats_path = stats_path
        self._clock_ms = clock_ms
        self._hourly_delay = hourly_delay

        self._backoff_s = 0
        self._pending: list[asyncio.Future[CycleResult]] = []
        self._running = False
        self.phase = RefreshState.IDLE

    @property
    def backoff_s(self) -> int:
        return self._backoff_s

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Manual refresh
    # ------------------------------------------------------------------

    def request_refresh(self) -> asyncio.Future[CycleResult]:
        """Queue a refresh to be run by the loop task and return its future.

        Raises:
            OrchestratorError: If the loop is not running.
        """
        if not self._running:
            raise OrchestratorError("Refresh loop is not running.")
        future: asyncio.Future[CycleResult] = asyncio.get_running_loop().create_future()
        self._pending.append(future)
        self._state.restart.notify()
        return future

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run until cancelled."""
        self._running = True
        logger.info("Refresh loop started.", extra={"event": events.LOOP_START})
        try:
            while True:
                config = await self._read_config()

                if not config.should_refresh:
                    self._backoff_s = 0
                    if self._pending and config.has_credentials:
                        await self._guarded_cycle(config)
                        continue
                    self._fail_pending(ConfigError("Missing configuration: credentials"))
                    self.phase = RefreshState.IDLE
                    logger.info(
                        "Refresh idle (enabled=%s, credentials=%s); waiting for restart.",
                        config.schedule.enabled,
                        config.has_credentials,
                        extra={"event": events.LOOP_IDLE},
                    )
                    await self._state.restart.wait()
                    continue

                wait_s = await self._guarded_cycle(config)

                self.phase = RefreshState.WAITING
                logger.info("Next refresh in %.0f s.", wait_s)
                if await self._wait(wait_s):
                    if self._backoff_s:
                        logger.info(
                            "Restart signal cleared backoff of %d s.",
                            self._backoff_s,
                            extra={"event": events.BACKOFF_CHANGED},
                        )
                    self._backoff_s = 0
                    logger.debug("Woken by restart signal.", extra={"event": events.LOOP_WAKE_RESTART})
                else:
                    logger.debug("Wait elapsed.", extra={"event": events.LOOP_WAKE_TIMER})
        finally:
            self._running = False
            self.phase = RefreshState.IDLE
            for future in self._pending:
                future.cancel()
            self._pending.clear()
            logger.info("Refresh loop stopped.", extra={"event": events.LOOP_STOP})

    async def _guarded_cycle(self, config: RefreshConfig) -> float:
        """Serve one cycle and return the wait before the next one.

        An exception escaping :meth:`run_cycle` is logged and the regular
        plan is used instead; the loop keeps running.
        """
        try:
            result = await self._serve_cycle()
        except Exception:
            logger.exception(
                "Refresh cycle crashed; retrying after the planned wait.",
                extra={"event": events.CYCLE_ERROR},
            )
            return self._plan(config.schedule).wait_s
        return result.plan.wait_s

    async def _serve_cycle(self) -> CycleResult:
        pending, self._pending = self._pending, []
        try:
            result = await self.run_cycle()
        except asyncio.CancelledError:
            for future in pending:
                future.cancel()
            raise
        except Exception as exc:
            for future in pending:
                if not future.done():
                    future.set_exception(exc)
            raise
        for future in pending:
            if not future.done():
                future.set_result(result)
        return result

    def _fail_pending(self, exc: Exception) -> None:
        pending, self._pending = self._pending, []
        for future in pending:
            if not future.done():
                future.set_exception(exc)

    async def _read_config(self) -> RefreshConfig:
        async with self._state.config_lock:
            return self._state.config

    async def _wait(self, timeout_s: float) -> bool:
        """Sleep *timeout_s* or until restart; return ``True`` if restarted."""
        restart = asyncio.ensure_future(self._state.restart.wait())
        timer = asyncio.ensure_future(asyncio.sleep(timeout_s))
        try:
            done, _ = await asyncio.wait({restart, timer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (restart, timer):
                if not task.done():
                    task.cancel()
            await asyncio.gather(restart, timer, return_exceptions=True)
        return restart in done

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleResult:
        """Poll once, react to the result, and plan the next refresh.

        Never raises except on cancellation: a failure anywhere in the cycle
        is logged and reported as ``OTHER_ERROR``.
        """
        token = CYCLE_ID_CTX.set(uuid4().hex[:8])
        self.phase = RefreshState.POLLING
        try:
            config = await self._read_config()
            logger.debug("Cycle started.", extra={"event": events.CYCLE_START})
            try:
                return await self._cycle(config)
            except Exception as exc:
                logger.exception(
                    "Refresh cycle failed; will retry after the next wait.",
                    extra={"event": events.CYCLE_ERROR},
                )
                return await self._finish_cycle(
                    config, PollOutcome.OTHER_ERROR, error=f"Unexpected error: {exc}"
                )
        finally:
            CYCLE_ID_CTX.reset(token)

    async def _cycle(self, config: RefreshConfig) -> CycleResult:
        if not config.has_credentials:
            return await self._finish_cycle(config, PollOutcome.NO_CREDENTIALS)

        outcome, snapshot, error = await self._poll(config)
        if snapshot is None:
            return await self._finish_cycle(config, outcome, error=error)

        alerts, resets = await self._process_snapshot(snapshot)
        alerts_sent = 0
        if self._notifier is not None and alerts:
            alerts_sent = await self._notifier.deliver_all(alerts)
        return await self._finish_cycle(
            config,
            outcome,
            snapshot=snapshot,
            alerts=alerts,
            alerts_sent=alerts_sent,
            resets=resets,
        )

    async def _finish_cycle(
        self,
        config: RefreshConfig,
        outcome: PollOutcome,
        *,
        snapshot: UsageSnapshot | None = None,
        error: str | None = None,
        alerts: list[UsageAlert] | None = None,
        alerts_sent: int = 0,
        resets: int = 0,
    ) -> CycleResult:
        """Apply backoff, plan once, publish, and record stats."""
        alerts = alerts or []
        previous = self._backoff_s
        self._backoff_s = next_backoff(previous, outcome)
        if self._backoff_s != previous:
            logger.info(
                "Backoff %d s → %d s.",
                previous,
                self._backoff_s,
                extra={"event": events.BACKOFF_CHANGED},
            )

        plan = self._plan(config.schedule)

        if snapshot is not None:
            await self.bus.publish(
                UsageUpdated(snapshot=snapshot, next_refresh_at_ms=plan.next_refresh_at_ms)
            )
        elif error is not None:
            await self.bus.publish(UsageError(message=error, next_refresh_at_ms=plan.next_refresh_at_ms))

        self.stats.record_cycle(outcome, alerts_sent=alerts_sent, resets=resets, backoff_s=self._backoff_s)
        if self._stats_path is not None:
            write_stats_file(self.stats, self._stats_path)

        logger.info(
            "Cycle complete: outcome=%s alerts=%d wait=%.0f s.",
            outcome,
            len(alerts),
            plan.wait_s,
            extra={"event": events.CYCLE_COMPLETE},
        )
        return CycleResult(
            outcome=outcome,
            plan=plan,
            backoff_s=self._backoff_s,
            snapshot=snapshot,
            error=error,
            alerts=alerts,
            alerts_sent=alerts_sent,
        )

    def _plan(self, schedule: ScheduleConfig) -> RefreshPlan:
        secondary = self._hourly_delay(schedule.hourly_align_enabled) if schedule.enabled else None
        return plan_next_refresh(schedule, self._backoff_s, self._clock_ms(), secondary)

    async def _poll(
        self, config: RefreshConfig
    ) -> tuple[PollOutcome, UsageSnapshot | None, str | None]:
        assert config.organization_id is not None and config.session_token is not None
        try:
            snapshot = await asyncio.wait_for(
                self._client.fetch_usage(config.organization_id, config.session_token),
                timeout=self._fetch_timeout_s,
            )
        except TimeoutError:
            logger.warning(
                "Usage fetch timed out after %.0f s.",
                self._fetch_timeout_s,
                extra={"event": events.FETCH_TIMEOUT},
            )
            return PollOutcome.OTHER_ERROR, None, "Request timed out. Check your internet connection."
        except RateLimitedError as exc:
            logger.warning("Usage fetch rate limited.", extra={"event": events.FETCH_RATE_LIMITED})
            return PollOutcome.RATE_LIMITED, None, str(exc)
        except (FetchError, ConfigError) as exc:
            logger.warning("Usage fetch failed: %s", exc, extra={"event": events.FETCH_ERROR})
            return PollOutcome.OTHER_ERROR, None, str(exc)
        except Exception as exc:
            logger.exception("Unexpected error during usage fetch.", extra={"event": events.FETCH_ERROR})
            return PollOutcome.OTHER_ERROR, None, f"Unexpected error: {exc}"

        logger.info("Usage fetched.", extra={"event": events.FETCH_OK})
        return PollOutcome.SUCCESS, snapshot, None

    async def _process_snapshot(self, snapshot: UsageSnapshot) -> tuple[list[UsageAlert], int]:
        """Store history, run reset detection and rules, persist state.

        Returns the alerts to deliver and the number of resets detected.
        """
        if self._history is not None:
            try:
                await self._history.append_snapshot(snapshot)
            except StorageError as exc:
                logger.warning(
                    "Could not store usage history: %s",
                    exc,
                    extra={"event": events.HISTORY_WRITE_ERROR},
                )
            except Exception:
                logger.exception(
                    "Unexpected error storing usage history.",
                    extra={"event": events.HISTORY_WRITE_ERROR},
                )

        async with self._state.notification_lock:
            state, reset = detect_resets(snapshot, self._state.notification_state)
            for quantity in reset:
                logger.info(
                    "Usage reset detected for %s; notifications re-armed.",
                    quantity.label,
                    extra={"event": events.USAGE_RESET_DETECTED},
                )
            state, alerts = evaluate(
                snapshot, self._state.notification_settings, state, now=datetime.now(UTC)
            )
            self._state.notification_state = state

            if self._state_store is not None:
                try:
                    self._state_store.save_state(state)
                except StorageError as exc:
                    logger.warning(
                        "Could not persist notification state: %s",
                        exc,
                        extra={"event": events.STATE_WRITE_ERROR},
                    )
                except Exception:
                    logger.exception(
                        "Unexpected error persisting notification state.",
                        extra={"event": events.STATE_WRITE_ERROR},
                    )

        for alert in alerts:
            logger.info("%s: %s", alert.title, alert.body, extra={"event": events.ALERT_FIRED})
        return alerts, len(reset)
