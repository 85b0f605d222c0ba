"""Process runtime for usagewatch: wiring, continuous mode, one-shot mode.

:func:`open_runtime` opens every long-lived resource (history database,
usage HTTP client, optional Telegram client) on an
:class:`contextlib.AsyncExitStack`, builds the shared
:class:`~usagewatch.orchestrator.state.AppState`, and returns a
:class:`Runtime` bundle.  Both entry-points use it:

* :func:`run_continuous`: starts the
  :class:`~usagewatch.orchestrator.runner.RefreshLoop` task plus the
  clock-jump wake source and runs until cancelled or ``SIGTERM``.
* :func:`run_once`: performs a single cycle and returns its result.

Typical usage::

    import asyncio
    from usagewatch.orchestrator.scheduler import run_continuous

    asyncio.run(run_continuous(Settings()))
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import AsyncIterator
from dataclasses import dataclass

from usagewatch.client.usage_client import UsageClient
from usagewatch.core.models import UsageError, UsageUpdated
from usagewatch.core.settings import Settings
from usagewatch.notifiers.notifier import Notifier
from usagewatch.notifiers.telegram import TelegramClient
from usagewatch.orchestrator.commands import CommandHandler
from usagewatch.orchestrator.runner import CycleResult, EventBus, RefreshLoop
from usagewatch.orchestrator.signals import ClockJumpWakeSource, WakeSignalSource
from usagewatch.orchestrator.state import AppState
from usagewatch.storage.credentials import FileCredentialStore
from usagewatch.storage.database import open_db
from usagewatch.storage.history import HistoryRepository
from usagewatch.storage.state_store import JsonStateStore

__all__ = [
    "Runtime",
    "log_usage_event",
    "open_runtime",
    "run_continuous",
    "run_once",
]

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything a running usagewatch process holds on to."""

    settings: Settings
    state: AppState
    loop: RefreshLoop
    commands: CommandHandler
    history: HistoryRepository


def log_usage_event(event: UsageUpdated | UsageError) -> None:
    """Default event listener: one log line per published event."""
    if isinstance(event, UsageUpdated):
        parts = [f"{q.label}: {p.utilization:.0f}%" for q, p in event.snapshot.present()]
        logger.info("Usage: %s", " | ".join(parts) or "no quantities reported")
    else:
        logger.warning("Usage refresh failed: %s", event.message)


def _log_manual_refresh(task: asyncio.Task[CycleResult]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Manual refresh failed: %s", exc)
    else:
        logger.info("Manual refresh complete: outcome=%s.", task.result().outcome)


@contextlib.asynccontextmanager
async def open_runtime(settings: Settings) -> AsyncIterator[Runtime]:
    """Open all resources for *settings* and yield a wired :class:`Runtime`.

    Resources are released in reverse order on exit, including on
    cancellation.
    """
    async with contextlib.AsyncExitStack() as stack:
        conn = await open_db(settings.database_path_resolved)
        stack.push_async_callback(conn.close)
        history = HistoryRepository(conn)

        purged = await history.cleanup_old_data(settings.history_retention_days)
        if purged:
            logger.info("Purged %d history rows older than %d days.", purged, settings.history_retention_days)

        client = await stack.enter_async_context(
            UsageClient(
                base_url=settings.usage_api_base_url,
                read_timeout=settings.fetch_timeout_s,
            )
        )

        telegram: TelegramClient | None = None
        if settings.telegram_configured and not settings.dry_run:
            telegram = await stack.enter_async_context(
                TelegramClient(settings.telegram_bot_token, settings.telegram_chat_id)
            )
        notifier = Notifier(client=telegram, dry_run=settings.dry_run)

        credential_store = FileCredentialStore(settings.credentials_path_resolved)
        state_store = JsonStateStore(settings.state_path_resolved)
        state = AppState.from_settings(
            settings,
            credentials=credential_store.load(),
            state_store=state_store,
        )

        bus = EventBus()
        bus.subscribe(log_usage_event)
        loop = RefreshLoop(
            state,
            client,
            notifier=notifier,
            history=history,
            state_store=state_store,
            bus=bus,
            fetch_timeout_s=settings.fetch_timeout_s,
            stats_path=settings.stats_path_resolved,
        )
        commands = CommandHandler(state, credential_store, state_store, loop)

        yield Runtime(settings=settings, state=state, loop=loop, commands=commands, history=history)


# ---------------------------------------------------------------------------
# Public entry-points
# ---------------------------------------------------------------------------


async def run_once(settings: Settings | None = None) -> CycleResult:
    """Run a single refresh cycle and return its result.

    Unlike the continuous loop this ignores ``refresh_enabled``: a one-shot
    run always polls when credentials exist.
    """
    if settings is None:
        settings = Settings()

    async with open_runtime(settings) as runtime:
        result = await runtime.loop.run_cycle()
        logger.info(runtime.loop.stats.format_summary())
        return result


async def run_continuous(
    settings: Settings | None = None,
    *,
    wake_source: WakeSignalSource | None = None,
) -> None:
    """Run the refresh loop until cancelled or ``SIGTERM``.

    ``SIGUSR1`` (where the platform has it) runs
    :meth:`~usagewatch.orchestrator.commands.CommandHandler.refresh_now`
    through the loop without waiting for the schedule.

    A ``SIGTERM`` handler is registered on the running event loop once the
    loop task exists; it cancels that task, which unwinds through
    :func:`open_runtime` so every resource is closed.  The handler is
    removed in a ``finally`` block so it does not leak into a later
    :func:`asyncio.run` call.  ``SIGINT`` keeps the default asyncio
    behaviour.

    Args:
        settings: Application settings.  Loaded from the environment if
            ``None``.
        wake_source: Source of resume wake-ups.  Defaults to
            :class:`ClockJumpWakeSource`.

    Raises:
        asyncio.CancelledError: On shutdown.
    """
    if settings is None:
        settings = Settings()
    if wake_source is None:
        wake_source = ClockJumpWakeSource()

    async with open_runtime(settings) as runtime:
        schedule = runtime.state.config.schedule
        logger.info(
            "usagewatch entering continuous mode (enabled=%s, interval=%d min, hourly=%s, credentials=%s).",
            schedule.enabled,
            schedule.interval_minutes,
            schedule.hourly_align_enabled,
            runtime.state.config.has_credentials,
        )

        loop_task = asyncio.create_task(runtime.loop.run(), name="usagewatch-refresh-loop")
        wake_source.start(runtime.state.restart)

        event_loop = asyncio.get_running_loop()
        shutdown_signal: list[str] = []

        def _request_graceful_shutdown(signame: str) -> None:
            if not shutdown_signal:
                shutdown_signal.append(signame)
                logger.info("Received %s; graceful shutdown requested.", signame)
            loop_task.cancel()

        event_loop.add_signal_handler(signal.SIGTERM, lambda: _request_graceful_shutdown("SIGTERM"))

        refresh_tasks: set[asyncio.Task[CycleResult]] = set()

        def _request_manual_refresh() -> None:
            logger.info("Received SIGUSR1; manual refresh requested.")
            task = asyncio.create_task(runtime.commands.refresh_now(), name="usagewatch-manual-refresh")
            refresh_tasks.add(task)
            task.add_done_callback(refresh_tasks.discard)
            task.add_done_callback(_log_manual_refresh)

        refresh_signal = getattr(signal, "SIGUSR1", None)
        if refresh_signal is not None:
            event_loop.add_signal_handler(refresh_signal, _request_manual_refresh)

        try:
            await loop_task
        except (asyncio.CancelledError, KeyboardInterrupt):
            if shutdown_signal:
                logger.info("Graceful shutdown complete (signal: %s).", shutdown_signal[0])
            else:
                logger.info("Refresh loop cancelled; stopping.")
            loop_task.cancel()
            await asyncio.gather(loop_task, return_exceptions=True)
            raise
        finally:
            await wake_source.stop()
            logger.info(runtime.loop.stats.format_summary())
            for task in list(refresh_tasks):
                task.cancel()
            with contextlib.suppress(Exception):
                event_loop.remove_signal_handler(signal.SIGTERM)
                if refresh_signal is not None:
                    event_loop.remove_signal_handler(refresh_signal)
