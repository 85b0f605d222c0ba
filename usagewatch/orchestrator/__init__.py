"""Refresh scheduling, backoff, restart signalling and the polling loop.

Public API
----------
* :func:`~usagewatch.orchestrator.scheduler.run_continuous`: default runtime
  entry-point; runs the refresh loop until ``SIGTERM``.
* :func:`~usagewatch.orchestrator.scheduler.run_once`: single refresh cycle;
  used by ``--once`` mode and handy for testing.
* :class:`~usagewatch.orchestrator.runner.RefreshLoop`: the adaptive polling
  loop itself, with :class:`~usagewatch.orchestrator.runner.EventBus` for
  observers.
* :class:`~usagewatch.orchestrator.commands.CommandHandler`: credential,
  schedule and notification commands.
* :func:`~usagewatch.orchestrator.backoff.next_backoff` and
  :func:`~usagewatch.orchestrator.schedule.plan_next_refresh`: the pure
  timing calculators.
* :class:`~usagewatch.orchestrator.metrics.LifetimeStats`: cumulative
  cross-cycle statistics.
"""

from usagewatch.orchestrator.backoff import next_backoff
from usagewatch.orchestrator.commands import CommandHandler
from usagewatch.orchestrator.metrics import LifetimeStats, write_stats_file
from usagewatch.orchestrator.runner import CycleResult, EventBus, RefreshLoop, RefreshState
from usagewatch.orchestrator.schedule import (
    RefreshPlan,
    hourly_refresh_delay,
    next_refresh_at,
    plan_next_refresh,
)
from usagewatch.orchestrator.scheduler import open_runtime, run_continuous, run_once
from usagewatch.orchestrator.signals import ClockJumpWakeSource, RestartSignal, WakeSignalSource
from usagewatch.orchestrator.state import AppState, RefreshConfig

__all__ = [
    # Timing calculators
    "next_backoff",
    "hourly_refresh_delay",
    "next_refresh_at",
    "plan_next_refresh",
    "RefreshPlan",
    # Shared state and signalling
    "AppState",
    "RefreshConfig",
    "RestartSignal",
    "WakeSignalSource",
    "ClockJumpWakeSource",
    # Loop
    "RefreshLoop",
    "RefreshState",
    "EventBus",
    "CycleResult",
    # Commands
    "CommandHandler",
    # Entry-points
    "open_runtime",
    "run_continuous",
    "run_once",
    # Lifetime metrics
    "LifetimeStats",
    "write_stats_file",
]
