"""Structured log event name constants for the refresh loop.

Every key transition in the orchestrator emits a log record with an
``event`` field (passed via ``extra={"event": events.X}``).  In
``LOG_FORMAT=json`` mode the value surfaces as ``extra.event``; in text
mode the message itself is self-describing.

Usage example::

    import logging
    from usagewatch.core import events

    logger = logging.getLogger(__name__)

    logger.info("Cycle started", extra={"event": events.CYCLE_START})
"""

from __future__ import annotations

__all__ = [
    # Loop lifecycle
    "LOOP_START",
    "LOOP_IDLE",
    "LOOP_WAKE_TIMER",
    "LOOP_WAKE_RESTART",
    "LOOP_STOP",
    # Cycle lifecycle
    "CYCLE_START",
    "CYCLE_COMPLETE",
    "CYCLE_ERROR",
    # Fetch outcomes
    "FETCH_OK",
    "FETCH_RATE_LIMITED",
    "FETCH_ERROR",
    "FETCH_TIMEOUT",
    # Side effects
    "BACKOFF_CHANGED",
    "HISTORY_WRITE_ERROR",
    "STATE_WRITE_ERROR",
    "USAGE_RESET_DETECTED",
    "ALERT_FIRED",
    "ALERT_DELIVERY_ERROR",
    "EVENT_LISTENER_ERROR",
]

# ---------------------------------------------------------------------------
# Loop lifecycle
# ---------------------------------------------------------------------------

#: The refresh loop task has started.
LOOP_START: str = "LOOP_START"

#: Refresh is disabled or credentials are missing; waiting for a restart signal.
LOOP_IDLE: str = "LOOP_IDLE"

#: The wait timer elapsed and a new cycle begins.
LOOP_WAKE_TIMER: str = "LOOP_WAKE_TIMER"

#: The restart signal fired before the wait timer elapsed.
LOOP_WAKE_RESTART: str = "LOOP_WAKE_RESTART"

#: The refresh loop was stopped or cancelled.
LOOP_STOP: str = "LOOP_STOP"

# ---------------------------------------------------------------------------
# Cycle lifecycle
# ---------------------------------------------------------------------------

#: Emitted at the very start of a refresh cycle.
CYCLE_START: str = "CYCLE_START"

#: Emitted once the cycle has computed its refresh plan.
CYCLE_COMPLETE: str = "CYCLE_COMPLETE"

#: A cycle raised outside the fetch; classified as OTHER_ERROR and the loop goes on.
CYCLE_ERROR: str = "CYCLE_ERROR"

# ---------------------------------------------------------------------------
# Fetch outcomes
# ---------------------------------------------------------------------------

#: Usage snapshot fetched and parsed.
FETCH_OK: str = "FETCH_OK"

#: The endpoint answered HTTP 429.
FETCH_RATE_LIMITED: str = "FETCH_RATE_LIMITED"

#: Any other fetch failure (credentials, network, server, parse).
FETCH_ERROR: str = "FETCH_ERROR"

#: The fetch exceeded its timeout budget.
FETCH_TIMEOUT: str = "FETCH_TIMEOUT"

# ---------------------------------------------------------------------------
# Side effects
# ---------------------------------------------------------------------------

#: Backoff value changed as a result of the last outcome.
BACKOFF_CHANGED: str = "BACKOFF_CHANGED"

#: Appending the snapshot to the history database failed (ignored).
HISTORY_WRITE_ERROR: str = "HISTORY_WRITE_ERROR"

#: Persisting the notification state failed (ignored).
STATE_WRITE_ERROR: str = "STATE_WRITE_ERROR"

#: A large utilization drop re-armed one quantity's notifications.
USAGE_RESET_DETECTED: str = "USAGE_RESET_DETECTED"

#: A usage alert was produced by the rule evaluator.
ALERT_FIRED: str = "ALERT_FIRED"

#: Delivering a usage alert failed (ignored).
ALERT_DELIVERY_ERROR: str = "ALERT_DELIVERY_ERROR"

#: An event listener raised while handling a usage event (ignored).
EVENT_LISTENER_ERROR: str = "EVENT_LISTENER_ERROR"
