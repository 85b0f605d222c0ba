"""Notification decision engine: which usage alerts fire this cycle.

Three independent checks run per quantity, each optional per
:class:`~usagewatch.core.models.NotificationRule`:

1. **Interval**: fires whenever utilization enters a new
   ``interval_percent`` band (10 %, 20 %, ...).  Stateless apart from
   ``last_notified``.
2. **Threshold**: fires once per configured percentage, guarded by a
   persisted marker so a restart never repeats it.
3. **Time remaining**: fires once per configured minute mark before the
   quota window resets, also guarded by a marker.

Whatever fires for one quantity is merged into a single
:class:`~usagewatch.core.models.UsageAlert`.

Before evaluation, :func:`detect_resets` re-arms a quantity whose
utilization dropped sharply, which is how a quota-window reset shows up in
the data.  The drop size is a heuristic and is kept as a tunable constant.

All functions are pure: they take the state and return a new one.

Typical usage::

    state, reset = detect_resets(snapshot, state)
    state, alerts = evaluate(snapshot, settings, state, now=datetime.now(UTC))
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Final

from usagewatch.core.models import (
    Marker,
    NotificationRule,
    NotificationSettings,
    NotificationState,
    Quantity,
    UsageAlert,
    UsagePeriod,
    UsageSnapshot,
)

__all__ = [
    "RESET_DROP_THRESHOLD",
    "check_interval",
    "check_threshold",
    "check_time_remaining",
    "format_time_remaining",
    "minutes_until_reset",
    "build_alert",
    "evaluate",
    "detect_resets",
]

logger = logging.getLogger(__name__)

#: A drop in utilization larger than this many percentage points between two
#: evaluated cycles is treated as a quota-window reset.
RESET_DROP_THRESHOLD: Final[float] = 20.0


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------


def check_interval(current: float, last: float, interval_percent: int) -> int | None:
    """Return the band level just entered, or ``None``.

    ``check_interval(35.0, 5.0, 10)`` returns ``30``; calling it again with
    ``last=35.0`` returns ``None``.
    """
    if interval_percent <= 0:
        return None
    current_level = math.floor(current / interval_percent) * interval_percent
    last_level = math.floor(last / interval_percent) * interval_percent
    if current_level > last_level and current_level > 0:
        return current_level
    return None


def check_threshold(
    quantity: Quantity,
    current: float,
    last: float,
    thresholds: Iterable[int],
    state: NotificationState,
) -> int | None:
    """Return the lowest threshold crossed upward since *last* and not yet fired."""
    for threshold in sorted(thresholds):
        if (
            current >= threshold
            and last < threshold
            and not state.has_fired(Marker.threshold(quantity, threshold))
        ):
            return threshold
    return None


def minutes_until_reset(resets_at: str | None, now: datetime) -> int | None:
    """Whole minutes (truncated) until *resets_at*.

    Returns ``None`` when the timestamp is missing, unparseable, has no UTC
    offset, or is not in the future.
    """
    if not resets_at:
        return None
    try:
        reset_time = datetime.fromisoformat(resets_at)
    except ValueError:
        logger.debug("Unparseable resets_at %r.", resets_at)
        return None
    if reset_time.tzinfo is None:
        return None
    remaining_s = (reset_time - now).total_seconds()
    if remaining_s <= 0:
        return None
    return int(remaining_s // 60)


def check_time_remaining(
    quantity: Quantity,
    resets_at: str | None,
    minute_marks: Iterable[int],
    state: NotificationState,
    now: datetime,
) -> int | None:
    """Return the largest minute mark already reached and not yet fired."""
    minutes_remaining = minutes_until_reset(resets_at, now)
    if minutes_remaining is None:
        return None
    for mark in sorted(minute_marks, reverse=True):
        if minutes_remaining <= mark and not state.has_fired(
            Marker.time_remaining(quantity, mark)
        ):
            return mark
    return None


# ---------------------------------------------------------------------------
# Message formatting
# ---------------------------------------------------------------------------


def format_time_remaining(minutes: int) -> str:
    """Format a minute count as ``"45m"``, ``"1h"`` or ``"1h 30m"``."""
    if minutes < 60:
        return f"{minutes}m"
    hours, mins = divmod(minutes, 60)
    if mins:
        return f"{hours}h {mins}m"
    return f"{hours}h"


def build_alert(quantity: Quantity, current: float, parts: list[str]) -> UsageAlert:
    """Merge the fired sub-checks of one quantity into a single alert."""
    return UsageAlert(
        quantity=quantity,
        title=f"{quantity.label} Usage Alert",
        body=f"Usage {' and '.join(parts)} ({current:.0f}% used)",
    )


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _evaluate_quantity(
    quantity: Quantity,
    period: UsagePeriod,
    rule: NotificationRule,
    state: NotificationState,
    now: datetime,
) -> UsageAlert | None:
    current = period.utilization
    last = state.last_for(quantity)
    parts: list[str] = []

    if rule.interval_enabled:
        level = check_interval(current, last, rule.interval_percent)
        if level is not None:
            parts.append(f"reached {level}%")

    if rule.threshold_enabled:
        threshold = check_threshold(quantity, current, last, rule.thresholds, state)
        if threshold is not None:
            parts.append(f"crossed {threshold}% threshold")
            state.record(Marker.threshold(quantity, threshold))

    if rule.time_remaining_enabled:
        mark = check_time_remaining(
            quantity, period.resets_at, rule.time_remaining_minutes, state, now
        )
        if mark is not None:
            parts.append(f"resets in < {format_time_remaining(mark)}")
            state.record(Marker.time_remaining(quantity, mark))

    state.last_notified[quantity] = current

    if not parts:
        return None
    return build_alert(quantity, current, parts)


def evaluate(
    snapshot: UsageSnapshot,
    settings: NotificationSettings,
    state: NotificationState,
    now: datetime | None = None,
) -> tuple[NotificationState, list[UsageAlert]]:
    """Decide which alerts fire for *snapshot*.

    Args:
        snapshot: The usage just fetched.
        settings: Notification rules.  When ``settings.enabled`` is
            ``False`` nothing is evaluated and *state* is returned as is.
        state: State after reset detection.  Not mutated.
        now: Reference instant for time-remaining checks.

    Returns:
        ``(new_state, alerts)``.  ``last_notified`` is updated for every
        quantity present in *snapshot*, whether anything fired or not.
        Absent quantities keep their previous state.
    """
    if not settings.enabled:
        return state, []

    now = now or datetime.now(UTC)
    new_state = state.model_copy(deep=True)
    alerts: list[UsageAlert] = []

    for quantity, period in snapshot.present():
        alert = _evaluate_quantity(quantity, period, settings.rule_for(quantity), new_state, now)
        if alert is not None:
            alerts.append(alert)

    return new_state, alerts


def detect_resets(
    snapshot: UsageSnapshot,
    state: NotificationState,
) -> tuple[NotificationState, list[Quantity]]:
    """Re-arm quantities whose utilization dropped by more than the reset threshold.

    For each such quantity ``last_notified`` goes back to ``0.0`` and all of
    its markers are removed.  Other quantities are untouched.

    Returns:
        ``(new_state, quantities_reset)``.  *state* is not mutated.
    """
    new_state = state.model_copy(deep=True)
    reset: list[Quantity] = []

    for quantity, period in snapshot.present():
        if new_state.last_for(quantity) - period.utilization > RESET_DROP_THRESHOLD:
            new_state.last_notified[quantity] = 0.0
            new_state.clear_quantity(quantity)
            reset.append(quantity)

    return new_state, reset
