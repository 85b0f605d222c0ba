"""Refresh timing: the hourly-aligned trigger and the per-cycle refresh plan.

Two triggers decide when the next poll happens:

* **Regular interval**: ``interval_minutes`` after the current poll.
* **Hourly alignment** (optional): a few seconds after the next full UTC
  hour, plus random jitter so many clients do not hit the endpoint at the
  same instant.  Whichever trigger comes first wins.

An active backoff overrides both.

Everything here is pure except :func:`current_hourly_delay`, a thin wrapper
that reads the clock and draws the jitter.

Typical usage::

    from usagewatch.orchestrator.schedule import plan_next_refresh

    plan = plan_next_refresh(schedule, backoff_s=0, now_ms=now_ms,
                             secondary_delay_s=current_hourly_delay(True))
    await asyncio.sleep(plan.wait_s)
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final

from usagewatch.core.models import ScheduleConfig

__all__ = [
    "HOURLY_GAP_S",
    "HOURLY_JITTER_MAX_S",
    "SECONDS_PER_HOUR",
    "RefreshPlan",
    "hourly_refresh_delay",
    "current_hourly_delay",
    "next_refresh_at",
    "plan_next_refresh",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SECONDS_PER_HOUR: Final[int] = 3600

#: Seconds past the full hour before the aligned refresh fires.
HOURLY_GAP_S: Final[int] = 5

#: Upper bound (inclusive) of the random jitter added to the aligned refresh.
HOURLY_JITTER_MAX_S: Final[int] = 55


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def hourly_refresh_delay(
    seconds_into_hour: int,
    jitter_s: int,
    enabled: bool = True,
) -> int | None:
    """Seconds until the next hourly-aligned refresh.

    Args:
        seconds_into_hour: ``minute * 60 + second`` of the current UTC time.
        jitter_s: Extra delay in ``[0, HOURLY_JITTER_MAX_S]``.
        enabled: Whether hourly alignment is active.

    Returns:
        The delay in seconds, or ``None`` when *enabled* is ``False``.

    Example::

        >>> hourly_refresh_delay(0, 0)
        3605
        >>> hourly_refresh_delay(3600 - 30, 0)
        35
    """
    if not enabled:
        return None
    return SECONDS_PER_HOUR - seconds_into_hour + HOURLY_GAP_S + jitter_s


def next_refresh_at(
    enabled: bool,
    interval_minutes: int,
    now_ms: int,
    secondary_delay_s: int | None,
) -> int | None:
    """Unix timestamp (ms) of the next scheduled refresh, or ``None`` if disabled.

    The regular interval is compared with the secondary trigger when one is
    given; the earlier instant wins.
    """
    if not enabled:
        return None
    regular = now_ms + interval_minutes * 60_000
    if secondary_delay_s is None:
        return regular
    return min(regular, now_ms + secondary_delay_s * 1000)


@dataclass(frozen=True, slots=True)
class RefreshPlan:
    """When the loop sleeps until, computed once per cycle.

    Attributes:
        wait_s: Seconds the loop sleeps before the next cycle.
        next_refresh_at_ms: Instant reported to observers; ``None`` when
            automatic refresh is disabled.
    """

    wait_s: float
    next_refresh_at_ms: int | None


def plan_next_refresh(
    schedule: ScheduleConfig,
    backoff_s: int,
    now_ms: int,
    secondary_delay_s: int | None,
) -> RefreshPlan:
    """Combine backoff, interval and hourly trigger into one :class:`RefreshPlan`.

    An active backoff (``backoff_s > 0``) overrides both triggers, and the
    reported timestamp then matches the backoff wait exactly.

    Args:
        schedule: Current refresh configuration.
        backoff_s: Backoff chosen for this cycle.
        now_ms: Current Unix time in milliseconds.
        secondary_delay_s: Hourly-aligned delay, or ``None`` when disabled.
    """
    if not schedule.enabled:
        return RefreshPlan(wait_s=0.0, next_refresh_at_ms=None)

    if backoff_s > 0:
        return RefreshPlan(wait_s=float(backoff_s), next_refresh_at_ms=now_ms + backoff_s * 1000)

    at_ms = next_refresh_at(True, schedule.interval_minutes, now_ms, secondary_delay_s)
    assert at_ms is not None
    return RefreshPlan(wait_s=(at_ms - now_ms) / 1000, next_refresh_at_ms=at_ms)


# ---------------------------------------------------------------------------
# Clock-reading wrapper
# ---------------------------------------------------------------------------


def current_hourly_delay(
    enabled: bool,
    *,
    clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    rng: random.Random | None = None,
) -> int | None:
    """Hourly delay for the current UTC time with a freshly drawn jitter.

    Args:
        enabled: Whether hourly alignment is active.
        clock: Returns the current aware datetime (override in tests).
        rng: Random source for the jitter (override in tests).
    """
    if not enabled:
        return None
    now = clock().astimezone(UTC)
    jitter = (rng or random).randint(0, HOURLY_JITTER_MAX_S)
    return hourly_refresh_delay(now.minute * 60 + now.second, jitter)
