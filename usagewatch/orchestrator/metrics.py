"""Cumulative cross-cycle statistics for the refresh loop.

Tracks lifetime totals across all refresh cycles and provides two output
paths:

1. **Log summary**: :meth:`LifetimeStats.format_summary` returns a single
   line suitable for one ``logger.info()`` call.
2. **JSON stats file**: :func:`write_stats_file` serialises
   :meth:`LifetimeStats.as_dict` so operators can ``cat`` the file to see
   how the process is doing.

The stats file is rewritten after every cycle.  Write errors are logged at
WARNING level and never propagated.

Typical usage::

    stats = LifetimeStats()
    stats.record_cycle(PollOutcome.SUCCESS, alerts_sent=1, backoff_s=0)
    write_stats_file(stats, settings.stats_path_resolved)
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from usagewatch.core.models import PollOutcome

__all__ = [
    "LifetimeStats",
    "write_stats_file",
]

logger = logging.getLogger(__name__)


@dataclass
class LifetimeStats:
    """Cumulative statistics accumulated across all completed cycles.

    Attributes:
        cycles_run: Total number of completed cycles.
        outcomes: Cycle count per :class:`PollOutcome`.
        alerts_delivered: Alerts successfully handed to the notifier backend.
        resets_detected: Quota-window resets seen by the reset detector.
        last_success_at: UTC time of the last successful poll.
        current_backoff_s: Backoff in effect after the last cycle.
    """

    cycles_run: int = 0
    outcomes: dict[PollOutcome, int] = field(default_factory=lambda: dict.fromkeys(PollOutcome, 0))
    alerts_delivered: int = 0
    resets_detected: int = 0
    last_success_at: datetime | None = None
    current_backoff_s: int = 0

    _start_monotonic: float = field(default_factory=time.monotonic, repr=False)
    _started_at: datetime = field(default_factory=lambda: datetime.now(UTC), repr=False)

    @property
    def uptime_s(self) -> float:
        return time.monotonic() - self._start_monotonic

    def record_cycle(
        self,
        outcome: PollOutcome,
        *,
        alerts_sent: int = 0,
        resets: int = 0,
        backoff_s: int = 0,
    ) -> None:
        """Accumulate one finished cycle."""
        self.cycles_run += 1
        self.outcomes[outcome] += 1
        self.alerts_delivered += alerts_sent
        self.resets_detected += resets
        self.current_backoff_s = backoff_s
        if outcome is PollOutcome.SUCCESS:
            self.last_success_at = datetime.now(UTC)

    def format_summary(self) -> str:
        """Return a one-line lifetime summary.

        Example output::

            lifetime stats | uptime: 2h05m10s | cycles=25 ok=23 rate_limited=2
            other_error=0 alerts=3 resets=1 backoff=0s
        """
        hours, rem = divmod(int(self.uptime_s), 3600)
        minutes, seconds = divmod(rem, 60)
        return (
            f"lifetime stats | uptime: {hours}h{minutes:02d}m{seconds:02d}s | "
            f"cycles={self.cycles_run} ok={self.outcomes[PollOutcome.SUCCESS]} "
            f"rate_limited={self.outcomes[PollOutcome.RATE_LIMITED]} "
            f"other_error={self.outcomes[PollOutcome.OTHER_ERROR]} "
            f"alerts={self.alerts_delivered} resets={self.resets_detected} "
            f"backoff={self.current_backoff_s}s"
        )

    def as_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "started_at": self._started_at.isoformat(),
            "uptime_s": round(self.uptime_s, 1),
            "cycles_run": self.cycles_run,
            "outcomes": {str(k): v for k, v in self.outcomes.items()},
            "alerts_delivered": self.alerts_delivered,
            "resets_detected": self.resets_detected,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "current_backoff_s": self.current_backoff_s,
        }


def write_stats_file(stats: LifetimeStats, path: Path | str) -> None:
    """Write a JSON snapshot of *stats* to *path*.  Never raises on I/O errors."""
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(stats.as_dict(), fh, indent=2)
    except OSError:
        logger.warning("Failed to write stats file '%s'.", path, exc_info=True)
