"""usagewatch core domain models.

This module defines the usage snapshot returned by the metering endpoint, the
notification rule/settings/state types, and the events published by the
refresh loop.  Everything the orchestrator, storage, and notifier layers pass
between each other lives here.

Typical usage::

    from usagewatch.core.models import Quantity, UsageSnapshot

    snapshot = UsageSnapshot.model_validate(
        {"five_hour": {"utilization": 42.0, "resets_at": "2026-01-01T05:00:00Z"}}
    )
    snapshot.get(Quantity.FIVE_HOUR).utilization   # 42.0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "Quantity",
    "PollOutcome",
    "MarkerKind",
    "Marker",
    "ScheduleConfig",
    "UsagePeriod",
    "UsageSnapshot",
    "NotificationRule",
    "NotificationSettings",
    "NotificationState",
    "UsageAlert",
    "UsageUpdated",
    "UsageError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Quantity(StrEnum):
    """The four metered usage quantities.

    The enum value doubles as the JSON key in the usage payload and as the
    prefix of every notification marker string.
    """

    FIVE_HOUR = "five_hour"
    SEVEN_DAY = "seven_day"
    SEVEN_DAY_SONNET = "seven_day_sonnet"
    SEVEN_DAY_OPUS = "seven_day_opus"

    @property
    def label(self) -> str:
        """Human-readable label used in alert titles."""
        return _QUANTITY_LABELS[self]


_QUANTITY_LABELS: dict[Quantity, str] = {
    Quantity.FIVE_HOUR: "5 Hour",
    Quantity.SEVEN_DAY: "7 Day",
    Quantity.SEVEN_DAY_SONNET: "Sonnet (7 Day)",
    Quantity.SEVEN_DAY_OPUS: "Opus (7 Day)",
}


class PollOutcome(StrEnum):
    """Classification of a single poll attempt, consumed by the backoff calculator."""

    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    OTHER_ERROR = "other_error"
    NO_CREDENTIALS = "no_credentials"


class MarkerKind(StrEnum):
    THRESHOLD = "threshold"
    TIME_REMAINING = "time"


# ---------------------------------------------------------------------------
# Notification markers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Marker:
    """Typed key recording that a one-shot notification has fired.

    Persisted as a flat string: ``"five_hour:80"`` for a threshold marker and
    ``"five_hour:time:30"`` for a time-remaining marker.
    """

    quantity: Quantity
    kind: MarkerKind
    value: int

    @classmethod
    def threshold(cls, quantity: Quantity, percent: int) -> Marker:
        return cls(quantity, MarkerKind.THRESHOLD, percent)

    @classmethod
    def time_remaining(cls, quantity: Quantity, minutes: int) -> Marker:
        return cls(quantity, MarkerKind.TIME_REMAINING, minutes)

    def encode(self) -> str:
        if self.kind is MarkerKind.THRESHOLD:
            return f"{self.quantity}:{self.value}"
        return f"{self.quantity}:{MarkerKind.TIME_REMAINING}:{self.value}"

    @classmethod
    def decode(cls, raw: str) -> Marker | None:
        """Parse a persisted marker string; return ``None`` if it is malformed."""
        parts = raw.split(":")
        try:
            if len(parts) == 2:
                return cls(Quantity(parts[0]), MarkerKind.THRESHOLD, int(parts[1]))
            if len(parts) == 3 and parts[1] == MarkerKind.TIME_REMAINING:
                return cls(Quantity(parts[0]), MarkerKind.TIME_REMAINING, int(parts[2]))
        except ValueError:
            return None
        return None


# ---------------------------------------------------------------------------
# Refresh configuration
# ---------------------------------------------------------------------------


class ScheduleConfig(BaseModel):
    """Refresh schedule, read-only to the orchestrator.

    Attributes:
        enabled: Whether automatic polling is on.
        interval_minutes: Regular polling interval.
        hourly_align_enabled: Whether the hourly-aligned secondary trigger
            is active.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    interval_minutes: int = Field(default=5, ge=1)
    hourly_align_enabled: bool = False


# ---------------------------------------------------------------------------
# Usage data
# ---------------------------------------------------------------------------


class UsagePeriod(BaseModel):
    """Utilization of one quantity and the instant its window resets."""

    model_config = ConfigDict(frozen=True)

    utilization: float = Field(..., allow_inf_nan=False, description="Percentage used, usually 0-100.")
    resets_at: str | None = Field(None, description="ISO-8601 reset timestamp.")


class UsageSnapshot(BaseModel):
    """One poll result.  Quantities the account does not meter are ``None``.

    Unknown keys in the upstream payload are ignored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    five_hour: UsagePeriod | None = None
    seven_day: UsagePeriod | None = None
    seven_day_sonnet: UsagePeriod | None = None
    seven_day_opus: UsagePeriod | None = None

    def get(self, quantity: Quantity) -> UsagePeriod | None:
        return getattr(self, quantity.value)

    def present(self) -> list[tuple[Quantity, UsagePeriod]]:
        """Return ``(quantity, period)`` pairs for the quantities in this snapshot."""
        return [(q, p) for q in Quantity if (p := self.get(q)) is not None]


# ---------------------------------------------------------------------------
# Notification settings and state
# ---------------------------------------------------------------------------


class NotificationRule(BaseModel):
    """Which alert kinds are active for one quantity, and their parameters."""

    interval_enabled: bool = False
    interval_percent: int = Field(default=10, ge=0)
    threshold_enabled: bool = True
    thresholds: list[int] = Field(default_factory=lambda: [80, 90])
    time_remaining_enabled: bool = False
    time_remaining_minutes: list[int] = Field(default_factory=lambda: [30, 60])


class NotificationSettings(BaseModel):
    """Global switch plus one :class:`NotificationRule` per quantity."""

    enabled: bool = True
    five_hour: NotificationRule = Field(default_factory=NotificationRule)
    seven_day: NotificationRule = Field(default_factory=NotificationRule)
    seven_day_sonnet: NotificationRule = Field(default_factory=NotificationRule)
    seven_day_opus: NotificationRule = Field(default_factory=NotificationRule)

    def rule_for(self, quantity: Quantity) -> NotificationRule:
        return getattr(self, quantity.value)


class NotificationState(BaseModel):
    """What has already been notified, persisted across restarts.

    Attributes:
        last_notified: Utilization seen at the end of the last evaluated
            cycle, per quantity.  Missing entries read as ``0.0``.
        fired_thresholds: Encoded threshold markers (``"<q>:<percent>"``).
        fired_time_remaining: Encoded time markers (``"<q>:time:<minutes>"``).
    """

    last_notified: dict[Quantity, float] = Field(default_factory=dict)
    fired_thresholds: list[str] = Field(default_factory=list)
    fired_time_remaining: list[str] = Field(default_factory=list)

    def last_for(self, quantity: Quantity) -> float:
        return self.last_notified.get(quantity, 0.0)

    def _bucket(self, marker: Marker) -> list[str]:
        if marker.kind is MarkerKind.THRESHOLD:
            return self.fired_thresholds
        return self.fired_time_remaining

    def has_fired(self, marker: Marker) -> bool:
        return marker.encode() in self._bucket(marker)

    def record(self, marker: Marker) -> None:
        """Add *marker* unless it is already present."""
        bucket = self._bucket(marker)
        encoded = marker.encode()
        if encoded not in bucket:
            bucket.append(encoded)

    def clear_quantity(self, quantity: Quantity) -> None:
        """Remove every marker of *quantity* from both marker lists."""

        def keep(raw: str) -> bool:
            marker = Marker.decode(raw)
            if marker is None:
                return not raw.startswith(f"{quantity.value}:")
            return marker.quantity is not quantity

        self.fired_thresholds = [m for m in self.fired_thresholds if keep(m)]
        self.fired_time_remaining = [m for m in self.fired_time_remaining if keep(m)]


# ---------------------------------------------------------------------------
# Alerts and events
# ---------------------------------------------------------------------------


class UsageAlert(BaseModel):
    """A merged alert for one quantity, ready for delivery."""

    model_config = ConfigDict(frozen=True)

    quantity: Quantity
    title: str
    body: str


class UsageUpdated(BaseModel):
    """Published after a successful poll.

    ``next_refresh_at_ms`` is a Unix timestamp in milliseconds, or ``None``
    when automatic refresh is disabled.
    """

    model_config = ConfigDict(frozen=True)

    snapshot: UsageSnapshot
    next_refresh_at_ms: int | None = None


class UsageError(BaseModel):
    """Published after a failed poll, with a user-facing message."""

    model_config = ConfigDict(frozen=True)

    message: str
    next_refresh_at_ms: int | None = None
