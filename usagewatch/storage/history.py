"""Usage history repository.

Provides :class:`HistoryRepository`, the single data-access object for the
``usage_history`` table: one row per successful poll, queried back for
charts, trend statistics, and retention cleanup.

Timestamps are stored as ISO-8601 UTC strings with a fixed width, so range
queries can compare them as text.

Typical usage::

    from usagewatch.storage.database import open_db
    from usagewatch.storage.history import HistoryRepository

    conn = await open_db(path)
    repo = HistoryRepository(conn)
    await repo.append_snapshot(snapshot)
    stats = await repo.get_stats("24h")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Final

import aiosqlite
from pydantic import BaseModel

from usagewatch.core.exceptions import StorageError
from usagewatch.core.models import Quantity, UsageSnapshot

__all__ = [
    "RANGE_HOURS",
    "range_hours",
    "HistoryRecord",
    "MetricStats",
    "UsageStats",
    "HistoryRepository",
]

logger = logging.getLogger(__name__)

#: Supported range presets and their length in hours.
RANGE_HOURS: Final[dict[str, int]] = {
    "1h": 1,
    "6h": 6,
    "24h": 24,
    "7d": 7 * 24,
    "30d": 30 * 24,
}

_DEFAULT_RANGE_HOURS: Final[int] = 24

#: Column prefix used for each quantity.
_COLUMN_PREFIX: Final[dict[Quantity, str]] = {
    Quantity.FIVE_HOUR: "five_hour",
    Quantity.SEVEN_DAY: "seven_day",
    Quantity.SEVEN_DAY_SONNET: "sonnet",
    Quantity.SEVEN_DAY_OPUS: "opus",
}

_SELECT_COLUMNS: Final[str] = """\
id, timestamp,
five_hour_utilization, five_hour_resets_at,
seven_day_utilization, seven_day_resets_at,
sonnet_utilization, sonnet_resets_at,
opus_utilization, opus_resets_at"""


def range_hours(range_key: str) -> int:
    """Hours covered by *range_key*; unknown keys fall back to 24."""
    return RANGE_HOURS.get(range_key, _DEFAULT_RANGE_HOURS)


def _format_ts(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class HistoryRecord(BaseModel):
    """One stored poll."""

    id: int
    timestamp: str
    five_hour_utilization: float | None = None
    five_hour_resets_at: str | None = None
    seven_day_utilization: float | None = None
    seven_day_resets_at: str | None = None
    sonnet_utilization: float | None = None
    sonnet_resets_at: str | None = None
    opus_utilization: float | None = None
    opus_resets_at: str | None = None

    def utilization(self, quantity: Quantity) -> float | None:
        return getattr(self, f"{_COLUMN_PREFIX[quantity]}_utilization")


class MetricStats(BaseModel):
    """Trend of one quantity over a range.

    Attributes:
        current: Utilization in the newest record.
        change: Newest minus oldest utilization.
        velocity: ``change / period_hours`` in points per hour; only set
            when usage grew or stayed flat.
    """

    current: float | None = None
    change: float | None = None
    velocity: float | None = None

    @classmethod
    def from_values(
        cls,
        first: float | None,
        last: float | None,
        period_hours: float,
    ) -> MetricStats:
        change = last - first if first is not None and last is not None else None
        velocity = None
        if change is not None and change >= 0 and period_hours > 0:
            velocity = change / period_hours
        return cls(current=last, change=change, velocity=velocity)


class UsageStats(BaseModel):
    five_hour: MetricStats
    seven_day: MetricStats
    sonnet: MetricStats
    opus: MetricStats
    record_count: int
    period_hours: float


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class HistoryRepository:
    """Data-access object for the ``usage_history`` table.

    It owns no connection lifecycle: the caller supplies an open
    :class:`aiosqlite.Connection` (see
    :func:`~usagewatch.storage.database.open_db`) and closes it when done.

    Every method wraps :class:`aiosqlite.Error` in
    :class:`~usagewatch.core.exceptions.StorageError`.

    Args:
        conn: Open, configured connection.
        clock: Returns the current aware datetime (override in tests).
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._conn = conn
        self._clock = clock or (lambda: datetime.now(UTC))

    def _now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Write helpers
    # ------------------------------------------------------------------

    async def append_snapshot(
        self,
        snapshot: UsageSnapshot,
        *,
        at: datetime | None = None,
    ) -> int:
        """Store *snapshot* and return the new row ID.

        Args:
            snapshot: Poll result to persist.
            at: Timestamp of the poll; defaults to now.

        Raises:
            StorageError: On any database error.
        """
        values: list[object] = [_format_ts(at or self._now())]
        for quantity in Quantity:
            period = snapshot.get(quantity)
            values.append(period.utilization if period else None)
            values.append(period.resets_at if period else None)

        try:
            cursor = await self._conn.execute(
                """
                INSERT INTO usage_history (
                    timestamp,
                    five_hour_utilization, five_hour_resets_at,
                    seven_day_utilization, seven_day_resets_at,
                    sonnet_utilization, sonnet_resets_at,
                    opus_utilization, opus_resets_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                values,
            )
            await self._conn.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to save usage snapshot: {exc}") from exc

        row_id = cursor.lastrowid or 0
        logger.debug("Stored usage snapshot (id=%d).", row_id)
        return row_id

    async def cleanup_old_data(self, retention_days: int) -> int:
        """Delete rows older than *retention_days* and return how many went."""
        cutoff = _format_ts(self._now() - timedelta(days=retention_days))
        try:
            cursor = await self._conn.execute(
                "DELETE FROM usage_history WHERE timestamp < ?",
                (cutoff,),
            )
            await self._conn.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to clean up history: {exc}") from exc

        deleted = cursor.rowcount
        logger.info("Deleted %d history row(s) older than %d day(s).", deleted, retention_days)
        return deleted

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_history(self, start: datetime, end: datetime) -> list[HistoryRecord]:
        """Return records with ``start <= timestamp <= end``, oldest first."""
        rows = await self._fetch_all(
            f"SELECT {_SELECT_COLUMNS} FROM usage_history "
            "WHERE timestamp >= ? AND timestamp <= ? ORDER BY timestamp ASC",
            (_format_ts(start), _format_ts(end)),
        )
        return [HistoryRecord(**dict(row)) for row in rows]

    async def get_history_by_range(self, range_key: str) -> list[HistoryRecord]:
        """Return records for a preset range (``1h``, ``6h``, ``24h``, ``7d``, ``30d``)."""
        now = self._now()
        return await self.get_history(now - timedelta(hours=range_hours(range_key)), now)

    async def get_stats(self, range_key: str) -> UsageStats:
        """Compute per-quantity trend statistics over a preset range."""
        period_hours = range_hours(range_key)
        now = self._now()
        bounds = (_format_ts(now - timedelta(hours=period_hours)), _format_ts(now))
        where = "WHERE timestamp >= ? AND timestamp <= ?"

        first_rows = await self._fetch_all(
            f"SELECT {_SELECT_COLUMNS} FROM usage_history {where} "
            "ORDER BY timestamp ASC LIMIT 1",
            bounds,
        )
        last_rows = await self._fetch_all(
            f"SELECT {_SELECT_COLUMNS} FROM usage_history {where} "
            "ORDER BY timestamp DESC LIMIT 1",
            bounds,
        )
        count_rows = await self._fetch_all(
            f"SELECT COUNT(*) FROM usage_history {where}",
            bounds,
        )

        first = HistoryRecord(**dict(first_rows[0])) if first_rows else None
        last = HistoryRecord(**dict(last_rows[0])) if last_rows else None

        def metric(quantity: Quantity) -> MetricStats:
            return MetricStats.from_values(
                first.utilization(quantity) if first else None,
                last.utilization(quantity) if last else None,
                float(period_hours),
            )

        return UsageStats(
            five_hour=metric(Quantity.FIVE_HOUR),
            seven_day=metric(Quantity.SEVEN_DAY),
            sonnet=metric(Quantity.SEVEN_DAY_SONNET),
            opus=metric(Quantity.SEVEN_DAY_OPUS),
            record_count=count_rows[0][0] if count_rows else 0,
            period_hours=float(period_hours),
        )

    async def _fetch_all(self, sql: str, params: tuple[object, ...]) -> list[aiosqlite.Row]:
        try:
            cursor = await self._conn.execute(sql, params)
            return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise StorageError(f"History query failed: {exc}") from exc
