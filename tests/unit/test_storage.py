"""Unit tests for the storage layer.

Covers:
- :func:`open_db`: schema bootstrap, idempotence, parent directory creation.
- :class:`HistoryRepository`: append, range queries, stats, cleanup, error
  wrapping.
- :class:`JsonStateStore`: round trip, defaults on missing or corrupt files,
  atomic save keeping the other key.
- :class:`FileCredentialStore`: save/load/delete and file permissions.
"""

from __future__ import annotations

import json
import os
import stat
import sys
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite
import pytest

from usagewatch.core.exceptions import StorageError
from usagewatch.core.models import (
    Marker,
    NotificationRule,
    NotificationSettings,
    NotificationState,
    Quantity,
    UsagePeriod,
    UsageSnapshot,
)
from usagewatch.storage import FileCredentialStore, HistoryRepository, JsonStateStore, open_db
from usagewatch.storage.history import MetricStats, range_hours

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


def _snapshot(five_hour: float | None, seven_day: float | None = None) -> UsageSnapshot:
    return UsageSnapshot(
        five_hour=(
            None
            if five_hour is None
            else UsagePeriod(utilization=five_hour, resets_at="2026-03-01T15:00:00+00:00")
        ),
        seven_day=None if seven_day is None else UsagePeriod(utilization=seven_day),
    )


@pytest.fixture()
async def conn(tmp_path: Path) -> AsyncIterator[aiosqlite.Connection]:
    connection = await open_db(tmp_path / "history.db")
    yield connection
    await connection.close()


@pytest.fixture()
def repo(conn: aiosqlite.Connection) -> HistoryRepository:
    return HistoryRepository(conn, clock=lambda: NOW)


# ---------------------------------------------------------------------------
# open_db
# ---------------------------------------------------------------------------


class TestOpenDb:
    async def test_creates_parent_dirs_and_table(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "usage.db"
        connection = await open_db(path)
        try:
            cursor = await connection.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='usage_history'"
            )
            assert await cursor.fetchone() is not None
        finally:
            await connection.close()
        assert path.exists()

    async def test_reopen_is_idempotent(self, tmp_path: Path) -> None:
        path = tmp_path / "usage.db"
        first = await open_db(path)
        await HistoryRepository(first).append_snapshot(_snapshot(10.0))
        await first.close()

        second = await open_db(path)
        try:
            cursor = await second.execute("SELECT COUNT(*) FROM usage_history")
            row = await cursor.fetchone()
            assert row[0] == 1
        finally:
            await second.close()

    async def test_in_memory(self) -> None:
        connection = await open_db(":memory:")
        await connection.close()


# ---------------------------------------------------------------------------
# HistoryRepository
# ---------------------------------------------------------------------------


class TestHistoryRepository:
    async def test_append_and_query(self, repo: HistoryRepository) -> None:
        row_id = await repo.append_snapshot(_snapshot(42.0, 10.0), at=NOW - timedelta(minutes=5))
        assert row_id > 0

        records = await repo.get_history(NOW - timedelta(hours=1), NOW)
        assert len(records) == 1
        record = records[0]
        assert record.utilization(Quantity.FIVE_HOUR) == 42.0
        assert record.utilization(Quantity.SEVEN_DAY) == 10.0
        assert record.utilization(Quantity.SEVEN_DAY_OPUS) is None
        assert record.five_hour_resets_at == "2026-03-01T15:00:00+00:00"

    async def test_history_ordered_ascending(self, repo: HistoryRepository) -> None:
        for minutes, value in ((10, 3.0), (30, 1.0), (20, 2.0)):
            await repo.append_snapshot(_snapshot(value), at=NOW - timedelta(minutes=minutes))

        records = await repo.get_history(NOW - timedelta(hours=1), NOW)
        assert [r.utilization(Quantity.FIVE_HOUR) for r in records] == [1.0, 2.0, 3.0]

    async def test_range_filters(self, repo: HistoryRepository) -> None:
        await repo.append_snapshot(_snapshot(1.0), at=NOW - timedelta(minutes=30))
        await repo.append_snapshot(_snapshot(2.0), at=NOW - timedelta(hours=3))
        await repo.append_snapshot(_snapshot(3.0), at=NOW - timedelta(days=2))

        assert len(await repo.get_history_by_range("1h")) == 1
        assert len(await repo.get_history_by_range("6h")) == 2
        assert len(await repo.get_history_by_range("7d")) == 3

    def test_unknown_range_defaults_to_day(self) -> None:
        assert range_hours("24h") == 24
        assert range_hours("30d") == 720
        assert range_hours("forever") == 24

    async def test_stats(self, repo: HistoryRepository) -> None:
        await repo.append_snapshot(_snapshot(10.0, 50.0), at=NOW - timedelta(hours=5))
        await repo.append_snapshot(_snapshot(20.0, 55.0), at=NOW - timedelta(hours=3))
        await repo.append_snapshot(_snapshot(34.0, 40.0), at=NOW - timedelta(hours=1))

        stats = await repo.get_stats("6h")
        assert stats.record_count == 3
        assert stats.period_hours == 6.0
        assert stats.five_hour == MetricStats(current=34.0, change=24.0, velocity=4.0)
        assert stats.seven_day.current == 40.0
        assert stats.seven_day.change == -10.0
        assert stats.seven_day.velocity is None
        assert stats.opus == MetricStats()

    async def test_stats_empty(self, repo: HistoryRepository) -> None:
        stats = await repo.get_stats("1h")
        assert stats.record_count == 0
        assert stats.five_hour.current is None

    async def test_cleanup(self, repo: HistoryRepository) -> None:
        await repo.append_snapshot(_snapshot(1.0), at=NOW - timedelta(days=40))
        await repo.append_snapshot(_snapshot(2.0), at=NOW - timedelta(days=31))
        await repo.append_snapshot(_snapshot(3.0), at=NOW - timedelta(days=1))

        assert await repo.cleanup_old_data(30) == 2
        remaining = await repo.get_history(NOW - timedelta(days=60), NOW)
        assert [r.utilization(Quantity.FIVE_HOUR) for r in remaining] == [3.0]

    async def test_errors_wrapped(self, tmp_path: Path) -> None:
        connection = await open_db(tmp_path / "x.db")
        repository = HistoryRepository(connection)
        await connection.execute("DROP TABLE usage_history")
        try:
            with pytest.raises(StorageError):
                await repository.append_snapshot(_snapshot(1.0))
        finally:
            await connection.close()


# ---------------------------------------------------------------------------
# JsonStateStore
# ---------------------------------------------------------------------------


class TestJsonStateStore:
    def test_defaults_when_missing(self, tmp_path: Path) -> None:
        store = JsonStateStore(tmp_path / "state.json")
        assert store.load_settings() == NotificationSettings()
        assert store.load_state() == NotificationState()

    def test_round_trip_keeps_both_keys(self, tmp_path: Path) -> None:
        store = JsonStateStore(tmp_path / "sub" / "state.json")
        settings = NotificationSettings(five_hour=NotificationRule(thresholds=[50, 75]))
        state = NotificationState(last_notified={Quantity.FIVE_HOUR: 61.0})
        state.record(Marker.threshold(Quantity.FIVE_HOUR, 50))

        store.save_settings(settings)
        store.save_state(state)

        reloaded = JsonStateStore(store.path)
        assert reloaded.load_settings() == settings
        assert reloaded.load_state() == state

        raw = json.loads(store.path.read_text(encoding="utf-8"))
        assert set(raw) == {"notification_settings", "notification_state"}
        assert raw["notification_state"]["fired_thresholds"] == ["five_hour:50"]
        assert not store.path.with_name("state.json.tmp").exists()

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"notification_state": {"last_notified": 5}}'])
    def test_corrupt_file_falls_back(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "state.json"
        path.write_text(content, encoding="utf-8")
        store = JsonStateStore(path)
        assert store.load_state() == NotificationState()
        assert store.load_settings() == NotificationSettings()

    def test_save_error_raises_storage_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        store = JsonStateStore(blocker / "state.json")
        with pytest.raises(StorageError):
            store.save_state(NotificationState())


# ---------------------------------------------------------------------------
# FileCredentialStore
# ---------------------------------------------------------------------------


class TestFileCredentialStore:
    def test_save_load_delete(self, tmp_path: Path) -> None:
        store = FileCredentialStore(tmp_path / "creds" / "credentials.json")
        assert store.load() is None

        store.save("org-1", "token-abc")
        creds = store.load()
        assert creds is not None
        assert (creds.organization_id, creds.session_token) == ("org-1", "token-abc")

        store.delete()
        assert store.load() is None
        store.delete()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_is_private(self, tmp_path: Path) -> None:
        path = tmp_path / "credentials.json"
        FileCredentialStore(path).save("org-1", "token-abc")
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_corrupt_file_reads_as_none(self, tmp_path: Path) -> None:
        path = tmp_path / "credentials.json"
        path.write_text('{"organization_id": 1}', encoding="utf-8")
        assert FileCredentialStore(path).load() is None
