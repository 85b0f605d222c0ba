"""Unit tests for the notification rule engine and reset detector.

Covers:
- :func:`check_interval` band crossing.
- :func:`check_threshold` ascending order and marker guard.
- :func:`check_time_remaining` descending order, truncated minutes, past and
  naive timestamps.
- :func:`evaluate` alert merging, state bookkeeping, idempotence, disabled
  settings, absent quantities.
- :func:`detect_resets` drop heuristic.
- :class:`Marker` encoding.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from usagewatch.core.models import (
    Marker,
    MarkerKind,
    NotificationRule,
    NotificationSettings,
    NotificationState,
    Quantity,
    UsagePeriod,
    UsageSnapshot,
)
from usagewatch.notifiers.rules import (
    RESET_DROP_THRESHOLD,
    check_interval,
    check_threshold,
    check_time_remaining,
    detect_resets,
    evaluate,
    format_time_remaining,
    minutes_until_reset,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _snapshot(
    five_hour: float | None = None,
    seven_day: float | None = None,
    *,
    resets_at: str | None = None,
) -> UsageSnapshot:
    def period(value: float | None) -> UsagePeriod | None:
        return None if value is None else UsagePeriod(utilization=value, resets_at=resets_at)

    return UsageSnapshot(five_hour=period(five_hour), seven_day=period(seven_day))


def _settings(**rule_kwargs: object) -> NotificationSettings:
    rule = NotificationRule(**rule_kwargs)
    return NotificationSettings(
        five_hour=rule,
        seven_day=rule.model_copy(),
        seven_day_sonnet=rule.model_copy(),
        seven_day_opus=rule.model_copy(),
    )


def _iso(delta: timedelta) -> str:
    return (NOW + delta).isoformat()


# ---------------------------------------------------------------------------
# Marker
# ---------------------------------------------------------------------------


class TestMarker:
    def test_threshold_encoding(self) -> None:
        assert Marker.threshold(Quantity.FIVE_HOUR, 80).encode() == "five_hour:80"

    def test_time_encoding(self) -> None:
        assert Marker.time_remaining(Quantity.SEVEN_DAY, 30).encode() == "seven_day:time:30"

    def test_decode(self) -> None:
        marker = Marker.decode("seven_day_opus:time:60")
        assert marker == Marker(Quantity.SEVEN_DAY_OPUS, MarkerKind.TIME_REMAINING, 60)

    @pytest.mark.parametrize("raw", ["", "five_hour", "bogus:80", "five_hour:x", "a:b:c:d"])
    def test_decode_malformed(self, raw: str) -> None:
        assert Marker.decode(raw) is None


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------


class TestCheckInterval:
    def test_new_band_fires(self) -> None:
        assert check_interval(35.0, 5.0, 10) == 30

    def test_same_band_is_quiet(self) -> None:
        assert check_interval(39.0, 31.0, 10) is None

    def test_zero_band_never_fires(self) -> None:
        assert check_interval(9.0, 0.0, 10) is None

    def test_non_positive_interval(self) -> None:
        assert check_interval(50.0, 0.0, 0) is None

    def test_decrease_is_quiet(self) -> None:
        assert check_interval(20.0, 45.0, 10) is None


class TestCheckThreshold:
    def test_lowest_crossed_threshold_first(self) -> None:
        state = NotificationState()
        assert check_threshold(Quantity.FIVE_HOUR, 95.0, 0.0, [90, 80], state) == 80

    def test_marker_suppresses(self) -> None:
        state = NotificationState()
        state.record(Marker.threshold(Quantity.FIVE_HOUR, 80))
        assert check_threshold(Quantity.FIVE_HOUR, 95.0, 0.0, [80, 90], state) == 90

    def test_not_crossed_from_above(self) -> None:
        state = NotificationState()
        assert check_threshold(Quantity.FIVE_HOUR, 85.0, 82.0, [80], state) is None


class TestTimeRemaining:
    def test_minutes_truncated(self) -> None:
        assert minutes_until_reset(_iso(timedelta(minutes=29, seconds=59)), NOW) == 29

    @pytest.mark.parametrize(
        "value",
        [None, "", "not a date", "2026-03-01T12:30:00", _iso(timedelta(minutes=-1))],
    )
    def test_unusable_timestamps(self, value: str | None) -> None:
        assert minutes_until_reset(value, NOW) is None

    def test_largest_reached_mark_first(self) -> None:
        state = NotificationState()
        mark = check_time_remaining(
            Quantity.FIVE_HOUR, _iso(timedelta(minutes=20)), [30, 60], state, NOW
        )
        assert mark == 60

    def test_next_mark_after_marker(self) -> None:
        state = NotificationState()
        state.record(Marker.time_remaining(Quantity.FIVE_HOUR, 60))
        mark = check_time_remaining(
            Quantity.FIVE_HOUR, _iso(timedelta(minutes=20)), [30, 60], state, NOW
        )
        assert mark == 30

    def test_mark_not_yet_reached(self) -> None:
        mark = check_time_remaining(
            Quantity.FIVE_HOUR, _iso(timedelta(hours=3)), [30, 60], NotificationState(), NOW
        )
        assert mark is None

    @pytest.mark.parametrize(("minutes", "text"), [(45, "45m"), (60, "1h"), (90, "1h 30m")])
    def test_format(self, minutes: int, text: str) -> None:
        assert format_time_remaining(minutes) == text


# ---------------------------------------------------------------------------
# evaluate
# ---------------------------------------------------------------------------


class TestEvaluate:
    def test_thresholds_fire_in_order_across_calls(self) -> None:
        settings = _settings(threshold_enabled=True, thresholds=[80, 90])
        state = NotificationState()

        state, alerts = evaluate(_snapshot(five_hour=85.0), settings, state, now=NOW)
        assert [a.body for a in alerts] == ["Usage crossed 80% threshold (85% used)"]
        assert alerts[0].title == "5 Hour Usage Alert"

        state, alerts = evaluate(_snapshot(five_hour=92.0), settings, state, now=NOW)
        assert [a.body for a in alerts] == ["Usage crossed 90% threshold (92% used)"]
        assert state.fired_thresholds == ["five_hour:80", "five_hour:90"]

    def test_interval_fires_once(self) -> None:
        settings = _settings(
            interval_enabled=True, interval_percent=10, threshold_enabled=False
        )
        state = NotificationState(last_notified={Quantity.FIVE_HOUR: 5.0})

        state, alerts = evaluate(_snapshot(five_hour=35.0), settings, state, now=NOW)
        assert [a.body for a in alerts] == ["Usage reached 30% (35% used)"]

        _, alerts = evaluate(_snapshot(five_hour=35.0), settings, state, now=NOW)
        assert alerts == []

    def test_repeated_evaluation_is_idempotent(self) -> None:
        settings = _settings(
            interval_enabled=True,
            threshold_enabled=True,
            time_remaining_enabled=True,
        )
        snapshot = _snapshot(five_hour=91.0, resets_at=_iso(timedelta(minutes=45)))
        state, first = evaluate(snapshot, settings, NotificationState(), now=NOW)
        assert first

        again, second = evaluate(snapshot, settings, state, now=NOW)
        assert second == []
        assert again == state

    def test_sub_checks_merge_into_one_alert(self) -> None:
        settings = _settings(
            interval_enabled=True,
            interval_percent=10,
            threshold_enabled=True,
            thresholds=[80],
            time_remaining_enabled=True,
            time_remaining_minutes=[30],
        )
        snapshot = _snapshot(five_hour=82.0, resets_at=_iso(timedelta(minutes=25)))
        state, alerts = evaluate(snapshot, settings, NotificationState(), now=NOW)

        assert len(alerts) == 1
        assert alerts[0].body == (
            "Usage reached 80% and crossed 80% threshold and resets in < 30m (82% used)"
        )
        assert state.fired_time_remaining == ["five_hour:time:30"]

    def test_input_state_not_mutated(self) -> None:
        settings = _settings(threshold_enabled=True, thresholds=[50])
        state = NotificationState()
        evaluate(_snapshot(five_hour=60.0), settings, state, now=NOW)
        assert state == NotificationState()

    def test_last_notified_updated_without_alert(self) -> None:
        settings = _settings(threshold_enabled=True, thresholds=[80])
        state, alerts = evaluate(_snapshot(five_hour=12.5), settings, NotificationState(), now=NOW)
        assert alerts == []
        assert state.last_for(Quantity.FIVE_HOUR) == 12.5

    def test_absent_quantity_keeps_state(self) -> None:
        settings = _settings(threshold_enabled=True, thresholds=[80])
        state = NotificationState(last_notified={Quantity.SEVEN_DAY: 44.0})
        new_state, _ = evaluate(_snapshot(five_hour=10.0), settings, state, now=NOW)
        assert new_state.last_for(Quantity.SEVEN_DAY) == 44.0

    def test_disabled_settings_return_state_unchanged(self) -> None:
        settings = _settings(threshold_enabled=True, thresholds=[10])
        settings.enabled = False
        state = NotificationState()
        new_state, alerts = evaluate(_snapshot(five_hour=99.0), settings, state, now=NOW)
        assert alerts == []
        assert new_state is state

    def test_quantities_evaluated_independently(self) -> None:
        settings = _settings(threshold_enabled=True, thresholds=[80])
        _, alerts = evaluate(
            _snapshot(five_hour=81.0, seven_day=85.0), settings, NotificationState(), now=NOW
        )
        assert [a.quantity for a in alerts] == [Quantity.FIVE_HOUR, Quantity.SEVEN_DAY]
        assert alerts[1].title == "7 Day Usage Alert"


# ---------------------------------------------------------------------------
# detect_resets
# ---------------------------------------------------------------------------


class TestDetectResets:
    def _fired_state(self, last: float) -> NotificationState:
        state = NotificationState(last_notified={Quantity.FIVE_HOUR: last})
        state.record(Marker.threshold(Quantity.FIVE_HOUR, 80))
        state.record(Marker.time_remaining(Quantity.FIVE_HOUR, 30))
        state.record(Marker.threshold(Quantity.SEVEN_DAY, 80))
        return state

    def test_large_drop_clears_quantity(self) -> None:
        state, reset = detect_resets(_snapshot(five_hour=10.0), self._fired_state(80.0))
        assert reset == [Quantity.FIVE_HOUR]
        assert state.last_for(Quantity.FIVE_HOUR) == 0.0
        assert state.fired_thresholds == ["seven_day:80"]
        assert state.fired_time_remaining == []

    def test_small_drop_keeps_state(self) -> None:
        original = self._fired_state(70.0)
        state, reset = detect_resets(_snapshot(five_hour=60.0), original)
        assert reset == []
        assert state == original

    def test_drop_of_exactly_threshold_is_not_reset(self) -> None:
        state = NotificationState(last_notified={Quantity.FIVE_HOUR: 50.0})
        _, reset = detect_resets(_snapshot(five_hour=50.0 - RESET_DROP_THRESHOLD), state)
        assert reset == []

    def test_rearmed_threshold_fires_again(self) -> None:
        settings = _settings(threshold_enabled=True, thresholds=[80])
        state, _ = evaluate(_snapshot(five_hour=85.0), settings, NotificationState(), now=NOW)

        state, _ = detect_resets(_snapshot(five_hour=5.0), state)
        state, alerts = evaluate(_snapshot(five_hour=5.0), settings, state, now=NOW)
        assert alerts == []

        _, alerts = evaluate(_snapshot(five_hour=81.0), settings, state, now=NOW)
        assert len(alerts) == 1

    def test_reset_drops_undecodable_markers_of_that_quantity(self) -> None:
        state = NotificationState(
            last_notified={Quantity.FIVE_HOUR: 90.0},
            fired_thresholds=["five_hour:80.5", "seven_day:80", "seven_day_opus:8x"],
            fired_time_remaining=["five_hour:time:soon"],
        )
        state, reset = detect_resets(_snapshot(five_hour=10.0), state)
        assert reset == [Quantity.FIVE_HOUR]
        assert state.fired_thresholds == ["seven_day:80", "seven_day_opus:8x"]
        assert state.fired_time_remaining == []

    def test_clear_quantity_keeps_unrelated_markers(self) -> None:
        state = NotificationState(fired_thresholds=["five_hour:80.5", "seven_day:80", "garbage"])
        state.clear_quantity(Quantity.FIVE_HOUR)
        assert state.fired_thresholds == ["seven_day:80", "garbage"]
