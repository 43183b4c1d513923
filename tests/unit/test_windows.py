"""
Tests para la resolución de ventanas de tiempo.
"""

from datetime import datetime, timedelta, timezone

import pytest

from config.constants import TimeRange
from src.analytics.windows import (
    TimeWindow,
    aggregation_level_for,
    daily_windows,
    resolve_comparison_window,
    resolve_window,
    shift,
)
from src.utils.errors import InvalidRequestError

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class TestTimeWindow:
    """Tests para TimeWindow."""

    def test_previous_has_same_duration(self):
        window = TimeWindow(NOW - timedelta(days=7), NOW)
        previous = window.previous()

        assert previous.end == window.start
        assert previous.duration == window.duration

    def test_start_must_precede_end(self):
        with pytest.raises(InvalidRequestError):
            TimeWindow(NOW, NOW)

    def test_to_dict(self):
        window = TimeWindow(NOW - timedelta(hours=1), NOW)
        assert window.to_dict() == {
            "start": "2024-06-15T11:00:00+00:00",
            "end": "2024-06-15T12:00:00+00:00",
        }


class TestResolveWindow:
    """Tests para resolve_window."""

    @pytest.mark.parametrize("time_range,duration", [
        (TimeRange.HOUR, timedelta(hours=1)),
        (TimeRange.DAY, timedelta(hours=24)),
        (TimeRange.WEEK, timedelta(days=7)),
        (TimeRange.MONTH, timedelta(days=30)),
        (TimeRange.QUARTER, timedelta(days=90)),
        (TimeRange.YEAR, timedelta(days=365)),
    ])
    def test_named_ranges_end_now(self, time_range, duration):
        window = resolve_window(time_range, None, None, NOW)

        assert window.end == NOW
        assert window.duration == duration

    def test_explicit_bounds_win(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 1, 10, tzinfo=timezone.utc)

        window = resolve_window(TimeRange.MONTH, start, end, NOW)

        assert (window.start, window.end) == (start, end)

    def test_only_start(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        window = resolve_window(TimeRange.WEEK, start, None, NOW)

        assert window.end == start + timedelta(days=7)

    def test_only_end(self):
        end = datetime(2024, 1, 10, tzinfo=timezone.utc)
        window = resolve_window(TimeRange.DAY, None, end, NOW)

        assert window.start == end - timedelta(hours=24)

    @pytest.mark.parametrize("start,end", [
        (None, None),
        (datetime(2024, 1, 1, tzinfo=timezone.utc), None),
        (None, datetime(2024, 1, 1, tzinfo=timezone.utc)),
    ])
    def test_custom_requires_both_bounds(self, start, end):
        with pytest.raises(InvalidRequestError):
            resolve_window(TimeRange.CUSTOM, start, end, NOW)

    def test_start_after_end(self):
        with pytest.raises(InvalidRequestError):
            resolve_window(
                TimeRange.CUSTOM,
                datetime(2024, 2, 1, tzinfo=timezone.utc),
                datetime(2024, 1, 1, tzinfo=timezone.utc),
                NOW,
            )


class TestComparisonWindow:
    """Tests para resolve_comparison_window."""

    def test_without_bounds_ends_at_current_start(self):
        current = resolve_window(TimeRange.MONTH, None, None, NOW)
        comparison = resolve_comparison_window(TimeRange.YEAR, None, None, current)

        assert comparison.end == current.start
        assert comparison.duration == timedelta(days=365)

    def test_explicit_bounds(self):
        current = resolve_window(TimeRange.MONTH, None, None, NOW)
        start = datetime(2023, 5, 1, tzinfo=timezone.utc)
        end = datetime(2023, 6, 1, tzinfo=timezone.utc)

        comparison = resolve_comparison_window(TimeRange.CUSTOM, start, end, current)

        assert (comparison.start, comparison.end) == (start, end)

    def test_custom_without_bounds(self):
        current = resolve_window(TimeRange.MONTH, None, None, NOW)

        with pytest.raises(InvalidRequestError):
            resolve_comparison_window(TimeRange.CUSTOM, None, None, current)


class TestAggregationLevel:
    """Tests para aggregation_level_for."""

    def test_named_ranges(self):
        window = TimeWindow(NOW - timedelta(days=1), NOW)

        assert aggregation_level_for(TimeRange.DAY, window) == "hour"
        assert aggregation_level_for(TimeRange.YEAR, window) == "month"

    @pytest.mark.parametrize("duration,level", [
        (timedelta(minutes=30), "minute"),
        (timedelta(days=3), "day"),
        (timedelta(days=60), "week"),
        (timedelta(days=200), "month"),
        (timedelta(days=900), "month"),
    ])
    def test_custom_uses_window_length(self, duration, level):
        window = TimeWindow(NOW - duration, NOW)
        assert aggregation_level_for(TimeRange.CUSTOM, window) == level


class TestDailyWindows:
    """Tests para daily_windows."""

    def test_consecutive_windows(self):
        windows = daily_windows(NOW, 3)

        assert len(windows) == 3
        assert windows[-1].end == NOW
        assert windows[0].start == NOW - timedelta(days=3)
        for earlier, later in zip(windows, windows[1:]):
            assert earlier.end == later.start


class TestOutOfRangeDates:
    """Desplazamientos que salen del rango de datetime."""

    EARLY = datetime(1, 1, 5, tzinfo=timezone.utc)
    LATE = datetime(9999, 12, 20, tzinfo=timezone.utc)

    def test_shift(self):
        assert shift(NOW, -timedelta(days=1)) == NOW - timedelta(days=1)

    def test_previous_before_min(self):
        window = TimeWindow(self.EARLY, datetime(1, 2, 1, tzinfo=timezone.utc))

        with pytest.raises(InvalidRequestError):
            window.previous()

    def test_only_start_after_max(self):
        with pytest.raises(InvalidRequestError):
            resolve_window(TimeRange.MONTH, self.LATE, None, NOW)

    def test_only_end_before_min(self):
        with pytest.raises(InvalidRequestError):
            resolve_window(TimeRange.MONTH, None, self.EARLY, NOW)

    def test_named_range_from_early_clock(self):
        with pytest.raises(InvalidRequestError):
            resolve_window(TimeRange.YEAR, None, None, self.EARLY)

    def test_comparison_before_min(self):
        current = TimeWindow(
            datetime(1, 6, 1, tzinfo=timezone.utc),
            datetime(1, 7, 1, tzinfo=timezone.utc),
        )

        with pytest.raises(InvalidRequestError):
            resolve_comparison_window(TimeRange.YEAR, None, None, current)
