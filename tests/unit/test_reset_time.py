"""Unit tests for reset-time formatting."""

import pytest
from datetime import datetime, timedelta, timezone

from usage_sentinel.utils.reset_time import (
    CLOCK_PLACEHOLDER,
    parse_timestamp,
    relative_to_clock_time,
    relative_to_minutes,
    time_until,
)


NOW = datetime(2025, 11, 3, 12, 0, tzinfo=timezone.utc)


class TestTimeUntil:
    """Tests for remaining-time buckets."""

    def test_day_boundary(self):
        assert time_until(NOW + timedelta(minutes=1439), NOW) == "23h 59m"
        assert time_until(NOW + timedelta(minutes=1440), NOW) == "1d 0h"

    def test_hour_boundary(self):
        assert time_until(NOW + timedelta(minutes=59), NOW) == "59m"
        assert time_until(NOW + timedelta(minutes=60), NOW) == "1h 0m"

    def test_multi_day(self):
        assert time_until(NOW + timedelta(days=2, hours=5, minutes=30), NOW) == "2d 5h"

    def test_past_or_now_is_due(self):
        assert time_until(NOW, NOW) == "soon"
        assert time_until(NOW - timedelta(hours=1), NOW) == "soon"

    def test_iso_string_with_z(self):
        assert time_until("2025-11-03T14:30:00Z", NOW) == "2h 30m"

    def test_naive_values_are_utc(self):
        assert time_until(datetime(2025, 11, 3, 12, 45), NOW) == "45m"

    def test_unparseable_is_unknown(self):
        assert time_until(None, NOW) == "Unknown"
        assert time_until("not a date", NOW) == "Unknown"

    def test_seconds_are_truncated(self):
        assert time_until(NOW + timedelta(seconds=119), NOW) == "1m"


class TestParseTimestamp:
    """Tests for timestamp parsing."""

    def test_offsets_are_kept(self):
        parsed = parse_timestamp("2025-11-03T12:00:00+02:00")
        assert parsed == datetime(2025, 11, 3, 10, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "   ", 12345, "2025-13-45"])
    def test_invalid_values(self, value):
        assert parse_timestamp(value) is None


class TestRelativeToClockTime:
    """Tests for wall-clock reset rendering."""

    def test_hours_and_minutes(self):
        now = datetime(2025, 11, 3, 12, 0)
        assert relative_to_clock_time("2h 30m", now) == "14:30"

    def test_minutes_only(self):
        now = datetime(2025, 11, 3, 12, 0)
        assert relative_to_clock_time("45 min", now) == "12:45"

    def test_day_offsets_include_weekday(self):
        # 2025-11-03 is a Monday
        now = datetime(2025, 11, 3, 12, 0)
        assert relative_to_clock_time("1d 2h", now) == "Tue 4 14:00"

    def test_tolerates_surrounding_text(self):
        now = datetime(2025, 11, 3, 23, 30)
        assert relative_to_clock_time("about 1 hr 15 mins", now) == "00:45"

    def test_unparseable_gives_placeholder(self):
        now = datetime(2025, 11, 3, 12, 0)

        assert relative_to_clock_time("Unknown", now) == CLOCK_PLACEHOLDER
        assert relative_to_clock_time("", now) == CLOCK_PLACEHOLDER
        assert relative_to_clock_time(None, now) == CLOCK_PLACEHOLDER

    def test_relative_to_minutes(self):
        assert relative_to_minutes("1d 2h 3m") == 24 * 60 + 123
        assert relative_to_minutes("soon") is None
