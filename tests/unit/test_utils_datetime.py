"""
Tests for planhub/utils/datetime_utils.py

Covers timezone conversion to naive local time, deadline checks and the
minute arithmetic used by time tracking.
"""

import pytest
from datetime import datetime, timedelta
import pytz
from planhub.utils.datetime_utils import (
    get_local_tz,
    get_local_now,
    to_naive_local,
    is_overdue,
    is_due_within,
    minutes_between,
)


class TestGetLocalTz:
    """Tests for get_local_tz function."""

    def test_returns_timezone_object(self):
        """Test that get_local_tz returns a timezone object."""
        tz = get_local_tz("UTC")
        assert isinstance(tz, pytz.BaseTzInfo)

    def test_named_timezone(self):
        """Test that the named zone is returned."""
        assert get_local_tz("Asia/Bangkok").zone == "Asia/Bangkok"


class TestGetLocalNow:
    """Tests for get_local_now function."""

    def test_returns_naive_datetime(self):
        """Test that get_local_now returns naive datetime."""
        now = get_local_now("Europe/Berlin")
        assert isinstance(now, datetime)
        assert now.tzinfo is None

    def test_offsets_follow_timezone(self):
        """Test that two zones differ by their UTC offset."""
        utc = get_local_now("UTC")
        bangkok = get_local_now("Asia/Bangkok")
        delta = bangkok - utc
        assert timedelta(hours=6, minutes=59) < delta < timedelta(hours=7, minutes=1)


class TestToNaiveLocal:
    """Tests for to_naive_local function."""

    def test_none_returns_none(self):
        """Test that None input returns None."""
        assert to_naive_local(None, "UTC") is None

    def test_naive_datetime_unchanged(self):
        """Test that naive datetime passes through unchanged."""
        dt = datetime(2026, 1, 18, 12, 0, 0)
        result = to_naive_local(dt, "Asia/Bangkok")
        assert result == dt
        assert result.tzinfo is None

    def test_aware_converted_to_named_zone(self):
        """Test that an aware datetime lands on local wall time."""
        utc_dt = datetime(2026, 1, 18, 12, 0, 0, tzinfo=pytz.UTC)
        result = to_naive_local(utc_dt, "Asia/Bangkok")
        assert result == datetime(2026, 1, 18, 19, 0, 0)
        assert result.tzinfo is None

    def test_aware_other_timezone_converted(self):
        """Test that non-UTC timezone datetime is converted."""
        est = pytz.timezone('US/Eastern')
        est_dt = est.localize(datetime(2026, 1, 18, 12, 0, 0))
        result = to_naive_local(est_dt, "UTC")
        assert result == datetime(2026, 1, 18, 17, 0, 0)


class TestIsOverdue:
    """Tests for is_overdue function."""

    def test_none_never_overdue(self):
        assert is_overdue(None, datetime(2026, 1, 18, 12, 0, 0)) is False

    def test_past_deadline(self):
        now = datetime(2026, 1, 18, 12, 0, 0)
        assert is_overdue(now - timedelta(minutes=1), now) is True

    def test_future_deadline(self):
        now = datetime(2026, 1, 18, 12, 0, 0)
        assert is_overdue(now + timedelta(minutes=1), now) is False


class TestIsDueWithin:
    """Tests for is_due_within function."""

    def test_inside_window(self):
        now = datetime(2026, 1, 18, 12, 0, 0)
        assert is_due_within(now + timedelta(days=3), 7, now) is True

    def test_window_edges(self):
        now = datetime(2026, 1, 18, 12, 0, 0)
        assert is_due_within(now, 7, now) is True
        assert is_due_within(now + timedelta(days=7), 7, now) is True
        assert is_due_within(now + timedelta(days=7, seconds=1), 7, now) is False

    def test_past_is_not_upcoming(self):
        now = datetime(2026, 1, 18, 12, 0, 0)
        assert is_due_within(now - timedelta(hours=1), 7, now) is False

    def test_none(self):
        assert is_due_within(None, 7, datetime(2026, 1, 18, 12, 0, 0)) is False


class TestMinutesBetween:
    """Tests for minutes_between function."""

    @pytest.mark.parametrize("seconds,expected", [
        (0, 0),
        (59, 0),
        (60, 1),
        (90 * 60 + 30, 90),
    ])
    def test_whole_minutes(self, seconds, expected):
        start = datetime(2026, 1, 18, 9, 0, 0)
        assert minutes_between(start, start + timedelta(seconds=seconds)) == expected

    def test_never_negative(self):
        start = datetime(2026, 1, 18, 9, 0, 0)
        assert minutes_between(start, start - timedelta(hours=1)) == 0
