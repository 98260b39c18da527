"""Tests for time reference parsing and age formatting."""

from datetime import datetime, timedelta, timezone

import pytest

from thoughtspace.timeutil import format_age, parse_since


NOW = datetime(2026, 3, 15, 14, 30, tzinfo=timezone.utc)


class TestParseSince:
    """Tests for parse_since()."""

    def test_today(self):
        """"today" is midnight UTC of the current day."""
        assert parse_since("today", now=NOW) == datetime(2026, 3, 15, tzinfo=timezone.utc)

    def test_yesterday(self):
        """"yesterday" is midnight of the previous day."""
        assert parse_since("Yesterday", now=NOW) == datetime(2026, 3, 14, tzinfo=timezone.utc)

    @pytest.mark.parametrize("ref, delta", [
        ("90 minutes ago", timedelta(minutes=90)),
        ("1 hour ago", timedelta(hours=1)),
        ("3 days ago", timedelta(days=3)),
        ("2 weeks ago", timedelta(weeks=2)),
        ("last week", timedelta(weeks=1)),
        ("last day", timedelta(days=1)),
    ])
    def test_relative(self, ref, delta):
        """"N units ago" and "last unit" subtract from now."""
        assert parse_since(ref, now=NOW) == NOW - delta

    def test_months_are_calendar_months(self):
        """Months step back by calendar month."""
        assert parse_since("1 month ago", now=NOW) == datetime(2026, 2, 15, 14, 30, tzinfo=timezone.utc)

    def test_absolute_date_is_utc(self):
        """A bare date is midnight UTC."""
        assert parse_since("2026-01-15", now=NOW) == datetime(2026, 1, 15, tzinfo=timezone.utc)

    def test_absolute_with_offset(self):
        """Offsets are converted to UTC."""
        result = parse_since("2026-01-15T10:00:00+02:00", now=NOW)
        assert result == datetime(2026, 1, 15, 8, 0, tzinfo=timezone.utc)

    def test_garbage(self):
        """Unrecognised references raise ValueError."""
        with pytest.raises(ValueError):
            parse_since("the day after never", now=NOW)


class TestFormatAge:
    """Tests for format_age()."""

    @pytest.mark.parametrize("delta, expected", [
        (timedelta(seconds=2), "just now"),
        (timedelta(seconds=30), "30 seconds ago"),
        (timedelta(minutes=1), "1 minute ago"),
        (timedelta(hours=5), "5 hours ago"),
        (timedelta(days=1), "1 day ago"),
        (timedelta(days=15), "2 weeks ago"),
        (timedelta(days=400), "1 year ago"),
    ])
    def test_ages(self, delta, expected):
        """Ages round to the largest fitting unit."""
        assert format_age(NOW - delta, now=NOW) == expected

    def test_never(self):
        """None means never."""
        assert format_age(None) == "never"

    def test_future(self):
        """Timestamps after now are in the future."""
        assert format_age(NOW + timedelta(minutes=5), now=NOW) == "in the future"
