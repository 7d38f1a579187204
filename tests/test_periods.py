"""Tests for period expressions used by analytics windows."""
import pytest
from datetime import date, datetime, timedelta

from aicore.exceptions import ValidationError
from aicore.services.periods import parse_period, window_start, calendar_days, day_bounds


class TestParsePeriod:
    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("30 days", timedelta(days=30)),
            ("1 day", timedelta(days=1)),
            ("24 hours", timedelta(hours=24)),
            ("2 weeks", timedelta(days=14)),
            ("1 month", timedelta(days=30)),
            ("3 months", timedelta(days=90)),
            ("1 year", timedelta(days=365)),
            ("15 minutes", timedelta(minutes=15)),
            ("  7DAYS ", timedelta(days=7)),
        ],
    )
    def test_expressions(self, expression, expected):
        assert parse_period(expression) == expected

    def test_int_means_days(self):
        assert parse_period(7) == timedelta(days=7)

    def test_timedelta_passes_through(self):
        assert parse_period(timedelta(hours=6)) == timedelta(hours=6)

    @pytest.mark.parametrize("bad", ["", "days", "30", "thirty days", "5 fortnights", "-3 days", "0 days", 0, True, None, 3.5])
    def test_rejected(self, bad):
        with pytest.raises(ValidationError):
            parse_period(bad)


class TestWindows:
    def test_window_start(self):
        now = datetime(2026, 3, 15, 12, 0)
        assert window_start("2 days", now) == datetime(2026, 3, 13, 12, 0)

    def test_calendar_days_end_today(self):
        days = calendar_days("7 days", datetime(2026, 3, 15, 0, 5))
        assert len(days) == 7
        assert days[0] == date(2026, 3, 9)
        assert days[-1] == date(2026, 3, 15)

    def test_calendar_days_count_matches_window_not_days_touched(self):
        # A rolling 30-day window touches 31 dates, but the series stays 30 long
        days = calendar_days("30 days", datetime(2026, 3, 15, 18))
        assert len(days) == 30
        assert days[0] == date(2026, 2, 14)
        assert days[-1] == date(2026, 3, 15)

    def test_sub_day_window_still_has_today(self):
        assert calendar_days("6 hours", datetime(2026, 3, 15, 12)) == [date(2026, 3, 15)]

    def test_day_bounds(self):
        start, end = day_bounds(date(2026, 3, 15))
        assert start == datetime(2026, 3, 15)
        assert end == datetime(2026, 3, 16)
