from datetime import datetime

import pytest

from worthy.exceptions import ValidationError
from worthy.models import from_millis
from worthy.periods import period_range, wrap_period_range, wrap_title


def _span(bounds):
    start, end = bounds
    return from_millis(start), from_millis(end)


class TestPeriodRange:
    def test_month_is_inclusive(self):
        start, end = _span(period_range(datetime(2024, 2, 14, 15), "month"))

        assert start == datetime(2024, 2, 1)
        assert (end.year, end.month, end.day, end.hour, end.minute) == (2024, 2, 29, 23, 59)

    def test_week_starts_on_monday(self):
        start, end = _span(period_range(datetime(2024, 1, 10), "week"))

        assert start == datetime(2024, 1, 8)
        assert end.date() == datetime(2024, 1, 14).date()

    def test_year(self):
        start, end = _span(period_range(datetime(2023, 7, 1), "year"))
        assert start == datetime(2023, 1, 1)
        assert end.date() == datetime(2023, 12, 31).date()

    def test_unknown_period(self):
        with pytest.raises(ValidationError):
            period_range(datetime(2024, 1, 1), "decade")


class TestWrapPeriods:
    def test_previous_month_across_year_boundary(self):
        start, end = _span(wrap_period_range("month", datetime(2024, 1, 15)))
        assert start == datetime(2023, 12, 1)
        assert end.date() == datetime(2023, 12, 31).date()

    def test_previous_quarter(self):
        start, end = _span(wrap_period_range("quarter", datetime(2024, 5, 2)))
        assert start == datetime(2024, 1, 1)
        assert end.date() == datetime(2024, 3, 31).date()

    def test_previous_week(self):
        start, _ = _span(wrap_period_range("week", datetime(2024, 1, 17)))
        assert start == datetime(2024, 1, 8)

    def test_titles(self):
        assert wrap_title("week", period_range(datetime(2024, 1, 10), "week")[0]) == "Week of Jan 8"
        assert wrap_title("quarter", wrap_period_range("quarter", datetime(2024, 5, 2))[0]) == "Q1 2024"
        assert wrap_title("year", wrap_period_range("year", datetime(2024, 5, 2))[0]) == "2023"
        assert wrap_title("month", wrap_period_range("month", datetime(2024, 2, 2))[0]) == "January 2024"
