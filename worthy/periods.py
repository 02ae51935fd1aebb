"""Calendar period helpers working in the local timezone."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

from .exceptions import ValidationError
from .models import now_ms, to_millis

PERIOD_CHOICES = ("week", "month", "year", "all")
WRAP_PERIODS = ("week", "month", "quarter", "year")

Range = Tuple[int, int]


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min).astimezone()


def _last_ms(day: date) -> int:
    return to_millis(_start_of_day(day + timedelta(days=1))) - 1


def _month_bounds(year: int, month: int) -> Tuple[date, date]:
    first = date(year, month, 1)
    next_first = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return first, next_first - timedelta(days=1)


def _shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def period_range(reference: Optional[datetime] = None, period: str = "month") -> Range:
    """Inclusive millisecond range of the calendar period containing ``reference``.

    Weeks start on Monday. ``all`` spans from the epoch to now.
    """
    ref = (reference or datetime.now()).astimezone()
    day = ref.date()
    if period == "week":
        first = day - timedelta(days=day.weekday())
        return _bounds(first, first + timedelta(days=6))
    if period == "year":
        return _bounds(date(day.year, 1, 1), date(day.year, 12, 31))
    if period == "all":
        return 0, now_ms()
    if period == "month":
        return _bounds(*_month_bounds(day.year, day.month))
    raise ValidationError(f"period must be one of: {', '.join(PERIOD_CHOICES)}")


def wrap_period_range(period: str, reference: Optional[datetime] = None) -> Range:
    """Range of the period *before* the one containing ``reference``."""
    ref = (reference or datetime.now()).astimezone()
    day = ref.date()
    if period == "week":
        first = day - timedelta(days=day.weekday() + 7)
        return _bounds(first, first + timedelta(days=6))
    if period == "quarter":
        quarter_start_month = ((day.month - 1) // 3) * 3 + 1
        year, month = _shift_month(day.year, quarter_start_month, -3)
        last_year, last_month = _shift_month(year, month, 2)
        return _bounds(date(year, month, 1), _month_bounds(last_year, last_month)[1])
    if period == "year":
        return _bounds(date(day.year - 1, 1, 1), date(day.year - 1, 12, 31))
    if period == "month":
        year, month = _shift_month(day.year, day.month, -1)
        return _bounds(*_month_bounds(year, month))
    raise ValidationError(f"period must be one of: {', '.join(WRAP_PERIODS)}")


def wrap_title(period: str, start_ms: int) -> str:
    start = datetime.fromtimestamp(start_ms / 1000)
    if period == "week":
        return f"Week of {start.strftime('%b')} {start.day}"
    if period == "quarter":
        return f"Q{(start.month - 1) // 3 + 1} {start.year}"
    if period == "year":
        return str(start.year)
    return start.strftime("%B %Y")


def _bounds(first: date, last: date) -> Range:
    return to_millis(_start_of_day(first)), _last_ms(last)
