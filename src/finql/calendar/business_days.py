"""Business-day arithmetic and date rolling."""

from __future__ import annotations

import calendar as _cal
from datetime import date, timedelta

from finql.calendar.holidays import Calendar
from finql.calendar.registry import resolve_calendar
from finql.core.exceptions import DateOrderError
from finql.core.models import RollConvention

_ONE_DAY = timedelta(days=1)


def is_business_day(calendar: Calendar | str, day: date) -> bool:
    """False for weekends and any date in the calendar's holiday set."""
    return resolve_calendar(calendar).is_business_day(day)


def add_business_days(calendar: Calendar | str, day: date, n: int) -> date:
    """Move ``n`` business days forward (or backward if negative).

    Non-business days are skipped and not counted. ``n == 0`` returns
    ``day`` unchanged, even if it is a holiday.
    """
    cal = resolve_calendar(calendar)
    step = _ONE_DAY if n >= 0 else -_ONE_DAY
    remaining = abs(n)
    current = day
    while remaining:
        current += step
        if cal.is_business_day(current):
            remaining -= 1
    return current


def business_days_between(calendar: Calendar | str, start: date, end: date) -> int:
    """Count business days in the half-open interval (start, end]."""
    if end < start:
        raise DateOrderError(
            f"end ({end}) is before start ({start})",
            context={"start": start.isoformat(), "end": end.isoformat()},
        )
    cal = resolve_calendar(calendar)
    count = 0
    current = start
    while current < end:
        current += _ONE_DAY
        if cal.is_business_day(current):
            count += 1
    return count


def roll_date(
    calendar: Calendar | str, day: date, convention: RollConvention
) -> date:
    """Shift a non-business day to an adjacent business day."""
    cal = resolve_calendar(calendar)
    if convention == RollConvention.UNADJUSTED or cal.is_business_day(day):
        return day
    if convention == RollConvention.FOLLOWING:
        return _following(cal, day)
    if convention == RollConvention.PRECEDING:
        return _preceding(cal, day)
    if convention == RollConvention.MODIFIED_FOLLOWING:
        rolled = _following(cal, day)
        return rolled if rolled.month == day.month else _preceding(cal, day)
    if convention == RollConvention.MODIFIED_PRECEDING:
        rolled = _preceding(cal, day)
        return rolled if rolled.month == day.month else _following(cal, day)
    raise ValueError(f"Unknown roll convention: {convention}")


def _following(cal: Calendar, day: date) -> date:
    while not cal.is_business_day(day):
        day += _ONE_DAY
    return day


def _preceding(cal: Calendar, day: date) -> date:
    while not cal.is_business_day(day):
        day -= _ONE_DAY
    return day


def is_end_of_month(day: date) -> bool:
    return day.day == _cal.monthrange(day.year, day.month)[1]


def add_months(day: date, months: int, end_of_month: bool = False) -> date:
    """Shift by whole months, clamping to the last day of the target month.

    With ``end_of_month`` set, a month-end date maps to the target month's
    end (31 Jan + 1 month -> 28/29 Feb, 28 Feb + 1 month -> 31 Mar).
    """
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last = _cal.monthrange(year, month)[1]
    if end_of_month and is_end_of_month(day):
        return date(year, month, last)
    return date(year, month, min(day.day, last))
