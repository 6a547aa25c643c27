"""Day-count conventions: date spans to fractional years."""

from __future__ import annotations

import calendar as _cal
from datetime import date

from finql.core.exceptions import DateOrderError
from finql.core.models import DayCountConv


def year_fraction(convention: DayCountConv, start: date, end: date) -> float:
    """Fraction of a year between ``start`` and ``end`` under ``convention``.

    Raises DateOrderError if ``end`` is before ``start``.
    """
    if end < start:
        raise DateOrderError(
            f"end ({end}) is before start ({start})",
            context={
                "start": start.isoformat(),
                "end": end.isoformat(),
                "convention": str(convention),
            },
        )
    if convention == DayCountConv.ACT_365F:
        return (end - start).days / 365.0
    if convention == DayCountConv.ACT_360:
        return (end - start).days / 360.0
    if convention == DayCountConv.THIRTY_360:
        return _thirty_360_us(start, end) / 360.0
    if convention == DayCountConv.THIRTY_E_360:
        return _thirty_e_360(start, end) / 360.0
    if convention == DayCountConv.ACT_ACT_ISDA:
        return _act_act_isda(start, end)
    raise ValueError(f"Unsupported day-count convention: {convention}")


def signed_year_fraction(convention: DayCountConv, start: date, end: date) -> float:
    """Like year_fraction(), but negative instead of failing when end < start."""
    if end < start:
        return -year_fraction(convention, end, start)
    return year_fraction(convention, start, end)


def _thirty_360_us(start: date, end: date) -> int:
    # Bond basis: D1=31 -> 30; D2=31 -> 30 only if D1 is (now) 30
    d1 = min(start.day, 30)
    d2 = end.day
    if d2 == 31 and d1 == 30:
        d2 = 30
    return 360 * (end.year - start.year) + 30 * (end.month - start.month) + (d2 - d1)


def _thirty_e_360(start: date, end: date) -> int:
    d1 = min(start.day, 30)
    d2 = min(end.day, 30)
    return 360 * (end.year - start.year) + 30 * (end.month - start.month) + (d2 - d1)


def _act_act_isda(start: date, end: date) -> float:
    if start.year == end.year:
        return (end - start).days / _days_in_year(start.year)
    fraction = (date(start.year + 1, 1, 1) - start).days / _days_in_year(start.year)
    fraction += end.year - start.year - 1
    fraction += (end - date(end.year, 1, 1)).days / _days_in_year(end.year)
    return fraction


def _days_in_year(year: int) -> int:
    return 366 if _cal.isleap(year) else 365
