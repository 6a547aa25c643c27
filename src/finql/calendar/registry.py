"""Built-in calendars and name resolution."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date

from finql.calendar.holidays import (
    Calendar,
    EasterOffset,
    NthWeekday,
    Observance,
    SingleDay,
    YearlyDay,
)
from finql.core.exceptions import CalendarNotFoundError

MONDAY, THURSDAY = 0, 3

WEEKENDS = Calendar(name="WE")

TARGET = Calendar(
    name="TARGET",
    rules=(
        YearlyDay(month=1, day=1),
        EasterOffset(offset=-2, first=2000),
        EasterOffset(offset=1, first=2000),
        YearlyDay(month=5, day=1, first=2000),
        YearlyDay(month=12, day=25),
        YearlyDay(month=12, day=26, first=2000),
        SingleDay(day=date(1998, 12, 31)),
        SingleDay(day=date(1999, 12, 31)),
        SingleDay(day=date(2001, 12, 31)),
    ),
)

# US settlement calendar (federal holidays, weekend dates observed on the
# nearest weekday)
US = Calendar(
    name="US",
    rules=(
        YearlyDay(month=1, day=1, observance=Observance.NEAREST_WEEKDAY),
        NthWeekday(month=1, weekday=MONDAY, nth=3, first=1983),
        NthWeekday(month=2, weekday=MONDAY, nth=3),
        NthWeekday(month=5, weekday=MONDAY, nth=-1),
        YearlyDay(month=6, day=19, first=2021, observance=Observance.NEAREST_WEEKDAY),
        YearlyDay(month=7, day=4, observance=Observance.NEAREST_WEEKDAY),
        NthWeekday(month=9, weekday=MONDAY, nth=1),
        NthWeekday(month=10, weekday=MONDAY, nth=2),
        YearlyDay(month=11, day=11, observance=Observance.NEAREST_WEEKDAY),
        NthWeekday(month=11, weekday=THURSDAY, nth=4),
        YearlyDay(month=12, day=25, observance=Observance.NEAREST_WEEKDAY),
    ),
)

# England & Wales bank holidays
UK = Calendar(
    name="UK",
    rules=(
        YearlyDay(month=1, day=1, observance=Observance.NEXT_FREE_WEEKDAY),
        EasterOffset(offset=-2),
        EasterOffset(offset=1),
        NthWeekday(month=5, weekday=MONDAY, nth=1, first=1978),
        NthWeekday(month=5, weekday=MONDAY, nth=-1),
        NthWeekday(month=8, weekday=MONDAY, nth=-1),
        YearlyDay(month=12, day=25, observance=Observance.NEXT_FREE_WEEKDAY),
        YearlyDay(month=12, day=26, observance=Observance.NEXT_FREE_WEEKDAY),
        SingleDay(day=date(2022, 6, 2)),
        SingleDay(day=date(2022, 6, 3)),
        SingleDay(day=date(2022, 9, 19)),
        SingleDay(day=date(2023, 5, 8)),
    ),
)

BUILTIN_CALENDARS: dict[str, Calendar] = {
    c.name: c for c in (WEEKENDS, TARGET, US, UK)
}


def calendar_names() -> list[str]:
    return sorted(BUILTIN_CALENDARS)


def get_calendar(
    name: str, custom: Mapping[str, Calendar] | None = None
) -> Calendar:
    """Resolve a calendar by name.

    Names joined by ``+`` resolve to the union of the parts, e.g.
    ``"US+UK"``. ``custom`` calendars shadow built-in ones.
    """
    parts = [p.strip() for p in name.split("+") if p.strip()]
    if not parts:
        raise CalendarNotFoundError(
            "Empty calendar name", context={"calendar": name}
        )
    resolved = [_lookup(p, custom) for p in parts]
    if len(resolved) == 1:
        return resolved[0]
    return resolved[0].union(*resolved[1:], name="+".join(parts))


def resolve_calendar(
    calendar: Calendar | str, custom: Mapping[str, Calendar] | None = None
) -> Calendar:
    if isinstance(calendar, Calendar):
        return calendar
    return get_calendar(calendar, custom)


def _lookup(name: str, custom: Mapping[str, Calendar] | None) -> Calendar:
    if custom and name in custom:
        return custom[name]
    try:
        return BUILTIN_CALENDARS[name]
    except KeyError:
        raise CalendarNotFoundError(
            f"Unknown calendar: {name!r}", context={"calendar": name}
        ) from None
