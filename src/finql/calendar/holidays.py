"""Holiday rules and the Calendar value object.

A calendar is a named, immutable set of rules. The holidays of a year are
a pure function of the rules, so two calendars built from the same rules
always agree, and a calendar restored from storage behaves exactly like
the one that was saved.
"""

from __future__ import annotations

import calendar as _cal
import functools
from datetime import MAXYEAR, MINYEAR, date, timedelta
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from finql.core.exceptions import RangeError

EASTER_FIRST_YEAR = 1583
EASTER_LAST_YEAR = 4099

SATURDAY = 5
SUNDAY = 6


def easter_sunday(year: int) -> date:
    """Gregorian Easter Sunday (anonymous Gregorian algorithm).

    Raises RangeError outside 1583-4099, where the algorithm is not
    guaranteed to match the ecclesiastical tables.
    """
    if not EASTER_FIRST_YEAR <= year <= EASTER_LAST_YEAR:
        raise RangeError(
            f"Easter is only computed for years {EASTER_FIRST_YEAR}-{EASTER_LAST_YEAR}, got {year}",
            context={"year": year, "supported": f"{EASTER_FIRST_YEAR}-{EASTER_LAST_YEAR}"},
        )
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7  # noqa: E741
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


class Observance(StrEnum):
    """How a yearly holiday falling on a weekend is observed."""

    NONE = "none"
    NEXT_MONDAY = "next_monday"
    NEAREST_WEEKDAY = "nearest_weekday"
    NEXT_FREE_WEEKDAY = "next_free_weekday"


class _Rule(BaseModel):
    model_config = ConfigDict(frozen=True)

    first: int | None = None
    last: int | None = None

    def active(self, year: int) -> bool:
        if self.first is not None and year < self.first:
            return False
        if self.last is not None and year > self.last:
            return False
        return True


class SingleDay(_Rule):
    """A one-off closure."""

    rule: Literal["single"] = "single"
    day: date

    def raw_date(self, year: int) -> date | None:
        return self.day if self.day.year == year else None


class YearlyDay(_Rule):
    """Same month and day every year, e.g. 25 December."""

    rule: Literal["yearly"] = "yearly"
    month: int
    day: int
    observance: Observance = Observance.NONE

    @field_validator("month")
    @classmethod
    def month_range(cls, v: int) -> int:
        if not 1 <= v <= 12:
            raise ValueError(f"month must be 1-12, got {v}")
        return v

    @model_validator(mode="after")
    def day_exists(self) -> YearlyDay:
        if not 1 <= self.day <= _cal.monthrange(2000, self.month)[1]:
            raise ValueError(f"day {self.day} does not exist in month {self.month}")
        return self

    def raw_date(self, year: int) -> date | None:
        if not self.active(year):
            return None
        if self.month == 2 and self.day == 29 and not _cal.isleap(year):
            return None
        return date(year, self.month, self.day)


class NthWeekday(_Rule):
    """n-th given weekday of a month; ``nth=-1`` is the last one."""

    rule: Literal["nth_weekday"] = "nth_weekday"
    month: int
    weekday: int
    nth: int

    @field_validator("weekday")
    @classmethod
    def weekday_range(cls, v: int) -> int:
        if not 0 <= v <= 6:
            raise ValueError(f"weekday must be 0 (Monday) to 6 (Sunday), got {v}")
        return v

    @field_validator("nth")
    @classmethod
    def nth_range(cls, v: int) -> int:
        if v == 0 or not -1 <= v <= 5:
            raise ValueError(f"nth must be 1-5 or -1, got {v}")
        return v

    def raw_date(self, year: int) -> date | None:
        if not self.active(year):
            return None
        if self.nth == -1:
            last = date(year, self.month, _cal.monthrange(year, self.month)[1])
            return last - timedelta(days=(last.weekday() - self.weekday) % 7)
        first = date(year, self.month, 1)
        d = first + timedelta(days=(self.weekday - first.weekday()) % 7 + 7 * (self.nth - 1))
        return d if d.month == self.month else None


class EasterOffset(_Rule):
    """Movable feast relative to Easter Sunday (Good Friday is -2)."""

    rule: Literal["easter"] = "easter"
    offset: int

    def raw_date(self, year: int) -> date | None:
        if not self.active(year):
            return None
        return easter_sunday(year) + timedelta(days=self.offset)


HolidayRule = Annotated[
    Union[SingleDay, YearlyDay, NthWeekday, EasterOffset],
    Field(discriminator="rule"),
]


class Calendar(BaseModel):
    """Named set of non-business days.

    ``members`` holds the calendars a union was built from; a union's
    holidays are exactly the set union of its members' holidays.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    rules: tuple[HolidayRule, ...] = ()
    weekend: tuple[int, ...] = (SATURDAY, SUNDAY)
    members: tuple[Calendar, ...] = ()

    @field_validator("weekend")
    @classmethod
    def weekend_days(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        if any(not 0 <= d <= 6 for d in v):
            raise ValueError("weekend days must be 0 (Monday) to 6 (Sunday)")
        days = tuple(sorted(set(v)))
        if len(days) == 7:
            raise ValueError("a calendar needs at least one weekday")
        return days

    def is_weekend(self, day: date) -> bool:
        return day.weekday() in self.weekend

    def is_holiday(self, day: date) -> bool:
        return day in self.holidays(day.year)

    def is_business_day(self, day: date) -> bool:
        return not self.is_weekend(day) and not self.is_holiday(day)

    def holidays(self, year: int) -> frozenset[date]:
        """All holidays of ``year`` (observed dates), memoised per year."""
        return _year_holidays(self, year)

    def holidays_between(self, first_year: int, last_year: int) -> frozenset[date]:
        result: set[date] = set()
        for year in range(first_year, last_year + 1):
            result |= self.holidays(year)
        return frozenset(result)

    def union(self, *others: Calendar, name: str | None = None) -> Calendar:
        """Calendar whose non-business days are those of all inputs."""
        members = (self, *others)
        weekend = tuple(sorted({d for c in members for d in c.weekend}))
        return Calendar(
            name=name or "+".join(c.name for c in members),
            weekend=weekend,
            members=members,
        )

    def _own_holidays(self, year: int) -> frozenset[date]:
        fixed: set[date] = set()
        substitutes: list[date] = []
        for y in (year - 1, year, year + 1):
            if not MINYEAR <= y <= MAXYEAR:
                continue
            for rule in self.rules:
                # only observed yearly days can move across a year boundary
                crosses = isinstance(rule, YearlyDay) and rule.observance != Observance.NONE
                if y != year and not crosses:
                    continue
                raw = rule.raw_date(y)
                if raw is None:
                    continue
                if not crosses or not self.is_weekend(raw):
                    fixed.add(raw)
                elif rule.observance == Observance.NEXT_FREE_WEEKDAY:
                    substitutes.append(raw)
                else:
                    fixed.add(_observe(raw, rule.observance))
        for raw in sorted(substitutes):
            candidate = raw
            while self.is_weekend(candidate) or candidate in fixed:
                candidate += timedelta(days=1)
            fixed.add(candidate)
        return frozenset(d for d in fixed if d.year == year)


def _observe(day: date, observance: Observance) -> date:
    if observance == Observance.NEXT_MONDAY:
        return day + timedelta(days=7 - day.weekday())
    if observance == Observance.NEAREST_WEEKDAY:
        if day.weekday() == SATURDAY:
            return day - timedelta(days=1)
        if day.weekday() == SUNDAY:
            return day + timedelta(days=1)
    return day


@functools.lru_cache(maxsize=4096)
def _year_holidays(calendar: Calendar, year: int) -> frozenset[date]:
    result = set(calendar._own_holidays(year))
    for member in calendar.members:
        result |= member.holidays(year)
    return frozenset(result)
