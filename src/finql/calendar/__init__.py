"""Calendar engine: holidays, business days, rolling, day counts."""

from finql.calendar.business_days import (
    add_business_days,
    add_months,
    business_days_between,
    is_business_day,
    is_end_of_month,
    roll_date,
)
from finql.calendar.daycount import signed_year_fraction, year_fraction
from finql.calendar.holidays import (
    Calendar,
    EasterOffset,
    HolidayRule,
    NthWeekday,
    Observance,
    SingleDay,
    YearlyDay,
    easter_sunday,
)
from finql.calendar.registry import (
    BUILTIN_CALENDARS,
    calendar_names,
    get_calendar,
    resolve_calendar,
)

__all__ = [
    # Calendars
    "Calendar",
    "HolidayRule",
    "SingleDay",
    "YearlyDay",
    "NthWeekday",
    "EasterOffset",
    "Observance",
    "easter_sunday",
    "BUILTIN_CALENDARS",
    "calendar_names",
    "get_calendar",
    "resolve_calendar",
    # Business days
    "is_business_day",
    "add_business_days",
    "business_days_between",
    "roll_date",
    "add_months",
    "is_end_of_month",
    # Day counts
    "year_fraction",
    "signed_year_fraction",
]
