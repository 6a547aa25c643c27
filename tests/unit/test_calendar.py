"""Tests for finql.calendar: holidays, registry and business-day arithmetic."""

from datetime import date

import pytest
from pydantic import ValidationError as PydanticValidationError

from finql.calendar import (
    BUILTIN_CALENDARS,
    Calendar,
    EasterOffset,
    NthWeekday,
    Observance,
    SingleDay,
    YearlyDay,
    add_business_days,
    add_months,
    business_days_between,
    calendar_names,
    easter_sunday,
    get_calendar,
    is_business_day,
    is_end_of_month,
    resolve_calendar,
    roll_date,
)
from finql.core.exceptions import CalendarNotFoundError, DateOrderError, RangeError
from finql.core.models import RollConvention


class TestEaster:
    @pytest.mark.parametrize(
        "year, expected",
        [
            (2000, date(2000, 4, 23)),
            (2019, date(2019, 4, 21)),
            (2024, date(2024, 3, 31)),
            (2025, date(2025, 4, 20)),
            (2038, date(2038, 4, 25)),
        ],
    )
    def test_known_dates(self, year, expected):
        assert easter_sunday(year) == expected

    def test_always_sunday(self):
        assert all(easter_sunday(y).weekday() == 6 for y in range(1900, 2200))

    @pytest.mark.parametrize("year", [1582, 4100])
    def test_out_of_range(self, year):
        with pytest.raises(RangeError) as exc_info:
            easter_sunday(year)
        assert exc_info.value.context["year"] == year


class TestRules:
    def test_nth_weekday(self):
        thanksgiving = NthWeekday(month=11, weekday=3, nth=4)
        assert thanksgiving.raw_date(2024) == date(2024, 11, 28)

    def test_last_weekday(self):
        memorial = NthWeekday(month=5, weekday=0, nth=-1)
        assert memorial.raw_date(2024) == date(2024, 5, 27)

    def test_fifth_weekday_missing(self):
        assert NthWeekday(month=2, weekday=0, nth=5).raw_date(2023) is None

    def test_year_bounds(self):
        rule = YearlyDay(month=6, day=19, first=2021)
        assert rule.raw_date(2020) is None
        assert rule.raw_date(2021) == date(2021, 6, 19)

    def test_feb_29_only_in_leap_years(self):
        rule = YearlyDay(month=2, day=29)
        assert rule.raw_date(2023) is None
        assert rule.raw_date(2024) == date(2024, 2, 29)

    def test_invalid_day(self):
        with pytest.raises(PydanticValidationError):
            YearlyDay(month=4, day=31)

    def test_invalid_nth(self):
        with pytest.raises(PydanticValidationError):
            NthWeekday(month=1, weekday=0, nth=0)


class TestCalendar:
    def test_weekend(self):
        cal = BUILTIN_CALENDARS["WE"]
        assert not cal.is_business_day(date(2024, 1, 6))
        assert cal.is_business_day(date(2024, 1, 8))

    def test_target_holidays_2024(self):
        assert BUILTIN_CALENDARS["TARGET"].holidays(2024) == {
            date(2024, 1, 1),
            date(2024, 3, 29),
            date(2024, 4, 1),
            date(2024, 5, 1),
            date(2024, 12, 25),
            date(2024, 12, 26),
        }

    def test_us_observed_new_year(self):
        us = get_calendar("US")
        assert us.is_holiday(date(2024, 1, 1))
        # 4 July 2021 was a Sunday
        assert us.is_holiday(date(2021, 7, 5))

    def test_uk_substitute_days(self):
        uk = get_calendar("UK")
        # Christmas 2021 fell on Saturday, Boxing Day on Sunday
        assert uk.is_holiday(date(2021, 12, 27))
        assert uk.is_holiday(date(2021, 12, 28))

    def test_custom_weekend(self):
        cal = Calendar(name="GULF", weekend=(4, 5))
        assert not cal.is_business_day(date(2024, 1, 5))  # Friday
        assert cal.is_business_day(date(2024, 1, 7))  # Sunday

    def test_all_days_weekend_rejected(self):
        with pytest.raises(PydanticValidationError):
            Calendar(name="NONE", weekend=tuple(range(7)))

    def test_union(self):
        joint = get_calendar("TARGET").union(get_calendar("US"))
        assert joint.name == "TARGET+US"
        assert joint.is_holiday(date(2024, 7, 4))
        assert joint.is_holiday(date(2024, 5, 1))
        assert joint.holidays(2024) == (
            get_calendar("TARGET").holidays(2024) | get_calendar("US").holidays(2024)
        )

    def test_equal_rules_equal_calendars(self):
        rules = (YearlyDay(month=1, day=1), EasterOffset(offset=1))
        a = Calendar(name="X", rules=rules)
        b = Calendar(name="X", rules=rules)
        assert a == b
        assert a.holidays(2024) == b.holidays(2024)

    def test_json_round_trip(self):
        cal = Calendar(
            name="CUSTOM",
            rules=(
                SingleDay(day=date(2024, 3, 4)),
                YearlyDay(month=7, day=4, observance=Observance.NEAREST_WEEKDAY),
                NthWeekday(month=9, weekday=0, nth=1),
                EasterOffset(offset=-2),
            ),
        )
        restored = Calendar.model_validate_json(cal.model_dump_json())
        assert restored == cal
        assert restored.holidays(2024) == cal.holidays(2024)

    def test_holidays_between(self):
        days = get_calendar("TARGET").holidays_between(2023, 2024)
        assert date(2023, 12, 25) in days
        assert date(2024, 12, 26) in days


class TestRegistry:
    def test_names(self):
        assert {"TARGET", "US", "UK", "WE"} <= set(calendar_names())

    def test_unknown(self):
        with pytest.raises(CalendarNotFoundError) as exc_info:
            get_calendar("MARS")
        assert exc_info.value.context["calendar"] == "MARS"

    def test_plus_syntax(self):
        assert get_calendar("US+UK").is_holiday(date(2024, 8, 26))

    def test_custom_shadows_builtin(self):
        custom = {"US": Calendar(name="US")}
        assert get_calendar("US", custom=custom).is_business_day(date(2024, 7, 4))

    def test_resolve_passes_calendar_through(self):
        cal = Calendar(name="X")
        assert resolve_calendar(cal) is cal


class TestBusinessDays:
    def test_is_business_day_by_name(self):
        assert not is_business_day("TARGET", date(2024, 12, 25))
        assert is_business_day("TARGET", date(2024, 12, 27))

    def test_us_year_end(self):
        assert add_business_days("US", date(2023, 12, 29), 1) == date(2024, 1, 2)

    def test_add_zero(self):
        assert add_business_days("TARGET", date(2024, 12, 25), 0) == date(2024, 12, 25)

    def test_add_negative(self):
        assert add_business_days("TARGET", date(2024, 1, 2), -1) == date(2023, 12, 29)

    def test_add_skips_weekends(self):
        assert add_business_days("WE", date(2024, 1, 5), 1) == date(2024, 1, 8)

    def test_between_half_open(self):
        # (Fri 5 Jan, Fri 12 Jan] -> Mon..Fri
        assert business_days_between("WE", date(2024, 1, 5), date(2024, 1, 12)) == 5

    def test_between_same_day(self):
        assert business_days_between("WE", date(2024, 1, 5), date(2024, 1, 5)) == 0

    def test_between_inverse_of_add(self):
        start = date(2024, 3, 20)
        end = add_business_days("TARGET", start, 10)
        assert business_days_between("TARGET", start, end) == 10

    def test_between_reversed_raises(self):
        with pytest.raises(DateOrderError):
            business_days_between("WE", date(2024, 1, 12), date(2024, 1, 5))


class TestRolling:
    # Saturday 30 November 2024
    SAT = date(2024, 11, 30)

    def test_unadjusted(self):
        assert roll_date("WE", self.SAT, RollConvention.UNADJUSTED) == self.SAT

    def test_following(self):
        assert roll_date("WE", self.SAT, RollConvention.FOLLOWING) == date(2024, 12, 2)

    def test_preceding(self):
        assert roll_date("WE", self.SAT, RollConvention.PRECEDING) == date(2024, 11, 29)

    def test_modified_following_stays_in_month(self):
        assert roll_date("WE", self.SAT, RollConvention.MODIFIED_FOLLOWING) == date(2024, 11, 29)

    def test_modified_preceding_stays_in_month(self):
        # Sunday 1 September 2024
        assert roll_date("WE", date(2024, 9, 1), RollConvention.MODIFIED_PRECEDING) == date(2024, 9, 2)

    def test_business_day_unchanged(self):
        day = date(2024, 11, 28)
        for convention in RollConvention:
            assert roll_date("WE", day, convention) == day


class TestMonths:
    def test_clamps(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)

    def test_end_of_month(self):
        assert add_months(date(2024, 2, 29), 1, end_of_month=True) == date(2024, 3, 31)
        assert add_months(date(2024, 2, 29), 1) == date(2024, 3, 29)

    def test_backwards_across_year(self):
        assert add_months(date(2024, 1, 15), -2) == date(2023, 11, 15)

    def test_is_end_of_month(self):
        assert is_end_of_month(date(2023, 2, 28))
        assert not is_end_of_month(date(2024, 2, 28))
