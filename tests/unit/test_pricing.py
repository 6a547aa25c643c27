"""Tests for finql.pricing: cash flows, solver, bonds, returns."""

import math
from datetime import date
from decimal import Decimal

import pytest

from finql.calendar import Calendar
from finql.core.config import PricingConfig
from finql.core.exceptions import (
    CalendarNotFoundError,
    NonConvergenceError,
    ValidationError,
)
from finql.core.models import CashFlowKind, DayCountConv, Frequency, TransactionType
from finql.pricing import (
    accrued_interest,
    coupon_schedule,
    generate_cash_flows,
    irr,
    price_from_yield,
    solve,
    transaction_flows,
    yield_from_price,
)


class TestCouponSchedule:
    def test_regular_annual(self, make_bond):
        periods = coupon_schedule(make_bond().terms)
        assert len(periods) == 10
        assert periods[0] == (date(2019, 6, 15), date(2020, 6, 15))
        assert periods[-1] == (date(2028, 6, 15), date(2029, 6, 15))

    def test_short_front_stub(self, make_bond):
        periods = coupon_schedule(make_bond(issue_date=date(2019, 9, 1)).terms)
        assert periods[0] == (date(2019, 9, 1), date(2020, 6, 15))
        assert len(periods) == 10

    def test_semiannual_end_of_month(self, make_bond):
        terms = make_bond(
            issue_date=date(2024, 2, 29),
            maturity=date(2026, 2, 28),
            frequency=Frequency.SEMIANNUAL,
        ).terms
        ends = [end for _, end in coupon_schedule(terms)]
        assert ends == [
            date(2024, 8, 31),
            date(2025, 2, 28),
            date(2025, 8, 31),
            date(2026, 2, 28),
        ]

    def test_periods_are_contiguous(self, make_bond):
        periods = coupon_schedule(make_bond(frequency=Frequency.QUARTERLY).terms)
        for (_, end), (start, _) in zip(periods, periods[1:]):
            assert end == start


class TestGenerateCashFlows:
    def test_coupons_and_redemption(self, make_bond):
        flows = generate_cash_flows(make_bond())
        coupons = [f for f in flows if f.kind == CashFlowKind.COUPON]
        assert len(coupons) == 10
        assert all(f.amount == Decimal("5.00") for f in coupons)
        assert flows[-1].kind == CashFlowKind.REDEMPTION
        assert flows[-1].amount == Decimal("100.00")

    def test_payment_dates_rolled(self, make_bond):
        flows = generate_cash_flows(make_bond())
        # 15 June 2024 is a Saturday
        assert flows[4].date == date(2024, 6, 17)
        # 15 June 2025 is a Sunday
        assert flows[5].date == date(2025, 6, 16)

    def test_stub_coupon(self, make_bond):
        flows = generate_cash_flows(make_bond(issue_date=date(2019, 9, 1)))
        # 30/360: 284 days of 360
        assert flows[0].amount == Decimal("3.94")

    def test_zero_coupon(self, make_bond):
        flows = generate_cash_flows(make_bond(coupon_rate=Decimal(0)))
        assert len(flows) == 1
        assert flows[0].kind == CashFlowKind.REDEMPTION

    def test_deterministic(self, make_bond):
        assert generate_cash_flows(make_bond()) == generate_cash_flows(make_bond())

    def test_rounding_override(self, make_bond):
        bond = make_bond(issue_date=date(2019, 9, 1))
        assert generate_cash_flows(bond, digits=4)[0].amount == Decimal("3.9444")

    def test_jpy_rounding(self, make_bond):
        bond = make_bond(currency="JPY", notional=Decimal(10000), issue_date=date(2019, 9, 1))
        assert generate_cash_flows(bond)[0].amount == Decimal("394")

    def test_explicit_calendar(self, make_bond):
        flows = generate_cash_flows(make_bond(), calendar=Calendar(name="NONE", weekend=(6,)))
        # Saturday is a business day in this calendar
        assert flows[4].date == date(2024, 6, 15)

    def test_unknown_calendar(self, make_bond):
        with pytest.raises(CalendarNotFoundError):
            generate_cash_flows(make_bond(calendar="MARS"))

    def test_equity_rejected(self, make_equity):
        with pytest.raises(ValidationError, match="not a bond"):
            generate_cash_flows(make_equity())


class TestAccruedInterest:
    def test_half_period(self, make_bond):
        assert accrued_interest(make_bond(), date(2024, 12, 15)) == Decimal("2.50")

    def test_zero_on_coupon_date(self, make_bond):
        assert accrued_interest(make_bond(), date(2024, 6, 15)) == Decimal("0.00")

    def test_zero_outside_life(self, make_bond):
        assert accrued_interest(make_bond(), date(2018, 1, 1)) == Decimal("0.00")
        assert accrued_interest(make_bond(), date(2030, 1, 1)) == Decimal("0.00")


class TestSolver:
    def test_newton(self):
        result = solve(lambda x: x**3, 8.0, guess=1.0)
        assert result.root == pytest.approx(2.0)
        assert result.method == "newton"
        assert result.iterations > 0

    def test_guess_already_root(self):
        result = solve(lambda x: 2 * x, 4.0, guess=2.0)
        assert result.iterations == 0

    def test_falls_back_to_brent(self):
        # Newton overshoots out of the bracket from this guess
        result = solve(math.atan, 0.0, guess=1.5, bracket=(-1.0, 2.0))
        assert result.method == "brentq"
        assert abs(result.root) < 1e-9

    def test_no_root(self):
        with pytest.raises(NonConvergenceError):
            solve(lambda x: x * x + 1, 0.0, guess=1.0)

    def test_no_root_in_bracket(self):
        with pytest.raises(NonConvergenceError, match="bracketed"):
            solve(lambda x: x * x + 1, 0.0, guess=0.5, bracket=(-1.0, 1.0))

    def test_iteration_budget(self):
        with pytest.raises(NonConvergenceError) as exc_info:
            solve(lambda x: x**3, 8.0, guess=100.0, max_iterations=2)
        assert exc_info.value.context["iterations"] == 2


class TestBondPricing:
    def test_near_par_when_yield_equals_coupon(self, make_bond):
        # 15 June 2023 is a Thursday: no accrued interest, no rolling
        price = price_from_yield(make_bond(), 0.05, date(2023, 6, 15))
        assert abs(price - Decimal(100)) < Decimal("0.5")

    def test_price_falls_as_yield_rises(self, make_bond):
        bond, settle = make_bond(), date(2024, 3, 1)
        assert price_from_yield(bond, 0.03, settle) > price_from_yield(bond, 0.05, settle)
        assert price_from_yield(bond, 0.05, settle) > price_from_yield(bond, 0.07, settle)

    def test_dirty_exceeds_clean_by_accrued(self, make_bond):
        bond, settle = make_bond(), date(2024, 12, 16)
        clean = price_from_yield(bond, 0.04, settle, digits=6)
        dirty = price_from_yield(bond, 0.04, settle, clean=False, digits=6)
        accrued = accrued_interest(bond, settle, digits=6)
        assert abs(dirty - clean - accrued) <= Decimal("0.000002")

    def test_clean_price_continuous_across_rolled_coupon(self, make_bond):
        # 15 June 2024 is a Saturday; that coupon is paid on Monday 17 June
        bond = make_bond()
        before = price_from_yield(bond, 0.04, date(2024, 6, 14))
        between = price_from_yield(bond, 0.04, date(2024, 6, 16))
        assert abs(between - before) < Decimal("0.1")

    def test_coupon_leaves_dirty_price_at_period_end(self, make_bond):
        bond = make_bond()
        before = price_from_yield(bond, 0.04, date(2024, 6, 14), clean=False)
        between = price_from_yield(bond, 0.04, date(2024, 6, 16), clean=False)
        assert Decimal("4.9") < before - between < Decimal("5.1")

    @pytest.mark.parametrize("rate", [-0.005, 0.0, 0.0325, 0.08])
    def test_yield_round_trip(self, make_bond, rate):
        bond, settle = make_bond(), date(2024, 9, 10)
        price = price_from_yield(bond, rate, settle)
        solution = yield_from_price(bond, price, settle)
        assert solution.rate == pytest.approx(rate, abs=1e-4)
        assert price_from_yield(bond, solution.rate, settle) == price

    def test_round_trip_semiannual_act_act(self, make_bond):
        bond = make_bond(
            frequency=Frequency.SEMIANNUAL, day_count=DayCountConv.ACT_ACT_ISDA
        )
        settle = date(2025, 2, 3)
        price = price_from_yield(bond, 0.045, settle, digits=8)
        solution = yield_from_price(bond, price, settle)
        assert solution.rate == pytest.approx(0.045, abs=1e-7)

    def test_unreachable_price(self, make_bond):
        config = PricingConfig(lower_bound=-0.5, upper_bound=0.5, initial_guess=0.05)
        with pytest.raises(NonConvergenceError):
            yield_from_price(make_bond(), Decimal("1"), date(2024, 9, 10), config=config)

    def test_settlement_after_maturity(self, make_bond):
        with pytest.raises(ValidationError, match="no cash flows"):
            price_from_yield(make_bond(), 0.05, date(2030, 1, 1))


class TestReturns:
    def test_decimal_amounts(self):
        # 2023 is not a leap year: exactly one act/365f year
        rate = irr([(date(2023, 1, 1), Decimal(-1000)), (date(2024, 1, 1), Decimal(1100))])
        assert rate == pytest.approx(0.10, abs=1e-7)

    def test_exact_year_of_365_days(self):
        rate = irr([(date(2022, 1, 1), -100.0), (date(2023, 1, 1), 110.0)])
        assert rate == pytest.approx(0.10, abs=1e-7)

    def test_negative_return(self):
        rate = irr([(date(2022, 1, 1), -100.0), (date(2023, 1, 1), 90.0)])
        assert rate == pytest.approx(-0.10, abs=1e-7)

    def test_needs_both_signs(self):
        with pytest.raises(ValidationError, match="positive and one negative"):
            irr([(date(2022, 1, 1), 100.0), (date(2023, 1, 1), 10.0)])

    def test_transaction_flows(self, make_transaction):
        txs = [
            make_transaction(id=1, trade_date=date(2022, 1, 1)),
            make_transaction(
                id=2, type=TransactionType.DIVIDEND, trade_date=date(2022, 7, 1), amount=Decimal(20)
            ),
        ]
        flows = transaction_flows(txs, final_value=Decimal(1050), as_of=date(2023, 1, 1))
        assert flows == [
            (date(2022, 1, 1), Decimal(-1000)),
            (date(2022, 7, 1), Decimal(20)),
            (date(2023, 1, 1), Decimal(1050)),
        ]
        assert irr(flows) > 0
