"""Coupon schedules, cash-flow generation and accrued interest."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from finql.calendar.business_days import add_months, is_end_of_month, roll_date
from finql.calendar.daycount import year_fraction
from finql.calendar.holidays import Calendar
from finql.calendar.registry import resolve_calendar
from finql.core.currency import round_amount, to_decimal
from finql.core.exceptions import ValidationError
from finql.core.models import Asset, BondTerms, CashFlow, CashFlowKind


def bond_terms(asset: Asset) -> BondTerms:
    """Terms of a bond asset; ValidationError for anything else."""
    if not asset.is_bond or asset.terms is None:
        raise ValidationError(
            f"Asset {asset.name!r} is not a bond",
            context={"entity": "asset", "id": asset.id, "kind": str(asset.kind)},
        )
    return asset.terms


def coupon_schedule(terms: BondTerms) -> list[tuple[date, date]]:
    """Unadjusted (start, end) accrual periods, oldest first.

    Period ends step backward from maturity by the coupon frequency; the
    first period runs from the issue date and may be a short stub.
    """
    eom = is_end_of_month(terms.maturity)
    ends = [terms.maturity]
    k = 1
    while True:
        previous = add_months(terms.maturity, -k * terms.frequency.months, end_of_month=eom)
        if previous <= terms.issue_date:
            break
        ends.append(previous)
        k += 1
    ends.reverse()
    starts = [terms.issue_date] + ends[:-1]
    return list(zip(starts, ends))


def generate_cash_flows(
    asset: Asset,
    calendar: Calendar | None = None,
    digits: int | None = None,
) -> list[CashFlow]:
    """Coupon and redemption payments of a fixed-coupon bond.

    Coupons are notional x rate x year fraction of the unadjusted period.
    Payment dates are rolled on ``calendar`` (default: the bond's own
    calendar, resolved from the built-in registry). Amounts are rounded
    to the currency's minor unit, or to ``digits`` when given.
    """
    terms = bond_terms(asset)
    cal = calendar if calendar is not None else resolve_calendar(terms.calendar)

    flows: list[CashFlow] = []
    if terms.coupon_rate > 0:
        for start, end in coupon_schedule(terms):
            fraction = to_decimal(year_fraction(terms.day_count, start, end))
            amount = terms.notional * terms.coupon_rate * fraction
            flows.append(
                CashFlow(
                    asset_id=asset.id,
                    date=roll_date(cal, end, terms.roll),
                    amount=round_amount(amount, asset.currency, digits),
                    currency=asset.currency,
                    kind=CashFlowKind.COUPON,
                )
            )
    flows.append(
        CashFlow(
            asset_id=asset.id,
            date=roll_date(cal, terms.maturity, terms.roll),
            amount=round_amount(terms.notional, asset.currency, digits),
            currency=asset.currency,
            kind=CashFlowKind.REDEMPTION,
        )
    )
    return flows


def accrued_fraction(terms: BondTerms, settlement: date) -> float:
    """Accrued coupon per unit notional at ``settlement``, unrounded."""
    if terms.coupon_rate == 0 or settlement <= terms.issue_date or settlement >= terms.maturity:
        return 0.0
    for start, end in coupon_schedule(terms):
        if start <= settlement < end:
            return float(terms.coupon_rate) * year_fraction(terms.day_count, start, settlement)
    return 0.0


def accrued_interest(
    asset: Asset, settlement: date, digits: int | None = None
) -> Decimal:
    """Interest accrued since the last coupon date, rounded like a cash amount."""
    terms = bond_terms(asset)
    amount = terms.notional * to_decimal(accrued_fraction(terms, settlement))
    return round_amount(amount, asset.currency, digits)
