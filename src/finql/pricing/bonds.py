"""Bond price/yield conversion.

Prices are quoted per bond (same unit as the notional). The default
convention is a clean price: accrued interest is added to obtain the
dirty price that the discounted cash flows must match.

A coupon is still outstanding at settlement when its unadjusted period
end lies after the settlement date, the boundary accrued interest is
measured from. Discounting uses the rolled payment date, so a
payment rolled to just before settlement discounts over a negative
fraction of a period.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from finql.calendar.daycount import signed_year_fraction
from finql.calendar.holidays import Calendar
from finql.core.config import PricingConfig
from finql.core.currency import round_amount, to_decimal
from finql.core.exceptions import ValidationError
from finql.core.models import Asset, CashFlow
from finql.pricing.cashflows import (
    accrued_fraction,
    bond_terms,
    coupon_schedule,
    generate_cash_flows,
)
from finql.pricing.solver import solve


@dataclass(frozen=True)
class YieldSolution:
    rate: float
    iterations: int
    method: str


def _future_flows(asset: Asset, settlement: date, calendar: Calendar | None) -> list[CashFlow]:
    terms = bond_terms(asset)
    ends = [end for _, end in coupon_schedule(terms)] if terms.coupon_rate > 0 else []
    ends.append(terms.maturity)
    flows = [
        cf
        for cf, end in zip(generate_cash_flows(asset, calendar), ends)
        if end > settlement
    ]
    if not flows:
        raise ValidationError(
            f"Bond {asset.name!r} has no cash flows after {settlement}",
            context={"entity": "asset", "id": asset.id, "settlement": settlement.isoformat()},
        )
    return flows


def _discounter(asset: Asset, flows: list[CashFlow], settlement: date):
    terms = bond_terms(asset)
    periods = terms.frequency.periods_per_year
    dated = [
        (
            float(cf.amount),
            periods * signed_year_fraction(terms.day_count, settlement, cf.date),
        )
        for cf in flows
    ]

    def dirty_value(rate: float) -> float:
        base = 1.0 + rate / periods
        return sum(amount / base**n for amount, n in dated)

    return dirty_value


def price_from_yield(
    asset: Asset,
    rate: float,
    settlement: date,
    calendar: Calendar | None = None,
    clean: bool = True,
    digits: int | None = None,
) -> Decimal:
    """Price of the bond at ``settlement`` for a yield ``rate``.

    Cash flows after settlement are discounted with compounding at the
    coupon frequency; time is measured with the bond's day count.
    """
    terms = bond_terms(asset)
    flows = _future_flows(asset, settlement, calendar)
    value = _discounter(asset, flows, settlement)(rate)
    if clean:
        value -= float(terms.notional) * accrued_fraction(terms, settlement)
    return round_amount(to_decimal(value), asset.currency, digits)


def yield_from_price(
    asset: Asset,
    price: Decimal,
    settlement: date,
    calendar: Calendar | None = None,
    clean: bool = True,
    config: PricingConfig | None = None,
) -> YieldSolution:
    """Solve the yield that reproduces ``price`` at ``settlement``.

    Raises NonConvergenceError if no yield within the configured bracket
    reproduces the price.
    """
    config = config or PricingConfig()
    terms = bond_terms(asset)
    flows = _future_flows(asset, settlement, calendar)
    target = float(price)
    if clean:
        target += float(terms.notional) * accrued_fraction(terms, settlement)
    result = solve(
        _discounter(asset, flows, settlement),
        target,
        guess=config.initial_guess,
        tolerance=config.tolerance,
        max_iterations=config.max_iterations,
        bracket=(config.lower_bound, config.upper_bound),
    )
    return YieldSolution(rate=result.root, iterations=result.iterations, method=result.method)
