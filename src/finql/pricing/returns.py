"""Internal rate of return over dated cash amounts (XIRR)."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from finql.calendar.daycount import year_fraction
from finql.core.config import PricingConfig
from finql.core.exceptions import ValidationError
from finql.core.models import CashFlow, DayCountConv, Transaction
from finql.pricing.solver import solve


def irr(
    flows: Iterable[tuple[date, Decimal | float] | CashFlow],
    config: PricingConfig | None = None,
) -> float:
    """Annually compounded rate r with sum(a / (1 + r)**t) == 0.

    ``t`` is measured act/365f from the earliest flow. Needs at least one
    positive and one negative amount.
    """
    config = config or PricingConfig()
    dated = [
        (cf.date, float(cf.amount)) if isinstance(cf, CashFlow) else (cf[0], float(cf[1]))
        for cf in flows
    ]
    if not any(a > 0 for _, a in dated) or not any(a < 0 for _, a in dated):
        raise ValidationError(
            "IRR needs at least one positive and one negative cash flow",
            context={"entity": "cash_flows", "count": len(dated)},
        )
    origin = min(d for d, _ in dated)
    timed = [(a, year_fraction(DayCountConv.ACT_365F, origin, d)) for d, a in dated]
    scale = max(abs(a) for a, _ in timed)

    def npv(rate: float) -> float:
        return sum(a / (1.0 + rate) ** t for a, t in timed) / scale

    result = solve(
        npv,
        0.0,
        guess=config.initial_guess,
        tolerance=config.tolerance,
        max_iterations=config.max_iterations,
        bracket=(config.lower_bound, config.upper_bound),
    )
    return result.root


def transaction_flows(
    transactions: Iterable[Transaction],
    final_value: Decimal | None = None,
    as_of: date | None = None,
) -> list[tuple[date, Decimal]]:
    """Investor cash flows of a ledger, optionally closed by a final value.

    Buys are outflows, sells and income are inflows; offsetting
    transactions carry the negated amount of the entry they correct.
    """
    flows = [(tx.trade_date, tx.cash_amount) for tx in transactions]
    if final_value is not None:
        if as_of is None:
            raise ValidationError(
                "as_of is required with a final value",
                context={"entity": "cash_flows"},
            )
        flows.append((as_of, final_value))
    return sorted(flows, key=lambda f: f[0])
