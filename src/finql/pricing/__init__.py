"""Pricing engine: cash flows, bond yields, returns, positions."""

from finql.pricing.bonds import YieldSolution, price_from_yield, yield_from_price
from finql.pricing.cashflows import (
    accrued_interest,
    bond_terms,
    coupon_schedule,
    generate_cash_flows,
)
from finql.pricing.portfolio import (
    PositionValue,
    Valuation,
    fold_transactions,
    position_history,
    value_positions,
)
from finql.pricing.returns import irr, transaction_flows
from finql.pricing.service import PricingService
from finql.pricing.solver import SolverResult, solve

__all__ = [
    # Cash flows
    "bond_terms",
    "coupon_schedule",
    "generate_cash_flows",
    "accrued_interest",
    # Bonds
    "YieldSolution",
    "price_from_yield",
    "yield_from_price",
    # Solver
    "SolverResult",
    "solve",
    # Returns
    "irr",
    "transaction_flows",
    # Portfolio
    "PositionValue",
    "Valuation",
    "fold_transactions",
    "position_history",
    "value_positions",
    # Service
    "PricingService",
]
