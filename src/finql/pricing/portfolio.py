"""Positions folded from the transaction ledger, and their valuation.

Cost basis uses the average-cost method: a sale removes its share of
the running cost basis, and the difference to the net proceeds is the
realized gain. An offsetting transaction undoes exactly the changes the
transaction it reverses made.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from finql.core.currency import round_amount
from finql.core.exceptions import MissingQuoteError, PricingError, ValidationError
from finql.core.models import AssetId, Position, Quote, Transaction, TransactionType

_ZERO = Decimal(0)


@dataclass(frozen=True)
class _Delta:
    quantity: Decimal = _ZERO
    cost_basis: Decimal = _ZERO
    realized_gain: Decimal = _ZERO
    income: Decimal = _ZERO


@dataclass
class _Holding:
    asset_id: AssetId
    currency: str
    quantity: Decimal = _ZERO
    cost_basis: Decimal = _ZERO
    realized_gain: Decimal = _ZERO
    income: Decimal = _ZERO

    def apply(self, delta: _Delta, sign: int = 1) -> None:
        self.quantity += sign * delta.quantity
        self.cost_basis += sign * delta.cost_basis
        self.realized_gain += sign * delta.realized_gain
        self.income += sign * delta.income
        if self.quantity < 0:
            raise ValidationError(
                f"Position in asset {self.asset_id} would become negative",
                context={"entity": "transaction", "asset_id": self.asset_id},
            )
        if self.quantity == 0:
            self.cost_basis = _ZERO

    def snapshot(self, as_of: date | None) -> Position:
        return Position(
            asset_id=self.asset_id,
            as_of=as_of,
            quantity=self.quantity,
            cost_basis=self.cost_basis,
            realized_gain=self.realized_gain,
            income=self.income,
            currency=self.currency,
        )


def _delta(holding: _Holding, tx: Transaction) -> _Delta:
    if tx.type == TransactionType.BUY:
        return _Delta(quantity=tx.quantity, cost_basis=tx.quantity * tx.price + tx.fees)
    if tx.type == TransactionType.SELL:
        if tx.quantity > holding.quantity:
            raise ValidationError(
                f"Cannot sell {tx.quantity} of asset {tx.asset_id}, "
                f"only {holding.quantity} held",
                context={"entity": "transaction", "id": tx.id, "asset_id": tx.asset_id},
            )
        if tx.quantity == holding.quantity:
            removed = holding.cost_basis
        else:
            removed = holding.cost_basis * tx.quantity / holding.quantity
        proceeds = tx.quantity * tx.price - tx.fees
        return _Delta(
            quantity=-tx.quantity, cost_basis=-removed, realized_gain=proceeds - removed
        )
    return _Delta(income=tx.amount - tx.fees)


def _ordered(transactions: Iterable[Transaction]) -> list[Transaction]:
    return sorted(
        transactions,
        key=lambda tx: (tx.trade_date, tx.id if tx.id is not None else float("inf")),
    )


class _Ledger:
    """Running fold state over transactions in (trade_date, id) order."""

    def __init__(self) -> None:
        self.holdings: dict[AssetId, _Holding] = {}
        self._applied: dict[int, tuple[AssetId, _Delta]] = {}

    def apply(self, tx: Transaction) -> None:
        if tx.is_reversal:
            if tx.reverses not in self._applied:
                raise ValidationError(
                    f"Transaction #{tx.id} reverses #{tx.reverses}, which is not an earlier ledger entry",
                    context={"entity": "transaction", "id": tx.id, "reverses": tx.reverses},
                )
            asset_id, delta = self._applied.pop(tx.reverses)
            self.holdings[asset_id].apply(delta, sign=-1)
            return

        holding = self.holdings.get(tx.asset_id)
        if holding is None:
            holding = self.holdings[tx.asset_id] = _Holding(tx.asset_id, tx.currency)
        elif holding.currency != tx.currency:
            raise ValidationError(
                f"Transaction currency {tx.currency} differs from position "
                f"currency {holding.currency}",
                context={"entity": "transaction", "id": tx.id, "asset_id": tx.asset_id},
            )
        delta = _delta(holding, tx)
        holding.apply(delta)
        if tx.id is not None:
            self._applied[tx.id] = (tx.asset_id, delta)


def fold_transactions(
    transactions: Iterable[Transaction], as_of: date | None = None
) -> dict[AssetId, Position]:
    """Positions per asset after all transactions up to ``as_of``."""
    ledger = _Ledger()
    for tx in _ordered(transactions):
        if as_of is not None and tx.trade_date > as_of:
            break
        ledger.apply(tx)
    return {aid: h.snapshot(as_of) for aid, h in sorted(ledger.holdings.items())}


def position_history(
    transactions: Iterable[Transaction], asset_id: AssetId
) -> list[Position]:
    """Position of one asset after each trade date it was touched."""
    ledger = _Ledger()
    history: list[Position] = []
    for tx in _ordered(transactions):
        ledger.apply(tx)
        holding = ledger.holdings.get(asset_id)
        if holding is None or tx.asset_id != asset_id:
            continue
        snapshot = holding.snapshot(tx.trade_date)
        if history and history[-1].as_of == tx.trade_date:
            history[-1] = snapshot
        else:
            history.append(snapshot)
    return history


# --- Valuation ---


@dataclass(frozen=True)
class PositionValue:
    position: Position
    price: Decimal | None
    quote_time: datetime | None
    market_value: Decimal
    unrealized_gain: Decimal


@dataclass
class Valuation:
    """Marked-to-market positions with totals per currency."""

    lines: list[PositionValue] = field(default_factory=list)
    nav: dict[str, Decimal] = field(default_factory=dict)
    unrealized_gain: dict[str, Decimal] = field(default_factory=dict)
    realized_gain: dict[str, Decimal] = field(default_factory=dict)
    income: dict[str, Decimal] = field(default_factory=dict)


def value_positions(
    positions: Iterable[Position],
    quotes: Mapping[AssetId, Quote],
    digits: Mapping[str, int] | None = None,
) -> Valuation:
    """Mark open positions to the given quotes.

    Closed positions contribute realized gains and income only. An open
    position without a quote raises MissingQuoteError.
    """
    digits = digits or {}
    valuation = Valuation()
    for position in positions:
        currency = position.currency
        if position.is_closed:
            price, quote_time, market_value = None, None, _ZERO
        else:
            quote = quotes.get(position.asset_id)
            if quote is None:
                raise MissingQuoteError(
                    f"No quote to value asset {position.asset_id}",
                    context={"asset_id": position.asset_id, "as_of": str(position.as_of)},
                )
            if quote.currency != currency:
                raise PricingError(
                    f"Quote currency {quote.currency} differs from position currency {currency}",
                    context={"asset_id": position.asset_id},
                )
            price, quote_time = quote.price, quote.time
            market_value = round_amount(
                position.quantity * quote.price, currency, digits.get(currency)
            )
        unrealized = market_value - position.cost_basis if not position.is_closed else _ZERO
        valuation.lines.append(
            PositionValue(
                position=position,
                price=price,
                quote_time=quote_time,
                market_value=market_value,
                unrealized_gain=unrealized,
            )
        )
        for totals, amount in (
            (valuation.nav, market_value),
            (valuation.unrealized_gain, unrealized),
            (valuation.realized_gain, position.realized_gain),
            (valuation.income, position.income),
        ):
            totals[currency] = totals.get(currency, _ZERO) + amount
    return valuation
