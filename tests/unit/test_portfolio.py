"""Tests for finql.pricing.portfolio."""

from datetime import date
from decimal import Decimal

import pytest

from finql.core.exceptions import MissingQuoteError, PricingError, ValidationError
from finql.core.models import Position, TransactionType
from finql.pricing import fold_transactions, position_history, value_positions


@pytest.fixture
def ledger(make_transaction):
    """Two buys at different prices and a partial sale."""
    return [
        make_transaction(id=1, trade_date=date(2024, 1, 10)),
        make_transaction(id=2, trade_date=date(2024, 1, 20), price=Decimal(120)),
        make_transaction(
            id=3,
            trade_date=date(2024, 2, 1),
            type=TransactionType.SELL,
            quantity=Decimal(5),
            price=Decimal(130),
        ),
    ]


def _stored(tx, id):
    return tx.model_copy(update={"id": id})


class TestFold:
    def test_average_cost(self, ledger):
        pos = fold_transactions(ledger[:2])[1]
        assert pos.quantity == 20
        assert pos.cost_basis == 2200
        assert pos.average_cost == 110

    def test_partial_sale_realizes_gain(self, ledger):
        pos = fold_transactions(ledger)[1]
        assert pos.quantity == 15
        assert pos.cost_basis == 1650
        assert pos.realized_gain == 100

    def test_fees_in_cost_and_proceeds(self, make_transaction):
        txs = [
            make_transaction(id=1, fees=Decimal(10)),
            make_transaction(
                id=2,
                type=TransactionType.SELL,
                trade_date=date(2024, 2, 1),
                price=Decimal(110),
                fees=Decimal(10),
            ),
        ]
        pos = fold_transactions(txs)[1]
        assert pos.is_closed
        assert pos.cost_basis == 0
        # proceeds 1090 against cost 1010
        assert pos.realized_gain == 80

    def test_as_of_cutoff(self, ledger):
        pos = fold_transactions(ledger, as_of=date(2024, 1, 15))[1]
        assert pos.quantity == 10
        assert pos.as_of == date(2024, 1, 15)

    def test_order_independent_of_input(self, ledger):
        assert fold_transactions(reversed(ledger)) == fold_transactions(ledger)

    def test_income(self, make_transaction):
        txs = [
            make_transaction(id=1),
            make_transaction(
                id=2, type=TransactionType.DIVIDEND, amount=Decimal(12), fees=Decimal(2)
            ),
        ]
        pos = fold_transactions(txs)[1]
        assert pos.income == 10
        assert pos.quantity == 10

    def test_several_assets(self, make_transaction):
        txs = [make_transaction(id=1, asset_id=2), make_transaction(id=2, asset_id=1)]
        assert list(fold_transactions(txs)) == [1, 2]

    def test_sell_more_than_held(self, make_transaction):
        txs = [
            make_transaction(id=1),
            make_transaction(id=2, type=TransactionType.SELL, quantity=Decimal(11)),
        ]
        with pytest.raises(ValidationError, match="only 10 held"):
            fold_transactions(txs)

    def test_currency_mismatch(self, make_transaction):
        txs = [make_transaction(id=1), make_transaction(id=2, currency="USD")]
        with pytest.raises(ValidationError, match="currency"):
            fold_transactions(txs)


class TestReversal:
    def test_reversing_sale_restores_position(self, ledger):
        reversal = _stored(ledger[2].offset(trade_date=date(2024, 2, 5)), 4)
        pos = fold_transactions([*ledger, reversal])[1]
        assert pos.quantity == 20
        assert pos.cost_basis == 2200
        assert pos.realized_gain == 0

    def test_reversing_buy_undoes_exact_delta(self, ledger):
        reversal = _stored(ledger[1].offset(trade_date=date(2024, 2, 5)), 4)
        pos = fold_transactions([*ledger, reversal])[1]
        assert pos.quantity == 5
        assert pos.cost_basis == 450

    def test_reversing_dividend(self, make_transaction):
        div = make_transaction(id=2, type=TransactionType.DIVIDEND)
        txs = [make_transaction(id=1), div, _stored(div.offset(), 3)]
        assert fold_transactions(txs)[1].income == 0

    def test_unknown_target(self, make_transaction):
        txs = [make_transaction(id=1), make_transaction(id=2, reverses=99)]
        with pytest.raises(ValidationError, match="not an earlier ledger entry"):
            fold_transactions(txs)

    def test_reversal_cannot_go_negative(self, make_transaction):
        buy = make_transaction(id=1)
        sell = make_transaction(
            id=2, type=TransactionType.SELL, trade_date=date(2024, 1, 11)
        )
        with pytest.raises(ValidationError, match="negative"):
            fold_transactions([buy, sell, _stored(buy.offset(date(2024, 1, 12)), 3)])


class TestPositionHistory:
    def test_one_entry_per_trade_date(self, ledger, make_transaction):
        extra = make_transaction(id=4, trade_date=date(2024, 2, 1))
        history = position_history([*ledger, extra], asset_id=1)
        assert [p.as_of for p in history] == [
            date(2024, 1, 10),
            date(2024, 1, 20),
            date(2024, 2, 1),
        ]
        assert [p.quantity for p in history] == [10, 20, 25]

    def test_other_assets_ignored(self, ledger, make_transaction):
        other = make_transaction(id=9, asset_id=2, trade_date=date(2024, 1, 15))
        history = position_history([*ledger, other], asset_id=1)
        assert len(history) == 3

    def test_unknown_asset(self, ledger):
        assert position_history(ledger, asset_id=42) == []


class TestValuePositions:
    def test_marks_to_quote(self, ledger, make_quote):
        positions = fold_transactions(ledger).values()
        valuation = value_positions(positions, {1: make_quote(price=Decimal("120.005"))})
        line = valuation.lines[0]
        # 15 x 120.005 = 1800.075, rounded half-even to cents
        assert line.market_value == Decimal("1800.08")
        assert line.unrealized_gain == Decimal("150.08")
        assert valuation.nav == {"EUR": Decimal("1800.08")}
        assert valuation.realized_gain == {"EUR": Decimal(100)}

    def test_rounding_override(self, ledger, make_quote):
        positions = fold_transactions(ledger).values()
        valuation = value_positions(
            positions, {1: make_quote(price=Decimal("120.005"))}, digits={"EUR": 3}
        )
        assert valuation.nav["EUR"] == Decimal("1800.075")

    def test_closed_position_needs_no_quote(self):
        closed = Position(asset_id=1, currency="EUR", realized_gain=Decimal(40))
        valuation = value_positions([closed], {})
        assert valuation.nav == {"EUR": 0}
        assert valuation.realized_gain == {"EUR": 40}
        assert valuation.lines[0].price is None

    def test_missing_quote(self, ledger):
        with pytest.raises(MissingQuoteError) as exc_info:
            value_positions(fold_transactions(ledger).values(), {})
        assert exc_info.value.context["asset_id"] == 1

    def test_quote_currency_mismatch(self, ledger, make_quote):
        with pytest.raises(PricingError, match="currency"):
            value_positions(
                fold_transactions(ledger).values(), {1: make_quote(currency="USD")}
            )

    def test_totals_per_currency(self, make_quote):
        positions = [
            Position(asset_id=1, currency="EUR", quantity=Decimal(2), cost_basis=Decimal(150)),
            Position(asset_id=2, currency="USD", quantity=Decimal(1), cost_basis=Decimal(90)),
        ]
        quotes = {
            1: make_quote(asset_id=1, price=Decimal(80)),
            2: make_quote(asset_id=2, price=Decimal(100), currency="USD"),
        }
        valuation = value_positions(positions, quotes)
        assert valuation.nav == {"EUR": Decimal(160), "USD": Decimal(100)}
        assert valuation.unrealized_gain == {"EUR": Decimal(10), "USD": Decimal(10)}
