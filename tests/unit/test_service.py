"""Tests for finql.pricing.service against an in-memory repository."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from finql.calendar import Calendar
from finql.core.exceptions import (
    CalendarNotFoundError,
    MissingQuoteError,
    NotFoundError,
    ValidationError,
)
from finql.core.models import TransactionType
from finql.pricing import PricingService, price_from_yield

SETTLE = date(2024, 9, 10)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def service(sqlite_repo):
    return PricingService(sqlite_repo)


@pytest.fixture
def store(sqlite_repo):
    """Run a session callback in its own unit of work."""

    async def _run(fn):
        async with sqlite_repo.unit_of_work() as session:
            return await fn(session)

    return _run


class TestCashFlows:
    async def test_generates_and_stores(self, service, store, make_bond):
        bond = await store(lambda s: s.insert_asset(make_bond()))
        flows = await service.cash_flows(bond.id)
        assert len(flows) == 11
        assert all(cf.asset_id == bond.id for cf in flows)
        assert await store(lambda s: s.get_cash_flows(bond.id)) == flows

    async def test_stored_rounding_and_calendar(self, service, store, make_bond):
        async def setup(session):
            await session.save_calendar(Calendar(name="SATWORK", weekend=(6,)))
            await session.set_rounding_digits("EUR", 4)
            return await session.insert_asset(
                make_bond(issue_date=date(2019, 9, 1), calendar="SATWORK")
            )

        bond = await store(setup)
        flows = await service.cash_flows(bond.id)
        assert flows[0].amount == Decimal("3.9444")
        # Saturday 15 June 2024 is a business day in this calendar
        assert flows[4].date == date(2024, 6, 15)

    async def test_recomputation_replaces(self, service, store, make_bond):
        bond = await store(lambda s: s.insert_asset(make_bond()))
        await service.cash_flows(bond.id)
        await service.cash_flows(bond.id)
        assert len(await store(lambda s: s.get_cash_flows(bond.id))) == 11

    async def test_equity_rejected(self, service, store, make_equity):
        equity = await store(lambda s: s.insert_asset(make_equity()))
        with pytest.raises(ValidationError, match="not a bond"):
            await service.cash_flows(equity.id)

    async def test_unknown_asset(self, service):
        with pytest.raises(NotFoundError):
            await service.cash_flows(404)

    async def test_unknown_calendar(self, service, store, make_bond):
        bond = await store(lambda s: s.insert_asset(make_bond(calendar="MARS")))
        with pytest.raises(CalendarNotFoundError):
            await service.cash_flows(bond.id)


class TestBondYield:
    async def _quoted_bond(self, store, make_bond, make_quote, name="Bund 2029", rate=0.04):
        bond = await store(lambda s: s.insert_asset(make_bond(name=name)))
        price = price_from_yield(bond, rate, SETTLE)
        quote = make_quote(asset_id=bond.id, time=_utc(2024, 9, 10, 17), price=price)
        await store(lambda s: s.insert_quote(quote))
        return bond, price

    async def test_solves_and_stores(self, service, store, make_bond, make_quote):
        bond, price = await self._quoted_bond(store, make_bond, make_quote)
        result = await service.bond_yield(bond.id, as_of=_utc(2024, 9, 11))
        assert result.yield_rate == pytest.approx(0.04, abs=1e-4)
        assert result.as_of == SETTLE
        assert result.price == price
        assert await store(lambda s: s.get_yield_results(bond.id)) == [result]

    async def test_stale_quote(self, service, store, make_bond, make_quote):
        bond, _ = await self._quoted_bond(store, make_bond, make_quote)
        with pytest.raises(MissingQuoteError) as exc_info:
            await service.bond_yield(bond.id, as_of=_utc(2024, 10, 30))
        assert exc_info.value.context["asset_id"] == bond.id

    async def test_yields_for_skips_failures(self, service, store, make_bond, make_quote):
        quoted, _ = await self._quoted_bond(store, make_bond, make_quote)
        unquoted = await store(lambda s: s.insert_asset(make_bond(name="Bund 2031")))
        results = await service.yields_for([quoted.id, unquoted.id], as_of=_utc(2024, 9, 11))
        assert list(results) == [quoted.id]


class TestPositionsAndNav:
    @pytest.fixture
    async def holding(self, store, make_equity, make_transaction, make_quote):
        async def setup(session):
            asset = await session.insert_asset(make_equity())
            await session.append_transaction(make_transaction(asset_id=asset.id))
            await session.append_transaction(
                make_transaction(
                    asset_id=asset.id,
                    type=TransactionType.SELL,
                    trade_date=date(2024, 1, 12),
                    quantity=Decimal(4),
                    price=Decimal(110),
                )
            )
            await session.insert_quote(
                make_quote(asset_id=asset.id, time=_utc(2024, 1, 15), price=Decimal(120))
            )
            return asset

        return await store(setup)

    async def test_positions(self, service, holding):
        positions = await service.positions()
        assert positions[holding.id].quantity == 6
        assert positions[holding.id].realized_gain == 40

    async def test_positions_as_of(self, service, holding):
        positions = await service.positions(as_of=date(2024, 1, 11))
        assert positions[holding.id].quantity == 10

    async def test_nav(self, service, holding):
        valuation = await service.nav(as_of=_utc(2024, 1, 16))
        assert valuation.nav == {"EUR": Decimal(720)}
        assert valuation.unrealized_gain == {"EUR": Decimal(120)}

    async def test_nav_without_quote(self, service, holding):
        with pytest.raises(MissingQuoteError):
            await service.nav(as_of=_utc(2024, 1, 13))
