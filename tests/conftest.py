"""Shared pytest fixtures for finql."""

import os
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from finql.core.config import StorageConfig
from finql.core.models import (
    Asset,
    AssetKind,
    BondTerms,
    DayCountConv,
    Frequency,
    Quote,
    StorageBackend,
    Transaction,
    TransactionType,
)
from finql.storage import create_repository

POSTGRES_URL = os.environ.get("FINQL_TEST_POSTGRES_URL")


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def make_bond():
    """Factory for bond assets with overridable terms."""

    def _make(name="Bund 2029", currency="EUR", **term_overrides):
        defaults = dict(
            issue_date=date(2019, 6, 15),
            maturity=date(2029, 6, 15),
            coupon_rate=Decimal("0.05"),
            frequency=Frequency.ANNUAL,
            day_count=DayCountConv.THIRTY_360,
            notional=Decimal(100),
            calendar="TARGET",
        )
        defaults.update(term_overrides)
        return Asset(
            name=name,
            kind=AssetKind.BOND,
            currency=currency,
            terms=BondTerms(**defaults),
        )

    return _make


@pytest.fixture
def make_equity():
    def _make(name="ACME Corp", currency="EUR", **overrides):
        return Asset(name=name, kind=AssetKind.EQUITY, currency=currency, **overrides)

    return _make


@pytest.fixture
def make_quote():
    """Factory for quotes with overridable defaults."""

    def _make(asset_id=1, **overrides):
        defaults = dict(
            asset_id=asset_id,
            time=_utc(2024, 1, 15, 17, 30),
            price=Decimal("100"),
            currency="EUR",
            source="manual",
        )
        defaults.update(overrides)
        return Quote(**defaults)

    return _make


@pytest.fixture
def make_transaction():
    """Factory for transactions; buys by default."""

    def _make(asset_id=1, **overrides):
        defaults = dict(
            asset_id=asset_id,
            trade_date=date(2024, 1, 10),
            type=TransactionType.BUY,
            quantity=Decimal(10),
            price=Decimal(100),
            currency="EUR",
        )
        defaults.update(overrides)
        if defaults["type"] in (TransactionType.DIVIDEND, TransactionType.INTEREST):
            defaults.setdefault("amount", Decimal(5))
            defaults.pop("quantity")
            defaults.pop("price")
        return Transaction(**defaults)

    return _make


@pytest.fixture
async def sqlite_repo():
    """In-memory SQLite repository."""
    repo = await create_repository(StorageConfig(sqlite_path=":memory:"))
    yield repo
    await repo.close()


@pytest.fixture(
    params=[
        "sqlite",
        pytest.param(
            "postgresql",
            marks=[
                pytest.mark.integration,
                pytest.mark.skipif(
                    POSTGRES_URL is None, reason="FINQL_TEST_POSTGRES_URL not set"
                ),
            ],
        ),
    ]
)
async def repo(request, tmp_path):
    """Repository for every available backend, on an empty schema."""
    if request.param == "sqlite":
        config = StorageConfig(sqlite_path=str(tmp_path / "finql.db"))
    else:
        config = StorageConfig(
            backend=StorageBackend.POSTGRESQL, postgresql_url=POSTGRES_URL
        )
        await _reset_postgres(POSTGRES_URL)
    r = await create_repository(config)
    yield r
    await r.close()


async def _reset_postgres(url: str) -> None:
    import asyncpg

    conn = await asyncpg.connect(url)
    try:
        await conn.execute(
            "DROP TABLE IF EXISTS yield_results, cash_flows, rounding_digits, calendars, "
            "transactions, quotes, tickers, assets, schema_version CASCADE"
        )
    finally:
        await conn.close()
