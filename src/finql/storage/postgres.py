"""PostgreSQL storage backend (asyncpg connection pool)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import ClassVar

import asyncpg

from finql.calendar.holidays import Calendar
from finql.calendar.registry import BUILTIN_CALENDARS, get_calendar as resolve_named
from finql.core.config import StorageConfig
from finql.core.currency import minor_units, normalize_currency
from finql.core.exceptions import (
    CalendarNotFoundError,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from finql.core.models import (
    Asset,
    AssetId,
    AssetKind,
    BondTerms,
    CashFlow,
    CashFlowKind,
    InsertOutcome,
    Quote,
    Ticker,
    Transaction,
    TransactionType,
    YieldResult,
)
from finql.storage.base import (
    check_duplicate_quote,
    check_metadata_update,
    check_ledger,
    check_offset,
    check_quote_order,
    storage_errors,
)

logger = logging.getLogger(__name__)

# Advisory lock namespaces (first key of pg_advisory_xact_lock)
_LOCK_MIGRATIONS = 0
_LOCK_QUOTES = 1
_LOCK_TRANSACTIONS = 2
_LOCK_ASSETS = 3


class PostgresRepository:
    """PostgreSQL implementation of the repository contract.

    Each unit of work checks a connection out of the pool and runs inside
    one database transaction. Writes that must observe a consistent
    "latest row" (quote ordering, single reversal) serialize on
    transaction-scoped advisory locks.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TIMESTAMPTZ DEFAULT now()
                )""",
                """CREATE TABLE IF NOT EXISTS assets (
                    id BIGSERIAL PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    kind TEXT NOT NULL,
                    currency CHAR(3) NOT NULL,
                    isin TEXT UNIQUE,
                    wkn TEXT UNIQUE,
                    note TEXT,
                    terms_json TEXT
                )""",
                """CREATE TABLE IF NOT EXISTS tickers (
                    id BIGSERIAL PRIMARY KEY,
                    name TEXT NOT NULL,
                    asset_id BIGINT NOT NULL REFERENCES assets(id),
                    source TEXT NOT NULL,
                    currency CHAR(3) NOT NULL,
                    factor NUMERIC NOT NULL,
                    UNIQUE(name, source)
                )""",
                """CREATE TABLE IF NOT EXISTS quotes (
                    id BIGSERIAL PRIMARY KEY,
                    asset_id BIGINT NOT NULL REFERENCES assets(id),
                    time TIMESTAMPTZ NOT NULL,
                    price NUMERIC NOT NULL,
                    currency CHAR(3) NOT NULL,
                    source TEXT NOT NULL,
                    volume NUMERIC,
                    UNIQUE(asset_id, time, source)
                )""",
                """CREATE TABLE IF NOT EXISTS transactions (
                    id BIGSERIAL PRIMARY KEY,
                    asset_id BIGINT NOT NULL REFERENCES assets(id),
                    trade_date DATE NOT NULL,
                    type TEXT NOT NULL,
                    quantity NUMERIC NOT NULL,
                    price NUMERIC NOT NULL,
                    fees NUMERIC NOT NULL,
                    amount NUMERIC,
                    currency CHAR(3) NOT NULL,
                    reverses BIGINT UNIQUE REFERENCES transactions(id),
                    note TEXT
                )""",
                """CREATE TABLE IF NOT EXISTS calendars (
                    name TEXT PRIMARY KEY,
                    definition_json TEXT NOT NULL
                )""",
                """CREATE TABLE IF NOT EXISTS rounding_digits (
                    currency CHAR(3) PRIMARY KEY,
                    digits INTEGER NOT NULL
                )""",
                """CREATE TABLE IF NOT EXISTS cash_flows (
                    asset_id BIGINT NOT NULL REFERENCES assets(id),
                    seq INTEGER NOT NULL,
                    pay_date DATE NOT NULL,
                    amount NUMERIC NOT NULL,
                    currency CHAR(3) NOT NULL,
                    kind TEXT NOT NULL,
                    PRIMARY KEY(asset_id, seq)
                )""",
                """CREATE TABLE IF NOT EXISTS yield_results (
                    id BIGSERIAL PRIMARY KEY,
                    asset_id BIGINT NOT NULL REFERENCES assets(id),
                    as_of DATE NOT NULL,
                    price NUMERIC NOT NULL,
                    yield_rate DOUBLE PRECISION NOT NULL,
                    iterations INTEGER NOT NULL,
                    method TEXT NOT NULL,
                    UNIQUE(asset_id, as_of)
                )""",
                # Indexes
                "CREATE INDEX IF NOT EXISTS idx_tickers_asset ON tickers(asset_id)",
                "CREATE INDEX IF NOT EXISTS idx_quotes_asset_time ON quotes(asset_id, time)",
                "CREATE INDEX IF NOT EXISTS idx_quotes_asset_source ON quotes(asset_id, source, time)",
                "CREATE INDEX IF NOT EXISTS idx_transactions_asset_date ON transactions(asset_id, trade_date)",
            ],
        ),
    }

    def __init__(self, config: StorageConfig) -> None:
        self._dsn = config.postgresql_url
        self._min_size = config.pool_min_size
        self._max_size = config.pool_max_size
        self._pool: asyncpg.Pool | None = None

    async def initialize(self) -> None:
        """Create the connection pool and run migrations."""
        try:
            self._pool = await asyncpg.create_pool(
                self._dsn, min_size=self._min_size, max_size=self._max_size
            )
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        "SELECT pg_advisory_xact_lock($1, 0)", _LOCK_MIGRATIONS
                    )
                    current = await self._get_schema_version(conn)
                    await self._apply_migrations(conn, current)
        except Exception as e:
            raise StorageError(
                f"Failed to initialize PostgreSQL store: {e}",
                context={"operation": "initialize", "backend": "postgresql"},
            ) from e

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def health_check(self) -> bool:
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except Exception:
            return False

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[PostgresSession]:
        """Run the enclosed operations in one database transaction."""
        if self._pool is None:
            raise StorageError(
                "PostgreSQL store is not initialized",
                context={"operation": "begin", "backend": "postgresql"},
            )
        with storage_errors("acquire", "connection"):
            conn = await self._pool.acquire()
        try:
            tx = conn.transaction()
            with storage_errors("begin", "transaction"):
                await tx.start()
            try:
                yield PostgresSession(conn)
            except BaseException:
                await tx.rollback()
                raise
            with storage_errors("commit", "transaction"):
                await tx.commit()
        finally:
            await self._pool.release(conn)

    # --- Schema Migration ---

    @staticmethod
    async def _get_schema_version(conn: asyncpg.Connection) -> int:
        exists = await conn.fetchval("SELECT to_regclass('schema_version') IS NOT NULL")
        if not exists:
            return 0
        version = await conn.fetchval("SELECT MAX(version) FROM schema_version")
        return version or 0

    async def _apply_migrations(self, conn: asyncpg.Connection, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await conn.execute(sql)
            await conn.execute("INSERT INTO schema_version (version) VALUES ($1)", version)


class PostgresSession:
    """Repository operations bound to an open PostgreSQL transaction."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def _lock(self, namespace: int, key: int) -> None:
        await self._conn.execute("SELECT pg_advisory_xact_lock($1, $2)", namespace, key)

    async def _require_asset(self, asset_id: AssetId) -> None:
        row = await self._conn.fetchrow("SELECT 1 FROM assets WHERE id = $1", asset_id)
        if row is None:
            raise NotFoundError(
                f"Asset {asset_id} does not exist",
                context={"table": "assets", "id": asset_id},
            )

    # --- Asset Operations ---

    async def insert_asset(self, asset: Asset) -> Asset:
        with storage_errors("insert", "assets", name=asset.name):
            await self._lock(_LOCK_ASSETS, 0)
            await self._check_unique(asset)
            asset_id = await self._conn.fetchval(
                """INSERT INTO assets (name, kind, currency, isin, wkn, note, terms_json)
                   VALUES ($1, $2, $3, $4, $5, $6, $7) RETURNING id""",
                asset.name,
                str(asset.kind),
                asset.currency,
                asset.isin,
                asset.wkn,
                asset.note,
                asset.terms.model_dump_json() if asset.terms else None,
            )
            return asset.with_id(asset_id)

    async def _check_unique(self, asset: Asset) -> None:
        for key in ({"name": asset.name}, {"isin": asset.isin}, {"wkn": asset.wkn}):
            if None in key.values():
                continue
            clash = await self.find_asset(**key)
            if clash is not None and clash.id != asset.id:
                raise ConflictError(
                    f"Asset with {key} already exists with id {clash.id}",
                    context={"table": "assets", "key": key},
                )

    async def get_asset(self, asset_id: AssetId) -> Asset | None:
        with storage_errors("query", "assets", id=asset_id):
            row = await self._conn.fetchrow("SELECT * FROM assets WHERE id = $1", asset_id)
            return self._row_to_asset(row) if row is not None else None

    async def find_asset(
        self,
        name: str | None = None,
        isin: str | None = None,
        wkn: str | None = None,
    ) -> Asset | None:
        """Look an asset up by ISIN, then WKN, then name."""
        with storage_errors("query", "assets"):
            for column, value in (("isin", isin), ("wkn", wkn), ("name", name)):
                if value is None:
                    continue
                if column == "isin":
                    value = value.strip().upper()
                row = await self._conn.fetchrow(
                    f"SELECT * FROM assets WHERE {column} = $1", value
                )
                if row is not None:
                    return self._row_to_asset(row)
            return None

    async def list_assets(self) -> list[Asset]:
        with storage_errors("query", "assets"):
            rows = await self._conn.fetch("SELECT * FROM assets ORDER BY id")
            return [self._row_to_asset(r) for r in rows]

    async def update_asset(self, asset: Asset) -> Asset:
        if asset.id is None:
            raise ValidationError(
                "Asset has not been stored yet", context={"entity": "asset"}
            )
        with storage_errors("update", "assets", id=asset.id):
            await self._lock(_LOCK_ASSETS, 0)
            stored = await self.get_asset(asset.id)
            if stored is None:
                raise NotFoundError(
                    f"Asset {asset.id} does not exist",
                    context={"table": "assets", "id": asset.id},
                )
            check_metadata_update(stored, asset)
            await self._check_unique(asset)
            await self._conn.execute(
                "UPDATE assets SET name = $1, isin = $2, wkn = $3, note = $4 WHERE id = $5",
                asset.name,
                asset.isin,
                asset.wkn,
                asset.note,
                asset.id,
            )
            return asset

    async def delete_asset(self, asset_id: AssetId) -> None:
        with storage_errors("delete", "assets", id=asset_id):
            await self._require_asset(asset_id)
            for table in ("tickers", "quotes", "transactions"):
                count = await self._conn.fetchval(
                    f"SELECT COUNT(*) FROM {table} WHERE asset_id = $1", asset_id
                )
                if count:
                    raise ConflictError(
                        f"Asset {asset_id} is still referenced by {count} {table}",
                        context={"table": table, "key": {"asset_id": asset_id}},
                    )
            await self._conn.execute("DELETE FROM cash_flows WHERE asset_id = $1", asset_id)
            await self._conn.execute("DELETE FROM yield_results WHERE asset_id = $1", asset_id)
            await self._conn.execute("DELETE FROM assets WHERE id = $1", asset_id)

    # --- Ticker Operations ---

    async def insert_ticker(self, ticker: Ticker) -> Ticker:
        with storage_errors("insert", "tickers", name=ticker.name):
            await self._require_asset(ticker.asset_id)
            ticker_id = await self._conn.fetchval(
                """INSERT INTO tickers (name, asset_id, source, currency, factor)
                   VALUES ($1, $2, $3, $4, $5)
                   ON CONFLICT (name, source) DO NOTHING RETURNING id""",
                ticker.name,
                ticker.asset_id,
                ticker.source,
                ticker.currency,
                ticker.factor,
            )
            if ticker_id is None:
                raise ConflictError(
                    f"Ticker {ticker.name!r} already exists for source {ticker.source!r}",
                    context={"table": "tickers", "key": {"name": ticker.name, "source": ticker.source}},
                )
            return ticker.model_copy(update={"id": ticker_id})

    async def get_ticker(self, ticker_id: int) -> Ticker | None:
        with storage_errors("query", "tickers", id=ticker_id):
            row = await self._conn.fetchrow("SELECT * FROM tickers WHERE id = $1", ticker_id)
            return self._row_to_ticker(row) if row is not None else None

    async def find_ticker(self, name: str, source: str) -> Ticker | None:
        with storage_errors("query", "tickers"):
            row = await self._conn.fetchrow(
                "SELECT * FROM tickers WHERE name = $1 AND source = $2", name, source
            )
            return self._row_to_ticker(row) if row is not None else None

    async def list_tickers(
        self, asset_id: AssetId | None = None, source: str | None = None
    ) -> list[Ticker]:
        with storage_errors("query", "tickers"):
            rows = await self._conn.fetch(
                """SELECT * FROM tickers
                   WHERE ($1::bigint IS NULL OR asset_id = $1)
                     AND ($2::text IS NULL OR source = $2)
                   ORDER BY id""",
                asset_id,
                source,
            )
            return [self._row_to_ticker(r) for r in rows]

    async def update_ticker(self, ticker: Ticker) -> Ticker:
        if ticker.id is None:
            raise ValidationError(
                "Ticker has not been stored yet", context={"entity": "ticker"}
            )
        with storage_errors("update", "tickers", id=ticker.id):
            await self._require_asset(ticker.asset_id)
            status = await self._conn.execute(
                """UPDATE tickers SET name = $1, asset_id = $2, source = $3,
                   currency = $4, factor = $5 WHERE id = $6""",
                ticker.name,
                ticker.asset_id,
                ticker.source,
                ticker.currency,
                ticker.factor,
                ticker.id,
            )
            if status.endswith(" 0"):
                raise NotFoundError(
                    f"Ticker {ticker.id} does not exist",
                    context={"table": "tickers", "id": ticker.id},
                )
            return ticker

    async def delete_ticker(self, ticker_id: int) -> None:
        with storage_errors("delete", "tickers", id=ticker_id):
            status = await self._conn.execute("DELETE FROM tickers WHERE id = $1", ticker_id)
            if status.endswith(" 0"):
                raise NotFoundError(
                    f"Ticker {ticker_id} does not exist",
                    context={"table": "tickers", "id": ticker_id},
                )

    # --- Quote Operations ---

    async def insert_quote(self, quote: Quote) -> InsertOutcome:
        """Insert a quote; repeating an identical quote is a no-op."""
        with storage_errors("insert", "quotes", asset_id=quote.asset_id):
            await self._require_asset(quote.asset_id)
            await self._lock(_LOCK_QUOTES, quote.asset_id)
            row = await self._conn.fetchrow(
                "SELECT * FROM quotes WHERE asset_id = $1 AND time = $2 AND source = $3",
                quote.asset_id,
                quote.time,
                quote.source,
            )
            if row is not None:
                check_duplicate_quote(self._row_to_quote(row), quote)
                return InsertOutcome.DUPLICATE
            latest = await self._conn.fetchval(
                "SELECT MAX(time) FROM quotes WHERE asset_id = $1 AND source = $2",
                quote.asset_id,
                quote.source,
            )
            check_quote_order(quote, latest)
            await self._conn.execute(
                """INSERT INTO quotes (asset_id, time, price, currency, source, volume)
                   VALUES ($1, $2, $3, $4, $5, $6)
                   ON CONFLICT (asset_id, time, source) DO NOTHING""",
                quote.asset_id,
                quote.time,
                quote.price,
                quote.currency,
                quote.source,
                quote.volume,
            )
            return InsertOutcome.INSERTED

    async def get_quotes(
        self,
        asset_id: AssetId,
        start: datetime | None = None,
        end: datetime | None = None,
        source: str | None = None,
    ) -> list[Quote]:
        """Quotes of an asset with start <= time <= end, oldest first."""
        with storage_errors("query", "quotes", asset_id=asset_id):
            rows = await self._conn.fetch(
                """SELECT * FROM quotes
                   WHERE asset_id = $1
                     AND ($2::timestamptz IS NULL OR time >= $2)
                     AND ($3::timestamptz IS NULL OR time <= $3)
                     AND ($4::text IS NULL OR source = $4)
                   ORDER BY time ASC, source ASC""",
                asset_id,
                start,
                end,
                source,
            )
            return [self._row_to_quote(r) for r in rows]

    async def get_last_quote_before(
        self, asset_id: AssetId, time: datetime, source: str | None = None
    ) -> Quote | None:
        """Most recent quote at or before ``time``."""
        with storage_errors("query", "quotes", asset_id=asset_id):
            row = await self._conn.fetchrow(
                """SELECT * FROM quotes
                   WHERE asset_id = $1 AND time <= $2
                     AND ($3::text IS NULL OR source = $3)
                   ORDER BY time DESC, source ASC LIMIT 1""",
                asset_id,
                time,
                source,
            )
            return self._row_to_quote(row) if row is not None else None

    # --- Transaction Operations ---

    async def append_transaction(self, transaction: Transaction) -> Transaction:
        with storage_errors("insert", "transactions", asset_id=transaction.asset_id):
            await self._require_asset(transaction.asset_id)
            await self._lock(_LOCK_TRANSACTIONS, transaction.asset_id)
            if transaction.reverses is not None:
                original = await self.get_transaction(transaction.reverses)
                if original is None:
                    raise NotFoundError(
                        f"Transaction {transaction.reverses} does not exist",
                        context={"table": "transactions", "id": transaction.reverses},
                    )
                existing = await self._conn.fetchval(
                    "SELECT 1 FROM transactions WHERE reverses = $1", original.id
                )
                check_offset(original, transaction, already_reversed=existing is not None)
            check_ledger(await self.get_transactions(transaction.asset_id), transaction)
            tx_id = await self._conn.fetchval(
                """INSERT INTO transactions
                   (asset_id, trade_date, type, quantity, price, fees, amount,
                    currency, reverses, note)
                   VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10) RETURNING id""",
                transaction.asset_id,
                transaction.trade_date,
                str(transaction.type),
                transaction.quantity,
                transaction.price,
                transaction.fees,
                transaction.amount,
                transaction.currency,
                transaction.reverses,
                transaction.note,
            )
            return transaction.model_copy(update={"id": tx_id})

    async def get_transaction(self, transaction_id: int) -> Transaction | None:
        with storage_errors("query", "transactions", id=transaction_id):
            row = await self._conn.fetchrow(
                "SELECT * FROM transactions WHERE id = $1", transaction_id
            )
            return self._row_to_transaction(row) if row is not None else None

    async def get_transactions(
        self,
        asset_id: AssetId | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Transaction]:
        """Ledger entries in (trade_date, id) order."""
        with storage_errors("query", "transactions"):
            rows = await self._conn.fetch(
                """SELECT * FROM transactions
                   WHERE ($1::bigint IS NULL OR asset_id = $1)
                     AND ($2::date IS NULL OR trade_date >= $2)
                     AND ($3::date IS NULL OR trade_date <= $3)
                   ORDER BY trade_date ASC, id ASC""",
                asset_id,
                start,
                end,
            )
            return [self._row_to_transaction(r) for r in rows]

    # --- Calendar Operations ---

    async def save_calendar(self, calendar: Calendar) -> None:
        """Store a custom calendar. Calendars are immutable per name."""
        with storage_errors("insert", "calendars", name=calendar.name):
            stored = await self._stored_calendars([calendar.name])
            existing = stored.get(calendar.name, BUILTIN_CALENDARS.get(calendar.name))
            if existing is not None:
                if existing == calendar:
                    return
                raise ConflictError(
                    f"Calendar {calendar.name!r} already exists with different rules",
                    context={"table": "calendars", "key": {"name": calendar.name}},
                )
            await self._conn.execute(
                "INSERT INTO calendars (name, definition_json) VALUES ($1, $2)",
                calendar.name,
                calendar.model_dump_json(),
            )

    async def get_calendar(self, name: str) -> Calendar | None:
        """Stored calendar by name, else built-in; '+' joins resolve to unions."""
        with storage_errors("query", "calendars", name=name):
            parts = [p.strip() for p in name.split("+") if p.strip()]
            stored = await self._stored_calendars(parts)
            try:
                return resolve_named(name, custom=stored)
            except CalendarNotFoundError:
                return None

    async def list_calendars(self) -> list[str]:
        with storage_errors("query", "calendars"):
            rows = await self._conn.fetch("SELECT name FROM calendars")
            return sorted({r["name"] for r in rows} | set(BUILTIN_CALENDARS))

    async def _stored_calendars(self, names: list[str]) -> dict[str, Calendar]:
        if not names:
            return {}
        rows = await self._conn.fetch(
            "SELECT * FROM calendars WHERE name = ANY($1::text[])", names
        )
        return {
            r["name"]: Calendar.model_validate_json(r["definition_json"]) for r in rows
        }

    # --- Rounding Conventions ---

    async def get_rounding_digits(self, currency: str) -> int:
        """Stored rounding digits, falling back to the ISO minor unit."""
        code = normalize_currency(currency)
        with storage_errors("query", "rounding_digits", currency=code):
            digits = await self._conn.fetchval(
                "SELECT digits FROM rounding_digits WHERE currency = $1", code
            )
            return digits if digits is not None else minor_units(code)

    async def set_rounding_digits(self, currency: str, digits: int) -> None:
        code = normalize_currency(currency)
        if digits < 0:
            raise ValidationError(
                f"digits must be >= 0, got {digits}",
                context={"entity": "rounding_digits", "currency": code},
            )
        with storage_errors("insert", "rounding_digits", currency=code):
            await self._conn.execute(
                """INSERT INTO rounding_digits (currency, digits) VALUES ($1, $2)
                   ON CONFLICT (currency) DO UPDATE SET digits = EXCLUDED.digits""",
                code,
                digits,
            )

    # --- Derived Results ---

    async def replace_cash_flows(self, asset_id: AssetId, flows: list[CashFlow]) -> None:
        """Replace the cached cash-flow schedule of an asset."""
        with storage_errors("insert", "cash_flows", asset_id=asset_id):
            await self._require_asset(asset_id)
            await self._conn.execute("DELETE FROM cash_flows WHERE asset_id = $1", asset_id)
            await self._conn.executemany(
                """INSERT INTO cash_flows (asset_id, seq, pay_date, amount, currency, kind)
                   VALUES ($1, $2, $3, $4, $5, $6)""",
                [
                    (asset_id, seq, cf.date, cf.amount, cf.currency, str(cf.kind))
                    for seq, cf in enumerate(flows)
                ],
            )

    async def get_cash_flows(self, asset_id: AssetId) -> list[CashFlow]:
        with storage_errors("query", "cash_flows", asset_id=asset_id):
            rows = await self._conn.fetch(
                "SELECT * FROM cash_flows WHERE asset_id = $1 ORDER BY seq", asset_id
            )
            return [
                CashFlow(
                    asset_id=r["asset_id"],
                    date=r["pay_date"],
                    amount=r["amount"],
                    currency=r["currency"],
                    kind=CashFlowKind(r["kind"]),
                )
                for r in rows
            ]

    async def save_yield_result(self, result: YieldResult) -> None:
        with storage_errors("insert", "yield_results", asset_id=result.asset_id):
            await self._require_asset(result.asset_id)
            await self._conn.execute(
                """INSERT INTO yield_results
                   (asset_id, as_of, price, yield_rate, iterations, method)
                   VALUES ($1, $2, $3, $4, $5, $6)
                   ON CONFLICT (asset_id, as_of) DO UPDATE SET
                     price = EXCLUDED.price,
                     yield_rate = EXCLUDED.yield_rate,
                     iterations = EXCLUDED.iterations,
                     method = EXCLUDED.method""",
                result.asset_id,
                result.as_of,
                result.price,
                result.yield_rate,
                result.iterations,
                result.method,
            )

    async def get_yield_results(self, asset_id: AssetId) -> list[YieldResult]:
        with storage_errors("query", "yield_results", asset_id=asset_id):
            rows = await self._conn.fetch(
                "SELECT * FROM yield_results WHERE asset_id = $1 ORDER BY as_of", asset_id
            )
            return [
                YieldResult(
                    asset_id=r["asset_id"],
                    as_of=r["as_of"],
                    price=r["price"],
                    yield_rate=r["yield_rate"],
                    iterations=r["iterations"],
                    method=r["method"],
                )
                for r in rows
            ]

    # --- Row Mapping Helpers ---

    @staticmethod
    def _row_to_asset(row: asyncpg.Record) -> Asset:
        terms_json = row["terms_json"]
        return Asset(
            id=row["id"],
            name=row["name"],
            kind=AssetKind(row["kind"]),
            currency=row["currency"],
            isin=row["isin"],
            wkn=row["wkn"],
            note=row["note"],
            terms=BondTerms.model_validate_json(terms_json) if terms_json else None,
        )

    @staticmethod
    def _row_to_ticker(row: asyncpg.Record) -> Ticker:
        return Ticker(
            id=row["id"],
            name=row["name"],
            asset_id=row["asset_id"],
            source=row["source"],
            currency=row["currency"],
            factor=row["factor"],
        )

    @staticmethod
    def _row_to_quote(row: asyncpg.Record) -> Quote:
        return Quote(
            id=row["id"],
            asset_id=row["asset_id"],
            time=row["time"],
            price=row["price"],
            currency=row["currency"],
            source=row["source"],
            volume=row["volume"],
        )

    @staticmethod
    def _row_to_transaction(row: asyncpg.Record) -> Transaction:
        return Transaction(
            id=row["id"],
            asset_id=row["asset_id"],
            trade_date=row["trade_date"],
            type=TransactionType(row["type"]),
            quantity=row["quantity"],
            price=row["price"],
            fees=row["fees"],
            amount=row["amount"],
            currency=row["currency"],
            reverses=row["reverses"],
            note=row["note"],
        )
