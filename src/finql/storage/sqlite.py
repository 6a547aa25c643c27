"""SQLite storage backend (embedded file or :memory:)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar

import aiosqlite

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
    format_time,
    parse_time,
    storage_errors,
)

logger = logging.getLogger(__name__)


def _dec(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _text(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


class SqliteRepository:
    """SQLite implementation of the repository contract.

    Uses one aiosqlite connection in autocommit mode; each unit of work
    takes an asyncio lock and wraps its statements in BEGIN IMMEDIATE /
    COMMIT, so concurrent writers never interleave partial writes.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS assets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    kind TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    isin TEXT UNIQUE,
                    wkn TEXT UNIQUE,
                    note TEXT,
                    terms_json TEXT
                )""",
                """CREATE TABLE IF NOT EXISTS tickers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    asset_id INTEGER NOT NULL REFERENCES assets(id),
                    source TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    factor TEXT NOT NULL,
                    UNIQUE(name, source)
                )""",
                """CREATE TABLE IF NOT EXISTS quotes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    asset_id INTEGER NOT NULL REFERENCES assets(id),
                    time TEXT NOT NULL,
                    price TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    source TEXT NOT NULL,
                    volume TEXT,
                    UNIQUE(asset_id, time, source)
                )""",
                """CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    asset_id INTEGER NOT NULL REFERENCES assets(id),
                    trade_date TEXT NOT NULL,
                    type TEXT NOT NULL,
                    quantity TEXT NOT NULL,
                    price TEXT NOT NULL,
                    fees TEXT NOT NULL,
                    amount TEXT,
                    currency TEXT NOT NULL,
                    reverses INTEGER UNIQUE REFERENCES transactions(id),
                    note TEXT
                )""",
                """CREATE TABLE IF NOT EXISTS calendars (
                    name TEXT PRIMARY KEY,
                    definition_json TEXT NOT NULL
                )""",
                """CREATE TABLE IF NOT EXISTS rounding_digits (
                    currency TEXT PRIMARY KEY,
                    digits INTEGER NOT NULL
                )""",
                """CREATE TABLE IF NOT EXISTS cash_flows (
                    asset_id INTEGER NOT NULL REFERENCES assets(id),
                    seq INTEGER NOT NULL,
                    pay_date TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    PRIMARY KEY(asset_id, seq)
                )""",
                """CREATE TABLE IF NOT EXISTS yield_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    asset_id INTEGER NOT NULL REFERENCES assets(id),
                    as_of TEXT NOT NULL,
                    price TEXT NOT NULL,
                    yield_rate REAL NOT NULL,
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
        self._path = config.sqlite_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open connection, enable WAL + FK, run migrations."""
        try:
            self._db = await aiosqlite.connect(self._path, isolation_level=None)
            self._db.row_factory = aiosqlite.Row
            if self._path != ":memory:":
                await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA foreign_keys=ON")
            await self._db.execute("BEGIN IMMEDIATE")
            try:
                current = await self._get_schema_version()
                await self._apply_migrations(current)
            except Exception:
                await self._db.execute("ROLLBACK")
                raise
            await self._db.execute("COMMIT")
        except Exception as e:
            raise StorageError(
                f"Failed to initialize SQLite store: {e}",
                context={"operation": "initialize", "path": self._path},
            ) from e

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except Exception:
            return False

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[SqliteSession]:
        """Run the enclosed operations in one transaction.

        Any exception rolls the transaction back and propagates. Units of
        work must not be nested.
        """
        if self._db is None:
            raise StorageError(
                "SQLite store is not initialized",
                context={"operation": "begin", "path": self._path},
            )
        async with self._lock:
            with storage_errors("begin", "transaction"):
                await self._db.execute("BEGIN IMMEDIATE")
            try:
                yield SqliteSession(self._db)
            except BaseException:
                await self._db.execute("ROLLBACK")
                raise
            try:
                await self._db.execute("COMMIT")
            except Exception as e:
                await self._db.execute("ROLLBACK")
                raise StorageError(
                    f"Failed to commit unit of work: {e}",
                    context={"operation": "commit", "table": "*"},
                ) from e

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute(
                "SELECT MAX(version) FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )


class SqliteSession:
    """Repository operations bound to an open SQLite transaction."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def _fetchone(self, query: str, params: Any = ()) -> aiosqlite.Row | None:
        async with self._db.execute(query, params) as cursor:
            return await cursor.fetchone()

    async def _fetchall(self, query: str, params: Any = ()) -> list[aiosqlite.Row]:
        async with self._db.execute(query, params) as cursor:
            return list(await cursor.fetchall())

    async def _require_asset(self, asset_id: AssetId) -> None:
        row = await self._fetchone("SELECT 1 FROM assets WHERE id = ?", (asset_id,))
        if row is None:
            raise NotFoundError(
                f"Asset {asset_id} does not exist",
                context={"table": "assets", "id": asset_id},
            )

    # --- Asset Operations ---

    async def insert_asset(self, asset: Asset) -> Asset:
        with storage_errors("insert", "assets", name=asset.name):
            await self._check_unique(asset)
            cursor = await self._db.execute(
                """INSERT INTO assets (name, kind, currency, isin, wkn, note, terms_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    asset.name,
                    str(asset.kind),
                    asset.currency,
                    asset.isin,
                    asset.wkn,
                    asset.note,
                    asset.terms.model_dump_json() if asset.terms else None,
                ),
            )
            return asset.with_id(cursor.lastrowid)

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
            row = await self._fetchone("SELECT * FROM assets WHERE id = ?", (asset_id,))
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
                row = await self._fetchone(
                    f"SELECT * FROM assets WHERE {column} = ?", (value,)
                )
                if row is not None:
                    return self._row_to_asset(row)
            return None

    async def list_assets(self) -> list[Asset]:
        with storage_errors("query", "assets"):
            rows = await self._fetchall("SELECT * FROM assets ORDER BY id")
            return [self._row_to_asset(r) for r in rows]

    async def update_asset(self, asset: Asset) -> Asset:
        if asset.id is None:
            raise ValidationError(
                "Asset has not been stored yet", context={"entity": "asset"}
            )
        with storage_errors("update", "assets", id=asset.id):
            stored = await self.get_asset(asset.id)
            if stored is None:
                raise NotFoundError(
                    f"Asset {asset.id} does not exist",
                    context={"table": "assets", "id": asset.id},
                )
            check_metadata_update(stored, asset)
            await self._check_unique(asset)
            await self._db.execute(
                "UPDATE assets SET name = ?, isin = ?, wkn = ?, note = ? WHERE id = ?",
                (asset.name, asset.isin, asset.wkn, asset.note, asset.id),
            )
            return asset

    async def delete_asset(self, asset_id: AssetId) -> None:
        with storage_errors("delete", "assets", id=asset_id):
            await self._require_asset(asset_id)
            for table in ("tickers", "quotes", "transactions"):
                row = await self._fetchone(
                    f"SELECT COUNT(*) FROM {table} WHERE asset_id = ?", (asset_id,)
                )
                if row[0]:
                    raise ConflictError(
                        f"Asset {asset_id} is still referenced by {row[0]} {table}",
                        context={"table": table, "key": {"asset_id": asset_id}},
                    )
            await self._db.execute("DELETE FROM cash_flows WHERE asset_id = ?", (asset_id,))
            await self._db.execute("DELETE FROM yield_results WHERE asset_id = ?", (asset_id,))
            await self._db.execute("DELETE FROM assets WHERE id = ?", (asset_id,))

    # --- Ticker Operations ---

    async def insert_ticker(self, ticker: Ticker) -> Ticker:
        with storage_errors("insert", "tickers", name=ticker.name):
            await self._require_asset(ticker.asset_id)
            if await self.find_ticker(ticker.name, ticker.source) is not None:
                raise ConflictError(
                    f"Ticker {ticker.name!r} already exists for source {ticker.source!r}",
                    context={"table": "tickers", "key": {"name": ticker.name, "source": ticker.source}},
                )
            cursor = await self._db.execute(
                """INSERT INTO tickers (name, asset_id, source, currency, factor)
                   VALUES (?, ?, ?, ?, ?)""",
                (ticker.name, ticker.asset_id, ticker.source, ticker.currency, str(ticker.factor)),
            )
            return ticker.model_copy(update={"id": cursor.lastrowid})

    async def get_ticker(self, ticker_id: int) -> Ticker | None:
        with storage_errors("query", "tickers", id=ticker_id):
            row = await self._fetchone("SELECT * FROM tickers WHERE id = ?", (ticker_id,))
            return self._row_to_ticker(row) if row is not None else None

    async def find_ticker(self, name: str, source: str) -> Ticker | None:
        with storage_errors("query", "tickers"):
            row = await self._fetchone(
                "SELECT * FROM tickers WHERE name = ? AND source = ?", (name, source)
            )
            return self._row_to_ticker(row) if row is not None else None

    async def list_tickers(
        self, asset_id: AssetId | None = None, source: str | None = None
    ) -> list[Ticker]:
        with storage_errors("query", "tickers"):
            query = "SELECT * FROM tickers WHERE 1=1"
            params: list = []
            if asset_id is not None:
                query += " AND asset_id = ?"
                params.append(asset_id)
            if source is not None:
                query += " AND source = ?"
                params.append(source)
            query += " ORDER BY id"
            rows = await self._fetchall(query, params)
            return [self._row_to_ticker(r) for r in rows]

    async def update_ticker(self, ticker: Ticker) -> Ticker:
        if ticker.id is None:
            raise ValidationError(
                "Ticker has not been stored yet", context={"entity": "ticker"}
            )
        with storage_errors("update", "tickers", id=ticker.id):
            if await self.get_ticker(ticker.id) is None:
                raise NotFoundError(
                    f"Ticker {ticker.id} does not exist",
                    context={"table": "tickers", "id": ticker.id},
                )
            await self._require_asset(ticker.asset_id)
            await self._db.execute(
                """UPDATE tickers SET name = ?, asset_id = ?, source = ?,
                   currency = ?, factor = ? WHERE id = ?""",
                (
                    ticker.name,
                    ticker.asset_id,
                    ticker.source,
                    ticker.currency,
                    str(ticker.factor),
                    ticker.id,
                ),
            )
            return ticker

    async def delete_ticker(self, ticker_id: int) -> None:
        with storage_errors("delete", "tickers", id=ticker_id):
            cursor = await self._db.execute("DELETE FROM tickers WHERE id = ?", (ticker_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"Ticker {ticker_id} does not exist",
                    context={"table": "tickers", "id": ticker_id},
                )

    # --- Quote Operations ---

    async def insert_quote(self, quote: Quote) -> InsertOutcome:
        """Insert a quote; repeating an identical quote is a no-op."""
        with storage_errors("insert", "quotes", asset_id=quote.asset_id):
            await self._require_asset(quote.asset_id)
            row = await self._fetchone(
                "SELECT * FROM quotes WHERE asset_id = ? AND time = ? AND source = ?",
                (quote.asset_id, format_time(quote.time), quote.source),
            )
            if row is not None:
                check_duplicate_quote(self._row_to_quote(row), quote)
                return InsertOutcome.DUPLICATE
            latest = await self._fetchone(
                "SELECT MAX(time) FROM quotes WHERE asset_id = ? AND source = ?",
                (quote.asset_id, quote.source),
            )
            check_quote_order(quote, parse_time(latest[0]) if latest[0] else None)
            await self._db.execute(
                """INSERT INTO quotes (asset_id, time, price, currency, source, volume)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    quote.asset_id,
                    format_time(quote.time),
                    str(quote.price),
                    quote.currency,
                    quote.source,
                    _text(quote.volume),
                ),
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
            query = "SELECT * FROM quotes WHERE asset_id = ?"
            params: list = [asset_id]
            if start is not None:
                query += " AND time >= ?"
                params.append(format_time(start))
            if end is not None:
                query += " AND time <= ?"
                params.append(format_time(end))
            if source is not None:
                query += " AND source = ?"
                params.append(source)
            query += " ORDER BY time ASC, source ASC"
            rows = await self._fetchall(query, params)
            return [self._row_to_quote(r) for r in rows]

    async def get_last_quote_before(
        self, asset_id: AssetId, time: datetime, source: str | None = None
    ) -> Quote | None:
        """Most recent quote at or before ``time``."""
        with storage_errors("query", "quotes", asset_id=asset_id):
            query = "SELECT * FROM quotes WHERE asset_id = ? AND time <= ?"
            params: list = [asset_id, format_time(time)]
            if source is not None:
                query += " AND source = ?"
                params.append(source)
            query += " ORDER BY time DESC, source ASC LIMIT 1"
            row = await self._fetchone(query, params)
            return self._row_to_quote(row) if row is not None else None

    # --- Transaction Operations ---

    async def append_transaction(self, transaction: Transaction) -> Transaction:
        with storage_errors("insert", "transactions", asset_id=transaction.asset_id):
            await self._require_asset(transaction.asset_id)
            if transaction.reverses is not None:
                original = await self.get_transaction(transaction.reverses)
                if original is None:
                    raise NotFoundError(
                        f"Transaction {transaction.reverses} does not exist",
                        context={"table": "transactions", "id": transaction.reverses},
                    )
                row = await self._fetchone(
                    "SELECT 1 FROM transactions WHERE reverses = ?", (original.id,)
                )
                check_offset(original, transaction, already_reversed=row is not None)
            check_ledger(await self.get_transactions(transaction.asset_id), transaction)
            cursor = await self._db.execute(
                """INSERT INTO transactions
                   (asset_id, trade_date, type, quantity, price, fees, amount,
                    currency, reverses, note)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    transaction.asset_id,
                    transaction.trade_date.isoformat(),
                    str(transaction.type),
                    str(transaction.quantity),
                    str(transaction.price),
                    str(transaction.fees),
                    _text(transaction.amount),
                    transaction.currency,
                    transaction.reverses,
                    transaction.note,
                ),
            )
            return transaction.model_copy(update={"id": cursor.lastrowid})

    async def get_transaction(self, transaction_id: int) -> Transaction | None:
        with storage_errors("query", "transactions", id=transaction_id):
            row = await self._fetchone(
                "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
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
            query = "SELECT * FROM transactions WHERE 1=1"
            params: list = []
            if asset_id is not None:
                query += " AND asset_id = ?"
                params.append(asset_id)
            if start is not None:
                query += " AND trade_date >= ?"
                params.append(start.isoformat())
            if end is not None:
                query += " AND trade_date <= ?"
                params.append(end.isoformat())
            query += " ORDER BY trade_date ASC, id ASC"
            rows = await self._fetchall(query, params)
            return [self._row_to_transaction(r) for r in rows]

    # --- Calendar Operations ---

    async def save_calendar(self, calendar: Calendar) -> None:
        """Store a custom calendar. Calendars are immutable per name."""
        with storage_errors("insert", "calendars", name=calendar.name):
            builtin = BUILTIN_CALENDARS.get(calendar.name)
            stored = await self._stored_calendars([calendar.name])
            existing = stored.get(calendar.name, builtin)
            if existing is not None:
                if existing == calendar:
                    return
                raise ConflictError(
                    f"Calendar {calendar.name!r} already exists with different rules",
                    context={"table": "calendars", "key": {"name": calendar.name}},
                )
            await self._db.execute(
                "INSERT INTO calendars (name, definition_json) VALUES (?, ?)",
                (calendar.name, calendar.model_dump_json()),
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
            rows = await self._fetchall("SELECT name FROM calendars")
            return sorted({r["name"] for r in rows} | set(BUILTIN_CALENDARS))

    async def _stored_calendars(self, names: list[str]) -> dict[str, Calendar]:
        if not names:
            return {}
        placeholders = ", ".join("?" for _ in names)
        rows = await self._fetchall(
            f"SELECT * FROM calendars WHERE name IN ({placeholders})", names
        )
        return {
            r["name"]: Calendar.model_validate_json(r["definition_json"]) for r in rows
        }

    # --- Rounding Conventions ---

    async def get_rounding_digits(self, currency: str) -> int:
        """Stored rounding digits, falling back to the ISO minor unit."""
        code = normalize_currency(currency)
        with storage_errors("query", "rounding_digits", currency=code):
            row = await self._fetchone(
                "SELECT digits FROM rounding_digits WHERE currency = ?", (code,)
            )
            return row["digits"] if row is not None else minor_units(code)

    async def set_rounding_digits(self, currency: str, digits: int) -> None:
        code = normalize_currency(currency)
        if digits < 0:
            raise ValidationError(
                f"digits must be >= 0, got {digits}",
                context={"entity": "rounding_digits", "currency": code},
            )
        with storage_errors("insert", "rounding_digits", currency=code):
            await self._db.execute(
                "INSERT OR REPLACE INTO rounding_digits (currency, digits) VALUES (?, ?)",
                (code, digits),
            )

    # --- Derived Results ---

    async def replace_cash_flows(self, asset_id: AssetId, flows: list[CashFlow]) -> None:
        """Replace the cached cash-flow schedule of an asset."""
        with storage_errors("insert", "cash_flows", asset_id=asset_id):
            await self._require_asset(asset_id)
            await self._db.execute("DELETE FROM cash_flows WHERE asset_id = ?", (asset_id,))
            await self._db.executemany(
                """INSERT INTO cash_flows (asset_id, seq, pay_date, amount, currency, kind)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [
                    (asset_id, seq, cf.date.isoformat(), str(cf.amount), cf.currency, str(cf.kind))
                    for seq, cf in enumerate(flows)
                ],
            )

    async def get_cash_flows(self, asset_id: AssetId) -> list[CashFlow]:
        with storage_errors("query", "cash_flows", asset_id=asset_id):
            rows = await self._fetchall(
                "SELECT * FROM cash_flows WHERE asset_id = ? ORDER BY seq", (asset_id,)
            )
            return [
                CashFlow(
                    asset_id=r["asset_id"],
                    date=date.fromisoformat(r["pay_date"]),
                    amount=Decimal(r["amount"]),
                    currency=r["currency"],
                    kind=CashFlowKind(r["kind"]),
                )
                for r in rows
            ]

    async def save_yield_result(self, result: YieldResult) -> None:
        with storage_errors("insert", "yield_results", asset_id=result.asset_id):
            await self._require_asset(result.asset_id)
            await self._db.execute(
                """INSERT OR REPLACE INTO yield_results
                   (asset_id, as_of, price, yield_rate, iterations, method)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    result.asset_id,
                    result.as_of.isoformat(),
                    str(result.price),
                    result.yield_rate,
                    result.iterations,
                    result.method,
                ),
            )

    async def get_yield_results(self, asset_id: AssetId) -> list[YieldResult]:
        with storage_errors("query", "yield_results", asset_id=asset_id):
            rows = await self._fetchall(
                "SELECT * FROM yield_results WHERE asset_id = ? ORDER BY as_of", (asset_id,)
            )
            return [
                YieldResult(
                    asset_id=r["asset_id"],
                    as_of=date.fromisoformat(r["as_of"]),
                    price=Decimal(r["price"]),
                    yield_rate=r["yield_rate"],
                    iterations=r["iterations"],
                    method=r["method"],
                )
                for r in rows
            ]

    # --- Row Mapping Helpers ---

    @staticmethod
    def _row_to_asset(row: aiosqlite.Row) -> Asset:
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
    def _row_to_ticker(row: aiosqlite.Row) -> Ticker:
        return Ticker(
            id=row["id"],
            name=row["name"],
            asset_id=row["asset_id"],
            source=row["source"],
            currency=row["currency"],
            factor=Decimal(row["factor"]),
        )

    @staticmethod
    def _row_to_quote(row: aiosqlite.Row) -> Quote:
        return Quote(
            id=row["id"],
            asset_id=row["asset_id"],
            time=parse_time(row["time"]),
            price=Decimal(row["price"]),
            currency=row["currency"],
            source=row["source"],
            volume=_dec(row["volume"]),
        )

    @staticmethod
    def _row_to_transaction(row: aiosqlite.Row) -> Transaction:
        return Transaction(
            id=row["id"],
            asset_id=row["asset_id"],
            trade_date=date.fromisoformat(row["trade_date"]),
            type=TransactionType(row["type"]),
            quantity=Decimal(row["quantity"]),
            price=Decimal(row["price"]),
            fees=Decimal(row["fees"]),
            amount=_dec(row["amount"]),
            currency=row["currency"],
            reverses=row["reverses"],
            note=row["note"],
        )
