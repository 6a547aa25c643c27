"""Repository contract shared by all storage backends.

A backend exposes a ``Repository`` whose ``unit_of_work()`` yields a
``RepositorySession``. Every operation runs through a session; the writes
of one session commit together or not at all.

    async with repo.unit_of_work() as session:
        tx = await session.append_transaction(tx)
        await session.replace_cash_flows(asset_id, flows)
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import AbstractAsyncContextManager, contextmanager
from datetime import date, datetime, timezone
from typing import Any, Protocol, runtime_checkable

from finql.calendar.holidays import Calendar
from finql.core.exceptions import (
    ConflictError,
    FinqlError,
    OutOfOrderQuoteError,
    StorageError,
    ValidationError,
)
from finql.core.models import (
    Asset,
    AssetId,
    CashFlow,
    InsertOutcome,
    Quote,
    Ticker,
    Transaction,
    YieldResult,
)

# Fixed-width UTC timestamps so that text ordering equals time ordering
_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


@runtime_checkable
class RepositorySession(Protocol):
    """Operations available inside one unit of work."""

    # --- Assets ---
    async def insert_asset(self, asset: Asset) -> Asset: ...
    async def get_asset(self, asset_id: AssetId) -> Asset | None: ...
    async def find_asset(
        self,
        name: str | None = None,
        isin: str | None = None,
        wkn: str | None = None,
    ) -> Asset | None: ...
    async def list_assets(self) -> list[Asset]: ...
    async def update_asset(self, asset: Asset) -> Asset: ...
    async def delete_asset(self, asset_id: AssetId) -> None: ...

    # --- Tickers ---
    async def insert_ticker(self, ticker: Ticker) -> Ticker: ...
    async def get_ticker(self, ticker_id: int) -> Ticker | None: ...
    async def find_ticker(self, name: str, source: str) -> Ticker | None: ...
    async def list_tickers(
        self, asset_id: AssetId | None = None, source: str | None = None
    ) -> list[Ticker]: ...
    async def update_ticker(self, ticker: Ticker) -> Ticker: ...
    async def delete_ticker(self, ticker_id: int) -> None: ...

    # --- Quotes ---
    async def insert_quote(self, quote: Quote) -> InsertOutcome: ...
    async def get_quotes(
        self,
        asset_id: AssetId,
        start: datetime | None = None,
        end: datetime | None = None,
        source: str | None = None,
    ) -> list[Quote]: ...
    async def get_last_quote_before(
        self, asset_id: AssetId, time: datetime, source: str | None = None
    ) -> Quote | None: ...

    # --- Transactions ---
    async def append_transaction(self, transaction: Transaction) -> Transaction: ...
    async def get_transaction(self, transaction_id: int) -> Transaction | None: ...
    async def get_transactions(
        self,
        asset_id: AssetId | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Transaction]: ...

    # --- Calendars ---
    async def save_calendar(self, calendar: Calendar) -> None: ...
    async def get_calendar(self, name: str) -> Calendar | None: ...
    async def list_calendars(self) -> list[str]: ...

    # --- Rounding conventions ---
    async def get_rounding_digits(self, currency: str) -> int: ...
    async def set_rounding_digits(self, currency: str, digits: int) -> None: ...

    # --- Derived results ---
    async def replace_cash_flows(
        self, asset_id: AssetId, flows: list[CashFlow]
    ) -> None: ...
    async def get_cash_flows(self, asset_id: AssetId) -> list[CashFlow]: ...
    async def save_yield_result(self, result: YieldResult) -> None: ...
    async def get_yield_results(self, asset_id: AssetId) -> list[YieldResult]: ...


@runtime_checkable
class Repository(Protocol):
    """Storage backend: lifecycle plus units of work."""

    async def initialize(self) -> None: ...
    async def close(self) -> None: ...
    async def health_check(self) -> bool: ...
    def unit_of_work(self) -> AbstractAsyncContextManager[RepositorySession]: ...


# --- Shared helpers ---


@contextmanager
def storage_errors(operation: str, table: str, **context: Any) -> Iterator[None]:
    """Translate driver exceptions into StorageError.

    Toolbox exceptions (conflicts, validation, ...) pass through unchanged.
    """
    try:
        yield
    except FinqlError:
        raise
    except Exception as e:
        raise StorageError(
            f"Failed to {operation} {table}: {e}",
            context={"operation": operation, "table": table, **context},
        ) from e


def format_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(_TIME_FORMAT)


def parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value).astimezone(timezone.utc)


def check_duplicate_quote(existing: Quote, incoming: Quote) -> None:
    """Raise ConflictError unless ``incoming`` repeats ``existing`` exactly."""
    if not existing.same_payload(incoming):
        raise ConflictError(
            f"Quote for asset {incoming.asset_id} at {incoming.time.isoformat()} "
            f"from {incoming.source!r} already stored with price {existing.price}",
            context={
                "table": "quotes",
                "key": {
                    "asset_id": incoming.asset_id,
                    "time": incoming.time.isoformat(),
                    "source": incoming.source,
                },
                "stored_price": str(existing.price),
                "incoming_price": str(incoming.price),
            },
        )


def check_quote_order(incoming: Quote, latest: datetime | None) -> None:
    """Quotes of one asset and source must arrive in time order."""
    if latest is not None and incoming.time < latest:
        raise OutOfOrderQuoteError(
            f"Quote at {incoming.time.isoformat()} is older than the latest stored "
            f"quote ({latest.isoformat()}) for asset {incoming.asset_id} "
            f"from {incoming.source!r}",
            context={
                "table": "quotes",
                "asset_id": incoming.asset_id,
                "source": incoming.source,
                "latest": latest.isoformat(),
            },
        )


def check_metadata_update(stored: Asset, updated: Asset) -> None:
    """Only descriptive metadata of an asset may change after creation."""
    for field in ("kind", "currency", "terms"):
        if getattr(stored, field) != getattr(updated, field):
            raise ValidationError(
                f"Asset {field} is immutable once created",
                context={"entity": "asset", "id": stored.id, "field": field},
            )


def check_offset(original: Transaction, reversal: Transaction, already_reversed: bool) -> None:
    """A reversal must mirror the transaction it offsets, and only once."""
    if original.is_reversal:
        raise ValidationError(
            "A reversal cannot itself be offset",
            context={"entity": "transaction", "id": original.id},
        )
    for field in ("asset_id", "type", "quantity", "price", "fees", "amount", "currency"):
        if getattr(original, field) != getattr(reversal, field):
            raise ValidationError(
                f"Offsetting transaction differs from #{original.id} in {field}",
                context={"entity": "transaction", "id": original.id, "field": field},
            )
    if reversal.trade_date < original.trade_date:
        raise ValidationError(
            f"Offset of #{original.id} is dated {reversal.trade_date.isoformat()}, "
            f"before the transaction itself ({original.trade_date.isoformat()})",
            context={"entity": "transaction", "id": original.id, "field": "trade_date"},
        )
    if already_reversed:
        raise ConflictError(
            f"Transaction #{original.id} has already been offset",
            context={"table": "transactions", "key": {"reverses": original.id}},
        )


def check_ledger(ledger: list[Transaction], incoming: Transaction) -> None:
    """Appending ``incoming`` must leave the asset's ledger foldable.

    Rejects sales of more than is held at the trade date, offsets that
    would leave a negative position and currency changes. ``ledger``
    holds the asset's stored transactions.
    """
    from finql.pricing.portfolio import fold_transactions

    fold_transactions([*ledger, incoming])
