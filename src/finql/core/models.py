"""Pydantic data models — the system's type contracts."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from finql.core.currency import Currency, normalize_currency
from finql.core.exceptions import ValidationError

# --- Type Aliases ---

AssetId = int
SourceName = str
CalendarName = str

# --- Enumerations ---


class AssetKind(StrEnum):
    """Instrument families known to the toolbox."""

    EQUITY = "equity"
    BOND = "bond"
    FUND = "fund"
    CASH = "cash"


class Frequency(StrEnum):
    """Coupon payment frequency."""

    ANNUAL = "annual"
    SEMIANNUAL = "semiannual"
    QUARTERLY = "quarterly"
    MONTHLY = "monthly"

    @property
    def periods_per_year(self) -> int:
        return {"annual": 1, "semiannual": 2, "quarterly": 4, "monthly": 12}[self.value]

    @property
    def months(self) -> int:
        return 12 // self.periods_per_year


class DayCountConv(StrEnum):
    """Day-count conventions supported by year_fraction()."""

    ACT_365F = "act/365f"
    ACT_360 = "act/360"
    THIRTY_360 = "30/360"
    THIRTY_E_360 = "30e/360"
    ACT_ACT_ISDA = "act/act isda"


class RollConvention(StrEnum):
    """How a date falling on a non-business day is moved."""

    UNADJUSTED = "unadjusted"
    FOLLOWING = "following"
    PRECEDING = "preceding"
    MODIFIED_FOLLOWING = "modified_following"
    MODIFIED_PRECEDING = "modified_preceding"


class TransactionType(StrEnum):
    """Ledger entry types."""

    BUY = "buy"
    SELL = "sell"
    DIVIDEND = "dividend"
    INTEREST = "interest"


class CashFlowKind(StrEnum):
    COUPON = "coupon"
    REDEMPTION = "redemption"


class StorageBackend(StrEnum):
    """Supported storage backends."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class InsertOutcome(StrEnum):
    """Result of an idempotent insert."""

    INSERTED = "inserted"
    DUPLICATE = "duplicate"


# --- Validation helpers ---


def _isin_check_digit_ok(isin: str) -> bool:
    """Luhn check over the ISIN with letters expanded to two digits."""
    digits = "".join(str(int(c, 36)) for c in isin[:-1])
    total = 0
    for i, ch in enumerate(reversed(digits)):
        n = int(ch)
        if i % 2 == 0:
            n *= 2
            if n > 9:
                n -= 9
        total += n
    return (10 - total % 10) % 10 == int(isin[-1])


# --- Asset Models ---


class BondTerms(BaseModel):
    """Static terms of a fixed-coupon bond."""

    model_config = ConfigDict(frozen=True)

    issue_date: date
    maturity: date
    coupon_rate: Decimal
    frequency: Frequency = Frequency.ANNUAL
    day_count: DayCountConv = DayCountConv.ACT_ACT_ISDA
    notional: Decimal = Decimal(100)
    calendar: CalendarName = "TARGET"
    roll: RollConvention = RollConvention.MODIFIED_FOLLOWING

    @field_validator("coupon_rate")
    @classmethod
    def coupon_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError(f"coupon_rate must be >= 0, got {v}")
        return v

    @field_validator("notional")
    @classmethod
    def notional_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError(f"notional must be > 0, got {v}")
        return v

    @model_validator(mode="after")
    def maturity_after_issue(self) -> BondTerms:
        if self.maturity <= self.issue_date:
            raise ValueError(
                f"maturity ({self.maturity}) must be after issue_date ({self.issue_date})"
            )
        return self


class Asset(BaseModel):
    """A financial instrument. Static once stored, except for metadata."""

    model_config = ConfigDict(frozen=True)

    id: AssetId | None = None
    name: str
    kind: AssetKind
    currency: Currency
    isin: str | None = None
    wkn: str | None = None
    note: str | None = None
    terms: BondTerms | None = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be empty")
        return v.strip()

    @field_validator("currency")
    @classmethod
    def currency_code(cls, v: str) -> str:
        return normalize_currency(v)

    @field_validator("isin")
    @classmethod
    def isin_format(cls, v: str | None) -> str | None:
        if v is None:
            return None
        isin = v.strip().upper()
        if len(isin) != 12 or not isin[:2].isalpha() or not isin.isalnum():
            raise ValueError(f"Invalid ISIN format: {v!r}")
        if not isin[-1].isdigit() or not _isin_check_digit_ok(isin):
            raise ValueError(f"Invalid ISIN check digit: {v!r}")
        return isin

    @model_validator(mode="after")
    def terms_match_kind(self) -> Asset:
        if self.kind == AssetKind.BOND and self.terms is None:
            raise ValueError("bond assets require terms")
        if self.kind != AssetKind.BOND and self.terms is not None:
            raise ValueError(f"{self.kind} assets must not carry bond terms")
        return self

    @property
    def is_bond(self) -> bool:
        return self.kind == AssetKind.BOND

    def with_id(self, asset_id: AssetId) -> Asset:
        return self.model_copy(update={"id": asset_id})


class Ticker(BaseModel):
    """Symbol under which a market-data source knows an asset."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str
    asset_id: AssetId
    source: SourceName
    currency: Currency
    factor: Decimal = Decimal(1)

    @field_validator("currency")
    @classmethod
    def currency_code(cls, v: str) -> str:
        return normalize_currency(v)

    @field_validator("factor")
    @classmethod
    def factor_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError(f"factor must be > 0, got {v}")
        return v


# --- Market Data ---


class Quote(BaseModel):
    """A single market quote. Append-only; unique on (asset_id, time, source)."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    asset_id: AssetId
    time: datetime
    price: Decimal
    currency: Currency
    source: SourceName
    volume: Decimal | None = None

    @field_validator("time")
    @classmethod
    def time_is_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None or v.utcoffset() is None:
            raise ValueError("quote time must be timezone-aware")
        return v.astimezone(timezone.utc)

    @field_validator("price")
    @classmethod
    def price_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError(f"price must be > 0, got {v}")
        return v

    @field_validator("currency")
    @classmethod
    def currency_code(cls, v: str) -> str:
        return normalize_currency(v)

    @field_validator("source")
    @classmethod
    def source_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("source must not be empty")
        return v

    @property
    def day(self) -> date:
        """UTC calendar day the quote belongs to."""
        return self.time.date()

    @property
    def key(self) -> tuple[AssetId, datetime, SourceName]:
        return (self.asset_id, self.time, self.source)

    def same_payload(self, other: Quote) -> bool:
        return (
            self.key == other.key
            and self.price == other.price
            and self.currency == other.currency
            and self.volume == other.volume
        )


# --- Ledger ---


class Transaction(BaseModel):
    """Append-only ledger entry.

    Buys and sells carry a positive quantity and a unit price; dividends
    and interest carry the received cash in ``amount``. A transaction with
    ``reverses`` set cancels the effect of the referenced transaction.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    asset_id: AssetId
    trade_date: date
    type: TransactionType
    quantity: Decimal = Decimal(0)
    price: Decimal = Decimal(0)
    fees: Decimal = Decimal(0)
    amount: Decimal | None = None
    currency: Currency
    reverses: int | None = None
    note: str | None = None

    @field_validator("currency")
    @classmethod
    def currency_code(cls, v: str) -> str:
        return normalize_currency(v)

    @field_validator("fees")
    @classmethod
    def fees_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError(f"fees must be >= 0, got {v}")
        return v

    @model_validator(mode="after")
    def fields_match_type(self) -> Transaction:
        if self.type in (TransactionType.BUY, TransactionType.SELL):
            if self.quantity <= 0:
                raise ValueError(f"{self.type} quantity must be > 0")
            if self.price < 0:
                raise ValueError(f"{self.type} price must be >= 0")
            if self.amount is not None:
                raise ValueError(f"{self.type} must not carry an amount")
        else:
            if self.amount is None:
                raise ValueError(f"{self.type} requires an amount")
            if self.quantity != 0:
                raise ValueError(f"{self.type} must not carry a quantity")
        return self

    @property
    def is_reversal(self) -> bool:
        return self.reverses is not None

    @property
    def cash_amount(self) -> Decimal:
        """Signed cash effect on the account (negative = cash paid out)."""
        if self.type == TransactionType.BUY:
            value = -(self.quantity * self.price + self.fees)
        elif self.type == TransactionType.SELL:
            value = self.quantity * self.price - self.fees
        else:
            value = self.amount - self.fees
        return -value if self.is_reversal else value

    def offset(self, trade_date: date | None = None, note: str | None = None) -> Transaction:
        """Build the offsetting transaction that corrects this one."""
        if self.id is None:
            raise ValidationError(
                "Only stored transactions can be offset",
                context={"entity": "transaction"},
            )
        if self.is_reversal:
            raise ValidationError(
                "A reversal cannot itself be offset",
                context={"entity": "transaction", "id": self.id},
            )
        return self.model_copy(
            update={
                "id": None,
                "trade_date": trade_date or self.trade_date,
                "reverses": self.id,
                "note": note or f"reversal of #{self.id}",
            }
        )


# --- Derived Models ---


class CashFlow(BaseModel):
    """A single dated payment generated from instrument terms."""

    model_config = ConfigDict(frozen=True)

    asset_id: AssetId | None
    date: date
    amount: Decimal
    currency: Currency
    kind: CashFlowKind = CashFlowKind.COUPON


class Position(BaseModel):
    """Holding in one asset, folded from the transaction ledger."""

    model_config = ConfigDict(frozen=True)

    asset_id: AssetId
    as_of: date | None = None
    quantity: Decimal = Decimal(0)
    cost_basis: Decimal = Decimal(0)
    realized_gain: Decimal = Decimal(0)
    income: Decimal = Decimal(0)
    currency: Currency

    @property
    def average_cost(self) -> Decimal | None:
        if self.quantity == 0:
            return None
        return self.cost_basis / self.quantity

    @property
    def is_closed(self) -> bool:
        return self.quantity == 0


class YieldResult(BaseModel):
    """Yield solved from an observed price, as written back to storage."""

    model_config = ConfigDict(frozen=True)

    asset_id: AssetId
    as_of: date
    price: Decimal
    yield_rate: float
    iterations: int
    method: str


# --- Validated constructors ---


def _build(model: type[BaseModel], entity: str, data: dict[str, Any]):
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {entity}: {e.errors()[0]['msg']}",
            context={"entity": entity, "errors": e.errors(include_url=False)},
        ) from e


def new_asset(**fields: Any) -> Asset:
    """Create an Asset, raising ValidationError on inconsistent terms."""
    return _build(Asset, "asset", fields)


def new_ticker(**fields: Any) -> Ticker:
    return _build(Ticker, "ticker", fields)


def new_quote(**fields: Any) -> Quote:
    """Create a Quote, raising ValidationError on malformed input."""
    return _build(Quote, "quote", fields)


def new_transaction(**fields: Any) -> Transaction:
    """Create a Transaction, raising ValidationError on malformed input."""
    return _build(Transaction, "transaction", fields)
