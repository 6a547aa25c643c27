"""finql.core — Foundation types, config, and exceptions."""

from finql.core.config import (
    AggregatorConfig,
    FinqlConfig,
    PricingConfig,
    StorageConfig,
    load_config,
)
from finql.core.currency import minor_units, normalize_currency, round_amount
from finql.core.exceptions import (
    CalendarNotFoundError,
    ConfigError,
    ConflictError,
    DataSourceError,
    DateOrderError,
    FinqlError,
    MissingQuoteError,
    NonConvergenceError,
    NotFoundError,
    OutOfOrderQuoteError,
    PricingError,
    RangeError,
    RateLimitError,
    SourceUnavailableError,
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
    DayCountConv,
    Frequency,
    InsertOutcome,
    Position,
    Quote,
    RollConvention,
    StorageBackend,
    Ticker,
    Transaction,
    TransactionType,
    YieldResult,
    new_asset,
    new_quote,
    new_ticker,
    new_transaction,
)

__all__ = [
    # Type aliases
    "AssetId",
    # Enums
    "AssetKind",
    "Frequency",
    "DayCountConv",
    "RollConvention",
    "TransactionType",
    "CashFlowKind",
    "StorageBackend",
    "InsertOutcome",
    # Entities
    "Asset",
    "BondTerms",
    "Ticker",
    "Quote",
    "Transaction",
    "CashFlow",
    "Position",
    "YieldResult",
    # Constructors
    "new_asset",
    "new_ticker",
    "new_quote",
    "new_transaction",
    # Currency
    "minor_units",
    "normalize_currency",
    "round_amount",
    # Config
    "FinqlConfig",
    "StorageConfig",
    "AggregatorConfig",
    "PricingConfig",
    "load_config",
    # Exceptions
    "FinqlError",
    "ConfigError",
    "ValidationError",
    "CalendarNotFoundError",
    "ConflictError",
    "OutOfOrderQuoteError",
    "NotFoundError",
    "DateOrderError",
    "RangeError",
    "DataSourceError",
    "SourceUnavailableError",
    "RateLimitError",
    "PricingError",
    "NonConvergenceError",
    "MissingQuoteError",
    "StorageError",
]
