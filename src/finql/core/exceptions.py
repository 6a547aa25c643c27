"""Custom exception hierarchy for finql."""

from typing import Any


class FinqlError(Exception):
    """Base exception for all finql errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(FinqlError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str — the config field that failed validation
        value: Any — the invalid value
    """


class ValidationError(FinqlError):
    """Malformed entity construction.

    Policy: rejected before persistence, never partially stored.

    Context keys:
        entity: str — "asset", "quote", "transaction", ...
        errors: list — pydantic error details, when available
    """


class CalendarNotFoundError(ValidationError):
    """A calendar name could not be resolved.

    Context keys:
        calendar: str — the unknown name
    """


class ConflictError(FinqlError):
    """Duplicate key with a divergent payload.

    Policy: surfaced to the caller. Stored data is left unchanged.

    Context keys:
        table: str — the table involved
        key: dict — the conflicting key
    """


class OutOfOrderQuoteError(ConflictError):
    """Quote older than the newest stored quote for the same asset and source.

    Context keys:
        asset_id: int
        source: str
        latest: str — ISO timestamp of the newest stored quote
    """


class NotFoundError(FinqlError):
    """A referenced entity does not exist.

    Context keys:
        table: str
        id: Any
    """


class DateOrderError(FinqlError):
    """Dates passed in the wrong order (e.g. end before start).

    Policy: never silently corrected. Deterministic, never retried.

    Context keys:
        start: str
        end: str
    """


class RangeError(FinqlError):
    """Date outside the range a calendar algorithm supports.

    Context keys:
        year: int
        supported: str — e.g. "1583-4099"
    """


class DataSourceError(FinqlError):
    """A market-data source failed to deliver quotes.

    Policy: log, continue aggregation with the remaining sources, retry
    on the next scheduled cycle.

    Context keys:
        source: str — the source name
        ticker: str — the symbol that was requested
    """


class SourceUnavailableError(DataSourceError):
    """Source timed out, errored, or is unreachable."""


class RateLimitError(DataSourceError):
    """Source refused the request because of rate limiting.

    Context keys:
        retry_after: int | None — seconds to wait
    """


class PricingError(FinqlError):
    """Pricing computation could not produce a result."""


class NonConvergenceError(PricingError):
    """Root finder did not converge within its iteration budget.

    Policy: surfaced. No approximate value is returned.

    Context keys:
        target: float — the value the function had to reach
        iterations: int — iterations spent before giving up
        bracket: tuple[float, float] — search interval, when one was used
    """


class MissingQuoteError(PricingError):
    """No authoritative quote is available for a valuation.

    Context keys:
        asset_id: int
        as_of: str
    """


class StorageError(FinqlError):
    """Database operation failed.

    Policy: the enclosing unit of work is rolled back. Raise immediately.

    Context keys:
        operation: str — "insert", "query", "migrate", etc.
        table: str — the table involved
    """
