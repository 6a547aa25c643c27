"""Tests for finql.core.exceptions."""

import pytest

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


class TestExceptionHierarchy:
    """Verify the exception class hierarchy."""

    @pytest.mark.parametrize(
        "exc",
        [
            ConfigError,
            ValidationError,
            ConflictError,
            NotFoundError,
            DateOrderError,
            RangeError,
            DataSourceError,
            PricingError,
            StorageError,
        ],
    )
    def test_direct_subclasses(self, exc):
        assert issubclass(exc, FinqlError)

    def test_calendar_not_found_is_validation(self):
        assert issubclass(CalendarNotFoundError, ValidationError)

    def test_out_of_order_is_conflict(self):
        assert issubclass(OutOfOrderQuoteError, ConflictError)

    def test_source_errors(self):
        assert issubclass(SourceUnavailableError, DataSourceError)
        assert issubclass(RateLimitError, DataSourceError)

    def test_pricing_errors(self):
        assert issubclass(NonConvergenceError, PricingError)
        assert issubclass(MissingQuoteError, PricingError)

    def test_finql_error_is_exception(self):
        assert issubclass(FinqlError, Exception)


class TestExceptionContext:
    """Verify context dict behavior."""

    def test_context_preserved(self):
        exc = ConflictError(
            "Quote already stored",
            context={"table": "quotes", "key": {"asset_id": 1, "source": "A"}},
        )
        assert exc.context["table"] == "quotes"
        assert exc.context["key"]["source"] == "A"

    def test_default_context_is_empty_dict(self):
        exc = StorageError("boom")
        assert exc.context == {}

    def test_message(self):
        exc = DateOrderError("end before start")
        assert str(exc) == "end before start"

    def test_catch_by_base(self):
        with pytest.raises(FinqlError):
            raise NonConvergenceError("no root", context={"iterations": 100})
