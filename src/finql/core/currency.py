"""Currency codes and cash rounding conventions."""

from __future__ import annotations

import re
from decimal import ROUND_HALF_EVEN, Decimal

Currency = str

DEFAULT_MINOR_UNITS = 2

# ISO 4217 exponents that differ from the default of 2
_MINOR_UNITS: dict[str, int] = {
    "BIF": 0,
    "CLP": 0,
    "ISK": 0,
    "JPY": 0,
    "KRW": 0,
    "PYG": 0,
    "VND": 0,
    "BHD": 3,
    "JOD": 3,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
}

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def normalize_currency(code: str) -> Currency:
    """Upper-case and validate a three-letter currency code."""
    normalized = code.strip().upper()
    if not _CURRENCY_RE.match(normalized):
        raise ValueError(f"currency must be a 3-letter ISO code, got {code!r}")
    return normalized


def minor_units(currency: Currency) -> int:
    """Number of decimal places of the currency's minor unit."""
    return _MINOR_UNITS.get(currency.upper(), DEFAULT_MINOR_UNITS)


def round_amount(
    amount: Decimal, currency: Currency, digits: int | None = None
) -> Decimal:
    """Round a cash amount to the currency's minor unit (banker's rounding).

    ``digits`` overrides the built-in table, e.g. with a value stored in
    the repository via ``set_rounding_digits``.
    """
    places = minor_units(currency) if digits is None else digits
    return amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN)


def to_decimal(value: float | int | str | Decimal) -> Decimal:
    """Convert a solver float to Decimal without binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)
