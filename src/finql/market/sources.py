"""Quote source protocol and built-in sources.

Architecture
------------
A market-data provider is reached through a ``QuoteSource``: it knows the
provider's own symbol for an asset (the ``Ticker``) and returns canonical
``Quote`` records for a time window.

    Provider → QuoteSource → list[Quote] → QuoteAggregator → Repository

Prices are returned exactly as the provider reports them; the aggregator
applies the ticker's ``factor`` before storing.
"""

from __future__ import annotations

import asyncio
import csv
import logging
from collections import defaultdict
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from finql.core.exceptions import DataSourceError, SourceUnavailableError
from finql.core.models import Quote, Ticker

logger = logging.getLogger(__name__)

_TIME_ALIASES = {"date", "Date", "DATE", "time", "Time", "timestamp", "Timestamp"}
_PRICE_ALIASES = {"close", "Close", "CLOSE", "price", "Price", "PRICE"}
_VOLUME_ALIASES = {"volume", "Volume", "VOLUME", "vol", "Vol"}


@runtime_checkable
class QuoteSource(Protocol):
    """Capability to fetch quotes from one market-data provider.

    Implementations raise ``SourceUnavailableError`` when the provider
    cannot be reached and ``RateLimitError`` when it refuses the request.
    """

    @property
    def name(self) -> str: ...

    async def fetch_quotes(
        self, ticker: Ticker, start: datetime, end: datetime
    ) -> list[Quote]:
        """Fetch quotes for ``ticker`` with start <= time <= end.

        Returns
        -------
        list[Quote]
            Quotes with ``source`` set to this source's name, in any order.
        """
        ...


class StaticQuoteSource:
    """In-memory source for manually entered quotes and tests.

    ``fail_with`` makes every following fetch raise the given exception,
    ``delay`` makes every fetch sleep first (to exercise timeouts).
    """

    def __init__(self, name: str, delay: float = 0.0) -> None:
        self._name = name
        self._delay = delay
        self._prices: dict[str, list[tuple[datetime, Decimal, Decimal | None]]] = defaultdict(list)
        self._error: Exception | None = None
        self.calls: list[tuple[str, datetime, datetime]] = []

    @property
    def name(self) -> str:
        return self._name

    def add(
        self,
        ticker_name: str,
        when: datetime,
        price: Decimal | float | str,
        volume: Decimal | None = None,
    ) -> None:
        self._prices[ticker_name].append((when, Decimal(str(price)), volume))

    def fail_with(self, error: Exception | None) -> None:
        self._error = error

    async def fetch_quotes(
        self, ticker: Ticker, start: datetime, end: datetime
    ) -> list[Quote]:
        self.calls.append((ticker.name, start, end))
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return [
            Quote(
                asset_id=ticker.asset_id,
                time=when,
                price=price,
                currency=ticker.currency,
                source=self._name,
                volume=volume,
            )
            for when, price, volume in self._prices.get(ticker.name, [])
            if start <= when <= end
        ]


def _find_column(headers: list[str], aliases: set[str]) -> str | None:
    """Find the first header that matches any alias."""
    for h in headers:
        if h in aliases:
            return h
    return None


class CSVQuoteSource:
    """Reads quotes from one CSV file per ticker.

    Parameters
    ----------
    name : str
        Source name stored on every quote.
    files : dict[str, str | Path]
        Ticker name → CSV path.
    quote_time : time
        Time of day (UTC) attached to rows that carry only a date.
    """

    def __init__(
        self,
        name: str,
        files: dict[str, str | Path],
        quote_time: time = time(0, 0),
    ) -> None:
        self._name = name
        self._files = {k: Path(v) for k, v in files.items()}
        self._quote_time = quote_time

    @property
    def name(self) -> str:
        return self._name

    async def fetch_quotes(
        self, ticker: Ticker, start: datetime, end: datetime
    ) -> list[Quote]:
        path = self._files.get(ticker.name)
        if path is None:
            return []
        try:
            rows = await asyncio.to_thread(_read_rows, path)
        except OSError as e:
            raise SourceUnavailableError(
                f"Cannot read {path}: {e}",
                context={"source": self._name, "ticker": ticker.name, "path": str(path)},
            ) from e
        quotes = self.adapt(rows, ticker)
        return [q for q in quotes if start <= q.time <= end]

    def adapt(self, rows: list[dict[str, Any]], ticker: Ticker) -> list[Quote]:
        """Parse csv.DictReader rows into quotes sorted by time."""
        if not rows:
            return []
        headers = list(rows[0].keys())
        time_col = _find_column(headers, _TIME_ALIASES)
        price_col = _find_column(headers, _PRICE_ALIASES)
        volume_col = _find_column(headers, _VOLUME_ALIASES)
        if time_col is None or price_col is None:
            raise DataSourceError(
                f"Cannot find time/price columns in headers: {headers}",
                context={"source": self._name, "ticker": ticker.name},
            )

        quotes: list[Quote] = []
        for row in rows:
            try:
                when = self._parse_time(row[time_col])
                price = Decimal(row[price_col])
                volume = Decimal(row[volume_col]) if volume_col and row.get(volume_col) else None
            except (ValueError, InvalidOperation):
                logger.warning("Skipping unparseable row in %s: %s", ticker.name, row)
                continue
            if price <= 0:
                logger.warning("Skipping non-positive price in %s: %s", ticker.name, row)
                continue
            quotes.append(
                Quote(
                    asset_id=ticker.asset_id,
                    time=when,
                    price=price,
                    currency=ticker.currency,
                    source=self._name,
                    volume=volume,
                )
            )
        return sorted(quotes, key=lambda q: q.time)

    def _parse_time(self, raw: str) -> datetime:
        raw = raw.strip()
        if len(raw) == 10:
            return datetime.combine(
                date.fromisoformat(raw), self._quote_time, tzinfo=timezone.utc
            )
        parsed = datetime.fromisoformat(raw)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


def _read_rows(path: Path) -> list[dict[str, str]]:
    with open(path, newline="") as f:
        return list(csv.DictReader(f))
