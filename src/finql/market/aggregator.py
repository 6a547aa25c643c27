"""Quote aggregation across ranked market-data sources.

Every quote a source delivers is stored, whatever its rank. Which quote
is authoritative for an (asset, day) is decided when reading, from the
configured source ranking, so lower-priority quotes stay available for
audit.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from finql.core.config import AggregatorConfig
from finql.core.exceptions import (
    ConfigError,
    ConflictError,
    OutOfOrderQuoteError,
    SourceUnavailableError,
)
from finql.core.models import AssetId, InsertOutcome, Quote, Ticker
from finql.market.sources import QuoteSource
from finql.storage.base import Repository, RepositorySession

logger = logging.getLogger(__name__)

AuthoritativeKey = tuple[AssetId, date]


@dataclass(frozen=True)
class FetchFailure:
    """A (source, ticker) fetch that failed in one cycle."""

    source: str
    ticker: str
    error: str


@dataclass
class AggregationResult:
    """Outcome of one ``update_quotes`` cycle."""

    inserted: int = 0
    duplicates: int = 0
    conflicts: list[Quote] = field(default_factory=list)
    out_of_order: list[Quote] = field(default_factory=list)
    failures: list[FetchFailure] = field(default_factory=list)
    authoritative: dict[AuthoritativeKey, Quote] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not (self.conflicts or self.out_of_order or self.failures)


# --- Authority resolution ---


def source_rank(ranking: Sequence[str]) -> Callable[[str], tuple[int, str]]:
    """Sort key for source names: ranked sources first, the rest by name."""
    positions = {name: i for i, name in enumerate(ranking)}
    unranked = len(ranking)

    def key(source: str) -> tuple[int, str]:
        return (positions.get(source, unranked), source)

    return key


def resolve_authoritative(
    quotes: Iterable[Quote], ranking: Sequence[str]
) -> dict[AuthoritativeKey, Quote]:
    """Pick the authoritative quote for every (asset_id, UTC day).

    The highest-ranked source wins. Within one source, the latest quote
    of the day wins.
    """
    rank = source_rank(ranking)
    best: dict[AuthoritativeKey, Quote] = {}
    for quote in quotes:
        key = (quote.asset_id, quote.day)
        current = best.get(key)
        if current is None:
            best[key] = quote
            continue
        new_rank, cur_rank = rank(quote.source), rank(current.source)
        if new_rank < cur_rank or (new_rank == cur_rank and quote.time > current.time):
            best[key] = quote
    return best


def latest_authoritative(quotes: Iterable[Quote], ranking: Sequence[str]) -> Quote | None:
    """Authoritative quote of the most recent quoted day, or None."""
    resolved = resolve_authoritative(quotes, ranking)
    if not resolved:
        return None
    return resolved[max(resolved, key=lambda k: k[1])]


async def latest_authoritative_quote(
    session: RepositorySession,
    asset_id: AssetId,
    as_of: datetime,
    ranking: Sequence[str],
    staleness_days: int,
) -> Quote | None:
    """Latest authoritative quote no older than ``staleness_days`` before ``as_of``."""
    start = as_of - timedelta(days=staleness_days)
    quotes = await session.get_quotes(asset_id, start=start, end=as_of)
    return latest_authoritative(quotes, ranking)


# --- Aggregator ---


class QuoteAggregator:
    """Fetches quotes for all known tickers and stores them.

    Sources are queried concurrently and awaited together; a failing or
    slow source only costs its own tickers, which are fetched again, with
    a widened window, on the next cycle.
    """

    def __init__(
        self,
        repository: Repository,
        sources: Iterable[QuoteSource],
        config: AggregatorConfig,
    ) -> None:
        self._repo = repository
        self._config = config
        self._sources: dict[str, QuoteSource] = {}
        for source in sources:
            if source.name in self._sources:
                raise ConfigError(
                    f"Duplicate quote source name: {source.name!r}",
                    context={"source": source.name},
                )
            self._sources[source.name] = source
        # (source, ticker id) -> start of the window that still needs fetching
        self._backlog: dict[tuple[str, int], datetime] = {}

    @property
    def ranking(self) -> list[str]:
        return list(self._config.source_priority)

    @property
    def backlog(self) -> dict[tuple[str, int], datetime]:
        return dict(self._backlog)

    async def update_quotes(self, start: datetime, end: datetime) -> AggregationResult:
        """Run one fetch-and-store cycle for the window [start, end]."""
        result = AggregationResult()
        async with self._repo.unit_of_work() as session:
            tickers = [
                t for t in await session.list_tickers() if t.source in self._sources
            ]

        jobs = [
            (ticker, min(start, self._backlog.get((ticker.source, ticker.id), start)))
            for ticker in tickers
        ]
        outcomes = await asyncio.gather(
            *(self._fetch(ticker, job_start, end) for ticker, job_start in jobs),
            return_exceptions=True,
        )

        fetched: list[Quote] = []
        for (ticker, job_start), outcome in zip(jobs, outcomes):
            key = (ticker.source, ticker.id)
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(
                    "Fetch from %s failed for %s: %s", ticker.source, ticker.name, outcome
                )
                result.failures.append(
                    FetchFailure(source=ticker.source, ticker=ticker.name, error=str(outcome))
                )
                self._backlog[key] = job_start
                continue
            self._backlog.pop(key, None)
            fetched.extend(_apply_factor(q, ticker) for q in outcome)

        fetched.sort(key=lambda q: (q.time, q.source, q.asset_id))
        for quote in fetched:
            await self._store(quote, result)

        earliest = min((s for _, s in jobs), default=start)
        earliest = earliest.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        async with self._repo.unit_of_work() as session:
            for asset_id in sorted({t.asset_id for t in tickers}):
                stored = await session.get_quotes(asset_id, start=earliest, end=end)
                result.authoritative.update(resolve_authoritative(stored, self.ranking))

        logger.info(
            "Quote update %s..%s: %d inserted, %d duplicate, %d conflicts, "
            "%d out of order, %d failed fetches",
            start.isoformat(), end.isoformat(),
            result.inserted, result.duplicates, len(result.conflicts),
            len(result.out_of_order), len(result.failures),
        )
        return result

    async def authoritative_quotes(
        self,
        asset_id: AssetId,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[date, Quote]:
        """Authoritative quote per UTC day for one asset."""
        async with self._repo.unit_of_work() as session:
            quotes = await session.get_quotes(asset_id, start=start, end=end)
        return {day: q for (_, day), q in resolve_authoritative(quotes, self.ranking).items()}

    async def latest_quote(
        self, asset_id: AssetId, as_of: datetime | None = None
    ) -> Quote | None:
        """Latest authoritative quote within the staleness window."""
        as_of = as_of or datetime.now(timezone.utc)
        async with self._repo.unit_of_work() as session:
            return await latest_authoritative_quote(
                session, asset_id, as_of, self.ranking, self._config.staleness_days
            )

    async def poll(
        self,
        stop: asyncio.Event,
        window: timedelta = timedelta(days=7),
        interval: float | None = None,
    ) -> int:
        """Run update cycles until ``stop`` is set; returns the cycle count.

        Each cycle covers the trailing ``window`` up to now.
        """
        interval = self._config.poll_interval if interval is None else interval
        cycles = 0
        while not stop.is_set():
            now = datetime.now(timezone.utc)
            await self.update_quotes(now - window, now)
            cycles += 1
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        return cycles

    async def _fetch(self, ticker: Ticker, start: datetime, end: datetime) -> list[Quote]:
        source = self._sources[ticker.source]
        try:
            return await asyncio.wait_for(
                source.fetch_quotes(ticker, start, end),
                timeout=self._config.fetch_timeout,
            )
        except asyncio.TimeoutError as e:
            raise SourceUnavailableError(
                f"Source {source.name!r} timed out after {self._config.fetch_timeout}s",
                context={"source": source.name, "ticker": ticker.name},
            ) from e

    async def _store(self, quote: Quote, result: AggregationResult) -> None:
        try:
            async with self._repo.unit_of_work() as session:
                outcome = await session.insert_quote(quote)
        except OutOfOrderQuoteError as e:
            logger.warning("Rejected out-of-order quote: %s", e)
            result.out_of_order.append(quote)
            return
        except ConflictError as e:
            logger.warning("Rejected conflicting quote: %s", e)
            result.conflicts.append(quote)
            return
        if outcome == InsertOutcome.INSERTED:
            result.inserted += 1
        else:
            result.duplicates += 1


def _apply_factor(quote: Quote, ticker: Ticker) -> Quote:
    update: dict = {
        "asset_id": ticker.asset_id,
        "currency": ticker.currency,
        "source": ticker.source,
    }
    if ticker.factor != 1:
        update["price"] = quote.price * ticker.factor
    return quote.model_copy(update=update)
