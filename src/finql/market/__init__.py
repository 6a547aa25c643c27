"""Quote aggregation: sources, ranking, authoritative quotes."""

from finql.market.aggregator import (
    AggregationResult,
    FetchFailure,
    QuoteAggregator,
    latest_authoritative,
    latest_authoritative_quote,
    resolve_authoritative,
    source_rank,
)
from finql.market.sources import CSVQuoteSource, QuoteSource, StaticQuoteSource

__all__ = [
    # Sources
    "QuoteSource",
    "StaticQuoteSource",
    "CSVQuoteSource",
    # Aggregation
    "QuoteAggregator",
    "AggregationResult",
    "FetchFailure",
    "resolve_authoritative",
    "latest_authoritative",
    "latest_authoritative_quote",
    "source_rank",
]
