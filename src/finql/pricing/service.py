"""Async pricing façade over the repository.

Reads inputs in a unit of work, runs the synchronous pricing code, and
writes derived results back in the same unit of work.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import date, datetime, timezone

from finql.calendar.holidays import Calendar
from finql.core.config import FinqlConfig
from finql.core.exceptions import CalendarNotFoundError, MissingQuoteError, NotFoundError
from finql.core.models import Asset, AssetId, CashFlow, Position, YieldResult
from finql.market.aggregator import latest_authoritative_quote
from finql.pricing.bonds import yield_from_price
from finql.pricing.cashflows import bond_terms, generate_cash_flows
from finql.pricing.portfolio import Valuation, fold_transactions, value_positions
from finql.storage.base import Repository, RepositorySession

logger = logging.getLogger(__name__)


class PricingService:
    def __init__(self, repository: Repository, config: FinqlConfig | None = None) -> None:
        self._repo = repository
        self._config = config or FinqlConfig()

    async def cash_flows(self, asset_id: AssetId) -> list[CashFlow]:
        """Generate a bond's cash flows and replace the stored schedule."""
        async with self._repo.unit_of_work() as session:
            asset = await self._bond(session, asset_id)
            calendar = await self._calendar(session, asset)
            digits = await session.get_rounding_digits(asset.currency)
            flows = generate_cash_flows(asset, calendar, digits)
            await session.replace_cash_flows(asset_id, flows)
        logger.info("Stored %d cash flows for asset %d", len(flows), asset_id)
        return flows

    async def bond_yield(
        self, asset_id: AssetId, as_of: datetime | None = None
    ) -> YieldResult:
        """Solve the yield of the latest authoritative quote and store it.

        The quote's UTC day is used as settlement date.
        """
        as_of = as_of or datetime.now(timezone.utc)
        async with self._repo.unit_of_work() as session:
            asset = await self._bond(session, asset_id)
            calendar = await self._calendar(session, asset)
            quote = await latest_authoritative_quote(
                session,
                asset_id,
                as_of,
                self._config.aggregator.source_priority,
                self._config.aggregator.staleness_days,
            )
            if quote is None:
                raise MissingQuoteError(
                    f"No quote for asset {asset_id} within "
                    f"{self._config.aggregator.staleness_days} days before {as_of.isoformat()}",
                    context={"asset_id": asset_id, "as_of": as_of.isoformat()},
                )
            solution = yield_from_price(
                asset, quote.price, quote.day, calendar, config=self._config.pricing
            )
            result = YieldResult(
                asset_id=asset_id,
                as_of=quote.day,
                price=quote.price,
                yield_rate=solution.rate,
                iterations=solution.iterations,
                method=solution.method,
            )
            await session.save_yield_result(result)
        logger.info(
            "Yield of asset %d on %s: %.6f (%s, %d iterations)",
            asset_id, result.as_of, result.yield_rate, result.method, result.iterations,
        )
        return result

    async def yields_for(
        self, asset_ids: Iterable[AssetId], as_of: datetime | None = None
    ) -> dict[AssetId, YieldResult]:
        """Solve several yields concurrently; failures are logged and skipped."""
        ids = list(asset_ids)
        raw_results = await asyncio.gather(
            *(self.bond_yield(aid, as_of) for aid in ids), return_exceptions=True
        )
        results: dict[AssetId, YieldResult] = {}
        for aid, result in zip(ids, raw_results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Yield solve failed for asset %d: %s", aid, result)
            else:
                results[aid] = result
        return results

    async def positions(
        self, as_of: date | None = None, asset_id: AssetId | None = None
    ) -> dict[AssetId, Position]:
        async with self._repo.unit_of_work() as session:
            transactions = await session.get_transactions(asset_id=asset_id)
        return fold_transactions(transactions, as_of)

    async def nav(self, as_of: datetime | None = None) -> Valuation:
        """Value all positions at their latest authoritative quotes."""
        as_of = as_of or datetime.now(timezone.utc)
        async with self._repo.unit_of_work() as session:
            transactions = await session.get_transactions(end=as_of.date())
            positions = fold_transactions(transactions, as_of.date())
            quotes = {}
            digits = {}
            for aid, position in positions.items():
                digits[position.currency] = await session.get_rounding_digits(position.currency)
                if position.is_closed:
                    continue
                quote = await latest_authoritative_quote(
                    session,
                    aid,
                    as_of,
                    self._config.aggregator.source_priority,
                    self._config.aggregator.staleness_days,
                )
                if quote is not None:
                    quotes[aid] = quote
        return value_positions(positions.values(), quotes, digits)

    @staticmethod
    async def _bond(session: RepositorySession, asset_id: AssetId) -> Asset:
        asset = await session.get_asset(asset_id)
        if asset is None:
            raise NotFoundError(
                f"Asset {asset_id} does not exist",
                context={"table": "assets", "id": asset_id},
            )
        bond_terms(asset)
        return asset

    @staticmethod
    async def _calendar(session: RepositorySession, asset: Asset) -> Calendar:
        name = bond_terms(asset).calendar
        calendar = await session.get_calendar(name)
        if calendar is None:
            raise CalendarNotFoundError(
                f"Unknown calendar {name!r}", context={"calendar": name}
            )
        return calendar
