"""Assemble the comparison report for a stored filing."""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

import httpx
from sqlalchemy.engine import Engine

from . import db
from .comparison import ComparisonEngine
from .config import Settings
from .models import Filing, Report
from .prices import EODPriceFetcher, PriceCache, SqlPriceCache
from .resolver import TickerResolver
from .sources import create_market_sources

LOGGER = logging.getLogger(__name__)

Summarizer = Callable[[Report], Awaitable[str]]


class FilingNotFoundError(LookupError):
    """Raised when the requested filing is not in the store."""


class ReportAssembler:
    """Load the three filings of a comparison and build the report payload."""

    def __init__(
        self,
        engine: Engine,
        comparison: ComparisonEngine,
        *,
        summarizer: Optional[Summarizer] = None,
    ) -> None:
        self.engine = engine
        self.comparison = comparison
        self.summarizer = summarizer

    def load_filings(self, filing_id: int) -> tuple[Filing, Optional[Filing], Optional[Filing]]:
        current = db.get_filing(self.engine, filing_id)
        if current is None:
            raise FilingNotFoundError(f"Filing {filing_id} not found")
        prior_quarter = db.find_prior_quarter_filing(self.engine, current.cik, current.filing_date)
        prior_year = db.find_same_quarter_prior_year(self.engine, current.cik, current.quarter, current.year)
        if prior_quarter is None:
            LOGGER.info("No prior quarter filing for %s %s", current.cik, current.label)
        if prior_year is None:
            LOGGER.info("No prior year filing for %s %s", current.cik, current.label)
        return current, prior_quarter, prior_year

    async def _summarize(self, report: Report) -> Optional[str]:
        if self.summarizer is None:
            return None
        try:
            return await self.summarizer(report)
        except Exception:
            LOGGER.exception("Summary generation failed for filing %s", report.current_filing.id)
            return None

    async def build(self, filing_id: int) -> Report:
        LOGGER.info("Generating report for filing %s", filing_id)
        current, prior_quarter, prior_year = await asyncio.to_thread(self.load_filings, filing_id)
        rows = await self.comparison.compare(current, prior_quarter, prior_year)
        report = Report(
            current_filing=current,
            prior_quarter_filing=prior_quarter,
            prior_year_filing=prior_year,
            comparison_data=rows,
        )
        report.summary = await self._summarize(report)
        return report

    async def build_latest(self, cik: str) -> Report:
        filing_id = await asyncio.to_thread(db.latest_filing_id, self.engine, cik)
        if filing_id is None:
            raise FilingNotFoundError(f"No filings stored for CIK {cik}")
        return await self.build(filing_id)


def build_assembler(
    settings: Settings,
    engine: Engine,
    client: httpx.AsyncClient,
    *,
    cache: Optional[PriceCache] = None,
    summarizer: Optional[Summarizer] = None,
) -> ReportAssembler:
    """Wire the default resolver, price fetcher and comparison engine."""

    sources = create_market_sources(settings, client)
    if cache is None:
        ttl_days = settings.prices.negative_ttl_days
        cache = SqlPriceCache(engine, timedelta(days=ttl_days) if ttl_days is not None else None)
    resolver = TickerResolver(
        sources.mapper,
        sources.search,
        match_threshold=settings.resolver.match_threshold,
        ticker_boost=settings.resolver.ticker_boost,
        timeout=settings.http_timeout,
    )
    fetcher = EODPriceFetcher(
        cache,
        sources.market,
        lookback_windows=settings.prices.lookback_windows,
        max_attempts=settings.prices.max_attempts,
        backoff=settings.prices.backoff_seconds,
        timeout=settings.http_timeout,
    )
    comparison = ComparisonEngine(resolver, fetcher, top_n=settings.top_n)
    return ReportAssembler(engine, comparison, summarizer=summarizer)


__all__ = ["FilingNotFoundError", "ReportAssembler", "Summarizer", "build_assembler"]
