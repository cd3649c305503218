"""Quarter-over-quarter and year-over-year comparison of filing holdings."""
from __future__ import annotations

import logging
from datetime import date
from typing import Dict, List, Optional, Set, Tuple

from .models import ComparisonRow, Filing, Holding
from .prices import EODPriceFetcher, normalize_ticker
from .resolver import TickerResolver

LOGGER = logging.getLogger(__name__)

PriceMap = Dict[Tuple[str, date], Optional[float]]


def change(current: Optional[float], prior: Optional[float]) -> Optional[float]:
    """Difference of two prices, ``None`` when either side is unavailable."""

    if current is None or prior is None:
        return None
    return round(current - prior, 2)


def change_pct(current: Optional[float], prior: Optional[float]) -> Optional[float]:
    """Relative change in percent; ``None`` without a positive baseline."""

    if current is None or prior is None or prior <= 0:
        return None
    return (current - prior) / prior * 100


def build_row(
    holding: Holding,
    prior_q: Optional[Holding],
    prior_y: Optional[Holding],
    eod: Tuple[Optional[float], Optional[float], Optional[float]] = (None, None, None),
) -> ComparisonRow:
    """Join one current holding with its prior-period counterparts.

    An absent prior holding counts as value 0, percentage 0 and average price 0.
    """

    current_eod, prior_q_eod, prior_y_eod = eod
    current_avg = holding.average_price
    prior_q_value = prior_q.value_usd if prior_q else 0
    prior_q_pct = prior_q.percentage_of_portfolio if prior_q else 0.0
    prior_q_avg = prior_q.average_price if prior_q else 0.0
    prior_y_value = prior_y.value_usd if prior_y else 0
    prior_y_pct = prior_y.percentage_of_portfolio if prior_y else 0.0
    prior_y_avg = prior_y.average_price if prior_y else 0.0

    return ComparisonRow(
        company=holding.company_name,
        ticker=holding.ticker,
        cusip=holding.cusip,
        shares=holding.shares,
        current_value=holding.value_usd,
        current_pct=holding.percentage_of_portfolio,
        current_avg_price=current_avg,
        current_eod_price=current_eod,
        prior_q_value=prior_q_value,
        prior_q_pct=prior_q_pct,
        prior_q_avg_price=prior_q_avg,
        prior_q_eod_price=prior_q_eod,
        prior_y_value=prior_y_value,
        prior_y_pct=prior_y_pct,
        prior_y_avg_price=prior_y_avg,
        prior_y_eod_price=prior_y_eod,
        qoq_value_change=holding.value_usd - prior_q_value,
        qoq_pct_change=holding.percentage_of_portfolio - prior_q_pct,
        qoq_avg_price_change=current_avg - prior_q_avg,
        qoq_avg_price_change_pct=change_pct(current_avg, prior_q_avg),
        qoq_eod_price_change=change(current_eod, prior_q_eod),
        qoq_eod_price_change_pct=change_pct(current_eod, prior_q_eod),
        yoy_value_change=holding.value_usd - prior_y_value,
        yoy_pct_change=holding.percentage_of_portfolio - prior_y_pct,
        yoy_avg_price_change=current_avg - prior_y_avg,
        yoy_avg_price_change_pct=change_pct(current_avg, prior_y_avg),
        yoy_eod_price_change=change(current_eod, prior_y_eod),
        yoy_eod_price_change_pct=change_pct(current_eod, prior_y_eod),
    )


def rank_rows(rows: List[ComparisonRow], top_n: Optional[int] = None) -> List[ComparisonRow]:
    """Sort by current value (stable), keep ``top_n`` and set the displayed share of each row."""

    ranked = sorted(rows, key=lambda row: row.current_value, reverse=True)
    if top_n:
        ranked = ranked[:top_n]
    displayed_total = sum(row.current_value for row in ranked)
    for row in ranked:
        row.percent_of_portfolio = row.current_value / displayed_total * 100 if displayed_total else 0.0
    return ranked


class ComparisonEngine:
    """Produce the ranked comparison table for a ``(current, prior quarter, prior year)`` triple.

    Only current holdings produce rows; positions that were closed since a prior
    period do not appear.
    """

    def __init__(
        self,
        resolver: Optional[TickerResolver],
        fetcher: Optional[EODPriceFetcher],
        *,
        top_n: Optional[int] = 20,
    ) -> None:
        self.resolver = resolver
        self.fetcher = fetcher
        self.top_n = top_n

    @staticmethod
    def price_keys(
        holdings: List[Holding], dates: List[Optional[date]]
    ) -> Set[Tuple[str, date]]:
        keys: Set[Tuple[str, date]] = set()
        for holding in holdings:
            ticker = normalize_ticker(holding.ticker)
            if not ticker:
                continue
            keys.update((ticker, report_date) for report_date in dates if report_date is not None)
        return keys

    async def _fetch_prices(self, keys: Set[Tuple[str, date]]) -> PriceMap:
        if self.fetcher is None or not keys:
            return {}
        return await self.fetcher.get_prices(sorted(keys))

    async def compare(
        self,
        current: Filing,
        prior_quarter: Optional[Filing] = None,
        prior_year: Optional[Filing] = None,
    ) -> List[ComparisonRow]:
        current_date = current.report_date
        prior_q_date = prior_quarter.report_date if prior_quarter else None
        prior_y_date = prior_year.report_date if prior_year else None

        # Prior periods are matched by CUSIP, so only current holdings need symbols.
        if self.resolver is not None:
            await self.resolver.resolve_all(current.holdings)

        keys = self.price_keys(current.holdings, [current_date, prior_q_date, prior_y_date])
        prices = await self._fetch_prices(keys)

        def lookup(holding: Holding, report_date: Optional[date]) -> Optional[float]:
            ticker = normalize_ticker(holding.ticker)
            if not ticker or report_date is None:
                return None
            return prices.get((ticker, report_date))

        rows: List[ComparisonRow] = []
        for holding in current.holdings:
            prior_q = prior_quarter.find_by_cusip(holding.cusip) if prior_quarter else None
            prior_y = prior_year.find_by_cusip(holding.cusip) if prior_year else None
            eod = (
                lookup(holding, current_date),
                lookup(holding, prior_q_date),
                lookup(holding, prior_y_date),
            )
            rows.append(build_row(holding, prior_q, prior_y, eod))

        ranked = rank_rows(rows, self.top_n)
        LOGGER.info(
            "Compared %d holdings of %s, showing %d (%.2f%% of reported value)",
            len(rows),
            current.label,
            len(ranked),
            sum(row.current_pct for row in ranked),
        )
        return ranked


__all__ = ["ComparisonEngine", "build_row", "change", "change_pct", "rank_rows"]
