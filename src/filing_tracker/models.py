"""Domain models representing 13F filings and comparison output."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, List, Optional


QUARTER_END_DAYS: dict[str, tuple[int, int]] = {
    "Q1": (3, 31),
    "Q2": (6, 30),
    "Q3": (9, 30),
    "Q4": (12, 31),
}

NOT_AVAILABLE = "N/A"


def quarter_end_date(quarter: str, year: int) -> date:
    """Return the calendar date a quarterly disclosure is reported as of."""

    try:
        month, day = QUARTER_END_DAYS[quarter.upper()]
    except KeyError as exc:
        raise ValueError(f"Unknown quarter: {quarter!r}") from exc
    return date(year, month, day)


def quarter_for_date(value: date) -> tuple[str, int]:
    """Map a period-of-report date onto its ``("Qn", year)`` pair."""

    return f"Q{(value.month - 1) // 3 + 1}", value.year


@dataclass(slots=True)
class Holding:
    """Represents a single reported position within a filing."""

    company_name: str
    value_usd: int
    percentage_of_portfolio: float
    cusip: Optional[str] = None
    ticker: Optional[str] = None
    shares: int = 0

    @property
    def average_price(self) -> float:
        """Cost-basis figure derived from the reported value and share count."""

        if not self.shares:
            return 0.0
        return self.value_usd / self.shares

    def to_dict(self) -> dict[str, Any]:
        return {
            "companyName": self.company_name,
            "cusip": self.cusip,
            "ticker": self.ticker,
            "shares": self.shares,
            "valueUsd": self.value_usd,
            "percentageOfPortfolio": self.percentage_of_portfolio,
        }


@dataclass(slots=True)
class Filing:
    """One quarterly 13F disclosure snapshot."""

    cik: str
    quarter: str
    year: int
    filing_date: date
    holdings: List[Holding] = field(default_factory=list)
    company_name: str = ""
    accession_number: Optional[str] = None
    filing_url: Optional[str] = None
    id: Optional[int] = None

    @property
    def report_date(self) -> date:
        return quarter_end_date(self.quarter, self.year)

    @property
    def label(self) -> str:
        return f"{self.quarter} {self.year}"

    @property
    def total_value(self) -> int:
        return sum(holding.value_usd for holding in self.holdings)

    def find_by_cusip(self, cusip: Optional[str]) -> Optional[Holding]:
        """Return the first holding with ``cusip``; holdings without one never match."""

        if not cusip:
            return None
        for holding in self.holdings:
            if holding.cusip == cusip:
                return holding
        return None

    def to_dict(self, *, include_holdings: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "cik": self.cik,
            "companyName": self.company_name,
            "quarter": self.quarter,
            "year": self.year,
            "filingDate": self.filing_date.isoformat(),
            "reportDate": self.report_date.isoformat(),
            "accessionNumber": self.accession_number,
            "filingUrl": self.filing_url,
        }
        if include_holdings:
            data["holdings"] = [holding.to_dict() for holding in self.holdings]
        return data


@dataclass(slots=True)
class ComparisonRow:
    """A current holding joined with its prior-quarter and prior-year counterparts.

    ``*_avg_price`` fields are cost-basis figures (``value / shares``) while
    ``*_eod_price`` fields are market closing prices; the two are never merged.
    ``current_pct`` is the filing-wide share of the portfolio and
    ``percent_of_portfolio`` the share of the displayed subset.
    """

    company: str
    ticker: Optional[str]
    cusip: Optional[str]
    shares: int
    current_value: int
    current_pct: float
    current_avg_price: float
    prior_q_value: int = 0
    prior_q_pct: float = 0.0
    prior_q_avg_price: float = 0.0
    prior_y_value: int = 0
    prior_y_pct: float = 0.0
    prior_y_avg_price: float = 0.0
    current_eod_price: Optional[float] = None
    prior_q_eod_price: Optional[float] = None
    prior_y_eod_price: Optional[float] = None
    qoq_value_change: int = 0
    qoq_pct_change: float = 0.0
    qoq_avg_price_change: float = 0.0
    qoq_avg_price_change_pct: Optional[float] = None
    qoq_eod_price_change: Optional[float] = None
    qoq_eod_price_change_pct: Optional[float] = None
    yoy_value_change: int = 0
    yoy_pct_change: float = 0.0
    yoy_avg_price_change: float = 0.0
    yoy_avg_price_change_pct: Optional[float] = None
    yoy_eod_price_change: Optional[float] = None
    yoy_eod_price_change_pct: Optional[float] = None
    percent_of_portfolio: float = 0.0

    @property
    def display_ticker(self) -> str:
        return self.ticker or NOT_AVAILABLE

    @property
    def is_new_position(self) -> bool:
        return self.prior_q_value == 0 and self.current_value > 0

    def display_avg_price(self, period: str = "current") -> Optional[float]:
        """Average price for display, falling back to the EOD close when the cost basis is 0.

        ``period`` is one of ``current``, ``prior_q`` or ``prior_y``.
        """

        if period not in {"current", "prior_q", "prior_y"}:
            raise ValueError(f"Unknown period: {period!r}")
        average = getattr(self, f"{period}_avg_price")
        if average:
            return average
        return getattr(self, f"{period}_eod_price")

    def to_dict(self) -> dict[str, Any]:
        return {
            "company": self.company,
            "ticker": self.ticker,
            "cusip": self.cusip,
            "shares": self.shares,
            "currentValue": self.current_value,
            "currentPct": self.current_pct,
            "currentAvgPrice": self.current_avg_price,
            "currentEodPrice": self.current_eod_price,
            "priorQValue": self.prior_q_value,
            "priorQPct": self.prior_q_pct,
            "priorQAvgPrice": self.prior_q_avg_price,
            "priorQEodPrice": self.prior_q_eod_price,
            "qoqValueChange": self.qoq_value_change,
            "qoqPctChange": self.qoq_pct_change,
            "qoqAvgPriceChange": self.qoq_avg_price_change,
            "qoqAvgPriceChangePct": self.qoq_avg_price_change_pct,
            "qoqEodPriceChange": self.qoq_eod_price_change,
            "qoqEodPriceChangePct": self.qoq_eod_price_change_pct,
            "priorYValue": self.prior_y_value,
            "priorYPct": self.prior_y_pct,
            "priorYAvgPrice": self.prior_y_avg_price,
            "priorYEodPrice": self.prior_y_eod_price,
            "yoyValueChange": self.yoy_value_change,
            "yoyPctChange": self.yoy_pct_change,
            "yoyAvgPriceChange": self.yoy_avg_price_change,
            "yoyAvgPriceChangePct": self.yoy_avg_price_change_pct,
            "yoyEodPriceChange": self.yoy_eod_price_change,
            "yoyEodPriceChangePct": self.yoy_eod_price_change_pct,
            "percentOfPortfolio": self.percent_of_portfolio,
        }


@dataclass(slots=True)
class Report:
    """Payload handed to the dashboard, the JSON API and the email renderer."""

    current_filing: Filing
    prior_quarter_filing: Optional[Filing]
    prior_year_filing: Optional[Filing]
    comparison_data: List[ComparisonRow]
    summary: Optional[str] = None

    @property
    def displayed_value(self) -> int:
        return sum(row.current_value for row in self.comparison_data)

    def to_dict(self) -> dict[str, Any]:
        def _filing(filing: Optional[Filing]) -> Optional[dict[str, Any]]:
            return filing.to_dict() if filing is not None else None

        return {
            "currentFiling": _filing(self.current_filing),
            "priorQuarterFiling": _filing(self.prior_quarter_filing),
            "priorYearFiling": _filing(self.prior_year_filing),
            "comparisonData": [row.to_dict() for row in self.comparison_data],
            "summary": self.summary,
        }


__all__ = [
    "ComparisonRow",
    "Filing",
    "Holding",
    "NOT_AVAILABLE",
    "Report",
    "quarter_end_date",
    "quarter_for_date",
]
