"""Base classes for the external services the pipeline talks to."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional

from ..models import Filing


class SourceError(Exception):
    """Raised when an external service fails (non-2xx, network error, bad payload)."""


@dataclass(slots=True, frozen=True)
class SymbolCandidate:
    """One hit returned by a symbol search."""

    ticker: str
    name: str


@dataclass(slots=True, frozen=True)
class DailyClose:
    """Closing price of a ticker on one trading day."""

    date: date
    close: Optional[float]


class FilingSource(ABC):
    """Source of quarterly 13F filings for a filer."""

    @abstractmethod
    def fetch_filings(
        self, cik: str, limit: int = 3, skip: Iterable[tuple[str, int]] = ()
    ) -> Iterable[Filing]:
        """Yield the most recent filings for ``cik``, newest first, leaving out ``(quarter, year)`` pairs in ``skip``."""


class IdentifierMapper(ABC):
    """Maps security identifiers onto exchange tickers."""

    @abstractmethod
    async def map_cusip(self, cusip: str) -> Optional[str]:
        """Return the first ticker known for ``cusip`` or ``None``."""


class SymbolSearch(ABC):
    """Free text search over an exchange symbol directory."""

    @abstractmethod
    async def search(self, name: str) -> List[SymbolCandidate]:
        """Return candidates whose names resemble ``name``."""


class MarketData(ABC):
    """Historical end-of-day prices."""

    @abstractmethod
    async def get_daily_closes(self, ticker: str, start: date, end: date) -> List[DailyClose]:
        """Return the closes between ``start`` and ``end`` inclusive, oldest first.

        An empty list means the source answered but holds no data for the range.
        """


__all__ = [
    "DailyClose",
    "FilingSource",
    "IdentifierMapper",
    "MarketData",
    "SourceError",
    "SymbolCandidate",
    "SymbolSearch",
]
