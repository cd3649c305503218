"""Source factory for the external services."""
from __future__ import annotations

import logging
from typing import NamedTuple

import httpx

from ..config import Settings
from .base import (
    DailyClose,
    FilingSource,
    IdentifierMapper,
    MarketData,
    SourceError,
    SymbolCandidate,
    SymbolSearch,
)
from .edgar import EdgarSource
from .openfigi import OpenFigiMapper
from .yahoo import YahooMarketData, YahooSymbolSearch

LOGGER = logging.getLogger(__name__)


class MarketSources(NamedTuple):
    mapper: IdentifierMapper
    search: SymbolSearch
    market: MarketData


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """Shared async client; the timeout bounds every external call."""

    return httpx.AsyncClient(timeout=settings.http_timeout, follow_redirects=True)


def create_market_sources(settings: Settings, client: httpx.AsyncClient) -> MarketSources:
    """Instantiate the identifier, search and price services on ``client``."""

    if not settings.resolver.openfigi_api_key:
        LOGGER.debug("No OpenFIGI API key configured; CUSIP lookups use the anonymous rate limit")
    return MarketSources(
        mapper=OpenFigiMapper(client, api_key=settings.resolver.openfigi_api_key),
        search=YahooSymbolSearch(client),
        market=YahooMarketData(client),
    )


def create_filing_source(settings: Settings) -> FilingSource:
    return EdgarSource(settings.sec_user_agent, timeout=max(settings.http_timeout, 30))


__all__ = [
    "DailyClose",
    "EdgarSource",
    "FilingSource",
    "IdentifierMapper",
    "MarketData",
    "MarketSources",
    "OpenFigiMapper",
    "SourceError",
    "SymbolCandidate",
    "SymbolSearch",
    "YahooMarketData",
    "YahooSymbolSearch",
    "create_filing_source",
    "create_http_client",
    "create_market_sources",
]
