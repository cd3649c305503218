"""Yahoo Finance symbol search and chart implementations."""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List
from urllib.parse import quote as quote_path

import httpx

from .base import DailyClose, MarketData, SourceError, SymbolCandidate, SymbolSearch
from .utils import from_epoch, get_json, to_epoch

LOGGER = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "user-agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "accept": "application/json, text/plain, */*",
    "accept-language": "en-US,en;q=0.9",
}


class YahooSymbolSearch(SymbolSearch):
    """Company name search against the Yahoo Finance autocomplete endpoint."""

    BASE_URL = "https://query1.finance.yahoo.com/v1/finance/search"

    def __init__(self, client: httpx.AsyncClient, quotes_count: int = 10) -> None:
        self.client = client
        self.quotes_count = quotes_count

    async def search(self, name: str) -> List[SymbolCandidate]:
        LOGGER.debug("Searching Yahoo symbols for %r", name)
        payload = await get_json(
            self.client,
            "GET",
            self.BASE_URL,
            params={"q": name, "quotesCount": self.quotes_count, "newsCount": 0},
            headers=DEFAULT_HEADERS,
        )
        quotes = payload.get("quotes") if isinstance(payload, dict) else None
        if not isinstance(quotes, list):
            raise SourceError(f"Unexpected Yahoo search payload for {name!r}")

        candidates: List[SymbolCandidate] = []
        for quote in quotes:
            if not isinstance(quote, dict):
                continue
            ticker = (quote.get("symbol") or "").strip()
            if not ticker:
                continue
            label = quote.get("longname") or quote.get("shortname") or quote.get("name") or ""
            candidates.append(SymbolCandidate(ticker=ticker, name=label.strip()))
        return candidates


class YahooMarketData(MarketData):
    """Daily closes from the Yahoo Finance chart endpoint."""

    BASE_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{ticker}"

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def get_daily_closes(self, ticker: str, start: date, end: date) -> List[DailyClose]:
        url = self.BASE_URL.format(ticker=quote_path(ticker, safe=""))
        params = {
            "period1": to_epoch(start),
            # period2 is exclusive; push it past the end date so that day is included.
            "period2": to_epoch(end + timedelta(days=1)),
            "interval": "1d",
        }
        try:
            response = await self.client.get(url, params=params, headers=DEFAULT_HEADERS)
        except httpx.HTTPError as exc:
            raise SourceError(f"GET {url} failed: {exc}") from exc
        if response.status_code == 404:
            LOGGER.debug("Yahoo does not know %s", ticker)
            return []
        if response.is_error:
            raise SourceError(f"GET {url} returned {response.status_code}")
        try:
            payload = response.json()
            result = (payload["chart"]["result"] or [None])[0]
        except (ValueError, KeyError, TypeError) as exc:
            raise SourceError(f"Malformed Yahoo chart payload for {ticker}") from exc
        return self._parse_result(ticker, result)

    @staticmethod
    def _parse_result(ticker: str, result: dict | None) -> List[DailyClose]:
        if not result:
            return []
        timestamps = result.get("timestamp") or []
        try:
            closes = result["indicators"]["quote"][0].get("close") or []
        except (KeyError, IndexError, TypeError, AttributeError):
            closes = []
        offset = (result.get("meta") or {}).get("gmtoffset") or 0
        if len(closes) < len(timestamps):
            raise SourceError(f"Yahoo returned {len(timestamps)} timestamps but {len(closes)} closes for {ticker}")

        quotes = [
            DailyClose(date=from_epoch(stamp + offset), close=float(close) if close is not None else None)
            for stamp, close in zip(timestamps, closes)
        ]
        quotes.sort(key=lambda quote: quote.date)
        return quotes


__all__ = ["YahooMarketData", "YahooSymbolSearch"]
