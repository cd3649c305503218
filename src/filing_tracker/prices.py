"""End-of-day price lookups with a durable write-through cache."""
from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, Optional, Sequence, Tuple, Union

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from . import db
from .models import NOT_AVAILABLE
from .sources.base import DailyClose, MarketData, SourceError

LOGGER = logging.getLogger(__name__)

SEPARATORS = re.compile(r"[\s./-]+")

PriceKey = Tuple[str, date]


class _Missing:
    """Marker for a cache key that was never looked up."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

CachedPrice = Union[float, None, _Missing]


class CacheError(Exception):
    """Raised when the cache store cannot be read or written."""


def normalize_ticker(value: str | None) -> str:
    """Canonical cache form of a ticker: ``BRK.B``, ``BRK/B`` and ``brk b`` all become ``BRK-B``."""

    if not value:
        return ""
    return SEPARATORS.sub("-", value.strip().upper()).strip("-")


UNRESOLVED_KEY = normalize_ticker(NOT_AVAILABLE)


def _unresolved(ticker: str | None, normalized: str) -> bool:
    return not normalized or ticker == NOT_AVAILABLE or normalized == UNRESOLVED_KEY


def _positive(close: Optional[float]) -> bool:
    return close is not None and close > 0


class PriceCache(ABC):
    """Durable memo of ``(ticker, report_date) -> price | None``.

    ``get`` returns :data:`MISSING` for a cold key and ``None`` when an earlier
    lookup found no price.
    """

    @abstractmethod
    async def get(self, ticker: str, report_date: date) -> CachedPrice:
        """Return the cached price, ``None`` or :data:`MISSING`."""

    @abstractmethod
    async def put(self, ticker: str, report_date: date, price: Optional[float]) -> None:
        """Insert or overwrite the entry for the key."""


class MemoryPriceCache(PriceCache):
    """Dictionary backed cache, scoped to whatever owns the instance."""

    def __init__(self) -> None:
        self.entries: Dict[PriceKey, Optional[float]] = {}

    async def get(self, ticker: str, report_date: date) -> CachedPrice:
        return self.entries.get((normalize_ticker(ticker), report_date), MISSING)

    async def put(self, ticker: str, report_date: date, price: Optional[float]) -> None:
        self.entries[(normalize_ticker(ticker), report_date)] = price


class SqlPriceCache(PriceCache):
    """Cache persisted in the ``price_cache`` table.

    Negative entries older than ``negative_ttl`` read as :data:`MISSING` so a
    transient outage does not suppress the lookup forever; ``None`` disables
    the expiry.
    """

    def __init__(self, engine: Engine, negative_ttl: Optional[timedelta] = timedelta(days=7)) -> None:
        self.engine = engine
        self.negative_ttl = negative_ttl

    def _get_sync(self, ticker: str, report_date: date) -> CachedPrice:
        try:
            row = db.fetch_price_entry(self.engine, ticker, report_date)
        except SQLAlchemyError as exc:
            raise CacheError(f"Could not read cached price for {ticker} on {report_date}") from exc
        if row is None:
            return MISSING
        if row.price is not None:
            return float(row.price)
        if self.negative_ttl is not None:
            age = datetime.now(timezone.utc).replace(tzinfo=None) - row.fetched_at
            if age > self.negative_ttl:
                LOGGER.debug("Negative cache entry for %s on %s expired", ticker, report_date)
                return MISSING
        return None

    def _put_sync(self, ticker: str, report_date: date, price: Optional[float]) -> None:
        try:
            db.upsert_price(self.engine, ticker, report_date, price)
        except SQLAlchemyError as exc:
            raise CacheError(f"Could not store price for {ticker} on {report_date}") from exc

    async def get(self, ticker: str, report_date: date) -> CachedPrice:
        return await asyncio.to_thread(self._get_sync, normalize_ticker(ticker), report_date)

    async def put(self, ticker: str, report_date: date, price: Optional[float]) -> None:
        await asyncio.to_thread(self._put_sync, normalize_ticker(ticker), report_date, price)

    def invalidate(
        self, ticker: str | None = None, report_date: date | None = None, *, only_missing: bool = False
    ) -> int:
        """Drop cached entries so the next lookup goes back to the market source."""

        return db.delete_prices(
            self.engine,
            normalize_ticker(ticker) or None,
            report_date,
            only_missing=only_missing,
        )


def latest_close(quotes: Iterable[DailyClose], target: date) -> Optional[float]:
    """Most recent valid close dated on or before ``target``."""

    eligible = [quote for quote in quotes if quote.date <= target and _positive(quote.close)]
    if not eligible:
        return None
    return max(eligible, key=lambda quote: quote.date).close


class EODPriceFetcher:
    """Closing price of a ticker on or just before a quarter-end date.

    The cache is consulted first; on a miss each lookback window is queried in
    turn, widening only when a window holds no usable close. Failed calls are
    retried with linear backoff. The outcome, including "no price", is written
    back to the cache.
    """

    def __init__(
        self,
        cache: PriceCache,
        market: MarketData,
        *,
        lookback_windows: Sequence[int] = (3, 7),
        max_attempts: int = 3,
        backoff: float = 0.5,
        timeout: float = 10.0,
    ) -> None:
        if not lookback_windows:
            raise ValueError("At least one lookback window is required")
        self.cache = cache
        self.market = market
        self.lookback_windows = tuple(sorted(lookback_windows))
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.timeout = timeout

    async def _read_cache(self, ticker: str, report_date: date) -> CachedPrice:
        try:
            return await self.cache.get(ticker, report_date)
        except CacheError as exc:
            LOGGER.warning("Price cache unavailable, treating %s on %s as a miss: %s", ticker, report_date, exc)
            return MISSING

    async def _write_cache(self, ticker: str, report_date: date, price: Optional[float]) -> None:
        try:
            await self.cache.put(ticker, report_date, price)
        except CacheError as exc:
            LOGGER.warning("Could not cache price for %s on %s: %s", ticker, report_date, exc)

    async def _query(self, ticker: str, start: date, end: date) -> Optional[Sequence[DailyClose]]:
        """Call the market source with retries; ``None`` means every attempt failed."""

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await asyncio.wait_for(
                    self.market.get_daily_closes(ticker, start, end), timeout=self.timeout
                )
            except (SourceError, asyncio.TimeoutError) as exc:
                LOGGER.warning(
                    "Price request for %s (%s..%s) failed on attempt %d/%d: %r",
                    ticker,
                    start,
                    end,
                    attempt,
                    self.max_attempts,
                    exc,
                )
            if attempt < self.max_attempts:
                await asyncio.sleep(self.backoff * attempt)
        return None

    async def fetch_live(self, ticker: str, report_date: date) -> Optional[float]:
        """Query the market source directly, bypassing the cache."""

        for window in self.lookback_windows:
            quotes = await self._query(ticker, report_date - timedelta(days=window), report_date)
            if quotes is None:
                LOGGER.error("Giving up on %s for %s after %d attempts", ticker, report_date, self.max_attempts)
                return None
            close = latest_close(quotes, report_date)
            if close is not None:
                price = round(close, 2)
                if price <= 0:
                    LOGGER.info("Close for %s on %s rounds to %.2f, treating it as no price", ticker, report_date, price)
                    return None
                LOGGER.info("Fetched close for %s on %s: %.2f", ticker, report_date, price)
                return price
            LOGGER.debug("No close for %s within %d days of %s", ticker, window, report_date)
        LOGGER.info("No price data for %s on %s", ticker, report_date)
        return None

    async def get_price(self, ticker: str | None, report_date: date) -> Optional[float]:
        key = normalize_ticker(ticker)
        if _unresolved(ticker, key):
            return None

        cached = await self._read_cache(key, report_date)
        if cached is not MISSING:
            LOGGER.debug("Price cache hit for %s on %s: %s", key, report_date, cached)
            return cached

        price = await self.fetch_live(key, report_date)
        await self._write_cache(key, report_date, price)
        return price

    async def get_prices(self, keys: Iterable[Tuple[str, date]]) -> Dict[PriceKey, Optional[float]]:
        """Fetch each distinct normalized key once, concurrently.

        The returned mapping is keyed by normalized ticker.
        """

        unique: Dict[PriceKey, None] = {}
        for ticker, report_date in keys:
            normalized = normalize_ticker(ticker)
            if not _unresolved(ticker, normalized):
                unique.setdefault((normalized, report_date), None)
        if not unique:
            return {}

        LOGGER.info("Looking up %d distinct prices", len(unique))
        ordered = list(unique)
        results = await asyncio.gather(
            *(self.get_price(ticker, report_date) for ticker, report_date in ordered),
            return_exceptions=True,
        )
        prices: Dict[PriceKey, Optional[float]] = {}
        for key, result in zip(ordered, results):
            if isinstance(result, BaseException):
                LOGGER.error("Price lookup for %s on %s raised %r", key[0], key[1], result)
                prices[key] = None
            else:
                prices[key] = result
        return prices


__all__ = [
    "CacheError",
    "EODPriceFetcher",
    "MISSING",
    "MemoryPriceCache",
    "PriceCache",
    "SqlPriceCache",
    "latest_close",
    "normalize_ticker",
]
