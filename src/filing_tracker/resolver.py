"""Ticker resolution for holdings reported without a symbol."""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Iterable, List, Optional, Sequence

from .models import Holding
from .sources.base import IdentifierMapper, SourceError, SymbolCandidate, SymbolSearch

LOGGER = logging.getLogger(__name__)

PUNCTUATION = re.compile(r"[^\w\s]")


def tokenize(value: str) -> set[str]:
    """Lower-cased word tokens with punctuation stripped."""

    return set(PUNCTUATION.sub("", value.lower()).split())


def similarity(left: str, right: str) -> float:
    """Token-set similarity: intersection over union of the word tokens."""

    if not left or not right:
        return 0.0
    left_tokens = tokenize(left)
    right_tokens = tokenize(right)
    union = len(left_tokens | right_tokens) or 1
    return len(left_tokens & right_tokens) / union


class TickerResolver:
    """Fill in missing tickers from the CUSIP or, failing that, the issuer name.

    Lookups never raise: service errors and timeouts leave the ticker unset.
    """

    def __init__(
        self,
        mapper: IdentifierMapper | None,
        search: SymbolSearch | None,
        *,
        match_threshold: float = 0.65,
        ticker_boost: float = 0.15,
        timeout: float = 10.0,
    ) -> None:
        self.mapper = mapper
        self.search = search
        self.match_threshold = match_threshold
        self.ticker_boost = ticker_boost
        self.timeout = timeout

    def score(self, query: str, candidate: SymbolCandidate) -> float:
        base = similarity(query, candidate.name or candidate.ticker)
        if candidate.ticker and candidate.ticker.upper() in query.upper():
            base += self.ticker_boost
        return min(1.0, base)

    def best_match(
        self, query: str, candidates: Sequence[SymbolCandidate]
    ) -> tuple[Optional[SymbolCandidate], float]:
        """Return the accepted candidate (or ``None``) and the best score seen."""

        best: Optional[SymbolCandidate] = None
        best_score = 0.0
        for candidate in candidates:
            score = self.score(query, candidate)
            if score > best_score:
                best, best_score = candidate, score
        if best is None or best_score < self.match_threshold:
            return None, best_score
        return best, best_score

    async def by_cusip(self, cusip: str) -> Optional[str]:
        if self.mapper is None:
            return None
        try:
            return await asyncio.wait_for(self.mapper.map_cusip(cusip), timeout=self.timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("CUSIP lookup for %s timed out after %.1fs", cusip, self.timeout)
        except SourceError as exc:
            LOGGER.warning("CUSIP lookup for %s failed: %s", cusip, exc)
        return None

    async def by_name(self, company_name: str) -> Optional[str]:
        if self.search is None:
            return None
        try:
            candidates = await asyncio.wait_for(self.search.search(company_name), timeout=self.timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Symbol search for %r timed out after %.1fs", company_name, self.timeout)
            return None
        except SourceError as exc:
            LOGGER.warning("Symbol search for %r failed: %s", company_name, exc)
            return None

        match, score = self.best_match(company_name, candidates)
        if match is None:
            LOGGER.info("No good symbol match for %r (best score %.2f)", company_name, score)
            return None
        LOGGER.info("Matched %r to %s (score %.2f)", company_name, match.ticker, score)
        return match.ticker

    async def resolve(self, holding: Holding) -> Optional[str]:
        """Best-guess ticker for ``holding``; an existing ticker is returned unchanged."""

        if holding.ticker:
            return holding.ticker
        ticker: Optional[str] = None
        if holding.cusip:
            ticker = await self.by_cusip(holding.cusip)
        if not ticker and holding.company_name:
            ticker = await self.by_name(holding.company_name)
        return ticker

    async def resolve_all(self, holdings: Iterable[Holding]) -> int:
        """Resolve every holding lacking a ticker concurrently, filling ``ticker`` in place."""

        pending: List[Holding] = [holding for holding in holdings if not holding.ticker]
        if not pending:
            return 0

        LOGGER.info("Resolving tickers for %d holdings", len(pending))
        results = await asyncio.gather(
            *(self.resolve(holding) for holding in pending), return_exceptions=True
        )
        resolved = 0
        for holding, result in zip(pending, results):
            if isinstance(result, BaseException):
                LOGGER.error("Ticker resolution for %r raised %r", holding.company_name, result)
                continue
            if result:
                holding.ticker = result
                resolved += 1
            else:
                LOGGER.info("No ticker found for %r", holding.company_name)
        LOGGER.info("Resolved %d of %d missing tickers", resolved, len(pending))
        return resolved


__all__ = ["TickerResolver", "similarity", "tokenize"]
