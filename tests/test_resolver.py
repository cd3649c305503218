import asyncio
import time

import pytest

from filing_tracker.resolver import TickerResolver, similarity, tokenize
from filing_tracker.sources.base import SymbolCandidate

from fakes import FakeMapper, FakeSearch, holding


def test_tokenize_strips_punctuation_and_case():
    assert tokenize("Apple, Inc.") == {"apple", "inc"}


def test_similarity_is_intersection_over_union():
    assert similarity("Apple Inc", "APPLE INC.") == 1.0
    assert similarity("Alpha Beta", "Alpha Gamma") == pytest.approx(1 / 3)
    assert similarity("", "Alpha") == 0.0


def test_score_boost_when_query_contains_ticker():
    resolver = TickerResolver(None, None)

    plain = resolver.score("Alpha Beta", SymbolCandidate("XYZ", "Alpha Beta Gamma"))
    boosted = resolver.score("Alpha Beta", SymbolCandidate("ALPHA", "Alpha Beta Gamma"))

    assert plain == pytest.approx(2 / 3)
    assert boosted == pytest.approx(2 / 3 + 0.15)
    assert resolver.score("Apple", SymbolCandidate("APPLE", "Apple")) == 1.0


def test_best_match_respects_threshold():
    resolver = TickerResolver(None, None)
    query = "Alpha Beta Gamma Delta"

    match, score = resolver.best_match(query, [SymbolCandidate("XYZ", "Alpha Beta Gamma Omega")])
    assert match is None
    assert score == pytest.approx(0.6)

    match, _ = resolver.best_match(query, [SymbolCandidate("ALPHA", "Alpha Beta Gamma Omega")])
    assert match.ticker == "ALPHA"

    lenient = TickerResolver(None, None, match_threshold=0.5)
    match, _ = lenient.best_match(query, [SymbolCandidate("XYZ", "Alpha Beta Gamma Omega")])
    assert match.ticker == "XYZ"


def test_best_match_prefers_first_on_ties():
    resolver = TickerResolver(None, None)
    candidates = [SymbolCandidate("AAA", "Apple Inc"), SymbolCandidate("BBB", "Apple Inc")]

    match, _ = resolver.best_match("Apple Inc", candidates)

    assert match.ticker == "AAA"


def test_cusip_lookup_wins_over_name_search():
    mapper = FakeMapper({"037833100": "AAPL"})
    search = FakeSearch({"Apple Inc": [SymbolCandidate("WRONG", "Apple Inc")]})
    item = holding("Apple Inc", 100, cusip="037833100")

    resolved = asyncio.run(TickerResolver(mapper, search).resolve_all([item]))

    assert resolved == 1
    assert item.ticker == "AAPL"
    assert search.calls == []


def test_name_search_used_when_cusip_fails():
    mapper = FakeMapper(error=True)
    search = FakeSearch({"Apple Inc": [SymbolCandidate("AAPL", "Apple Inc.")]})
    item = holding("Apple Inc", 100, cusip="037833100")

    asyncio.run(TickerResolver(mapper, search).resolve_all([item]))

    assert mapper.calls == ["037833100"]
    assert item.ticker == "AAPL"


def test_timeouts_leave_ticker_unset():
    mapper = FakeMapper({"Y": "ACME"}, delay=1.0)
    search = FakeSearch({"Acme Corp": [SymbolCandidate("ACME", "Acme Corp")]}, delay=1.0)
    item = holding("Acme Corp", 100, cusip="Y")

    resolved = asyncio.run(TickerResolver(mapper, search, timeout=0.05).resolve_all([item]))

    assert resolved == 0
    assert item.ticker is None


def test_existing_ticker_is_not_resolved_again():
    mapper = FakeMapper({"X": "OTHER"})
    item = holding("Acme", 100, cusip="X", ticker="ACME")

    resolved = asyncio.run(TickerResolver(mapper, FakeSearch()).resolve_all([item]))

    assert resolved == 0
    assert item.ticker == "ACME"
    assert mapper.calls == []


def test_lookups_run_concurrently():
    mapper = FakeMapper({f"C{i}": f"T{i}" for i in range(5)}, delay=0.2)
    items = [holding(f"Company {i}", 100, cusip=f"C{i}") for i in range(5)]

    started = time.perf_counter()
    resolved = asyncio.run(TickerResolver(mapper, FakeSearch()).resolve_all(items))
    elapsed = time.perf_counter() - started

    assert resolved == 5
    assert [item.ticker for item in items] == [f"T{i}" for i in range(5)]
    assert elapsed < 0.8
