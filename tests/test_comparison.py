import asyncio
from datetime import date

import pytest

from filing_tracker.comparison import ComparisonEngine, build_row, change_pct, rank_rows
from filing_tracker.prices import EODPriceFetcher, MemoryPriceCache
from filing_tracker.resolver import TickerResolver
from filing_tracker.sources.base import DailyClose

from fakes import FakeMapper, FakeMarket, FakeSearch, filing, holding

VALUE_FIELDS = [
    "qoq_value_change",
    "qoq_pct_change",
    "yoy_value_change",
    "yoy_pct_change",
]


def _engine(market=None, mapper=None, search=None, top_n=None):
    resolver = TickerResolver(mapper or FakeMapper(), search or FakeSearch(), timeout=0.05)
    fetcher = EODPriceFetcher(MemoryPriceCache(), market or FakeMarket(), backoff=0)
    return ComparisonEngine(resolver, fetcher, top_n=top_n)


def test_every_current_holding_gets_a_row():
    current = filing(
        "Q1",
        2024,
        date(2024, 5, 15),
        [holding("Alpha", 300, cusip="A"), holding("Beta", 200, cusip="B"), holding("Gamma", 100)],
    )
    prior = filing("Q4", 2023, date(2024, 2, 14), [holding("Alpha", 100, cusip="A"), holding("Closed", 900, cusip="Z")])

    rows = asyncio.run(_engine().compare(current, prior))

    assert [row.company for row in rows] == ["Alpha", "Beta", "Gamma"]
    assert all(row.company != "Closed" for row in rows)


def test_new_position_has_zero_prior_quarter_baseline():
    current = filing("Q1", 2024, date(2024, 5, 15), [holding("X Corp", 1_000_000, shares=10_000, cusip="X")])
    prior = filing("Q4", 2023, date(2024, 2, 14), [holding("Other", 50, cusip="O")])

    (row,) = asyncio.run(_engine().compare(current, prior))

    assert row.current_avg_price == 100.0
    assert row.qoq_value_change == 1_000_000
    assert row.prior_q_value == 0
    assert row.prior_q_avg_price == 0
    assert row.is_new_position


def test_zero_shares_gives_zero_average_price():
    row = build_row(holding("X Corp", 500, shares=0, cusip="X"), None, None)

    assert row.current_avg_price == 0
    assert row.qoq_avg_price_change == 0
    assert row.qoq_avg_price_change_pct is None


def test_eod_deltas_are_none_when_either_side_is_missing():
    row = build_row(holding("X Corp", 500, cusip="X"), None, None, (10.0, None, 8.0))

    assert row.qoq_eod_price_change is None
    assert row.qoq_eod_price_change_pct is None
    assert row.yoy_eod_price_change == 2.0
    assert row.yoy_eod_price_change_pct == pytest.approx(25.0)


def test_change_pct_needs_a_positive_baseline():
    assert change_pct(10.0, 0.0) is None
    assert change_pct(None, 5.0) is None
    assert change_pct(15.0, 10.0) == pytest.approx(50.0)


def test_swapping_current_and_prior_flips_value_deltas():
    first = filing("Q4", 2023, date(2024, 2, 14), [holding("A", 100, cusip="A", pct=40.0), holding("B", 150, cusip="B", pct=60.0)])
    second = filing("Q1", 2024, date(2024, 5, 15), [holding("A", 300, cusip="A", pct=75.0), holding("B", 100, cusip="B", pct=25.0)])

    forward = {row.cusip: row for row in asyncio.run(_engine().compare(second, first, first))}
    backward = {row.cusip: row for row in asyncio.run(_engine().compare(first, second, second))}

    for cusip in ("A", "B"):
        for name in VALUE_FIELDS:
            assert getattr(forward[cusip], name) == pytest.approx(-getattr(backward[cusip], name))


def test_rows_sorted_by_current_value_descending():
    current = filing(
        "Q1",
        2024,
        date(2024, 5, 15),
        [holding("Low", 500), holding("High", 1500), holding("Mid", 1000)],
    )

    rows = asyncio.run(_engine().compare(current))

    assert [row.current_value for row in rows] == [1500, 1000, 500]


def test_sort_is_stable_for_ties():
    rows = [build_row(holding(name, 100), None, None) for name in ("first", "second", "third")]

    assert [row.company for row in rank_rows(rows)] == ["first", "second", "third"]


def test_top_n_recomputes_displayed_percentage():
    current = filing(
        "Q1",
        2024,
        date(2024, 5, 15),
        [
            holding("A", 600, pct=60.0),
            holding("B", 300, pct=30.0),
            holding("C", 100, pct=10.0),
        ],
    )

    rows = asyncio.run(_engine(top_n=2).compare(current))

    assert [row.company for row in rows] == ["A", "B"]
    assert [row.current_pct for row in rows] == [60.0, 30.0]
    assert [row.percent_of_portfolio for row in rows] == [pytest.approx(200 / 3), pytest.approx(100 / 3)]


def test_unresolved_ticker_keeps_row_without_prices():
    market = FakeMarket()
    current = filing("Q1", 2024, date(2024, 5, 15), [holding("Acme Corp", 1000, cusip="Y")])

    (row,) = asyncio.run(_engine(market=market, mapper=FakeMapper(delay=1.0)).compare(current))

    assert row.company == "Acme Corp"
    assert row.ticker is None
    assert row.display_ticker == "N/A"
    assert (row.current_eod_price, row.prior_q_eod_price, row.prior_y_eod_price) == (None, None, None)
    assert market.calls == []


def test_prices_attached_per_period_and_deduplicated():
    closes = {
        "BRK-B": [
            DailyClose(date(2023, 3, 31), 308.77),
            DailyClose(date(2023, 12, 29), 356.66),
            DailyClose(date(2024, 3, 28), 420.52),
        ]
    }
    market = FakeMarket(closes)
    current = filing(
        "Q1",
        2024,
        date(2024, 5, 15),
        [holding("Berkshire B", 2000, cusip="B1", ticker="BRK.B"), holding("Berkshire B again", 1000, cusip="B2", ticker="brk b")],
    )
    prior_q = filing("Q4", 2023, date(2024, 2, 14), [holding("Berkshire B", 1000, cusip="B1")])
    prior_y = filing("Q1", 2023, date(2023, 5, 15), [holding("Berkshire B", 500, cusip="B1")])

    rows = asyncio.run(_engine(market=market).compare(current, prior_q, prior_y))

    assert len(market.calls) == 3
    first = rows[0]
    assert (first.current_eod_price, first.prior_q_eod_price, first.prior_y_eod_price) == (420.52, 356.66, 308.77)
    assert first.qoq_eod_price_change == pytest.approx(63.86)
    assert rows[1].current_eod_price == 420.52


def test_one_failing_price_does_not_abort_batch():
    market = FakeMarket({"GOOD": [DailyClose(date(2024, 3, 28), 10.0)]})
    current = filing(
        "Q1",
        2024,
        date(2024, 5, 15),
        [holding("Good", 200, ticker="GOOD"), holding("Bad", 100, ticker="BAD")],
    )

    rows = asyncio.run(_engine(market=market).compare(current))

    assert rows[0].current_eod_price == 10.0
    assert rows[1].current_eod_price is None
