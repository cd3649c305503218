import json
from datetime import date

import httpx
import pytest

from filing_tracker import db, runner

from fakes import FakeFilingSource, filing, holding


@pytest.fixture(autouse=True)
def offline_client(monkeypatch):
    """Every external HTTP call answers 404, so lookups find nothing."""

    requests_seen = []

    def handler(request):
        requests_seen.append(request)
        return httpx.Response(404, json={})

    def create_client(settings):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    monkeypatch.setattr(runner, "create_http_client", create_client)
    return requests_seen


def _source():
    return FakeFilingSource(
        [
            filing("Q1", 2024, date(2024, 5, 15), [holding("Acme", 300, cusip="X", ticker="ACME", pct=100.0)]),
            filing("Q4", 2023, date(2024, 2, 14), [holding("Acme", 200, cusip="X", pct=100.0)]),
        ]
    )


def test_ingest_stores_only_new_filings(settings, engine):
    first = runner.ingest_filings(settings, engine, _source())
    source = _source()
    second = runner.ingest_filings(settings, engine, source)

    assert [item.label for item in first] == ["Q1 2024", "Q4 2023"]
    assert second == []
    assert source.skipped == {("Q1", 2024), ("Q4", 2023)}
    assert all(item.company_name == settings.firm_name for item in first)
    assert len(db.list_filings(engine, settings.cik)) == 2


def test_check_new_filings_without_email(settings, engine, offline_client):
    results = runner.check_new_filings(settings, engine, _source())

    assert results == [
        {"filing": "Q1 2024", "emailStatus": "skipped"},
        {"filing": "Q4 2023", "emailStatus": "skipped"},
    ]
    assert offline_client
    assert runner.check_new_filings(settings, engine, _source()) == []


def test_cli_report_and_invalidate(tmp_path, monkeypatch, capsys, engine):
    monkeypatch.setenv("FILING_TRACKER_DATABASE_URL", f"sqlite:///{tmp_path / 'filings.db'}")
    monkeypatch.setenv("FILING_TRACKER_ENV_FILE", str(tmp_path / "missing.env"))
    monkeypatch.setenv("FILING_TRACKER_PRICE_BACKOFF", "0")

    assert runner.main(["report"]) == 1

    runner.ingest_filings(runner.Settings.load(), engine, _source())
    capsys.readouterr()
    assert runner.main(["report", "--no-cache"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["currentFiling"]["quarter"] == "Q1"
    assert payload["priorQuarterFiling"]["quarter"] == "Q4"
    assert payload["comparisonData"][0]["currentEodPrice"] is None
    assert payload["comparisonData"][0]["qoqValueChange"] == 100

    assert runner.main(["report"]) == 0
    assert db.fetch_price_entry(engine, "ACME", date(2024, 3, 31)) is not None
    assert runner.main(["invalidate-prices", "--missing-only"]) == 0
    assert db.fetch_price_entry(engine, "ACME", date(2024, 3, 31)) is None
