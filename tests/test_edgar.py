from datetime import date

import pytest
import requests

from filing_tracker.sources.edgar import EdgarSource, parse_information_table

INFO_TABLE_XML = """<?xml version="1.0" encoding="UTF-8"?>
<ns1:informationTable xmlns:ns1="http://www.sec.gov/edgar/document/thirteenf/informationtable">
  <ns1:infoTable>
    <ns1:nameOfIssuer>COUPANG INC</ns1:nameOfIssuer>
    <ns1:titleOfClass>CL A</ns1:titleOfClass>
    <ns1:cusip>22266t109</ns1:cusip>
    <ns1:value>300000</ns1:value>
    <ns1:shrsOrPrnAmt><ns1:sshPrnamt>15,000</ns1:sshPrnamt><ns1:sshPrnamtType>SH</ns1:sshPrnamtType></ns1:shrsOrPrnAmt>
    <ns1:investmentDiscretion>SOLE</ns1:investmentDiscretion>
  </ns1:infoTable>
  <ns1:infoTable>
    <ns1:nameOfIssuer>APPLE INC</ns1:nameOfIssuer>
    <ns1:cusip>037833100</ns1:cusip>
    <ns1:value>100000</ns1:value>
    <ns1:shrsOrPrnAmt><ns1:sshPrnamt>500</ns1:sshPrnamt><ns1:sshPrnamtType>SH</ns1:sshPrnamtType></ns1:shrsOrPrnAmt>
  </ns1:infoTable>
  <ns1:infoTable>
    <ns1:nameOfIssuer>APPLE INC</ns1:nameOfIssuer>
    <ns1:cusip>037833100</ns1:cusip>
    <ns1:value>100000</ns1:value>
    <ns1:shrsOrPrnAmt><ns1:sshPrnamt>500</ns1:sshPrnamt><ns1:sshPrnamtType>SH</ns1:sshPrnamtType></ns1:shrsOrPrnAmt>
  </ns1:infoTable>
  <ns1:infoTable>
    <ns1:nameOfIssuer>SPDR S&amp;P 500 ETF TR</ns1:nameOfIssuer>
    <ns1:cusip>78462F103</ns1:cusip>
    <ns1:value>50000</ns1:value>
    <ns1:shrsOrPrnAmt><ns1:sshPrnamt>100</ns1:sshPrnamt><ns1:sshPrnamtType>SH</ns1:sshPrnamtType></ns1:shrsOrPrnAmt>
    <ns1:putCall>Put</ns1:putCall>
  </ns1:infoTable>
</ns1:informationTable>
"""

PLAIN_XML = """<informationTable><infoTable>
<nameOfIssuer>MICROSOFT CORP</nameOfIssuer><cusip>594918104</cusip><value>250</value>
<shrsOrPrnAmt><sshPrnamt>1000</sshPrnamt></shrsOrPrnAmt>
</infoTable></informationTable>"""


class StubResponse:
    def __init__(self, payload=None, text="", status=200):
        self.payload = payload
        self.text = text
        self.status_code = status

    def json(self):
        if self.payload is None:
            raise ValueError("not JSON")
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class StubSession:
    def __init__(self, routes):
        self.routes = routes
        self.headers = {}
        self.requested = []

    def get(self, url, timeout=None):
        self.requested.append(url)
        return self.routes.get(url, StubResponse(status=404))


ARCHIVE = "https://www.sec.gov/Archives/edgar/data/1067293"
SUBMISSIONS = {
    "name": "DUQUESNE FAMILY OFFICE LLC",
    "filings": {
        "recent": {
            "form": ["13F-HR", "4", "13F-HR", "13F-HR"],
            "accessionNumber": ["0001067293-24-000005", "0001067293-24-000004", "0001067293-24-000002", "0001067293-22-000009"],
            "filingDate": ["2024-05-15", "2024-04-01", "2024-02-14", "2022-11-14"],
            "reportDate": ["2024-03-31", "2024-03-28", "2023-12-31", "2022-09-30"],
        }
    },
}


def _routes(**overrides):
    routes = {
        "https://data.sec.gov/submissions/CIK0001067293.json": StubResponse(SUBMISSIONS),
        f"{ARCHIVE}/000106729324000005/index.json": StubResponse(
            {"directory": {"item": [{"name": "primary_doc.xml"}, {"name": "infotable.xml"}]}}
        ),
        f"{ARCHIVE}/000106729324000005/infotable.xml": StubResponse(text=INFO_TABLE_XML),
        f"{ARCHIVE}/000106729324000002/index.json": StubResponse(
            {"directory": {"item": [{"name": "primary_doc.xml"}, {"name": "holdings.xml"}]}}
        ),
        f"{ARCHIVE}/000106729324000002/holdings.xml": StubResponse(text=PLAIN_XML),
        f"{ARCHIVE}/000106729322000009/index.json": StubResponse(
            {"directory": {"item": [{"name": "form13fInfoTable.xml"}]}}
        ),
        f"{ARCHIVE}/000106729322000009/form13fInfoTable.xml": StubResponse(text=PLAIN_XML),
    }
    routes.update(overrides)
    return routes


def test_parse_information_table_merges_and_skips_options():
    holdings = parse_information_table(INFO_TABLE_XML)

    assert [(h.company_name, h.cusip, h.shares, h.value_usd) for h in holdings] == [
        ("COUPANG INC", "22266T109", 15000, 300000),
        ("APPLE INC", "037833100", 1000, 200000),
    ]
    assert [h.percentage_of_portfolio for h in holdings] == [pytest.approx(60.0), pytest.approx(40.0)]


def test_parse_information_table_scales_values():
    (holding,) = parse_information_table(PLAIN_XML, value_multiplier=1000)

    assert holding.value_usd == 250_000
    assert holding.percentage_of_portfolio == 100.0


def test_fetch_filings_builds_filings_newest_first():
    session = StubSession(_routes())
    source = EdgarSource("Tracker test@example.com", session=session)

    filings = list(source.fetch_filings("0001067293", limit=3))

    assert [(f.quarter, f.year) for f in filings] == [("Q1", 2024), ("Q4", 2023), ("Q3", 2022)]
    latest = filings[0]
    assert latest.filing_date == date(2024, 5, 15)
    assert latest.accession_number == "0001067293-24-000005"
    assert latest.company_name == "DUQUESNE FAMILY OFFICE LLC"
    assert latest.filing_url == f"{ARCHIVE}/000106729324000005/"
    assert filings[1].holdings[0].value_usd == 250
    assert filings[2].holdings[0].value_usd == 250_000
    assert session.headers["User-Agent"] == "Tracker test@example.com"


def test_fetch_filings_skips_known_quarters():
    session = StubSession(_routes())
    source = EdgarSource("Tracker test@example.com", session=session)

    filings = list(source.fetch_filings("0001067293", limit=2, skip={("Q1", 2024)}))

    assert [(f.quarter, f.year) for f in filings] == [("Q4", 2023)]
    assert not any("000106729324000005" in url for url in session.requested)


def test_broken_filing_is_skipped():
    routes = _routes(**{f"{ARCHIVE}/000106729324000005/index.json": StubResponse(status=500)})
    source = EdgarSource("Tracker test@example.com", session=StubSession(routes))

    filings = list(source.fetch_filings("0001067293", limit=2))

    assert [(f.quarter, f.year) for f in filings] == [("Q4", 2023)]
