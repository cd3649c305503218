"""SEC EDGAR 13F-HR filing source."""
from __future__ import annotations

import logging
import re
from datetime import date
from typing import Iterable, Iterator, List, Optional

import requests
from bs4 import BeautifulSoup

from ..models import Filing, Holding, quarter_for_date
from .base import FilingSource, SourceError
from .utils import parse_date, parse_int

LOGGER = logging.getLogger(__name__)

FORM_TYPE = "13F-HR"

# Filings submitted from this date on report values in dollars; earlier ones in thousands.
DOLLAR_VALUES_SINCE = date(2023, 1, 3)


def _tag(name: str) -> re.Pattern[str]:
    """Match an XML element by local name whatever namespace prefix the filer used."""

    return re.compile(rf"^(?:[\w.-]+:)?{name.lower()}$")


INFO_TABLE = _tag("infoTable")
NAME_OF_ISSUER = _tag("nameOfIssuer")
CUSIP = _tag("cusip")
VALUE = _tag("value")
SHARES = _tag("sshPrnamt")
PUT_CALL = _tag("putCall")


def _text(node, pattern: re.Pattern[str]) -> Optional[str]:
    found = node.find(pattern)
    if found is None:
        return None
    text = found.get_text(strip=True)
    return text or None


def parse_information_table(xml_text: str, value_multiplier: int = 1) -> List[Holding]:
    """Parse a 13F information table into holdings with portfolio percentages.

    Option rows (``putCall``) are skipped and rows sharing a CUSIP are merged so
    that a CUSIP identifies exactly one holding per filing.
    """

    soup = BeautifulSoup(xml_text, "html.parser")
    merged: dict[str, Holding] = {}
    ordered: List[Holding] = []
    for entry in soup.find_all(INFO_TABLE):
        name = _text(entry, NAME_OF_ISSUER)
        value = parse_int(_text(entry, VALUE))
        if not name or value is None:
            continue
        if _text(entry, PUT_CALL):
            LOGGER.debug("Skipping option row for %s", name)
            continue
        cusip = (_text(entry, CUSIP) or "").upper() or None
        shares = parse_int(_text(entry, SHARES)) or 0
        value_usd = value * value_multiplier

        existing = merged.get(cusip) if cusip else None
        if existing is not None:
            existing.shares += shares
            existing.value_usd += value_usd
            continue
        holding = Holding(
            company_name=name,
            cusip=cusip,
            shares=shares,
            value_usd=value_usd,
            percentage_of_portfolio=0.0,
        )
        ordered.append(holding)
        if cusip:
            merged[cusip] = holding

    total = sum(holding.value_usd for holding in ordered)
    for holding in ordered:
        holding.percentage_of_portfolio = holding.value_usd / total * 100 if total else 0.0
    return ordered


class EdgarSource(FilingSource):
    """Loads 13F-HR filings from the EDGAR submissions API and archive."""

    SUBMISSIONS_URL = "https://data.sec.gov/submissions/CIK{cik}.json"
    ARCHIVE_URL = "https://www.sec.gov/Archives/edgar/data/{cik}/{accession}"

    def __init__(self, user_agent: str, session: requests.Session | None = None, timeout: float = 30) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout
        # SEC asks automated clients to identify themselves with a contact address.
        self.session.headers.update({"User-Agent": user_agent, "Accept-Encoding": "gzip, deflate"})

    def _get(self, url: str) -> requests.Response:
        LOGGER.debug("Requesting %s", url)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise SourceError(f"GET {url} failed: {exc}") from exc
        return response

    def list_submissions(self, cik: str) -> tuple[str, List[dict[str, str]]]:
        """Return the filer name and its recent 13F-HR submissions, newest first."""

        padded = cik.strip().zfill(10)
        try:
            data = self._get(self.SUBMISSIONS_URL.format(cik=padded)).json()
            recent = data["filings"]["recent"]
            forms = recent["form"]
        except (ValueError, KeyError, TypeError) as exc:
            raise SourceError(f"Malformed submissions payload for CIK {cik}") from exc

        entries: List[dict[str, str]] = []
        for index, form in enumerate(forms):
            if form != FORM_TYPE:
                continue
            entries.append(
                {
                    "accession": recent["accessionNumber"][index],
                    "filing_date": recent["filingDate"][index],
                    "report_date": recent["reportDate"][index],
                }
            )
        return data.get("name", ""), entries

    def _find_information_table(self, cik: str, accession: str) -> str:
        base = self.ARCHIVE_URL.format(cik=int(cik), accession=accession.replace("-", ""))
        try:
            listing = self._get(f"{base}/index.json").json()
            items = listing["directory"]["item"]
        except (ValueError, KeyError, TypeError) as exc:
            raise SourceError(f"Malformed filing index for {accession}") from exc
        for item in items:
            name = (item.get("name") or "").lower()
            if name.endswith(".xml") and name != "primary_doc.xml":
                return f"{base}/{item['name']}"
        raise SourceError(f"No information table found in {accession}")

    def fetch_filing(self, cik: str, firm_name: str, entry: dict[str, str]) -> Filing:
        filing_date = parse_date(entry["filing_date"])
        report_date = parse_date(entry["report_date"])
        if filing_date is None or report_date is None:
            raise SourceError(f"Filing {entry['accession']} has no usable dates")
        quarter, year = quarter_for_date(report_date)

        table_url = self._find_information_table(cik, entry["accession"])
        multiplier = 1 if filing_date >= DOLLAR_VALUES_SINCE else 1000
        holdings = parse_information_table(self._get(table_url).text, value_multiplier=multiplier)
        LOGGER.info("Parsed %d holdings from %s (%s %d)", len(holdings), entry["accession"], quarter, year)
        return Filing(
            cik=cik,
            company_name=firm_name,
            quarter=quarter,
            year=year,
            filing_date=filing_date,
            accession_number=entry["accession"],
            filing_url=table_url.rsplit("/", 1)[0] + "/",
            holdings=holdings,
        )

    def fetch_filings(self, cik: str, limit: int = 3, skip: Iterable[tuple[str, int]] = ()) -> Iterator[Filing]:
        """Yield up to ``limit`` recent filings, leaving out ``(quarter, year)`` pairs in ``skip``."""

        firm_name, entries = self.list_submissions(cik)
        known = set(skip)
        for entry in entries[:limit]:
            report_date = parse_date(entry["report_date"])
            if report_date is not None and quarter_for_date(report_date) in known:
                LOGGER.info("Filing %s already stored, skipping", entry["accession"])
                continue
            try:
                filing = self.fetch_filing(cik, firm_name, entry)
            except SourceError as exc:
                LOGGER.warning("Failed to load filing %s: %s", entry["accession"], exc)
                continue
            if not filing.holdings:
                LOGGER.warning("Filing %s has no holdings, skipping", entry["accession"])
                continue
            yield filing


__all__ = ["EdgarSource", "parse_information_table"]
