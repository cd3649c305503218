"""Command line entry point for the 13F filing tracker."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Iterable, List, Optional

from sqlalchemy.engine import Engine

from . import db
from .config import Settings
from .logging_utils import configure_logging
from .models import Filing, Report
from .notify import EmailDeliveryError, deliver_report
from .prices import MemoryPriceCache, PriceCache, SqlPriceCache
from .report import FilingNotFoundError, build_assembler
from .sources import FilingSource, create_filing_source, create_http_client
from .sources.utils import parse_date

LOGGER = logging.getLogger(__name__)


def ingest_filings(settings: Settings, engine: Engine, source: FilingSource | None = None) -> List[Filing]:
    """Fetch recent filings for the configured CIK and store the ones not seen before."""

    source = source or create_filing_source(settings)
    known = {(filing.quarter, filing.year) for filing in db.list_filings(engine, settings.cik)}
    LOGGER.info("Checking EDGAR for new filings of %s (%d stored)", settings.cik, len(known))

    stored: List[Filing] = []
    for filing in source.fetch_filings(settings.cik, settings.filing_limit, skip=known):
        if (filing.quarter, filing.year) in known or db.filing_exists(
            engine, filing.cik, filing.quarter, filing.year
        ):
            LOGGER.info("Filing for %s already exists, skipping", filing.label)
            continue
        if not filing.company_name:
            filing.company_name = settings.firm_name
        db.save_filing(engine, filing)
        known.add((filing.quarter, filing.year))
        stored.append(filing)
    LOGGER.info("Stored %d new filing(s)", len(stored))
    return stored


async def generate_reports(
    settings: Settings,
    engine: Engine,
    filing_ids: Iterable[Optional[int]],
    cache: PriceCache | None = None,
) -> List[Report]:
    """Build the report for each filing id; ``None`` selects the latest filing."""

    reports: List[Report] = []
    async with create_http_client(settings) as client:
        assembler = build_assembler(settings, engine, client, cache=cache)
        for filing_id in filing_ids:
            if filing_id is None:
                reports.append(await assembler.build_latest(settings.cik))
            else:
                reports.append(await assembler.build(filing_id))
    return reports


def check_new_filings(settings: Settings, engine: Engine, source: FilingSource | None = None) -> List[dict[str, str]]:
    """Ingest new filings and email a report for each one."""

    new_filings = ingest_filings(settings, engine, source)
    if not new_filings:
        LOGGER.info("No new filings to process")
        return []

    reports = asyncio.run(generate_reports(settings, engine, [filing.id for filing in new_filings]))
    results: List[dict[str, str]] = []
    for report in reports:
        status = "skipped"
        if settings.email.enabled:
            try:
                deliver_report(engine, settings.email, report, settings.firm_name)
            except EmailDeliveryError:
                status = "failed"
            else:
                status = "sent"
        else:
            LOGGER.info("Email is not configured; report for %s not sent", report.current_filing.label)
        results.append({"filing": report.current_filing.label, "emailStatus": status})
    return results


def parse_args(args: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging output",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("ingest", help="Store new 13F filings from EDGAR")

    report = commands.add_parser("report", help="Print the comparison report as JSON")
    report.add_argument("filing_id", nargs="?", type=int, help="Stored filing id (default: latest)")
    report.add_argument("--no-cache", action="store_true", help="Keep prices in memory only")

    commands.add_parser("check", help="Ingest new filings and email their reports")

    invalidate = commands.add_parser("invalidate-prices", help="Drop cached prices")
    invalidate.add_argument("--ticker", help="Only this ticker")
    invalidate.add_argument("--date", help="Only this quarter-end date (YYYY-MM-DD)")
    invalidate.add_argument(
        "--missing-only", action="store_true", help="Only drop entries cached as 'no price'"
    )
    return parser.parse_args(args=args)


def main(argv: Iterable[str] | None = None) -> int:
    options = parse_args(argv)
    configure_logging(logging.DEBUG if options.verbose else None)
    settings = Settings.load()
    engine = db.create_db_engine(settings.database_url)
    db.ensure_schema(engine)

    if options.command == "ingest":
        ingest_filings(settings, engine)
    elif options.command == "report":
        cache = MemoryPriceCache() if options.no_cache else None
        try:
            (report,) = asyncio.run(generate_reports(settings, engine, [options.filing_id], cache=cache))
        except FilingNotFoundError as exc:
            LOGGER.error("%s", exc)
            return 1
        json.dump(report.to_dict(), sys.stdout, indent=2)
        sys.stdout.write("\n")
    elif options.command == "check":
        for result in check_new_filings(settings, engine):
            LOGGER.info("%s: email %s", result["filing"], result["emailStatus"])
    elif options.command == "invalidate-prices":
        SqlPriceCache(engine).invalidate(
            options.ticker, parse_date(options.date), only_missing=options.missing_only
        )
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
