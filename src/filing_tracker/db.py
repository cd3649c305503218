"""Database integration utilities."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Iterable, Iterator, Optional

from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    insert,
    select,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine, Row

from .models import Filing, Holding


metadata = MetaData()

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


filings = Table(
    "filings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("cik", String(16), nullable=False),
    Column("company_name", String(255), nullable=False, default=""),
    Column("filing_date", Date, nullable=False),
    Column("quarter", String(2), nullable=False),
    Column("year", Integer, nullable=False),
    Column("accession_number", String(32), nullable=True),
    Column("filing_url", String(1024), nullable=True),
    Column("created_at", DateTime, nullable=False, default=_utcnow),
    UniqueConstraint("cik", "quarter", "year", name="uq_filings_cik_quarter_year"),
    Index("ix_filings_cik_date", "cik", "filing_date"),
)

holdings = Table(
    "holdings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("filing_id", ForeignKey("filings.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("company_name", String(255), nullable=False),
    Column("ticker", String(32), nullable=True),
    Column("cusip", String(16), nullable=True),
    Column("shares", BigInteger, nullable=True),
    Column("value_usd", BigInteger, nullable=False),
    Column("percentage_of_portfolio", Float, nullable=False),
    Column("created_at", DateTime, nullable=False, default=_utcnow),
)

price_cache = Table(
    "price_cache",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("ticker", String(32), nullable=False),
    Column("report_date", Date, nullable=False),
    Column("price", Float, nullable=True),
    Column("fetched_at", DateTime, nullable=False, default=_utcnow),
    UniqueConstraint("ticker", "report_date", name="uq_price_cache_ticker_date"),
)

email_logs = Table(
    "email_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("filing_id", ForeignKey("filings.id", ondelete="CASCADE"), nullable=False),
    Column("recipient", String(255), nullable=False),
    Column("status", String(16), nullable=False),
    Column("error_message", Text, nullable=True),
    Column("sent_at", DateTime, nullable=False, default=_utcnow),
)


def create_db_engine(database_url: str) -> Engine:
    """Create a SQLAlchemy engine."""

    LOGGER.debug("Creating database engine")
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        # Price cache calls are dispatched to worker threads.
        connect_args["check_same_thread"] = False
    return create_engine(database_url, future=True, pool_pre_ping=True, connect_args=connect_args)


@contextmanager
def session(engine: Engine) -> Iterator[Connection]:
    """Provide a transactional scope around a series of operations."""

    with engine.begin() as conn:
        yield conn


def ensure_schema(engine: Engine) -> None:
    """Create tables if they do not exist."""

    LOGGER.debug("Ensuring database schema is present")
    metadata.create_all(engine)


def _upsert_statement(conn: Connection, table: Table):
    """Return a dialect specific INSERT supporting ``on_conflict_do_update``."""

    dialect = conn.dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise RuntimeError(f"Upserts are not supported on the {dialect} dialect")


def _row_to_holding(row: Row) -> Holding:
    data = row._mapping
    return Holding(
        company_name=data["company_name"],
        cusip=data["cusip"],
        ticker=data["ticker"],
        shares=int(data["shares"] or 0),
        value_usd=int(data["value_usd"]),
        percentage_of_portfolio=float(data["percentage_of_portfolio"]),
    )


def _row_to_filing(row: Row, holdings_data: Iterable[Holding] = ()) -> Filing:
    data = row._mapping
    return Filing(
        id=data["id"],
        cik=data["cik"],
        company_name=data["company_name"],
        quarter=data["quarter"],
        year=data["year"],
        filing_date=data["filing_date"],
        accession_number=data["accession_number"],
        filing_url=data["filing_url"],
        holdings=list(holdings_data),
    )


def _load_filing(conn: Connection, row: Optional[Row]) -> Optional[Filing]:
    if row is None:
        return None
    stmt = (
        select(holdings)
        .where(holdings.c.filing_id == row._mapping["id"])
        .order_by(holdings.c.id)
    )
    return _row_to_filing(row, (_row_to_holding(h) for h in conn.execute(stmt)))


def save_filing(engine: Engine, filing: Filing) -> int:
    """Persist a filing with its holdings and return the new row id."""

    with session(engine) as conn:
        result = conn.execute(
            insert(filings)
            .values(
                cik=filing.cik,
                company_name=filing.company_name,
                filing_date=filing.filing_date,
                quarter=filing.quarter,
                year=filing.year,
                accession_number=filing.accession_number,
                filing_url=filing.filing_url,
            )
        )
        filing_id = result.inserted_primary_key[0]
        if filing.holdings:
            conn.execute(
                insert(holdings),
                [
                    {
                        "filing_id": filing_id,
                        "company_name": holding.company_name,
                        "ticker": holding.ticker,
                        "cusip": holding.cusip,
                        "shares": holding.shares,
                        "value_usd": holding.value_usd,
                        "percentage_of_portfolio": holding.percentage_of_portfolio,
                    }
                    for holding in filing.holdings
                ],
            )
    filing.id = filing_id
    LOGGER.info(
        "Stored %s filing for %s with %d holdings (id=%d)",
        filing.label,
        filing.cik,
        len(filing.holdings),
        filing_id,
    )
    return filing_id


def filing_exists(engine: Engine, cik: str, quarter: str, year: int) -> bool:
    with engine.connect() as conn:
        stmt = select(filings.c.id).where(
            filings.c.cik == cik, filings.c.quarter == quarter, filings.c.year == year
        )
        return conn.execute(stmt).first() is not None


def get_filing(engine: Engine, filing_id: int) -> Optional[Filing]:
    """Return the filing with ``filing_id`` including its holdings."""

    with engine.connect() as conn:
        row = conn.execute(select(filings).where(filings.c.id == filing_id)).first()
        return _load_filing(conn, row)


def find_prior_quarter_filing(engine: Engine, cik: str, before: date) -> Optional[Filing]:
    """Return the most recent filing of ``cik`` filed strictly before ``before``."""

    with engine.connect() as conn:
        stmt = (
            select(filings)
            .where(filings.c.cik == cik, filings.c.filing_date < before)
            .order_by(filings.c.filing_date.desc(), filings.c.id.desc())
            .limit(1)
        )
        return _load_filing(conn, conn.execute(stmt).first())


def find_same_quarter_prior_year(engine: Engine, cik: str, quarter: str, year: int) -> Optional[Filing]:
    """Return the filing for ``quarter`` of ``year - 1``; ``year`` is the current filing's year."""

    with engine.connect() as conn:
        stmt = select(filings).where(
            filings.c.cik == cik,
            filings.c.quarter == quarter,
            filings.c.year == year - 1,
        )
        return _load_filing(conn, conn.execute(stmt).first())


def list_filings(engine: Engine, cik: str | None = None) -> list[Filing]:
    """Return filing headers (without holdings), newest first."""

    with engine.connect() as conn:
        stmt = select(filings).order_by(filings.c.filing_date.desc(), filings.c.id.desc())
        if cik:
            stmt = stmt.where(filings.c.cik == cik)
        return [_row_to_filing(row) for row in conn.execute(stmt)]


def latest_filing_id(engine: Engine, cik: str) -> Optional[int]:
    with engine.connect() as conn:
        stmt = (
            select(filings.c.id)
            .where(filings.c.cik == cik)
            .order_by(filings.c.filing_date.desc(), filings.c.id.desc())
            .limit(1)
        )
        return conn.execute(stmt).scalar_one_or_none()


def fetch_price_entry(engine: Engine, ticker: str, report_date: date) -> Optional[Row]:
    """Return the ``(price, fetched_at)`` row cached for the key, if any."""

    with engine.connect() as conn:
        stmt = select(price_cache.c.price, price_cache.c.fetched_at).where(
            price_cache.c.ticker == ticker, price_cache.c.report_date == report_date
        )
        return conn.execute(stmt).first()


def upsert_price(engine: Engine, ticker: str, report_date: date, price: Optional[float]) -> None:
    """Insert or overwrite the cached price for ``(ticker, report_date)``."""

    with session(engine) as conn:
        stmt = _upsert_statement(conn, price_cache).values(
            ticker=ticker, report_date=report_date, price=price, fetched_at=_utcnow()
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[price_cache.c.ticker, price_cache.c.report_date],
            set_={"price": stmt.excluded.price, "fetched_at": stmt.excluded.fetched_at},
        )
        conn.execute(stmt)


def delete_prices(
    engine: Engine, ticker: str | None = None, report_date: date | None = None, *, only_missing: bool = False
) -> int:
    """Remove cached prices matching the filters and return the number of rows deleted."""

    stmt = delete(price_cache)
    if ticker:
        stmt = stmt.where(price_cache.c.ticker == ticker)
    if report_date:
        stmt = stmt.where(price_cache.c.report_date == report_date)
    if only_missing:
        stmt = stmt.where(price_cache.c.price.is_(None))
    with session(engine) as conn:
        removed = conn.execute(stmt).rowcount
    LOGGER.info("Removed %d cached price rows", removed)
    return removed


def record_email(
    engine: Engine, filing_id: int, recipient: str, status: str, error_message: str | None = None
) -> None:
    with session(engine) as conn:
        conn.execute(
            insert(email_logs).values(
                filing_id=filing_id,
                recipient=recipient,
                status=status,
                error_message=error_message,
            )
        )


def fetch_email_logs(engine: Engine, filing_id: int) -> list[dict[str, object]]:
    with engine.connect() as conn:
        stmt = (
            select(email_logs.c.recipient, email_logs.c.status, email_logs.c.error_message, email_logs.c.sent_at)
            .where(email_logs.c.filing_id == filing_id)
            .order_by(email_logs.c.id)
        )
        return [dict(row._mapping) for row in conn.execute(stmt)]


__all__ = [
    "create_db_engine",
    "delete_prices",
    "email_logs",
    "ensure_schema",
    "fetch_email_logs",
    "fetch_price_entry",
    "filing_exists",
    "filings",
    "find_prior_quarter_filing",
    "find_same_quarter_prior_year",
    "get_filing",
    "holdings",
    "latest_filing_id",
    "list_filings",
    "metadata",
    "price_cache",
    "record_email",
    "save_filing",
    "session",
    "upsert_price",
]
