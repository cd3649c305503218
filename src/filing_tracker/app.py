"""FastAPI application exposing the filing dashboard, reports and the daily check."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from . import db
from .config import Settings
from .logging_utils import configure_logging
from .models import Report
from .notify import EmailDeliveryError, deliver_report, register_filters
from .report import FilingNotFoundError, ReportAssembler, build_assembler
from .runner import check_new_filings
from .sources import create_http_client

configure_logging()

LOGGER = logging.getLogger(__name__)

settings = Settings.load()
engine = db.create_db_engine(settings.database_url)
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))
register_filters(templates.env)

scheduler = AsyncIOScheduler()
JOB_ID = "daily-filing-check"


def _check_job() -> None:
    """Wrapper for running the filing check within the scheduler."""

    LOGGER.info("Running scheduled filing check")
    try:
        results = check_new_filings(settings, engine)
    except Exception:  # pragma: no cover
        LOGGER.exception("Scheduled filing check failed")
    else:
        LOGGER.info("Scheduled filing check completed: %s", results or "no new filings")


def _configure_job() -> None:
    """Ensure the APScheduler job reflects the configured schedule."""

    trigger = CronTrigger(
        hour=settings.check_hour,
        minute=settings.check_minute,
        timezone=ZoneInfo(settings.check_timezone),
    )
    scheduler.add_job(_check_job, trigger=trigger, id=JOB_ID, replace_existing=True)
    LOGGER.info(
        "Scheduled daily filing check for %02d:%02d %s",
        settings.check_hour,
        settings.check_minute,
        settings.check_timezone,
    )


async def get_assembler() -> AsyncIterator[ReportAssembler]:
    """Request scoped assembler sharing one HTTP client."""

    async with create_http_client(settings) as client:
        yield build_assembler(settings, engine, client)


async def _build_report(assembler: ReportAssembler, filing_id: int) -> Report:
    try:
        return await assembler.build(filing_id)
    except FilingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    LOGGER.info("Starting FastAPI application")
    db.ensure_schema(engine)
    _configure_job()
    if not scheduler.running:
        scheduler.start()
        LOGGER.info("Scheduler started")
    yield
    if scheduler.running:
        scheduler.shutdown()
        LOGGER.info("Scheduler shut down")


app = FastAPI(title="13F Filing Tracker", default_response_class=HTMLResponse, lifespan=lifespan)


@app.get("/", response_class=HTMLResponse)
async def dashboard(request: Request, assembler: ReportAssembler = Depends(get_assembler)) -> HTMLResponse:
    LOGGER.debug("Rendering dashboard view")
    filings = await asyncio.to_thread(db.list_filings, engine, settings.cik)
    report: Optional[Report] = None
    error: Optional[str] = None
    if filings and filings[0].id is not None:
        try:
            report = await assembler.build(filings[0].id)
        except FilingNotFoundError as exc:
            error = str(exc)
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {
            "firm_name": settings.firm_name,
            "cik": settings.cik,
            "filings": filings,
            "report": report,
            "error": error,
            "schedule_time": f"{settings.check_hour:02d}:{settings.check_minute:02d}",
            "schedule_timezone": settings.check_timezone,
        },
    )


@app.get("/filings/{filing_id}", response_class=HTMLResponse)
async def show_report(
    request: Request, filing_id: int, assembler: ReportAssembler = Depends(get_assembler)
) -> HTMLResponse:
    report = await _build_report(assembler, filing_id)
    return templates.TemplateResponse(
        request,
        "report.html",
        {"report": report, "firm_name": settings.firm_name},
    )


@app.get("/api/filings", response_class=JSONResponse)
async def api_filings() -> list[dict[str, Any]]:
    filings = await asyncio.to_thread(db.list_filings, engine, settings.cik)
    return [filing.to_dict(include_holdings=False) for filing in filings]


@app.get("/api/filings/{filing_id}/report", response_class=JSONResponse)
async def api_report(filing_id: int, assembler: ReportAssembler = Depends(get_assembler)) -> dict[str, Any]:
    report = await _build_report(assembler, filing_id)
    return {"success": True, **report.to_dict()}


@app.post("/api/filings/{filing_id}/email", response_class=JSONResponse)
async def api_email(filing_id: int, assembler: ReportAssembler = Depends(get_assembler)) -> dict[str, Any]:
    if not settings.email.enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is not configured")
    report = await _build_report(assembler, filing_id)
    try:
        await asyncio.to_thread(deliver_report, engine, settings.email, report, settings.firm_name)
    except EmailDeliveryError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return {"success": True, "recipients": list(settings.email.recipients)}


@app.post("/api/check", response_class=JSONResponse)
async def api_check() -> dict[str, Any]:
    results = await asyncio.to_thread(check_new_filings, settings, engine)
    return {"success": True, "results": results}


__all__ = ["app", "get_assembler"]
