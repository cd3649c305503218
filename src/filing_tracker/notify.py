"""HTML rendering and SMTP delivery of comparison reports."""
from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Optional, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy.engine import Engine

from . import db
from .config import EmailSettings
from .models import NOT_AVAILABLE, Report

LOGGER = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"


class EmailDeliveryError(RuntimeError):
    """Raised when a report email could not be handed to the SMTP server."""


def format_money(value: Optional[float], signed: bool = False) -> str:
    """Compact dollar amount: ``$132.7M``, ``$1.50B``, ``-$12.0K``."""

    if value is None:
        return NOT_AVAILABLE
    sign = "-" if value < 0 else ("+" if signed and value > 0 else "")
    amount = abs(value)
    if amount >= 1_000_000_000:
        text = f"${amount / 1_000_000_000:.2f}B"
    elif amount >= 1_000_000:
        text = f"${amount / 1_000_000:.1f}M"
    elif amount >= 1_000:
        text = f"${amount / 1_000:.1f}K"
    else:
        text = f"${amount:,.0f}"
    return sign + text


def format_price(value: Optional[float], signed: bool = False) -> str:
    if value is None:
        return NOT_AVAILABLE
    return f"{value:+,.2f}" if signed else f"${value:,.2f}"


def format_pct(value: Optional[float], signed: bool = False) -> str:
    if value is None:
        return NOT_AVAILABLE
    return f"{value:+.2f}%" if signed else f"{value:.2f}%"


def register_filters(env: Environment) -> Environment:
    env.filters["money"] = format_money
    env.filters["price"] = format_price
    env.filters["pct"] = format_pct
    return env


def _environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    return register_filters(env)


def render_report_html(report: Report, firm_name: str | None = None, template: str = "report_email.html") -> str:
    firm = firm_name or report.current_filing.company_name
    return _environment().get_template(template).render(report=report, firm_name=firm)


def render_report_text(report: Report, firm_name: str | None = None) -> str:
    """Plain text alternative part of the email."""

    current = report.current_filing
    lines = [f"{firm_name or current.company_name} - {current.label} 13F portfolio update", ""]
    for row in report.comparison_data:
        lines.append(
            f"{row.company} ({row.display_ticker}): {format_money(row.current_value)} "
            f"[{format_pct(row.percent_of_portfolio)}] QoQ {format_money(row.qoq_value_change, signed=True)}"
        )
    if report.summary:
        lines.extend(["", report.summary])
    return "\n".join(lines)


def report_subject(report: Report, firm_name: str | None = None) -> str:
    current = report.current_filing
    return f"{firm_name or current.company_name} - {current.label} Portfolio Update"


def send_email(settings: EmailSettings, subject: str, html: str, text: str, recipients: Sequence[str]) -> None:
    """Send one multipart message to ``recipients``."""

    sender = settings.username or "filing-tracker@localhost"
    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = sender
    message["To"] = ", ".join(recipients)
    message.attach(MIMEText(text, "plain", "utf-8"))
    message.attach(MIMEText(html, "html", "utf-8"))

    LOGGER.info("Sending %r to %s via %s:%d", subject, ", ".join(recipients), settings.host, settings.port)
    try:
        if settings.starttls:
            smtp: smtplib.SMTP = smtplib.SMTP(settings.host, settings.port, timeout=30)
        else:
            smtp = smtplib.SMTP_SSL(settings.host, settings.port, timeout=30)
        with smtp:
            if settings.starttls:
                smtp.starttls()
            if settings.username and settings.password:
                smtp.login(settings.username, settings.password)
            smtp.sendmail(sender, list(recipients), message.as_string())
    except (smtplib.SMTPException, OSError) as exc:
        raise EmailDeliveryError(f"Could not send {subject!r}: {exc}") from exc


def deliver_report(
    engine: Engine,
    settings: EmailSettings,
    report: Report,
    firm_name: str | None = None,
    recipients: Sequence[str] | None = None,
) -> None:
    """Email ``report`` and record the outcome for every recipient in ``email_logs``."""

    targets = list(recipients or settings.recipients)
    if not targets:
        raise EmailDeliveryError("No email recipients configured")
    filing_id = report.current_filing.id
    if filing_id is None:
        raise ValueError("Only stored filings can be emailed")

    subject = report_subject(report, firm_name)
    html = render_report_html(report, firm_name)
    text = render_report_text(report, firm_name)
    try:
        send_email(settings, subject, html, text, targets)
    except EmailDeliveryError as exc:
        for recipient in targets:
            db.record_email(engine, filing_id, recipient, "failed", str(exc))
        LOGGER.error("Email delivery for filing %s failed: %s", filing_id, exc)
        raise
    for recipient in targets:
        db.record_email(engine, filing_id, recipient, "sent")
    LOGGER.info("Emailed filing %s report to %d recipients", filing_id, len(targets))


__all__ = [
    "EmailDeliveryError",
    "deliver_report",
    "format_money",
    "format_pct",
    "format_price",
    "register_filters",
    "render_report_html",
    "render_report_text",
    "report_subject",
    "send_email",
]
