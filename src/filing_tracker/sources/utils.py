"""Utility helpers shared by the sources."""
from __future__ import annotations

import re
from datetime import date, datetime, time, timezone
from typing import Any, Optional

import httpx
from dateutil import parser

from .base import SourceError


NON_DIGIT = re.compile(r"[^0-9]")


def parse_int(value: str | None) -> Optional[int]:
    """Parse a human readable integer value such as ``1,234``."""

    if not value:
        return None
    cleaned = NON_DIGIT.sub("", value.split(".", 1)[0])
    return int(cleaned) if cleaned else None


def parse_date(value: str | None) -> Optional[date]:
    """Parse an ISO or SEC style (``03-31-2024``) date string using dateutil."""

    if not value:
        return None
    return parser.parse(value).date()


def to_epoch(value: date) -> int:
    """Seconds since the epoch for midnight UTC of ``value``."""

    return int(datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp())


def from_epoch(value: int | float) -> date:
    return datetime.fromtimestamp(value, tz=timezone.utc).date()


async def get_json(
    client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
) -> Any:
    """Issue a request and decode the JSON body, mapping every failure onto ``SourceError``."""

    try:
        response = await client.request(method, url, **kwargs)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as exc:
        raise SourceError(f"{method} {url} returned {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        raise SourceError(f"{method} {url} failed: {exc}") from exc
    except ValueError as exc:
        raise SourceError(f"{method} {url} returned malformed JSON") from exc


__all__ = ["from_epoch", "get_json", "parse_date", "parse_int", "to_epoch"]
