"""OpenFIGI identifier mapping implementation."""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from .base import IdentifierMapper, SourceError
from .utils import get_json

LOGGER = logging.getLogger(__name__)


class OpenFigiMapper(IdentifierMapper):
    """Resolve CUSIPs to US tickers through the OpenFIGI mapping API."""

    BASE_URL = "https://api.openfigi.com/v3/mapping"

    def __init__(self, client: httpx.AsyncClient, api_key: str | None = None, exch_code: str = "US") -> None:
        self.client = client
        self.api_key = api_key
        self.exch_code = exch_code

    async def map_cusip(self, cusip: str) -> Optional[str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-OPENFIGI-APIKEY"] = self.api_key
        job = {"idType": "ID_CUSIP", "idValue": cusip.strip().upper(), "exchCode": self.exch_code}

        LOGGER.debug("Mapping CUSIP %s through OpenFIGI", cusip)
        payload = await get_json(self.client, "POST", self.BASE_URL, json=[job], headers=headers)
        if not isinstance(payload, list) or not payload or not isinstance(payload[0], dict):
            raise SourceError(f"Unexpected OpenFIGI payload for {cusip}")

        result = payload[0]
        if "error" in result:
            raise SourceError(f"OpenFIGI rejected {cusip}: {result['error']}")
        for entry in result.get("data") or []:
            ticker = (entry.get("ticker") or "").strip()
            if ticker:
                return ticker.replace("/", "-")
        LOGGER.debug("OpenFIGI has no ticker for %s", cusip)
        return None


__all__ = ["OpenFigiMapper"]
