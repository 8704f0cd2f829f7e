"""Mutual fund registry client (mfapi.in contract)."""

import logging
from typing import Any

import httpx
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.config import MFAPI_BASE_URL, REQUEST_TIMEOUT, USER_AGENT
from app.models.holding import PricePoint
from app.services.errors import MarketDataError
from app.services.quote_source import parse_json_text

logger = logging.getLogger(__name__)


class MfScheme(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    code: str = Field(alias="schemeCode")
    name: str = Field(default="", alias="schemeName")

    @field_validator("code", mode="before")
    @classmethod
    def _code_as_text(cls, value: Any) -> str:
        return str(value).strip()


class NavRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    date: str = ""
    nav: str | float = ""


class NavHistoryResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: list[NavRow] = Field(default_factory=list)


def parse_nav_rows(rows: list[NavRow]) -> list[PricePoint]:
    """mfapi rows ("DD-MM-YYYY", "12.3456"), newest first -> ascending series."""
    if not rows:
        return []
    df = pd.DataFrame([{"date": r.date, "nav": r.nav} for r in rows])
    df["date"] = pd.to_datetime(df["date"], format="%d-%m-%Y", errors="coerce")
    df["nav"] = pd.to_numeric(df["nav"], errors="coerce")
    df = df.dropna().drop_duplicates(subset="date", keep="first").sort_values("date")
    return [
        PricePoint(int(d.tz_localize("UTC").timestamp()), float(n))
        for d, n in zip(df["date"], df["nav"])
    ]


class MutualFundRegistry:
    """``list_schemes`` (cached for the process lifetime) and ``get_nav_history``."""

    def __init__(
        self,
        base_url: str = MFAPI_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._schemes: list[MfScheme] | None = None

    async def _get_json(self, path: str) -> Any:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            transport=self._transport,
        ) as client:
            resp = await client.get(path)
            resp.raise_for_status()
            return parse_json_text(resp.text)

    async def list_schemes(self) -> list[MfScheme]:
        if self._schemes is not None:
            return self._schemes
        raw = await self._get_json("/mf")
        schemes: list[MfScheme] = []
        for item in raw if isinstance(raw, list) else []:
            try:
                schemes.append(MfScheme.model_validate(item))
            except ValidationError:
                continue
        self._schemes = schemes
        logger.info(f"Loaded {len(schemes)} mutual fund schemes")
        return schemes

    async def get_nav_history(self, code: str) -> list[PricePoint]:
        raw = await self._get_json(f"/mf/{code}")
        try:
            parsed = NavHistoryResponse.model_validate(raw)
        except ValidationError as e:
            raise MarketDataError(f"Malformed NAV response for scheme {code}: {e}") from e
        series = parse_nav_rows(parsed.data)
        if not series:
            raise MarketDataError(f"No NAV data for scheme {code}")
        return series


# Global instance
mf_registry = MutualFundRegistry()
