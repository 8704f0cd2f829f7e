"""Equity / FX / commodity quote source speaking the Yahoo Finance HTTP contract.

Responses are validated through explicit optional-field schemas: every field
may be missing and gets a default instead of being trusted to exist.
"""

import json
import logging
import re
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.config import REQUEST_TIMEOUT, USER_AGENT, YAHOO_BASE_URL
from app.models.holding import PricePoint
from app.services.errors import MarketDataError
from app.services.series import normalize_series

logger = logging.getLogger(__name__)

_ANTI_HIJACK_PREFIX = re.compile(r"^\)\]\}',?\s*")


def parse_json_text(text: str) -> Any:
    """Parse JSON, tolerating the anti-hijack prefix some relays prepend."""
    trimmed = text.strip()
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError:
        return json.loads(_ANTI_HIJACK_PREFIX.sub("", trimmed))


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ChartQuoteBlock(_Lenient):
    close: list[float | None] = Field(default_factory=list)


class ChartIndicators(_Lenient):
    quote: list[ChartQuoteBlock] = Field(default_factory=list)


class ChartResult(_Lenient):
    timestamp: list[int | None] = Field(default_factory=list)
    indicators: ChartIndicators = Field(default_factory=ChartIndicators)


class ChartBody(_Lenient):
    result: list[ChartResult] | None = None


class ChartResponse(_Lenient):
    chart: ChartBody = Field(default_factory=ChartBody)


class SearchQuote(_Lenient):
    symbol: str | None = None
    quote_type: str | None = Field(default=None, alias="quoteType")
    exchange: str | None = None
    shortname: str | None = None
    longname: str | None = None


class SearchResponse(_Lenient):
    quotes: list[SearchQuote] = Field(default_factory=list)


class QuoteResult(_Lenient):
    symbol: str | None = None
    regular_market_price: float | None = Field(default=None, alias="regularMarketPrice")
    regular_market_previous_close: float | None = Field(
        default=None, alias="regularMarketPreviousClose"
    )


class QuoteResponseBody(_Lenient):
    result: list[QuoteResult] = Field(default_factory=list)


class QuoteResponse(_Lenient):
    quote_response: QuoteResponseBody = Field(
        default_factory=QuoteResponseBody, alias="quoteResponse"
    )


class Quote(BaseModel):
    symbol: str
    price: float
    previous_close: float | None = None


class QuoteSource:
    """Read-only client: ``get_series``, ``get_quote``, ``search``."""

    def __init__(
        self,
        base_url: str = YAHOO_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Accept": "application/json, text/plain, */*", "User-Agent": USER_AGENT},
            transport=self._transport,
        ) as client:
            resp = await client.get(path, params=params)
            resp.raise_for_status()
            return parse_json_text(resp.text)

    async def get_series(self, symbol: str, range_: str = "10y", interval: str = "1d") -> list[PricePoint]:
        raw = await self._get_json(
            f"/v8/finance/chart/{symbol}", {"range": range_, "interval": interval}
        )
        try:
            parsed = ChartResponse.model_validate(raw)
        except ValidationError as e:
            raise MarketDataError(f"Malformed chart response for {symbol}: {e}") from e

        results = parsed.chart.result or []
        if not results:
            raise MarketDataError(f"No data for symbol {symbol}")
        result = results[0]
        closes = result.indicators.quote[0].close if result.indicators.quote else []
        series = normalize_series(zip(result.timestamp, closes))
        if not series:
            raise MarketDataError(f"No data for symbol {symbol}")
        return series

    async def get_quote(self, symbol: str) -> Quote:
        raw = await self._get_json("/v7/finance/quote", {"symbols": symbol})
        try:
            parsed = QuoteResponse.model_validate(raw)
        except ValidationError as e:
            raise MarketDataError(f"Malformed quote response for {symbol}: {e}") from e

        for item in parsed.quote_response.result:
            if item.regular_market_price is not None and item.regular_market_price > 0:
                return Quote(
                    symbol=item.symbol or symbol,
                    price=item.regular_market_price,
                    previous_close=item.regular_market_previous_close,
                )
        raise MarketDataError(f"No quote for symbol {symbol}")

    async def search(self, query: str, count: int = 8) -> list[SearchQuote]:
        cleaned = query.strip()
        if not cleaned:
            return []
        raw = await self._get_json(
            "/v1/finance/search", {"q": cleaned, "quotesCount": count, "newsCount": 0}
        )
        try:
            return SearchResponse.model_validate(raw).quotes
        except ValidationError as e:
            logger.error(f"Malformed search response for {cleaned!r}: {e}")
            return []


# Global instance
quote_source = QuoteSource()
