"""Tests for the Yahoo-style quote source client."""

import httpx
import pytest

from app.models.holding import PricePoint
from app.services.errors import MarketDataError
from app.services.quote_source import QuoteSource, parse_json_text


def make_source(handler) -> QuoteSource:
    return QuoteSource(base_url="https://quotes.test", transport=httpx.MockTransport(handler))


def test_parse_json_text_strips_anti_hijack_prefix():
    assert parse_json_text('{"a": 1}') == {"a": 1}
    assert parse_json_text(')]}\',\n{"a": 2}') == {"a": 2}


@pytest.mark.asyncio
async def test_get_series_parses_chart_and_skips_gaps():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json={
                "chart": {
                    "result": [
                        {
                            "timestamp": [300, 100, 200],
                            "indicators": {"quote": [{"close": [12.0, 10.0, None]}]},
                        }
                    ]
                }
            },
        )

    series = await make_source(handler).get_series("TCS.NS", "10y", "1d")

    assert seen["path"] == "/v8/finance/chart/TCS.NS"
    assert seen["params"] == {"range": "10y", "interval": "1d"}
    assert series == [PricePoint(100, 10.0), PricePoint(300, 12.0)]


@pytest.mark.asyncio
async def test_get_series_without_result_raises():
    source = make_source(lambda request: httpx.Response(200, json={"chart": {"result": None}}))
    with pytest.raises(MarketDataError):
        await source.get_series("NOPE")


@pytest.mark.asyncio
async def test_get_series_missing_fields_raise_market_data_error():
    source = make_source(lambda request: httpx.Response(200, json={"chart": {"result": [{}]}}))
    with pytest.raises(MarketDataError):
        await source.get_series("NOPE")


@pytest.mark.asyncio
async def test_get_series_http_error_propagates():
    source = make_source(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(httpx.HTTPStatusError):
        await source.get_series("TCS.NS")


@pytest.mark.asyncio
async def test_get_quote():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v7/finance/quote"
        assert request.url.params["symbols"] == "TCS.NS"
        return httpx.Response(
            200,
            json={
                "quoteResponse": {
                    "result": [
                        {"symbol": "TCS.NS", "regularMarketPrice": 3500.5, "regularMarketPreviousClose": 3480.0}
                    ]
                }
            },
        )

    quote = await make_source(handler).get_quote("TCS.NS")
    assert quote.price == 3500.5
    assert quote.previous_close == 3480.0


@pytest.mark.asyncio
async def test_get_quote_without_price_raises():
    source = make_source(
        lambda request: httpx.Response(200, json={"quoteResponse": {"result": [{"symbol": "X"}]}})
    )
    with pytest.raises(MarketDataError):
        await source.get_quote("X")


@pytest.mark.asyncio
async def test_search_tolerates_missing_fields():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["q"] == "tata motors"
        assert request.url.params["newsCount"] == "0"
        return httpx.Response(
            200,
            json={"quotes": [{"symbol": "TATAMOTORS.NS", "quoteType": "EQUITY"}, {"shortname": "no symbol"}]},
        )

    quotes = await make_source(handler).search("  tata motors ")
    assert quotes[0].symbol == "TATAMOTORS.NS"
    assert quotes[0].quote_type == "EQUITY"
    assert quotes[1].symbol is None


@pytest.mark.asyncio
async def test_search_blank_query_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert await make_source(handler).search("   ") == []
