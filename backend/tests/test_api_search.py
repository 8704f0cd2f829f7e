"""Tests for instrument search and market data endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.models.holding import InstrumentSuggestion, MarketData
from app.services.auth import auth_gate
from app.services.series import fallback_market_data


@pytest.fixture
def logged_in():
    auth_gate.is_open = True
    yield
    auth_gate.logout()


SUGGESTIONS = [
    InstrumentSuggestion(label="TCS.NS", symbol="TCS.NS", current_price=3500.0, kind="STOCK"),
    InstrumentSuggestion(label="TCS.BO", symbol="TCS.BO", current_price=3498.5, kind="STOCK"),
]


@pytest.mark.asyncio
async def test_search_returns_priced_suggestions(logged_in):
    with patch(
        "app.api.search.market_data_service.search_instruments", new=AsyncMock(return_value=SUGGESTIONS)
    ) as search:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            resp = await c.get("/api/search?q=tcs&asset_class=STOCKS")
    assert resp.status_code == 200
    assert [r["symbol"] for r in resp.json()] == ["TCS.NS", "TCS.BO"]
    assert search.await_args.args[0] == "tcs"


@pytest.mark.asyncio
async def test_search_failure_returns_empty_list(logged_in):
    with patch(
        "app.api.search.market_data_service.search_instruments",
        new=AsyncMock(side_effect=RuntimeError("upstream down")),
    ):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            resp = await c.get("/api/search?q=tcs")
    assert resp.status_code == 200
    assert resp.json() == []


@pytest.mark.asyncio
async def test_search_requires_login():
    auth_gate.logout()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        resp = await c.get("/api/search?q=tcs")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_market_endpoint(logged_in):
    market = MarketData(historical_price=3000.0, current_price=3500.0, start_of_day=3450.0)
    with patch(
        "app.api.search.market_data_service.fetch_market_data", new=AsyncMock(return_value=market)
    ) as fetch:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            resp = await c.get(
                "/api/market?name=tcs&asset_class=STOCKS&purchase_date=2023-01-02&symbol=TCS.NS"
            )
    assert resp.status_code == 200
    assert resp.json()["current_price"] == 3500.0
    assert fetch.await_args.kwargs["fixed_symbol"] == "TCS.NS"


@pytest.mark.asyncio
async def test_market_endpoint_marks_fallback(logged_in):
    with patch(
        "app.api.search.market_data_service.fetch_market_data",
        new=AsyncMock(return_value=fallback_market_data("STOCKS:ghost")),
    ):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            resp = await c.get("/api/market?name=ghost&asset_class=STOCKS")
    assert resp.json()["is_fallback"] is True
    assert len(resp.json()["trend_10y"]) == 120
