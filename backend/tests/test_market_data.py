"""Tests for the market data provider."""

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.models.holding import AssetClass, PricePoint
from app.services.cache import SeriesCache
from app.services.errors import MarketDataError
from app.services.market_data import MarketDataService
from app.services.mf_registry import MfScheme
from app.services.quote_source import Quote
from app.services.series import OUNCE_TO_GRAM, fallback_market_data

DAY = 86400
START = 1704067200  # 2024-01-01 UTC


def daily(count: int, price: float = 100.0, step: float = 1.0) -> list[PricePoint]:
    return [PricePoint(START + i * DAY, price + i * step) for i in range(count)]


def make_service(series_map=None, resolved=None, nav=None, quote=None) -> MarketDataService:
    series_map = series_map or {}
    requested: list[str] = []

    async def get_series(symbol, range_="10y", interval="1d"):
        requested.append(symbol)
        if symbol in series_map:
            return series_map[symbol]
        raise MarketDataError(f"No data for symbol {symbol}")

    quotes = MagicMock()
    quotes.get_series = AsyncMock(side_effect=get_series)
    quotes.get_quote = AsyncMock(side_effect=quote or MarketDataError("no quote"))
    quotes.requested = requested

    registry = MagicMock()
    registry.get_nav_history = AsyncMock(side_effect=nav or MarketDataError("no nav"))

    resolver = MagicMock()
    resolver.resolve_equity_symbol = AsyncMock(return_value=resolved)
    resolver.resolve_top_symbols = AsyncMock(return_value=[])
    resolver.rank_schemes = AsyncMock(return_value=[])

    return MarketDataService(quotes, registry, resolver, SeriesCache())


class TestStocks:
    @pytest.mark.asyncio
    async def test_resolved_symbol_is_tried_first(self):
        service = make_service({"TCS.NS": daily(130)}, resolved="TCS.NS")
        data = await service.fetch_market_data("tcs", AssetClass.STOCKS, date(2024, 1, 11))

        assert service.quotes.requested[0] == "TCS.NS"
        assert data.current_price == 229.0
        assert data.historical_price == 110.0
        assert len(data.trend_10y) == 120
        assert data.is_fallback is False

    @pytest.mark.asyncio
    async def test_raw_name_candidates_in_order(self):
        service = make_service({"INFY.BO": daily(30)})
        data = await service.fetch_market_data("infy", AssetClass.STOCKS, date(2024, 1, 1))

        assert service.quotes.requested == ["INFY", "INFY.NS", "INFY.BO"]
        assert data.current_price == 129.0

    @pytest.mark.asyncio
    async def test_fixed_symbol_skips_resolution(self):
        service = make_service({"HDFCBANK.NS": daily(10)})
        data = await service.fetch_market_data(
            "HDFC Bank", AssetClass.STOCKS, date(2024, 1, 1), fixed_symbol="HDFCBANK.NS"
        )
        service.resolver.resolve_equity_symbol.assert_not_awaited()
        assert data.current_price == 109.0

    @pytest.mark.asyncio
    async def test_resolver_failure_is_skipped(self):
        service = make_service({"WIPRO.NS": daily(5)})
        service.resolver.resolve_equity_symbol.side_effect = RuntimeError("search down")
        data = await service.fetch_market_data("wipro", AssetClass.STOCKS, date(2024, 1, 1))
        assert data.is_fallback is False

    @pytest.mark.asyncio
    async def test_exhausted_candidates_return_deterministic_fallback(self):
        service = make_service()
        data = await service.fetch_market_data("ghost", AssetClass.STOCKS, date(2024, 1, 1))
        assert data == fallback_market_data("STOCKS:ghost")
        assert data.is_fallback is True

    @pytest.mark.asyncio
    async def test_lite_mode_reads_quote_only(self):
        service = make_service(quote=[Quote(symbol="TCS.NS", price=3500.0, previous_close=3450.0)])
        data = await service.fetch_market_data(
            "tcs", AssetClass.STOCKS, date(2024, 1, 1), fixed_symbol="TCS.NS", lite=True
        )

        assert data.current_price == 3500.0
        assert data.historical_price == 3500.0
        assert data.start_of_day == 3450.0
        assert data.start_of_week is None
        assert data.trend_10y == []
        service.quotes.get_series.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetch_stock_data_raises_when_exhausted(self):
        with pytest.raises(MarketDataError):
            await make_service().fetch_stock_data("ghost", date(2024, 1, 1))


class TestMutualFunds:
    @pytest.mark.asyncio
    async def test_nav_history_is_cached_by_scheme(self):
        service = make_service(nav=lambda code: daily(40, price=10.0, step=0.1))
        first = await service.fetch_market_data(
            "Axis Bluechip", AssetClass.MUTUAL_FUNDS, date(2024, 1, 1), fixed_symbol="119551"
        )
        await service.fetch_market_data("Axis Bluechip 119551", AssetClass.MUTUAL_FUNDS, date(2024, 1, 1))

        assert first.current_price == pytest.approx(13.9)
        assert first.historical_price == 10.0
        service.registry.get_nav_history.assert_awaited_once_with("119551")

    @pytest.mark.asyncio
    async def test_missing_scheme_code_falls_back(self):
        service = make_service()
        data = await service.fetch_market_data("Some Fund", AssetClass.MUTUAL_FUNDS, date(2024, 1, 1))
        assert data == fallback_market_data("MUTUAL_FUNDS:Some Fund")
        service.registry.get_nav_history.assert_not_awaited()


class TestGold:
    @pytest.mark.asyncio
    async def test_composes_price_per_gram(self):
        futures = [PricePoint(START, 2000.0), PricePoint(START + DAY, 2000.0)]
        fx = [PricePoint(START, 83.0), PricePoint(START + DAY, 83.0)]
        service = make_service({"GC=F": futures, "USDINR=X": fx})
        data = await service.fetch_market_data("24K Gold 1g India", AssetClass.GOLD, date(2024, 1, 1))

        assert data.current_price == pytest.approx(2000 * 83 / OUNCE_TO_GRAM, abs=0.01)
        assert data.is_fallback is False

    @pytest.mark.asyncio
    async def test_tries_alternate_pair(self):
        series = [PricePoint(START, 2100.0)]
        service = make_service({"XAUUSD=X": series, "USDINR=X": [PricePoint(START, 80.0)]})
        data = await service.fetch_market_data("gold", AssetClass.GOLD, date(2024, 1, 1))

        assert data.current_price == pytest.approx(2100 * 80 / OUNCE_TO_GRAM, abs=0.01)

    @pytest.mark.asyncio
    async def test_all_pairs_failing_falls_back(self):
        data = await make_service().fetch_market_data("gold", AssetClass.GOLD, date(2024, 1, 1))
        assert data == fallback_market_data("GOLD:gold")


@pytest.mark.asyncio
async def test_fixed_deposit_never_fetches():
    service = make_service()
    data = await service.fetch_market_data("My FD", AssetClass.FIXED_DEPOSIT, date(2024, 1, 1))
    assert data == fallback_market_data("fd:My FD")
    service.quotes.get_series.assert_not_awaited()


class TestSearchInstruments:
    @pytest.mark.asyncio
    async def test_stock_suggestions_drop_unpriced_symbols(self):
        service = make_service({"TCS.NS": daily(20)})
        service.resolver.resolve_top_symbols.return_value = ["TCS.NS", "TCS.BO"]
        suggestions = await service.search_instruments("t.c.s", AssetClass.STOCKS)

        service.resolver.resolve_top_symbols.assert_awaited_with("t c s")
        assert len(suggestions) == 1
        assert suggestions[0].symbol == "TCS.NS"
        assert suggestions[0].current_price == 119.0
        assert suggestions[0].kind == "STOCK"

    @pytest.mark.asyncio
    async def test_mutual_fund_suggestions_require_positive_nav(self):
        navs = {"119551": daily(3, price=45.0), "100001": [PricePoint(START, 0.0)]}
        service = make_service(nav=lambda code: navs[code])
        service.resolver.rank_schemes.return_value = [
            MfScheme(code="119551", name="Axis Bluechip"),
            MfScheme(code="100001", name="Dead Fund"),
            MfScheme(code="999999", name="Missing Fund"),
        ]
        suggestions = await service.search_instruments("axis", AssetClass.MUTUAL_FUNDS)

        assert [s.symbol for s in suggestions] == ["119551"]
        assert suggestions[0].label == "Axis Bluechip"
        assert suggestions[0].current_price == 47.0

    @pytest.mark.asyncio
    async def test_short_query_and_other_classes(self):
        service = make_service()
        assert await service.search_instruments("a", AssetClass.STOCKS) == []
        assert await service.search_instruments("gold", AssetClass.GOLD) == []
