"""Market data provider: one ``MarketData`` shape for every asset class.

Stocks     resolved ticker, then raw-name candidates; first success wins.
           ``lite`` reads only the latest quote and previous close.
Mutual     full NAV history for a numeric scheme code.
Gold       futures (USD/oz) x USD FX / grams per ounce, first working pair.
FD         never fetched; deterministic placeholder seeded by name.

``fetch_market_data`` never raises: when every source fails it returns the
deterministic fallback for ``"<ASSET_CLASS>:<name>"``.
"""

import asyncio
import logging
import re
from datetime import date

from app.config import GOLD_SYMBOL_PAIRS
from app.models.holding import AssetClass, InstrumentSuggestion, MarketData, PricePoint
from app.services.cache import SeriesCache, series_cache
from app.services.errors import MarketDataError
from app.services.instrument_resolver import (
    InstrumentResolver,
    extract_scheme_code,
    instrument_resolver,
    stock_candidates,
)
from app.services.mf_registry import MutualFundRegistry, mf_registry
from app.services.quote_source import QuoteSource, quote_source
from app.services.series import (
    compose_gold_series,
    fallback_market_data,
    round2,
    summarize_series,
)

logger = logging.getLogger(__name__)

FULL_RANGE = "10y"
SEARCH_PRICE_RANGE = "1mo"
NAV_RANGE = "max"


class MarketDataService:
    def __init__(
        self,
        quotes: QuoteSource,
        registry: MutualFundRegistry,
        resolver: InstrumentResolver,
        cache: SeriesCache,
    ):
        self.quotes = quotes
        self.registry = registry
        self.resolver = resolver
        self.cache = cache

    async def get_series(self, symbol: str, range_: str = FULL_RANGE, interval: str = "1d") -> list[PricePoint]:
        return await self.cache.get_series(symbol, range_, interval, self.quotes.get_series)

    async def get_nav_series(self, scheme_code: str) -> list[PricePoint]:
        async def fetch(_symbol: str, _range: str, _interval: str) -> list[PricePoint]:
            return await self.registry.get_nav_history(scheme_code)

        return await self.cache.get_series(f"MF:{scheme_code}", NAV_RANGE, "1d", fetch)

    async def latest_price(self, symbol: str) -> float:
        series = await self.get_series(symbol, SEARCH_PRICE_RANGE, "1d")
        return round2(series[-1].price)

    async def _lite_snapshot(self, symbol: str) -> MarketData:
        quote = await self.quotes.get_quote(symbol)
        current = round2(quote.price)
        return MarketData(
            historical_price=current,
            current_price=current,
            start_of_day=round2(quote.previous_close) if quote.previous_close else None,
        )

    async def fetch_stock_data(
        self,
        name: str,
        purchase_date: date | str | None,
        fixed_symbol: str | None = None,
        lite: bool = False,
    ) -> MarketData:
        if fixed_symbol:
            candidates = [fixed_symbol]
        else:
            candidates = stock_candidates(name)
            try:
                resolved = await self.resolver.resolve_equity_symbol(name)
                if resolved:
                    candidates = [resolved] + [c for c in candidates if c != resolved]
            except Exception as e:
                logger.debug(f"Ticker resolution failed for {name!r}: {e}")

        for symbol in candidates:
            try:
                if lite:
                    return await self._lite_snapshot(symbol)
                series = await self.get_series(symbol, FULL_RANGE, "1d")
                return summarize_series(series, purchase_date)
            except Exception as e:
                logger.debug(f"Stock candidate {symbol} failed: {e}")

        raise MarketDataError(f"Unable to fetch stock data for {name}")

    async def fetch_mutual_fund_data(
        self, name: str, purchase_date: date | str | None, fixed_symbol: str | None = None
    ) -> MarketData:
        code = extract_scheme_code(fixed_symbol or name)
        if not code:
            raise MarketDataError("Mutual fund tracking expects a numeric scheme code")
        series = await self.get_nav_series(code)
        return summarize_series(series, purchase_date)

    async def fetch_gold_data(self, purchase_date: date | str | None) -> MarketData:
        for gold_symbol, fx_symbol in GOLD_SYMBOL_PAIRS:
            try:
                futures, fx = await asyncio.gather(
                    self.get_series(gold_symbol), self.get_series(fx_symbol)
                )
                combined = compose_gold_series(futures, fx)
                if combined:
                    return summarize_series(combined, purchase_date)
            except Exception as e:
                logger.debug(f"Gold pair {gold_symbol}/{fx_symbol} failed: {e}")

        raise MarketDataError("Unable to fetch gold data")

    async def fetch_market_data(
        self,
        name: str,
        asset_class: AssetClass,
        purchase_date: date | str | None,
        fixed_symbol: str | None = None,
        lite: bool = False,
    ) -> MarketData:
        try:
            if asset_class == AssetClass.GOLD:
                return await self.fetch_gold_data(purchase_date)
            if asset_class == AssetClass.MUTUAL_FUNDS:
                return await self.fetch_mutual_fund_data(name, purchase_date, fixed_symbol)
            if asset_class == AssetClass.FIXED_DEPOSIT:
                return fallback_market_data(f"fd:{name}")
            return await self.fetch_stock_data(name, purchase_date, fixed_symbol, lite)
        except Exception as e:
            logger.error(f"Market data fallback for {asset_class.value}:{name}: {e}")
            return fallback_market_data(f"{asset_class.value}:{name}")

    async def search_instruments(self, query: str, asset_class: AssetClass) -> list[InstrumentSuggestion]:
        """Priced suggestions for the add flow; failed lookups are dropped."""
        q = query.strip()
        if len(q) < 2:
            return []

        if asset_class == AssetClass.STOCKS:
            cleaned = re.sub(r"\s+", " ", re.sub(r"[-_/.,]+", " ", q)).strip()
            symbols = await self.resolver.resolve_top_symbols(cleaned or q)
            if not symbols and cleaned and cleaned != q:
                symbols = await self.resolver.resolve_top_symbols(q)
            prices = await asyncio.gather(
                *(self.latest_price(s) for s in symbols), return_exceptions=True
            )
            return [
                InstrumentSuggestion(label=s, symbol=s, current_price=p, kind="STOCK")
                for s, p in zip(symbols, prices)
                if not isinstance(p, BaseException)
            ]

        if asset_class == AssetClass.MUTUAL_FUNDS:
            schemes = await self.resolver.rank_schemes(q, limit=6)
            navs = await asyncio.gather(
                *(self.get_nav_series(s.code) for s in schemes), return_exceptions=True
            )
            suggestions = []
            for scheme, series in zip(schemes, navs):
                if isinstance(series, BaseException) or not series:
                    continue
                price = round2(series[-1].price)
                if price > 0:
                    suggestions.append(
                        InstrumentSuggestion(
                            label=scheme.name, symbol=scheme.code, current_price=price, kind="MUTUAL_FUND"
                        )
                    )
            return suggestions

        return []


# Global instance; caches and clients are shared by reference
market_data_service = MarketDataService(quote_source, mf_registry, instrument_resolver, series_cache)
