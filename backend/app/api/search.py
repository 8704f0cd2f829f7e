"""Instrument search and market data lookup endpoints."""

import logging
from datetime import date

from fastapi import APIRouter, Depends

from app.api.auth import require_auth
from app.models.holding import AssetClass, InstrumentSuggestion, MarketData
from app.services.market_data import market_data_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["search"], dependencies=[Depends(require_auth)])


@router.get("/search", response_model=list[InstrumentSuggestion])
async def search_instruments(q: str = "", asset_class: AssetClass = AssetClass.STOCKS):
    """Priced suggestions for stocks (top 3) or mutual funds (top 6)."""
    try:
        return await market_data_service.search_instruments(q, asset_class)
    except Exception as e:
        logger.error(f"Instrument search failed for {q!r}: {e}")
        return []


@router.get("/market", response_model=MarketData)
async def get_market_data(
    name: str,
    asset_class: AssetClass,
    purchase_date: date | None = None,
    symbol: str | None = None,
):
    return await market_data_service.fetch_market_data(
        name, asset_class, purchase_date or date.today(), fixed_symbol=symbol
    )
