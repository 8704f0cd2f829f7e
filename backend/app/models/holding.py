"""Ledger and market data models.

Plain pydantic models: holdings are persisted as one JSON blob, so they never
map to ORM rows.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel, Field

from app.config import DEFAULT_CURRENCY, DEFAULT_PROFILE_NAME


class AssetClass(str, Enum):
    STOCKS = "STOCKS"
    MUTUAL_FUNDS = "MUTUAL_FUNDS"
    GOLD = "GOLD"
    FIXED_DEPOSIT = "FIXED_DEPOSIT"


ASSET_LABELS = {
    AssetClass.STOCKS: "Stocks",
    AssetClass.MUTUAL_FUNDS: "Mutual Funds",
    AssetClass.GOLD: "Gold",
    AssetClass.FIXED_DEPOSIT: "Fixed Deposits",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PricePoint(NamedTuple):
    ts: int  # epoch seconds, UTC
    price: float


class TrendPoint(BaseModel):
    name: str
    price: float
    ts: int = 0


class MarketData(BaseModel):
    historical_price: float
    current_price: float
    start_of_day: float | None = None
    start_of_week: float | None = None
    start_of_month: float | None = None
    trend_6m: list[TrendPoint] = Field(default_factory=list)
    trend_1y: list[TrendPoint] = Field(default_factory=list)
    trend_5y: list[TrendPoint] = Field(default_factory=list)
    trend_10y: list[TrendPoint] = Field(default_factory=list)
    is_fallback: bool = False


class SipSnapshot(BaseModel):
    invested_amount: float
    quantity: float
    current_price: float
    current_value: float
    avg_purchase_price: float
    start_of_day: float | None = None
    start_of_week: float | None = None
    start_of_month: float | None = None
    installments: int = 0


class Holding(BaseModel):
    id: str
    name: str
    asset_class: AssetClass
    tracking_symbol: str | None = None
    display_symbol: str | None = None
    quantity: float = Field(ge=0)
    purchase_price: float
    purchase_date: date
    invested_amount: float
    current_value: float
    last_updated: datetime = Field(default_factory=utcnow)
    price_start_of_day: float | None = None
    price_start_of_week: float | None = None
    price_start_of_month: float | None = None
    interest_rate: float | None = None
    tenure_years: float | None = None
    is_sip: bool = False
    sip_amount: float | None = None
    sip_day: int | None = Field(default=None, ge=1, le=28)
    sip_frequency: str | None = None


class MergedHolding(Holding):
    member_ids: list[str] = Field(default_factory=list)


class UserProfile(BaseModel):
    name: str = DEFAULT_PROFILE_NAME
    currency: str = DEFAULT_CURRENCY


class PortfolioState(BaseModel):
    holdings: list[Holding] = Field(default_factory=list)
    profile: UserProfile = Field(default_factory=UserProfile)


class InstrumentSuggestion(BaseModel):
    label: str
    symbol: str
    current_price: float
    kind: str  # "STOCK" | "MUTUAL_FUND"


class HoldingDraft(BaseModel):
    """User input for the add flow, before market resolution."""

    asset_class: AssetClass
    name: str = ""
    purchase_date: date
    quantity: float | None = Field(default=None, gt=0)
    symbol: str | None = None  # picked suggestion
    label: str | None = None
    price_paid: float | None = Field(default=None, gt=0)  # gold only
    amount: float | None = Field(default=None, gt=0)  # fixed deposits only
    interest_rate: float | None = Field(default=None, ge=0)
    tenure_years: float | None = None
    is_sip: bool = False
    sip_amount: float | None = None
    sip_day: int = 5
