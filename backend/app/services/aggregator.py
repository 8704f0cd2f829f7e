"""Portfolio aggregation: totals, period returns, allocation and value trends.

Trends run on a 120-point monthly timeline anchored to the 28th (12:00 UTC)
of each trailing month. Each holding contributes either the FD formula at
that month or its 10Y unit-price trend rescaled so the last point matches
the live current value. Months before purchase contribute nothing.
"""

import asyncio
import itertools
import logging
from datetime import date, datetime, timezone
from typing import Callable

from pydantic import BaseModel, Field

from app.config import GOLD_SEARCH_NAME
from app.models.holding import ASSET_LABELS, AssetClass, Holding, MarketData, TrendPoint
from app.services.errors import TrendCancelled
from app.services.fixed_deposit import fd_value
from app.services.market_data import MarketDataService
from app.services.series import month_label, round2, shift_month

logger = logging.getLogger(__name__)

TIMELINE_MONTHS = 120
TREND_EPSILON = 1e-4
TREND_MODES = ("current", "invested", "profit")


class PortfolioSummary(BaseModel):
    total_invested: float = 0.0
    total_current_value: float = 0.0
    overall_gain: float = 0.0
    overall_gain_pct: float = 0.0
    today_return: float = 0.0
    week_return: float = 0.0
    month_return: float = 0.0


class AllocationSlice(BaseModel):
    asset_class: AssetClass
    label: str
    value: float
    share: float  # percent of total current value


class PortfolioTrend(BaseModel):
    current_6m: list[TrendPoint] = Field(default_factory=list)
    invested_6m: list[TrendPoint] = Field(default_factory=list)
    profit_6m: list[TrendPoint] = Field(default_factory=list)
    current_1y: list[TrendPoint] = Field(default_factory=list)
    invested_1y: list[TrendPoint] = Field(default_factory=list)
    profit_1y: list[TrendPoint] = Field(default_factory=list)
    current_5y: list[TrendPoint] = Field(default_factory=list)
    invested_5y: list[TrendPoint] = Field(default_factory=list)
    profit_5y: list[TrendPoint] = Field(default_factory=list)
    current_10y: list[TrendPoint] = Field(default_factory=list)
    invested_10y: list[TrendPoint] = Field(default_factory=list)
    profit_10y: list[TrendPoint] = Field(default_factory=list)


class CancellationToken:
    """Checked before a trend result is committed.

    ``superseded`` is an optional predicate polled alongside the explicit
    ``cancel()`` flag.
    """

    def __init__(self, superseded: Callable[[], bool] | None = None):
        self._cancelled = False
        self._superseded = superseded

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled or bool(self._superseded and self._superseded())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise TrendCancelled("Trend computation was superseded")


class TrendGeneration:
    """Generation counter per scope; starting a build supersedes older ones."""

    def __init__(self):
        self._counter = itertools.count(1)
        self._current: dict[str, int] = {}

    def begin(self, scope: str = "ALL") -> CancellationToken:
        generation = next(self._counter)
        self._current[scope] = generation
        return CancellationToken(lambda: self._current.get(scope) != generation)


def summarize(holdings: list[Holding]) -> PortfolioSummary:
    total_invested = 0.0
    total_current = 0.0
    today = week = month = 0.0
    for h in holdings:
        total_invested += h.invested_amount
        total_current += h.current_value
        if h.asset_class == AssetClass.FIXED_DEPOSIT:
            daily = (h.current_value - h.invested_amount) / 365
            today += daily
            week += daily * 7
            month += daily * 30
            continue
        if h.price_start_of_day:
            today += h.current_value - h.price_start_of_day * h.quantity
        if h.price_start_of_week:
            week += h.current_value - h.price_start_of_week * h.quantity
        if h.price_start_of_month:
            month += h.current_value - h.price_start_of_month * h.quantity

    gain = total_current - total_invested
    return PortfolioSummary(
        total_invested=total_invested,
        total_current_value=total_current,
        overall_gain=gain,
        overall_gain_pct=(gain / total_invested * 100) if total_invested > 0 else 0.0,
        today_return=today,
        week_return=week,
        month_return=month,
    )


def allocation(holdings: list[Holding]) -> list[AllocationSlice]:
    by_class = {cls: 0.0 for cls in AssetClass}
    for h in holdings:
        by_class[h.asset_class] += max(0.0, h.current_value)
    total = sum(by_class.values())
    return [
        AllocationSlice(
            asset_class=cls,
            label=ASSET_LABELS[cls],
            value=round2(value),
            share=round2(value / total * 100) if total > 0 else 0.0,
        )
        for cls, value in by_class.items()
    ]


def build_month_timeline(months: int = TIMELINE_MONTHS, as_of: date | None = None) -> list[tuple[str, datetime]]:
    as_of = as_of or datetime.now(timezone.utc).date()
    timeline = []
    for back in range(months - 1, -1, -1):
        year, month = shift_month(as_of.year, as_of.month, -back)
        timeline.append(
            (month_label(year, month, with_year=months > 12), datetime(year, month, 28, 12, tzinfo=timezone.utc))
        )
    return timeline


def _purchase_moment(holding: Holding) -> datetime:
    d = holding.purchase_date
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def trim_leading_zeros(points: list[TrendPoint]) -> list[TrendPoint]:
    for idx, point in enumerate(points):
        if abs(point.price) > TREND_EPSILON:
            return points[idx:]
    return points


def fd_trend_parts(holding: Holding, timeline: list[tuple[str, datetime]]) -> list[tuple[float, float]]:
    """(invested, current) per timeline step for a fixed deposit."""
    purchased_at = _purchase_moment(holding)
    parts = []
    for _, moment in timeline:
        if moment < purchased_at:
            parts.append((0.0, 0.0))
            continue
        current = fd_value(holding.invested_amount, holding.interest_rate, holding.purchase_date, moment)
        parts.append((holding.invested_amount, current))
    return parts


def market_trend_parts(
    holding: Holding, market: MarketData, timeline: list[tuple[str, datetime]]
) -> list[tuple[float, float]]:
    """(invested, current) per step from the unit-price trend, rescaled to the live value."""
    series = market.trend_10y or market.trend_5y or market.trend_1y
    last_price = series[-1].price if series else 0.0
    last_value = last_price * holding.quantity
    scale = holding.current_value / last_value if last_value > 0 else 1.0
    purchased_at = _purchase_moment(holding)

    parts = []
    for idx, (_, moment) in enumerate(timeline):
        if moment < purchased_at:
            parts.append((0.0, 0.0))
            continue
        unit = series[idx].price if idx < len(series) else last_price
        parts.append((holding.invested_amount, unit * holding.quantity * scale))
    return parts


def trend_lookup_name(holding: Holding) -> str:
    if holding.asset_class == AssetClass.GOLD:
        return GOLD_SEARCH_NAME
    return holding.tracking_symbol or holding.name


async def _holding_parts(
    holding: Holding, market_data: MarketDataService, timeline: list[tuple[str, datetime]]
) -> list[tuple[float, float]]:
    if holding.asset_class == AssetClass.FIXED_DEPOSIT:
        return fd_trend_parts(holding, timeline)
    market = await market_data.fetch_market_data(
        trend_lookup_name(holding),
        holding.asset_class,
        holding.purchase_date,
        fixed_symbol=holding.tracking_symbol,
    )
    return market_trend_parts(holding, market, timeline)


async def build_trend(
    holdings: list[Holding],
    market_data: MarketDataService,
    token: CancellationToken | None = None,
    as_of: date | None = None,
) -> PortfolioTrend:
    """Current / invested / profit series for 6M, 1Y, 5Y and 10Y windows.

    Raises TrendCancelled when ``token`` was cancelled or superseded while
    the per-holding fetches were running.
    """
    if not holdings:
        return PortfolioTrend()

    timeline = build_month_timeline(TIMELINE_MONTHS, as_of)
    per_holding = await asyncio.gather(*(_holding_parts(h, market_data, timeline) for h in holdings))
    if token is not None:
        token.raise_if_cancelled()

    series: dict[str, list[TrendPoint]] = {mode: [] for mode in TREND_MODES}
    for idx, (label, moment) in enumerate(timeline):
        invested = sum(parts[idx][0] for parts in per_holding)
        current = sum(parts[idx][1] for parts in per_holding)
        ts = int(moment.timestamp())
        series["current"].append(TrendPoint(name=label, price=round2(current), ts=ts))
        series["invested"].append(TrendPoint(name=label, price=round2(invested), ts=ts))
        series["profit"].append(TrendPoint(name=label, price=round2(current - invested), ts=ts))

    fields: dict[str, list[TrendPoint]] = {}
    for mode, points in series.items():
        year = [p.model_copy(update={"name": p.name.split(" ")[0]}) for p in points[-12:]]
        fields[f"{mode}_10y"] = points
        fields[f"{mode}_5y"] = points[-60:]
        fields[f"{mode}_1y"] = year
        fields[f"{mode}_6m"] = year[-6:]
    return PortfolioTrend(**fields)


def build_holding_trend(
    holding: Holding,
    market: MarketData,
    window: str = "10y",
    mode: str = "current",
    as_of: date | None = None,
) -> list[TrendPoint]:
    """Single-position chart series in ``mode`` (current, invested or profit)."""
    trend = {
        "6m": market.trend_6m,
        "1y": market.trend_1y,
        "5y": market.trend_5y,
        "10y": market.trend_10y,
    }.get(window.lower(), market.trend_10y)
    if not trend:
        return []

    timeline = build_month_timeline(len(trend), as_of)
    if holding.asset_class == AssetClass.FIXED_DEPOSIT:
        parts = fd_trend_parts(holding, timeline)
    else:
        purchased_at = _purchase_moment(holding)
        parts = [
            (holding.invested_amount, point.price * holding.quantity) if moment >= purchased_at else (0.0, 0.0)
            for point, (_, moment) in zip(trend, timeline)
        ]

    points = []
    for point, (invested, current), (_, moment) in zip(trend, parts, timeline):
        value = {"invested": invested, "profit": current - invested}.get(mode, current)
        if invested == 0 and current == 0:
            value = 0.0
        points.append(TrendPoint(name=point.name, price=round2(value), ts=int(moment.timestamp())))
    return trim_leading_zeros(points)
