"""Price series helpers shared by the market data provider and SIP replay.

Series are lists of ``PricePoint(ts, price)`` sorted ascending by ``ts``
(epoch seconds, UTC) with no duplicate timestamps.

Two lookups exist on purpose:
    find_closest_price      nearest point in either direction (summaries, FX alignment)
    find_price_on_or_before last point not after the target (SIP installments)
"""

import calendar
import math
from bisect import bisect_left, bisect_right
from datetime import date, datetime, timezone
from typing import Iterable

import pandas as pd

from app.models.holding import MarketData, PricePoint, TrendPoint

OUNCE_TO_GRAM = 31.1034768

# Trading-day offsets from the end of a daily series
DAY_OFFSET = 1
WEEK_OFFSET = 5
MONTH_OFFSET = 21

TREND_WINDOWS = {"trend_6m": 6, "trend_1y": 12, "trend_5y": 60, "trend_10y": 120}


def round2(value: float) -> float:
    return round(float(value), 2)


def normalize_series(points: Iterable[tuple[float, float | None]]) -> list[PricePoint]:
    """Drop missing/non-finite prices, dedupe timestamps (last wins), sort."""
    by_ts: dict[int, float] = {}
    for ts, price in points:
        if ts is None or price is None:
            continue
        price = float(price)
        if not math.isfinite(price):
            continue
        by_ts[int(ts)] = price
    return [PricePoint(ts, by_ts[ts]) for ts in sorted(by_ts)]


def to_timestamp(value: date | datetime | str | None) -> int:
    """Epoch seconds for a date (UTC midnight); unparseable input means now."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, date):
        return int(datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp())
    if isinstance(value, str):
        try:
            return to_timestamp(date.fromisoformat(value[:10]))
        except ValueError:
            pass
    return int(datetime.now(timezone.utc).timestamp())


def find_closest_price(series: list[PricePoint], target_ts: int) -> float:
    if not series:
        return 0.0
    stamps = [p.ts for p in series]
    idx = bisect_left(stamps, target_ts)
    if idx == 0:
        return series[0].price
    if idx == len(series):
        return series[-1].price
    before, after = series[idx - 1], series[idx]
    # Ties resolve to the earlier point
    if target_ts - before.ts <= after.ts - target_ts:
        return before.price
    return after.price


def find_price_on_or_before(series: list[PricePoint], target_ts: int) -> float:
    if not series:
        return 0.0
    idx = bisect_right([p.ts for p in series], target_ts) - 1
    if idx < 0:
        return series[0].price
    return series[idx].price


def price_at_offset_from_end(series: list[PricePoint], points_back: int) -> float:
    if not series:
        return 0.0
    idx = max(0, len(series) - 1 - points_back)
    return series[idx].price


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    """(year, month) moved by ``delta`` months; month is 1-based."""
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def month_label(year: int, month: int, with_year: bool) -> str:
    label = calendar.month_abbr[month]
    if with_year:
        return f"{label} {year % 100:02d}"
    return label


def build_monthly_trend(series: list[PricePoint], months: int) -> list[TrendPoint]:
    """Sample the series at the first of each of the trailing ``months`` months."""
    if not series:
        return []
    end = datetime.fromtimestamp(series[-1].ts, tz=timezone.utc)
    out: list[TrendPoint] = []
    for back in range(months - 1, -1, -1):
        year, month = shift_month(end.year, end.month, -back)
        boundary = int(datetime(year, month, 1, tzinfo=timezone.utc).timestamp())
        out.append(
            TrendPoint(
                name=month_label(year, month, with_year=months > 12),
                price=round2(find_closest_price(series, boundary)),
                ts=boundary,
            )
        )
    return out


def summarize_series(series: list[PricePoint], purchase_date: date | str | None) -> MarketData:
    if not series:
        raise ValueError("Cannot summarize an empty series")
    purchase_ts = to_timestamp(purchase_date)
    return MarketData(
        historical_price=round2(find_closest_price(series, purchase_ts)),
        current_price=round2(series[-1].price),
        start_of_day=round2(price_at_offset_from_end(series, DAY_OFFSET)),
        start_of_week=round2(price_at_offset_from_end(series, WEEK_OFFSET)),
        start_of_month=round2(price_at_offset_from_end(series, MONTH_OFFSET)),
        **{field: build_monthly_trend(series, months) for field, months in TREND_WINDOWS.items()},
    )


def compose_gold_series(futures: list[PricePoint], fx: list[PricePoint]) -> list[PricePoint]:
    """Local-currency price per gram from USD/oz futures and a USD FX series.

    Each futures point takes the FX rate of the nearest FX timestamp.
    """
    if not futures or not fx:
        return []
    left = pd.DataFrame(futures, columns=["ts", "price"]).astype({"ts": "int64"})
    right = pd.DataFrame(fx, columns=["ts", "fx"]).astype({"ts": "int64"})
    merged = pd.merge_asof(
        left.sort_values("ts"), right.sort_values("ts"), on="ts", direction="nearest"
    ).dropna()
    merged["per_gram"] = merged["price"] * merged["fx"] / OUNCE_TO_GRAM
    return [PricePoint(int(ts), float(p)) for ts, p in zip(merged["ts"], merged["per_gram"])]


def seed_hash(seed: str, multiplier: int = 31) -> int:
    """32-bit rolling hash: h = (h * multiplier + ord(ch)) mod 2**32."""
    h = 0
    for ch in seed:
        h = (h * multiplier + ord(ch)) & 0xFFFFFFFF
    return h


def _fallback_trend(base: float, start_year: int, count: int, offset: float, step: float) -> list[TrendPoint]:
    points = []
    for i in range(count):
        year, month = start_year + i // 12, i % 12 + 1
        points.append(
            TrendPoint(
                name=month_label(year, month, with_year=count > 12),
                price=round2(base * (offset + i * step)),
                ts=int(datetime(year, month, 1, tzinfo=timezone.utc).timestamp()),
            )
        )
    return points


def fallback_market_data(seed: str) -> MarketData:
    """Deterministic synthetic data; the same seed always yields the same values.

    base = 100 + h % 5000, current = base * (1 + (h % 15) / 100)
    """
    h = seed_hash(seed)
    base = 100 + (h % 5000)
    current = base * (1 + (h % 15) / 100)
    return MarketData(
        historical_price=round2(base),
        current_price=round2(current),
        start_of_day=round2(current * 0.997),
        start_of_week=round2(current * 0.985),
        start_of_month=round2(current * 0.96),
        trend_6m=_fallback_trend(base, 2025, 6, 0.9, 0.03),
        trend_1y=_fallback_trend(base, 2025, 12, 0.82, 0.02),
        trend_5y=_fallback_trend(base, 2021, 60, 0.6, 0.01),
        trend_10y=_fallback_trend(base, 2016, 120, 0.45, 0.006),
        is_fallback=True,
    )
