"""SIP reconstruction: replay monthly installments against NAV history."""

import calendar
import logging
from datetime import date, datetime, timezone

from app.models.holding import PricePoint, SipSnapshot
from app.services.errors import SipError
from app.services.instrument_resolver import extract_scheme_code
from app.services.market_data import MarketDataService, market_data_service
from app.services.series import (
    DAY_OFFSET,
    MONTH_OFFSET,
    WEEK_OFFSET,
    find_price_on_or_before,
    price_at_offset_from_end,
    round2,
    shift_month,
    to_timestamp,
)

logger = logging.getLogger(__name__)


def clamp_sip_day(day: int | None) -> int:
    return max(1, min(28, int(day or 1)))


def build_installment_dates(start: date, day: int | None, today: date | None = None) -> list[date]:
    """One date per calendar month from ``start``'s month through today's month.

    Dates before ``start`` or after ``today`` are skipped.
    """
    today = today or datetime.now(timezone.utc).date()
    safe_day = clamp_sip_day(day)
    out: list[date] = []
    year, month = start.year, start.month
    while (year, month) <= (today.year, today.month):
        dim = calendar.monthrange(year, month)[1]
        installment = date(year, month, min(safe_day, dim))
        if start <= installment <= today:
            out.append(installment)
        year, month = shift_month(year, month, 1)
    return out


def replay_installments(series: list[PricePoint], dates: list[date], amount: float) -> tuple[float, float, int]:
    """Buy ``amount`` at the on-or-before NAV of each date -> (units, invested, executed)."""
    units = 0.0
    invested = 0.0
    executed = 0
    for installment in dates:
        nav = find_price_on_or_before(series, to_timestamp(installment))
        if not nav or nav <= 0:
            continue
        units += amount / nav
        invested += amount
        executed += 1
    return units, invested, executed


def snapshot_from_series(
    series: list[PricePoint], start: date, amount: float, day: int | None, today: date | None = None
) -> SipSnapshot:
    if not series:
        raise SipError("No NAV data to replay the SIP against")
    dates = build_installment_dates(start, day, today)
    units, invested, executed = replay_installments(series, dates, amount)

    current_price = round2(series[-1].price)
    avg = round2(invested / units) if units > 0 else current_price
    return SipSnapshot(
        invested_amount=round2(invested),
        quantity=round2(units),
        current_price=current_price,
        current_value=round2(units * current_price),
        avg_purchase_price=avg,
        start_of_day=round2(price_at_offset_from_end(series, DAY_OFFSET)),
        start_of_week=round2(price_at_offset_from_end(series, WEEK_OFFSET)),
        start_of_month=round2(price_at_offset_from_end(series, MONTH_OFFSET)),
        installments=executed,
    )


class SipReconstructor:
    def __init__(self, market: MarketDataService):
        self.market = market

    async def simulate_sip(
        self,
        scheme_code: str,
        start_date: date,
        monthly_amount: float,
        day_of_month: int | None,
        today: date | None = None,
    ) -> SipSnapshot:
        code = extract_scheme_code(scheme_code)
        if not code:
            raise SipError("SIP tracking expects a valid scheme code")
        if monthly_amount is None or monthly_amount <= 0:
            raise SipError("SIP amount must be positive")

        try:
            series = await self.market.get_nav_series(code)
        except Exception as e:
            raise SipError(f"No NAV data for scheme {code}: {e}") from e

        snapshot = snapshot_from_series(series, start_date, monthly_amount, day_of_month, today)
        logger.debug(f"SIP {code}: {snapshot.installments} installments, units={snapshot.quantity}")
        return snapshot


# Global instance
sip_reconstructor = SipReconstructor(market_data_service)
