from datetime import date, datetime, timezone

from app.config import DEFAULT_FD_RATE


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def fd_value(principal: float, annual_rate_pct: float | None, start: date, as_of: date | datetime | None = None) -> float:
    """Quarterly compounding: principal * (1 + rate/400) ** (4 * years).

    ``years`` counts whole elapsed days / 365; dates before ``start`` value
    the deposit at its principal.
    """
    rate = DEFAULT_FD_RATE if annual_rate_pct is None else annual_rate_pct
    as_of = _as_date(as_of) if as_of is not None else datetime.now(timezone.utc).date()
    days = max(0, (as_of - _as_date(start)).days)
    years = days / 365
    return principal * (1 + rate / 400) ** (4 * years)
