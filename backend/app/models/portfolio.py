"""Persisted portfolio state and durable series cache tables."""

from datetime import datetime
from sqlalchemy import String, Float, Text, Integer
from sqlalchemy.orm import Mapped, mapped_column
from app.models.database import Base


class PortfolioStateRecord(Base):
    """Whole ledger + profile as JSON, one row per (single-user) portfolio."""

    __tablename__ = "portfolio_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    holdings_json: Mapped[str] = mapped_column(Text, default="[]")
    profile_json: Mapped[str] = mapped_column(Text, default="{}")
    updated_at: Mapped[str] = mapped_column(
        String(40), default=lambda: datetime.now().isoformat()
    )


class PriceSeriesCacheEntry(Base):
    __tablename__ = "price_series_cache"

    cache_key: Mapped[str] = mapped_column(String(120), primary_key=True)  # "SYMBOL|range|interval"
    points_json: Mapped[str] = mapped_column(Text)  # [[ts, price], ...]
    fetched_at: Mapped[float] = mapped_column(Float, index=True)  # epoch seconds
