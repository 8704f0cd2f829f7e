"""Portfolio service: state store, add/delete flow and market refresh."""

import asyncio
import json
import logging
import uuid
from datetime import date, datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import GOLD_SEARCH_NAME, PORTFOLIO_STATE_ID, SANITY_RATIO_MAX, SANITY_RATIO_MIN
from app.models.holding import (
    AssetClass,
    Holding,
    HoldingDraft,
    PortfolioState,
    TrendPoint,
    UserProfile,
    utcnow,
)
from app.models.portfolio import PortfolioStateRecord
from app.services.aggregator import (
    PortfolioTrend,
    TrendGeneration,
    build_holding_trend,
    build_trend,
    trend_lookup_name,
)
from app.services.cache import CacheService
from app.services.errors import MarketDataError, ResolutionError, SipError, StateStoreError
from app.services.fixed_deposit import fd_value
from app.services.holdings import ledger_fingerprint, merge_holdings
from app.services.instrument_resolver import extract_scheme_code
from app.services.market_data import MarketDataService, market_data_service
from app.services.sip import SipReconstructor, clamp_sip_day, sip_reconstructor

logger = logging.getLogger(__name__)

SANITY_CHECKED = (AssetClass.STOCKS, AssetClass.MUTUAL_FUNDS)
TREND_CACHE_TTL = 15 * 60


def period_starts(now: datetime | None = None) -> tuple[date, date, date]:
    """Start of today, of this week (Monday) and of this month."""
    today = (now or utcnow()).date()
    return today, today - timedelta(days=today.weekday()), today.replace(day=1)


def period_baseline(
    purchase_date: date,
    purchase_price: float,
    market_baseline: float | None,
    period_start: date,
    use_purchase_price: bool = True,
) -> float | None:
    """Bought inside the period -> the purchase price is the baseline."""
    if not market_baseline:
        return None
    if not use_purchase_price:
        return market_baseline
    return purchase_price if purchase_date >= period_start else market_baseline


def _lookup_target(asset_class: AssetClass, symbol: str | None, name: str, purchase_date: date) -> tuple[str, date]:
    """Gold is always looked up by its generic name, valued as of today."""
    if asset_class == AssetClass.GOLD:
        return GOLD_SEARCH_NAME, datetime.now(timezone.utc).date()
    return symbol or name, purchase_date


class PortfolioService:
    """Single-portfolio ledger persisted as one JSON blob row."""

    def __init__(self, market: MarketDataService, sip: SipReconstructor):
        self.market = market
        self.sip = sip
        self.trend_generations = TrendGeneration()
        self._trend_cache = CacheService(default_ttl=TREND_CACHE_TTL, keep_stale=False)
        self._trend_inflight: dict[str, asyncio.Task] = {}

    # -- state store --------------------------------------------------------

    async def load_state(self, session: AsyncSession) -> PortfolioState | None:
        try:
            record = await session.get(PortfolioStateRecord, PORTFOLIO_STATE_ID, populate_existing=True)
        except SQLAlchemyError as e:
            raise StateStoreError(f"Failed to load portfolio state: {e}") from e
        if record is None:
            return None
        try:
            return PortfolioState.model_validate(
                {
                    "holdings": json.loads(record.holdings_json or "[]"),
                    "profile": json.loads(record.profile_json or "{}"),
                }
            )
        except ValueError as e:
            raise StateStoreError(f"Stored portfolio state is corrupt: {e}") from e

    async def get_state(self, session: AsyncSession) -> PortfolioState:
        return await self.load_state(session) or PortfolioState()

    async def save_state(self, session: AsyncSession, state: PortfolioState) -> None:
        holdings_json = json.dumps([h.model_dump(mode="json") for h in state.holdings])
        profile_json = state.profile.model_dump_json()
        try:
            record = await session.get(PortfolioStateRecord, PORTFOLIO_STATE_ID)
            if record is None:
                record = PortfolioStateRecord(id=PORTFOLIO_STATE_ID)
                session.add(record)
            record.holdings_json = holdings_json
            record.profile_json = profile_json
            record.updated_at = datetime.now().isoformat()
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise StateStoreError(f"Failed to save portfolio state: {e}") from e

    async def get_holdings(self, session: AsyncSession) -> list[Holding]:
        return (await self.get_state(session)).holdings

    async def update_profile(self, session: AsyncSession, profile: UserProfile) -> UserProfile:
        state = await self.get_state(session)
        state.profile = profile
        await self.save_state(session, state)
        return profile

    # -- ledger edits -------------------------------------------------------

    async def build_holding(self, draft: HoldingDraft) -> Holding:
        """Resolve and value a new ledger entry; raises ResolutionError / SipError."""
        cls = draft.asset_class
        base = {
            "id": uuid.uuid4().hex[:12],
            "asset_class": cls,
            "purchase_date": draft.purchase_date,
            "last_updated": utcnow(),
        }

        if cls == AssetClass.FIXED_DEPOSIT:
            if not draft.amount:
                raise ResolutionError("A fixed deposit needs a principal amount")
            return Holding(
                **base,
                name=draft.name.strip() or "Fixed Deposit",
                quantity=1,
                purchase_price=draft.amount,
                invested_amount=draft.amount,
                current_value=fd_value(draft.amount, draft.interest_rate, draft.purchase_date),
                interest_rate=draft.interest_rate,
                tenure_years=draft.tenure_years,
            )

        name = draft.name.strip()
        tracking = display = None
        if cls in SANITY_CHECKED:
            tracking, label = draft.symbol, draft.label
            if not tracking:
                picks = await self.market.search_instruments(name, cls)
                if picks:
                    tracking, label = picks[0].symbol, picks[0].label
            if not tracking and cls == AssetClass.MUTUAL_FUNDS:
                tracking = extract_scheme_code(name)
            if not tracking:
                raise ResolutionError(f"No instrument found for {name!r}")
            display = tracking
            name = label or name or tracking

        if cls == AssetClass.MUTUAL_FUNDS and draft.is_sip:
            sip_day = clamp_sip_day(draft.sip_day)
            if not draft.sip_amount or draft.sip_amount <= 0:
                raise SipError("SIP amount must be positive")
            snap = await self.sip.simulate_sip(tracking, draft.purchase_date, draft.sip_amount, sip_day)
            return Holding(
                **base,
                name=name,
                tracking_symbol=tracking,
                display_symbol=display,
                quantity=snap.quantity,
                purchase_price=snap.avg_purchase_price,
                invested_amount=snap.invested_amount,
                current_value=snap.current_value,
                price_start_of_day=snap.start_of_day,
                price_start_of_week=snap.start_of_week,
                price_start_of_month=snap.start_of_month,
                is_sip=True,
                sip_amount=draft.sip_amount,
                sip_day=sip_day,
                sip_frequency="MONTHLY",
            )

        qty = draft.quantity or 1
        lookup, as_of = _lookup_target(cls, tracking, name, draft.purchase_date)
        market = await self.market.fetch_market_data(lookup, cls, as_of, fixed_symbol=tracking)
        if cls == AssetClass.GOLD:
            purchase_price = draft.price_paid or market.current_price
        else:
            purchase_price = market.historical_price

        use_purchase = cls != AssetClass.GOLD
        day, week, month = period_starts()
        return Holding(
            **base,
            name=name or ("Gold" if cls == AssetClass.GOLD else lookup),
            tracking_symbol=tracking,
            display_symbol=display,
            quantity=qty,
            purchase_price=purchase_price,
            invested_amount=purchase_price * qty,
            current_value=market.current_price * qty,
            price_start_of_day=period_baseline(draft.purchase_date, purchase_price, market.start_of_day, day, use_purchase),
            price_start_of_week=period_baseline(draft.purchase_date, purchase_price, market.start_of_week, week, use_purchase),
            price_start_of_month=period_baseline(draft.purchase_date, purchase_price, market.start_of_month, month, use_purchase),
        )

    async def add_holding(self, session: AsyncSession, draft: HoldingDraft) -> Holding:
        holding = await self.build_holding(draft)
        state = await self.get_state(session)
        state.holdings.append(holding)
        await self.save_state(session, state)
        logger.info(f"Added {holding.asset_class.value} holding {holding.name}")
        return holding

    async def delete_holdings(self, session: AsyncSession, ids: list[str]) -> int:
        """Remove a single entry or every member of a merged position."""
        doomed = set(ids)
        state = await self.get_state(session)
        kept = [h for h in state.holdings if h.id not in doomed]
        removed = len(state.holdings) - len(kept)
        if removed:
            state.holdings = kept
            await self.save_state(session, state)
        return removed

    # -- refresh ------------------------------------------------------------

    async def refresh_holding(self, holding: Holding, now: datetime | None = None) -> Holding:
        """Revalued copy of ``holding``; raises when the update must be discarded."""
        now = now or utcnow()
        cls = holding.asset_class

        if cls == AssetClass.FIXED_DEPOSIT:
            value = fd_value(holding.invested_amount, holding.interest_rate, holding.purchase_date, now)
            return holding.model_copy(update={"current_value": value, "last_updated": now})

        if cls == AssetClass.MUTUAL_FUNDS and holding.is_sip and holding.tracking_symbol and holding.sip_amount:
            snap = await self.sip.simulate_sip(
                holding.tracking_symbol, holding.purchase_date, holding.sip_amount, holding.sip_day or 5
            )
            return holding.model_copy(
                update={
                    "invested_amount": snap.invested_amount,
                    "quantity": snap.quantity,
                    "purchase_price": snap.avg_purchase_price,
                    "current_value": snap.current_value,
                    "last_updated": now,
                    "price_start_of_day": snap.start_of_day,
                    "price_start_of_week": snap.start_of_week,
                    "price_start_of_month": snap.start_of_month,
                }
            )

        fixed = holding.tracking_symbol
        if not fixed and cls in SANITY_CHECKED:
            picks = await self.market.search_instruments(holding.name, cls)
            fixed = picks[0].symbol if picks else None
        lookup, as_of = _lookup_target(cls, fixed, holding.name, holding.purchase_date)
        market = await self.market.fetch_market_data(lookup, cls, as_of, fixed_symbol=fixed, lite=True)
        if market.is_fallback:
            raise MarketDataError(f"No live price for {holding.name}")

        previous_unit = holding.current_value / holding.quantity if holding.quantity > 0 else 0
        if cls in SANITY_CHECKED and previous_unit > 0:
            ratio = market.current_price / previous_unit
            if ratio > SANITY_RATIO_MAX or ratio < SANITY_RATIO_MIN:
                raise MarketDataError(
                    f"Implausible price jump for {holding.name}: {previous_unit:.2f} -> {market.current_price:.2f}"
                )

        use_purchase = cls != AssetClass.GOLD
        starts = period_starts(now)
        baselines = {}
        for field, market_value, start in zip(
            ("price_start_of_day", "price_start_of_week", "price_start_of_month"),
            (market.start_of_day, market.start_of_week, market.start_of_month),
            starts,
        ):
            if market_value is None:
                # Lite quotes only carry the previous close
                baselines[field] = getattr(holding, field)
            else:
                baselines[field] = period_baseline(
                    holding.purchase_date, holding.purchase_price, market_value, start, use_purchase
                )

        return holding.model_copy(
            update={
                "tracking_symbol": fixed or holding.tracking_symbol,
                "display_symbol": holding.display_symbol or fixed,
                "current_value": market.current_price * holding.quantity,
                "last_updated": now,
                **baselines,
            }
        )

    async def refresh_holdings(self, holdings: list[Holding]) -> list[Holding]:
        """Refresh every holding concurrently; failed ones keep their prior values."""
        results = await asyncio.gather(
            *(self.refresh_holding(h) for h in holdings), return_exceptions=True
        )
        updates: dict[str, Holding] = {}
        for holding, result in zip(holdings, results):
            if isinstance(result, Exception):
                logger.error(f"Refresh skipped for {holding.name}: {result}")
                continue
            updates[holding.id] = result
        return [updates.get(h.id, h) for h in holdings]

    async def refresh_portfolio(self, session: AsyncSession) -> PortfolioState:
        """Refresh a snapshot of the ledger and apply results to the latest state by id."""
        snapshot = await self.get_state(session)
        if not snapshot.holdings:
            return snapshot

        refreshed = {h.id: h for h in await self.refresh_holdings(snapshot.holdings)}
        latest = await self.get_state(session)
        latest.holdings = [refreshed.get(h.id, h) for h in latest.holdings]
        await self.save_state(session, latest)
        return latest

    # -- trends -------------------------------------------------------------

    async def build_trend(
        self, holdings: list[Holding], asset_class: AssetClass | None = None
    ) -> PortfolioTrend:
        """Trend for all holdings or one class.

        Identical requests join the build already running. A build for the same
        scope over a different ledger supersedes this one (TrendCancelled).
        """
        scope = asset_class.value if asset_class else "ALL"
        selected = [h for h in holdings if asset_class is None or h.asset_class == asset_class]
        cache_key = f"{scope}|{ledger_fingerprint(selected)}"
        cached = self._trend_cache.get(cache_key)
        if cached is not None:
            return cached

        task = self._trend_inflight.get(cache_key)
        if task is None:
            token = self.trend_generations.begin(scope)
            task = asyncio.create_task(self._build_and_cache(cache_key, selected, token))
            self._trend_inflight[cache_key] = task
            task.add_done_callback(lambda _t, k=cache_key: self._trend_inflight.pop(k, None))
        return await asyncio.shield(task)

    async def _build_and_cache(self, cache_key: str, selected: list[Holding], token) -> PortfolioTrend:
        trend = await build_trend(selected, self.market, token=token)
        self._trend_cache.set(cache_key, trend)
        return trend

    async def holding_trend(
        self, holdings: list[Holding], holding_id: str, window: str = "10y", mode: str = "current"
    ) -> list[TrendPoint] | None:
        """Chart series for the merged position containing ``holding_id``; None if unknown."""
        target = next((m for m in merge_holdings(holdings) if holding_id in m.member_ids), None)
        if target is None:
            return None
        market = await self.market.fetch_market_data(
            trend_lookup_name(target),
            target.asset_class,
            target.purchase_date,
            fixed_symbol=target.tracking_symbol,
        )
        return build_holding_trend(target, market, window=window, mode=mode)


# Global instance
portfolio_service = PortfolioService(market_data_service, sip_reconstructor)
