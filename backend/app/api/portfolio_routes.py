"""Portfolio API routes: summary, allocation, trends, risk and profile."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.auth import require_auth
from app.api.holdings import state_unavailable
from app.models.database import get_db
from app.models.holding import AssetClass, UserProfile
from app.services.aggregator import AllocationSlice, PortfolioSummary, PortfolioTrend, allocation, summarize
from app.services.assistant import assistant_service
from app.services.errors import StateStoreError, TrendCancelled
from app.services.portfolio import portfolio_service
from app.services.risk import RiskProfile

router = APIRouter(prefix="/api/portfolio", tags=["portfolio"], dependencies=[Depends(require_auth)])


async def _holdings(db: AsyncSession):
    try:
        return await portfolio_service.get_holdings(db)
    except StateStoreError as e:
        raise state_unavailable(e)


@router.get("/summary", response_model=PortfolioSummary)
async def get_summary(db: AsyncSession = Depends(get_db)):
    return summarize(await _holdings(db))


@router.get("/allocation", response_model=list[AllocationSlice])
async def get_allocation(db: AsyncSession = Depends(get_db)):
    return allocation(await _holdings(db))


@router.get("/trend", response_model=PortfolioTrend)
async def get_trend(asset_class: AssetClass | None = None, db: AsyncSession = Depends(get_db)):
    holdings = await _holdings(db)
    try:
        return await portfolio_service.build_trend(holdings, asset_class)
    except TrendCancelled:
        raise HTTPException(status_code=409, detail="Superseded by a newer trend request")


@router.get("/risk", response_model=RiskProfile)
async def get_risk(db: AsyncSession = Depends(get_db)):
    return await assistant_service.get_risk_profile(await _holdings(db))


@router.get("/profile", response_model=UserProfile)
async def get_profile(db: AsyncSession = Depends(get_db)):
    try:
        state = await portfolio_service.get_state(db)
    except StateStoreError as e:
        raise state_unavailable(e)
    return state.profile


@router.put("/profile", response_model=UserProfile)
async def update_profile(profile: UserProfile, db: AsyncSession = Depends(get_db)):
    try:
        return await portfolio_service.update_profile(db, profile)
    except StateStoreError as e:
        raise state_unavailable(e)
