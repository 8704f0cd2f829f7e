"""Ledger API routes."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.auth import require_auth
from app.api.schemas import (
    DeleteHoldingsRequest,
    DeleteHoldingsResponse,
    HoldingListResponse,
    MergedHoldingListResponse,
)
from app.models.database import get_db
from app.models.holding import Holding, HoldingDraft, TrendPoint
from app.services.errors import ResolutionError, SipError, StateStoreError
from app.services.holdings import merge_holdings
from app.services.portfolio import portfolio_service

router = APIRouter(prefix="/api/holdings", tags=["holdings"], dependencies=[Depends(require_auth)])


def state_unavailable(e: StateStoreError) -> HTTPException:
    return HTTPException(status_code=503, detail=f"{e}. Please retry.")


@router.get("", response_model=HoldingListResponse)
async def list_holdings(db: AsyncSession = Depends(get_db)):
    try:
        holdings = await portfolio_service.get_holdings(db)
    except StateStoreError as e:
        raise state_unavailable(e)
    return HoldingListResponse(holdings=holdings)


@router.get("/merged", response_model=MergedHoldingListResponse)
async def list_merged_holdings(db: AsyncSession = Depends(get_db)):
    try:
        holdings = await portfolio_service.get_holdings(db)
    except StateStoreError as e:
        raise state_unavailable(e)
    return MergedHoldingListResponse(holdings=merge_holdings(holdings))


@router.post("", response_model=Holding, status_code=201)
async def add_holding(draft: HoldingDraft, db: AsyncSession = Depends(get_db)):
    try:
        return await portfolio_service.add_holding(db, draft)
    except (ResolutionError, SipError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StateStoreError as e:
        raise state_unavailable(e)


@router.post("/refresh", response_model=HoldingListResponse)
async def refresh_holdings(db: AsyncSession = Depends(get_db)):
    try:
        state = await portfolio_service.refresh_portfolio(db)
    except StateStoreError as e:
        raise state_unavailable(e)
    return HoldingListResponse(holdings=state.holdings)


@router.post("/delete", response_model=DeleteHoldingsResponse)
async def delete_merged_holding(req: DeleteHoldingsRequest, db: AsyncSession = Depends(get_db)):
    try:
        removed = await portfolio_service.delete_holdings(db, req.member_ids)
    except StateStoreError as e:
        raise state_unavailable(e)
    if removed == 0:
        raise HTTPException(status_code=404, detail="Holding not found")
    return DeleteHoldingsResponse(removed=removed)


@router.get("/{holding_id}/trend", response_model=list[TrendPoint])
async def get_holding_trend(
    holding_id: str,
    window: str = Query("10y", pattern="^(6m|1y|5y|10y)$"),
    mode: str = Query("current", pattern="^(current|invested|profit)$"),
    db: AsyncSession = Depends(get_db),
):
    try:
        holdings = await portfolio_service.get_holdings(db)
    except StateStoreError as e:
        raise state_unavailable(e)
    points = await portfolio_service.holding_trend(holdings, holding_id, window, mode)
    if points is None:
        raise HTTPException(status_code=404, detail="Holding not found")
    return points


@router.delete("/{holding_id}", response_model=DeleteHoldingsResponse)
async def delete_holding(holding_id: str, db: AsyncSession = Depends(get_db)):
    try:
        removed = await portfolio_service.delete_holdings(db, [holding_id])
    except StateStoreError as e:
        raise state_unavailable(e)
    if removed == 0:
        raise HTTPException(status_code=404, detail="Holding not found")
    return DeleteHoldingsResponse(removed=removed)
