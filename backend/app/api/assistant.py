"""AI assistant endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.auth import require_auth
from app.api.holdings import state_unavailable
from app.api.schemas import ChatRequest, InsightRequest, TextResponse
from app.models.database import get_db
from app.services.assistant import assistant_service
from app.services.errors import StateStoreError
from app.services.holdings import merge_holdings
from app.services.portfolio import portfolio_service

router = APIRouter(prefix="/api/assistant", tags=["assistant"], dependencies=[Depends(require_auth)])


async def _holdings(db: AsyncSession):
    try:
        return await portfolio_service.get_holdings(db)
    except StateStoreError as e:
        raise state_unavailable(e)


@router.post("/insight", response_model=TextResponse)
async def get_insight(req: InsightRequest, db: AsyncSession = Depends(get_db)):
    text = await assistant_service.get_insight(await _holdings(db), req.asset_class)
    return TextResponse(text=text)


@router.post("/chat", response_model=TextResponse)
async def chat(req: ChatRequest, db: AsyncSession = Depends(get_db)):
    text = await assistant_service.get_chat_reply(await _holdings(db), req.prompt, req.history)
    return TextResponse(text=text)


@router.get("/prediction/{holding_id}", response_model=TextResponse)
async def get_prediction(holding_id: str, db: AsyncSession = Depends(get_db)):
    """Prediction for a ledger entry or the merged position it belongs to."""
    holdings = await _holdings(db)
    target = next((m for m in merge_holdings(holdings) if holding_id in m.member_ids), None)
    if target is None:
        raise HTTPException(status_code=404, detail="Holding not found")
    return TextResponse(text=await assistant_service.get_holding_prediction(target))
