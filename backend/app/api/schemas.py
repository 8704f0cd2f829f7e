"""Pydantic schemas for API request/response."""

from pydantic import BaseModel, Field

from app.models.holding import AssetClass, Holding, MergedHolding
from app.services.assistant import ChatTurn


class LoginRequest(BaseModel):
    email: str
    password: str


class AuthStatusResponse(BaseModel):
    authenticated: bool


class DeleteHoldingsRequest(BaseModel):
    member_ids: list[str] = Field(min_length=1)


class DeleteHoldingsResponse(BaseModel):
    removed: int


class HoldingListResponse(BaseModel):
    holdings: list[Holding]


class MergedHoldingListResponse(BaseModel):
    holdings: list[MergedHolding]


class InsightRequest(BaseModel):
    asset_class: AssetClass | None = None


class ChatRequest(BaseModel):
    prompt: str = Field(min_length=1)
    history: list[ChatTurn] = Field(default_factory=list)


class TextResponse(BaseModel):
    text: str
