"""Login gate endpoints and the dependency that guards data routes."""

from fastapi import APIRouter, HTTPException

from app.api.schemas import AuthStatusResponse, LoginRequest
from app.services.auth import auth_gate

router = APIRouter(prefix="/api/auth", tags=["auth"])


def require_auth() -> None:
    if not auth_gate.is_open:
        raise HTTPException(status_code=401, detail="Login required")


@router.post("/login", response_model=AuthStatusResponse)
async def login(req: LoginRequest):
    if not auth_gate.login(req.email, req.password):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return AuthStatusResponse(authenticated=True)


@router.post("/logout", response_model=AuthStatusResponse)
async def logout():
    auth_gate.logout()
    return AuthStatusResponse(authenticated=False)


@router.get("/status", response_model=AuthStatusResponse)
async def status():
    return AuthStatusResponse(authenticated=auth_gate.is_open)
