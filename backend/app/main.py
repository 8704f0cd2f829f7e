"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.models.database import init_db
from app.api.assistant import router as assistant_router
from app.api.auth import router as auth_router
from app.api.holdings import router as holdings_router
from app.api.portfolio_routes import router as portfolio_router
from app.api.search import router as search_router
from app.tasks.scheduler import start_scheduler, stop_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(title="Novus Wealth", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(holdings_router)
app.include_router(portfolio_router)
app.include_router(search_router)
app.include_router(assistant_router)


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}
