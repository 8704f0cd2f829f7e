"""Tests for the background refresh job."""

from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.models.holding import AssetClass, Holding, PortfolioState
from app.services.auth import auth_gate
from app.services.errors import StateStoreError
from app.tasks import scheduler as scheduler_module
from app.tasks.scheduler import refresh_market_values, start_scheduler, stop_scheduler

STATE = PortfolioState(
    holdings=[
        Holding(
            id="h1",
            name="TCS",
            asset_class=AssetClass.STOCKS,
            tracking_symbol="TCS.NS",
            quantity=1,
            purchase_price=3000,
            purchase_date=date(2023, 1, 2),
            invested_amount=3000,
            current_value=3500,
        )
    ]
)


@pytest.fixture
def session_factory():
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = MagicMock()
    with patch.object(scheduler_module, "async_session_factory", factory):
        yield factory
    auth_gate.logout()


@pytest.mark.asyncio
async def test_skips_while_logged_out(session_factory):
    auth_gate.logout()
    await refresh_market_values()
    session_factory.assert_not_called()


@pytest.mark.asyncio
async def test_skips_empty_ledger(session_factory):
    auth_gate.is_open = True
    with (
        patch("app.tasks.scheduler.portfolio_service.load_state", new=AsyncMock(return_value=None)),
        patch("app.tasks.scheduler.portfolio_service.refresh_portfolio", new=AsyncMock()) as refresh,
    ):
        await refresh_market_values()
    refresh.assert_not_awaited()


@pytest.mark.asyncio
async def test_refreshes_when_logged_in(session_factory):
    auth_gate.is_open = True
    with (
        patch("app.tasks.scheduler.portfolio_service.load_state", new=AsyncMock(return_value=STATE)),
        patch("app.tasks.scheduler.portfolio_service.refresh_portfolio", new=AsyncMock(return_value=STATE)) as refresh,
    ):
        await refresh_market_values()
    refresh.assert_awaited_once()


@pytest.mark.asyncio
async def test_errors_are_logged_not_raised(session_factory):
    auth_gate.is_open = True
    with patch(
        "app.tasks.scheduler.portfolio_service.load_state",
        new=AsyncMock(side_effect=StateStoreError("Failed to load portfolio state")),
    ):
        await refresh_market_values()


def test_job_never_overlaps():
    fake = MagicMock()
    fake.running = True
    with patch.object(scheduler_module, "scheduler", fake):
        start_scheduler()
        stop_scheduler()

    kwargs = fake.add_job.call_args.kwargs
    assert kwargs["id"] == "refresh_market_values"
    assert kwargs["max_instances"] == 1
    assert kwargs["coalesce"] is True
    fake.start.assert_called_once()
    fake.shutdown.assert_called_once()
