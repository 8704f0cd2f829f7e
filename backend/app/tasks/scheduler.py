"""Background task scheduler for periodic market value refresh."""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.services.auth import auth_gate
from app.services.portfolio import portfolio_service
from app.models.database import async_session_factory
from app.config import REFRESH_INTERVAL

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def refresh_market_values():
    """Revalue every holding while someone is logged in and the ledger is not empty."""
    if not auth_gate.is_open:
        return

    try:
        async with async_session_factory() as session:
            state = await portfolio_service.load_state(session)
            if state is None or not state.holdings:
                return
            refreshed = await portfolio_service.refresh_portfolio(session)
            logger.info(f"Refreshed market values for {len(refreshed.holdings)} holdings")
    except Exception as e:
        logger.error(f"Failed to refresh market values: {e}")


def start_scheduler():
    """Start the background scheduler."""
    scheduler.add_job(
        refresh_market_values,
        trigger=IntervalTrigger(seconds=REFRESH_INTERVAL),
        id="refresh_market_values",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started, refreshing every {REFRESH_INTERVAL}s")


def stop_scheduler():
    """Stop the background scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
