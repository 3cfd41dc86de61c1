"""APScheduler job definitions."""

import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from sales_board.config import settings
from sales_board.notify.navigation import nav_states
from sales_board.worker.tasks import board_service

logger = logging.getLogger(__name__)

NAV_SWEEP_INTERVAL_SECONDS = 60


async def refresh_boards_job() -> None:
    """Scheduled refresh of every pinned board."""
    try:
        counts = await board_service.refresh_all_boards()
        logger.info(f"Sales board refresh finished: {counts}")
    except Exception:
        logger.exception("Sales board refresh job failed")


def sweep_nav_states_job() -> None:
    """Drop navigation state of boards nobody has touched in a while."""
    nav_states.sweep()


def setup_scheduler(run_refresh_now: bool = True) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Jobs:
    - Board refresh every settings.sales_poll_seconds (first run immediately)
    - Navigation state sweep every minute

    Args:
        run_refresh_now: Fire the first refresh at startup

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()

    # An explicit next_run_time of None would add the job paused
    first_run = {"next_run_time": datetime.now()} if run_refresh_now else {}
    scheduler.add_job(
        refresh_boards_job,
        IntervalTrigger(seconds=settings.sales_poll_seconds),
        id="sales_board_refresh",
        name="Refresh pinned sales boards",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=600,
        replace_existing=True,
        **first_run,
    )

    scheduler.add_job(
        sweep_nav_states_job,
        IntervalTrigger(seconds=NAV_SWEEP_INTERVAL_SECONDS),
        id="nav_state_sweep",
        name="Sweep idle navigation state",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: board refresh every %ds, nav state sweep every %ds",
        settings.sales_poll_seconds,
        NAV_SWEEP_INTERVAL_SECONDS,
    )
    return scheduler
