"""APScheduler integration for recurring jobs.

Prepares next month's assignments once a month and sweeps the Notion sync
queue on an interval, using AsyncIOScheduler. Start and stop functions are
designed to be called from the FastAPI lifespan.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from backend.config import get_settings
from backend.services.daily import BatchResult, prepare_next_month
from backend.services.notion_sync import (
    list_enabled_owners,
    process_queue,
    recover_stale_items,
)
from backend.supabase_client import get_daily_store, get_supabase_client
from backend.time_utils import ClockContext, app_timezone

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def start_scheduler() -> AsyncIOScheduler:
    """Start the APScheduler with configured jobs.

    Registers the monthly prepare-next-month job and the Notion queue
    sweep, then starts the scheduler.

    Returns:
        The running scheduler instance.
    """
    global _scheduler  # noqa: PLW0603

    settings = get_settings()
    tz = app_timezone()
    _scheduler = AsyncIOScheduler(timezone=tz)

    _scheduler.add_job(
        _run_prepare_next_month_job,
        trigger="cron",
        day=settings.schedule.prepare_day_of_month,
        hour=settings.schedule.prepare_hour,
        minute=settings.schedule.prepare_minute,
        timezone=tz,
        id="prepare_next_month",
        name="Prepare next month's daily assignments",
        replace_existing=True,
    )
    logger.info(
        "Scheduled prepare-next-month on day %d at %02d:%02d",
        settings.schedule.prepare_day_of_month,
        settings.schedule.prepare_hour,
        settings.schedule.prepare_minute,
    )

    _scheduler.add_job(
        run_sync_sweep_for_all_users,
        trigger="interval",
        minutes=settings.schedule.sync_interval_minutes,
        timezone=tz,
        id="notion_sync_sweep",
        name="Notion sync queue sweep",
        replace_existing=True,
    )
    logger.info(
        "Scheduled Notion sync sweep every %d minute(s)",
        settings.schedule.sync_interval_minutes,
    )

    _scheduler.start()
    logger.info("Scheduler started")
    return _scheduler


def stop_scheduler() -> None:
    """Stop the running scheduler gracefully."""
    global _scheduler  # noqa: PLW0603

    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
        _scheduler = None


async def _run_prepare_next_month_job() -> None:
    logger.info("Scheduled prepare-next-month triggered")
    await run_prepare_next_month_job()


async def run_prepare_next_month_job() -> BatchResult | None:
    """Assign the coming month for every owner."""
    try:
        store = get_daily_store()
        result = await prepare_next_month(store, ClockContext.now())
        logger.info("Prepare-next-month complete: %s", result)
        return result
    except Exception:
        logger.exception("Prepare-next-month job failed")
        return None


async def run_sync_sweep_for_all_users() -> None:
    """Recover stale claims, then drain the queue of every enabled owner."""
    try:
        client = get_supabase_client()
        recover_stale_items(client)
        owners = list_enabled_owners(client)
    except Exception:
        logger.exception("Notion sync sweep failed to start")
        return

    for owner in owners:
        try:
            report = await process_queue(client, owner)
            if report["processed"]:
                logger.info("Notion sweep for %s: %s", owner, report)
        except Exception:
            logger.exception("Notion sync sweep failed for owner %s", owner)
