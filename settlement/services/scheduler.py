"""Background outbox draining using APScheduler."""
from __future__ import annotations

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config.settings import settings
from settlement.services.outbox import CommissionOutbox

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def drain_commission_outbox():
    """Process every commission task that is due."""
    try:
        await CommissionOutbox().process_due()
    except Exception:
        logger.exception("Commission outbox pass failed")


def start_scheduler(interval_seconds: int | None = None):
    """Start the background scheduler for the commission outbox."""
    interval_seconds = interval_seconds or settings.OUTBOX_POLL_SECONDS
    scheduler.add_job(
        drain_commission_outbox,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id="commission_outbox",
        name="Commission outbox drain",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Scheduler started, draining commission outbox every %ss", interval_seconds)


def stop_scheduler():
    """Gracefully shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
