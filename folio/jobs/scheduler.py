from __future__ import annotations
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
import structlog

from ..config import settings
from ..ledger.ledger import Ledger
from ..pricing.feed import PriceFeed
from ..pricing.refresh import refresh_prices

_log = structlog.get_logger()

REFRESH_JOB_ID = "price_refresh"


def build_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(timezone=ZoneInfo(settings.local_tz))


def run_refresh(ledger: Ledger, feed: PriceFeed):
    try:
        result = refresh_prices(ledger, feed)
    except Exception as exc:
        # already recorded on the run row; keep the scheduler alive for the next slot
        _log.error("scheduled_refresh_failed", err=str(exc))
        return None
    return result


def schedule_jobs(ledger: Ledger, feed: PriceFeed, sched: AsyncIOScheduler | None = None) -> AsyncIOScheduler:
    """Refresh on trading days after the local market close; caller owns shutdown."""
    sched = sched or build_scheduler()
    tz = ZoneInfo(settings.local_tz)
    sched.add_job(
        run_refresh,
        CronTrigger(
            day_of_week=settings.refresh_days,
            hour=settings.refresh_hour,
            minute=settings.refresh_minute,
            timezone=tz,
        ),
        args=[ledger, feed],
        id=REFRESH_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    sched.start()
    _log.info(
        "refresh_scheduler_started",
        days=settings.refresh_days,
        hour=settings.refresh_hour,
        minute=settings.refresh_minute,
    )
    return sched
