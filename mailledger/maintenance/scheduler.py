"""APScheduler setup for the daily maintenance job."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

if TYPE_CHECKING:
    from mailledger.config import PipelineConfig
    from mailledger.processing.cache import AnalysisCache
    from mailledger.storage.db import LedgerDatabase

logger = logging.getLogger(__name__)


def _parse_maintenance_time(time_str: str) -> tuple[int, int]:
    """Parse 'HH:MM' into (hour, minute). Falls back to (3, 0) on parse error."""
    try:
        hour_str, minute_str = time_str.strip().split(":")
        hour, minute = int(hour_str), int(minute_str)
    except (ValueError, AttributeError):
        logger.warning("Invalid MAINTENANCE_TIME %r; defaulting to 03:00", time_str)
        return 3, 0
    if not (0 <= hour < 24 and 0 <= minute < 60):
        logger.warning("Invalid MAINTENANCE_TIME %r; defaulting to 03:00", time_str)
        return 3, 0
    return hour, minute


def run_maintenance(db: LedgerDatabase, cache: AnalysisCache, freshness_days: int) -> None:
    """Drop persisted analyses past the freshness window and expired memory entries."""
    removed = db.clean_old_analyses(freshness_days)
    purged = cache.memory.purge()
    logger.info("Maintenance: %d stale analyses removed, %d cache entries purged", removed, purged)


def create_maintenance_scheduler(
    db: LedgerDatabase,
    cache: AnalysisCache,
    config: PipelineConfig,
) -> AsyncIOScheduler:
    """Return a configured AsyncIOScheduler that runs maintenance daily.

    The caller is responsible for calling scheduler.start() and scheduler.shutdown().
    """
    scheduler = AsyncIOScheduler()
    hour, minute = _parse_maintenance_time(config.maintenance_time)
    scheduler.add_job(
        run_maintenance,
        "cron",
        hour=hour,
        minute=minute,
        args=[db, cache, config.freshness_days],
    )
    logger.info("Maintenance scheduled daily at %02d:%02d", hour, minute)
    return scheduler
