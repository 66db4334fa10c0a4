import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from query_cache import QueryCache

logger = logging.getLogger(__name__)


class SchedulerManager:
    """Periodically evicts cache entries nobody has read for ``cache_gc_secs``."""

    def __init__(self, cache: QueryCache) -> None:
        settings = get_settings()
        self.cache = cache
        self.scheduler = AsyncIOScheduler(timezone=settings.timezone)

    def _run_gc(self, source: str = "manual") -> int:
        evicted = self.cache.collect_garbage()
        logger.info(f"cache_gc_run: source={source} evicted={evicted}")
        return evicted

    def start(self) -> None:
        self.scheduler.add_job(
            self._run_gc,
            IntervalTrigger(minutes=1),
            args=["interval"],
            id="cache_gc",
            replace_existing=True,
            misfire_grace_time=60,
        )
        self.scheduler.start()
        logger.info("Scheduler started with cache gc every minute")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
