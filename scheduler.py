import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import sessionmaker

from config import get_settings
from database import session_scope
from services import ForecastCache, ForecastService, forecast_cache

logger = logging.getLogger(__name__)


class SchedulerManager:
    """Drops memoized forecasts when the local date rolls over.

    Forecast horizons start at the current month and overdue flags depend on
    today, so cached results go stale at midnight even without data changes.
    """

    def __init__(
        self,
        cache: ForecastCache = forecast_cache,
        session_factory: Optional[sessionmaker] = None,
    ) -> None:
        settings = get_settings()
        self.cache = cache
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        logger.info(f"scheduler_run: source={source}")
        self.cache.invalidate(f"day_rollover:{source}")
        with session_scope(self.session_factory) as session:
            buckets = ForecastService(session, cache=self.cache).overdue_buckets()
        overdue = sum(bucket.overdue_cents for bucket in buckets)
        if overdue:
            logger.warning(
                f"scheduler_run: source={source} overdue_months={len(buckets)} "
                f"overdue_cents={overdue}"
            )
        return overdue

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=0, minute=5)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_00:05"],
            id="forecast_rollover",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.start()
        logger.info("Scheduler started with daily 00:05 forecast rollover")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
