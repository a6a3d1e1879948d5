import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from summaries import SummaryRecalculator


logger = logging.getLogger(__name__)


class SchedulerManager:
    """Refreshes cached summaries so salary changes reach every stored month."""

    def __init__(
        self, session_factory: Optional[Callable[[], Session]] = None
    ) -> None:
        settings = get_settings()
        self.session_factory = session_factory
        self.refresh_hour = settings.summary_refresh_hour
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        logger.info(f"scheduler_run: source={source}")
        with session_scope(self.session_factory) as session:
            count = SummaryRecalculator(session).refresh_all()
        logger.info(f"scheduler_run: source={source} summaries_refreshed={count}")
        return count

    def start(self) -> None:
        trigger = CronTrigger(hour=self.refresh_hour, minute=0)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"daily_{self.refresh_hour:02d}:00"],
            id="summary_refresh_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.start()
        logger.info(
            f"Scheduler started with daily summary refresh at {self.refresh_hour:02d}:00"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
