import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from services import Ledger


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Keeps the current and upcoming months materialized without a UI request."""

    def __init__(self, ledger: Optional[Ledger] = None) -> None:
        settings = get_settings()
        self.settings = settings
        self.ledger = ledger or Ledger.from_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        logger.info(f"scheduler_run: source={source}")
        months = self.ledger.materialize_ahead(
            months_ahead=self.settings.lookahead_months
        )
        logger.info(f"scheduler_run: source={source} months_materialized={months}")
        return months

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(
            hour=self.settings.scheduler_hour, minute=self.settings.scheduler_minute
        )
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily"],
            id="materialize_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started with daily materialization at "
            f"{self.settings.scheduler_hour:02d}:{self.settings.scheduler_minute:02d}"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
