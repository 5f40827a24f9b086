import logging
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import Settings, get_settings
from database import SessionLocal
from future_payments import FuturePaymentEngine, SchedulerRunReport
from models import utcnow


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Runs the future-payment pass on a fixed interval.

    A single instance per deployment is assumed; the versioned payment rows
    turn an accidental second instance into rolled-back conflicts rather than
    double postings.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.engine = FuturePaymentEngine(session_factory, self.settings, clock)
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> SchedulerRunReport:
        logger.info(f"scheduler_run: source={source}")
        report = self.engine.run_due()
        logger.info(
            f"scheduler_run: source={source} applied={len(report.applied)} failed={len(report.failures)}"
        )
        return report

    def start(self) -> None:
        self._run_job("startup")

        trigger = IntervalTrigger(seconds=self.settings.scheduler_interval_secs)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="future_payments",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with interval_secs={self.settings.scheduler_interval_secs}"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
