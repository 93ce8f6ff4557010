import logging
import threading
from datetime import date
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from notifications import NotificationDispatcher, PushSender
from recurrence import RecurringSweep, SweepResult


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        push_client: Optional[PushSender] = None,
    ) -> None:
        settings = get_settings()
        self.settings = settings
        self.session_factory = session_factory
        self.push_client = push_client
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self._run_lock = threading.Lock()

    def _run_job(
        self, source: str = "manual", today: Optional[date] = None
    ) -> Optional[SweepResult]:
        if not self._run_lock.acquire(blocking=False):
            logger.warning(f"scheduler_run: source={source} skipped, sweep already running")
            return None
        try:
            logger.info(f"scheduler_run: source={source}")
            session = self.session_factory()
            try:
                dispatcher = NotificationDispatcher(session, self.push_client)
                result = RecurringSweep(session, dispatcher).run(today)
            finally:
                session.close()
            logger.info(
                f"scheduler_run: source={source} advanced={result.advanced} "
                f"skipped={result.skipped} conflicts={result.conflicts}"
            )
            return result
        finally:
            self._run_lock.release()

    def start(self) -> None:
        self._run_job("startup")

        hour = self.settings.sweep_hour
        minute = self.settings.sweep_minute
        trigger = CronTrigger(hour=hour, minute=minute)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"daily_{hour:02d}:{minute:02d}"],
            id="recurring_invoices_daily",
            replace_existing=True,
            misfire_grace_time=3600,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with daily sweep at {hour:02d}:{minute:02d}")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
