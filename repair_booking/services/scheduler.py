"""
APScheduler Service
Fires the appointment reminder runs at fixed wall-clock times
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from repair_booking.config import settings
from repair_booking.database import SessionLocal
from repair_booking.services.notifications import MORNING_OF, NIGHT_BEFORE, get_dispatcher
from repair_booking.services.reminders import send_reminders, target_date
from repair_booking.services.slot_eligibility import local_now

logger = logging.getLogger(__name__)


class SchedulerService:
    """Service to manage background scheduler tasks"""

    def __init__(self, timezone: str | None = None):
        self.timezone = timezone or settings.schedule_timezone
        self.scheduler = BackgroundScheduler(timezone=self.timezone)
        self._setup_jobs()

    def _setup_jobs(self):
        """Setup all background jobs"""
        # 18:00 the evening before
        self.scheduler.add_job(
            self.run_reminders,
            CronTrigger(hour=18, minute=0, timezone=self.timezone),
            args=[NIGHT_BEFORE],
            id="night_before_reminders",
            name="Send night-before reminders",
            replace_existing=True
        )

        # 07:45 the morning of
        self.scheduler.add_job(
            self.run_reminders,
            CronTrigger(hour=7, minute=45, timezone=self.timezone),
            args=[MORNING_OF],
            id="morning_of_reminders",
            name="Send morning-of reminders",
            replace_existing=True
        )

    def run_reminders(self, reminder_type: str) -> dict | None:
        """Run one reminder type for its target date"""
        db = SessionLocal()
        try:
            service_date = target_date(reminder_type, local_now())
            return send_reminders(db, reminder_type, service_date, get_dispatcher())
        except Exception:
            logger.exception("Reminder job %s failed", reminder_type)
            return None
        finally:
            db.close()

    def start(self):
        """Start the scheduler"""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler stopped")


# Global scheduler instance
_scheduler_service = None


def get_scheduler() -> SchedulerService:
    """Get or create scheduler instance"""
    global _scheduler_service
    if _scheduler_service is None:
        _scheduler_service = SchedulerService()
    return _scheduler_service


def start_scheduler():
    """Start the background scheduler"""
    scheduler = get_scheduler()
    scheduler.start()


def stop_scheduler():
    """Stop the background scheduler"""
    if _scheduler_service is not None:
        _scheduler_service.stop()
