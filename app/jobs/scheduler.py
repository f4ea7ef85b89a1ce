from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
import logging

from ..core.config import settings
from ..core.database import SessionLocal, redis_client
from ..services.notifier import get_notifier
from ..services.reminder_service import ReminderScanner

logger = logging.getLogger(__name__)

REMINDER_JOB_ID = "appointment-reminders"

def reminder_job():
    scanner = ReminderScanner(SessionLocal, get_notifier(), redis_client)
    try:
        scanner.run_scan()
    except Exception as e:
        # Keep the scheduler alive; the next tick retries from scratch
        logger.exception(f"Reminder scan failed: {e}")

def start_scheduler() -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone=settings.TIMEZONE)
    scheduler.add_job(
        reminder_job,
        IntervalTrigger(minutes=settings.REMINDER_INTERVAL_MINUTES),
        id=REMINDER_JOB_ID,
        max_instances=1,  # a tick that finds the previous run busy is skipped
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Reminder scheduler started (every {settings.REMINDER_INTERVAL_MINUTES} min)")
    return scheduler
