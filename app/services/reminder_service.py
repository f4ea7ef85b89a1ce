"""
Reminder scan.

Each run looks at a few lead-time windows (by default 24h and 2h ahead,
each widened by a tolerance band) and asks the notifier to remind every
scheduled appointment found there. The scan only reads: there is no
"reminded" marker, so an appointment sitting in two overlapping runs'
windows can be reminded twice.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional
import logging
import uuid

from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.appointment import Appointment, AppointmentStatus
from ..schemas.appointment import AppointmentSnapshot
from .notifier import Notifier

logger = logging.getLogger(__name__)

SCAN_LOCK_KEY = "reminders:scan-lock"

# Delete the lock only while it still holds our token, in one server-side step
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


@dataclass(frozen=True)
class ReminderWindow:
    label: str
    start: datetime
    end: datetime


def window_for(now: datetime, lead: timedelta, tolerance: timedelta, label: Optional[str] = None) -> ReminderWindow:
    target = now + lead
    if label is None:
        label = f"{int(lead.total_seconds() // 3600)}h"
    return ReminderWindow(label=label, start=target - tolerance, end=target + tolerance)


def reminder_windows(
    now: datetime,
    lead_hours: Iterable[int] = None,
    tolerance_minutes: int = None
) -> List[ReminderWindow]:
    lead_hours = settings.REMINDER_LEAD_HOURS if lead_hours is None else lead_hours
    if tolerance_minutes is None:
        tolerance_minutes = settings.REMINDER_TOLERANCE_MINUTES
    tolerance = timedelta(minutes=tolerance_minutes)
    return [window_for(now, timedelta(hours=h), tolerance) for h in lead_hours]


def list_reminder_candidates(db: Session, window: ReminderWindow) -> List[Appointment]:
    """Scheduled appointments whose occurrence falls inside ``window`` (inclusive)."""
    return db.query(Appointment).filter(
        Appointment.status == AppointmentStatus.SCHEDULED,
        Appointment.occurs_at >= window.start,
        Appointment.occurs_at <= window.end
    ).order_by(Appointment.occurs_at).all()


class ReminderScanner:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        notifier: Notifier,
        redis_client=None,
        lock_seconds: int = None
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.redis = redis_client
        self.lock_seconds = lock_seconds or settings.REMINDER_LOCK_SECONDS

    def _acquire(self) -> Optional[str]:
        if self.redis is None:
            return "local"
        token = uuid.uuid4().hex
        # The TTL bounds how long a stuck run can hold off the next one
        if self.redis.set(SCAN_LOCK_KEY, token, nx=True, ex=self.lock_seconds):
            return token
        return None

    def _release(self, token: str) -> None:
        if self.redis is None:
            return
        if not self.redis.eval(RELEASE_LOCK_SCRIPT, 1, SCAN_LOCK_KEY, token):
            logger.warning("Reminder scan lock expired before the scan finished")

    def run_scan(self, now: Optional[datetime] = None) -> Optional[dict]:
        """Send reminders for every window; returns counts, or None if another scan holds the lock."""
        token = self._acquire()
        if token is None:
            logger.info("Reminder scan skipped: previous scan still running")
            return None

        now = now or datetime.utcnow()
        summary = {"candidates": 0, "sent": 0, "failed": 0}
        db = self.session_factory()
        try:
            for window in reminder_windows(now):
                snapshots = [
                    AppointmentSnapshot.from_appointment(a)
                    for a in list_reminder_candidates(db, window)
                ]
                # Release the read transaction before talking to the mail server
                db.rollback()
                summary["candidates"] += len(snapshots)
                for snapshot in snapshots:
                    if self.notifier.deliver_safely(snapshot.email, snapshot, True):
                        summary["sent"] += 1
                    else:
                        summary["failed"] += 1
        finally:
            db.close()
            self._release(token)

        logger.info(
            f"Reminder scan at {now.isoformat()}: {summary['candidates']} candidates, "
            f"{summary['sent']} sent, {summary['failed']} failed"
        )
        return summary
