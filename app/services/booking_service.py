from sqlalchemy.orm import Session
from typing import Callable, Optional
import logging

from ..core.database import transaction
from ..models.appointment import Appointment, AppointmentStatus
from ..schemas.appointment import AppointmentSnapshot, RequesterInfo
from .notifier import Notifier, get_notifier
from .slot_registry import SlotRegistry

logger = logging.getLogger(__name__)

Dispatcher = Callable[..., None]


def run_now(func, *args) -> None:
    """Default dispatcher: call inline."""
    func(*args)


class BookingService:
    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        dispatch: Dispatcher = run_now
    ):
        self.db = db
        self.slots = SlotRegistry(db)
        self.notifier = notifier or get_notifier()
        self.dispatch = dispatch

    def book(
        self,
        slot_id: int,
        requester: RequesterInfo,
        reason: str,
        account_id: Optional[int] = None
    ) -> Appointment:
        """Claim ``slot_id`` for a new scheduled appointment.

        Raises SlotNotFound, SlotAlreadyTaken when another request won the
        slot, or StorageUnavailable on a database outage.
        """
        with transaction(self.db):
            slot = self.slots.get(slot_id)
            appointment = Appointment(
                name=requester.name,
                email=requester.email,
                phone=requester.phone,
                reason=reason,
                status=AppointmentStatus.SCHEDULED,
                user_id=account_id,
            )
            self.slots.occupy(slot, appointment)

        logger.info(
            f"Booked appointment {appointment.id} on slot {slot_id} for account {account_id}"
        )
        self.notify(appointment)
        return appointment

    def notify(self, appointment: Appointment) -> None:
        """Hand a confirmation to the dispatcher; never raises."""
        try:
            snapshot = AppointmentSnapshot.from_appointment(appointment)
            self.dispatch(self.notifier.deliver_safely, snapshot.email, snapshot, False)
        except Exception as e:
            logger.error(f"Could not schedule notification for appointment {appointment.id}: {e}")
