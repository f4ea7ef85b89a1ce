from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from typing import List, Optional
import logging

from ..core.database import transaction
from ..core.errors import AppointmentNotFound, Forbidden, InvalidTransition
from ..core.security import UserRole
from ..models.appointment import Appointment, AppointmentStatus
from ..models.doctor import Doctor
from .authorization import Action, Caller, authorize
from .booking_service import BookingService, Dispatcher, run_now
from .notifier import Notifier
from .slot_registry import SlotRegistry

logger = logging.getLogger(__name__)

OPEN_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)

# action -> (allowed source states, target state)
TRANSITIONS = {
    Action.CANCEL: (OPEN_STATUSES, AppointmentStatus.CANCELLED),
    Action.RESCHEDULE: (OPEN_STATUSES, AppointmentStatus.SCHEDULED),
    Action.CONFIRM: ((AppointmentStatus.SCHEDULED,), AppointmentStatus.CONFIRMED),
    Action.MARK_ATTENDED: (OPEN_STATUSES, AppointmentStatus.ATTENDED),
    Action.MARK_NO_SHOW: (OPEN_STATUSES, AppointmentStatus.NO_SHOW),
}


class LifecycleService:
    """Applies appointment state transitions.

    Every call loads the appointment, asks the authorization policy, checks
    the transition table and only then writes, inside one transaction. A
    denied or illegal request never reaches the database as a write.
    """

    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        dispatch: Dispatcher = run_now
    ):
        self.db = db
        self.slots = SlotRegistry(db)
        self.booking = BookingService(db, notifier=notifier, dispatch=dispatch)

    def _load(self, appointment_id: int) -> Appointment:
        appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def _check(self, appointment: Appointment, caller: Caller, action: Action) -> None:
        if not authorize(caller.role, caller.account_id, appointment, action):
            logger.warning(
                f"Denied {action.value} on appointment {appointment.id} "
                f"for account {caller.account_id} ({caller.role})"
            )
            raise Forbidden(f"Not allowed to {action.value} this appointment")

        if action in TRANSITIONS:
            sources, _ = TRANSITIONS[action]
            if appointment.status not in sources:
                raise InvalidTransition(action.value, appointment.status)

    def _lost_race(self, appointment_id: int, action: Action) -> Exception:
        """The versioned write matched no row: another transition committed first.

        Rolls back and reports the state that transition left behind.
        """
        self.db.rollback()
        current = self.db.get(Appointment, appointment_id)
        if current is None:
            return AppointmentNotFound(appointment_id)
        logger.info(
            f"Concurrent change to appointment {appointment_id}; "
            f"{action.value} rejected in state {current.status.value}"
        )
        return InvalidTransition(action.value, current.status)

    def _flush(self, appointment_id: int, action: Action) -> None:
        try:
            self.db.flush()
        except StaleDataError as e:
            raise self._lost_race(appointment_id, action) from e

    def _transition(self, appointment_id: int, caller: Caller, action: Action) -> Appointment:
        _, target = TRANSITIONS[action]
        with transaction(self.db):
            appointment = self._load(appointment_id)
            self._check(appointment, caller, action)
            previous = appointment.status
            if target == AppointmentStatus.CANCELLED and appointment.slot_id is not None:
                slot_id = appointment.slot_id
                self.slots.release(slot_id)
                logger.info(f"Released slot {slot_id} from appointment {appointment_id}")
            appointment.status = target
            self._flush(appointment_id, action)

        logger.info(
            f"Appointment {appointment_id}: {previous.value} -> {target.value} "
            f"by account {caller.account_id}"
        )
        return appointment

    def get(self, appointment_id: int, caller: Caller) -> Appointment:
        appointment = self._load(appointment_id)
        self._check(appointment, caller, Action.VIEW)
        return appointment

    def list_for(self, caller: Caller, status: Optional[AppointmentStatus] = None) -> List[Appointment]:
        """Appointments the caller may view, soonest first."""
        query = self.db.query(Appointment)
        if caller.role == UserRole.ADMIN:
            pass
        elif caller.account_id is None:
            return []
        elif caller.role == UserRole.DOCTOR:
            doctor = self.db.query(Doctor).filter(Doctor.user_id == caller.account_id).first()
            if doctor is None:
                query = query.filter(Appointment.user_id == caller.account_id)
            else:
                query = query.filter(
                    (Appointment.doctor_id == doctor.id) | (Appointment.user_id == caller.account_id)
                )
        elif caller.role == UserRole.PATIENT:
            query = query.filter(Appointment.user_id == caller.account_id)
        else:
            return []

        if status is not None:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.occurs_at).all()

    def cancel(self, appointment_id: int, caller: Caller) -> Appointment:
        """Cancel and free the slot in the same write."""
        return self._transition(appointment_id, caller, Action.CANCEL)

    def reschedule(self, appointment_id: int, new_slot_id: int, caller: Caller) -> Appointment:
        """Move an open appointment to ``new_slot_id``.

        The old slot is free once this commits. Raises SlotAlreadyTaken if
        the target slot has an active appointment.
        """
        with transaction(self.db):
            appointment = self._load(appointment_id)
            self._check(appointment, caller, Action.RESCHEDULE)
            old_slot_id = appointment.slot_id
            slot = self.slots.get(new_slot_id)
            appointment.status = AppointmentStatus.SCHEDULED
            try:
                self.slots.occupy(slot, appointment)
            except StaleDataError as e:
                raise self._lost_race(appointment_id, Action.RESCHEDULE) from e

        logger.info(
            f"Appointment {appointment_id} moved from slot {old_slot_id} to {new_slot_id} "
            f"by account {caller.account_id}"
        )
        self.booking.notify(appointment)
        return appointment

    def confirm(self, appointment_id: int, caller: Caller) -> Appointment:
        return self._transition(appointment_id, caller, Action.CONFIRM)

    def mark_attended(self, appointment_id: int, caller: Caller) -> Appointment:
        return self._transition(appointment_id, caller, Action.MARK_ATTENDED)

    def mark_no_show(self, appointment_id: int, caller: Caller) -> Appointment:
        return self._transition(appointment_id, caller, Action.MARK_NO_SHOW)

    def purge(self, appointment_id: int, caller: Caller) -> None:
        """Physically delete an appointment (admin only, any state)."""
        with transaction(self.db):
            appointment = self._load(appointment_id)
            self._check(appointment, caller, Action.PURGE)
            self.db.delete(appointment)
            self._flush(appointment_id, Action.PURGE)
        logger.warning(f"Appointment {appointment_id} purged by account {caller.account_id}")
