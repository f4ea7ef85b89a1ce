"""
Slot occupancy.

There is no "occupied" flag on a slot. A slot is taken while a
non-cancelled appointment points at it, and the partial unique index
``uq_appointments_active_slot`` is what guarantees there is at most one.
``occupy`` therefore never checks first: it writes the link and lets the
database reject the loser of a race.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import SlotAlreadyTaken, SlotNotFound
from ..models.appointment import Appointment, AppointmentStatus, ACTIVE_SLOT_INDEX
from ..models.slot import Slot

logger = logging.getLogger(__name__)


def is_slot_conflict(exc: IntegrityError) -> bool:
    """True when the integrity error came from the one-active-appointment-per-slot index."""
    diag = getattr(exc.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return constraint == ACTIVE_SLOT_INDEX
    message = str(exc.orig)
    # SQLite reports the column, PostgreSQL the index name
    return ACTIVE_SLOT_INDEX in message or "appointments.slot_id" in message


class SlotRegistry:
    def __init__(self, db: Session):
        self.db = db

    def get(self, slot_id: int) -> Slot:
        slot = self.db.get(Slot, slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        return slot

    def _active_on(self, slot_id: int):
        return self.db.query(Appointment).filter(
            Appointment.slot_id == slot_id,
            Appointment.status != AppointmentStatus.CANCELLED
        )

    def is_free(self, slot_id: int) -> bool:
        """Whether no active appointment currently references the slot."""
        self.get(slot_id)
        return self._active_on(slot_id).first() is None

    def occupy(self, slot: Slot, appointment: Appointment) -> Appointment:
        """Link ``appointment`` to ``slot`` and flush.

        Copies the slot's time and doctor onto the appointment. Raises
        ``SlotAlreadyTaken`` if another active appointment holds the slot;
        the session is rolled back in that case.
        """
        slot_id = slot.id
        appointment.slot_id = slot_id
        appointment.occurs_at = slot.starts_at
        appointment.doctor_id = slot.doctor_id
        self.db.add(appointment)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            if is_slot_conflict(e):
                logger.info(f"Slot {slot_id} already taken")
                raise SlotAlreadyTaken(slot_id) from e
            raise
        return appointment

    def release(self, slot_id: int) -> List[Appointment]:
        """Clear the slot link of any active appointment on ``slot_id``.

        Changes are left pending in the session; returns the unlinked appointments.
        """
        holders = self._active_on(slot_id).all()
        for appointment in holders:
            appointment.slot_id = None
        return holders

    def list_free(
        self,
        doctor_id: int,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100
    ) -> List[Slot]:
        """Free slots of a doctor from ``since`` (default now) onwards."""
        since = since or datetime.utcnow()
        taken = select(Appointment.slot_id).where(
            Appointment.slot_id.isnot(None),
            Appointment.status != AppointmentStatus.CANCELLED
        )
        query = self.db.query(Slot).filter(
            Slot.doctor_id == doctor_id,
            Slot.starts_at >= since,
            Slot.id.notin_(taken)
        )
        if until is not None:
            query = query.filter(Slot.starts_at < until)
        return query.order_by(Slot.starts_at).limit(limit).all()
