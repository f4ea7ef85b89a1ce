from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Index, Enum as SQLEnum, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    ATTENDED = "attended"
    NO_SHOW = "no_show"

ACTIVE_SLOT_INDEX = "uq_appointments_active_slot"
_ACTIVE_PREDICATE = text("status != 'cancelled'")

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one non-cancelled appointment per slot
        Index(
            ACTIVE_SLOT_INDEX,
            "slot_id",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
        Index("ix_appointments_status_occurs_at", "status", "occurs_at"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Requester contact, stored as given
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(30), nullable=False)
    reason = Column(Text, nullable=False)

    status = Column(
        SQLEnum(
            AppointmentStatus,
            name="appointment_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )

    # Copied from the slot on booking and reschedule
    occurs_at = Column(DateTime, nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=True)

    # Bumped on every write; a stale UPDATE matches no row
    version = Column(Integer, nullable=False, default=1)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    user = relationship("User", back_populates="appointments")
    doctor = relationship("Doctor")
    slot = relationship("Slot")

    @property
    def practitioner_account_id(self):
        return self.doctor.user_id if self.doctor is not None else None

    def __repr__(self):
        return f"<Appointment(id={self.id}, slot_id={self.slot_id}, status='{self.status}', occurs_at='{self.occurs_at}')>"
