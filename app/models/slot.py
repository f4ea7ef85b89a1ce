from datetime import timedelta
from sqlalchemy import Column, Integer, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.config import settings
from ..core.database import Base

class Slot(Base):
    """One bookable hour of a doctor's agenda.

    Slots are generated ahead of time outside this service and are never
    deleted here. Whether a slot is taken is derived from the appointments
    table, see ``uq_appointments_active_slot``.
    """
    __tablename__ = "slots"
    __table_args__ = (
        UniqueConstraint("doctor_id", "starts_at", name="uq_slots_doctor_starts_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    starts_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())

    doctor = relationship("Doctor", back_populates="slots")

    @property
    def ends_at(self):
        return self.starts_at + timedelta(minutes=settings.SLOT_DURATION_MINUTES)

    def __repr__(self):
        return f"<Slot(id={self.id}, doctor_id={self.doctor_id}, starts_at='{self.starts_at}')>"
