from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional
from datetime import datetime

from ..models.appointment import AppointmentStatus

class RequesterInfo(BaseModel):
    """Who the appointment is for; free text, not normalized."""
    name: str = Field(..., min_length=2, max_length=80)
    email: EmailStr
    phone: str = Field(..., min_length=7, max_length=20)

class AppointmentCreate(RequesterInfo):
    slot_id: int = Field(..., gt=0)
    reason: str = Field(..., min_length=3, max_length=200)

class RescheduleRequest(BaseModel):
    new_slot_id: int = Field(..., gt=0)

class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    phone: str
    reason: str
    status: AppointmentStatus
    occurs_at: datetime
    doctor_id: Optional[int] = None
    slot_id: Optional[int] = None
    user_id: Optional[int] = None
    created_at: Optional[datetime] = None

class AppointmentSnapshot(BaseModel):
    """Detached copy of an appointment handed to the notifier."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    reason: str
    status: AppointmentStatus
    occurs_at: datetime
    doctor_name: Optional[str] = None

    @classmethod
    def from_appointment(cls, appointment) -> "AppointmentSnapshot":
        return cls(
            id=appointment.id,
            name=appointment.name,
            email=appointment.email,
            reason=appointment.reason,
            status=appointment.status,
            occurs_at=appointment.occurs_at,
            doctor_name=appointment.doctor.name if appointment.doctor else None,
        )

class DoctorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    specialty: str
    description: Optional[str] = None

class SlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    starts_at: datetime
    ends_at: datetime
