from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import List, Optional

from ...core.config import settings
from ...core.database import get_db
from ...api.deps import get_admin_user, get_caller, get_current_user
from ...models.appointment import AppointmentStatus
from ...models.user import User
from ...schemas.appointment import (
    AppointmentCreate, AppointmentResponse, RequesterInfo, RescheduleRequest
)
from ...services.authorization import Caller
from ...services.booking_service import BookingService
from ...services.lifecycle_service import LifecycleService
from ...services.reminder_service import list_reminder_candidates, window_for

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    data: AppointmentCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Book a free slot. Responds 409 when the slot was taken first."""
    service = BookingService(db, dispatch=background_tasks.add_task)
    requester = RequesterInfo(name=data.name, email=data.email, phone=data.phone)
    appointment = service.book(data.slot_id, requester, data.reason, current_user.id)
    return AppointmentResponse.model_validate(appointment)

@router.get("", response_model=List[AppointmentResponse])
async def list_appointments(
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller)
):
    """Appointments visible to the caller."""
    appointments = LifecycleService(db).list_for(caller, status=status_filter)
    return [AppointmentResponse.model_validate(a) for a in appointments]

@router.get("/reminders/candidates", response_model=List[AppointmentResponse])
async def reminder_candidates(
    hours: int = Query(24, gt=0, le=24 * 14),
    db: Session = Depends(get_db),
    _: User = Depends(get_admin_user)
):
    """Scheduled appointments inside the reminder window ``hours`` ahead."""
    window = window_for(
        datetime.utcnow(),
        timedelta(hours=hours),
        timedelta(minutes=settings.REMINDER_TOLERANCE_MINUTES)
    )
    return [AppointmentResponse.model_validate(a) for a in list_reminder_candidates(db, window)]

@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller)
):
    appointment = LifecycleService(db).get(appointment_id, caller)
    return AppointmentResponse.model_validate(appointment)

@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller)
):
    """Cancel the appointment; its slot becomes bookable again."""
    appointment = LifecycleService(db).cancel(appointment_id, caller)
    return AppointmentResponse.model_validate(appointment)

@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller)
):
    """Move the appointment to another free slot."""
    service = LifecycleService(db, dispatch=background_tasks.add_task)
    appointment = service.reschedule(appointment_id, data.new_slot_id, caller)
    return AppointmentResponse.model_validate(appointment)

@router.post("/{appointment_id}/confirm", response_model=AppointmentResponse)
async def confirm_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller)
):
    appointment = LifecycleService(db).confirm(appointment_id, caller)
    return AppointmentResponse.model_validate(appointment)

@router.post("/{appointment_id}/attended", response_model=AppointmentResponse)
async def mark_attended(
    appointment_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller)
):
    appointment = LifecycleService(db).mark_attended(appointment_id, caller)
    return AppointmentResponse.model_validate(appointment)

@router.post("/{appointment_id}/no-show", response_model=AppointmentResponse)
async def mark_no_show(
    appointment_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller)
):
    appointment = LifecycleService(db).mark_no_show(appointment_id, caller)
    return AppointmentResponse.model_validate(appointment)

@router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def purge_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller)
):
    """Delete the record outright (admin only)."""
    LifecycleService(db).purge(appointment_id, caller)
