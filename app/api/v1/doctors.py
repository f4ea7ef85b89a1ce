from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from datetime import datetime
from typing import List, Optional

from ...core.database import get_db
from ...models.doctor import Doctor
from ...schemas.appointment import DoctorResponse, SlotResponse
from ...services.slot_registry import SlotRegistry

router = APIRouter(prefix="/doctors", tags=["Doctors"])

@router.get("", response_model=List[DoctorResponse])
async def list_doctors(
    specialty: Optional[str] = Query(None, min_length=2, max_length=80),
    db: Session = Depends(get_db)
):
    """List doctors, optionally filtered by specialty."""
    query = db.query(Doctor)
    if specialty:
        query = query.filter(Doctor.specialty.ilike(f"%{specialty.strip()}%"))
    return [DoctorResponse.model_validate(d) for d in query.order_by(Doctor.name).all()]

@router.get("/{doctor_id}/slots", response_model=List[SlotResponse])
async def list_free_slots(
    doctor_id: int,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(100, gt=0, le=500),
    db: Session = Depends(get_db)
):
    """Free slots of a doctor from now (or ``since``) onwards."""
    if db.get(Doctor, doctor_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Doctor not found"
        )
    slots = SlotRegistry(db).list_free(doctor_id, since=since, until=until, limit=limit)
    return [SlotResponse.model_validate(s) for s in slots]
