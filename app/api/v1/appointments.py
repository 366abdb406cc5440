from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ...api.deps import get_current_caller, require_role, booking_rate_limit
from ...core.database import get_db
from ...core.security import CallerIdentity, UserRole
from ...models.appointment import AppointmentStatus
from ...schemas.appointment import (
    AppointmentCreate, AppointmentUpdate, AppointmentResponse,
    AvailableSlotsResponse, DoctorAppointmentsResponse
)
from ...services.appointment_service import AppointmentService
from ...services.booking_service import BookingService

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.get("/slots/{doctor_id}/{day}", response_model=AvailableSlotsResponse)
async def list_available_slots(
    doctor_id: int,
    day: date,
    db: Session = Depends(get_db),
    _: CallerIdentity = Depends(get_current_caller)
):
    """List a doctor's open slots for a day."""
    booking_service = BookingService(db)
    slots = booking_service.list_available_slots(doctor_id, day)
    return AvailableSlotsResponse(doctor_id=doctor_id, date=day, slots=slots)

@router.get("/doctor/{doctor_id}", response_model=DoctorAppointmentsResponse)
async def list_doctor_appointments(
    doctor_id: int,
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_current_caller)
):
    """List a doctor's appointments (admin or the doctor)."""
    appointment_service = AppointmentService(db)
    return appointment_service.list_doctor_appointments(
        doctor_id, caller,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit
    )

@router.get("", response_model=List[AppointmentResponse])
async def list_appointments(
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_current_caller)
):
    """List appointments visible to the caller."""
    appointment_service = AppointmentService(db)
    return appointment_service.list_appointments(caller)

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    booking: AppointmentCreate,
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(require_role([UserRole.PATIENT, UserRole.ADMIN])),
    _: None = Depends(booking_rate_limit)
):
    """Book an appointment slot."""
    booking_service = BookingService(db)
    return booking_service.book_appointment(caller, booking)

@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_current_caller)
):
    """Get a single appointment."""
    appointment_service = AppointmentService(db)
    return appointment_service.get_appointment(appointment_id, caller)

@router.put("/{appointment_id}", response_model=AppointmentResponse)
@router.patch("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: int,
    patch: AppointmentUpdate,
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_current_caller)
):
    """Update an appointment; fields allowed depend on the caller's role."""
    appointment_service = AppointmentService(db)
    return appointment_service.update_appointment(
        appointment_id, caller, patch.model_dump(exclude_unset=True)
    )

@router.delete("/{appointment_id}")
async def delete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(require_role([UserRole.ADMIN]))
):
    """Delete an appointment (admin only)."""
    appointment_service = AppointmentService(db)
    appointment_service.delete_appointment(appointment_id, caller)

    return {"message": "Appointment deleted successfully"}
