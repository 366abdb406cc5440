import datetime as dt
from typing import Annotated, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from ..models.appointment import AppointmentStatus, AppointmentType, PaymentStatus


def _to_day(value):
    """Truncate datetimes (or ISO datetime strings) to their calendar day."""
    if isinstance(value, str) and len(value) > 10:
        value = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, dt.datetime):
        return value.date()
    return value


Day = Annotated[dt.date, BeforeValidator(_to_day)]


class AppointmentCreate(BaseModel):
    doctor_id: int
    # Only honoured for admins; patients always book for themselves
    patient_id: Optional[int] = None
    date: Day
    time: str = Field(..., description="Format: HH:MM")
    # Unrecognized values fall back to "consultation"
    type: Optional[str] = None
    description: Optional[str] = Field(None, max_length=2000)
    symptoms: Optional[Union[str, List[str]]] = None
    payment_amount: Optional[float] = Field(None, ge=0)


class AppointmentUpdate(BaseModel):
    """Partial update; only fields present in the request are written."""
    model_config = ConfigDict(extra="forbid")

    date: Optional[Day] = None
    time: Optional[str] = None
    status: Optional[AppointmentStatus] = None
    type: Optional[AppointmentType] = None
    description: Optional[str] = None
    symptoms: Optional[Union[str, List[str]]] = None
    diagnosis: Optional[str] = None
    prescription: Optional[str] = None
    notes: Optional[str] = None
    follow_up_date: Optional[Day] = None
    payment_status: Optional[PaymentStatus] = None
    payment_amount: Optional[float] = Field(None, ge=0)

    # Accepted so that reassignment attempts are rejected explicitly
    doctor_id: Optional[int] = None
    patient_id: Optional[int] = None


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: int
    date: dt.date
    time: str
    status: AppointmentStatus
    type: AppointmentType
    description: Optional[str] = None
    symptoms: str = ""
    diagnosis: Optional[str] = None
    prescription: Optional[str] = None
    notes: Optional[str] = None
    follow_up_date: Optional[dt.date] = None
    payment_status: PaymentStatus
    payment_amount: Optional[float] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


class AvailableSlotsResponse(BaseModel):
    doctor_id: int
    date: dt.date
    slots: List[str]


class Pagination(BaseModel):
    total: int
    page: int
    pages: int


class DoctorAppointmentsResponse(BaseModel):
    appointments: List[AppointmentResponse]
    pagination: Pagination
