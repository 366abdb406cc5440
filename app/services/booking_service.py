from datetime import date
from typing import List, Optional, Union
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import AuthorizationError, NotFoundError, SlotTaken, ValidationError
from ..core.security import CallerIdentity, UserRole
from ..models.appointment import (
    Appointment, AppointmentStatus, AppointmentType, PaymentStatus, ACTIVE_STATUSES
)
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..schemas.appointment import AppointmentCreate
from .slot_calendar import SlotCalendar, normalize_time

logger = logging.getLogger(__name__)


def normalize_symptoms(symptoms: Union[str, List[str], None]) -> str:
    """Symptoms are stored as one comma separated string."""
    if not symptoms:
        return ""
    if isinstance(symptoms, str):
        return symptoms
    return ", ".join(str(s) for s in symptoms)


def resolve_type(value: Optional[str]) -> AppointmentType:
    try:
        return AppointmentType(value)
    except ValueError:
        return AppointmentType.CONSULTATION


class BookingService:
    def __init__(self, db: Session, calendar: Optional[SlotCalendar] = None):
        self.db = db
        self.calendar = calendar or SlotCalendar()

    # Lookups
    def get_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if not doctor:
            raise NotFoundError("Doctor not found")
        return doctor

    def get_patient(self, patient_id: int) -> Patient:
        patient = self.db.query(Patient).filter(Patient.id == patient_id).first()
        if not patient:
            raise NotFoundError("Patient not found")
        return patient

    def active_bookings(
        self,
        doctor_id: int,
        day: date,
        exclude_id: Optional[int] = None
    ) -> List[str]:
        """Slot times held by active appointments for a doctor on a day."""
        query = self.db.query(Appointment.time).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.date == day,
            Appointment.status.in_(list(ACTIVE_STATUSES))
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return [row.time for row in query.all()]

    def ensure_slot_open(
        self,
        doctor: Doctor,
        day: date,
        time: str,
        exclude_id: Optional[int] = None
    ) -> str:
        """Validate that ``time`` is a slot of ``day`` and not actively held.

        This read is advisory; the unique constraint on the appointments
        table decides races at commit time.
        """
        time = normalize_time(time)
        if time not in self.calendar.generate_slots(doctor, day):
            raise ValidationError(
                f"{time} is not a bookable slot on {day.isoformat()}"
            )
        if time in self.active_bookings(doctor.id, day, exclude_id=exclude_id):
            raise SlotTaken()
        return time

    # Operations
    def list_available_slots(self, doctor_id: int, day: date) -> List[str]:
        doctor = self.get_doctor(doctor_id)
        return self.calendar.available_slots(
            doctor, day, self.active_bookings(doctor.id, day)
        )

    def create_appointment(
        self,
        patient_id: int,
        doctor_id: int,
        day: date,
        time: str,
        meta: Optional[dict] = None
    ) -> Appointment:
        """Book ``time`` on ``day`` with a doctor for a patient.

        ``meta`` may carry type, description, symptoms and payment_amount.
        Nothing is written unless every check passes.
        """
        meta = meta or {}
        doctor = self.get_doctor(doctor_id)
        self.get_patient(patient_id)
        time = self.ensure_slot_open(doctor, day, time)

        payment_amount = meta.get("payment_amount")
        if payment_amount is None:
            payment_amount = doctor.fee

        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor.id,
            date=day,
            time=time,
            status=AppointmentStatus.SCHEDULED,
            type=resolve_type(meta.get("type")),
            description=meta.get("description"),
            symptoms=normalize_symptoms(meta.get("symptoms")),
            payment_status=PaymentStatus.PENDING,
            payment_amount=payment_amount,
        )

        self.db.add(appointment)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                f"Booking race lost for doctor {doctor.id} on {day} at {time}"
            )
            raise SlotTaken()

        self.db.refresh(appointment)
        logger.info(
            f"Booked appointment {appointment.id}: doctor {doctor.id}, "
            f"patient {patient_id}, {day} {time}"
        )
        return appointment

    def book_appointment(
        self,
        caller: CallerIdentity,
        booking: AppointmentCreate
    ) -> Appointment:
        """Resolve the patient for the caller and book."""
        if caller.role == UserRole.PATIENT:
            patient = self.db.query(Patient).filter(
                Patient.user_id == caller.id
            ).first()
            if not patient:
                raise NotFoundError("Patient not found")
            if booking.patient_id is not None and booking.patient_id != patient.id:
                raise AuthorizationError("Patients can only book for themselves")
            if booking.payment_amount is not None:
                raise AuthorizationError("Only admins can set the payment amount")
            patient_id = patient.id
        elif caller.role == UserRole.ADMIN:
            if booking.patient_id is None:
                raise ValidationError("patient_id is required")
            patient_id = booking.patient_id
        else:
            raise AuthorizationError("Only patients and admins can book appointments")

        return self.create_appointment(
            patient_id,
            booking.doctor_id,
            booking.date,
            booking.time,
            meta={
                "type": booking.type,
                "description": booking.description,
                "symptoms": booking.symptoms,
                "payment_amount": booking.payment_amount,
            },
        )
