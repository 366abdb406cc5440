from datetime import date
from typing import Dict, FrozenSet, Iterable, List, Optional
import logging
import math

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import (
    AuthorizationError, NotFoundError, SlotTaken, StateTransitionError, ValidationError
)
from ..core.permissions import AUTHORIZATION_MATRIX, IMMUTABLE_FIELDS, Permission, denied_fields
from ..core.security import CallerIdentity, UserRole
from ..models.appointment import Appointment, AppointmentStatus, ACTIVE_STATUSES
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..schemas.appointment import AppointmentUpdate
from .booking_service import BookingService, normalize_symptoms
from .slot_calendar import normalize_time

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

# Fields that cannot be cleared with an explicit null
REQUIRED_FIELDS = frozenset({"date", "time", "status", "type", "payment_status"})


class AppointmentStateMachine:
    """Decides whether a role may apply a patch to an appointment.

    ``plan`` either returns the exact changes to apply or raises; it never
    touches the appointment itself.
    """

    def __init__(self, matrix: Iterable[Permission] = AUTHORIZATION_MATRIX):
        self.matrix = tuple(matrix)

    @staticmethod
    def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
        return target in TRANSITIONS[current]

    @staticmethod
    def coerce(patch: dict) -> dict:
        """Validate a raw patch, keeping only the keys it names."""
        try:
            return AppointmentUpdate.model_validate(patch).model_dump(exclude_unset=True)
        except PydanticValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in error['loc']) or 'patch'}: {error['msg']}"
                for error in exc.errors()
            )
            raise ValidationError(f"Invalid update: {problems}")

    def plan(self, appointment: Appointment, role: UserRole, patch: dict) -> dict:
        changes = self.coerce(patch)

        reassigned = sorted(IMMUTABLE_FIELDS & changes.keys())
        if reassigned:
            raise AuthorizationError(
                f"Reassigning {', '.join(reassigned)} is not permitted"
            )

        missing = sorted(f for f in REQUIRED_FIELDS & changes.keys() if changes[f] is None)
        if missing:
            raise ValidationError(f"Fields cannot be empty: {', '.join(missing)}")

        current = AppointmentStatus(appointment.status)
        if "status" in changes:
            target = AppointmentStatus(changes["status"])
            if target == current:
                changes.pop("status")
            elif not self.can_transition(current, target):
                raise StateTransitionError(
                    f"Cannot change status from '{current.value}' to '{target.value}'"
                )
            else:
                changes["status"] = target

        denied = denied_fields(role, current, changes, self.matrix)
        if denied:
            raise AuthorizationError(
                f"Role '{role.value}' may not modify {', '.join(denied)} "
                f"on a '{current.value}' appointment"
            )

        if "symptoms" in changes:
            changes["symptoms"] = normalize_symptoms(changes["symptoms"])

        return changes


class AppointmentService:
    def __init__(
        self,
        db: Session,
        booking: Optional[BookingService] = None,
        state_machine: Optional[AppointmentStateMachine] = None
    ):
        self.db = db
        self.booking = booking or BookingService(db)
        self.state_machine = state_machine or AppointmentStateMachine()

    # Caller resolution
    def _patient_for(self, caller: CallerIdentity) -> Optional[Patient]:
        return self.db.query(Patient).filter(Patient.user_id == caller.id).first()

    def _doctor_for(self, caller: CallerIdentity) -> Optional[Doctor]:
        return self.db.query(Doctor).filter(Doctor.user_id == caller.id).first()

    def _owns(self, appointment: Appointment, caller: CallerIdentity) -> bool:
        if caller.role == UserRole.ADMIN:
            return True
        if caller.role == UserRole.PATIENT:
            patient = self._patient_for(caller)
            return patient is not None and appointment.patient_id == patient.id
        if caller.role == UserRole.DOCTOR:
            doctor = self._doctor_for(caller)
            return doctor is not None and appointment.doctor_id == doctor.id
        return False

    def _get(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    # Operations
    def get_appointment(self, appointment_id: int, caller: CallerIdentity) -> Appointment:
        appointment = self._get(appointment_id)
        if caller.role != UserRole.DOCTOR and not self._owns(appointment, caller):
            raise AuthorizationError("Not authorized to view this appointment")
        return appointment

    def update_appointment(
        self,
        appointment_id: int,
        caller: CallerIdentity,
        patch: dict
    ) -> Appointment:
        """Apply ``patch`` in full or not at all."""
        appointment = self._get(appointment_id)
        if not self._owns(appointment, caller):
            raise AuthorizationError("Not authorized to update this appointment")

        changes = self.state_machine.plan(appointment, caller.role, patch)

        # Released appointments hold no slot, so only active targets are checked
        moved = "date" in changes or "time" in changes
        if moved and changes.get("status", appointment.status) not in ACTIVE_STATUSES:
            if "time" in changes:
                changes["time"] = normalize_time(changes["time"])
        elif moved:
            doctor = self.booking.get_doctor(appointment.doctor_id)
            changes["time"] = self.booking.ensure_slot_open(
                doctor,
                changes.get("date", appointment.date),
                changes.get("time", appointment.time),
                exclude_id=appointment.id,
            )

        previous_status = appointment.status
        for field, value in changes.items():
            setattr(appointment, field, value)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Reschedule race lost for appointment {appointment_id}")
            raise SlotTaken()

        self.db.refresh(appointment)
        if appointment.status != previous_status:
            logger.info(
                f"Appointment {appointment.id}: {previous_status.value} -> "
                f"{appointment.status.value} by {caller.role.value} {caller.id}"
            )
        return appointment

    def list_appointments(self, caller: CallerIdentity) -> List[Appointment]:
        query = self.db.query(Appointment)

        if caller.role == UserRole.PATIENT:
            patient = self._patient_for(caller)
            if not patient:
                return []
            query = query.filter(Appointment.patient_id == patient.id)
        elif caller.role == UserRole.DOCTOR:
            doctor = self._doctor_for(caller)
            if not doctor:
                return []
            query = query.filter(Appointment.doctor_id == doctor.id)

        return query.order_by(Appointment.date.desc(), Appointment.time.desc()).all()

    def list_doctor_appointments(
        self,
        doctor_id: int,
        caller: CallerIdentity,
        status: Optional[AppointmentStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 10
    ) -> dict:
        if caller.role != UserRole.ADMIN:
            doctor = self._doctor_for(caller) if caller.role == UserRole.DOCTOR else None
            if not doctor or doctor.id != doctor_id:
                raise AuthorizationError("Not authorized to view these appointments")

        query = self.db.query(Appointment).filter(Appointment.doctor_id == doctor_id)
        if status:
            query = query.filter(Appointment.status == status)
        if start_date:
            query = query.filter(Appointment.date >= start_date)
        if end_date:
            query = query.filter(Appointment.date <= end_date)

        total = query.count()
        appointments = (
            query.order_by(Appointment.date.desc(), Appointment.time.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return {
            "appointments": appointments,
            "pagination": {
                "total": total,
                "page": page,
                "pages": math.ceil(total / limit),
            },
        }

    def delete_appointment(self, appointment_id: int, caller: CallerIdentity) -> None:
        if caller.role != UserRole.ADMIN:
            raise AuthorizationError("Not authorized to delete appointments")

        appointment = self._get(appointment_id)
        self.db.delete(appointment)
        self.db.commit()
        logger.info(f"Appointment {appointment_id} deleted by admin {caller.id}")
