"""
Authorization matrix for appointment writes.

Permissions are data, not branches: each entry of ``AUTHORIZATION_MATRIX``
grants one role write access to one field group while the appointment is in
one of the listed states. A write is allowed only if a matching entry exists.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, FrozenSet, Iterable, List, Tuple

from .security import UserRole
from ..models.appointment import AppointmentStatus


class FieldGroup(str, Enum):
    BOOKING_DETAILS = "booking_details"
    CANCELLATION = "cancellation"
    CLINICAL = "clinical"
    BILLING = "billing"


# Plain fields, keyed by their attribute name on Appointment
FIELD_GROUPS = {
    "date": FieldGroup.BOOKING_DETAILS,
    "time": FieldGroup.BOOKING_DETAILS,
    "type": FieldGroup.BOOKING_DETAILS,
    "description": FieldGroup.BOOKING_DETAILS,
    "symptoms": FieldGroup.BOOKING_DETAILS,
    "diagnosis": FieldGroup.CLINICAL,
    "prescription": FieldGroup.CLINICAL,
    "notes": FieldGroup.CLINICAL,
    "follow_up_date": FieldGroup.CLINICAL,
    "payment_status": FieldGroup.BILLING,
    "payment_amount": FieldGroup.BILLING,
}

# Status writes are grouped by their target status
STATUS_GROUPS = {
    AppointmentStatus.CANCELLED: FieldGroup.CANCELLATION,
    AppointmentStatus.COMPLETED: FieldGroup.CLINICAL,
    AppointmentStatus.NO_SHOW: FieldGroup.CLINICAL,
}

# Never writable through an update
IMMUTABLE_FIELDS = frozenset({"doctor_id", "patient_id"})


@dataclass(frozen=True)
class Permission:
    role: UserRole
    group: FieldGroup
    states: FrozenSet[AppointmentStatus]


_SCHEDULED_ONLY = frozenset({AppointmentStatus.SCHEDULED})

AUTHORIZATION_MATRIX: Tuple[Permission, ...] = (
    Permission(UserRole.PATIENT, FieldGroup.BOOKING_DETAILS, _SCHEDULED_ONLY),
    Permission(UserRole.PATIENT, FieldGroup.CANCELLATION, _SCHEDULED_ONLY),
    Permission(UserRole.DOCTOR, FieldGroup.CLINICAL, _SCHEDULED_ONLY),
    Permission(UserRole.ADMIN, FieldGroup.BOOKING_DETAILS, _SCHEDULED_ONLY),
    Permission(UserRole.ADMIN, FieldGroup.CANCELLATION, _SCHEDULED_ONLY),
    Permission(UserRole.ADMIN, FieldGroup.CLINICAL, _SCHEDULED_ONLY),
    Permission(UserRole.ADMIN, FieldGroup.BILLING, _SCHEDULED_ONLY),
)


def field_group(field: str, value: Any = None) -> FieldGroup:
    """Return the group a write to ``field`` belongs to."""
    if field == "status":
        return STATUS_GROUPS[AppointmentStatus(value)]
    return FIELD_GROUPS[field]


def is_permitted(
    role: UserRole,
    group: FieldGroup,
    state: AppointmentStatus,
    matrix: Iterable[Permission] = AUTHORIZATION_MATRIX,
) -> bool:
    return any(
        entry.role == role and entry.group == group and state in entry.states
        for entry in matrix
    )


def denied_fields(
    role: UserRole,
    state: AppointmentStatus,
    changes: dict,
    matrix: Iterable[Permission] = AUTHORIZATION_MATRIX,
) -> List[str]:
    """List every field in ``changes`` the role may not write in ``state``."""
    denied = []
    for field, value in changes.items():
        if field in IMMUTABLE_FIELDS:
            denied.append(field)
            continue
        if not is_permitted(role, field_group(field, value), state, matrix):
            denied.append(field)
    return denied
