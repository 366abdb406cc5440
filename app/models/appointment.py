from sqlalchemy import (
    Column, Integer, String, ForeignKey, Date, DateTime, Boolean, Text, Numeric,
    UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship, validates
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"

class AppointmentType(str, enum.Enum):
    REGULAR = "regular"
    FOLLOW_UP = "follow-up"
    EMERGENCY = "emergency"
    CONSULTATION = "consultation"

class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"

# Statuses that hold their slot
ACTIVE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.COMPLETED})

def _enum_values(enum_cls):
    return [member.value for member in enum_cls]

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # holds_slot is NULL once released; NULLs never collide, so only
        # active appointments compete for a (doctor, day, time) slot
        UniqueConstraint(
            "doctor_id", "date", "time", "holds_slot",
            name="uq_appointments_active_slot",
        ),
        Index("ix_appointments_doctor_date", "doctor_id", "date"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)

    # Slot
    date = Column(Date, nullable=False)
    time = Column(String(5), nullable=False)
    holds_slot = Column(Boolean, nullable=True, default=True)

    # Appointment details
    status = Column(
        SQLEnum(AppointmentStatus, values_callable=_enum_values, name="appointment_status"),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    type = Column(
        SQLEnum(AppointmentType, values_callable=_enum_values, name="appointment_type"),
        nullable=False,
        default=AppointmentType.CONSULTATION,
    )
    description = Column(Text, nullable=True)
    symptoms = Column(Text, nullable=False, default="")

    # Doctor-authored
    diagnosis = Column(Text, nullable=True)
    prescription = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    follow_up_date = Column(Date, nullable=True)

    # Billing
    payment_status = Column(
        SQLEnum(PaymentStatus, values_callable=_enum_values, name="payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_amount = Column(Numeric(10, 2), nullable=True)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")

    @validates("status")
    def _sync_slot_hold(self, key, value):
        value = AppointmentStatus(value)
        self.holds_slot = True if value in ACTIVE_STATUSES else None
        return value

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, date='{self.date}', time='{self.time}')>"
