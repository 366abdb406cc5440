import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from app.core.exceptions import (
    AuthorizationError, ClosedDay, NotFoundError, SlotTaken, ValidationError
)
from app.core.security import CallerIdentity, UserRole
from app.models.appointment import (
    Appointment, AppointmentStatus, AppointmentType, PaymentStatus
)
from app.schemas.appointment import AppointmentCreate
from app.services.booking_service import BookingService, normalize_symptoms, resolve_type

from tests.conftest import MONDAY, SATURDAY, PATIENT_USER_ID, ADMIN_USER_ID, DOCTOR_USER_ID


def count_appointments(db):
    return db.query(Appointment).count()


class TestNormalization:

    def test_symptom_list_joined(self):
        assert normalize_symptoms(["fever", "cough"]) == "fever, cough"

    def test_symptoms_absent(self):
        assert normalize_symptoms(None) == ""
        assert normalize_symptoms([]) == ""

    def test_symptom_string_kept(self):
        assert normalize_symptoms("headache") == "headache"

    def test_unknown_type_defaults_to_consultation(self):
        assert resolve_type("surgery") == AppointmentType.CONSULTATION
        assert resolve_type(None) == AppointmentType.CONSULTATION
        assert resolve_type("follow-up") == AppointmentType.FOLLOW_UP


class TestCreateAppointment:

    def test_defaults(self, db, doctor, patient):
        """New bookings are scheduled, pending, and charged the doctor's fee."""
        service = BookingService(db)
        appointment = service.create_appointment(
            patient.id, doctor.id, MONDAY, "10:00",
            {"symptoms": ["fever", "cough"], "type": "unknown", "description": "Checkup"}
        )

        assert appointment.id is not None
        assert appointment.status == AppointmentStatus.SCHEDULED
        assert appointment.payment_status == PaymentStatus.PENDING
        assert appointment.payment_amount == 150
        assert appointment.type == AppointmentType.CONSULTATION
        assert appointment.symptoms == "fever, cough"
        assert appointment.holds_slot is True

    def test_no_symptoms_stored_as_empty_string(self, db, doctor, patient):
        appointment = BookingService(db).create_appointment(
            patient.id, doctor.id, MONDAY, "10:00"
        )
        assert appointment.symptoms == ""

    def test_payment_amount_override(self, db, doctor, patient):
        appointment = BookingService(db).create_appointment(
            patient.id, doctor.id, MONDAY, "10:00", {"payment_amount": 75}
        )
        assert appointment.payment_amount == 75

    def test_time_is_normalized(self, db, doctor, patient):
        appointment = BookingService(db).create_appointment(
            patient.id, doctor.id, MONDAY, "9:30"
        )
        assert appointment.time == "09:30"

    def test_booked_slot_removed_from_available(self, db, doctor, patient):
        service = BookingService(db)
        assert len(service.list_available_slots(doctor.id, MONDAY)) == 16

        service.create_appointment(patient.id, doctor.id, MONDAY, "10:00")
        slots = service.list_available_slots(doctor.id, MONDAY)

        assert "10:00" not in slots
        assert len(slots) == 15

    def test_second_booking_same_slot(self, db, doctor, patient, other_patient):
        service = BookingService(db)
        service.create_appointment(patient.id, doctor.id, MONDAY, "10:00")

        with pytest.raises(SlotTaken):
            service.create_appointment(other_patient.id, doctor.id, MONDAY, "10:00")
        assert count_appointments(db) == 1

    def test_same_time_other_doctor_is_free(self, db, doctor, other_doctor, patient):
        service = BookingService(db)
        service.create_appointment(patient.id, doctor.id, MONDAY, "10:00")
        service.create_appointment(patient.id, other_doctor.id, MONDAY, "10:00")
        assert count_appointments(db) == 2

    def test_unknown_doctor(self, db, patient):
        with pytest.raises(NotFoundError):
            BookingService(db).create_appointment(patient.id, 999, MONDAY, "10:00")

    def test_unknown_patient(self, db, doctor):
        with pytest.raises(NotFoundError):
            BookingService(db).create_appointment(999, doctor.id, MONDAY, "10:00")
        assert count_appointments(db) == 0

    def test_closed_day(self, db, doctor, patient):
        with pytest.raises(ClosedDay):
            BookingService(db).create_appointment(patient.id, doctor.id, SATURDAY, "10:00")
        assert count_appointments(db) == 0

    @pytest.mark.parametrize("time", ["08:30", "17:00", "10:15", "bad"])
    def test_time_outside_slot_grid(self, db, doctor, patient, time):
        with pytest.raises(ValidationError):
            BookingService(db).create_appointment(patient.id, doctor.id, MONDAY, time)
        assert count_appointments(db) == 0

    @pytest.mark.parametrize("status", [AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW])
    def test_released_slot_can_be_rebooked(self, db, doctor, patient, other_patient, status):
        service = BookingService(db)
        first = service.create_appointment(patient.id, doctor.id, MONDAY, "10:00")
        first.status = status
        db.commit()

        assert first.holds_slot is None
        assert "10:00" in service.list_available_slots(doctor.id, MONDAY)

        second = service.create_appointment(other_patient.id, doctor.id, MONDAY, "10:00")
        assert second.status == AppointmentStatus.SCHEDULED

    def test_completed_appointment_keeps_slot(self, db, doctor, patient, other_patient):
        service = BookingService(db)
        first = service.create_appointment(patient.id, doctor.id, MONDAY, "10:00")
        first.status = AppointmentStatus.COMPLETED
        db.commit()

        with pytest.raises(SlotTaken):
            service.create_appointment(other_patient.id, doctor.id, MONDAY, "10:00")


class TestBookingRace:

    def test_stale_read_is_caught_by_constraint(
        self, session_factory, doctor, patient, other_patient, monkeypatch
    ):
        """The insert itself rejects a double booking when the read was stale."""
        first_session = session_factory()
        BookingService(first_session).create_appointment(
            patient.id, doctor.id, MONDAY, "10:00"
        )
        first_session.close()

        monkeypatch.setattr(BookingService, "active_bookings", lambda self, *a, **kw: [])

        second_session = session_factory()
        with pytest.raises(SlotTaken):
            BookingService(second_session).create_appointment(
                other_patient.id, doctor.id, MONDAY, "10:00"
            )
        assert count_appointments(second_session) == 1
        second_session.close()

    def test_concurrent_bookings_one_wins(self, session_factory, doctor, patient, other_patient):
        """Two simultaneous bookings of one slot: one succeeds, one gets SlotTaken."""
        barrier = threading.Barrier(2)

        def book(patient_id):
            session = session_factory()
            try:
                barrier.wait()
                BookingService(session).create_appointment(
                    patient_id, doctor.id, MONDAY, "10:00"
                )
                return "booked"
            except SlotTaken:
                return "taken"
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(book, [patient.id, other_patient.id]))

        assert sorted(results) == ["booked", "taken"]

        session = session_factory()
        assert count_appointments(session) == 1
        session.close()


class TestBookForCaller:

    def test_patient_books_for_self(self, db, doctor, patient):
        caller = CallerIdentity(id=PATIENT_USER_ID, role=UserRole.PATIENT)
        booking = AppointmentCreate(doctor_id=doctor.id, date=MONDAY, time="11:00")

        appointment = BookingService(db).book_appointment(caller, booking)
        assert appointment.patient_id == patient.id

    def test_patient_cannot_book_for_others(self, db, doctor, patient, other_patient):
        caller = CallerIdentity(id=PATIENT_USER_ID, role=UserRole.PATIENT)
        booking = AppointmentCreate(
            doctor_id=doctor.id, patient_id=other_patient.id, date=MONDAY, time="11:00"
        )
        with pytest.raises(AuthorizationError):
            BookingService(db).book_appointment(caller, booking)

    def test_patient_cannot_set_payment_amount(self, db, doctor, patient):
        caller = CallerIdentity(id=PATIENT_USER_ID, role=UserRole.PATIENT)
        booking = AppointmentCreate(
            doctor_id=doctor.id, date=MONDAY, time="11:00", payment_amount=1
        )
        with pytest.raises(AuthorizationError):
            BookingService(db).book_appointment(caller, booking)
        assert count_appointments(db) == 0

    def test_admin_books_for_patient_with_override(self, db, doctor, patient):
        caller = CallerIdentity(id=ADMIN_USER_ID, role=UserRole.ADMIN)
        booking = AppointmentCreate(
            doctor_id=doctor.id, patient_id=patient.id, date=MONDAY,
            time="11:00", payment_amount=0
        )
        appointment = BookingService(db).book_appointment(caller, booking)
        assert appointment.payment_amount == 0

    def test_admin_must_name_patient(self, db, doctor):
        caller = CallerIdentity(id=ADMIN_USER_ID, role=UserRole.ADMIN)
        booking = AppointmentCreate(doctor_id=doctor.id, date=MONDAY, time="11:00")
        with pytest.raises(ValidationError):
            BookingService(db).book_appointment(caller, booking)

    def test_doctor_cannot_book(self, db, doctor):
        caller = CallerIdentity(id=DOCTOR_USER_ID, role=UserRole.DOCTOR)
        booking = AppointmentCreate(doctor_id=doctor.id, date=MONDAY, time="11:00")
        with pytest.raises(AuthorizationError):
            BookingService(db).book_appointment(caller, booking)

    def test_datetime_truncated_to_day(self):
        booking = AppointmentCreate(doctor_id=1, date="2026-10-19T15:45:00Z", time="10:00")
        assert booking.date == MONDAY
