import os
import tempfile
from datetime import date, datetime, timedelta

import pytest

# Set testing environment before the app is imported
os.environ["TESTING"] = "1"
os.environ.setdefault(
    "TEST_DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.gettempdir(), 'hospital_scheduling_test.db')}"
)

import fakeredis
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.core.database import Base, get_db, get_redis
from app.main import app
from app.models.appointment import Appointment  # noqa: F401
from app.models.doctor import Doctor
from app.models.patient import Patient

MONDAY = date(2026, 10, 19)
SATURDAY = date(2026, 10, 24)

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]

DOCTOR_USER_ID = 100
OTHER_DOCTOR_USER_ID = 101
PATIENT_USER_ID = 200
OTHER_PATIENT_USER_ID = 201
ADMIN_USER_ID = 1


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def doctor(db):
    doctor = Doctor(
        user_id=DOCTOR_USER_ID,
        first_name="Gregory",
        last_name="House",
        specialization="Diagnostics",
        fee=150,
        working_days=WEEKDAYS,
        working_hours_start="09:00",
        working_hours_end="17:00",
    )
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


@pytest.fixture
def other_doctor(db):
    doctor = Doctor(
        user_id=OTHER_DOCTOR_USER_ID,
        first_name="Lisa",
        last_name="Cuddy",
        specialization="Endocrinology",
        fee=90,
        working_days=["Monday"],
        working_hours_start="10:00",
        working_hours_end="12:00",
    )
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


@pytest.fixture
def patient(db):
    patient = Patient(user_id=PATIENT_USER_ID, first_name="Test", last_name="Patient")
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


@pytest.fixture
def other_patient(db):
    patient = Patient(user_id=OTHER_PATIENT_USER_ID, first_name="Other", last_name="Patient")
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def client(session_factory, redis_client):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis_client

    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

    app.dependency_overrides.clear()


def create_access_token(user_id: int, role: str, token_type: str = "access") -> str:
    """Build a token shaped like the ones the auth service issues."""
    payload = {
        # python-jose requires a string subject
        "sub": str(user_id),
        "role": role,
        "exp": datetime.utcnow() + timedelta(minutes=30),
        "token_type": token_type,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth_headers(user_id: int, role: str) -> dict:
    token = create_access_token(user_id, role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def patient_headers():
    return auth_headers(PATIENT_USER_ID, "patient")


@pytest.fixture
def other_patient_headers():
    return auth_headers(OTHER_PATIENT_USER_ID, "patient")


@pytest.fixture
def doctor_headers():
    return auth_headers(DOCTOR_USER_ID, "doctor")


@pytest.fixture
def other_doctor_headers():
    return auth_headers(OTHER_DOCTOR_USER_ID, "doctor")


@pytest.fixture
def admin_headers():
    return auth_headers(ADMIN_USER_ID, "admin")
