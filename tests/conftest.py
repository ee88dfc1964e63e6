"""
Shared pytest fixtures.

Each test gets a fresh in-memory SQLite database wired into the app through
`dependency_overrides`, one user per role (with doctor/patient profiles and
bearer headers) and a couple of booked appointments.
"""

import os
from datetime import date, datetime, timedelta
from typing import Iterator

# config.py reads the environment at import time, so this runs before any app import
os.environ.update(
    DATABASE_URL="sqlite:///:memory:",
    ENVIRONMENT="testing",
    LOG_LEVEL="WARNING",
    LOG_OUTPUT="stdout",
    SMTP_HOST="",
)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from vitalconnect.auth import create_access_token, get_password_hash
from vitalconnect.database import Appointment, Base, Doctor, Patient, User, get_db
from vitalconnect.main import app as vitalconnect_app


# =============================================================================
# DATABASE & CLIENT
# =============================================================================

@pytest.fixture
def test_db() -> Iterator[Session]:
    """A session on a private in-memory database (StaticPool keeps one connection)."""
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(test_db) -> Iterator[TestClient]:
    """TestClient whose requests share `test_db`; server errors come back as 500 responses."""
    vitalconnect_app.dependency_overrides[get_db] = lambda: test_db
    try:
        with TestClient(vitalconnect_app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        vitalconnect_app.dependency_overrides.clear()


# =============================================================================
# USERS & PROFILES
# =============================================================================

def make_user(db: Session, name: str, email: str, role: str, password: str = "Secret123", verified: bool = True) -> User:
    user = User(
        name=name,
        email=email,
        hashed_password=get_password_hash(password),
        role=role,
        is_verified=verified,
        created_at=datetime.utcnow(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_doctor(db: Session, user: User, **overrides) -> Doctor:
    fields = dict(
        specialization="Cardiology",
        experience=10,
        consultation_fee=300.0,
        clinic_name="Heart Clinic",
        clinic_city="Cairo",
        status="approved",
    )
    fields.update(overrides)
    doctor = Doctor(user_id=user.id, **fields)
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


def make_patient(db: Session, user: User, **overrides) -> Patient:
    fields = dict(age=30, gender="female", blood_type="O+", medical_history=["Asthma"])
    fields.update(overrides)
    patient = Patient(user_id=user.id, **fields)
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


def token_for_user(user: User) -> str:
    return create_access_token({"id": user.id, "role": user.role}, expires_delta=timedelta(minutes=30))


def bearer(user: User) -> dict:
    return {"Authorization": f"Bearer {token_for_user(user)}"}


@pytest.fixture
def admin_user(test_db) -> User:
    return make_user(test_db, "Admin User", "admin@vitalconnect.app", "admin", password="AdminPass123")


@pytest.fixture
def doctor_user(test_db) -> User:
    return make_user(test_db, "Dr. Amal Hassan", "amal@clinic.com", "doctor", password="DoctorPass123")


@pytest.fixture
def other_doctor_user(test_db) -> User:
    return make_user(test_db, "Dr. Omar Nabil", "omar@clinic.com", "doctor")


@pytest.fixture
def patient_user(test_db) -> User:
    return make_user(test_db, "Sara Ali", "sara@example.com", "patient", password="PatientPass123")


@pytest.fixture
def other_patient_user(test_db) -> User:
    return make_user(test_db, "Mona Adel", "mona@example.com", "patient")


@pytest.fixture
def doctor(test_db, doctor_user) -> Doctor:
    return make_doctor(test_db, doctor_user)


@pytest.fixture
def other_doctor(test_db, other_doctor_user) -> Doctor:
    return make_doctor(
        test_db, other_doctor_user, specialization="Dermatology", consultation_fee=200.0, clinic_city="Alexandria"
    )


@pytest.fixture
def patient(test_db, patient_user) -> Patient:
    return make_patient(test_db, patient_user)


@pytest.fixture
def other_patient(test_db, other_patient_user) -> Patient:
    return make_patient(test_db, other_patient_user, gender="female", blood_type="A-")


# =============================================================================
# BEARER HEADERS
# =============================================================================

@pytest.fixture
def admin_headers(admin_user) -> dict:
    return bearer(admin_user)


@pytest.fixture
def doctor_headers(doctor, doctor_user) -> dict:
    return bearer(doctor_user)


@pytest.fixture
def other_doctor_headers(other_doctor, other_doctor_user) -> dict:
    return bearer(other_doctor_user)


@pytest.fixture
def patient_headers(patient, patient_user) -> dict:
    return bearer(patient_user)


@pytest.fixture
def other_patient_headers(other_patient, other_patient_user) -> dict:
    return bearer(other_patient_user)


@pytest.fixture
def expired_token(patient_user) -> str:
    return create_access_token(
        {"id": patient_user.id, "role": patient_user.role},
        expires_delta=timedelta(minutes=-10),  # Expired 10 minutes ago
    )


# =============================================================================
# BOOKINGS
# =============================================================================

@pytest.fixture
def appointment(test_db, doctor, patient) -> Appointment:
    """A pending appointment between `doctor` and `patient`."""
    appt = Appointment(
        doctor_id=doctor.id,
        patient_id=patient.id,
        date=date(2030, 5, 20),
        time_slot="09:00-09:30",
        booking_fee=doctor.consultation_fee,
    )
    test_db.add(appt)
    test_db.commit()
    test_db.refresh(appt)
    return appt


@pytest.fixture
def other_appointment(test_db, other_doctor, other_patient) -> Appointment:
    """An appointment that belongs to neither `doctor` nor `patient`."""
    appt = Appointment(
        doctor_id=other_doctor.id,
        patient_id=other_patient.id,
        date=date(2030, 6, 1),
        time_slot="10:00-10:30",
        booking_fee=other_doctor.consultation_fee,
    )
    test_db.add(appt)
    test_db.commit()
    test_db.refresh(appt)
    return appt
