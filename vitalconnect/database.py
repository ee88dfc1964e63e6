from sqlalchemy import (
    create_engine, Column, Integer, String, DateTime, Date, Boolean, Text, JSON, Float,
    ForeignKey, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import sessionmaker, relationship, declarative_base
from datetime import datetime

from .config import DATABASE_URL

# Create engine with appropriate connection args
connect_args = {"check_same_thread": False} if "sqlite" in DATABASE_URL else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

ROLES = ("admin", "doctor", "patient")
DOCTOR_STATUSES = ("pending", "approved", "rejected")
APPOINTMENT_STATUSES = ("pending", "confirmed", "completed", "cancelled")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)  # stored lower-case
    hashed_password = Column(String, nullable=False)
    role = Column(String, default="patient", nullable=False)  # "admin", "doctor", "patient"
    phone = Column(String)
    image = Column(String)  # Profile picture URL

    # Email verification (doctors are also verified on approval)
    is_verified = Column(Boolean, default=False, nullable=False)

    # Tokens issued before this instant are rejected
    password_changed_at = Column(DateTime)
    # Id of the one outstanding reset link; cleared when the password changes
    password_reset_token_id = Column(String)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # One-to-one profiles
    doctor_profile = relationship(
        "Doctor", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    patient_profile = relationship(
        "Patient", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )


class Doctor(Base):
    """
    Doctor profile - public directory entry owned by a user with role "doctor"
    """
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False, index=True)

    # Practice information
    specialization = Column(String, nullable=False, index=True)
    experience = Column(Integer, nullable=False)  # Years
    consultation_fee = Column(Float, nullable=False)
    bio = Column(Text)

    # Clinic (exposed as a nested "clinic" object)
    clinic_name = Column(String)
    clinic_address = Column(String)
    clinic_city = Column(String, index=True)
    clinic_lat = Column(Float)
    clinic_lng = Column(Float)

    # Availability
    available_days = Column(JSON, default=list)  # ["Mon", "Wed"]
    available_slots = Column(JSON, default=list)  # ["09:00-12:00"]

    # Derived from reviews, never written directly
    rating = Column(Float, default=0, nullable=False)
    reviews_count = Column(Integer, default=0, nullable=False)

    status = Column(String, default="pending", nullable=False)  # pending, approved, rejected

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="doctor_profile")
    appointments = relationship("Appointment", back_populates="doctor", cascade="all, delete-orphan")
    prescriptions = relationship("Prescription", back_populates="doctor", cascade="all, delete-orphan")
    reviews = relationship("Review", back_populates="doctor", cascade="all, delete-orphan")

    @property
    def clinic(self):
        return {
            "name": self.clinic_name,
            "address": self.clinic_address,
            "city": self.clinic_city,
            "lat": self.clinic_lat,
            "lng": self.clinic_lng,
        }


class Patient(Base):
    """
    Patient profile - medical details owned by a user with role "patient"
    """
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False, index=True)

    age = Column(Integer)
    gender = Column(String)
    blood_type = Column(String)
    medical_history = Column(JSON, default=list)  # ["Asthma", "Diabetes"]
    phone = Column(String)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="patient_profile")
    appointments = relationship("Appointment", back_populates="patient", cascade="all, delete-orphan")
    prescriptions = relationship("Prescription", back_populates="patient", cascade="all, delete-orphan")
    reviews = relationship("Review", back_populates="patient", cascade="all, delete-orphan")


class Appointment(Base):
    """
    Appointment - a patient's booking with a doctor
    """
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)

    date = Column(Date, nullable=False, index=True)
    time_slot = Column(String, nullable=False)  # "09:00-09:30"
    booking_fee = Column(Float)
    notes = Column(Text)

    status = Column(String, default="pending", nullable=False)  # pending, confirmed, completed, cancelled

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    doctor = relationship("Doctor", back_populates="appointments")
    patient = relationship("Patient", back_populates="appointments")
    prescriptions = relationship("Prescription", back_populates="appointment", cascade="all, delete-orphan")


class Prescription(Base):
    """
    Prescription - medications issued by a doctor for one appointment
    """
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)

    medications = Column(JSON, default=list)  # [{name, dosage, frequency, duration}]
    notes = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    appointment = relationship("Appointment", back_populates="prescriptions")
    doctor = relationship("Doctor", back_populates="prescriptions")
    patient = relationship("Patient", back_populates="prescriptions")


class Review(Base):
    """
    Review - one rating per patient per doctor
    """
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("doctor_id", "patient_id", name="uq_reviews_doctor_patient"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)

    rating = Column(Integer, nullable=False)
    comment = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    doctor = relationship("Doctor", back_populates="reviews")
    patient = relationship("Patient", back_populates="reviews")


def create_tables():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
