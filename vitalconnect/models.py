import re
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from .query_filters import project

PHONE_PATTERN = re.compile(r"^\+?\d{10,15}$")
MIN_PASSWORD_LENGTH = 6
SIGNUP_ROLES = ("patient", "doctor")


def _check_phone(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    value = value.strip()
    if not PHONE_PATTERN.match(value):
        raise ValueError("Please provide a valid phone number")
    return value


def _check_password_pair(password: str, password_confirm: str):
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if password != password_confirm:
        raise ValueError("Passwords are not the same")


# =============================================================================
# USERS & AUTH
# =============================================================================

class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    password_confirm: str
    phone: Optional[str] = None
    image: Optional[str] = None
    role: Optional[str] = "patient"

    @field_validator("email")
    @classmethod
    def lower_email(cls, value):
        return value.lower()

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, value):
        return _check_phone(value)

    @field_validator("role")
    @classmethod
    def signup_role(cls, value):
        # Admins are never created through signup
        return value if value in SIGNUP_ROLES else "patient"

    @model_validator(mode="after")
    def passwords_match(self):
        _check_password_pair(self.password, self.password_confirm)
        return self


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str
    password_confirm: str

    @model_validator(mode="after")
    def passwords_match(self):
        _check_password_pair(self.password, self.password_confirm)
        return self


class UpdatePasswordRequest(ResetPasswordRequest):
    password_current: str


class UpdateMeRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    image: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def no_password_fields(cls, data):
        if isinstance(data, dict) and ({"password", "password_confirm"} & set(data)):
            raise ValueError("This route is not for password updates. Please use /update-my-password.")
        return data

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, value):
        return _check_phone(value)


class AdminUserUpdate(UpdateMeRequest):
    role: Optional[Literal["admin", "doctor", "patient"]] = None
    is_verified: Optional[bool] = None


class UserBrief(BaseModel):
    id: int
    name: str
    email: str
    image: Optional[str] = None

    class Config:
        from_attributes = True


class UserResponse(UserBrief):
    role: str
    phone: Optional[str] = None
    is_verified: bool
    created_at: datetime
    updated_at: Optional[datetime] = None


# =============================================================================
# DOCTORS
# =============================================================================

class Clinic(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class DoctorCreate(BaseModel):
    specialization: str = Field(..., min_length=1)
    experience: int = Field(..., ge=0)
    consultation_fee: float = Field(..., ge=0)
    bio: Optional[str] = None
    clinic: Optional[Clinic] = None
    available_days: List[str] = []
    available_slots: List[str] = []


class DoctorUpdate(BaseModel):
    """Owner-editable fields; rating, reviews_count, status and user_id are not among them."""
    specialization: Optional[str] = Field(None, min_length=1)
    experience: Optional[int] = Field(None, ge=0)
    consultation_fee: Optional[float] = Field(None, ge=0)
    bio: Optional[str] = None
    clinic: Optional[Clinic] = None
    available_days: Optional[List[str]] = None
    available_slots: Optional[List[str]] = None


class DoctorStatusUpdate(BaseModel):
    status: Literal["pending", "approved", "rejected"]


class DoctorBrief(BaseModel):
    id: int
    specialization: str
    consultation_fee: float
    user: Optional[UserBrief] = None

    class Config:
        from_attributes = True


class DoctorResponse(BaseModel):
    id: int
    user_id: int
    user: Optional[UserBrief] = None
    specialization: str
    experience: int
    consultation_fee: float
    bio: Optional[str] = None
    clinic: Clinic
    available_days: List[str] = []
    available_slots: List[str] = []
    rating: float
    reviews_count: int
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("available_days", "available_slots", mode="before")
    @classmethod
    def none_as_empty(cls, value):
        return value or []


# =============================================================================
# PATIENTS
# =============================================================================

class PatientCreate(BaseModel):
    age: Optional[int] = Field(None, ge=0, le=150)
    gender: Optional[str] = None
    blood_type: Optional[str] = None
    medical_history: List[str] = []
    phone: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, value):
        return _check_phone(value)


class PatientUpdate(PatientCreate):
    medical_history: Optional[List[str]] = None


class PatientBrief(BaseModel):
    id: int
    user: Optional[UserBrief] = None

    class Config:
        from_attributes = True


class PatientResponse(BaseModel):
    id: int
    user_id: int
    user: Optional[UserBrief] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    blood_type: Optional[str] = None
    medical_history: List[str] = []
    phone: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("medical_history", mode="before")
    @classmethod
    def none_as_empty(cls, value):
        return value or []


# =============================================================================
# APPOINTMENTS
# =============================================================================

class AppointmentCreate(BaseModel):
    doctor_id: int
    patient_id: Optional[int] = None  # admin only, patients always book for themselves
    date: date
    time_slot: str = Field(..., min_length=1)
    booking_fee: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class AppointmentStatusUpdate(BaseModel):
    status: str


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    doctor: Optional[DoctorBrief] = None
    patient: Optional[PatientBrief] = None
    date: date
    time_slot: str
    booking_fee: Optional[float] = None
    notes: Optional[str] = None
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# PRESCRIPTIONS
# =============================================================================

class Medication(BaseModel):
    name: str = Field(..., min_length=1)
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None


class PrescriptionCreate(BaseModel):
    appointment_id: Optional[int] = None
    doctor_id: Optional[int] = None  # taken from the caller's profile for doctors
    patient_id: Optional[int] = None
    medications: List[Medication] = []
    notes: Optional[str] = None


class PrescriptionUpdate(BaseModel):
    medications: Optional[List[Medication]] = None
    notes: Optional[str] = None


class PrescriptionResponse(BaseModel):
    id: int
    appointment_id: int
    doctor_id: int
    patient_id: int
    doctor: Optional[DoctorBrief] = None
    patient: Optional[PatientBrief] = None
    medications: List[Medication] = []
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("medications", mode="before")
    @classmethod
    def none_as_empty(cls, value):
        return value or []


# =============================================================================
# REVIEWS
# =============================================================================

class ReviewCreate(BaseModel):
    doctor_id: int
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None


class ReviewResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    patient: Optional[PatientBrief] = None
    rating: int
    comment: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# RESPONSE HELPERS
# =============================================================================

def public_fields(schema) -> frozenset:
    """Top-level keys a list endpoint may project with `fields=`."""
    return frozenset(schema.model_fields)


def serialize(schema, obj, projection=None) -> Dict[str, Any]:
    """ORM row -> JSON-ready dict through a response schema, then projected."""
    document = schema.model_validate(obj).model_dump(mode="json")
    return project(document, projection)


def success(results: Optional[int] = None, **data) -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": "success"}
    if results is not None:
        body["results"] = results
    body["data"] = data
    return body


def paged(page, **data) -> Dict[str, Any]:
    """List envelope: `results` on this page, `total` across all pages."""
    body = success(results=len(page.items), **data)
    body.update(total=page.total, page=page.page, limit=page.limit)
    return body
