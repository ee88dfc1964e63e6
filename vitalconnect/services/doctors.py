"""
Doctor directory: public listing/search plus owner and admin maintenance.
"""

from datetime import datetime
from typing import Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..database import Doctor, User
from ..errors import ConflictError, NotFoundError, error_from_integrity
from ..models import DoctorCreate, DoctorResponse, DoctorStatusUpdate, DoctorUpdate, public_fields, serialize
from ..permissions import DOCTOR, AccessPolicy, Principal
from ..query_filters import FieldSpec, Page, ResourceQuery, compile_query, contains, fetch_page
from ..structured_logging import get_logger

logger = get_logger("services.doctors")


def match_user_name(term: str):
    """Doctors whose owning user's name contains `term`."""
    return Doctor.user_id.in_(select(User.id).where(contains(User.name, term)))


DOCTOR_QUERY = ResourceQuery(
    name="doctors",
    model=Doctor,
    fields={
        "specialization": FieldSpec("specialization"),
        "experience": FieldSpec("experience", int),
        "consultation_fee": FieldSpec("consultation_fee", float),
        "rating": FieldSpec("rating", float),
        "reviews_count": FieldSpec("reviews_count", int),
        "status": FieldSpec("status"),
        "bio": FieldSpec("bio"),
        "user_id": FieldSpec("user_id", int),
        "clinic.name": FieldSpec("clinic_name"),
        "clinic.address": FieldSpec("clinic_address"),
        "clinic.city": FieldSpec("clinic_city"),
        "created_at": FieldSpec("created_at", datetime),
    },
    default_limit=100,
    lookups={"name": match_user_name},
    search=("name", "specialization", "clinic.city", "clinic.address"),
    projectable=public_fields(DoctorResponse),
)

REQUIRED_FIELDS = {"specialization", "experience", "consultation_fee"}

CLINIC_COLUMNS = {
    "name": "clinic_name",
    "address": "clinic_address",
    "city": "clinic_city",
    "lat": "clinic_lat",
    "lng": "clinic_lng",
}


def _apply_clinic(doctor: Doctor, clinic: dict):
    for key, value in clinic.items():
        setattr(doctor, CLINIC_COLUMNS[key], value)


class DoctorService:
    def __init__(self, db: Session, policy: Optional[AccessPolicy] = None):
        self.db = db
        self.policy = policy or AccessPolicy(db)

    def _query(self):
        return self.db.query(Doctor).options(selectinload(Doctor.user))

    def _get(self, doctor_id: int) -> Doctor:
        doctor = self._query().filter(Doctor.id == doctor_id).first()
        if doctor is None:
            raise NotFoundError("Doctor not found")
        return doctor

    def list(self, raw: Mapping[str, str], principal: Optional[Principal] = None) -> Page:
        plan = compile_query(raw, DOCTOR_QUERY)
        page = fetch_page(self._query(), plan, DOCTOR_QUERY)
        page.items = [serialize(DoctorResponse, doctor, plan.projection) for doctor in page.items]
        return page

    def get(self, doctor_id: int, principal: Optional[Principal] = None) -> dict:
        doctor = self._get(doctor_id)
        self.policy.ensure_can_view(principal, doctor)
        return serialize(DoctorResponse, doctor)

    def create(self, payload: DoctorCreate, principal: Principal) -> dict:
        self.policy.ensure_can_create_profile(principal, DOCTOR)
        if self.policy.find_doctor_profile(principal) is not None:
            raise ConflictError(
                "Doctor profile already exists",
                field_errors={"user_id": "Duplicate value for 'user_id'. Please use another value."},
            )

        data = payload.model_dump(exclude={"clinic"})
        doctor = Doctor(user_id=principal.id, **data)
        if payload.clinic is not None:
            _apply_clinic(doctor, payload.clinic.model_dump())

        self.db.add(doctor)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise error_from_integrity(e)
        self.db.refresh(doctor)

        logger.info("Doctor profile created", extra={"doctor_id": doctor.id})
        return serialize(DoctorResponse, doctor)

    def update(self, doctor_id: int, payload: DoctorUpdate, principal: Principal) -> dict:
        doctor = self._get(doctor_id)
        self.policy.ensure_can_modify(principal, doctor, "Not authorized to update this doctor profile")

        changes = payload.model_dump(exclude_unset=True, exclude={"clinic"})
        for key, value in changes.items():
            if value is None and key in REQUIRED_FIELDS:
                continue
            setattr(doctor, key, value)
        if payload.clinic is not None:
            _apply_clinic(doctor, payload.clinic.model_dump(exclude_unset=True))

        self.db.commit()
        self.db.refresh(doctor)
        return serialize(DoctorResponse, doctor)

    def set_status(self, doctor_id: int, payload: DoctorStatusUpdate) -> dict:
        """Admin approval workflow; approving also verifies the owning user."""
        doctor = self._get(doctor_id)
        doctor.status = payload.status
        if payload.status == "approved":
            doctor.user.is_verified = True

        self.db.commit()
        self.db.refresh(doctor)
        logger.info("Doctor status changed", extra={"doctor_id": doctor.id, "doctor_status": doctor.status})
        return serialize(DoctorResponse, doctor)

    def delete(self, doctor_id: int, principal: Principal):
        doctor = self._get(doctor_id)
        self.policy.ensure_can_modify(principal, doctor, "Not authorized to delete this doctor profile")
        self.db.delete(doctor)
        self.db.commit()
        logger.info("Doctor profile deleted", extra={"doctor_id": doctor_id})
