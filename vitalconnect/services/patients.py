"""
Patient profiles: self-service for patients, full management for admins.
"""

from datetime import datetime
from typing import Mapping, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..database import Patient, User
from ..errors import ConflictError, NotFoundError, error_from_integrity
from ..models import PatientCreate, PatientResponse, PatientUpdate, public_fields, serialize
from ..permissions import PATIENT, AccessPolicy, Principal
from ..query_filters import FieldSpec, Page, ResourceQuery, compile_query, contains, fetch_page
from ..structured_logging import get_logger

logger = get_logger("services.patients")


def match_user(term: str):
    """Patients whose owning user's name or email contains `term`."""
    users = select(User.id).where(or_(contains(User.name, term), contains(User.email, term)))
    return Patient.user_id.in_(users)


PATIENT_QUERY = ResourceQuery(
    name="patients",
    model=Patient,
    fields={
        "age": FieldSpec("age", int),
        "gender": FieldSpec("gender"),
        "blood_type": FieldSpec("blood_type"),
        "phone": FieldSpec("phone"),
        "user_id": FieldSpec("user_id", int),
        "created_at": FieldSpec("created_at", datetime),
    },
    default_limit=50,
    lookups={"name": match_user},
    search=("name", "gender", "blood_type"),
    projectable=public_fields(PatientResponse),
)


class PatientService:
    def __init__(self, db: Session, policy: Optional[AccessPolicy] = None):
        self.db = db
        self.policy = policy or AccessPolicy(db)

    def _query(self):
        return self.db.query(Patient).options(selectinload(Patient.user))

    def _get(self, patient_id: int) -> Patient:
        patient = self._query().filter(Patient.id == patient_id).first()
        if patient is None:
            raise NotFoundError("Patient not found")
        return patient

    def _save(self, patient: Patient, payload) -> dict:
        for key, value in payload.model_dump(exclude_unset=True).items():
            setattr(patient, key, value)
        self.db.commit()
        self.db.refresh(patient)
        return serialize(PatientResponse, patient)

    def list(self, raw: Mapping[str, str], principal: Principal) -> Page:
        plan = compile_query(raw, PATIENT_QUERY)
        page = fetch_page(self._query(), plan, PATIENT_QUERY)
        page.items = [serialize(PatientResponse, patient, plan.projection) for patient in page.items]
        return page

    def get(self, patient_id: int, principal: Principal) -> dict:
        patient = self._get(patient_id)
        self.policy.ensure_can_view(principal, patient)
        return serialize(PatientResponse, patient)

    def get_mine(self, principal: Principal) -> dict:
        return serialize(PatientResponse, self.policy.patient_profile(principal))

    def create(self, payload: PatientCreate, principal: Principal) -> dict:
        self.policy.ensure_can_create_profile(principal, PATIENT)
        if self.policy.find_patient_profile(principal) is not None:
            raise ConflictError(
                "Patient profile already exists",
                field_errors={"user_id": "Duplicate value for 'user_id'. Please use another value."},
            )

        patient = Patient(user_id=principal.id, **payload.model_dump())
        self.db.add(patient)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise error_from_integrity(e)
        self.db.refresh(patient)

        logger.info("Patient profile created", extra={"patient_id": patient.id})
        return serialize(PatientResponse, patient)

    def update(self, patient_id: int, payload: PatientUpdate, principal: Principal) -> dict:
        patient = self._get(patient_id)
        self.policy.ensure_can_modify(principal, patient, "Not authorized to update this patient profile")
        return self._save(patient, payload)

    def update_mine(self, payload: PatientUpdate, principal: Principal) -> dict:
        return self._save(self.policy.patient_profile(principal), payload)

    def delete(self, patient_id: int, principal: Principal):
        patient = self._get(patient_id)
        self.policy.ensure_can_modify(principal, patient, "Not authorized to delete this patient profile")
        self.db.delete(patient)
        self.db.commit()
        logger.info("Patient profile deleted", extra={"patient_id": patient_id})
