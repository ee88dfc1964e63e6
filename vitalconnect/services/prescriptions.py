"""
Prescriptions issued by a doctor for one of their appointments.
"""

from datetime import datetime
from typing import Mapping

from sqlalchemy.orm import Session, selectinload

from ..database import Appointment, Doctor, Patient, Prescription
from ..errors import ForbiddenError, NotFoundError, ValidationFailedError
from ..models import PrescriptionCreate, PrescriptionResponse, PrescriptionUpdate, public_fields, serialize
from ..permissions import DOCTOR, AccessPolicy, Principal
from ..query_filters import FieldSpec, Page, ResourceQuery, compile_query, fetch_page
from ..structured_logging import get_logger

logger = get_logger("services.prescriptions")

PRESCRIPTION_QUERY = ResourceQuery(
    name="prescriptions",
    model=Prescription,
    fields={
        "appointment_id": FieldSpec("appointment_id", int),
        "doctor_id": FieldSpec("doctor_id", int),
        "patient_id": FieldSpec("patient_id", int),
        "created_at": FieldSpec("created_at", datetime),
    },
    default_limit=50,
    projectable=public_fields(PrescriptionResponse),
)


class PrescriptionService:
    def __init__(self, db: Session, policy: AccessPolicy = None):
        self.db = db
        self.policy = policy or AccessPolicy(db)

    def _query(self):
        return self.db.query(Prescription).options(
            selectinload(Prescription.doctor).selectinload(Doctor.user),
            selectinload(Prescription.patient).selectinload(Patient.user),
        )

    def _get(self, prescription_id: int) -> Prescription:
        prescription = self._query().filter(Prescription.id == prescription_id).first()
        if prescription is None:
            raise NotFoundError("Prescription not found")
        return prescription

    def list(self, raw: Mapping[str, str], principal: Principal) -> Page:
        forced = self.policy.scope_filter(principal, "prescription")
        plan = compile_query(raw, PRESCRIPTION_QUERY, forced=forced)
        page = fetch_page(self._query(), plan, PRESCRIPTION_QUERY)
        page.items = [serialize(PrescriptionResponse, item, plan.projection) for item in page.items]
        return page

    def get(self, prescription_id: int, principal: Principal) -> dict:
        prescription = self._get(prescription_id)
        self.policy.ensure_can_view(principal, prescription, "Not authorized to view this prescription")
        return serialize(PrescriptionResponse, prescription)

    def create(self, payload: PrescriptionCreate, principal: Principal) -> dict:
        """
        Doctors always prescribe as themselves; admins name the doctor.
        The doctor and patient must be the ones on the referenced appointment.
        """
        if principal.role == DOCTOR:
            doctor_id = self.policy.doctor_profile(principal).id
        elif principal.is_admin:
            doctor_id = payload.doctor_id
        else:
            raise ForbiddenError("Only doctors or admins can create prescriptions")

        missing = {
            name: "Field required"
            for name, value in (
                ("appointment_id", payload.appointment_id),
                ("doctor_id", doctor_id),
                ("patient_id", payload.patient_id),
            )
            if value is None
        }
        if missing:
            raise ValidationFailedError(
                "appointment_id, doctor_id, and patient_id are required", field_errors=missing
            )

        appointment = self.db.query(Appointment).filter(Appointment.id == payload.appointment_id).first()
        if appointment is None:
            raise NotFoundError("Appointment not found")
        if appointment.doctor_id != doctor_id:
            raise ValidationFailedError("Doctor mismatch with appointment")
        if appointment.patient_id != payload.patient_id:
            raise ValidationFailedError("Patient mismatch with appointment")

        prescription = Prescription(
            appointment_id=appointment.id,
            doctor_id=doctor_id,
            patient_id=payload.patient_id,
            medications=[medication.model_dump() for medication in payload.medications],
            notes=payload.notes,
        )
        self.db.add(prescription)
        self.db.commit()

        logger.info(
            "Prescription created",
            extra={"prescription_id": prescription.id, "appointment_id": appointment.id},
        )
        return serialize(PrescriptionResponse, self._get(prescription.id))

    def update(self, prescription_id: int, payload: PrescriptionUpdate, principal: Principal) -> dict:
        prescription = self._get(prescription_id)
        self.policy.ensure_can_modify(principal, prescription, "Not authorized to modify this prescription")

        changes = payload.model_dump(exclude_unset=True)
        if changes.get("medications") is not None:
            prescription.medications = changes["medications"]
        if "notes" in changes:
            prescription.notes = changes["notes"]

        self.db.commit()
        return serialize(PrescriptionResponse, self._get(prescription_id))

    def delete(self, prescription_id: int, principal: Principal):
        prescription = self._get(prescription_id)
        self.policy.ensure_can_modify(principal, prescription, "Not authorized to delete this prescription")
        self.db.delete(prescription)
        self.db.commit()
        logger.info("Prescription deleted", extra={"prescription_id": prescription_id})
