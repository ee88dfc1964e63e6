"""
Appointment booking, listing and status changes.
"""

from datetime import date, datetime
from typing import Mapping

from sqlalchemy.orm import Session, selectinload

from ..database import APPOINTMENT_STATUSES, Appointment, Doctor, Patient, User
from ..errors import NotFoundError, ValidationFailedError
from ..models import AppointmentCreate, AppointmentResponse, public_fields, serialize
from ..permissions import AccessPolicy, Principal
from ..query_filters import FieldSpec, Page, ResourceQuery, compile_query, fetch_page
from ..structured_logging import get_logger

logger = get_logger("services.appointments")

APPOINTMENT_QUERY = ResourceQuery(
    name="appointments",
    model=Appointment,
    fields={
        "doctor_id": FieldSpec("doctor_id", int),
        "patient_id": FieldSpec("patient_id", int),
        "status": FieldSpec("status"),
        "date": FieldSpec("date", date),
        "time_slot": FieldSpec("time_slot"),
        "booking_fee": FieldSpec("booking_fee", float),
        "created_at": FieldSpec("created_at", datetime),
    },
    default_limit=100,
    projectable=public_fields(AppointmentResponse),
)


class AppointmentService:
    def __init__(self, db: Session, policy: AccessPolicy = None):
        self.db = db
        self.policy = policy or AccessPolicy(db)

    def _query(self):
        return self.db.query(Appointment).options(
            selectinload(Appointment.doctor).selectinload(Doctor.user),
            selectinload(Appointment.patient).selectinload(Patient.user),
        )

    def _get(self, appointment_id: int) -> Appointment:
        appointment = self._query().filter(Appointment.id == appointment_id).first()
        if appointment is None:
            raise NotFoundError("Appointment not found")
        return appointment

    def _page(self, raw: Mapping[str, str], forced: dict) -> Page:
        plan = compile_query(raw, APPOINTMENT_QUERY, forced=forced)
        page = fetch_page(self._query(), plan, APPOINTMENT_QUERY)
        page.items = [serialize(AppointmentResponse, item, plan.projection) for item in page.items]
        return page

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    def list(self, raw: Mapping[str, str], principal: Principal) -> Page:
        """Doctors and patients only ever see their own appointments."""
        return self._page(raw, self.policy.scope_filter(principal, "appointment"))

    def list_mine(self, raw: Mapping[str, str], principal: Principal) -> Page:
        page = self.list(raw, principal)
        if not page.items:
            raise NotFoundError("No appointments found")
        return page

    def list_for_user(self, user_id: int, raw: Mapping[str, str]) -> Page:
        """Admin view of one user's appointments, whichever side of the booking they are on."""
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise NotFoundError("User not found")

        owner = Principal(id=user.id, role=user.role)
        if user.role not in ("doctor", "patient"):
            raise ValidationFailedError("Invalid role for user")

        page = self._page(raw, self.policy.scope_filter(owner, "appointment"))
        if not page.items:
            raise NotFoundError(f"No appointments found for this {user.role}")
        return page

    def get(self, appointment_id: int, principal: Principal) -> dict:
        appointment = self._get(appointment_id)
        self.policy.ensure_can_view(principal, appointment, "Not authorized to view this appointment")
        return serialize(AppointmentResponse, appointment)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, payload: AppointmentCreate, principal: Principal) -> dict:
        doctor = self.db.query(Doctor).filter(Doctor.id == payload.doctor_id).first()
        if doctor is None:
            raise NotFoundError("Doctor not found")

        if principal.is_admin:
            if payload.patient_id is None:
                raise ValidationFailedError(
                    "Patient is required", field_errors={"patient_id": "Field required"}
                )
            patient = self.db.query(Patient).filter(Patient.id == payload.patient_id).first()
            if patient is None:
                raise NotFoundError("Patient not found")
        else:
            patient = self.policy.patient_profile(principal)

        appointment = Appointment(
            doctor_id=doctor.id,
            patient_id=patient.id,
            date=payload.date,
            time_slot=payload.time_slot,
            booking_fee=payload.booking_fee if payload.booking_fee is not None else doctor.consultation_fee,
            notes=payload.notes,
        )
        self.db.add(appointment)
        self.db.commit()

        logger.info(
            "Appointment booked",
            extra={"appointment_id": appointment.id, "doctor_id": doctor.id, "patient_id": patient.id},
        )
        return serialize(AppointmentResponse, self._get(appointment.id))

    def set_status(self, appointment_id: int, status: str, principal: Principal) -> dict:
        if status not in APPOINTMENT_STATUSES:
            raise ValidationFailedError(
                "Invalid status",
                field_errors={"status": f"Must be one of: {', '.join(APPOINTMENT_STATUSES)}"},
            )

        appointment = self._get(appointment_id)
        self.policy.ensure_can_modify(principal, appointment, "Not authorized to change the status")

        appointment.status = status
        self.db.commit()
        logger.info("Appointment status changed", extra={"appointment_id": appointment_id, "appointment_status": status})
        return serialize(AppointmentResponse, self._get(appointment_id))

    def cancel(self, appointment_id: int, principal: Principal) -> dict:
        appointment = self._get(appointment_id)
        self.policy.ensure_can_cancel(principal, appointment, "Not authorized to cancel this appointment")

        appointment.status = "cancelled"
        self.db.commit()
        logger.info("Appointment cancelled", extra={"appointment_id": appointment_id})
        return serialize(AppointmentResponse, self._get(appointment_id))
