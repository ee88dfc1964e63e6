"""
Authorization Policy

One policy object answers "may this principal do X to this record?" for
every resource type, and "which records is a list query scoped to?".

Rules:
- admin may view and modify everything.
- doctor is allowed when the record's doctor_id equals the Doctor profile
  owned by the principal (for a Doctor record, its own id).
- patient is allowed when the record's patient_id equals the Patient
  profile owned by the principal (for a Patient record, its own id).
- Which of those owner roles count for which action is declared once per
  resource type in RULES.

A missing Doctor/Patient profile is reported as NotFound, distinct from
Forbidden.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional

from sqlalchemy.orm import Session

from .database import Appointment, Doctor, Patient, Prescription, Review
from .errors import ForbiddenError, NotFoundError
from .structured_logging import log_security_event

ADMIN = "admin"
DOCTOR = "doctor"
PATIENT = "patient"

VIEW = "view"
MODIFY = "modify"
CANCEL = "cancel"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller for one request."""
    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


@dataclass(frozen=True)
class ResourceRule:
    # role -> attribute on the record holding that role's profile id
    owner_fields: Dict[str, str]
    # action -> owner roles allowed to perform it on their own records
    actions: Dict[str, FrozenSet[str]]
    # list queries are forced to the caller's own records
    scoped_listing: bool = False
    # anyone, including anonymous callers, may view
    public_view: bool = False


RULES: Dict[str, ResourceRule] = {
    "appointment": ResourceRule(
        owner_fields={DOCTOR: "doctor_id", PATIENT: "patient_id"},
        actions={
            VIEW: frozenset({DOCTOR, PATIENT}),
            MODIFY: frozenset({DOCTOR}),
            CANCEL: frozenset({DOCTOR, PATIENT}),
        },
        scoped_listing=True,
    ),
    "prescription": ResourceRule(
        owner_fields={DOCTOR: "doctor_id", PATIENT: "patient_id"},
        actions={
            VIEW: frozenset({DOCTOR, PATIENT}),
            MODIFY: frozenset({DOCTOR}),
        },
        scoped_listing=True,
    ),
    "review": ResourceRule(
        owner_fields={DOCTOR: "doctor_id", PATIENT: "patient_id"},
        actions={
            VIEW: frozenset({DOCTOR, PATIENT}),
            MODIFY: frozenset({PATIENT}),
        },
        public_view=True,
    ),
    "doctor": ResourceRule(
        owner_fields={DOCTOR: "id"},
        actions={
            VIEW: frozenset({DOCTOR}),
            MODIFY: frozenset({DOCTOR}),
        },
        public_view=True,
    ),
    "patient": ResourceRule(
        owner_fields={PATIENT: "id"},
        actions={
            VIEW: frozenset({PATIENT}),
            MODIFY: frozenset({PATIENT}),
        },
    ),
}

RESOURCE_TYPES = {
    Appointment: "appointment",
    Prescription: "prescription",
    Review: "review",
    Doctor: "doctor",
    Patient: "patient",
}


def resource_type_of(resource: Any) -> str:
    try:
        return RESOURCE_TYPES[type(resource)]
    except KeyError:
        raise TypeError(f"No access rule for {type(resource).__name__}")


class AccessPolicy:
    """
    Role/ownership checks backed by a database session for profile lookups.

    Profile lookups are cached for the lifetime of the policy (one request).
    """

    def __init__(self, db: Session):
        self.db = db
        self._profiles: Dict[tuple, Any] = {}

    # -------------------------------------------------------------------------
    # Profile resolution
    # -------------------------------------------------------------------------

    def _lookup(self, model, principal: Principal):
        key = (model.__name__, principal.id)
        if key not in self._profiles:
            self._profiles[key] = self.db.query(model).filter(model.user_id == principal.id).first()
        return self._profiles[key]

    def find_doctor_profile(self, principal: Principal) -> Optional[Doctor]:
        return self._lookup(Doctor, principal)

    def find_patient_profile(self, principal: Principal) -> Optional[Patient]:
        return self._lookup(Patient, principal)

    def doctor_profile(self, principal: Principal) -> Doctor:
        doctor = self.find_doctor_profile(principal)
        if doctor is None:
            raise NotFoundError("Doctor profile not found")
        return doctor

    def patient_profile(self, principal: Principal) -> Patient:
        patient = self.find_patient_profile(principal)
        if patient is None:
            raise NotFoundError("Patient profile not found")
        return patient

    def profile_id(self, principal: Principal) -> int:
        """The doctor or patient profile id acting for this principal."""
        if principal.role == DOCTOR:
            return self.doctor_profile(principal).id
        if principal.role == PATIENT:
            return self.patient_profile(principal).id
        raise ForbiddenError("Your role has no profile")

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    def is_allowed(self, principal: Optional[Principal], resource: Any, action: str) -> bool:
        rule = RULES[resource_type_of(resource)]
        if action == VIEW and rule.public_view:
            return True
        if principal is None:
            return False
        if principal.is_admin:
            return True
        if principal.role not in rule.actions.get(action, frozenset()):
            return False

        owner_field = rule.owner_fields[principal.role]
        # Raises NotFound when the caller has no profile of their role
        own_id = self.profile_id(principal)
        return getattr(resource, owner_field) == own_id

    def can_view(self, principal: Optional[Principal], resource: Any) -> bool:
        return self.is_allowed(principal, resource, VIEW)

    def can_modify(self, principal: Optional[Principal], resource: Any) -> bool:
        return self.is_allowed(principal, resource, MODIFY)

    def can_cancel(self, principal: Optional[Principal], resource: Any) -> bool:
        return self.is_allowed(principal, resource, CANCEL)

    def ensure(self, principal: Optional[Principal], resource: Any, action: str, message: str = None):
        if not self.is_allowed(principal, resource, action):
            resource_type = resource_type_of(resource)
            log_security_event(
                "access_denied",
                "medium",
                user_id=principal.id if principal else None,
                details=f"{action} {resource_type} {getattr(resource, 'id', None)}",
            )
            raise ForbiddenError(message or f"Not authorized to {action} this {resource_type}")

    def ensure_can_view(self, principal, resource, message: str = None):
        self.ensure(principal, resource, VIEW, message)

    def ensure_can_modify(self, principal, resource, message: str = None):
        self.ensure(principal, resource, MODIFY, message)

    def ensure_can_cancel(self, principal, resource, message: str = None):
        self.ensure(principal, resource, CANCEL, message)

    def scope_filter(self, principal: Optional[Principal], resource_type: str) -> Dict[str, int]:
        """
        Equality conditions forced onto list queries.

        Doctors and patients only ever list their own records; admin gets no
        scope. Resources without scoped listing are never narrowed.
        """
        rule = RULES[resource_type]
        if not rule.scoped_listing or principal is None or principal.is_admin:
            return {}
        if principal.role not in rule.owner_fields:
            raise ForbiddenError(f"Not authorized to list {resource_type}s")
        return {rule.owner_fields[principal.role]: self.profile_id(principal)}

    def ensure_can_create_profile(self, principal: Principal, profile_type: str):
        """
        Profile self-creation: the role must match the profile type.

        The one-profile-per-user rule is enforced by the services and the
        unique user_id constraint.
        """
        if principal.role != profile_type:
            raise ForbiddenError(
                f"Only users with role '{profile_type}' can create a {profile_type} profile"
            )
