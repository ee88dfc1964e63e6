"""
Patient Profiles Router

Patients manage their own profile through /me; admins list and manage all.
"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from ..auth import get_principal, restrict_to
from ..database import User, get_db
from ..models import PatientCreate, PatientUpdate, paged, success
from ..permissions import Principal
from ..services.patients import PatientService

router = APIRouter(prefix="/api/v1/patients", tags=["Patients"])


def get_patient_service(db: Session = Depends(get_db)) -> PatientService:
    return PatientService(db)


# =============================================================================
# SELF SERVICE
# =============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def create_my_patient_profile(
    payload: PatientCreate,
    principal: Principal = Depends(get_principal),
    service: PatientService = Depends(get_patient_service),
):
    return success(patient=service.create(payload, principal))


@router.get("/me")
def get_my_patient_profile(
    current_user: User = Depends(restrict_to("patient")),
    principal: Principal = Depends(get_principal),
    service: PatientService = Depends(get_patient_service),
):
    return success(patient=service.get_mine(principal))


@router.patch("/me")
def update_my_patient_profile(
    payload: PatientUpdate,
    current_user: User = Depends(restrict_to("patient")),
    principal: Principal = Depends(get_principal),
    service: PatientService = Depends(get_patient_service),
):
    return success(patient=service.update_mine(payload, principal))


# =============================================================================
# ADMIN
# =============================================================================

@router.get("")
def list_patients(
    request: Request,
    current_user: User = Depends(restrict_to("admin")),
    principal: Principal = Depends(get_principal),
    service: PatientService = Depends(get_patient_service),
):
    """GET /api/v1/patients?gender=Male&blood_type=O%2B&age[gte]=20&age[lte]=60"""
    page = service.list(dict(request.query_params), principal)
    return paged(page, patients=page.items)


@router.get("/{patient_id}")
def get_patient(
    patient_id: int,
    current_user: User = Depends(restrict_to("admin")),
    principal: Principal = Depends(get_principal),
    service: PatientService = Depends(get_patient_service),
):
    return success(patient=service.get(patient_id, principal))


@router.patch("/{patient_id}")
def update_patient(
    patient_id: int,
    payload: PatientUpdate,
    current_user: User = Depends(restrict_to("admin")),
    principal: Principal = Depends(get_principal),
    service: PatientService = Depends(get_patient_service),
):
    return success(patient=service.update(patient_id, payload, principal))


@router.delete("/{patient_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_patient(
    patient_id: int,
    current_user: User = Depends(restrict_to("admin")),
    principal: Principal = Depends(get_principal),
    service: PatientService = Depends(get_patient_service),
):
    service.delete(patient_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
