"""
Prescriptions Router
"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from ..auth import get_principal, restrict_to
from ..database import User, get_db
from ..models import PrescriptionCreate, PrescriptionUpdate, paged, success
from ..permissions import Principal
from ..services.prescriptions import PrescriptionService

router = APIRouter(prefix="/api/v1/prescriptions", tags=["Prescriptions"])


def get_prescription_service(db: Session = Depends(get_db)) -> PrescriptionService:
    return PrescriptionService(db)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_prescription(
    payload: PrescriptionCreate,
    principal: Principal = Depends(get_principal),
    service: PrescriptionService = Depends(get_prescription_service),
):
    return success(prescription=service.create(payload, principal))


@router.get("")
def list_prescriptions(
    request: Request,
    principal: Principal = Depends(get_principal),
    service: PrescriptionService = Depends(get_prescription_service),
):
    page = service.list(dict(request.query_params), principal)
    return paged(page, prescriptions=page.items)


@router.get("/{prescription_id}")
def get_prescription(
    prescription_id: int,
    principal: Principal = Depends(get_principal),
    service: PrescriptionService = Depends(get_prescription_service),
):
    return success(prescription=service.get(prescription_id, principal))


@router.patch("/{prescription_id}")
def update_prescription(
    prescription_id: int,
    payload: PrescriptionUpdate,
    current_user: User = Depends(restrict_to("doctor", "admin")),
    principal: Principal = Depends(get_principal),
    service: PrescriptionService = Depends(get_prescription_service),
):
    """Only medications and notes can change."""
    return success(prescription=service.update(prescription_id, payload, principal))


@router.delete("/{prescription_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_prescription(
    prescription_id: int,
    current_user: User = Depends(restrict_to("doctor", "admin")),
    principal: Principal = Depends(get_principal),
    service: PrescriptionService = Depends(get_prescription_service),
):
    service.delete(prescription_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
