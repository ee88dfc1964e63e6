"""
Doctor Directory Router

Public browsing and search of doctor profiles, self-service profile
creation for doctors, and the admin approval workflow.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from ..auth import get_optional_principal, get_principal, restrict_to
from ..database import User, get_db
from ..models import DoctorCreate, DoctorStatusUpdate, DoctorUpdate, paged, success
from ..permissions import Principal
from ..services.doctors import DoctorService

router = APIRouter(prefix="/api/v1/doctors", tags=["Doctors"])


def get_doctor_service(db: Session = Depends(get_db)) -> DoctorService:
    return DoctorService(db)


@router.get("")
def list_doctors(
    request: Request,
    principal: Optional[Principal] = Depends(get_optional_principal),
    service: DoctorService = Depends(get_doctor_service),
):
    """
    Browse doctors.

    Supports filters (specialization=Cardiology, consultation_fee[lte]=300,
    clinic.city=Cairo), name=<substring>, free-text q=, sort, fields and
    page/limit.
    """
    page = service.list(dict(request.query_params), principal)
    return paged(page, doctors=page.items)


@router.get("/{doctor_id}")
def get_doctor(
    doctor_id: int,
    principal: Optional[Principal] = Depends(get_optional_principal),
    service: DoctorService = Depends(get_doctor_service),
):
    return success(doctor=service.get(doctor_id, principal))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_doctor(
    payload: DoctorCreate,
    principal: Principal = Depends(get_principal),
    service: DoctorService = Depends(get_doctor_service),
):
    """Create the caller's own doctor profile (role "doctor", once)."""
    return success(doctor=service.create(payload, principal))


@router.patch("/{doctor_id}")
def update_doctor(
    doctor_id: int,
    payload: DoctorUpdate,
    principal: Principal = Depends(get_principal),
    service: DoctorService = Depends(get_doctor_service),
):
    return success(doctor=service.update(doctor_id, payload, principal))


@router.delete("/{doctor_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_doctor(
    doctor_id: int,
    principal: Principal = Depends(get_principal),
    service: DoctorService = Depends(get_doctor_service),
):
    service.delete(doctor_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{doctor_id}/status")
def update_doctor_status(
    doctor_id: int,
    payload: DoctorStatusUpdate,
    current_user: User = Depends(restrict_to("admin")),
    service: DoctorService = Depends(get_doctor_service),
):
    """Approve or reject a doctor (admin)."""
    doctor = service.set_status(doctor_id, payload)
    body = success(doctor=doctor)
    body["message"] = f"Doctor has been {payload.status}"
    return body
