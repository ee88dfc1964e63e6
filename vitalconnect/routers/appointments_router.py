"""
Appointments Router

Booking (patient/admin), scoped listing, status changes (doctor/admin)
and cancellation (owning doctor/patient or admin).
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.orm import Session

from ..auth import get_principal, restrict_to
from ..database import User, get_db
from ..models import AppointmentCreate, AppointmentStatusUpdate, paged, success
from ..notifications import send_appointment_email
from ..permissions import Principal
from ..services.appointments import AppointmentService

router = APIRouter(prefix="/api/v1/appointments", tags=["Appointments"])


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    return AppointmentService(db)


def _notify_patient(background_tasks: BackgroundTasks, appointment: dict):
    patient_user = (appointment.get("patient") or {}).get("user") or {}
    doctor_user = ((appointment.get("doctor") or {}).get("user")) or {}
    if patient_user.get("email"):
        background_tasks.add_task(
            send_appointment_email,
            patient_user["email"],
            patient_user.get("name"),
            doctor_user.get("name"),
            appointment["date"],
            appointment["time_slot"],
            appointment["status"],
        )


@router.post("", status_code=status.HTTP_201_CREATED)
def book_appointment(
    payload: AppointmentCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(restrict_to("patient", "admin")),
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Book an appointment; patients always book for their own profile."""
    appointment = service.create(payload, principal)
    _notify_patient(background_tasks, appointment)
    return success(appointment=appointment)


@router.get("")
def list_appointments(
    request: Request,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Doctors and patients see only their own appointments; admins filter freely."""
    page = service.list(dict(request.query_params), principal)
    return paged(page, appointments=page.items)


@router.get("/me")
def my_appointments(
    request: Request,
    current_user: User = Depends(restrict_to("patient", "doctor")),
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    page = service.list_mine(dict(request.query_params), principal)
    return paged(page, appointments=page.items)


@router.get("/user/{user_id}")
def user_appointments(
    user_id: int,
    request: Request,
    current_user: User = Depends(restrict_to("admin")),
    service: AppointmentService = Depends(get_appointment_service),
):
    page = service.list_for_user(user_id, dict(request.query_params))
    return paged(page, appointments=page.items)


@router.get("/{appointment_id}")
def get_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    return success(appointment=service.get(appointment_id, principal))


@router.patch("/{appointment_id}/status")
def change_appointment_status(
    appointment_id: int,
    payload: AppointmentStatusUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(restrict_to("admin", "doctor")),
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.set_status(appointment_id, payload.status, principal)
    _notify_patient(background_tasks, appointment)
    return success(appointment=appointment)


@router.patch("/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.cancel(appointment_id, principal)
    _notify_patient(background_tasks, appointment)
    return success(appointment=appointment)
