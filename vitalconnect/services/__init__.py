"""
Resource services: compile the query, consult the access policy, run it
against the database and map rows to response payloads.
"""

from .appointments import AppointmentService
from .doctors import DoctorService
from .patients import PatientService
from .prescriptions import PrescriptionService
from .reviews import ReviewService
from .users import UserService

__all__ = [
    "AppointmentService",
    "DoctorService",
    "PatientService",
    "PrescriptionService",
    "ReviewService",
    "UserService",
]
