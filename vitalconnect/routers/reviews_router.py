"""
Reviews Router

Reading is public. Patients write one review per doctor; authors and
admins may edit or remove it.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from ..auth import get_optional_principal, get_principal, restrict_to
from ..database import User, get_db
from ..models import ReviewCreate, ReviewUpdate, paged, success
from ..permissions import Principal
from ..services.reviews import ReviewService

router = APIRouter(prefix="/api/v1/reviews", tags=["Reviews"])


def get_review_service(db: Session = Depends(get_db)) -> ReviewService:
    return ReviewService(db)


@router.get("")
def list_reviews(
    request: Request,
    principal: Optional[Principal] = Depends(get_optional_principal),
    service: ReviewService = Depends(get_review_service),
):
    page = service.list(dict(request.query_params), principal)
    return paged(page, reviews=page.items)


@router.get("/doctor/{doctor_id}")
def doctor_reviews(
    doctor_id: int,
    request: Request,
    service: ReviewService = Depends(get_review_service),
):
    page = service.list_for_doctor(doctor_id, dict(request.query_params))
    return paged(page, reviews=page.items)


@router.get("/{review_id}")
def get_review(
    review_id: int,
    principal: Optional[Principal] = Depends(get_optional_principal),
    service: ReviewService = Depends(get_review_service),
):
    return success(review=service.get(review_id, principal))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_review(
    payload: ReviewCreate,
    current_user: User = Depends(restrict_to("patient")),
    principal: Principal = Depends(get_principal),
    service: ReviewService = Depends(get_review_service),
):
    return success(review=service.create(payload, principal))


@router.patch("/{review_id}")
def update_review(
    review_id: int,
    payload: ReviewUpdate,
    current_user: User = Depends(restrict_to("patient", "admin")),
    principal: Principal = Depends(get_principal),
    service: ReviewService = Depends(get_review_service),
):
    return success(review=service.update(review_id, payload, principal))


@router.delete("/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_review(
    review_id: int,
    current_user: User = Depends(restrict_to("patient", "admin")),
    principal: Principal = Depends(get_principal),
    service: ReviewService = Depends(get_review_service),
):
    service.delete(review_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
