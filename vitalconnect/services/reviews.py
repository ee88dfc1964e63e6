"""
Doctor reviews.

Every review write recomputes the doctor's rating and reviews_count in the
same transaction, with the doctor row locked so concurrent writes for one
doctor are serialized.
"""

from dataclasses import replace
from datetime import datetime
from typing import Mapping, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..database import Doctor, Patient, Review
from ..errors import NotFoundError, error_from_integrity
from ..models import ReviewCreate, ReviewResponse, ReviewUpdate, public_fields, serialize
from ..permissions import AccessPolicy, Principal
from ..query_filters import FieldSpec, Page, ResourceQuery, compile_query, fetch_page
from ..structured_logging import get_logger

logger = get_logger("services.reviews")

REVIEW_QUERY = ResourceQuery(
    name="reviews",
    model=Review,
    fields={
        "doctor_id": FieldSpec("doctor_id", int),
        "patient_id": FieldSpec("patient_id", int),
        "rating": FieldSpec("rating", int),
        "comment": FieldSpec("comment"),
        "created_at": FieldSpec("created_at", datetime),
    },
    default_limit=10,
    search=("comment",),
    projectable=public_fields(ReviewResponse),
)

# A doctor's page shows up to 100 reviews when the caller sets no limit
DOCTOR_REVIEWS_QUERY = replace(REVIEW_QUERY, default_limit=100)


def recompute_doctor_rating(db: Session, doctor: Doctor):
    """Refresh rating (mean, one decimal) and reviews_count from all of the doctor's reviews."""
    db.flush()
    average, count = (
        db.query(func.avg(Review.rating), func.count(Review.id))
        .filter(Review.doctor_id == doctor.id)
        .one()
    )
    doctor.rating = round(float(average), 1) if count else 0
    doctor.reviews_count = count


class ReviewService:
    def __init__(self, db: Session, policy: Optional[AccessPolicy] = None):
        self.db = db
        self.policy = policy or AccessPolicy(db)

    def _query(self):
        return self.db.query(Review).options(selectinload(Review.patient).selectinload(Patient.user))

    def _get(self, review_id: int) -> Review:
        review = self._query().filter(Review.id == review_id).first()
        if review is None:
            raise NotFoundError("Review not found")
        return review

    def _lock_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).with_for_update().first()
        if doctor is None:
            raise NotFoundError("Doctor not found")
        return doctor

    def list(self, raw: Mapping[str, str], principal: Optional[Principal] = None) -> Page:
        plan = compile_query(raw, REVIEW_QUERY)
        page = fetch_page(self._query(), plan, REVIEW_QUERY)
        page.items = [serialize(ReviewResponse, review, plan.projection) for review in page.items]
        return page

    def list_for_doctor(self, doctor_id: int, raw: Mapping[str, str]) -> Page:
        plan = compile_query(raw, DOCTOR_REVIEWS_QUERY, forced={"doctor_id": doctor_id})
        page = fetch_page(self._query(), plan, DOCTOR_REVIEWS_QUERY)
        if not page.items:
            raise NotFoundError("No reviews found for this doctor")
        page.items = [serialize(ReviewResponse, review, plan.projection) for review in page.items]
        return page

    def get(self, review_id: int, principal: Optional[Principal] = None) -> dict:
        review = self._get(review_id)
        self.policy.ensure_can_view(principal, review)
        return serialize(ReviewResponse, review)

    def create(self, payload: ReviewCreate, principal: Principal) -> dict:
        patient = self.policy.patient_profile(principal)
        doctor = self._lock_doctor(payload.doctor_id)

        review = Review(
            doctor_id=doctor.id,
            patient_id=patient.id,
            rating=payload.rating,
            comment=payload.comment,
        )
        self.db.add(review)
        try:
            recompute_doctor_rating(self.db, doctor)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise error_from_integrity(e)

        logger.info(
            "Review created",
            extra={"review_id": review.id, "doctor_id": doctor.id, "doctor_rating": doctor.rating},
        )
        return serialize(ReviewResponse, self._get(review.id))

    def update(self, review_id: int, payload: ReviewUpdate, principal: Principal) -> dict:
        review = self._get(review_id)
        self.policy.ensure_can_modify(principal, review, "You can only edit your own reviews")

        doctor = self._lock_doctor(review.doctor_id)
        changes = payload.model_dump(exclude_unset=True)
        if changes.get("rating") is not None:
            review.rating = changes["rating"]
        if changes.get("comment") is not None:
            review.comment = changes["comment"]

        recompute_doctor_rating(self.db, doctor)
        self.db.commit()
        return serialize(ReviewResponse, self._get(review_id))

    def delete(self, review_id: int, principal: Principal):
        review = self._get(review_id)
        self.policy.ensure_can_modify(principal, review, "You can only delete your own reviews")

        doctor = self._lock_doctor(review.doctor_id)
        self.db.delete(review)
        recompute_doctor_rating(self.db, doctor)
        self.db.commit()
        logger.info("Review deleted", extra={"review_id": review_id, "doctor_id": doctor.id})
