"""
Accounts: signup, email verification, login, password management and
admin user management.
"""

import uuid
from datetime import datetime
from typing import Mapping, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..auth import (
    authenticate_user,
    create_email_token,
    create_reset_token,
    decode_email_token,
    decode_reset_token,
    get_password_hash,
    get_user,
    mark_password_changed,
    verify_password,
)
from ..database import User
from ..errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthenticatedError,
    ValidationFailedError,
    error_from_integrity,
)
from ..models import (
    AdminUserUpdate,
    DoctorResponse,
    PatientResponse,
    ResetPasswordRequest,
    SignupRequest,
    UpdateMeRequest,
    UpdatePasswordRequest,
    UserResponse,
    public_fields,
    serialize,
)
from ..query_filters import FieldSpec, Page, ResourceQuery, compile_query, fetch_page
from ..structured_logging import get_logger, log_security_event

logger = get_logger("services.users")

USER_QUERY = ResourceQuery(
    name="users",
    model=User,
    fields={
        "name": FieldSpec("name"),
        "email": FieldSpec("email"),
        "role": FieldSpec("role"),
        "is_verified": FieldSpec("is_verified", bool),
        "created_at": FieldSpec("created_at", datetime),
    },
    default_limit=100,
    search=("name", "email"),
    projectable=public_fields(UserResponse),
)


def user_payload(user: User, with_profile: bool = False) -> dict:
    data = serialize(UserResponse, user)
    if with_profile:
        if user.doctor_profile is not None:
            data["doctor_profile"] = serialize(DoctorResponse, user.doctor_profile)
        if user.patient_profile is not None:
            data["patient_profile"] = serialize(PatientResponse, user.patient_profile)
    return data


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def _get(self, user_id: int) -> User:
        user = (
            self.db.query(User)
            .options(selectinload(User.doctor_profile), selectinload(User.patient_profile))
            .filter(User.id == user_id)
            .first()
        )
        if user is None:
            raise NotFoundError("User not found")
        return user

    def _commit(self):
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise error_from_integrity(e)

    # -------------------------------------------------------------------------
    # Signup & verification
    # -------------------------------------------------------------------------

    def signup(self, payload: SignupRequest) -> Tuple[User, str]:
        """Create an unverified account; returns it with its email verification token."""
        if get_user(self.db, payload.email) is not None:
            raise ConflictError(
                "Duplicate value for 'email'. Please use another value.",
                field_errors={"email": "Duplicate value for 'email'. Please use another value."},
            )

        user = User(
            name=payload.name.strip(),
            email=payload.email,
            hashed_password=get_password_hash(payload.password),
            role=payload.role,
            phone=payload.phone,
            image=payload.image,
            is_verified=False,
        )
        self.db.add(user)
        self._commit()
        self.db.refresh(user)

        logger.info("User signed up", extra={"new_user_id": user.id, "user_role": user.role})
        return user, create_email_token(user.id)

    def verify_email(self, token: Optional[str]) -> User:
        if not token:
            raise ValidationFailedError("Verification token is required")
        data = decode_email_token(token)
        user = self.db.query(User).filter(User.id == data.user_id).first()
        if user is None:
            raise ValidationFailedError("Token is invalid or has expired")

        user.is_verified = True
        self.db.commit()
        self.db.refresh(user)
        return user

    def resend_verification(self, email: str) -> Tuple[User, str]:
        user = get_user(self.db, email)
        if user is None:
            raise NotFoundError("No user with that email")
        if user.is_verified:
            raise ValidationFailedError("Email already verified")
        return user, create_email_token(user.id)

    # -------------------------------------------------------------------------
    # Sessions & passwords
    # -------------------------------------------------------------------------

    def login(self, email: Optional[str], password: Optional[str]) -> User:
        if not email or not password:
            raise ValidationFailedError(
                "Please provide email and password",
                field_errors={
                    name: "Field required"
                    for name, value in (("email", email), ("password", password))
                    if not value
                },
            )

        user = authenticate_user(self.db, email, password)
        if not user:
            log_security_event("login_failed", "low", details=email.strip().lower())
            raise UnauthenticatedError("Incorrect email or password")
        if not user.is_verified:
            raise ForbiddenError("Please verify your email first")

        logger.info("User logged in", extra={"login_user_id": user.id})
        return user

    def forgot_password(self, email: str) -> Optional[Tuple[User, str]]:
        """Reset token for a known email; None otherwise, without telling the caller."""
        user = get_user(self.db, email)
        if user is None:
            return None
        # Issuing a new link revokes the previous one
        user.password_reset_token_id = uuid.uuid4().hex
        self.db.commit()
        return user, create_reset_token(user.id, user.password_reset_token_id)

    def reset_password(self, token: str, payload: ResetPasswordRequest) -> User:
        data = decode_reset_token(token)
        user = self.db.query(User).filter(User.id == data.user_id).with_for_update().first()
        if user is None:
            raise NotFoundError("User no longer exists")
        # Single use: the stored id is cleared by the password change below
        if not data.token_id or data.token_id != user.password_reset_token_id:
            raise ValidationFailedError("Token is invalid or has expired")

        user.hashed_password = get_password_hash(payload.password)
        mark_password_changed(user)
        self.db.commit()
        self.db.refresh(user)

        log_security_event("password_reset", "low", user_id=user.id)
        return user

    def update_password(self, user: User, payload: UpdatePasswordRequest) -> User:
        if not verify_password(payload.password_current, user.hashed_password):
            log_security_event("password_update_failed", "medium", user_id=user.id)
            raise UnauthenticatedError("Your current password is wrong")

        user.hashed_password = get_password_hash(payload.password)
        mark_password_changed(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    # -------------------------------------------------------------------------
    # Own account
    # -------------------------------------------------------------------------

    def me(self, user: User) -> dict:
        return user_payload(self._get(user.id), with_profile=True)

    def update_me(self, user: User, payload: UpdateMeRequest) -> dict:
        for key, value in payload.model_dump(exclude_unset=True).items():
            if key == "name" and value is None:
                continue
            setattr(user, key, value)
        self.db.commit()
        self.db.refresh(user)
        return user_payload(user)

    def delete_me(self, user: User):
        self.db.delete(user)
        self.db.commit()
        logger.info("User deleted own account", extra={"deleted_user_id": user.id})

    # -------------------------------------------------------------------------
    # Admin
    # -------------------------------------------------------------------------

    def list(self, raw: Mapping[str, str]) -> Page:
        plan = compile_query(raw, USER_QUERY)
        page = fetch_page(self.db.query(User), plan, USER_QUERY)
        page.items = [serialize(UserResponse, user, plan.projection) for user in page.items]
        return page

    def get(self, user_id: int) -> dict:
        return user_payload(self._get(user_id), with_profile=True)

    def update(self, user_id: int, payload: AdminUserUpdate) -> dict:
        user = self._get(user_id)
        for key, value in payload.model_dump(exclude_unset=True).items():
            if key in ("name", "role", "is_verified") and value is None:
                continue
            setattr(user, key, value)
        self.db.commit()
        self.db.refresh(user)
        return user_payload(user)

    def delete(self, user_id: int):
        user = self._get(user_id)
        self.db.delete(user)
        self.db.commit()
        logger.info("User deleted", extra={"deleted_user_id": user_id})
