"""
Authentication and User Management Router

Endpoints for:
- Signup, email verification and login/logout
- Forgot / reset / update password
- Own account (me)
- Admin user management
"""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status
from sqlalchemy.orm import Session

from ..auth import get_current_user, restrict_to, token_for
from ..config import CLIENT_URL, COOKIE_EXPIRE_DAYS, COOKIE_NAME, IS_PRODUCTION
from ..database import User, get_db
from ..models import (
    AdminUserUpdate,
    EmailRequest,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    UpdateMeRequest,
    UpdatePasswordRequest,
    paged,
    success,
)
from ..notifications import send_password_reset_email, send_verification_email
from ..services.users import UserService, user_payload

router = APIRouter(prefix="/api/v1/users", tags=["Authentication & Users"])


def get_user_service(db: Session = Depends(get_db)) -> UserService:
    return UserService(db)


def _verify_url(token: str) -> str:
    return f"{CLIENT_URL}/verify-email?token={token}"


def _reset_url(token: str) -> str:
    return f"{CLIENT_URL}/reset-password/{token}"


def _send_token(user: User, response: Response, **extra) -> dict:
    """Log the user in: set the session cookie and return the token."""
    token = token_for(user)
    response.set_cookie(
        key=COOKIE_NAME,
        value=token,
        max_age=int(timedelta(days=COOKIE_EXPIRE_DAYS).total_seconds()),
        httponly=True,
        secure=IS_PRODUCTION,
        samesite="lax",
    )
    body = success(user=user_payload(user))
    body["token"] = token
    body.update(extra)
    return body


# =============================================================================
# SIGNUP & VERIFICATION
# =============================================================================

@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(
    payload: SignupRequest,
    background_tasks: BackgroundTasks,
    service: UserService = Depends(get_user_service),
):
    """Register a new (unverified) patient or doctor account."""
    user, token = service.signup(payload)
    url = _verify_url(token)
    background_tasks.add_task(send_verification_email, user.email, user.name, url)

    body = success(user=user_payload(user))
    body["message"] = "Account created. Please check your email to verify your account."
    if not IS_PRODUCTION:
        body["verify_url"] = url
    return body


@router.get("/verify-email")
def verify_email(
    response: Response,
    token: Optional[str] = None,
    service: UserService = Depends(get_user_service),
):
    user = service.verify_email(token)
    return _send_token(user, response, message="Email verified successfully.")


@router.post("/resend-verification")
def resend_verification(
    payload: EmailRequest,
    background_tasks: BackgroundTasks,
    service: UserService = Depends(get_user_service),
):
    user, token = service.resend_verification(payload.email)
    url = _verify_url(token)
    background_tasks.add_task(send_verification_email, user.email, user.name, url)

    body = {"status": "success", "message": "Verification email sent."}
    if not IS_PRODUCTION:
        body["verify_url"] = url
    return body


# =============================================================================
# LOGIN / LOGOUT
# =============================================================================

@router.post("/login")
def login(payload: LoginRequest, response: Response, service: UserService = Depends(get_user_service)):
    """Authenticate with email and password; sets the session cookie."""
    user = service.login(payload.email, payload.password)
    return _send_token(user, response)


@router.post("/logout")
def logout(response: Response):
    response.set_cookie(key=COOKIE_NAME, value="loggedout", max_age=10, httponly=True)
    return {"status": "success"}


# =============================================================================
# PASSWORDS
# =============================================================================

@router.post("/forgot-password")
def forgot_password(
    payload: EmailRequest,
    background_tasks: BackgroundTasks,
    service: UserService = Depends(get_user_service),
):
    """Always answers success so the endpoint does not reveal which emails exist."""
    found = service.forgot_password(payload.email)
    body = {"status": "success", "message": "If that email exists, a reset link has been sent."}
    if found is not None:
        user, token = found
        url = _reset_url(token)
        background_tasks.add_task(send_password_reset_email, user.email, user.name, url)
        if not IS_PRODUCTION:
            body["reset_url"] = url
    return body


@router.patch("/reset-password/{token}")
def reset_password(
    token: str,
    payload: ResetPasswordRequest,
    response: Response,
    service: UserService = Depends(get_user_service),
):
    user = service.reset_password(token, payload)
    return _send_token(user, response)


@router.patch("/update-my-password")
def update_my_password(
    payload: UpdatePasswordRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    user = service.update_password(current_user, payload)
    return _send_token(user, response)


# =============================================================================
# OWN ACCOUNT
# =============================================================================

@router.get("/me")
def read_me(current_user: User = Depends(get_current_user), service: UserService = Depends(get_user_service)):
    """Current user, with their doctor or patient profile embedded."""
    return success(user=service.me(current_user))


@router.patch("/me")
def update_me(
    payload: UpdateMeRequest,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return success(user=service.update_me(current_user, payload))


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
def delete_me(current_user: User = Depends(get_current_user), service: UserService = Depends(get_user_service)):
    service.delete_me(current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# ADMIN
# =============================================================================

@router.get("")
def list_users(
    request: Request,
    current_user: User = Depends(restrict_to("admin")),
    service: UserService = Depends(get_user_service),
):
    page = service.list(dict(request.query_params))
    return paged(page, users=page.items)


@router.get("/{user_id}")
def get_user(
    user_id: int,
    current_user: User = Depends(restrict_to("admin")),
    service: UserService = Depends(get_user_service),
):
    return success(user=service.get(user_id))


@router.patch("/{user_id}")
def update_user(
    user_id: int,
    payload: AdminUserUpdate,
    current_user: User = Depends(restrict_to("admin")),
    service: UserService = Depends(get_user_service),
):
    return success(user=service.update(user_id, payload))


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    current_user: User = Depends(restrict_to("admin")),
    service: UserService = Depends(get_user_service),
):
    service.delete(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
