"""
Authentication

Password hashing (passlib/bcrypt), JWT session tokens (python-jose) and
the FastAPI dependencies that turn a request into the current user.

Tokens are read from the "jwt" cookie first, then from an
`Authorization: Bearer` header.
"""

from calendar import timegm
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ALGORITHM,
    COOKIE_NAME,
    EMAIL_TOKEN_EXPIRE_MINUTES,
    EMAIL_TOKEN_SECRET,
    RESET_TOKEN_EXPIRE_MINUTES,
    RESET_TOKEN_SECRET,
    SECRET_KEY,
)
from .database import User, get_db
from .errors import ForbiddenError, UnauthenticatedError, ValidationFailedError
from .permissions import Principal
from .structured_logging import log_security_event, set_context

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer = HTTPBearer(auto_error=False)

EMAIL_PURPOSE = "verify-email"
RESET_PURPOSE = "reset-password"


class TokenData(BaseModel):
    user_id: Optional[int] = None
    role: Optional[str] = None
    issued_at: Optional[int] = None
    token_id: Optional[str] = None


# =============================================================================
# PASSWORDS
# =============================================================================

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def _epoch(moment: datetime) -> int:
    return timegm(moment.utctimetuple())


# =============================================================================
# TOKENS
# =============================================================================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a session token; `data` carries "id" and "role"."""
    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = data.copy()
    to_encode.update({"iat": _epoch(now), "exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> TokenData:
    """Verify a session token; raises UnauthenticatedError when invalid or expired."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        # Verification and reset links are never sessions
        if "purpose" in payload or not payload.get("role"):
            raise JWTError("not a session token")
        return TokenData(
            user_id=int(payload.get("id")),
            role=payload.get("role"),
            issued_at=payload.get("iat"),
        )
    except (JWTError, ValueError, TypeError):
        raise UnauthenticatedError("Invalid or expired token. Please log in again.")


def _create_purpose_token(user_id: int, purpose: str, secret: str, minutes: int, token_id: Optional[str] = None) -> str:
    now = datetime.utcnow()
    payload = {
        "id": user_id,
        "purpose": purpose,
        "iat": _epoch(now),
        "exp": now + timedelta(minutes=minutes),
    }
    if token_id:
        payload["jti"] = token_id
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def _decode_purpose_token(token: str, purpose: str, secret: str) -> TokenData:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
        if payload.get("purpose") != purpose:
            raise JWTError("wrong token purpose")
        return TokenData(
            user_id=int(payload.get("id")),
            issued_at=payload.get("iat"),
            token_id=payload.get("jti"),
        )
    except (JWTError, ValueError, TypeError):
        raise ValidationFailedError("Token is invalid or has expired")


def create_email_token(user_id: int) -> str:
    return _create_purpose_token(user_id, EMAIL_PURPOSE, EMAIL_TOKEN_SECRET, EMAIL_TOKEN_EXPIRE_MINUTES)


def decode_email_token(token: str) -> TokenData:
    return _decode_purpose_token(token, EMAIL_PURPOSE, EMAIL_TOKEN_SECRET)


def create_reset_token(user_id: int, token_id: str) -> str:
    """Reset link token; `token_id` must match the one stored on the user."""
    return _create_purpose_token(user_id, RESET_PURPOSE, RESET_TOKEN_SECRET, RESET_TOKEN_EXPIRE_MINUTES, token_id)


def decode_reset_token(token: str) -> TokenData:
    return _decode_purpose_token(token, RESET_PURPOSE, RESET_TOKEN_SECRET)


def token_for(user: User) -> str:
    return create_access_token({"id": user.id, "role": user.role})


def changed_password_after(user: User, issued_at: Optional[int]) -> bool:
    """True when the password changed after the token was issued."""
    if user.password_changed_at is None or issued_at is None:
        return False
    return issued_at < _epoch(user.password_changed_at)


def mark_password_changed(user: User):
    # Back-dated one second so a token issued right after still validates
    user.password_changed_at = datetime.utcnow() - timedelta(seconds=1)
    user.password_reset_token_id = None


# =============================================================================
# USER LOOKUP
# =============================================================================

def get_user(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.strip().lower()).first()


def authenticate_user(db: Session, email: str, password: str):
    user = get_user(db, email)
    if not user:
        return False
    if not verify_password(password, user.hashed_password):
        return False
    return user


# =============================================================================
# DEPENDENCIES
# =============================================================================

def _extract_token(request: Request, creds: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    cookie = request.cookies.get(COOKIE_NAME)
    if cookie and cookie != "loggedout":
        return cookie
    if creds and creds.credentials:
        return creds.credentials
    return None


def get_current_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    token = _extract_token(request, creds)
    if not token:
        raise UnauthenticatedError("You are not logged in! Please log in to get access.")

    token_data = decode_token(token)
    user = db.query(User).filter(User.id == token_data.user_id).first()
    if user is None:
        log_security_event("token_for_deleted_user", "medium", user_id=token_data.user_id)
        raise UnauthenticatedError("The user belonging to this token no longer exists.")
    if changed_password_after(user, token_data.issued_at):
        log_security_event("stale_token", "low", user_id=user.id)
        raise UnauthenticatedError("User recently changed password! Please log in again.")

    set_context(user_id=user.id, role=user.role)
    return user


def get_optional_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Current user when a valid session is presented, otherwise None."""
    if not _extract_token(request, creds):
        return None
    try:
        return get_current_user(request, creds, db)
    except UnauthenticatedError:
        return None


def get_principal(current_user: User = Depends(get_current_user)) -> Principal:
    return Principal(id=current_user.id, role=current_user.role)


def get_optional_principal(current_user: Optional[User] = Depends(get_optional_user)) -> Optional[Principal]:
    if current_user is None:
        return None
    return Principal(id=current_user.id, role=current_user.role)


def restrict_to(*roles: str):
    """Dependency factory: only users with one of `roles` may call the route."""

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            log_security_event(
                "role_denied",
                "medium",
                user_id=current_user.id,
                details=f"role {current_user.role} not in {', '.join(roles)}",
            )
            raise ForbiddenError("You do not have permission to perform this action")
        return current_user

    return dependency
