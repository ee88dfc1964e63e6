"""
Error Taxonomy and Exception Handlers

Every operational failure raised by the services is an AppError subclass
carrying an HTTP status, a stable machine-readable code and optionally a
per-field message map. The handlers registered here render them as:

    {"status": "fail", "code": "NOT_FOUND", "message": "...", "field_errors": {...}}

Anything else is logged with its stack trace and rendered as an opaque
500 so internal details never reach the client.
"""

import re
from typing import Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .structured_logging import get_logger

logger = get_logger("api.errors")


class AppError(Exception):
    """Base class for errors that are reported to the caller as-is."""

    status_code = 500
    code = "APP_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        field_errors: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.field_errors = field_errors or {}

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"

    def to_payload(self) -> dict:
        payload = {"status": self.status, "code": self.code, "message": self.message}
        if self.field_errors:
            payload["field_errors"] = self.field_errors
        return payload


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"


class ValidationFailedError(AppError):
    status_code = 400
    code = "VALIDATION_FAILED"


class ConflictError(AppError):
    status_code = 409
    code = "DUPLICATE_KEY"

    @classmethod
    def from_integrity_error(cls, exc: IntegrityError) -> "ConflictError":
        """Translate a unique-constraint violation into a per-field conflict."""
        fields = duplicate_key_fields(exc)
        field_errors = {
            field: f"Duplicate value for '{field}'. Please use another value."
            for field in fields
        }
        if len(fields) == 1:
            message = f"Duplicate value for '{fields[0]}'. Please use another value."
        elif fields:
            message = f"Duplicate values for: {', '.join(fields)}."
        else:
            message = "Duplicate value. Please use another value."
        return cls(message, field_errors=field_errors)


class UnauthenticatedError(AppError):
    status_code = 401
    code = "UNAUTHENTICATED"


# SQLite:     UNIQUE constraint failed: reviews.doctor_id, reviews.patient_id
# PostgreSQL: Key (doctor_id, patient_id)=(1, 2) already exists.
# MySQL:      Duplicate entry 'a@b.com' for key 'users.email'
_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: (?P<cols>[\w., ]+)")
_POSTGRES_UNIQUE = re.compile(r"Key \((?P<cols>[^)]+)\)=")
_MYSQL_UNIQUE = re.compile(r"for key '(?P<cols>[\w.]+)'")


def duplicate_key_fields(exc: IntegrityError) -> List[str]:
    """Extract the offending column names from a driver's duplicate-key message."""
    text = str(exc.orig) if exc.orig is not None else str(exc)
    for pattern in (_SQLITE_UNIQUE, _POSTGRES_UNIQUE, _MYSQL_UNIQUE):
        match = pattern.search(text)
        if match:
            return [col.strip().split(".")[-1] for col in match.group("cols").split(",")]
    return []


def is_unique_violation(exc: IntegrityError) -> bool:
    text = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    return "unique" in text or "duplicate" in text


def error_from_integrity(exc: IntegrityError) -> AppError:
    """DuplicateKey for unique violations, ValidationFailed for any other constraint."""
    if is_unique_violation(exc):
        return ConflictError.from_integrity_error(exc)
    return ValidationFailedError("Invalid input data.")


def _field_name(loc) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path")]
    return ".".join(parts) or "body"


# =============================================================================
# HANDLERS
# =============================================================================

async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Aggregate pydantic errors into one message per field."""
    field_errors: Dict[str, str] = {}
    for error in exc.errors():
        field_errors.setdefault(_field_name(error.get("loc", ())), error.get("msg", "Invalid value."))
    error = ValidationFailedError("Invalid input data.", field_errors=field_errors)
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


async def integrity_error_handler(request: Request, exc: IntegrityError):
    error = error_from_integrity(exc)
    logger.warning("Integrity error", extra={"path": request.url.path, "error_code": error.code})
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    status = "fail" if exc.status_code < 500 else "error"
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": status, "code": f"HTTP_{exc.status_code}", "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        extra={"path": request.url.path, "error_type": type(exc).__name__},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"status": "error", "code": "INTERNAL_ERROR", "message": "Something went very wrong!"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
