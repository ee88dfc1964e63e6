"""
Structured Logging

One JSON object per log line, written to stdout and/or a size-rotated
NDJSON file. Every line carries the request context of the call that
produced it (request id, correlation id and, once the session is resolved,
the caller's user id and role).

    logger = get_logger("services.appointments")
    logger.info("Appointment booked", extra={"appointment_id": 7})

Settings come from config.py: LOG_LEVEL, LOG_FORMAT ("json" | "text"),
LOG_OUTPUT ("stdout", "file", "all" or a comma list) and LOG_FILE.
"""

import json
import logging
import socket
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import date, datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from . import config

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

# Attributes present on every LogRecord; anything else arrived through `extra=`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

MASK = "***MASKED***"


# =============================================================================
# REQUEST CONTEXT
# =============================================================================

class LogContext:
    """Adds keys to the log context for the duration of a `with` block."""

    def __init__(self, **values):
        self.values = values
        self._token = None

    def __enter__(self):
        self._token = _log_context.set({**_log_context.get(), **self.values})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _log_context.reset(self._token)
        return False


def set_context(**values):
    _log_context.set({**_log_context.get(), **values})


def get_context() -> Dict[str, Any]:
    return dict(_log_context.get())


# =============================================================================
# FORMATTER
# =============================================================================

class JSONFormatter(logging.Formatter):
    """
    Renders a record as:

        {"timestamp": ..., "level": "WARNING", "logger": "security",
         "message": "Security event", "service": "vitalconnect",
         "environment": "production", "host": "api-1",
         "request_id": "9f2c1a7b-d3e", "user_id": 12, "role": "doctor",
         "extra": {"security_event": "access_denied", ...}}

    Keys that look like credentials are masked wherever they appear.
    """

    CONTEXT_KEYS = ("request_id", "correlation_id", "user_id", "role")
    SENSITIVE_MARKERS = ("password", "token", "secret", "authorization", "cookie")

    def __init__(self, service_name: str = "vitalconnect", environment: Optional[str] = None):
        super().__init__()
        self.service_name = service_name
        self.environment = environment or config.ENVIRONMENT
        self.hostname = socket.gethostname()

    def format(self, record: logging.LogRecord) -> str:
        context = get_context()
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
            "host": self.hostname,
        }
        entry.update({key: context[key] for key in self.CONTEXT_KEYS if key in context})

        if record.levelno >= logging.ERROR:
            entry["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "stacktrace": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        extra = {
            key: self._clean(key, value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_") and key not in entry
        }
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str, ensure_ascii=False)

    def _clean(self, key: str, value: Any) -> Any:
        lowered = key.lower()
        if any(marker in lowered for marker in self.SENSITIVE_MARKERS):
            return MASK
        if isinstance(value, dict):
            return {k: self._clean(str(k), v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._clean("", item) for item in value]
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        return str(value)


# =============================================================================
# SETUP
# =============================================================================

_configured = False


def _build_handlers(output: str, log_file: str) -> list:
    targets = {part.strip() for part in output.lower().split(",")}
    handlers = []
    if targets & {"stdout", "all"}:
        handlers.append(logging.StreamHandler(sys.stdout))
    if targets & {"file", "all"}:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"))
    return handlers


def configure_logging(
    level: Optional[str] = None,
    format: Optional[str] = None,
    output: Optional[str] = None,
    log_file: Optional[str] = None,
):
    """Install the application's handlers on the root logger (idempotent)."""
    global _configured

    level = (level or config.LOG_LEVEL).upper()
    format = (format or config.LOG_FORMAT).lower()
    output = output or config.LOG_OUTPUT
    log_file = log_file or config.LOG_FILE

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    for handler in [h for h in root.handlers if getattr(h, "_vitalconnect", False)]:
        root.removeHandler(handler)

    if format == "json":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")

    for handler in _build_handlers(output, log_file):
        handler.setFormatter(formatter)
        handler._vitalconnect = True
        root.addHandler(handler)

    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not _configured:
        configure_logging()
    return logging.getLogger(name or "vitalconnect")


# =============================================================================
# HELPERS
# =============================================================================

def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


def log_request(method: str, path: str, status_code: int, duration_ms: float, **extra):
    """One access-log line per HTTP request; level follows the status class."""
    logger = get_logger("http")
    fields = {
        "http_method": method,
        "http_path": path,
        "http_status": status_code,
        "duration_ms": round(duration_ms, 2),
        **extra,
    }
    if status_code >= 500:
        logger.error("Request failed", extra=fields)
    elif status_code >= 400:
        logger.warning("Request rejected", extra=fields)
    else:
        logger.info("Request completed", extra=fields)


SECURITY_LEVELS = {"low": logging.INFO, "medium": logging.WARNING, "high": logging.ERROR, "critical": logging.ERROR}


def log_security_event(event_type: str, severity: str, user_id: Optional[int] = None, details: Optional[str] = None, **extra):
    """Authentication failures, stale tokens and denied actions."""
    get_logger("security").log(
        SECURITY_LEVELS.get(severity, logging.WARNING),
        "Security event",
        extra={"security_event": event_type, "severity": severity, "user_id": user_id, "details": details, **extra},
    )
