"""
VitalConnect API - Main Application

Healthcare appointment booking: accounts, doctor and patient profiles,
appointments, prescriptions and reviews.

ROUTERS:
- auth_router.py - Signup, login, passwords, own account, admin users
- doctors_router.py - Doctor directory and approval workflow
- patients_router.py - Patient profiles
- appointments_router.py - Booking, status changes, cancellation
- prescriptions_router.py - Prescriptions per appointment
- reviews_router.py - Doctor reviews and ratings
"""

import time
from datetime import datetime, timedelta

import psutil
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .config import CORS_ALLOW_CREDENTIALS, CORS_ORIGINS, get_config_summary
from .database import SessionLocal, create_tables
from .errors import register_exception_handlers
from .middleware import RequestLoggingMiddleware
from .routers.appointments_router import router as appointments_router
from .routers.auth_router import router as auth_router
from .routers.doctors_router import router as doctors_router
from .routers.patients_router import router as patients_router
from .routers.prescriptions_router import router as prescriptions_router
from .routers.reviews_router import router as reviews_router
from .structured_logging import configure_logging, get_logger

configure_logging()
logger = get_logger("api")

# =============================================================================
# APPLICATION SETUP
# =============================================================================

app = FastAPI(
    title="VitalConnect API",
    description="Healthcare appointment booking: doctors, patients, appointments, prescriptions and reviews.",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Create database tables on startup
create_tables()

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One access-log line per request, with request/correlation ids
app.add_middleware(RequestLoggingMiddleware, log_headers=False)

register_exception_handlers(app)

# =============================================================================
# REGISTER ROUTERS
# =============================================================================

# Authentication & User Management
app.include_router(auth_router)

# Doctors & Patients
app.include_router(doctors_router)
app.include_router(patients_router)

# Appointments & Prescriptions
app.include_router(appointments_router)
app.include_router(prescriptions_router)

# Reviews
app.include_router(reviews_router)

logger.info("Application started", extra={"config": get_config_summary()})

# =============================================================================
# HEALTH
# =============================================================================

@app.get("/")
def read_root():
    return {"name": "VitalConnect API", "version": __version__, "status": "healthy", "docs": "/docs"}

def _database_status() -> str:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return "healthy"
    except SQLAlchemyError as e:
        logger.error("Database health check failed", extra={"error_type": type(e).__name__})
        return f"unhealthy: {type(e).__name__}"
    finally:
        db.close()

@app.get("/health")
def health_check():
    """Liveness plus database reachability and process memory."""
    database = _database_status()
    memory = psutil.virtual_memory()
    process = psutil.Process()
    rss_mb = process.memory_info().rss / (1024 ** 2)
    uptime_seconds = time.time() - process.create_time()

    return {
        "status": "healthy" if database == "healthy" else "degraded",
        "version": __version__,
        "timestamp": datetime.utcnow().isoformat(),
        "database": database,
        "memory": {
            "system_used_percent": memory.percent,
            "system_available_mb": round(memory.available / (1024 ** 2)),
            "process_rss_mb": round(rss_mb, 1),
        },
        "uptime": str(timedelta(seconds=int(uptime_seconds))),
        "uptime_seconds": round(uptime_seconds),
    }
