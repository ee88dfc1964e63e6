"""
Application Configuration

Loads configuration from environment variables with sensible defaults.
All secrets, URLs and tunables should be defined here.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists (existing environment variables win, so tests can override)
load_dotenv()

# =============================================================================
# BASE PATHS
# =============================================================================

BASE_DIR = Path(__file__).resolve().parent

# =============================================================================
# DATABASE CONFIGURATION
# =============================================================================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./vitalconnect.db")

# Handle PostgreSQL URL format differences
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# =============================================================================
# AUTHENTICATION
# =============================================================================

SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(7 * 24 * 60)))

# Email verification and password reset links use their own secrets
EMAIL_TOKEN_SECRET = os.getenv("EMAIL_TOKEN_SECRET", SECRET_KEY)
EMAIL_TOKEN_EXPIRE_MINUTES = int(os.getenv("EMAIL_TOKEN_EXPIRE_MINUTES", "60"))
RESET_TOKEN_SECRET = os.getenv("RESET_TOKEN_SECRET", SECRET_KEY)
RESET_TOKEN_EXPIRE_MINUTES = int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", "15"))

# Session cookie
COOKIE_NAME = "jwt"
COOKIE_EXPIRE_DAYS = int(os.getenv("COOKIE_EXPIRE_DAYS", "7"))

# =============================================================================
# APPLICATION SETTINGS
# =============================================================================

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION = ENVIRONMENT.lower() == "production"
DEBUG = os.getenv("DEBUG", "True").lower() in ("true", "1", "yes")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# Frontend base URL used to build verification / reset links
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3000")

# =============================================================================
# CORS SETTINGS
# =============================================================================

# Comma-separated list of allowed origins, or "*" for all
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
CORS_ALLOW_CREDENTIALS = os.getenv("CORS_ALLOW_CREDENTIALS", "True").lower() in ("true", "1", "yes")

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")
LOG_OUTPUT = os.getenv("LOG_OUTPUT", "stdout")
LOG_FILE = os.getenv("LOG_FILE", str(BASE_DIR.parent / "logs" / "app.json.log"))

# =============================================================================
# EMAIL SERVICE
# =============================================================================

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "noreply@vitalconnect.app")


# =============================================================================
# SUMMARY
# =============================================================================

def get_config_summary():
    """Non-secret settings, logged once at startup."""
    return {
        "database": DATABASE_URL.split("://", 1)[0],
        "environment": ENVIRONMENT,
        "debug": DEBUG,
        "listen": f"{HOST}:{PORT}",
        "client_url": CLIENT_URL,
        "email_configured": bool(SMTP_HOST and SMTP_USER),
        "log_level": LOG_LEVEL,
        "log_output": LOG_OUTPUT,
    }
