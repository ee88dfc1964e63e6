"""
Email Notifications

Account emails (verification, password reset, appointment confirmation)
sent over SMTP. Routers schedule them with FastAPI BackgroundTasks so a
delivery failure is logged and never changes the response.
"""

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from . import config
from .structured_logging import get_logger

logger = get_logger("notifications")


def send_email(to: str, subject: str, html: str) -> bool:
    """Send one HTML email. Returns False instead of raising on delivery failure."""
    if not to:
        logger.warning("Email skipped, no recipient", extra={"email_subject": subject})
        return False

    if not config.SMTP_HOST or not config.SMTP_USER:
        logger.info(
            "Email not configured. Would send email",
            extra={"email_to": to, "email_subject": subject},
        )
        return True

    try:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = config.EMAIL_FROM
        msg["To"] = to
        msg.attach(MIMEText(html, "html"))

        with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT) as server:
            server.starttls()
            server.login(config.SMTP_USER, config.SMTP_PASSWORD)
            server.sendmail(config.EMAIL_FROM, to, msg.as_string())

        logger.info("Email sent", extra={"email_to": to, "email_subject": subject})
        return True

    except (smtplib.SMTPException, OSError) as e:
        logger.error(
            "Failed to send email",
            extra={"email_to": to, "email_subject": subject, "error": str(e)},
        )
        return False


# =============================================================================
# MESSAGES
# =============================================================================

def _link_body(name: str, text: str, url: str, expires: str) -> str:
    return (
        f"<p>Hi {escape(name or '')},</p>"
        f"<p>{text}</p>"
        f'<p><a href="{escape(url)}">{escape(url)}</a></p>'
        f"<p>This link expires in {expires}.</p>"
    )


def send_verification_email(to: str, name: str, url: str) -> bool:
    html = _link_body(
        name,
        "Welcome to VitalConnect! Please confirm your email address.",
        url,
        f"{config.EMAIL_TOKEN_EXPIRE_MINUTES} minutes",
    )
    return send_email(to, "Verify your email", html)


def send_password_reset_email(to: str, name: str, url: str) -> bool:
    html = _link_body(
        name,
        "Forgot your password? Use the link below to choose a new one. "
        "If you did not ask for this, ignore this email.",
        url,
        f"{config.RESET_TOKEN_EXPIRE_MINUTES} minutes",
    )
    return send_email(to, "Your password reset link", html)


def send_appointment_email(to: str, name: str, doctor_name: str, day: str, time_slot: str, status: str) -> bool:
    html = (
        f"<p>Hi {escape(name or '')},</p>"
        f"<p>Your appointment with {escape(doctor_name or 'your doctor')} on {escape(day)} "
        f"at {escape(time_slot)} is <strong>{escape(status)}</strong>.</p>"
    )
    return send_email(to, f"Appointment {status}", html)
