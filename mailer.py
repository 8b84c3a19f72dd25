"""
Outgoing mail for account flows.

The reset link is built from RESET_URL and sent over SMTP. Without
SMTP_HOST nothing can be delivered; the attempt is logged (never the token)
and dropped.
"""
import os
import smtplib
from email.message import EmailMessage

from logging_config import get_logger

logger = get_logger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
MAIL_FROM = os.getenv("MAIL_FROM", "no-reply@storefront.local")
RESET_URL = os.getenv("RESET_URL", "http://localhost:3000/reset-password")


def reset_message(email: str, token: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = "Reset your password"
    message["From"] = MAIL_FROM
    message["To"] = email
    message.set_content(
        "Someone asked to reset the password for this account.\n\n"
        f"Open this link to choose a new one:\n{RESET_URL}?token={token}\n\n"
        "If it wasn't you, ignore this email."
    )
    return message


def send_reset_email(email: str, token: str):
    if not SMTP_HOST:
        logger.warning("password_reset_mail_not_configured", email=email)
        return
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=10) as smtp:
            smtp.starttls()
            if SMTP_USER:
                smtp.login(SMTP_USER, SMTP_PASSWORD or "")
            smtp.send_message(reset_message(email, token))
    except (smtplib.SMTPException, OSError) as e:
        logger.error("password_reset_mail_failed", email=email, error=str(e))
        return
    logger.info("password_reset_mail_sent", email=email)


def get_reset_sender():
    """Dependency returning the callable that delivers reset tokens."""
    return send_reset_email
