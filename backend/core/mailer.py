"""
Outgoing mail for account flows (password reset, email verification).
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from core.config import settings

logger = logging.getLogger(__name__)


def _is_configured() -> bool:
    return bool(settings.send_emails and settings.smtp_server)


def send_email(to_emails: List[str], subject: str, text_content: str, html_content: Optional[str] = None) -> bool:
    """Send a mail over SMTP+STARTTLS. Returns False instead of raising."""
    if not _is_configured():
        logger.info(f"Email sending disabled; not sending '{subject}' to {to_emails}")
        return False

    try:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = settings.from_email
        msg["To"] = ", ".join(to_emails)
        msg.attach(MIMEText(text_content, "plain"))
        if html_content:
            msg.attach(MIMEText(html_content, "html"))

        with smtplib.SMTP(settings.smtp_server, settings.smtp_port, timeout=10) as server:
            server.starttls()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(msg)

        logger.info(f"Email sent successfully to {to_emails}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_emails}: {e}")
        return False


def send_password_reset_email(email: str, token: str) -> bool:
    link = f"{settings.frontend_url.rstrip('/')}/reset-password?token={token}"
    return send_email(
        [email],
        "Reset your Stockroom password",
        f"Use the link below to choose a new password:\n\n{link}\n\nIf you did not ask for this, ignore this mail.",
    )


def send_verification_email(email: str, token: str) -> bool:
    link = f"{settings.frontend_url.rstrip('/')}/verify?token={token}"
    return send_email(
        [email],
        "Verify your Stockroom account",
        f"Confirm your email address:\n\n{link}",
    )
