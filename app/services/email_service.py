"""
Email Service

Renders the account emails (2FA code, password reset, invitation,
welcome) and hands them to a delivery backend. Names come from user
input and are HTML-escaped before they go into a template.

Backends:
- console: logs the message (development default)
- memory: keeps messages in an outbox list (tests)

Delivery through a real provider is plugged in by adding a backend with
a send(message) method.
"""
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from html import escape
from typing import List, Protocol
from urllib.parse import urlencode

from app.config import get_settings
from app.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str
    sender: str = ""
    # Plain values the template was rendered with; handy for tests and audit
    context: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)


class EmailBackend(Protocol):
    def send(self, message: EmailMessage) -> None:
        ...


class ConsoleEmailBackend:
    """Write messages to the log instead of delivering them."""

    def send(self, message: EmailMessage) -> None:
        logger.info(f"Email from {message.sender} to {message.to}: {message.subject}")
        logger.debug(message.html)


class MemoryEmailBackend:
    """Keep messages in memory."""

    def __init__(self):
        self.outbox: List[EmailMessage] = []

    def send(self, message: EmailMessage) -> None:
        self.outbox.append(message)

    def last_to(self, email: str) -> EmailMessage:
        for message in reversed(self.outbox):
            if message.to == email:
                return message
        raise LookupError(f"No email sent to {email}")

    def clear(self) -> None:
        self.outbox.clear()


BACKENDS = {
    "console": ConsoleEmailBackend,
    "memory": MemoryEmailBackend,
}


class EmailService:
    def __init__(self, backend: EmailBackend, app_url: str = None):
        self.backend = backend
        self.app_url = (app_url or settings.APP_URL).rstrip("/")
        self.sender = f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>"

    def send_two_factor_code(self, email: str, code: str) -> None:
        html = f"""
            <h2>Two-Factor Authentication</h2>
            <p>Your verification code is: <strong>{code}</strong></p>
            <p>This code will expire in {settings.TWO_FACTOR_CODE_EXPIRE_MINUTES} minutes.</p>
            <p>If you didn't request this code, please ignore this email.</p>
        """
        self._send(email, "Your Two-Factor Authentication Code", html, code=code)

    def send_password_reset(self, email: str, reset_token: str) -> None:
        reset_url = f"{self.app_url}/reset-password?{urlencode({'token': reset_token})}"
        html = f"""
            <h2>Password Reset Request</h2>
            <p>You requested to reset your password.</p>
            <p><a href="{escape(reset_url)}">Reset Password</a></p>
            <p>This link will expire in {settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes.</p>
            <p>If you didn't request this, please ignore this email.</p>
        """
        self._send(email, "Reset Your Password", html, token=reset_token, url=reset_url)

    def send_invitation(self, email: str, invitation_token: str, inviter_name: str) -> None:
        invitation_url = f"{self.app_url}/accept-invitation?{urlencode({'token': invitation_token})}"
        html = f"""
            <h2>Team Invitation</h2>
            <p>{escape(inviter_name)} has invited you to join their team.</p>
            <p><a href="{escape(invitation_url)}">Accept Invitation</a></p>
            <p>This invitation will expire in {settings.INVITATION_EXPIRE_DAYS} days.</p>
        """
        self._send(
            email,
            "You've Been Invited!",
            html,
            token=invitation_token,
            url=invitation_url,
            inviter=inviter_name,
        )

    def send_welcome(self, email: str, name: str) -> None:
        html = f"""
            <h2>Welcome, {escape(name)}!</h2>
            <p>Thank you for joining our platform.</p>
        """
        self._send(email, "Welcome to MasterBackup!", html)

    def _send(self, to: str, subject: str, html: str, **context) -> None:
        message = EmailMessage(to=to, subject=subject, html=html, sender=self.sender, context=context)
        try:
            self.backend.send(message)
        except Exception:
            logger.error(f"Error sending email to {to}", exc_info=True)
            raise
        logger.info(f"Email sent to {to}: {subject}")


@lru_cache()
def get_email_service() -> EmailService:
    """Process-wide email service built from EMAIL_BACKEND."""
    backend_cls = BACKENDS.get(settings.EMAIL_BACKEND.lower())
    if backend_cls is None:
        raise ValueError(f"Unknown EMAIL_BACKEND: {settings.EMAIL_BACKEND}")
    return EmailService(backend_cls())
