"""
auth/mailer.py -- Delivery of password reset links.

EmailSender is the seam the auth service talks to. SmtpEmailSender is the
production implementation; when SMTP_HOST is unset it runs in dev mode and
logs a redacted preview instead of sending, so local setups work without a
mail server.

Delivery errors are logged and reported as False, never raised: the
forgot-password flow must respond identically whether or not mail went out.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("sessiongate.email")


class EmailSender(Protocol):
    def send_password_reset(self, to_email: str, name: str | None, reset_link: str) -> bool: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def build_password_reset_message(name: str | None, reset_link: str, ttl_minutes: int) -> tuple[str, str]:
    """Return (subject, plain-text body) for a reset email."""
    subject = "Password Reset Request"
    body = (
        f"Hello {name or 'there'},\n\n"
        "We received a request to reset your password.\n"
        "Open the link below (or copy it into your browser):\n\n"
        f"{reset_link}\n\n"
        f"The link expires in {ttl_minutes} minutes and can be used once.\n"
        "If you did not request this, simply ignore this email.\n"
    )
    return subject, body


class SmtpEmailSender:
    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "",
        from_name: str = "SessionGate",
        reset_ttl_minutes: int = 15,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.reset_ttl_minutes = reset_ttl_minutes

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpEmailSender":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.mail_from,
            from_name=settings.mail_from_name,
            reset_ttl_minutes=max(1, settings.reset_token_expire_seconds // 60),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send_password_reset(self, to_email: str, name: str | None, reset_link: str) -> bool:
        subject, body = build_password_reset_message(name, reset_link, self.reset_ttl_minutes)
        return self._send(to_email, subject, body)

    def _send(self, to_email: str, subject: str, body: str) -> bool:
        if not self.is_configured:
            # Dev mode: the link itself is a credential, so only its prefix is logged.
            logger.info(
                "Email (dev mode, not sent) to=%s subject=%r preview=%r",
                redact_email(to_email),
                subject,
                body[:60],
            )
            return True

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.set_content(body)

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.send_message(msg)
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "Email delivery failed to=%s host=%s error=%s: %s",
                redact_email(to_email),
                self.smtp_host,
                type(exc).__name__,
                exc,
            )
            return False

        logger.info("Email sent to=%s subject=%r", redact_email(to_email), subject)
        return True
