"""Unit tests for auth/mailer.py -- reset email composition and delivery.

Covers:
- message text: greeting, link, expiry notice
- redact_email() never logs the full local part
- dev mode (no SMTP host) reports success without a network call
- SMTP failures are reported as False, never raised
"""

import smtplib

from auth.mailer import SmtpEmailSender, build_password_reset_message, redact_email
from core.config import Settings


class _RecordingSMTP:
    """Stand-in for smtplib.SMTP that records what would have been sent."""

    instances: list["_RecordingSMTP"] = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in_as = None
        self.messages = []
        _RecordingSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in_as = user

    def send_message(self, msg):
        self.messages.append(msg)


class _FailingSMTP(_RecordingSMTP):
    def send_message(self, msg):
        raise smtplib.SMTPRecipientsRefused({"alice@example.com": (550, b"no such user")})


def _configured_sender(**overrides) -> SmtpEmailSender:
    params = dict(
        smtp_host="smtp.example.test",
        smtp_port=587,
        smtp_user="mailer",
        smtp_password="pw",
        from_email="no-reply@example.test",
    )
    params.update(overrides)
    return SmtpEmailSender(**params)


class TestMessage:
    def test_body_contains_greeting_link_and_expiry(self) -> None:
        subject, body = build_password_reset_message("Alice", "https://x.test/r?token=abc", 15)
        assert subject == "Password Reset Request"
        assert body.startswith("Hello Alice,")
        assert "https://x.test/r?token=abc" in body
        assert "15 minutes" in body

    def test_missing_name_falls_back(self) -> None:
        _, body = build_password_reset_message(None, "https://x.test/r?token=abc", 15)
        assert body.startswith("Hello there,")

    def test_redact_email(self) -> None:
        """Only the first two characters of the local part survive."""
        assert redact_email("alice@example.com") == "al***@example.com"
        assert redact_email("not-an-email") == "redacted"


class TestDelivery:
    def test_dev_mode_logs_instead_of_sending(self, monkeypatch) -> None:
        """Without SMTP_HOST nothing is sent and the call reports success."""
        monkeypatch.setattr(smtplib, "SMTP", _FailingSMTP)
        sender = SmtpEmailSender()
        assert sender.is_configured is False
        assert sender.send_password_reset("alice@example.com", "Alice", "https://x.test/r?token=abc") is True

    def test_sends_over_starttls(self, monkeypatch) -> None:
        _RecordingSMTP.instances.clear()
        monkeypatch.setattr(smtplib, "SMTP", _RecordingSMTP)
        sender = _configured_sender()

        assert sender.send_password_reset("alice@example.com", "Alice", "https://x.test/r?token=abc") is True

        server = _RecordingSMTP.instances[-1]
        assert server.host == "smtp.example.test"
        assert server.started_tls is True
        assert server.logged_in_as == "mailer"
        msg = server.messages[0]
        assert msg["To"] == "alice@example.com"
        assert msg["From"] == "SessionGate <no-reply@example.test>"
        assert "https://x.test/r?token=abc" in msg.get_content()

    def test_smtp_failure_returns_false(self, monkeypatch) -> None:
        """A refused recipient is logged and reported, not raised."""
        monkeypatch.setattr(smtplib, "SMTP", _FailingSMTP)
        assert _configured_sender().send_password_reset("alice@example.com", None, "https://x.test/r") is False

    def test_from_settings(self) -> None:
        """Settings map onto the sender, with the reset TTL expressed in minutes."""
        settings = Settings(
            secret_key="k" * 32,
            smtp_host="smtp.example.test",
            mail_from="auth@example.test",
            reset_token_expire_seconds=30 * 60,
        )
        sender = SmtpEmailSender.from_settings(settings)
        assert sender.is_configured is True
        assert sender.from_email == "auth@example.test"
        assert sender.reset_ttl_minutes == 30
