"""Tests for the email notification service.

Tests verify:
- Access code and delivery notification content
- SMTP transport selection (plain, STARTTLS, implicit TLS, login)
- Send failures come back as results instead of exceptions
- Recipient addresses are only logged as hashes
"""

from __future__ import annotations

import hashlib
import smtplib
import uuid
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest

from sendsafe.services.email import (
    EmailDeliveryError,
    EmailNotificationService,
    NotificationStatus,
    hash_email,
)

DELIVERY_ID = uuid.UUID("3d8f5a1e-2b4c-4e6f-9a7b-1c2d3e4f5a6b")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_smtp_settings() -> MagicMock:
    """Create mock SMTP settings for testing."""
    settings = MagicMock()
    settings.host = "localhost"
    settings.port = 1025
    settings.username = None
    settings.password = None
    settings.use_tls = False
    settings.use_ssl = False
    settings.from_address = "noreply@example.com"
    settings.from_name = "SendSafe Test"
    settings.timeout = 30
    return settings


@pytest.fixture
def email_service(mock_smtp_settings) -> EmailNotificationService:
    return EmailNotificationService(mock_smtp_settings, base_url="https://send.example.com/")


def send_code(service: EmailNotificationService):
    return service.send_access_code(
        delivery_id=DELIVERY_ID,
        recipient_email="bob@example.com",
        code="042917",
        delivery_title="Signed contract",
        expires_in_minutes=15,
    )


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------
class TestContent:
    """Rendered subjects and bodies."""

    def test_delivery_link(self, email_service):
        link = email_service.delivery_link(DELIVERY_ID)
        assert link == f"https://send.example.com/d/{DELIVERY_ID}"

    @patch("sendsafe.services.email.EmailNotificationService._send_email")
    def test_access_code_email(self, mock_send, email_service):
        mock_send.return_value = "<id@example.com>"

        result = send_code(email_service)

        assert result.success
        assert result.status == NotificationStatus.SENT
        assert result.message_id == "<id@example.com>"
        kwargs = mock_send.call_args.kwargs
        assert kwargs["to_email"] == "bob@example.com"
        assert kwargs["subject"] == "[SendSafe] Your access code: 042917"
        assert "042917" in kwargs["text_body"]
        assert "15 minutes" in kwargs["text_body"]
        assert "042917" in kwargs["html_body"]

    @patch("sendsafe.services.email.EmailNotificationService._send_email")
    def test_delivery_notification_email(self, mock_send, email_service):
        mock_send.return_value = "<id@example.com>"

        result = email_service.send_delivery_notification(
            delivery_id=DELIVERY_ID,
            recipient_email="bob@example.com",
            delivery_title="Signed contract",
            message="Please review before Friday",
            expires_at=datetime(2026, 10, 26, 12, 0, tzinfo=UTC),
            file_count=2,
        )

        assert result.success
        kwargs = mock_send.call_args.kwargs
        assert "Signed contract" in kwargs["subject"]
        assert f"https://send.example.com/d/{DELIVERY_ID}" in kwargs["text_body"]
        assert "2 files" in kwargs["text_body"]
        assert "Please review before Friday" in kwargs["text_body"]
        assert "2026-10-26 at 12:00 UTC" in kwargs["text_body"]

    @patch("sendsafe.services.email.EmailNotificationService._send_email")
    def test_html_body_escapes_title(self, mock_send, email_service):
        mock_send.return_value = "<id@example.com>"

        email_service.send_delivery_notification(
            delivery_id=DELIVERY_ID,
            recipient_email="bob@example.com",
            delivery_title="Q3 & Q4 <draft>",
            message=None,
            expires_at=datetime(2026, 10, 26, 12, 0, tzinfo=UTC),
            file_count=1,
        )

        html_body = mock_send.call_args.kwargs["html_body"]
        assert "<draft>" not in html_body
        assert "&lt;draft&gt;" in html_body


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------
class TestFailures:
    @patch("sendsafe.services.email.EmailNotificationService._send_email")
    def test_failure_returns_result(self, mock_send, email_service):
        mock_send.side_effect = EmailDeliveryError("SMTP error: connection refused")

        result = send_code(email_service)

        assert not result.success
        assert result.status == NotificationStatus.FAILED
        assert result.message_id is None
        assert "connection refused" in result.error

    def test_recipient_hash(self, email_service):
        with patch.object(email_service, "_send_email", return_value="<id@example.com>"):
            result = send_code(email_service)

        assert result.recipient_hash == hashlib.sha256(b"bob@example.com").hexdigest()

    def test_hash_email_normalizes(self):
        assert hash_email(" Bob@Example.com ") == hash_email("bob@example.com")


# ---------------------------------------------------------------------------
# SMTP transport
# ---------------------------------------------------------------------------
class TestSmtpTransport:
    @patch("sendsafe.services.email.smtplib.SMTP")
    def test_plain_smtp(self, mock_smtp_cls, email_service):
        server = mock_smtp_cls.return_value

        result = send_code(email_service)

        assert result.success
        mock_smtp_cls.assert_called_once_with("localhost", 1025, timeout=30)
        server.starttls.assert_not_called()
        server.login.assert_not_called()
        from_address, recipients, raw = server.sendmail.call_args.args
        assert from_address == "noreply@example.com"
        assert recipients == ["bob@example.com"]
        assert "Subject: [SendSafe] Your access code: 042917" in raw
        assert result.message_id.endswith("@example.com>")
        server.quit.assert_called_once()

    @patch("sendsafe.services.email.smtplib.SMTP")
    def test_starttls_and_login(self, mock_smtp_cls, email_service, mock_smtp_settings):
        mock_smtp_settings.use_tls = True
        mock_smtp_settings.username = "mailer"
        mock_smtp_settings.password = MagicMock()
        mock_smtp_settings.password.get_secret_value.return_value = "hunter2"
        server = mock_smtp_cls.return_value

        send_code(email_service)

        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "hunter2")

    @patch("sendsafe.services.email.smtplib.SMTP_SSL")
    def test_implicit_tls(self, mock_smtp_ssl_cls, email_service, mock_smtp_settings):
        mock_smtp_settings.use_ssl = True

        result = send_code(email_service)

        assert result.success
        mock_smtp_ssl_cls.return_value.sendmail.assert_called_once()

    @patch("sendsafe.services.email.smtplib.SMTP")
    def test_smtp_exception(self, mock_smtp_cls, email_service):
        mock_smtp_cls.return_value.sendmail.side_effect = smtplib.SMTPRecipientsRefused({})

        result = send_code(email_service)

        assert not result.success
        assert result.error.startswith("SMTP error")

    @patch("sendsafe.services.email.smtplib.SMTP")
    def test_connection_refused(self, mock_smtp_cls, email_service):
        mock_smtp_cls.side_effect = ConnectionRefusedError("refused")

        result = send_code(email_service)

        assert not result.success
        assert result.error.startswith("Connection error")
