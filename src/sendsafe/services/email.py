"""Email notifications for recipients.

Two messages are sent to recipients:
- the delivery notification, with the link to the delivery page
- the access code, the second factor required before downloading

Both are rendered from Jinja2 templates shipped in ``sendsafe/templates/email``
and sent over SMTP. Sending never raises: callers get a NotificationResult
and decide whether a failure matters.

Usage:
    mailer = EmailNotificationService(settings.smtp, base_url=settings.access.public_base_url)
    result = mailer.send_access_code(
        delivery_id=delivery.id,
        recipient_email="recipient@example.com",
        code="042917",
        delivery_title=delivery.title,
        expires_in_minutes=15,
    )
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import smtplib
import ssl
from dataclasses import dataclass
from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import TYPE_CHECKING, Any

from jinja2 import Environment, PackageLoader, TemplateError, select_autoescape

if TYPE_CHECKING:
    from uuid import UUID

    from sendsafe.core.config import SMTPSettings


logger = logging.getLogger(__name__)


class NotificationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class NotificationResult:
    """Outcome of one email send.

    ``recipient_hash`` identifies the recipient in logs without the address.
    """

    success: bool
    message_id: str | None
    status: NotificationStatus
    recipient_hash: str
    error: str | None
    sent_at: datetime | None


class EmailError(Exception):
    pass


class EmailDeliveryError(EmailError):
    """The SMTP relay could not be reached or refused the message."""


def hash_email(email: str) -> str:
    """Hash an email address so logs can correlate without exposing it."""
    return hashlib.sha256(email.lower().strip().encode()).hexdigest()


class EmailNotificationService:
    """Sends recipient-facing emails over SMTP.

    Attributes:
        smtp_settings: SMTP configuration for email delivery.
        base_url: Public base URL used to build delivery links.
        app_name: Product name shown in subjects and bodies.
    """

    def __init__(
        self,
        smtp_settings: SMTPSettings,
        base_url: str = "http://localhost:8000",
        app_name: str = "SendSafe",
    ) -> None:
        self.smtp_settings = smtp_settings
        self.base_url = base_url.rstrip("/")
        self.app_name = app_name

        self._env = Environment(
            loader=PackageLoader("sendsafe", "templates/email"),
            autoescape=select_autoescape(["html", "xml"]),
        )

    def delivery_link(self, delivery_id: UUID) -> str:
        """Build the recipient link for a delivery."""
        return f"{self.base_url}/d/{delivery_id}"

    def send_access_code(
        self,
        *,
        delivery_id: UUID,
        recipient_email: str,
        code: str,
        delivery_title: str,
        expires_in_minutes: int,
    ) -> NotificationResult:
        """Send a one-time access code to the recipient.

        Args:
            delivery_id: UUID of the delivery the code unlocks.
            recipient_email: Recipient's email address.
            code: The 6-digit code.
            delivery_title: Title shown to help the recipient recognize the delivery.
            expires_in_minutes: Code lifetime, stated in the email.

        Returns:
            NotificationResult with the send outcome.
        """
        context = {
            "app_name": self.app_name,
            "code": code,
            "delivery_title": delivery_title,
            "expires_in_minutes": expires_in_minutes,
            "delivery_link": self.delivery_link(delivery_id),
        }
        subject = f"[{self.app_name}] Your access code: {code}"
        return self._render_and_send(
            "access_code",
            delivery_id=delivery_id,
            recipient_email=recipient_email,
            subject=subject,
            context=context,
        )

    def send_delivery_notification(
        self,
        *,
        delivery_id: UUID,
        recipient_email: str,
        delivery_title: str,
        message: str | None,
        expires_at: datetime,
        file_count: int,
    ) -> NotificationResult:
        """Tell the recipient that files are waiting for them.

        Returns:
            NotificationResult with the send outcome.
        """
        context = {
            "app_name": self.app_name,
            "delivery_title": delivery_title,
            "message": message,
            "expires_at_formatted": expires_at.strftime("%Y-%m-%d at %H:%M UTC"),
            "file_count": file_count,
            "delivery_link": self.delivery_link(delivery_id),
        }
        subject = f"[{self.app_name}] Secure files for you: {delivery_title}"
        return self._render_and_send(
            "delivery_notification",
            delivery_id=delivery_id,
            recipient_email=recipient_email,
            subject=subject,
            context=context,
        )

    def _render_and_send(
        self,
        template_name: str,
        *,
        delivery_id: UUID,
        recipient_email: str,
        subject: str,
        context: dict[str, Any],
    ) -> NotificationResult:
        recipient_hash = hash_email(recipient_email)
        log_extra = {
            "delivery_id": str(delivery_id),
            "recipient_hash": recipient_hash[:16],
            "template": template_name,
        }

        try:
            message_id = self._send_email(
                to_email=recipient_email,
                subject=subject,
                html_body=self._env.get_template(f"{template_name}.html").render(**context),
                text_body=self._env.get_template(f"{template_name}.txt").render(**context),
            )
        except (EmailError, TemplateError) as e:
            logger.error("Recipient email not sent: %s", e, extra=log_extra)
            return NotificationResult(
                success=False,
                message_id=None,
                status=NotificationStatus.FAILED,
                recipient_hash=recipient_hash,
                error=str(e),
                sent_at=None,
            )

        logger.info("Recipient email sent", extra={**log_extra, "message_id": message_id})
        return NotificationResult(
            success=True,
            message_id=message_id,
            status=NotificationStatus.SENT,
            recipient_hash=recipient_hash,
            error=None,
            sent_at=datetime.now(UTC),
        )

    def _connect(self) -> smtplib.SMTP:
        smtp = self.smtp_settings
        if smtp.use_ssl:
            return smtplib.SMTP_SSL(
                smtp.host, smtp.port, timeout=smtp.timeout, context=ssl.create_default_context()
            )
        server = smtplib.SMTP(smtp.host, smtp.port, timeout=smtp.timeout)
        if smtp.use_tls:
            server.starttls(context=ssl.create_default_context())
        return server

    def _build_message(
        self, to_email: str, subject: str, html_body: str, text_body: str
    ) -> tuple[str, MIMEMultipart]:
        sender = self.smtp_settings.from_address
        message_id = f"<{secrets.token_hex(16)}@{sender.rpartition('@')[2]}>"

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{self.smtp_settings.from_name} <{sender}>"
        message["To"] = to_email
        message["Message-ID"] = message_id
        # Clients show the last alternative they can render, so HTML goes last
        message.attach(MIMEText(text_body, "plain", "utf-8"))
        message.attach(MIMEText(html_body, "html", "utf-8"))
        return message_id, message

    def _send_email(self, to_email: str, subject: str, html_body: str, text_body: str) -> str:
        """Hand one message to the SMTP relay and return its Message-ID.

        Raises:
            EmailDeliveryError: The relay was unreachable or refused the message.
        """
        message_id, message = self._build_message(to_email, subject, html_body, text_body)
        smtp = self.smtp_settings

        try:
            server = self._connect()
            if smtp.username and smtp.password:
                server.login(smtp.username, smtp.password.get_secret_value())
            server.sendmail(smtp.from_address, [to_email], message.as_string())
            server.quit()
        # SMTPException subclasses OSError, so it is matched first
        except smtplib.SMTPException as e:
            raise EmailDeliveryError(f"SMTP error: {e}") from e
        except OSError as e:
            raise EmailDeliveryError(f"Connection error: {e}") from e

        return message_id
