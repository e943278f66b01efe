"""Sender-side delivery management.

Senders create deliveries, attach files, watch their counters, revoke or
delete them, and (re)send the notification email to the recipient. Every
operation on an existing delivery requires the caller to own it or to be
an administrator.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sendsafe.core.clock import utcnow
from sendsafe.db.models.base import DeliveryStatus, ViewerType
from sendsafe.db.models.deliveries import Delivery, DeliveryFile
from sendsafe.services.access_gate import normalize_email
from sendsafe.services.audit_log import AccessContext
from sendsafe.services.errors import (
    DeliveryNotFoundError,
    DeliveryValidationError,
    InvalidStateError,
    NotDeliveryOwnerError,
)
from sendsafe.services.storage import build_storage_key

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sendsafe.core.clock import Clock
    from sendsafe.core.config import AccessSettings
    from sendsafe.services.destruction import DestructionCoordinator, DestructionReport
    from sendsafe.services.email import EmailNotificationService, NotificationResult
    from sendsafe.services.lifecycle import DeliveryLifecycleService, TransitionResult
    from sendsafe.services.repository import DeliveryStore
    from sendsafe.services.storage import ObjectStoreClient

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 100
MESSAGE_MAX_LENGTH = 2000
MAX_VIEWS_RANGE = (1, 1000)
MAX_DOWNLOADS_RANGE = (1, 100)

# Letters, digits, space and a few punctuation marks; no path separators
SAFE_FILENAME = re.compile(r"^[\w\-. ()\[\]]{1,255}$")


def sanitize_title(title: str) -> str:
    """Strip angle brackets and surrounding whitespace from a title."""
    return re.sub(r"[<>]", "", title).strip()


@dataclass(frozen=True, slots=True)
class DeliveryStats:
    """Delivery counts for a sender."""

    total: int
    active: int
    expired: int
    revoked: int
    this_month: int


class DeliveryService:
    """Sender operations on deliveries.

    Example:
        service = DeliveryService(store, storage, lifecycle, destruction, mailer, settings)
        delivery = await service.create_delivery(
            sender_id=user_id,
            title="Signed contract",
            recipient_email="bob@example.com",
            expires_at=now + timedelta(days=7),
        )
        await service.attach_file(delivery.id, user_id, "contract.pdf", "application/pdf", data)
    """

    def __init__(
        self,
        store: DeliveryStore,
        storage: ObjectStoreClient,
        lifecycle: DeliveryLifecycleService,
        destruction: DestructionCoordinator,
        mailer: EmailNotificationService,
        settings: AccessSettings,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._storage = storage
        self._lifecycle = lifecycle
        self._destruction = destruction
        self._mailer = mailer
        self._settings = settings
        self._clock = clock or utcnow

    @property
    def max_file_size_bytes(self) -> int:
        return self._settings.max_file_size_bytes

    async def create_delivery(
        self,
        *,
        sender_id: UUID,
        title: str,
        recipient_email: str,
        expires_at: datetime,
        message: str | None = None,
        max_views: int | None = None,
        max_downloads: int | None = None,
    ) -> Delivery:
        """Create an active delivery with no files.

        Args:
            sender_id: Identity of the sender.
            title: Display title; angle brackets are stripped.
            recipient_email: Recipient address, stored normalized.
            expires_at: Time after which the delivery expires; must be in the future.
            message: Optional note shown to the recipient.
            max_views: View limit (defaults from settings).
            max_downloads: Download limit (defaults from settings).

        Returns:
            The created delivery.

        Raises:
            DeliveryValidationError: If an argument breaks a delivery rule.
        """
        title = sanitize_title(title)
        if not title or len(title) > TITLE_MAX_LENGTH:
            raise DeliveryValidationError(
                f"Title must be 1-{TITLE_MAX_LENGTH} characters", field="title"
            )
        if message is not None and len(message) > MESSAGE_MAX_LENGTH:
            raise DeliveryValidationError(
                f"Message must be at most {MESSAGE_MAX_LENGTH} characters", field="message"
            )

        email = normalize_email(recipient_email)
        if "@" not in email:
            raise DeliveryValidationError("Recipient email is invalid", field="recipient_email")

        if expires_at <= self._clock():
            raise DeliveryValidationError("Expiry must be in the future", field="expires_at")

        max_views = max_views if max_views is not None else self._settings.default_max_views
        max_downloads = (
            max_downloads if max_downloads is not None else self._settings.default_max_downloads
        )
        if not MAX_VIEWS_RANGE[0] <= max_views <= MAX_VIEWS_RANGE[1]:
            raise DeliveryValidationError("max_views must be between 1 and 1000", "max_views")
        if not MAX_DOWNLOADS_RANGE[0] <= max_downloads <= MAX_DOWNLOADS_RANGE[1]:
            raise DeliveryValidationError(
                "max_downloads must be between 1 and 100", "max_downloads"
            )

        now = self._clock()
        delivery = Delivery(
            id=uuid.uuid4(),
            sender_id=sender_id,
            title=title,
            message=message or None,
            recipient_email=email,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
            status=DeliveryStatus.ACTIVE,
            current_views=0,
            max_views=max_views,
            current_downloads=0,
            max_downloads=max_downloads,
        )
        await self._store.add_delivery(delivery)

        logger.info(
            "Delivery created",
            extra={
                "delivery_id": str(delivery.id),
                "sender_id": str(sender_id),
                "max_views": max_views,
                "max_downloads": max_downloads,
            },
        )
        return delivery

    async def attach_file(
        self,
        delivery_id: UUID,
        sender_id: UUID,
        filename: str,
        mime_type: str,
        data: bytes,
        *,
        is_admin: bool = False,
    ) -> DeliveryFile:
        """Upload a file to the object store and attach it to an active delivery.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            NotDeliveryOwnerError: If the caller does not own the delivery.
            InvalidStateError: If the delivery is no longer active.
            DeliveryValidationError: If the filename or size is not acceptable.
            StorageError: If the upload fails.
        """
        delivery = await self._get_owned(delivery_id, sender_id, is_admin)
        if not delivery.is_active:
            raise InvalidStateError(delivery_id, delivery.status.value, "attach files to")

        filename = filename.strip()
        if not SAFE_FILENAME.match(filename) or filename in {".", ".."}:
            raise DeliveryValidationError("Filename contains invalid characters", "filename")
        if not data:
            raise DeliveryValidationError("File is empty", field="file")
        if len(data) > self._settings.max_file_size_bytes:
            raise DeliveryValidationError(
                f"File exceeds {self._settings.max_file_size_bytes} bytes", field="file"
            )

        file_id = uuid.uuid4()
        key = build_storage_key(delivery_id, file_id, filename)
        upload = self._storage.upload(key, data, content_type=mime_type)

        delivery_file = DeliveryFile(
            id=file_id,
            delivery_id=delivery_id,
            filename=filename,
            mime_type=mime_type,
            sha256=upload.sha256_digest,
            size_bytes=upload.size_bytes,
            storage_key=key,
            created_at=self._clock(),
        )
        await self._store.add_file(delivery_file)

        logger.info(
            "File attached",
            extra={
                "delivery_id": str(delivery_id),
                "file_id": str(file_id),
                "size_bytes": upload.size_bytes,
            },
        )
        return delivery_file

    async def get_delivery(
        self, delivery_id: UUID, sender_id: UUID, *, is_admin: bool = False
    ) -> Delivery:
        """Return a delivery with its files, unmasked, for its sender."""
        return await self._get_owned(delivery_id, sender_id, is_admin, with_files=True)

    async def list_deliveries(
        self, sender_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> list[Delivery]:
        return await self._store.list_for_sender(sender_id, limit=limit, offset=offset)

    async def stats(self, sender_id: UUID | None) -> DeliveryStats:
        """Count deliveries by status; None counts every sender."""
        now = self._clock()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        counts = await self._store.count_by_status(sender_id, month_start)
        return DeliveryStats(
            total=counts["total"],
            active=counts["active"],
            expired=counts["expired"],
            revoked=counts["revoked"],
            this_month=counts["since"],
        )

    async def revoke(
        self,
        delivery_id: UUID,
        sender_id: UUID,
        *,
        is_admin: bool = False,
        context: AccessContext | None = None,
    ) -> TransitionResult:
        """Revoke an active delivery; its files are purged by the sweeper.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            NotDeliveryOwnerError: If the caller does not own the delivery.
            InvalidStateError: If the delivery has already expired.
        """
        await self._get_owned(delivery_id, sender_id, is_admin)
        return await self._lifecycle.revoke(
            delivery_id,
            context=context or AccessContext(viewer_type=ViewerType.SENDER),
        )

    async def delete_delivery(
        self, delivery_id: UUID, sender_id: UUID, *, is_admin: bool = False
    ) -> DestructionReport:
        """Erase the files and remove the delivery row.

        The access log keeps its entries for the deleted delivery.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            NotDeliveryOwnerError: If the caller does not own the delivery.
        """
        await self._get_owned(delivery_id, sender_id, is_admin)
        report = await self._destruction.destroy(delivery_id)
        if not report.complete:
            logger.warning(
                "Deleting delivery with files left in the object store",
                extra={
                    "delivery_id": str(delivery_id),
                    "orphaned_keys": [f.storage_key for f in report.failures],
                },
            )
        await self._store.delete_delivery(delivery_id)
        logger.info("Delivery deleted", extra={"delivery_id": str(delivery_id)})
        return report

    async def resend_notification(
        self, delivery_id: UUID, sender_id: UUID, *, is_admin: bool = False
    ) -> NotificationResult:
        """Send the delivery notification email to the recipient again.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            NotDeliveryOwnerError: If the caller does not own the delivery.
            InvalidStateError: If the delivery is no longer active.
        """
        delivery = await self._get_owned(delivery_id, sender_id, is_admin, with_files=True)
        if not delivery.is_active or self._lifecycle.is_time_expired(delivery):
            raise InvalidStateError(delivery_id, delivery.status.value, "notify about")

        return self._mailer.send_delivery_notification(
            delivery_id=delivery.id,
            recipient_email=delivery.recipient_email,
            delivery_title=delivery.title,
            message=delivery.message,
            expires_at=delivery.expires_at,
            file_count=len(delivery.files),
        )

    async def _get_owned(
        self,
        delivery_id: UUID,
        sender_id: UUID,
        is_admin: bool,
        *,
        with_files: bool = False,
    ) -> Delivery:
        delivery = await self._store.get_delivery(delivery_id, with_files=with_files)
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)
        if delivery.sender_id != sender_id and not is_admin:
            logger.warning(
                "Delivery access denied to non-owner",
                extra={"delivery_id": str(delivery_id), "principal_id": str(sender_id)},
            )
            raise NotDeliveryOwnerError(delivery_id)
        return delivery
