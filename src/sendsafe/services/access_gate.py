"""Viewer access checks and redaction of delivery details.

A viewer proving the recipient's email sees the full delivery. Anyone else
gets a view with the same shape but every sensitive field blanked, so the
page can say "this delivery exists" without leaking what is in it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sendsafe.db.models.base import DeliveryStatus
    from sendsafe.db.models.deliveries import Delivery, DeliveryFile
    from sendsafe.services.repository import DeliveryStore

logger = logging.getLogger(__name__)


def normalize_email(email: str | None) -> str:
    """Trim and lower-case an email address; None becomes the empty string."""
    return (email or "").strip().lower()


def emails_match(presented: str | None, recipient: str) -> bool:
    """Compare a presented email with the stored recipient, case-insensitively."""
    presented = normalize_email(presented)
    return bool(presented) and presented == normalize_email(recipient)


@dataclass(frozen=True, slots=True)
class FileView:
    """A delivery file as shown to a viewer."""

    id: UUID
    filename: str
    mime_type: str
    size_bytes: int
    sha256: str

    @classmethod
    def from_model(cls, delivery_file: DeliveryFile) -> FileView:
        return cls(
            id=delivery_file.id,
            filename=delivery_file.filename,
            mime_type=delivery_file.mime_type,
            size_bytes=delivery_file.size_bytes,
            sha256=delivery_file.sha256,
        )


@dataclass(frozen=True, slots=True)
class DeliveryView:
    """A delivery as shown to a viewer, possibly redacted.

    Attributes:
        is_masked: True when the viewer is not the recipient and every
            sensitive field has been blanked.
    """

    id: UUID
    status: DeliveryStatus
    title: str
    message: str | None
    recipient_email: str
    created_at: datetime | None
    expires_at: datetime
    current_views: int
    max_views: int
    current_downloads: int
    max_downloads: int
    files: list[FileView] = field(default_factory=list)
    is_masked: bool = False


class AccessGate:
    """Decides whether a requester may see a delivery.

    Example:
        gate = AccessGate(store)
        if await gate.check_access(delivery_id, email="Bob@Example.com "):
            ...
    """

    def __init__(self, store: DeliveryStore) -> None:
        self._store = store

    async def check_access(
        self,
        delivery_id: UUID,
        token: str | None = None,
        email: str | None = None,
    ) -> bool:
        """Check whether the requester may view the delivery's metadata.

        A matching recipient email grants access. Without one, any non-empty
        token is accepted; tokens are not bound to a delivery.

        Args:
            delivery_id: UUID of the delivery.
            token: Link token presented by the requester.
            email: Email address presented by the requester.

        Returns:
            True if access is granted, False otherwise (including unknown ids).
        """
        delivery = await self._store.get_delivery(delivery_id)
        if delivery is None:
            return False
        return self.grants_access(delivery, token=token, email=email)

    def grants_access(
        self,
        delivery: Delivery,
        *,
        token: str | None = None,
        email: str | None = None,
    ) -> bool:
        """Apply the access rule to a delivery the caller already loaded."""
        if emails_match(email, delivery.recipient_email):
            return True

        # TODO: bind tokens to a delivery with an HMAC over the delivery id
        granted = bool(token and token.strip())
        if not granted:
            logger.debug(
                "Access check refused",
                extra={"delivery_id": str(delivery.id), "email_presented": bool(email)},
            )
        return granted

    def mask_for_viewer(self, delivery: Delivery, viewer_email: str | None) -> DeliveryView:
        """Build the view of a delivery for a viewer.

        No viewer email, or one matching the recipient, yields the full view.
        A non-matching email yields a redacted view with identical structure.
        The delivery must have its files loaded.
        """
        full = not normalize_email(viewer_email) or emails_match(
            viewer_email, delivery.recipient_email
        )
        if full:
            return DeliveryView(
                id=delivery.id,
                status=delivery.status,
                title=delivery.title,
                message=delivery.message,
                recipient_email=delivery.recipient_email,
                created_at=delivery.created_at,
                expires_at=delivery.expires_at,
                current_views=delivery.current_views,
                max_views=delivery.max_views,
                current_downloads=delivery.current_downloads,
                max_downloads=delivery.max_downloads,
                files=[FileView.from_model(f) for f in delivery.files],
            )

        return DeliveryView(
            id=delivery.id,
            status=delivery.status,
            title="",
            message=None,
            recipient_email="",
            created_at=delivery.created_at,
            expires_at=delivery.expires_at,
            current_views=0,
            max_views=0,
            current_downloads=0,
            max_downloads=0,
            files=[],
            is_masked=True,
        )
