"""Recipient pickup flow.

Strings the access gate, lifecycle, counters, access codes and object store
together for each recipient request, and writes an access log entry for
every view and download, refused ones included.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sendsafe.db.models.base import AccessAction, DeliveryStatus
from sendsafe.services.access_gate import emails_match, normalize_email
from sendsafe.services.audit_log import AccessContext
from sendsafe.services.email import hash_email
from sendsafe.services.errors import (
    DeliveryAccessError,
    DeliveryFileNotFoundError,
    LimitReachedError,
    RecipientMismatchError,
    VerificationRequiredError,
)
from sendsafe.services.storage import ObjectNotFoundError

if TYPE_CHECKING:
    from uuid import UUID

    from sendsafe.core.config import AccessSettings
    from sendsafe.db.models.deliveries import Delivery, DeliveryFile
    from sendsafe.services.access_codes import (
        AccessCodeVerifier,
        IssuedAccessCode,
        VerificationResult,
    )
    from sendsafe.services.access_gate import AccessGate, DeliveryView
    from sendsafe.services.audit_log import AccessLogService
    from sendsafe.services.counters import CounterService
    from sendsafe.services.lifecycle import DeliveryLifecycleService
    from sendsafe.services.repository import DeliveryStore
    from sendsafe.services.storage import ObjectStoreClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ViewRecorded:
    """Counters after a view was counted."""

    delivery_id: UUID
    status: DeliveryStatus
    current_views: int
    max_views: int


@dataclass(frozen=True, slots=True)
class DownloadedFile:
    """File content handed to the recipient."""

    file_id: UUID
    filename: str
    mime_type: str
    sha256: str
    content: bytes


class PickupService:
    """Recipient-facing operations on a delivery.

    Example:
        pickup = PickupService(store, gate, lifecycle, counters, verifier, storage, audit, settings)
        view = await pickup.get_delivery_for_viewer(delivery_id, email="bob@example.com")
        await pickup.record_view(delivery_id, email="bob@example.com")
        issued = await pickup.request_access_code(delivery_id, "bob@example.com")
        await pickup.verify_access_code(delivery_id, "bob@example.com", "042917")
        downloaded = await pickup.download_file(delivery_id, file_id, "bob@example.com")
    """

    def __init__(
        self,
        store: DeliveryStore,
        gate: AccessGate,
        lifecycle: DeliveryLifecycleService,
        counters: CounterService,
        verifier: AccessCodeVerifier,
        storage: ObjectStoreClient,
        audit: AccessLogService,
        settings: AccessSettings,
    ) -> None:
        self._store = store
        self._gate = gate
        self._lifecycle = lifecycle
        self._counters = counters
        self._verifier = verifier
        self._storage = storage
        self._audit = audit
        self._settings = settings

    async def get_delivery_for_viewer(
        self,
        delivery_id: UUID,
        *,
        token: str | None = None,
        email: str | None = None,
    ) -> DeliveryView:
        """Return the delivery as the requester may see it.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            RecipientMismatchError: If neither a matching email nor a token is presented.
            DeliveryUnavailableError: If the delivery is terminal or past its expiry.
        """
        # Reloading the delivery here would reset its eagerly loaded files
        delivery = await self._lifecycle.get_delivery(delivery_id, with_files=True)
        if not self._gate.grants_access(delivery, token=token, email=email):
            raise RecipientMismatchError(delivery_id, missing=not normalize_email(email))

        await self._lifecycle.ensure_active(delivery)
        return self._gate.mask_for_viewer(delivery, email)

    async def record_view(
        self,
        delivery_id: UUID,
        *,
        email: str | None = None,
        context: AccessContext | None = None,
    ) -> ViewRecorded:
        """Count one view; the view that reaches the limit expires the delivery.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            RecipientMismatchError: If an email is given and is not the recipient's.
            DeliveryUnavailableError: If the delivery is terminal or past its expiry.
            LimitReachedError: If the view limit was already reached.
        """
        context = context or AccessContext()
        delivery = await self._lifecycle.get_delivery(delivery_id)

        try:
            if normalize_email(email) and not emails_match(email, delivery.recipient_email):
                raise RecipientMismatchError(delivery_id)
            await self._lifecycle.ensure_active(delivery)
            updated = await self._counters.increment_views(delivery_id)
        except LimitReachedError as e:
            await self._complete_view_limit(delivery_id)
            await self._record_refusal(delivery_id, AccessAction.VIEW, context, e)
            raise
        except DeliveryAccessError as e:
            await self._record_refusal(delivery_id, AccessAction.VIEW, context, e)
            raise

        transition = await self._lifecycle.register_view(updated)
        status = transition.new_status if transition else updated.status

        await self._audit.record(
            delivery_id,
            AccessAction.VIEW,
            context=context,
            metadata={"views": updated.current_views, "max_views": updated.max_views},
        )
        return ViewRecorded(
            delivery_id=delivery_id,
            status=status,
            current_views=updated.current_views,
            max_views=updated.max_views,
        )

    async def download_file(
        self,
        delivery_id: UUID,
        file_id: UUID,
        email: str | None,
        *,
        context: AccessContext | None = None,
    ) -> DownloadedFile:
        """Hand out one file and count the download.

        The download that reaches the limit expires the delivery and erases
        its files. A request finding the limit already reached re-runs that
        destruction, so a destruction interrupted earlier is completed.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            RecipientMismatchError: If the email is missing or not the recipient's.
            DeliveryUnavailableError: If the delivery is terminal or past its expiry.
            LimitReachedError: If the download limit was already reached.
            VerificationRequiredError: If no access code was verified recently.
            DeliveryFileNotFoundError: If the file is not part of the delivery.
            StorageError: If the object store fails.
        """
        context = context or AccessContext()
        delivery = await self._lifecycle.get_delivery(delivery_id)

        try:
            delivery_file, content = await self._fetch(delivery, file_id, email)
            updated = await self._counters.increment_downloads(delivery_id)
        except LimitReachedError as e:
            await self._complete_download_limit(delivery_id)
            await self._record_refusal(delivery_id, AccessAction.DOWNLOAD, context, e)
            raise
        except DeliveryAccessError as e:
            await self._record_refusal(delivery_id, AccessAction.DOWNLOAD, context, e)
            raise

        await self._audit.record(
            delivery_id,
            AccessAction.DOWNLOAD,
            context=context,
            metadata={
                "file_id": str(delivery_file.id),
                "filename": delivery_file.filename,
                "email_hash": hash_email(email or "")[:16],
                "downloads": updated.current_downloads,
                "max_downloads": updated.max_downloads,
            },
        )

        await self._lifecycle.register_download(updated)

        return DownloadedFile(
            file_id=delivery_file.id,
            filename=delivery_file.filename,
            mime_type=delivery_file.mime_type,
            sha256=delivery_file.sha256,
            content=content,
        )

    async def request_access_code(
        self,
        delivery_id: UUID,
        email: str,
        *,
        context: AccessContext | None = None,
    ) -> IssuedAccessCode:
        return await self._verifier.request_code(delivery_id, email, context=context)

    async def verify_access_code(
        self,
        delivery_id: UUID,
        email: str,
        code: str,
        *,
        context: AccessContext | None = None,
    ) -> VerificationResult:
        return await self._verifier.verify_code(delivery_id, email, code, context=context)

    async def _fetch(
        self, delivery: Delivery, file_id: UUID, email: str | None
    ) -> tuple[DeliveryFile, bytes]:
        if not normalize_email(email):
            raise RecipientMismatchError(delivery.id, missing=True)
        if not emails_match(email, delivery.recipient_email):
            raise RecipientMismatchError(delivery.id)

        await self._lifecycle.ensure_active(delivery)
        if delivery.downloads_exhausted:
            raise LimitReachedError(delivery.id, "downloads")

        if self._settings.require_verified_code_for_download and not (
            await self._verifier.has_verified_code(delivery.id, email or "")
        ):
            raise VerificationRequiredError(delivery.id)

        delivery_file = await self._store.get_file(delivery.id, file_id)
        if delivery_file is None:
            raise DeliveryFileNotFoundError(delivery.id, file_id)

        try:
            content, _ = self._storage.download(
                delivery_file.storage_key, expected_digest=delivery_file.sha256
            )
        except ObjectNotFoundError as e:
            logger.error(
                "Blob missing for an active delivery file",
                extra={
                    "delivery_id": str(delivery.id),
                    "file_id": str(file_id),
                    "storage_key": delivery_file.storage_key,
                },
            )
            raise DeliveryFileNotFoundError(delivery.id, file_id) from e

        return delivery_file, content

    async def _complete_view_limit(self, delivery_id: UUID) -> None:
        delivery = await self._store.get_delivery(delivery_id)
        if delivery is not None and delivery.views_exhausted:
            await self._lifecycle.register_view(delivery)

    async def _complete_download_limit(self, delivery_id: UUID) -> None:
        delivery = await self._store.get_delivery(delivery_id)
        if delivery is not None and delivery.downloads_exhausted:
            await self._lifecycle.register_download(delivery)

    async def _record_refusal(
        self,
        delivery_id: UUID,
        action: AccessAction,
        context: AccessContext,
        error: DeliveryAccessError,
    ) -> None:
        logger.info(
            "Recipient access refused",
            extra={"delivery_id": str(delivery_id), "action": action.value, "reason": error.error},
        )
        await self._audit.record(
            delivery_id,
            action,
            context=context,
            success=False,
            metadata={"reason": error.error},
        )
