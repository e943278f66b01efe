"""Destruction of a delivery's backing files.

Destroying a delivery fixes it in a terminal status and erases every blob
it references. Blob deletion is best-effort: a failure is collected in the
report and logged, and the file row is kept so the sweeper can retry.
``files_purged_at`` is only set once no file rows remain, which makes the
operation safe to repeat or to run concurrently.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sendsafe.core.clock import utcnow
from sendsafe.db.models.base import AccessAction, DeliveryStatus
from sendsafe.services.lifecycle import LifecycleEvent, next_status
from sendsafe.services.storage import StorageError

if TYPE_CHECKING:
    from uuid import UUID

    from sendsafe.core.clock import Clock
    from sendsafe.services.audit_log import AccessLogService
    from sendsafe.services.repository import DeliveryStore
    from sendsafe.services.storage import ObjectStoreClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FileDeletionFailure:
    """A blob that could not be erased."""

    file_id: UUID
    storage_key: str
    error: str


@dataclass(slots=True)
class DestructionReport:
    """Outcome of a destroy call.

    Attributes:
        delivery_id: The delivery that was destroyed.
        status: Status after destruction (None when the delivery no longer exists).
        deleted_keys: Storage keys erased by this call.
        failures: Blobs that could not be erased.
        purged: True once the delivery has no remaining files.
    """

    delivery_id: UUID
    status: DeliveryStatus | None
    deleted_keys: list[str] = field(default_factory=list)
    failures: list[FileDeletionFailure] = field(default_factory=list)
    purged: bool = False

    @property
    def complete(self) -> bool:
        return not self.failures


class DestructionCoordinator:
    """Erases a delivery's blobs and fixes its terminal status.

    Example:
        coordinator = DestructionCoordinator(store, storage, audit)
        report = await coordinator.destroy(delivery_id)
        if not report.complete:
            ...  # the sweeper retries the remaining files
    """

    def __init__(
        self,
        store: DeliveryStore,
        storage: ObjectStoreClient,
        audit: AccessLogService,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._storage = storage
        self._audit = audit
        self._clock = clock or utcnow

    async def destroy(self, delivery_id: UUID) -> DestructionReport:
        """Destroy a delivery. Never raises for blob deletion failures.

        Steps:
        1. Move an active delivery to expired (terminal statuses are kept).
        2. Delete every blob; remove the file row of each erased blob.
        3. Mark the delivery purged when no file rows remain, otherwise bump
           its updated_at so the sweeper tries other deliveries first.
        4. Log a DESTROYED entry unless the call changed nothing.

        Args:
            delivery_id: UUID of the delivery to destroy.

        Returns:
            DestructionReport listing erased keys and failures.
        """
        delivery = await self._store.get_delivery(delivery_id)
        if delivery is None:
            logger.info("Destroy skipped, delivery gone", extra={"delivery_id": str(delivery_id)})
            return DestructionReport(delivery_id=delivery_id, status=None, purged=True)

        status = delivery.status
        already_purged = delivery.files_purged_at is not None
        status_changed = False
        target = next_status(status, LifecycleEvent.DESTROYED)
        if target != status:
            updated = await self._store.set_status(delivery_id, target, expected=status)
            if updated is None:
                # Lost the race to another terminal transition; keep whatever won
                current = await self._store.get_delivery(delivery_id)
                status = current.status if current is not None else status
            else:
                status = updated.status
                status_changed = True

        report = DestructionReport(delivery_id=delivery_id, status=status)

        for delivery_file in await self._store.list_files(delivery_id):
            try:
                self._storage.delete(delivery_file.storage_key)
            except StorageError as e:
                logger.warning(
                    "Failed to delete delivery file",
                    extra={
                        "delivery_id": str(delivery_id),
                        "file_id": str(delivery_file.id),
                        "storage_key": delivery_file.storage_key,
                        "error": str(e),
                    },
                )
                report.failures.append(
                    FileDeletionFailure(
                        file_id=delivery_file.id,
                        storage_key=delivery_file.storage_key,
                        error=str(e),
                    )
                )
                continue

            await self._store.delete_file(delivery_file.id)
            report.deleted_keys.append(delivery_file.storage_key)

        if report.complete:
            await self._store.mark_files_purged(delivery_id, self._clock())
            report.purged = True
        else:
            await self._store.touch_delivery(delivery_id, self._clock())

        # Retries that change nothing stay out of the access log
        if status_changed or report.deleted_keys or (report.purged and not already_purged):
            await self._audit.record(
                delivery_id,
                AccessAction.DESTROYED,
                success=report.complete,
                metadata={
                    "deleted_files": len(report.deleted_keys),
                    "failed_files": len(report.failures),
                    "status": status.value,
                },
            )

        logger.info(
            "Delivery destroyed",
            extra={
                "delivery_id": str(delivery_id),
                "status": status.value,
                "deleted_files": len(report.deleted_keys),
                "failed_files": len(report.failures),
            },
        )
        return report
