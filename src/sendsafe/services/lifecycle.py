"""Delivery lifecycle state machine service.

This module implements the delivery state machine with:
- Monotonic status transitions (active -> expired | revoked, never back)
- Compare-and-set status updates, so concurrent transitions resolve to one winner
- Destruction of backing files when the download limit is reached or
  access code verification is exhausted

The view limit expires a delivery without erasing its files at request
time; the sweeper purges them later.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, ClassVar

from sendsafe.core.clock import utcnow
from sendsafe.db.models.base import AccessAction, DeliveryStatus
from sendsafe.services.audit_log import SYSTEM_CONTEXT
from sendsafe.services.errors import (
    DeliveryExpiredError,
    DeliveryNotFoundError,
    DeliveryUnavailableError,
    InvalidStateError,
)

if TYPE_CHECKING:
    from uuid import UUID

    from sendsafe.core.clock import Clock
    from sendsafe.db.models.deliveries import Delivery
    from sendsafe.services.audit_log import AccessContext, AccessLogService
    from sendsafe.services.destruction import DestructionCoordinator, DestructionReport
    from sendsafe.services.repository import DeliveryStore

logger = logging.getLogger(__name__)


class LifecycleEvent(Enum):
    """Events that can move a delivery out of the active status."""

    TIME_ELAPSED = "time_elapsed"
    VIEW_LIMIT_REACHED = "view_limit_reached"
    DOWNLOAD_LIMIT_REACHED = "download_limit_reached"
    VERIFICATION_EXHAUSTED = "verification_exhausted"
    DESTROYED = "destroyed"
    REVOKED = "revoked"


def next_status(current: DeliveryStatus, event: LifecycleEvent) -> DeliveryStatus:
    """Pure transition function of the delivery state machine.

    Terminal statuses absorb every event, so repeating a transition is a
    no-op. The one exception is revoking an expired delivery, which is
    reported as an error rather than silently ignored.

    Raises:
        InvalidStateError: If the event is REVOKED and the delivery is expired.
    """
    if event is LifecycleEvent.REVOKED:
        if current is DeliveryStatus.EXPIRED:
            raise InvalidStateError(None, current.value, "revoke")
        return DeliveryStatus.REVOKED
    if current.is_terminal:
        return current
    return DeliveryStatus.EXPIRED


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Result of a status transition attempt.

    Attributes:
        delivery_id: The delivery concerned.
        event: The event that was applied.
        previous_status: Status observed before the transition.
        new_status: Status after the transition.
        changed: False when the delivery was already terminal or another
            request won the race to a terminal status.
    """

    delivery_id: UUID
    event: LifecycleEvent
    previous_status: DeliveryStatus
    new_status: DeliveryStatus
    changed: bool


class DeliveryLifecycleService:
    """Service for managing delivery status transitions.

    The state machine:

        active --time / view limit / download limit / verification--> expired
           |
           +----------------------revoke---------------------------> revoked

    Example:
        lifecycle = DeliveryLifecycleService(store, destruction, audit)
        delivery = await lifecycle.ensure_active(delivery)
        delivery = await counters.increment_downloads(delivery.id)
        await lifecycle.register_download(delivery)
    """

    # Events that erase backing files as soon as they happen
    DESTRUCTIVE_EVENTS: ClassVar[frozenset[LifecycleEvent]] = frozenset(
        {
            LifecycleEvent.DOWNLOAD_LIMIT_REACHED,
            LifecycleEvent.VERIFICATION_EXHAUSTED,
        }
    )

    def __init__(
        self,
        store: DeliveryStore,
        destruction: DestructionCoordinator,
        audit: AccessLogService,
        *,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the lifecycle service.

        Args:
            store: Storage backend for deliveries.
            destruction: Coordinator used to erase files on destructive events.
            audit: Access log writer.
            clock: Source of the current time.
        """
        self._store = store
        self._destruction = destruction
        self._audit = audit
        self._clock = clock or utcnow

    async def get_delivery(self, delivery_id: UUID, *, with_files: bool = False) -> Delivery:
        """Get a delivery by ID.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
        """
        delivery = await self._store.get_delivery(delivery_id, with_files=with_files)
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    def is_time_expired(self, delivery: Delivery) -> bool:
        return self._clock() > delivery.expires_at

    async def transition(self, delivery_id: UUID, event: LifecycleEvent) -> TransitionResult:
        """Apply an event to a delivery with a compare-and-set status update.

        Args:
            delivery_id: UUID of the delivery.
            event: The lifecycle event.

        Returns:
            TransitionResult describing what happened.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            InvalidStateError: If the event is not legal from the current status.
        """
        delivery = await self.get_delivery(delivery_id)
        previous = delivery.status
        target = next_status(previous, event)

        if target == previous:
            return TransitionResult(delivery_id, event, previous, previous, changed=False)

        updated = await self._store.set_status(delivery_id, target, expected=previous)
        if updated is None:
            # Someone else moved it first; re-apply the event to what they left
            current = await self.get_delivery(delivery_id)
            settled = next_status(current.status, event)
            logger.info(
                "Transition lost race",
                extra={
                    "delivery_id": str(delivery_id),
                    "event": event.value,
                    "status": current.status.value,
                },
            )
            return TransitionResult(delivery_id, event, previous, settled, changed=False)

        logger.info(
            "Delivery transitioned",
            extra={
                "delivery_id": str(delivery_id),
                "event": event.value,
                "from_status": previous.value,
                "to_status": updated.status.value,
            },
        )
        return TransitionResult(delivery_id, event, previous, updated.status, changed=True)

    async def ensure_active(self, delivery: Delivery) -> Delivery:
        """Reject access to a delivery that is terminal or past its expiry time.

        A delivery found past its expiry time is moved to expired first.

        Raises:
            DeliveryUnavailableError: If the delivery is expired or revoked.
            DeliveryExpiredError: If the expiry time has just been detected.
        """
        if not delivery.is_active:
            raise DeliveryUnavailableError(delivery.id, delivery.status.value)

        if self.is_time_expired(delivery):
            await self.transition(delivery.id, LifecycleEvent.TIME_ELAPSED)
            raise DeliveryExpiredError(delivery.id)

        return delivery

    async def register_view(self, delivery: Delivery) -> TransitionResult | None:
        """Expire a delivery whose view count has reached its limit.

        Files are left in place; the sweeper erases them.

        Args:
            delivery: The delivery as returned by the view increment.
        """
        if not delivery.views_exhausted:
            return None
        return await self.transition(delivery.id, LifecycleEvent.VIEW_LIMIT_REACHED)

    async def register_download(
        self, delivery: Delivery
    ) -> tuple[TransitionResult, DestructionReport] | None:
        """Expire and destroy a delivery whose download count has reached its limit.

        Args:
            delivery: The delivery as returned by the download increment.
        """
        if not delivery.downloads_exhausted:
            return None
        result = await self.transition(delivery.id, LifecycleEvent.DOWNLOAD_LIMIT_REACHED)
        report = await self._destruction.destroy(delivery.id)
        return result, report

    async def handle_verification_exhausted(
        self, delivery_id: UUID
    ) -> tuple[TransitionResult, DestructionReport]:
        """Expire and destroy a delivery after too many wrong access codes."""
        result = await self.transition(delivery_id, LifecycleEvent.VERIFICATION_EXHAUSTED)
        report = await self._destruction.destroy(delivery_id)
        logger.warning(
            "Delivery destroyed after access code attempts were exhausted",
            extra={"delivery_id": str(delivery_id)},
        )
        return result, report

    async def revoke(
        self,
        delivery_id: UUID,
        *,
        context: AccessContext = SYSTEM_CONTEXT,
    ) -> TransitionResult:
        """Revoke an active delivery. Revoking twice is a no-op.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            InvalidStateError: If the delivery has already expired.
        """
        try:
            result = await self.transition(delivery_id, LifecycleEvent.REVOKED)
        except InvalidStateError as e:
            e.delivery_id = delivery_id
            raise

        if result.changed:
            await self._audit.record(
                delivery_id,
                AccessAction.REVOKED,
                context=context,
                metadata={"previous_status": result.previous_status.value},
            )
        return result

    async def expire(
        self,
        delivery_id: UUID,
        event: LifecycleEvent = LifecycleEvent.TIME_ELAPSED,
    ) -> TransitionResult:
        """Expire a delivery without touching its files."""
        return await self.transition(delivery_id, event)

    async def check_and_expire_deliveries(self, batch_size: int = 100) -> list[UUID]:
        """Expire active deliveries whose expiry time has passed.

        This is typically called by the background sweeper. A failure on one
        delivery is logged and the rest of the batch is still processed.

        Args:
            batch_size: Maximum number of deliveries to process.

        Returns:
            List of delivery IDs that were expired by this call.
        """
        overdue = await self._store.find_overdue(self._clock(), batch_size)

        expired_ids: list[UUID] = []
        for delivery in overdue:
            try:
                result = await self.expire(delivery.id, LifecycleEvent.TIME_ELAPSED)
            except Exception:
                logger.exception(
                    "Failed to expire delivery", extra={"delivery_id": str(delivery.id)}
                )
                continue
            if result.changed:
                expired_ids.append(delivery.id)

        if expired_ids:
            logger.info(
                "Expired deliveries",
                extra={"count": len(expired_ids), "delivery_ids": [str(d) for d in expired_ids]},
            )
        return expired_ids

    async def purge_terminal_deliveries(self, batch_size: int = 100) -> list[DestructionReport]:
        """Erase the files of expired or revoked deliveries not yet purged."""
        pending = await self._store.find_unpurged_terminal(batch_size)

        reports: list[DestructionReport] = []
        for delivery in pending:
            try:
                reports.append(await self._destruction.destroy(delivery.id))
            except Exception:
                logger.exception(
                    "Failed to purge delivery files", extra={"delivery_id": str(delivery.id)}
                )
        return reports
