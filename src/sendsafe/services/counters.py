"""View and download counters.

Each increment is one guarded ``UPDATE ... RETURNING`` at the store: the
counter only moves while the delivery is active and below its limit. When
the guard refuses, the delivery is re-read to report why.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sendsafe.services.errors import (
    DeliveryNotFoundError,
    DeliveryUnavailableError,
    LimitReachedError,
)

if TYPE_CHECKING:
    from uuid import UUID

    from sendsafe.db.models.deliveries import Delivery
    from sendsafe.services.repository import Counter, DeliveryStore

logger = logging.getLogger(__name__)


class CounterService:
    """Atomically increments delivery counters."""

    def __init__(self, store: DeliveryStore) -> None:
        self._store = store

    async def increment_views(self, delivery_id: UUID) -> Delivery:
        """Count one view and return the updated delivery.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            DeliveryUnavailableError: If the delivery is no longer active.
            LimitReachedError: If the view limit was already reached.
        """
        return await self._increment(delivery_id, "views")

    async def increment_downloads(self, delivery_id: UUID) -> Delivery:
        """Count one download and return the updated delivery.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            DeliveryUnavailableError: If the delivery is no longer active.
            LimitReachedError: If the download limit was already reached.
        """
        return await self._increment(delivery_id, "downloads")

    async def _increment(self, delivery_id: UUID, counter: Counter) -> Delivery:
        delivery = await self._store.increment_counter(delivery_id, counter)
        if delivery is not None:
            logger.debug(
                "Counter incremented",
                extra={
                    "delivery_id": str(delivery_id),
                    "counter": counter,
                    "views": delivery.current_views,
                    "downloads": delivery.current_downloads,
                },
            )
            return delivery

        # Guard refused the write; find out which condition failed
        current = await self._store.get_delivery(delivery_id)
        if current is None:
            raise DeliveryNotFoundError(delivery_id)
        if not current.is_active:
            raise DeliveryUnavailableError(delivery_id, current.status.value)

        logger.info(
            "Counter limit reached",
            extra={"delivery_id": str(delivery_id), "counter": counter},
        )
        raise LimitReachedError(delivery_id, counter)
