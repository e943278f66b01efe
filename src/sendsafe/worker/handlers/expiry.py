"""Sweep handlers for delivery expiry and file purging.

Request-time checks only notice an overdue delivery when someone asks for
it, and only the download limit and access code exhaustion erase files
immediately. These handlers close both gaps:
- expire_overdue_handler moves every active delivery past its expiry to expired
- purge_terminal_handler erases the files of every expired or revoked
  delivery whose files are still present (including destructions that
  failed part-way)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sendsafe.services.lifecycle import DeliveryLifecycleService

logger = logging.getLogger(__name__)


async def expire_overdue_handler(
    lifecycle: DeliveryLifecycleService,
    batch_size: int,
) -> dict[str, Any]:
    """Expire one batch of overdue deliveries.

    Returns:
        Result dict with the expired ids and whether the batch was full.
    """
    expired_ids = await lifecycle.check_and_expire_deliveries(batch_size)

    logger.info(
        "Expiry sweep complete: expired=%d, delivery_ids=%s",
        len(expired_ids),
        [str(d) for d in expired_ids[:10]],
    )

    return {
        "expired_count": len(expired_ids),
        "expired_ids": [str(d) for d in expired_ids],
        "batch_full": len(expired_ids) >= batch_size,
    }


async def purge_terminal_handler(
    lifecycle: DeliveryLifecycleService,
    batch_size: int,
) -> dict[str, Any]:
    """Erase the files of one batch of terminal deliveries.

    Returns:
        Result dict with purge and failure counts.
    """
    reports = await lifecycle.purge_terminal_deliveries(batch_size)

    purged = [r for r in reports if r.purged]
    incomplete = [r for r in reports if not r.complete]
    files_deleted = sum(len(r.deleted_keys) for r in reports)

    if incomplete:
        logger.warning(
            "Purge sweep left files behind: deliveries=%s",
            [str(r.delivery_id) for r in incomplete[:10]],
        )

    logger.info(
        "Purge sweep complete: deliveries=%d, purged=%d, files_deleted=%d",
        len(reports),
        len(purged),
        files_deleted,
    )

    return {
        "processed_count": len(reports),
        "purged_count": len(purged),
        "incomplete_count": len(incomplete),
        "files_deleted": files_deleted,
    }
