"""Access log service.

Every view, download and access code request or verification is appended
to the access log, including failed attempts. Entries are never updated
or deleted, and they outlive hard-deleted deliveries.

The compliance metrics aggregate the log into the counters a compliance
report needs: accesses per action, failure counts and success ratio.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sendsafe.core.clock import utcnow
from sendsafe.db.models.access import AccessLogEntry
from sendsafe.db.models.base import AccessAction, ViewerType

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sendsafe.core.clock import Clock
    from sendsafe.services.repository import DeliveryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AccessContext:
    """Who is making a request, as seen by the HTTP layer.

    Attributes:
        ip_address: Client IP address, if known.
        user_agent: Client User-Agent header, if any.
        viewer_type: Whether the caller is the recipient, the sender or the system.
    """

    ip_address: str | None = None
    user_agent: str | None = None
    viewer_type: ViewerType = ViewerType.RECIPIENT


SYSTEM_CONTEXT = AccessContext(viewer_type=ViewerType.SYSTEM)


@dataclass(frozen=True, slots=True)
class ComplianceMetrics:
    """Aggregated access log counters.

    Attributes:
        since: Start of the reporting window (None for all time).
        total_events: Number of log entries in the window.
        failed_events: Entries recorded with success=False.
        by_action: Successful entries per action value.
        failures_by_action: Failed entries per action value.
    """

    since: datetime | None
    total_events: int
    failed_events: int
    by_action: dict[str, int] = field(default_factory=dict)
    failures_by_action: dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        """Share of successful entries; 1.0 when the log is empty."""
        if self.total_events == 0:
            return 1.0
        return (self.total_events - self.failed_events) / self.total_events

    def to_dict(self) -> dict[str, Any]:
        return {
            "since": self.since.isoformat() if self.since else None,
            "total_events": self.total_events,
            "failed_events": self.failed_events,
            "success_rate": round(self.success_rate, 4),
            "by_action": self.by_action,
            "failures_by_action": self.failures_by_action,
        }


class AccessLogService:
    """Append-only writer and reader for the access log.

    Example:
        audit = AccessLogService(store)
        await audit.record(
            delivery.id,
            AccessAction.DOWNLOAD,
            context=AccessContext(ip_address="203.0.113.7"),
            metadata={"file_id": str(file.id), "filename": file.filename},
        )
    """

    def __init__(self, store: DeliveryStore, *, clock: Clock | None = None) -> None:
        """Initialize the access log service.

        Args:
            store: Storage backend holding the access log.
            clock: Source of the current time.
        """
        self._store = store
        self._clock = clock or utcnow

    async def record(
        self,
        delivery_id: UUID,
        action: AccessAction,
        *,
        context: AccessContext = SYSTEM_CONTEXT,
        success: bool = True,
        metadata: dict[str, Any] | None = None,
    ) -> AccessLogEntry:
        """Append one entry to the access log.

        Args:
            delivery_id: Delivery the access was made against.
            action: Kind of access.
            context: Caller details (IP address, user agent, viewer type).
            success: False when the access was refused.
            metadata: Extra JSON-serializable details.

        Returns:
            The persisted entry.
        """
        payload = {"viewer_type": context.viewer_type.value}
        if metadata:
            payload.update(metadata)

        entry = AccessLogEntry(
            id=uuid.uuid4(),
            delivery_id=delivery_id,
            action=action,
            success=success,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            log_metadata=payload,
            created_at=self._clock(),
        )
        await self._store.add_log(entry)

        logger.debug(
            "Access logged",
            extra={
                "delivery_id": str(delivery_id),
                "action": action.value,
                "success": success,
            },
        )
        return entry

    async def list_for_delivery(
        self, delivery_id: UUID, *, limit: int = 100
    ) -> list[AccessLogEntry]:
        """Return the newest entries for a delivery, most recent first."""
        return await self._store.list_logs(delivery_id, limit=limit)

    async def compliance_metrics(self, since: datetime | None = None) -> ComplianceMetrics:
        """Aggregate the access log since the given time."""
        rows = await self._store.count_log_actions(since)

        by_action: dict[str, int] = {}
        failures_by_action: dict[str, int] = {}
        total = 0
        failed = 0
        for action, success, count in rows:
            total += count
            if success:
                by_action[action.value] = by_action.get(action.value, 0) + count
            else:
                failed += count
                failures_by_action[action.value] = failures_by_action.get(action.value, 0) + count

        return ComplianceMetrics(
            since=since,
            total_events=total,
            failed_events=failed,
            by_action=by_action,
            failures_by_action=failures_by_action,
        )
