"""Relational store access for deliveries, files, access codes and logs.

Every mutation that guards an invariant is a single conditional
``UPDATE ... RETURNING`` statement, so concurrent requests can never push
a counter past its limit, spend a code twice, or move a terminal delivery
back to active. An empty result means the guard rejected the write; the
caller re-reads to find out why.

The SQL repository commits after each mutation. A request that fails
halfway keeps the writes it already made, which is what lets a later
request or the sweeper finish an interrupted destruction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import selectinload

from sendsafe.db.models.access import AccessCode, AccessLogEntry
from sendsafe.db.models.base import AccessAction, DeliveryStatus
from sendsafe.db.models.deliveries import Delivery, DeliveryFile

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

Counter = Literal["views", "downloads"]

# counter name -> (current column, limit column)
_COUNTER_COLUMNS: dict[str, tuple[str, str]] = {
    "views": ("current_views", "max_views"),
    "downloads": ("current_downloads", "max_downloads"),
}


class DeliveryStore(Protocol):
    """Storage operations the delivery services depend on."""

    # deliveries
    async def get_delivery(
        self, delivery_id: UUID, *, with_files: bool = False
    ) -> Delivery | None: ...

    async def add_delivery(self, delivery: Delivery) -> Delivery: ...

    async def delete_delivery(self, delivery_id: UUID) -> bool: ...

    async def increment_counter(self, delivery_id: UUID, counter: Counter) -> Delivery | None: ...

    async def set_status(
        self,
        delivery_id: UUID,
        new_status: DeliveryStatus,
        *,
        expected: DeliveryStatus = DeliveryStatus.ACTIVE,
    ) -> Delivery | None: ...

    async def mark_files_purged(self, delivery_id: UUID, at: datetime) -> None: ...

    async def touch_delivery(self, delivery_id: UUID, at: datetime) -> None: ...

    async def list_for_sender(
        self, sender_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> list[Delivery]: ...

    async def count_by_status(self, sender_id: UUID | None, since: datetime) -> dict[str, int]: ...

    async def find_overdue(self, now: datetime, limit: int) -> list[Delivery]: ...

    async def find_unpurged_terminal(self, limit: int) -> list[Delivery]: ...

    # files
    async def add_file(self, delivery_file: DeliveryFile) -> DeliveryFile: ...

    async def get_file(self, delivery_id: UUID, file_id: UUID) -> DeliveryFile | None: ...

    async def list_files(self, delivery_id: UUID) -> list[DeliveryFile]: ...

    async def delete_file(self, file_id: UUID) -> None: ...

    # access codes
    async def add_code(self, access_code: AccessCode) -> AccessCode: ...

    async def latest_unverified_code(self, delivery_id: UUID, email: str) -> AccessCode | None: ...

    async def increment_code_attempts(self, code_id: UUID) -> AccessCode | None: ...

    async def mark_code_verified(self, code_id: UUID, at: datetime) -> AccessCode | None: ...

    async def has_verified_code(self, delivery_id: UUID, email: str, since: datetime) -> bool: ...

    # access log
    async def add_log(self, entry: AccessLogEntry) -> AccessLogEntry: ...

    async def list_logs(self, delivery_id: UUID, *, limit: int = 100) -> list[AccessLogEntry]: ...

    async def count_log_actions(
        self, since: datetime | None
    ) -> list[tuple[AccessAction, bool, int]]: ...


class SqlDeliveryRepository:
    """SQLAlchemy implementation of :class:`DeliveryStore`."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository with an async SQLAlchemy session."""
        self.session = session

    async def _commit(self) -> None:
        await self.session.commit()

    # -- deliveries ---------------------------------------------------------------

    async def get_delivery(
        self, delivery_id: UUID, *, with_files: bool = False
    ) -> Delivery | None:
        """Return a delivery by id, optionally with its files loaded."""
        stmt = select(Delivery).where(Delivery.id == delivery_id)
        if with_files:
            stmt = stmt.options(selectinload(Delivery.files))
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def add_delivery(self, delivery: Delivery) -> Delivery:
        self.session.add(delivery)
        await self._commit()
        return delivery

    async def delete_delivery(self, delivery_id: UUID) -> bool:
        """Hard-delete a delivery; files and codes go with it via ON DELETE CASCADE."""
        result = await self.session.execute(
            delete(Delivery).where(Delivery.id == delivery_id).returning(Delivery.id)
        )
        deleted = result.scalar_one_or_none() is not None
        await self._commit()
        return deleted

    async def increment_counter(self, delivery_id: UUID, counter: Counter) -> Delivery | None:
        """Atomically add one to a counter while the delivery is active and under its limit.

        Returns:
            The updated delivery, or None when the row is missing, not active,
            or already at its limit.
        """
        current_name, limit_name = _COUNTER_COLUMNS[counter]
        current = getattr(Delivery, current_name)
        limit = getattr(Delivery, limit_name)

        stmt = (
            update(Delivery)
            .where(
                Delivery.id == delivery_id,
                Delivery.status == DeliveryStatus.ACTIVE,
                current < limit,
            )
            .values({current_name: current + 1, "updated_at": func.now()})
            .returning(Delivery)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        result = await self.session.execute(stmt)
        delivery = result.scalar_one_or_none()
        await self._commit()
        return delivery

    async def set_status(
        self,
        delivery_id: UUID,
        new_status: DeliveryStatus,
        *,
        expected: DeliveryStatus = DeliveryStatus.ACTIVE,
    ) -> Delivery | None:
        """Compare-and-set the status. Returns None when the current status differs."""
        stmt = (
            update(Delivery)
            .where(Delivery.id == delivery_id, Delivery.status == expected)
            .values(status=new_status, updated_at=func.now())
            .returning(Delivery)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        result = await self.session.execute(stmt)
        delivery = result.scalar_one_or_none()
        await self._commit()
        return delivery

    async def mark_files_purged(self, delivery_id: UUID, at: datetime) -> None:
        await self.session.execute(
            update(Delivery)
            .where(Delivery.id == delivery_id, Delivery.files_purged_at.is_(None))
            .values(files_purged_at=at)
            .execution_options(synchronize_session=False)
        )
        await self._commit()

    async def touch_delivery(self, delivery_id: UUID, at: datetime) -> None:
        """Bump updated_at so the purge sweep moves on to older deliveries first."""
        await self.session.execute(
            update(Delivery)
            .where(Delivery.id == delivery_id)
            .values(updated_at=at)
            .execution_options(synchronize_session=False)
        )
        await self._commit()

    async def list_for_sender(
        self, sender_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> list[Delivery]:
        result = await self.session.execute(
            select(Delivery)
            .where(Delivery.sender_id == sender_id)
            .options(selectinload(Delivery.files))
            .order_by(Delivery.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars())

    async def count_by_status(self, sender_id: UUID | None, since: datetime) -> dict[str, int]:
        """Count deliveries per status, plus those created since ``since``."""
        stmt = select(
            func.count().label("total"),
            func.count().filter(Delivery.status == DeliveryStatus.ACTIVE).label("active"),
            func.count().filter(Delivery.status == DeliveryStatus.EXPIRED).label("expired"),
            func.count().filter(Delivery.status == DeliveryStatus.REVOKED).label("revoked"),
            func.count().filter(Delivery.created_at >= since).label("since"),
        )
        if sender_id is not None:
            stmt = stmt.where(Delivery.sender_id == sender_id)
        row = (await self.session.execute(stmt)).one()
        return dict(row._mapping)

    async def find_overdue(self, now: datetime, limit: int) -> list[Delivery]:
        result = await self.session.execute(
            select(Delivery)
            .where(Delivery.status == DeliveryStatus.ACTIVE, Delivery.expires_at < now)
            .order_by(Delivery.expires_at)
            .limit(limit)
        )
        return list(result.scalars())

    async def find_unpurged_terminal(self, limit: int) -> list[Delivery]:
        result = await self.session.execute(
            select(Delivery)
            .where(
                Delivery.status.in_([DeliveryStatus.EXPIRED, DeliveryStatus.REVOKED]),
                Delivery.files_purged_at.is_(None),
            )
            .order_by(Delivery.updated_at)
            .limit(limit)
        )
        return list(result.scalars())

    # -- files --------------------------------------------------------------------

    async def add_file(self, delivery_file: DeliveryFile) -> DeliveryFile:
        self.session.add(delivery_file)
        await self._commit()
        return delivery_file

    async def get_file(self, delivery_id: UUID, file_id: UUID) -> DeliveryFile | None:
        result = await self.session.execute(
            select(DeliveryFile).where(
                DeliveryFile.id == file_id,
                DeliveryFile.delivery_id == delivery_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_files(self, delivery_id: UUID) -> list[DeliveryFile]:
        result = await self.session.execute(
            select(DeliveryFile)
            .where(DeliveryFile.delivery_id == delivery_id)
            .order_by(DeliveryFile.created_at)
        )
        return list(result.scalars())

    async def delete_file(self, file_id: UUID) -> None:
        await self.session.execute(delete(DeliveryFile).where(DeliveryFile.id == file_id))
        await self._commit()

    # -- access codes -------------------------------------------------------------

    async def add_code(self, access_code: AccessCode) -> AccessCode:
        self.session.add(access_code)
        await self._commit()
        return access_code

    async def latest_unverified_code(self, delivery_id: UUID, email: str) -> AccessCode | None:
        """Return the most recently created code not yet spent for (delivery, email)."""
        result = await self.session.execute(
            select(AccessCode)
            .where(
                AccessCode.delivery_id == delivery_id,
                AccessCode.recipient_email == email,
                AccessCode.verified_at.is_(None),
            )
            .order_by(AccessCode.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def increment_code_attempts(self, code_id: UUID) -> AccessCode | None:
        """Atomically count one failed attempt while budget remains.

        Returns:
            The updated code, or None once the attempt budget is spent.
        """
        stmt = (
            update(AccessCode)
            .where(
                AccessCode.id == code_id,
                AccessCode.attempts < AccessCode.max_attempts,
            )
            .values(attempts=AccessCode.attempts + 1)
            .returning(AccessCode)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        result = await self.session.execute(stmt)
        access_code = result.scalar_one_or_none()
        await self._commit()
        return access_code

    async def mark_code_verified(self, code_id: UUID, at: datetime) -> AccessCode | None:
        """Spend a code. Only the first concurrent caller gets a row back."""
        stmt = (
            update(AccessCode)
            .where(AccessCode.id == code_id, AccessCode.verified_at.is_(None))
            .values(verified_at=at)
            .returning(AccessCode)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        result = await self.session.execute(stmt)
        access_code = result.scalar_one_or_none()
        await self._commit()
        return access_code

    async def has_verified_code(self, delivery_id: UUID, email: str, since: datetime) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(AccessCode)
            .where(
                AccessCode.delivery_id == delivery_id,
                AccessCode.recipient_email == email,
                AccessCode.verified_at >= since,
            )
        )
        return (result.scalar_one() or 0) > 0

    # -- access log ---------------------------------------------------------------

    async def add_log(self, entry: AccessLogEntry) -> AccessLogEntry:
        self.session.add(entry)
        await self._commit()
        return entry

    async def list_logs(self, delivery_id: UUID, *, limit: int = 100) -> list[AccessLogEntry]:
        result = await self.session.execute(
            select(AccessLogEntry)
            .where(AccessLogEntry.delivery_id == delivery_id)
            .order_by(AccessLogEntry.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars())

    async def count_log_actions(
        self, since: datetime | None
    ) -> list[tuple[AccessAction, bool, int]]:
        stmt = select(
            AccessLogEntry.action,
            AccessLogEntry.success,
            func.count(),
        ).group_by(AccessLogEntry.action, AccessLogEntry.success)
        if since is not None:
            stmt = stmt.where(AccessLogEntry.created_at >= since)
        result = await self.session.execute(stmt)
        return [(action, success, count) for action, success, count in result.all()]
