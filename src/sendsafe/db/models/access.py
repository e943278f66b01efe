"""Access control models: one-time access codes and the access log."""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime  # noqa: TC003 - required at runtime for SQLAlchemy

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import INET, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from sendsafe.db.models.base import (
    AccessAction,
    Base,
    OptionalTimestampTZ,
    TimestampTZ,
    UUIDPrimaryKey,
)


class AccessCode(Base):
    """Short-lived numeric code mailed to a recipient.

    A code is spent once verified_at is set. Several codes may exist for
    the same (delivery, email); only the newest unverified one is checked.
    """

    __tablename__ = "access_codes"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    delivery_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("deliveries.id", ondelete="CASCADE"),
        nullable=False,
    )
    recipient_email: Mapped[str] = mapped_column(String(320), nullable=False)
    code: Mapped[str] = mapped_column(String(6), nullable=False)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    verified_at: Mapped[OptionalTimestampTZ]

    __table_args__ = (
        CheckConstraint("attempts <= max_attempts", name="attempts_within_limit"),
        Index(
            "ix_access_codes_lookup",
            "delivery_id",
            "recipient_email",
            "created_at",
        ),
    )

    @property
    def is_spent(self) -> bool:
        return self.verified_at is not None


class AccessLogEntry(Base):
    """Append-only record of an access attempt against a delivery.

    Rows are never updated. Failed attempts are recorded with success=False.
    """

    __tablename__ = "access_logs"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    # Not a foreign key: entries outlive hard-deleted deliveries
    delivery_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    action: Mapped[AccessAction] = mapped_column(
        Enum(
            AccessAction,
            name="access_action",
            create_constraint=True,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    ip_address: Mapped[str | None] = mapped_column(INET, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Named 'log_metadata' to avoid SQLAlchemy's reserved 'metadata'
    log_metadata: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)

    __table_args__ = (
        Index("ix_access_logs_delivery_id", "delivery_id"),
        Index("ix_access_logs_action", "action"),
        Index("ix_access_logs_created_at", "created_at"),
    )
