"""Delivery-related models: deliveries and their files."""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime  # noqa: TC003 - required at runtime for SQLAlchemy

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sendsafe.db.models.base import (
    Base,
    DeliveryStatus,
    OptionalTimestampTZ,
    TimestampTZ,
    UUIDPrimaryKey,
)


class Delivery(Base):
    """A set of files shared by one sender with one recipient.

    Counters never exceed their limits and status only moves from
    ACTIVE to a terminal value. The row outlives its files so the
    access log keeps a subject.
    """

    __tablename__ = "deliveries"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    # Identity of the sender as asserted by the upstream gateway
    sender_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    title: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Stored lower-cased and trimmed
    recipient_email: Mapped[str] = mapped_column(String(320), nullable=False)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[DeliveryStatus] = mapped_column(
        Enum(
            DeliveryStatus,
            name="delivery_status",
            create_constraint=True,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=DeliveryStatus.ACTIVE,
    )

    current_views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_views: Mapped[int] = mapped_column(Integer, nullable=False)
    current_downloads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_downloads: Mapped[int] = mapped_column(Integer, nullable=False)

    # Set once every backing blob has been erased
    files_purged_at: Mapped[OptionalTimestampTZ]

    files: Mapped[list[DeliveryFile]] = relationship(
        "DeliveryFile",
        back_populates="delivery",
        cascade="all, delete-orphan",
        order_by="DeliveryFile.created_at",
    )

    __table_args__ = (
        CheckConstraint("current_views <= max_views", name="views_within_limit"),
        CheckConstraint("current_downloads <= max_downloads", name="downloads_within_limit"),
        CheckConstraint("max_views BETWEEN 1 AND 1000", name="max_views_range"),
        CheckConstraint("max_downloads BETWEEN 1 AND 100", name="max_downloads_range"),
        Index("ix_deliveries_sender_id", "sender_id"),
        Index("ix_deliveries_status", "status"),
        Index("ix_deliveries_expires_at", "expires_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == DeliveryStatus.ACTIVE

    @property
    def views_exhausted(self) -> bool:
        return self.current_views >= self.max_views

    @property
    def downloads_exhausted(self) -> bool:
        return self.current_downloads >= self.max_downloads


class DeliveryFile(Base):
    """A file attached to a delivery, stored in the object store.

    The row is removed once its blob has been erased.
    """

    __tablename__ = "delivery_files"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    delivery_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("deliveries.id", ondelete="CASCADE"),
        nullable=False,
    )

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)

    # SHA-256 digest of the stored bytes, hex encoded
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)

    storage_key: Mapped[str] = mapped_column(String(500), nullable=False)

    delivery: Mapped[Delivery] = relationship("Delivery", back_populates="files")

    __table_args__ = (Index("ix_delivery_files_delivery_id", "delivery_id"),)
