"""Declarative base, shared column types and the enums stored in the schema."""

import enum
import uuid
from datetime import datetime
from typing import Annotated

from sqlalchemy import DateTime, MetaData, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, mapped_column

# Constraint names in the migrations follow this convention
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

# UUID primary key; generated client-side so new rows know their id before flush
UUIDPrimaryKey = Annotated[
    uuid.UUID,
    mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    ),
]

# Set by the database on insert
TimestampTZ = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), server_default=text("now()")),
]

OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(DateTime(timezone=True), nullable=True),
]


class Base(DeclarativeBase):
    """Declarative base for all SendSafe models."""

    metadata = metadata


class DeliveryStatus(enum.Enum):
    """Delivery lifecycle status.

    States:
        ACTIVE: Recipient may view and download within the limits
        EXPIRED: Time, view, download or verification budget exhausted (terminal)
        REVOKED: Sender withdrew the delivery (terminal)
    """

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition can leave this status."""
        return self is not DeliveryStatus.ACTIVE


class AccessAction(enum.Enum):
    """Kinds of access log entries.

    Values:
        VIEW: Delivery page viewed
        DOWNLOAD: File downloaded
        CODE_REQUESTED: Access code issued and mailed
        CODE_VERIFIED: Access code submitted (success flag tells the outcome)
        REVOKED: Sender revoked the delivery
        DESTROYED: Backing files erased
    """

    VIEW = "view"
    DOWNLOAD = "download"
    CODE_REQUESTED = "code_requested"
    CODE_VERIFIED = "code_verified"
    REVOKED = "revoked"
    DESTROYED = "destroyed"


class ViewerType(enum.Enum):
    """Who performed an access, recorded in access log metadata."""

    RECIPIENT = "recipient"
    SENDER = "sender"
    SYSTEM = "system"
