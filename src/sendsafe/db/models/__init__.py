"""SQLAlchemy ORM models for SendSafe.

This package contains all database models organized by domain:
- base: Common metadata, annotated types and enums
- deliveries: Deliveries and their files
- access: Access codes and the access log
"""

from sendsafe.db.models.access import AccessCode, AccessLogEntry
from sendsafe.db.models.base import (
    AccessAction,
    Base,
    DeliveryStatus,
    ViewerType,
    metadata,
)
from sendsafe.db.models.deliveries import Delivery, DeliveryFile

__all__ = [
    "AccessAction",
    "AccessCode",
    "AccessLogEntry",
    "Base",
    "Delivery",
    "DeliveryFile",
    "DeliveryStatus",
    "ViewerType",
    "metadata",
]
