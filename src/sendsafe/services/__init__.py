"""SendSafe service layer.

This package contains the delivery access core and its integrations:
- AccessGate: viewer access checks and redaction
- CounterService: atomic view/download counters
- DeliveryLifecycleService: delivery state machine and expiry sweeps
- AccessCodeVerifier: one-time email access codes
- DestructionCoordinator: best-effort erasure of delivery files
- PickupService: recipient request orchestration
- DeliveryService: sender-side delivery management
- SqlDeliveryRepository: PostgreSQL-backed DeliveryStore
- ObjectStoreClient: S3-compatible storage integration
- EmailNotificationService: SMTP notifications rendered with Jinja2
- AccessLogService: append-only access log and compliance metrics
"""

from sendsafe.services.access_codes import AccessCodeVerifier
from sendsafe.services.access_gate import AccessGate, DeliveryView, FileView
from sendsafe.services.audit_log import AccessContext, AccessLogService, ComplianceMetrics
from sendsafe.services.counters import CounterService
from sendsafe.services.deliveries import DeliveryService, DeliveryStats
from sendsafe.services.destruction import DestructionCoordinator, DestructionReport
from sendsafe.services.email import EmailNotificationService, NotificationResult
from sendsafe.services.lifecycle import (
    DeliveryLifecycleService,
    LifecycleEvent,
    TransitionResult,
    next_status,
)
from sendsafe.services.pickup import DownloadedFile, PickupService, ViewRecorded
from sendsafe.services.repository import DeliveryStore, SqlDeliveryRepository
from sendsafe.services.storage import ObjectStoreClient, StorageError

__all__ = [
    "AccessCodeVerifier",
    "AccessContext",
    "AccessGate",
    "AccessLogService",
    "ComplianceMetrics",
    "CounterService",
    "DeliveryLifecycleService",
    "DeliveryService",
    "DeliveryStats",
    "DeliveryStore",
    "DeliveryView",
    "DestructionCoordinator",
    "DestructionReport",
    "DownloadedFile",
    "EmailNotificationService",
    "FileView",
    "LifecycleEvent",
    "NotificationResult",
    "ObjectStoreClient",
    "PickupService",
    "SqlDeliveryRepository",
    "StorageError",
    "TransitionResult",
    "ViewRecorded",
    "next_status",
]
