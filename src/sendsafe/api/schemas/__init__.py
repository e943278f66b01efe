"""Pydantic request/response schemas for the SendSafe API."""

from sendsafe.api.schemas.audit import ComplianceMetricsResponse
from sendsafe.api.schemas.deliveries import (
    AccessCodeIssuedResponse,
    AccessCodeRequest,
    AccessCodeVerifiedResponse,
    DeliveryViewResponse,
    FileResponse,
    RecordViewRequest,
    VerifyAccessCodeRequest,
    ViewRecordedResponse,
)
from sendsafe.api.schemas.sender import (
    AccessLogEntryResponse,
    AccessLogListResponse,
    CreateDeliveryRequest,
    DeleteResponse,
    DeliveryListResponse,
    DeliveryResponse,
    DeliveryStatsResponse,
    DeliverySummary,
    NotificationResponse,
    RevokeResponse,
)

__all__ = [
    "AccessCodeIssuedResponse",
    "AccessCodeRequest",
    "AccessCodeVerifiedResponse",
    "AccessLogEntryResponse",
    "AccessLogListResponse",
    "ComplianceMetricsResponse",
    "CreateDeliveryRequest",
    "DeleteResponse",
    "DeliveryListResponse",
    "DeliveryResponse",
    "DeliveryStatsResponse",
    "DeliverySummary",
    "DeliveryViewResponse",
    "FileResponse",
    "NotificationResponse",
    "RecordViewRequest",
    "RevokeResponse",
    "VerifyAccessCodeRequest",
    "ViewRecordedResponse",
]
