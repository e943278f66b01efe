"""Pydantic schemas for sender API endpoints.

These schemas define the request/response models for sender operations
including delivery creation, file upload, statistics and access logs.
"""

from __future__ import annotations

import re

# NOTE: datetime and UUID must remain at runtime for Pydantic validation
from datetime import UTC, datetime
from typing import Any
from uuid import UUID  # noqa: TC003

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from sendsafe.api.schemas.deliveries import FileResponse

# -----------------------------------------------------------------------------
# Delivery Creation Schemas
# -----------------------------------------------------------------------------


class CreateDeliveryRequest(BaseModel):
    """Request schema for creating a delivery.

    Files are uploaded separately via POST /deliveries/{id}/files.
    """

    title: str = Field(..., min_length=1, max_length=100, description="Delivery title")
    message: str | None = Field(None, max_length=2000, description="Optional note")
    recipient_email: EmailStr = Field(..., description="Recipient email address")
    expires_at: datetime = Field(..., description="Expiry time (must be in the future)")
    max_views: int | None = Field(None, ge=1, le=1000, description="View limit")
    max_downloads: int | None = Field(None, ge=1, le=100, description="Download limit")

    model_config = ConfigDict(extra="forbid")

    @field_validator("title")
    @classmethod
    def strip_markup(cls, v: str) -> str:
        """Drop angle brackets so titles never carry markup."""
        v = re.sub(r"[<>]", "", v).strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("expires_at")
    @classmethod
    def validate_future(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            v = v.replace(tzinfo=UTC)
        if v <= datetime.now(UTC):
            raise ValueError("expires_at must be in the future")
        return v


class DeliveryResponse(BaseModel):
    """Full delivery details for its sender."""

    id: UUID = Field(..., description="Unique delivery identifier")
    status: str = Field(..., description="active, expired or revoked")
    title: str
    message: str | None = None
    recipient_email: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    current_views: int
    max_views: int
    current_downloads: int
    max_downloads: int
    files_purged_at: datetime | None = Field(None, description="When the files were erased")
    files: list[FileResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class DeliverySummary(BaseModel):
    """Summary response for delivery listing."""

    id: UUID
    status: str
    title: str
    recipient_email: str
    created_at: datetime
    expires_at: datetime
    current_views: int
    max_views: int
    current_downloads: int
    max_downloads: int

    model_config = ConfigDict(from_attributes=True)


class DeliveryListResponse(BaseModel):
    """Response schema for listing deliveries."""

    items: list[DeliverySummary] = Field(..., description="List of deliveries")
    offset: int = Field(0, description="Pagination offset")
    limit: int = Field(50, description="Page size")


class DeliveryStatsResponse(BaseModel):
    """Delivery counts by status."""

    total: int
    active: int
    expired: int
    revoked: int
    this_month: int = Field(..., description="Deliveries created since the first of the month")


# -----------------------------------------------------------------------------
# Lifecycle Schemas
# -----------------------------------------------------------------------------


class RevokeResponse(BaseModel):
    """Outcome of a revoke request."""

    delivery_id: UUID
    status: str
    changed: bool = Field(..., description="False when the delivery was already revoked")


class DeleteResponse(BaseModel):
    """Outcome of a hard delete."""

    delivery_id: UUID
    deleted: bool = True
    files_deleted: int
    files_failed: int


class NotificationResponse(BaseModel):
    """Outcome of a notification (re)send."""

    delivery_id: UUID
    sent: bool
    error: str | None = None


# -----------------------------------------------------------------------------
# Access Log Schemas
# -----------------------------------------------------------------------------


class AccessLogEntryResponse(BaseModel):
    """One access log entry."""

    id: UUID
    action: str
    success: bool
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime


class AccessLogListResponse(BaseModel):
    delivery_id: UUID
    entries: list[AccessLogEntryResponse]
