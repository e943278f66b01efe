"""Pydantic schemas for the recipient pickup endpoints."""

from __future__ import annotations

# NOTE: datetime and UUID must remain at runtime for Pydantic validation
from datetime import datetime  # noqa: TC003
from uuid import UUID  # noqa: TC003

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class FileResponse(BaseModel):
    """A file attached to a delivery."""

    id: UUID = Field(..., description="File identifier")
    filename: str = Field(..., description="Original filename")
    mime_type: str = Field(..., description="Declared content type")
    size_bytes: int = Field(..., description="Size in bytes")
    sha256: str = Field(..., description="SHA-256 hex digest of the content")

    model_config = ConfigDict(from_attributes=True)


class DeliveryViewResponse(BaseModel):
    """A delivery as shown to a viewer.

    When ``is_masked`` is true the viewer did not prove the recipient's
    email: text fields are blank, counters are zero and no files are listed.
    """

    id: UUID = Field(..., description="Delivery identifier")
    status: str = Field(..., description="active, expired or revoked")
    title: str = Field(..., description="Delivery title")
    message: str | None = Field(None, description="Note from the sender")
    recipient_email: str = Field(..., description="Recipient email")
    created_at: datetime | None = Field(None, description="Creation timestamp")
    expires_at: datetime = Field(..., description="Expiry timestamp")
    current_views: int = Field(..., description="Views so far")
    max_views: int = Field(..., description="View limit")
    current_downloads: int = Field(..., description="Downloads so far")
    max_downloads: int = Field(..., description="Download limit")
    files: list[FileResponse] = Field(default_factory=list, description="Attached files")
    is_masked: bool = Field(False, description="Whether sensitive fields were redacted")

    model_config = ConfigDict(from_attributes=True)


class RecordViewRequest(BaseModel):
    """Body of a view increment; the email is optional."""

    email: EmailStr | None = Field(None, description="Recipient email, if known")

    model_config = ConfigDict(extra="forbid")


class ViewRecordedResponse(BaseModel):
    """Counters after a view."""

    delivery_id: UUID
    status: str
    current_views: int
    max_views: int


class AccessCodeRequest(BaseModel):
    """Request for a one-time access code."""

    email: EmailStr = Field(..., description="Recipient email the code is sent to")

    model_config = ConfigDict(extra="forbid")


class AccessCodeIssuedResponse(BaseModel):
    """Acknowledgement of a code request. The code only travels by email."""

    delivery_id: UUID
    expires_at: datetime = Field(..., description="When the code stops being accepted")
    notification_sent: bool = Field(..., description="False if the email could not be sent")


class VerifyAccessCodeRequest(BaseModel):
    """Submission of a one-time access code."""

    email: EmailStr = Field(..., description="Recipient email")
    code: str = Field(..., description="6-digit code received by email")

    model_config = ConfigDict(extra="forbid")

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        v = v.strip()
        if len(v) != 6 or not v.isdigit():
            raise ValueError("code must be exactly 6 digits")
        return v


class AccessCodeVerifiedResponse(BaseModel):
    """Successful verification."""

    delivery_id: UUID
    verified: bool = True
    verified_at: datetime
