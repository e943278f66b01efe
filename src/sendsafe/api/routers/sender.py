"""Sender API router.

Handles sender operations for creating and managing deliveries.
All endpoints require the sender role; administrators may act on any
delivery, senders only on their own.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Depends, File, Query, UploadFile, status

from sendsafe.api.dependencies import AuditLog, Deliveries, SenderContext  # noqa: TC001
from sendsafe.api.middleware.auth import AuthenticatedUser, require_role
from sendsafe.api.middleware.errors import PayloadTooLargeError, ValidationAPIError
from sendsafe.api.schemas.deliveries import FileResponse
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
from sendsafe.db.models.deliveries import Delivery  # noqa: TC001

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/sender",
    tags=["sender"],
    responses={
        401: {"description": "Authentication required"},
        403: {"description": "Insufficient permissions"},
    },
)

SenderUser = Annotated[AuthenticatedUser, Depends(require_role("sender"))]


def _delivery_response(delivery: Delivery, *, include_files: bool = True) -> DeliveryResponse:
    # Callers pass include_files=False when the files relationship is not loaded
    return DeliveryResponse(
        id=delivery.id,
        status=delivery.status.value,
        title=delivery.title,
        message=delivery.message,
        recipient_email=delivery.recipient_email,
        created_at=delivery.created_at,
        updated_at=delivery.updated_at,
        expires_at=delivery.expires_at,
        current_views=delivery.current_views,
        max_views=delivery.max_views,
        current_downloads=delivery.current_downloads,
        max_downloads=delivery.max_downloads,
        files_purged_at=delivery.files_purged_at,
        files=[FileResponse.model_validate(f) for f in delivery.files] if include_files else [],
    )


def _summary(delivery: Delivery) -> DeliverySummary:
    return DeliverySummary(
        id=delivery.id,
        status=delivery.status.value,
        title=delivery.title,
        recipient_email=delivery.recipient_email,
        created_at=delivery.created_at,
        expires_at=delivery.expires_at,
        current_views=delivery.current_views,
        max_views=delivery.max_views,
        current_downloads=delivery.current_downloads,
        max_downloads=delivery.max_downloads,
    )


# -----------------------------------------------------------------------------
# Delivery Management Endpoints
# -----------------------------------------------------------------------------


@router.post(
    "/deliveries",
    response_model=DeliveryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a delivery",
    description="Creates an active delivery. Files are uploaded separately.",
)
async def create_delivery(
    request: CreateDeliveryRequest,
    user: SenderUser,
    deliveries: Deliveries,
) -> DeliveryResponse:
    """Create a new delivery owned by the authenticated sender."""
    delivery = await deliveries.create_delivery(
        sender_id=user.principal_id,
        title=request.title,
        message=request.message,
        recipient_email=request.recipient_email,
        expires_at=request.expires_at,
        max_views=request.max_views,
        max_downloads=request.max_downloads,
    )
    return _delivery_response(delivery, include_files=False)


@router.get(
    "/deliveries",
    response_model=DeliveryListResponse,
    summary="List the sender's deliveries",
)
async def list_deliveries(
    user: SenderUser,
    deliveries: Deliveries,
    offset: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> DeliveryListResponse:
    items = await deliveries.list_deliveries(user.principal_id, limit=limit, offset=offset)
    return DeliveryListResponse(
        items=[_summary(d) for d in items],
        offset=offset,
        limit=limit,
    )


@router.get(
    "/deliveries/stats",
    response_model=DeliveryStatsResponse,
    summary="Delivery statistics",
)
async def delivery_stats(
    user: SenderUser,
    deliveries: Deliveries,
    all_senders: Annotated[bool, Query(description="Count every sender (admin only)")] = False,
) -> DeliveryStatsResponse:
    """Count the sender's deliveries by status; admins may count everyone's."""
    scope = None if all_senders and user.is_admin else user.principal_id
    stats = await deliveries.stats(scope)
    return DeliveryStatsResponse(
        total=stats.total,
        active=stats.active,
        expired=stats.expired,
        revoked=stats.revoked,
        this_month=stats.this_month,
    )


@router.get(
    "/deliveries/{delivery_id}",
    response_model=DeliveryResponse,
    summary="Get a delivery",
)
async def get_delivery(
    delivery_id: UUID,
    user: SenderUser,
    deliveries: Deliveries,
) -> DeliveryResponse:
    """Return the full, unmasked delivery to its sender."""
    delivery = await deliveries.get_delivery(
        delivery_id, user.principal_id, is_admin=user.is_admin
    )
    return _delivery_response(delivery)


@router.post(
    "/deliveries/{delivery_id}/files",
    response_model=FileResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a file",
)
async def upload_file(
    delivery_id: UUID,
    user: SenderUser,
    deliveries: Deliveries,
    file: Annotated[UploadFile, File(description="File to attach")],
) -> FileResponse:
    """Attach a file to an active delivery."""
    if not file.filename:
        raise ValidationAPIError("Uploaded file has no filename")

    limit = deliveries.max_file_size_bytes
    if file.size is not None and file.size > limit:
        raise PayloadTooLargeError(limit)

    content = await file.read()
    if len(content) > limit:
        raise PayloadTooLargeError(limit)

    delivery_file = await deliveries.attach_file(
        delivery_id,
        user.principal_id,
        file.filename,
        file.content_type or "application/octet-stream",
        content,
        is_admin=user.is_admin,
    )
    return FileResponse.model_validate(delivery_file)


@router.post(
    "/deliveries/{delivery_id}/revoke",
    response_model=RevokeResponse,
    summary="Revoke a delivery",
)
async def revoke_delivery(
    delivery_id: UUID,
    user: SenderUser,
    deliveries: Deliveries,
    context: SenderContext,
) -> RevokeResponse:
    """Revoke an active delivery. Revoking twice is a no-op."""
    result = await deliveries.revoke(
        delivery_id, user.principal_id, is_admin=user.is_admin, context=context
    )
    return RevokeResponse(
        delivery_id=delivery_id,
        status=result.new_status.value,
        changed=result.changed,
    )


@router.post(
    "/deliveries/{delivery_id}/resend",
    response_model=NotificationResponse,
    summary="Resend the recipient notification",
)
async def resend_notification(
    delivery_id: UUID,
    user: SenderUser,
    deliveries: Deliveries,
) -> NotificationResponse:
    result = await deliveries.resend_notification(
        delivery_id, user.principal_id, is_admin=user.is_admin
    )
    return NotificationResponse(delivery_id=delivery_id, sent=result.success, error=result.error)


@router.delete(
    "/deliveries/{delivery_id}",
    response_model=DeleteResponse,
    summary="Delete a delivery",
)
async def delete_delivery(
    delivery_id: UUID,
    user: SenderUser,
    deliveries: Deliveries,
) -> DeleteResponse:
    """Erase the files and remove the delivery. Its access log is kept."""
    report = await deliveries.delete_delivery(
        delivery_id, user.principal_id, is_admin=user.is_admin
    )
    return DeleteResponse(
        delivery_id=delivery_id,
        files_deleted=len(report.deleted_keys),
        files_failed=len(report.failures),
    )


@router.get(
    "/deliveries/{delivery_id}/access-logs",
    response_model=AccessLogListResponse,
    summary="Access log of a delivery",
)
async def list_access_logs(
    delivery_id: UUID,
    user: SenderUser,
    deliveries: Deliveries,
    audit: AuditLog,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> AccessLogListResponse:
    """Return the newest access log entries, most recent first."""
    await deliveries.get_delivery(delivery_id, user.principal_id, is_admin=user.is_admin)
    entries = await audit.list_for_delivery(delivery_id, limit=limit)
    return AccessLogListResponse(
        delivery_id=delivery_id,
        entries=[
            AccessLogEntryResponse(
                id=entry.id,
                action=entry.action.value,
                success=entry.success,
                ip_address=str(entry.ip_address) if entry.ip_address else None,
                user_agent=entry.user_agent,
                metadata=entry.log_metadata,
                created_at=entry.created_at,
            )
            for entry in entries
        ],
    )
