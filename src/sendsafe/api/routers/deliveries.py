"""Recipient pickup router.

Public endpoints used by the recipient's browser. There is no login: the
recipient proves who they are with the email address the delivery was
sent to, and with a one-time access code before downloading.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Body, Query, status
from fastapi.responses import Response

from sendsafe.api.dependencies import Pickup, RecipientContext  # noqa: TC001
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

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/deliveries",
    tags=["deliveries"],
    responses={
        401: {"description": "Email missing or not the recipient's"},
        403: {"description": "Delivery no longer available or limit reached"},
        404: {"description": "Delivery not found"},
    },
)


@router.get(
    "/{delivery_id}",
    response_model=DeliveryViewResponse,
    summary="Get a delivery for a viewer",
)
async def get_delivery(
    delivery_id: UUID,
    pickup: Pickup,
    token: Annotated[str | None, Query(max_length=512)] = None,
    email: Annotated[str | None, Query(max_length=320)] = None,
) -> DeliveryViewResponse:
    """Return the delivery, redacted unless the email is the recipient's."""
    view = await pickup.get_delivery_for_viewer(delivery_id, token=token, email=email)
    return DeliveryViewResponse(
        id=view.id,
        status=view.status.value,
        title=view.title,
        message=view.message,
        recipient_email=view.recipient_email,
        created_at=view.created_at,
        expires_at=view.expires_at,
        current_views=view.current_views,
        max_views=view.max_views,
        current_downloads=view.current_downloads,
        max_downloads=view.max_downloads,
        files=[FileResponse.model_validate(f) for f in view.files],
        is_masked=view.is_masked,
    )


@router.post(
    "/{delivery_id}/views",
    response_model=ViewRecordedResponse,
    summary="Count a view",
)
async def record_view(
    delivery_id: UUID,
    pickup: Pickup,
    context: RecipientContext,
    request: Annotated[RecordViewRequest | None, Body()] = None,
) -> ViewRecordedResponse:
    """Count one view. The view reaching the limit expires the delivery."""
    recorded = await pickup.record_view(
        delivery_id,
        email=request.email if request else None,
        context=context,
    )
    return ViewRecordedResponse(
        delivery_id=recorded.delivery_id,
        status=recorded.status.value,
        current_views=recorded.current_views,
        max_views=recorded.max_views,
    )


@router.get(
    "/{delivery_id}/files/{file_id}",
    summary="Download a file",
    response_class=Response,
    responses={200: {"content": {"application/octet-stream": {}}}},
)
async def download_file(
    delivery_id: UUID,
    file_id: UUID,
    pickup: Pickup,
    context: RecipientContext,
    email: Annotated[str | None, Query(max_length=320)] = None,
) -> Response:
    """Stream one file to the recipient and count the download.

    Requires the recipient's email and, unless disabled, a recently
    verified access code.
    """
    downloaded = await pickup.download_file(delivery_id, file_id, email, context=context)
    return Response(
        content=downloaded.content,
        media_type=downloaded.mime_type,
        headers={
            "Content-Disposition": f'attachment; filename="{downloaded.filename}"',
            "X-Content-SHA256": downloaded.sha256,
            "Cache-Control": "no-store",
        },
    )


@router.post(
    "/{delivery_id}/access-code",
    response_model=AccessCodeIssuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Request a one-time access code",
)
async def request_access_code(
    delivery_id: UUID,
    request: AccessCodeRequest,
    pickup: Pickup,
    context: RecipientContext,
) -> AccessCodeIssuedResponse:
    """Email a new 6-digit access code to the recipient."""
    issued = await pickup.request_access_code(delivery_id, request.email, context=context)
    return AccessCodeIssuedResponse(
        delivery_id=issued.delivery_id,
        expires_at=issued.expires_at,
        notification_sent=issued.notification_sent,
    )


@router.post(
    "/{delivery_id}/access-code/verify",
    response_model=AccessCodeVerifiedResponse,
    summary="Verify a one-time access code",
)
async def verify_access_code(
    delivery_id: UUID,
    request: VerifyAccessCodeRequest,
    pickup: Pickup,
    context: RecipientContext,
) -> AccessCodeVerifiedResponse:
    """Check the submitted code; running out of attempts destroys the delivery."""
    result = await pickup.verify_access_code(
        delivery_id, request.email, request.code, context=context
    )
    return AccessCodeVerifiedResponse(
        delivery_id=result.delivery_id,
        verified_at=result.verified_at,
    )
