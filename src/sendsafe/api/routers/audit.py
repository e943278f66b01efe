"""Audit router.

Compliance reporting over the access log. Administrators only.
"""

from __future__ import annotations

import logging
from datetime import datetime  # noqa: TC003
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from sendsafe.api.dependencies import AuditLog  # noqa: TC001
from sendsafe.api.middleware.auth import AuthenticatedUser, require_admin_user
from sendsafe.api.schemas.audit import ComplianceMetricsResponse

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/audit",
    tags=["audit"],
    responses={
        401: {"description": "Authentication required"},
        403: {"description": "Admin access required"},
    },
)

AdminUser = Annotated[AuthenticatedUser, Depends(require_admin_user)]


@router.get(
    "/compliance-metrics",
    response_model=ComplianceMetricsResponse,
    summary="Access log compliance metrics",
)
async def compliance_metrics(
    user: AdminUser,
    audit: AuditLog,
    since: Annotated[datetime | None, Query(description="Start of the window (ISO 8601)")] = None,
) -> ComplianceMetricsResponse:
    """Aggregate access log entries by action and outcome."""
    metrics = await audit.compliance_metrics(since)
    logger.info(
        "Compliance metrics requested",
        extra={"principal_id": str(user.principal_id), "total_events": metrics.total_events},
    )
    return ComplianceMetricsResponse(
        since=metrics.since,
        total_events=metrics.total_events,
        failed_events=metrics.failed_events,
        success_rate=metrics.success_rate,
        by_action=metrics.by_action,
        failures_by_action=metrics.failures_by_action,
    )
