"""Pydantic schemas for audit endpoints."""

from __future__ import annotations

# NOTE: datetime must remain at runtime for Pydantic validation
from datetime import datetime  # noqa: TC003

from pydantic import BaseModel, Field


class ComplianceMetricsResponse(BaseModel):
    """Access log aggregates for compliance reporting."""

    since: datetime | None = Field(None, description="Start of the reporting window")
    total_events: int
    failed_events: int
    success_rate: float = Field(..., description="Share of successful entries (0..1)")
    by_action: dict[str, int] = Field(default_factory=dict)
    failures_by_action: dict[str, int] = Field(default_factory=dict)
