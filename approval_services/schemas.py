"""Pydantic schemas for the template approval API."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from approval_kernel.domain.approval import (
    ApprovalStatus,
    AuditAction,
    Priority,
    StageStatus,
)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_email(value: str) -> str:
    value = value.strip()
    if not _EMAIL_RE.match(value):
        raise ValueError("must be a valid email address")
    return value.lower()


# =============================================================================
# Requests
# =============================================================================

class SubmitApprovalRequest(BaseModel):
    """Body of POST /template_approval/{template_id}."""
    priority: Priority
    approver: str
    reviewer: str | None = None
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator("priority", mode="before")
    @classmethod
    def _upper_priority(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("approver")
    @classmethod
    def _approver_email(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("reviewer")
    @classmethod
    def _reviewer_email(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return _check_email(value)


class DecisionRequest(BaseModel):
    """Body of the approve / reject endpoints."""
    notes: str | None = Field(default=None, max_length=2000)


# =============================================================================
# Responses
# =============================================================================

class StageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stage_id: UUID
    level: int
    status: StageStatus
    role_id: str
    approver: str
    escalators: list[str]
    time_limit: int
    warning_offset: int
    warn_at: datetime | None
    escalate_at: datetime | None
    is_escalated: bool
    updated_by: UUID | None = None


class ApprovalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    approval_id: UUID
    template_id: UUID
    status: ApprovalStatus
    priority: Priority
    created_by: UUID
    created_at: datetime
    stages: list[StageResponse]


class SubmitApprovalResponse(BaseModel):
    approval_id: UUID
    template_id: UUID
    status: ApprovalStatus = ApprovalStatus.ACTIVE


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: UUID
    template_id: UUID
    action: AuditAction
    performed_by: UUID
    previous_status: str | None
    new_status: str | None
    notes: str | None
    created_at: datetime


class TemplateLogListResponse(BaseModel):
    """Paginated audit log."""
    items: list[AuditEntryResponse]
    total: int
    page: int
    limit: int


class HealthResponse(BaseModel):
    status: str
    db: str
    uptime_seconds: float
    timestamp: datetime
    scheduler_running: bool
    last_sweep_at: datetime | None = None


class ErrorResponse(BaseModel):
    error: str
    message: str
    details: list[dict[str, Any]] | None = None
