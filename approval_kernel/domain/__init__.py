"""
Pure domain layer.

This module contains value objects, state machines and routing logic
with NO dependencies on:
- Database sessions or ORM models
- HTTP clients
- The wall clock (time comes from an injected Clock)

All domain objects are immutable and deterministic.
"""

from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    STAGE_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    Actor,
    ApprovalStatus,
    ApprovalView,
    AuditAction,
    AuditEntry,
    NotificationEvent,
    NotificationType,
    Priority,
    StagePlan,
    StageRule,
    StageStatus,
    StageView,
    TemplateStatus,
    UserRecord,
    current_stage,
    normalize_identity,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.routing import (
    applicable_rules,
    chain_identities,
    route_stages,
)

__all__ = [
    # State machines
    "APPROVAL_TRANSITIONS",
    "STAGE_TRANSITIONS",
    "TERMINAL_APPROVAL_STATUSES",
    "ApprovalStatus",
    "StageStatus",
    "Priority",
    "TemplateStatus",
    "AuditAction",
    "NotificationType",
    # Records
    "Actor",
    "UserRecord",
    "NotificationEvent",
    "StageRule",
    "StagePlan",
    "ApprovalView",
    "StageView",
    "AuditEntry",
    # Logic
    "current_stage",
    "normalize_identity",
    "applicable_rules",
    "route_stages",
    "chain_identities",
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
]
