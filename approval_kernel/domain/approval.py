"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the template approval workflow.  Defines the
approval and stage state machines, the enumerations shared with the
persistence layer, the rule/plan records consumed by the stage router,
and the read-side views returned to callers.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Lifecycle state machine -- ``APPROVAL_TRANSITIONS`` and
  ``STAGE_TRANSITIONS`` define the only valid status transitions.
  Terminal states have no outgoing edges.
* Current stage -- ``current_stage()`` is the single definition of
  "whose turn is it": the ACTIVE stage with the minimum ``level``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Protocol, TypeVar
from uuid import UUID


# =========================================================================
# Lifecycle enums
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval lifecycle states."""

    ACTIVE = "ACTIVE"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CLOSED = "CLOSED"


class StageStatus(str, Enum):
    """Stage lifecycle states."""

    ACTIVE = "ACTIVE"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class TemplateStatus(str, Enum):
    """Externally visible status of the owning document."""

    DRAFT = "DRAFT"
    CREATED = "CREATED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"
    DELETED = "DELETED"


class AuditAction(str, Enum):
    """Actions recorded in the template audit log."""

    CREATE = "CREATE"
    SUBMITTED_FOR_APPROVAL = "SUBMITTED_FOR_APPROVAL"
    REVIEWED = "REVIEWED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ESCALATED = "ESCALATED"


class NotificationType(str, Enum):
    SEND_FOR_REVIEW = "SEND_FOR_REVIEW"
    SEND_FOR_APPROVAL = "SEND_FOR_APPROVAL"
    REVIEWED = "REVIEWED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    ESCALATION = "ESCALATION"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.ACTIVE: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CLOSED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CLOSED: frozenset(),
}

STAGE_TRANSITIONS: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.ACTIVE: frozenset({StageStatus.APPROVED, StageStatus.REJECTED}),
    StageStatus.APPROVED: frozenset(),
    StageStatus.REJECTED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CLOSED,
})

# Document states from which a template may be sent for approval.
SUBMITTABLE_TEMPLATE_STATUSES: frozenset[TemplateStatus] = frozenset({
    TemplateStatus.DRAFT,
})


def can_transition_approval(current: ApprovalStatus, target: ApprovalStatus) -> bool:
    return target in APPROVAL_TRANSITIONS.get(current, frozenset())


def can_transition_stage(current: StageStatus, target: StageStatus) -> bool:
    return target in STAGE_TRANSITIONS.get(current, frozenset())


def normalize_identity(identity: str) -> str:
    """Canonical form of an approver/escalator identity (an email)."""
    return identity.strip().lower()


# =========================================================================
# Routing inputs and outputs
# =========================================================================


@dataclass(frozen=True)
class StageRule:
    """One row of the escalation matrix served by the rule provider.

    ``time_limit`` and ``warning_offset`` are minutes from stage
    activation.
    """

    channel_id: str
    priority: str
    level: int
    role_id: str
    time_limit: int
    warning_offset: int
    escalators: tuple[str, ...]
    status: str = "ACTIVE"


@dataclass(frozen=True)
class StagePlan:
    """A routed stage ready to be persisted: a rule slot plus its approver."""

    level: int
    role_id: str
    approver: str
    time_limit: int
    warning_offset: int
    escalators: tuple[str, ...]


# =========================================================================
# Collaborator records
# =========================================================================


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing a workflow action."""

    user_id: UUID
    email: str


@dataclass(frozen=True)
class UserRecord:
    """A user as returned by the user directory."""

    user_id: UUID
    email: str
    name: str | None = None


@dataclass(frozen=True)
class NotificationEvent:
    """A single best-effort notification.

    ``send_to`` is the recipient's user id; ``from_user`` is the acting
    user's id when there is one.
    """

    type: NotificationType
    template_id: UUID
    send_to: UUID
    from_user: UUID | None = None


# =========================================================================
# Read-side views
# =========================================================================


@dataclass(frozen=True)
class StageView:
    stage_id: UUID
    approval_id: UUID
    level: int
    status: StageStatus
    role_id: str
    approver: str
    escalators: tuple[str, ...]
    time_limit: int
    warning_offset: int
    warn_at: datetime | None
    escalate_at: datetime | None
    is_escalated: bool
    updated_by: UUID | None = None


@dataclass(frozen=True)
class ApprovalView:
    approval_id: UUID
    template_id: UUID
    status: ApprovalStatus
    priority: Priority
    created_by: UUID
    created_at: datetime
    stages: tuple[StageView, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AuditEntry:
    """Immutable audit record of one workflow transition."""

    entry_id: UUID
    template_id: UUID
    action: AuditAction
    performed_by: UUID
    previous_status: str | None
    new_status: str | None
    notes: str | None
    created_at: datetime


# =========================================================================
# Current stage
# =========================================================================


class _HasLevelAndStatus(Protocol):
    level: int
    status: str


S = TypeVar("S", bound=_HasLevelAndStatus)


def current_stage(stages: Iterable[S]) -> S | None:
    """Return the stage whose approver must act next.

    The current stage is the ACTIVE stage with the minimum ``level``.
    When level 1 has already been approved this is the next level up;
    when every stage is settled there is no current stage.

    Works with ORM rows and ``StageView`` alike (status may be a plain
    string or a ``StageStatus``).
    """
    active = [s for s in stages if StageStatus(s.status) is StageStatus.ACTIVE]
    if not active:
        return None
    return min(active, key=lambda s: s.level)
