"""
Kernel Invariants Contract.

These invariants are structural law for the approval workflow. No
configuration, rule set, or caller may override them.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across ApprovalRepository, ApprovalLifecycleManager,
EscalationScanner, the ORM listeners in db/immutability.py, and the partial
unique index on approvals.
"""

from enum import Enum, unique


@unique
class WorkflowInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    SINGLE_ACTIVE_APPROVAL = "single_active_approval"
    """At most one ACTIVE approval per template. Enforced by the
    lifecycle manager's pre-check under a template row lock and by the
    partial unique index ix_approvals_active_template."""

    CONTIGUOUS_LEVELS = "contiguous_levels"
    """Stage levels are unique per approval and contiguous from 1.
    Enforced by the stage router and a unique constraint."""

    TERMINAL_STATES = "terminal_states"
    """APPROVED, REJECTED and CLOSED approvals never change status again.
    Enforced by compare-and-set updates in ApprovalRepository."""

    DEADLINE_WRITE_ONCE = "deadline_write_once"
    """escalate_at is set at stage creation and never recomputed.
    Enforced by an ORM before_update listener."""

    ESCALATE_ONCE = "escalate_once"
    """is_escalated moves false -> true exactly once, by the scanner only.
    Enforced by a conditional update in ApprovalRepository."""

    APPEND_ONLY_AUDIT = "append_only_audit"
    """Audit entries are never updated or deleted. Enforced by ORM
    listeners on TemplateLogModel."""

    RETAINED_HISTORY = "retained_history"
    """Approvals and their stages are never physically deleted; decided
    cycles stay readable. Enforced by ORM before_delete listeners."""


# All invariants as a frozenset for programmatic checks.
ALL_WORKFLOW_INVARIANTS: frozenset[WorkflowInvariant] = frozenset(WorkflowInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "approval_services",
    "approval_config",
    "approval_batch",
    "fastapi",
    "httpx",
)
