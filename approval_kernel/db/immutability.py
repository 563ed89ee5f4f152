"""
ORM-Level Immutability Enforcement.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, ImmutabilityViolationError aborts the flush and the
enclosing session_scope() rolls the transaction back.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | What is immutable                | Why
------------------|----------------------------------|------------------------------
TemplateLogModel  | ALWAYS (from creation)           | Audit trail is append-only
ApprovalStage     | escalate_at, warn_at, level      | Deadlines are set once
ApprovalStage     | deletion                         | Stages are never deleted
ApprovalModel     | deletion                         | Approvals are retained

Bulk ``update()`` statements bypass mapper events.  The repository only
issues bulk updates against ``status`` and ``is_escalated``.

===============================================================================
USAGE
===============================================================================

    from approval_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup (create_tables)

    # In tests that must bypass protections:
    from approval_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.invariants import WorkflowInvariant
from approval_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

STAGE_WRITE_ONCE_FIELDS = frozenset({"escalate_at", "warn_at", "level", "approval_id"})


def _blocked(
    entity_type: str, entity_id: str, operation: str, invariant: WorkflowInvariant,
) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "invariant": invariant.value,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )


def _check_template_log_immutability(mapper, connection, target):
    """Prevent any updates to audit entries."""
    _blocked("TemplateLog", str(target.id), "UPDATE", WorkflowInvariant.APPEND_ONLY_AUDIT)
    raise ImmutabilityViolationError(
        entity_type="TemplateLog",
        entity_id=str(target.id),
        reason="Audit entries are immutable and cannot be modified",
    )


def _check_template_log_delete(mapper, connection, target):
    """Prevent deletion of audit entries."""
    _blocked("TemplateLog", str(target.id), "DELETE", WorkflowInvariant.APPEND_ONLY_AUDIT)
    raise ImmutabilityViolationError(
        entity_type="TemplateLog",
        entity_id=str(target.id),
        reason="Audit entries cannot be deleted",
    )


def _check_stage_immutability(mapper, connection, target):
    """Deadlines and level are fixed at creation."""
    state = inspect(target)
    changed = sorted(
        name
        for name in STAGE_WRITE_ONCE_FIELDS
        if state.attrs[name].history.has_changes()
    )
    if not changed:
        return

    _blocked("ApprovalStage", str(target.id), "UPDATE", WorkflowInvariant.DEADLINE_WRITE_ONCE)
    raise ImmutabilityViolationError(
        entity_type="ApprovalStage",
        entity_id=str(target.id),
        reason=f"Write-once fields cannot be modified: {', '.join(changed)}",
    )


def _check_stage_delete(mapper, connection, target):
    _blocked("ApprovalStage", str(target.id), "DELETE", WorkflowInvariant.RETAINED_HISTORY)
    raise ImmutabilityViolationError(
        entity_type="ApprovalStage",
        entity_id=str(target.id),
        reason="Approval stages are retained for audit and cannot be deleted",
    )


def _check_approval_delete(mapper, connection, target):
    _blocked("Approval", str(target.id), "DELETE", WorkflowInvariant.RETAINED_HISTORY)
    raise ImmutabilityViolationError(
        entity_type="Approval",
        entity_id=str(target.id),
        reason="Approvals are retained for audit and cannot be deleted",
    )


_LISTENERS = (
    ("TemplateLogModel", "before_update", _check_template_log_immutability),
    ("TemplateLogModel", "before_delete", _check_template_log_delete),
    ("ApprovalStageModel", "before_update", _check_stage_immutability),
    ("ApprovalStageModel", "before_delete", _check_stage_delete),
    ("ApprovalModel", "before_delete", _check_approval_delete),
)


def _targets() -> dict:
    from approval_kernel.models.approval import ApprovalModel, ApprovalStageModel
    from approval_kernel.models.template_log import TemplateLogModel

    return {
        "TemplateLogModel": TemplateLogModel,
        "ApprovalStageModel": ApprovalStageModel,
        "ApprovalModel": ApprovalModel,
    }


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).
    """
    targets = _targets()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = targets[model_name]
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    targets = _targets()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = targets[model_name]
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
