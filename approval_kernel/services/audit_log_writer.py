"""
AuditLogWriter -- append-only audit trail of workflow transitions.

Responsibility:
    Appends one immutable ``template_logs`` row for every state transition
    of the approval workflow: submission, review, final approval,
    rejection and escalation.

Architecture position:
    Kernel > Services -- called by ApprovalLifecycleManager and
    EscalationScanner inside their transactions.

Invariants enforced:
    Append-only -- entries are inserted, never updated or deleted (ORM
    listeners on TemplateLogModel).

Failure modes:
    - ImmutabilityViolationError if a caller mutates a flushed entry.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from approval_kernel.domain.approval import AuditAction, AuditEntry
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import get_logger
from approval_kernel.models.template_log import TemplateLogModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.audit_log")


class AuditLogWriter(BaseService[TemplateLogModel]):
    """Writes template audit entries within the caller's transaction."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def record(
        self,
        template_id: UUID,
        action: AuditAction,
        performed_by: UUID,
        previous_status: str | None = None,
        new_status: str | None = None,
        notes: str | None = None,
    ) -> AuditEntry:
        """
        Append one audit entry.

        Postconditions:
            A TemplateLogModel row is flushed in the caller's transaction.

        Returns:
            The entry as a frozen ``AuditEntry``.
        """
        entry = TemplateLogModel(
            template_id=template_id,
            action=AuditAction(action).value,
            performed_by=performed_by,
            previous_status=previous_status,
            new_status=new_status,
            notes=notes,
            created_at=self._clock.now(),
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "audit_entry_recorded",
            extra={
                "template_id": str(template_id),
                "action": entry.action,
                "performed_by": str(performed_by),
                "previous_status": previous_status,
                "new_status": new_status,
            },
        )
        return entry.to_dto()

    def record_submitted(
        self,
        template_id: UUID,
        performed_by: UUID,
        previous_status: str,
        new_status: str,
        notes: str | None = None,
    ) -> AuditEntry:
        return self.record(
            template_id,
            AuditAction.SUBMITTED_FOR_APPROVAL,
            performed_by,
            previous_status,
            new_status,
            notes,
        )

    def record_decision(
        self,
        template_id: UUID,
        action: AuditAction,
        performed_by: UUID,
        previous_status: str | None,
        new_status: str | None,
        notes: str | None = None,
    ) -> AuditEntry:
        """Record a REVIEWED, APPROVED or REJECTED decision."""
        if action not in (
            AuditAction.REVIEWED,
            AuditAction.APPROVED,
            AuditAction.REJECTED,
        ):
            raise ValueError(f"Not a decision action: {action}")
        return self.record(
            template_id, action, performed_by, previous_status, new_status, notes,
        )

    def record_escalated(
        self,
        template_id: UUID,
        performed_by: UUID,
        level: int,
        escalators: list[str] | tuple[str, ...],
    ) -> AuditEntry:
        return self.record(
            template_id,
            AuditAction.ESCALATED,
            performed_by,
            notes=f"Stage {level} escalated to {', '.join(escalators)}",
        )
