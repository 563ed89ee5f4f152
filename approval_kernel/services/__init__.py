"""Services for the approval kernel (write side)."""

from approval_kernel.services.approval_repository import ApprovalRepository
from approval_kernel.services.audit_log_writer import AuditLogWriter
from approval_kernel.services.escalation_scanner import (
    EscalationScanner,
    StageEscalation,
    SweepResult,
)
from approval_kernel.services.lifecycle_manager import ApprovalLifecycleManager

__all__ = [
    "ApprovalLifecycleManager",
    "ApprovalRepository",
    "AuditLogWriter",
    "EscalationScanner",
    "StageEscalation",
    "SweepResult",
]
