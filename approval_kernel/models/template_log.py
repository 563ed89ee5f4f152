"""
Module: approval_kernel.models.template_log
Responsibility: ORM persistence for the template audit log.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    Append-only audit -- no UPDATE or DELETE (ORM listeners in
    db/immutability.py).

Audit relevance:
    TemplateLogModel IS the audit trail of the approval workflow.  Every
    submit, review, approval, rejection and escalation produces one row.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.approval import AuditEntry


class TemplateLogModel(Base):
    """
    One immutable audit entry for a template.

    Guarantees:
        - Rows are never updated or deleted after insert.
        - created_at comes from the injected Clock of the writer.
    """

    __tablename__ = "template_logs"

    __table_args__ = (
        Index("ix_template_logs_template_created", "template_id", "created_at"),
        Index("ix_template_logs_action", "action"),
    )

    template_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # CREATE, SUBMITTED_FOR_APPROVAL, REVIEWED, APPROVED, REJECTED, ESCALATED
    action: Mapped[str] = mapped_column(String(50), nullable=False)

    performed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<TemplateLog {self.template_id} {self.action}>"

    def to_dto(self) -> AuditEntry:
        from approval_kernel.domain.approval import AuditAction, AuditEntry

        return AuditEntry(
            entry_id=self.id,
            template_id=self.template_id,
            action=AuditAction(self.action),
            performed_by=self.performed_by,
            previous_status=self.previous_status,
            new_status=self.new_status,
            notes=self.notes,
            created_at=self.created_at,
        )
