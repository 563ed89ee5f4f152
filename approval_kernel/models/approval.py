"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approvals and their stages.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    Single active approval -- partial UNIQUE index on (template_id) WHERE
             status = 'ACTIVE', on both PostgreSQL and SQLite.
    Contiguous levels -- UNIQUE(approval_id, level); the router guarantees
             the levels it hands over run 1..N.
    Deadline write-once -- escalate_at, warn_at and level are guarded by the
             ORM listeners in db/immutability.py.
    Status values -- DB check constraints limit status columns to the
             lifecycle enums.

Failure modes:
    - IntegrityError on a second ACTIVE approval for one template.
    - IntegrityError on a duplicate stage level.
    - ImmutabilityViolationError on deadline rewrite or deletion.

Audit relevance:
    Approvals and stages are never deleted.  Every status change made by
    the lifecycle manager is mirrored by a template_logs entry.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.approval import ApprovalView, StageView


class ApprovalModel(Base):
    """One template submission cycle.

    Contract:
        ACTIVE until the lifecycle manager terminates it.  APPROVED,
        REJECTED and CLOSED are terminal.

    Guarantees:
        - At most one ACTIVE row per template_id.
        - stages are loaded ordered by level.
    """

    __tablename__ = "approvals"

    __table_args__ = (
        CheckConstraint(
            "status IN ('ACTIVE', 'APPROVED', 'REJECTED', 'CLOSED')",
            name="ck_approvals_valid_status",
        ),
        CheckConstraint(
            "priority IN ('HIGH', 'MEDIUM', 'LOW')",
            name="ck_approvals_valid_priority",
        ),
        Index(
            "uq_approvals_one_active_per_template",
            "template_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_approvals_template_created", "template_id", "created_at"),
    )

    template_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    priority: Mapped[str] = mapped_column(String(10), nullable=False)
    created_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    stages: Mapped[list["ApprovalStageModel"]] = relationship(
        "ApprovalStageModel",
        back_populates="approval",
        order_by="ApprovalStageModel.level",
        lazy="selectin",
        # Never null out stage foreign keys on delete; the delete guard decides.
        passive_deletes="all",
    )

    def __repr__(self) -> str:
        return (
            f"<Approval {self.id} template={self.template_id} "
            f"status={self.status}>"
        )

    def to_dto(self) -> ApprovalView:
        """Convert ORM model to frozen domain view (stages included)."""
        from approval_kernel.domain.approval import (
            ApprovalStatus,
            ApprovalView,
            Priority,
        )

        return ApprovalView(
            approval_id=self.id,
            template_id=self.template_id,
            status=ApprovalStatus(self.status),
            priority=Priority(self.priority),
            created_by=self.created_by,
            created_at=self.created_at,
            stages=tuple(stage.to_dto() for stage in self.stages),
        )


class ApprovalStageModel(Base):
    """One level of required sign-off within an approval.

    Contract:
        status moves ACTIVE -> APPROVED | REJECTED (lifecycle manager only).
        is_escalated moves false -> true once (escalation scanner only).
        warn_at and escalate_at are computed at creation and never change.
    """

    __tablename__ = "approval_stages"

    __table_args__ = (
        CheckConstraint(
            "status IN ('ACTIVE', 'APPROVED', 'REJECTED')",
            name="ck_approval_stages_valid_status",
        ),
        CheckConstraint("level >= 1", name="ck_approval_stages_level_positive"),
        UniqueConstraint("approval_id", "level", name="uq_approval_stages_level"),
        # Escalation sweep filter: status, is_escalated, escalate_at <= now
        Index(
            "ix_approval_stages_escalation_due",
            "status", "is_escalated", "escalate_at",
        ),
    )

    approval_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approvals.id"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    role_id: Mapped[str] = mapped_column(String(100), nullable=False)
    approver: Mapped[str] = mapped_column(String(320), nullable=False)
    escalators: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    time_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    warning_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    warn_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    escalate_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    is_escalated: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    updated_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    approval: Mapped[ApprovalModel] = relationship(
        "ApprovalModel",
        back_populates="stages",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalStage {self.id} level={self.level} "
            f"approver={self.approver} status={self.status}>"
        )

    def to_dto(self) -> StageView:
        from approval_kernel.domain.approval import StageStatus, StageView

        return StageView(
            stage_id=self.id,
            approval_id=self.approval_id,
            level=self.level,
            status=StageStatus(self.status),
            role_id=self.role_id,
            approver=self.approver,
            escalators=tuple(self.escalators or ()),
            time_limit=self.time_limit,
            warning_offset=self.warning_offset,
            warn_at=self.warn_at,
            escalate_at=self.escalate_at,
            is_escalated=self.is_escalated,
            updated_by=self.updated_by,
        )
