"""
ApprovalRepository -- transactional persistence for approvals and stages.

Responsibility:
    Creates an approval together with all of its stages, loads the active
    approval and its active stages under row locks, applies status
    transitions as compare-and-set updates, and serves the escalation
    sweep's due-stage queries.

Architecture position:
    Kernel > Services.  Session-bound: flushes within the caller's
    transaction, never commits.

Invariants enforced:
    Single active approval -- service check plus the partial unique index;
        a lost insert race surfaces as ApprovalAlreadyActiveError.
    Lifecycle state machine -- transitions are validated against
        APPROVAL_TRANSITIONS / STAGE_TRANSITIONS before the UPDATE.
    Race safety -- every status UPDATE is guarded by ``WHERE status =
        'ACTIVE'`` and must touch exactly one row; escalation flags are
        guarded by ``WHERE is_escalated = false``.

Failure modes:
    - ApprovalAlreadyActiveError on a second ACTIVE approval.
    - InvalidStatusTransitionError on an illegal edge.
    - ConcurrentTransitionError when a compare-and-set update matches no row.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ApprovalStatus,
    Priority,
    StagePlan,
    StageStatus,
    can_transition_approval,
    can_transition_stage,
)
from approval_kernel.exceptions import (
    ApprovalAlreadyActiveError,
    ConcurrentTransitionError,
    InvalidStatusTransitionError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalModel, ApprovalStageModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.approval_repository")


class ApprovalRepository(BaseService[ApprovalModel]):
    """Approval and stage persistence within the caller's transaction."""

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    def active_for_template(
        self, template_id: UUID, for_update: bool = False,
    ) -> ApprovalModel | None:
        stmt = select(ApprovalModel).where(
            ApprovalModel.template_id == template_id,
            ApprovalModel.status == ApprovalStatus.ACTIVE.value,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def active_stages(
        self, approval_id: UUID, for_update: bool = False,
    ) -> list[ApprovalStageModel]:
        """ACTIVE stages of an approval, ordered by level."""
        stmt = (
            select(ApprovalStageModel)
            .where(
                ApprovalStageModel.approval_id == approval_id,
                ApprovalStageModel.status == StageStatus.ACTIVE.value,
            )
            .order_by(ApprovalStageModel.level)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.session.execute(stmt).scalars().all())

    # -----------------------------------------------------------------
    # Create
    # -----------------------------------------------------------------

    def create(
        self,
        template_id: UUID,
        priority: Priority,
        created_by: UUID,
        plans: Sequence[StagePlan],
        now: datetime,
    ) -> ApprovalModel:
        """
        Insert an ACTIVE approval and one ACTIVE stage per plan.

        ``warn_at`` and ``escalate_at`` are fixed here, relative to ``now``,
        and never recomputed.

        Raises:
            ApprovalAlreadyActiveError: The template already has an ACTIVE
                approval (detected up front or by the unique index).
        """
        if self.active_for_template(template_id) is not None:
            raise ApprovalAlreadyActiveError(str(template_id))

        approval = ApprovalModel(
            template_id=template_id,
            status=ApprovalStatus.ACTIVE.value,
            priority=Priority(priority).value,
            created_by=created_by,
            created_at=now,
        )
        for plan in plans:
            approval.stages.append(
                ApprovalStageModel(
                    status=StageStatus.ACTIVE.value,
                    level=plan.level,
                    role_id=plan.role_id,
                    approver=plan.approver,
                    escalators=list(plan.escalators),
                    time_limit=plan.time_limit,
                    warning_offset=plan.warning_offset,
                    warn_at=now + timedelta(minutes=plan.warning_offset),
                    escalate_at=now + timedelta(minutes=plan.time_limit),
                    is_escalated=False,
                    created_at=now,
                )
            )

        self.session.add(approval)
        try:
            self.session.flush()
        except IntegrityError as exc:
            logger.warning(
                "approval_insert_conflict",
                extra={"template_id": str(template_id), "error": str(exc.orig)},
            )
            raise ApprovalAlreadyActiveError(str(template_id)) from exc

        logger.info(
            "approval_created",
            extra={
                "approval_id": str(approval.id),
                "template_id": str(template_id),
                "priority": approval.priority,
                "stage_count": len(plans),
            },
        )
        return approval

    # -----------------------------------------------------------------
    # Status transitions (compare-and-set)
    # -----------------------------------------------------------------

    def transition_stage(
        self,
        stage: ApprovalStageModel,
        to_status: StageStatus,
        updated_by: UUID,
        now: datetime,
    ) -> None:
        current = StageStatus(stage.status)
        if not can_transition_stage(current, to_status):
            raise InvalidStatusTransitionError(
                "ApprovalStage", current.value, to_status.value,
            )

        result = self.session.execute(
            update(ApprovalStageModel)
            .where(
                ApprovalStageModel.id == stage.id,
                ApprovalStageModel.status == StageStatus.ACTIVE.value,
            )
            .values(status=to_status.value, updated_by=updated_by, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentTransitionError(
                "ApprovalStage", str(stage.id), StageStatus.ACTIVE.value,
            )
        self.session.expire(stage, ["status", "updated_by", "updated_at"])

        logger.info(
            "stage_transitioned",
            extra={
                "stage_id": str(stage.id),
                "approval_id": str(stage.approval_id),
                "stage_level": stage.level,
                "from_status": current.value,
                "to_status": to_status.value,
            },
        )

    def transition_approval(
        self,
        approval: ApprovalModel,
        to_status: ApprovalStatus,
        now: datetime,
    ) -> None:
        current = ApprovalStatus(approval.status)
        if not can_transition_approval(current, to_status):
            raise InvalidStatusTransitionError(
                "Approval", current.value, to_status.value,
            )

        result = self.session.execute(
            update(ApprovalModel)
            .where(
                ApprovalModel.id == approval.id,
                ApprovalModel.status == ApprovalStatus.ACTIVE.value,
            )
            .values(status=to_status.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentTransitionError(
                "Approval", str(approval.id), ApprovalStatus.ACTIVE.value,
            )
        self.session.expire(approval, ["status", "updated_at"])

        logger.info(
            "approval_transitioned",
            extra={
                "approval_id": str(approval.id),
                "template_id": str(approval.template_id),
                "from_status": current.value,
                "to_status": to_status.value,
            },
        )

    # -----------------------------------------------------------------
    # Escalation sweep support
    # -----------------------------------------------------------------

    @staticmethod
    def _due_filter(now: datetime):
        # Stages left ACTIVE under a decided approval are never due.
        return (
            ApprovalModel.status == ApprovalStatus.ACTIVE.value,
            ApprovalStageModel.status == StageStatus.ACTIVE.value,
            ApprovalStageModel.is_escalated.is_(False),
            ApprovalStageModel.escalate_at.is_not(None),
            ApprovalStageModel.escalate_at <= now,
        )

    def due_stage_ids(self, now: datetime) -> list[UUID]:
        """
        Ids of ACTIVE, not yet escalated stages past their deadline, oldest
        deadline first.  Only stages of an ACTIVE approval qualify.
        """
        return list(
            self.session.execute(
                select(ApprovalStageModel.id)
                .join(ApprovalModel, ApprovalStageModel.approval_id == ApprovalModel.id)
                .where(*self._due_filter(now))
                .order_by(ApprovalStageModel.escalate_at.asc())
            ).scalars().all()
        )

    def lock_due_stage(
        self, stage_id: UUID, now: datetime,
    ) -> ApprovalStageModel | None:
        """
        Re-read one due stage under a row lock.

        Returns None when the stage is no longer due or another sweeper
        holds the lock.
        """
        return self.session.execute(
            select(ApprovalStageModel)
            .join(ApprovalModel, ApprovalStageModel.approval_id == ApprovalModel.id)
            .where(ApprovalStageModel.id == stage_id, *self._due_filter(now))
            .with_for_update(skip_locked=True, of=ApprovalStageModel)
        ).scalar_one_or_none()

    def mark_escalated(self, stage_id: UUID, now: datetime) -> bool:
        """Flip ``is_escalated`` false -> true.  False when already flagged."""
        result = self.session.execute(
            update(ApprovalStageModel)
            .where(
                ApprovalStageModel.id == stage_id,
                ApprovalStageModel.is_escalated.is_(False),
            )
            .values(is_escalated=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
