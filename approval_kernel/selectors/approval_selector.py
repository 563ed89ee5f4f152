"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read-only access to approvals and their stages.
Architecture position: Kernel > Selectors.

Failure modes:
    - Returns None when no approval exists (never raises on absence).
"""

from uuid import UUID

from sqlalchemy import case, func, select

from approval_kernel.domain.approval import ApprovalStatus, ApprovalView
from approval_kernel.models.approval import ApprovalModel
from approval_kernel.selectors.base import BaseSelector


class ApprovalSelector(BaseSelector[ApprovalModel]):
    """
    Selector for approval queries.

    Guarantees:
        - Stages inside every returned view are ordered by level.
    """

    def current_for_template(self, template_id: UUID) -> ApprovalView | None:
        """The ACTIVE approval for a template, else its most recent one."""
        active_first = case(
            (ApprovalModel.status == ApprovalStatus.ACTIVE.value, 0),
            else_=1,
        )
        model = self.session.execute(
            select(ApprovalModel)
            .where(ApprovalModel.template_id == template_id)
            .order_by(active_first, ApprovalModel.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def history_for_template(self, template_id: UUID) -> list[ApprovalView]:
        """All approval cycles for a template, newest first."""
        models = self.session.execute(
            select(ApprovalModel)
            .where(ApprovalModel.template_id == template_id)
            .order_by(ApprovalModel.created_at.desc())
        ).scalars().all()
        return [m.to_dto() for m in models]

    def count_active(self, template_id: UUID) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(ApprovalModel)
            .where(
                ApprovalModel.template_id == template_id,
                ApprovalModel.status == ApprovalStatus.ACTIVE.value,
            )
        ).scalar_one()
