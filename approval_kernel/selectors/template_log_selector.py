"""
Module: approval_kernel.selectors.template_log_selector
Responsibility: Paged, newest-first read access to a template's audit log.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select

from approval_kernel.domain.approval import AuditEntry
from approval_kernel.models.template_log import TemplateLogModel
from approval_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class TemplateLogPage:
    """One page of audit entries plus the unpaged total."""

    entries: tuple[AuditEntry, ...]
    total: int
    skip: int
    limit: int


class TemplateLogSelector(BaseSelector[TemplateLogModel]):
    def list_for_template(
        self,
        template_id: UUID,
        skip: int = 0,
        limit: int = 10,
    ) -> TemplateLogPage:
        """Audit entries for a template, newest first."""
        total = self.session.execute(
            select(func.count())
            .select_from(TemplateLogModel)
            .where(TemplateLogModel.template_id == template_id)
        ).scalar_one()

        rows = self.session.execute(
            select(TemplateLogModel)
            .where(TemplateLogModel.template_id == template_id)
            # id breaks ties between entries written in the same instant
            .order_by(TemplateLogModel.created_at.desc(), TemplateLogModel.id)
            .offset(skip)
            .limit(limit)
        ).scalars().all()

        return TemplateLogPage(
            entries=tuple(row.to_dto() for row in rows),
            total=total,
            skip=skip,
            limit=limit,
        )
