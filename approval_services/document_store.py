"""
SqlDocumentStore -- the template document collaborator over the shared database.

The template CRUD service and the workflow share one database.  Status
changes are made through the caller's session so they commit or roll
back together with the workflow's own writes.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import TemplateStatus
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import TemplateNotFoundError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.template import TemplateDocumentModel

logger = get_logger("services.document_store")


class SqlDocumentStore:
    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def get_status(
        self, session: Session, template_id: UUID, for_update: bool = False,
    ) -> TemplateStatus | None:
        stmt = select(TemplateDocumentModel.status).where(
            TemplateDocumentModel.id == template_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        status = session.execute(stmt).scalar_one_or_none()
        return TemplateStatus(status) if status is not None else None

    def get_channel_id(self, session: Session, template_id: UUID) -> str | None:
        return session.execute(
            select(TemplateDocumentModel.channel_id).where(
                TemplateDocumentModel.id == template_id,
            )
        ).scalar_one_or_none()

    def set_status(
        self, session: Session, template_id: UUID, status: TemplateStatus,
    ) -> None:
        now: datetime = self._clock.now()
        result = session.execute(
            update(TemplateDocumentModel)
            .where(TemplateDocumentModel.id == template_id)
            .values(status=TemplateStatus(status).value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise TemplateNotFoundError(str(template_id))
        logger.info(
            "template_status_changed",
            extra={"template_id": str(template_id), "new_status": TemplateStatus(status).value},
        )
