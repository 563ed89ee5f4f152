"""
Module: approval_kernel.models.template
Responsibility: Minimal mapping of the surrounding service's template table.

The template CRUD service owns ``template_libraries``; the workflow only
reads a template's channel and reads/writes its status.  Only those
columns are mapped here, which is enough for ``create_tables()`` in tests
and local runs and matches the columns the production table carries.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UTCDateTime


class TemplateDocumentModel(Base):
    __tablename__ = "template_libraries"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    channel_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<Template {self.id} {self.name!r} status={self.status}>"
