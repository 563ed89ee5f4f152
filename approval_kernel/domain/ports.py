"""
Collaborator ports (``approval_kernel.domain.ports``).

The workflow talks to four systems it does not own.  Each is described
here as a ``Protocol`` so the kernel never imports an HTTP client or the
surrounding CRUD service's tables; ``approval_services`` provides the
production implementations and the tests provide in-memory fakes.

Failure contracts
-----------------
* ``EscalationRuleProvider.get_rules`` -- raises ``DependencyFailureError``
  when the provider is unreachable; returns ``[]`` for an empty or
  malformed matrix.
* ``UserDirectory.find_by_email`` -- ``None`` when the user does not
  exist; ``DependencyFailureError`` when the directory is unreachable.
* ``NotificationDispatcher.create`` -- best effort.  Implementations log
  and swallow delivery failures and never raise.
* ``DocumentStore`` -- participates in the caller's session so status
  changes commit or roll back with the workflow transaction.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    NotificationEvent,
    StageRule,
    TemplateStatus,
    UserRecord,
)


@runtime_checkable
class EscalationRuleProvider(Protocol):
    def get_rules(self, channel_id: str) -> list[StageRule]:
        ...


@runtime_checkable
class UserDirectory(Protocol):
    def find_by_email(self, email: str) -> UserRecord | None:
        ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    def create(self, event: NotificationEvent) -> None:
        ...


@runtime_checkable
class DocumentStore(Protocol):
    def get_status(
        self, session: Session, template_id: UUID, for_update: bool = False
    ) -> TemplateStatus | None:
        """Current document status, or None when the template does not exist."""
        ...

    def get_channel_id(self, session: Session, template_id: UUID) -> str | None:
        ...

    def set_status(
        self, session: Session, template_id: UUID, status: TemplateStatus
    ) -> None:
        ...
