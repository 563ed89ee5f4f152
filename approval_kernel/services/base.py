"""
BaseService -- abstract base for kernel write-side services.

Responsibility:
    Provides the common constructor and session-handling contract for the
    services that mutate workflow state.  Concrete services receive a
    SQLAlchemy ``Session`` and use ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  The
    ``ApprovalRepository`` and ``AuditLogWriter`` extend this class; the
    orchestrating ``ApprovalLifecycleManager`` and ``EscalationScanner``
    own the transaction boundaries instead.

Invariants enforced:
    Transaction boundaries -- services flush within the caller's
    transaction and never commit or rollback themselves, so a stage
    update, an approval update, a document status change and an audit
    entry land together or not at all.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from approval_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for session-bound kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session):
        self.session = session
