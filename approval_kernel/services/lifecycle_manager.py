"""
ApprovalLifecycleManager -- the template approval state machine.

Responsibility:
    Orchestrates submit -> approve/reject -> completion for one template.
    Resolves the stage chain from the escalation matrix, persists the
    approval and its stages, enforces that only the current stage's
    approver may act, cascades to the next stage or completes the
    workflow, keeps the owning document's status in step, and writes the
    audit trail.

Architecture position:
    Kernel > Services -- imperative shell.  Owns the transaction boundary
    of every workflow action (one ``session_scope()`` per action).

Invariants enforced:
    Single active approval -- checked under the document row lock and
        backed by the partial unique index.
    Current stage -- ``current_stage()``: minimum level among ACTIVE stages.
    Atomic actions -- stage, approval, document and audit writes for one
        action commit together; any exception rolls all of them back.
    Notify after commit -- notifications are collected during the
        transaction and dispatched only once it has committed.  Delivery
        failures are logged and never reach the caller.

Failure modes:
    - InvalidInputError for a malformed priority or identity.
    - TemplateNotFoundError / TemplateNotSubmittableError /
      ApprovalAlreadyActiveError on submit preconditions.
    - RulesNotConfiguredError / AmbiguousRoutingError /
      ReviewerRequiredError / UnknownApproverError on routing.
    - DependencyFailureError when the rule provider or user directory is
      unreachable (before any write).
    - ApprovalNotFoundError / NoActiveStageError / NotCurrentApproverError
      on approve and reject.
    - ConcurrentTransitionError when a concurrent action won the race.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.db.engine import session_scope
from approval_kernel.domain.approval import (
    Actor,
    ApprovalStatus,
    ApprovalView,
    AuditAction,
    NotificationEvent,
    NotificationType,
    Priority,
    StageStatus,
    SUBMITTABLE_TEMPLATE_STATUSES,
    TemplateStatus,
    UserRecord,
    current_stage,
    normalize_identity,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.ports import (
    DocumentStore,
    EscalationRuleProvider,
    NotificationDispatcher,
    UserDirectory,
)
from approval_kernel.domain.routing import (
    applicable_rules,
    chain_identities,
    route_stages,
)
from approval_kernel.exceptions import (
    ApprovalAlreadyActiveError,
    ApprovalNotFoundError,
    InvalidInputError,
    NoActiveStageError,
    NotCurrentApproverError,
    RulesNotConfiguredError,
    TemplateNotFoundError,
    TemplateNotSubmittableError,
    UnknownApproverError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval import ApprovalModel, ApprovalStageModel
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.services.approval_repository import ApprovalRepository
from approval_kernel.services.audit_log_writer import AuditLogWriter

logger = get_logger("services.lifecycle_manager")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class _PendingNotice:
    """A notification decided inside the transaction, sent after commit.

    Exactly one of ``send_to`` (a user id) or ``email`` is set; email
    recipients are resolved through the user directory at dispatch time.
    """

    type: NotificationType
    template_id: UUID
    from_user: UUID | None
    send_to: UUID | None = None
    email: str | None = None


def _validate_identity(field: str, value: str | None) -> str:
    if value is None or not value.strip():
        raise InvalidInputError(field, "is required")
    normalized = normalize_identity(value)
    if not _EMAIL_RE.match(normalized):
        raise InvalidInputError(field, f"must be a valid email, got {value!r}")
    return normalized


def _parse_priority(priority: Priority | str) -> Priority:
    try:
        return Priority(priority.upper() if isinstance(priority, str) else priority)
    except ValueError:
        allowed = ", ".join(p.value for p in Priority)
        raise InvalidInputError("priority", f"must be one of {allowed}") from None


class ApprovalLifecycleManager:
    """
    Drives templates through their approval chain.

    Contract:
        Every public method runs in its own transaction opened from
        ``session_factory``.  No approval or stage state is cached between
        calls.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        rule_provider: EscalationRuleProvider,
        user_directory: UserDirectory,
        dispatcher: NotificationDispatcher,
        document_store: DocumentStore,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._rule_provider = rule_provider
        self._user_directory = user_directory
        self._dispatcher = dispatcher
        self._document_store = document_store
        self._clock = clock or SystemClock()

    # =================================================================
    # Submit
    # =================================================================

    def submit(
        self,
        template_id: UUID,
        priority: Priority | str,
        approver: str,
        reviewer: str | None = None,
        *,
        actor: Actor,
        notes: str | None = None,
    ) -> UUID:
        """
        Send a template for approval.

        Preconditions:
            The template exists, is in DRAFT and has no ACTIVE approval.

        Postconditions:
            One ACTIVE approval with one ACTIVE stage per applicable rule;
            the document is PENDING; one SUBMITTED_FOR_APPROVAL audit
            entry.  After commit the level-1 approver is notified.

        Returns:
            The new approval id.
        """
        wanted_priority = _parse_priority(priority)
        approver_email = _validate_identity("approver", approver)
        reviewer_email = (
            _validate_identity("reviewer", reviewer) if reviewer else None
        )

        with LogContext.bind(template_id=str(template_id), actor_id=str(actor.user_id)):
            # Cheap precondition pass before calling out to other services.
            with session_scope(self._session_factory) as session:
                channel_id = self._check_submittable(session, template_id)

            rules = self._rule_provider.get_rules(channel_id)
            slots = applicable_rules(
                rules, channel_id=channel_id, priority=wanted_priority,
            )
            if not slots:
                raise RulesNotConfiguredError(channel_id, wanted_priority.value)

            identities = chain_identities(len(slots), approver_email, reviewer_email)
            plans = route_stages(
                rules,
                channel_id=channel_id,
                priority=wanted_priority,
                identities=identities,
            )

            users = {approver_email: self._require_user(approver_email, "approver")}
            if reviewer_email is not None:
                users[reviewer_email] = self._require_user(reviewer_email, "reviewer")

            first = plans[0]
            notice_type = (
                NotificationType.SEND_FOR_REVIEW
                if len(plans) > 1
                else NotificationType.SEND_FOR_APPROVAL
            )

            with session_scope(self._session_factory) as session:
                # Re-check under the document lock; state may have moved
                # while the collaborators were consulted.
                self._check_submittable(session, template_id, for_update=True)
                now = self._clock.now()

                approval = ApprovalRepository(session).create(
                    template_id=template_id,
                    priority=wanted_priority,
                    created_by=actor.user_id,
                    plans=plans,
                    now=now,
                )
                self._document_store.set_status(
                    session, template_id, TemplateStatus.PENDING,
                )
                AuditLogWriter(session, self._clock).record_submitted(
                    template_id,
                    performed_by=actor.user_id,
                    previous_status=TemplateStatus.DRAFT.value,
                    new_status=TemplateStatus.PENDING.value,
                    notes=notes,
                )
                approval_id = approval.id

            logger.info(
                "approval_submitted",
                extra={
                    "approval_id": str(approval_id),
                    "priority": wanted_priority.value,
                    "stage_count": len(plans),
                    "first_approver": first.approver,
                },
            )

            self._dispatch([
                _PendingNotice(
                    type=notice_type,
                    template_id=template_id,
                    from_user=actor.user_id,
                    send_to=users[first.approver].user_id,
                ),
            ])
            return approval_id

    def _check_submittable(
        self, session: Session, template_id: UUID, for_update: bool = False,
    ) -> str:
        status = self._document_store.get_status(
            session, template_id, for_update=for_update,
        )
        if status is None:
            raise TemplateNotFoundError(str(template_id))
        if ApprovalRepository(session).active_for_template(template_id) is not None:
            raise ApprovalAlreadyActiveError(str(template_id))
        if status not in SUBMITTABLE_TEMPLATE_STATUSES:
            raise TemplateNotSubmittableError(str(template_id), status.value)
        channel_id = self._document_store.get_channel_id(session, template_id)
        if channel_id is None:
            raise TemplateNotFoundError(str(template_id))
        return channel_id

    def _require_user(self, email: str, role: str) -> UserRecord:
        user = self._user_directory.find_by_email(email)
        if user is None:
            raise UnknownApproverError(email, role)
        return user

    # =================================================================
    # Approve / Reject
    # =================================================================

    def approve(
        self,
        template_id: UUID,
        actor: Actor,
        notes: str | None = None,
    ) -> ApprovalView:
        """
        Approve the current stage on behalf of its approver.

        Intermediate stage: audit REVIEWED, document stays PENDING, the
        submitter is told the review is done and the next approver is asked
        to approve.  Final stage: approval and document become APPROVED,
        audit APPROVED, the submitter is told the template was accepted.
        """
        with LogContext.bind(template_id=str(template_id), actor_id=str(actor.user_id)):
            notices: list[_PendingNotice] = []
            with session_scope(self._session_factory) as session:
                repo = ApprovalRepository(session)
                approval, stage, remaining = self._load_current(
                    session, repo, template_id, actor,
                )
                now = self._clock.now()
                audit = AuditLogWriter(session, self._clock)
                previous_doc = self._document_store.get_status(
                    session, template_id, for_update=True,
                )
                previous_doc_value = previous_doc.value if previous_doc else None

                repo.transition_stage(stage, StageStatus.APPROVED, actor.user_id, now)
                next_stage = current_stage(remaining)

                if next_stage is not None:
                    audit.record_decision(
                        template_id,
                        AuditAction.REVIEWED,
                        actor.user_id,
                        previous_status=previous_doc_value,
                        new_status=previous_doc_value,
                        notes=notes,
                    )
                    notices.append(_PendingNotice(
                        type=NotificationType.REVIEWED,
                        template_id=template_id,
                        from_user=actor.user_id,
                        send_to=approval.created_by,
                    ))
                    notices.append(_PendingNotice(
                        type=NotificationType.SEND_FOR_APPROVAL,
                        template_id=template_id,
                        from_user=actor.user_id,
                        email=next_stage.approver,
                    ))
                    event_name = "stage_reviewed"
                else:
                    repo.transition_approval(approval, ApprovalStatus.APPROVED, now)
                    self._document_store.set_status(
                        session, template_id, TemplateStatus.APPROVED,
                    )
                    audit.record_decision(
                        template_id,
                        AuditAction.APPROVED,
                        actor.user_id,
                        previous_status=previous_doc_value,
                        new_status=TemplateStatus.APPROVED.value,
                        notes=notes,
                    )
                    notices.append(_PendingNotice(
                        type=NotificationType.ACCEPTED,
                        template_id=template_id,
                        from_user=actor.user_id,
                        send_to=approval.created_by,
                    ))
                    event_name = "approval_approved"

                view = approval.to_dto()

            logger.info(
                event_name,
                extra={
                    "approval_id": str(view.approval_id),
                    "stage_level": stage.level,
                    "next_level": next_stage.level if next_stage else None,
                },
            )
            self._dispatch(notices)
            return view

    def reject(
        self,
        template_id: UUID,
        actor: Actor,
        notes: str | None = None,
    ) -> ApprovalView:
        """
        Reject the current stage.  Terminal for the whole chain: later
        stages are left untouched and never notified.
        """
        with LogContext.bind(template_id=str(template_id), actor_id=str(actor.user_id)):
            with session_scope(self._session_factory) as session:
                repo = ApprovalRepository(session)
                approval, stage, _ = self._load_current(
                    session, repo, template_id, actor,
                )
                now = self._clock.now()
                previous_doc = self._document_store.get_status(
                    session, template_id, for_update=True,
                )

                repo.transition_stage(stage, StageStatus.REJECTED, actor.user_id, now)
                repo.transition_approval(approval, ApprovalStatus.REJECTED, now)
                self._document_store.set_status(
                    session, template_id, TemplateStatus.REJECTED,
                )
                AuditLogWriter(session, self._clock).record_decision(
                    template_id,
                    AuditAction.REJECTED,
                    actor.user_id,
                    previous_status=previous_doc.value if previous_doc else None,
                    new_status=TemplateStatus.REJECTED.value,
                    notes=notes,
                )

                view = approval.to_dto()

            logger.info(
                "approval_rejected",
                extra={"approval_id": str(view.approval_id), "stage_level": stage.level},
            )
            self._dispatch([
                _PendingNotice(
                    type=NotificationType.REJECTED,
                    template_id=template_id,
                    from_user=actor.user_id,
                    send_to=view.created_by,
                ),
            ])
            return view

    def _load_current(
        self,
        session: Session,
        repo: ApprovalRepository,
        template_id: UUID,
        actor: Actor,
    ) -> tuple[ApprovalModel, ApprovalStageModel, list[ApprovalStageModel]]:
        """Lock the active approval, find the current stage, check the actor."""
        approval = repo.active_for_template(template_id, for_update=True)
        if approval is None:
            raise ApprovalNotFoundError(str(template_id))

        stages = repo.active_stages(approval.id, for_update=True)
        stage = current_stage(stages)
        if stage is None:
            raise NoActiveStageError(str(approval.id))

        acting = normalize_identity(actor.email or "")
        if acting != normalize_identity(stage.approver):
            logger.warning(
                "approval_action_forbidden",
                extra={
                    "approval_id": str(approval.id),
                    "stage_level": stage.level,
                    "acting_identity": acting,
                },
            )
            raise NotCurrentApproverError(str(template_id), acting, stage.level)

        remaining = [s for s in stages if s.id != stage.id]
        return approval, stage, remaining

    # =================================================================
    # Read
    # =================================================================

    def get_approval(self, template_id: UUID) -> ApprovalView:
        """The ACTIVE approval (else the latest one) with its stages ordered by level."""
        with session_scope(self._session_factory) as session:
            view = ApprovalSelector(session).current_for_template(template_id)
        if view is None:
            raise ApprovalNotFoundError(str(template_id))
        return view

    # =================================================================
    # Notifications (after commit)
    # =================================================================

    def _dispatch(self, notices: list[_PendingNotice]) -> None:
        for notice in notices:
            try:
                send_to = notice.send_to
                if send_to is None and notice.email is not None:
                    user = self._user_directory.find_by_email(notice.email)
                    if user is None:
                        logger.warning(
                            "notification_recipient_unknown",
                            extra={
                                "notification_type": notice.type.value,
                                "recipient": notice.email,
                            },
                        )
                        continue
                    send_to = user.user_id
                self._dispatcher.create(
                    NotificationEvent(
                        type=notice.type,
                        template_id=notice.template_id,
                        send_to=send_to,
                        from_user=notice.from_user,
                    )
                )
            except Exception:
                # The workflow transaction has already committed.
                logger.warning(
                    "notification_delivery_failed",
                    extra={
                        "notification_type": notice.type.value,
                        "template_id": str(notice.template_id),
                    },
                    exc_info=True,
                )
