"""
EscalationScanner -- one sweep over overdue approval stages.

Responsibility:
    Finds ACTIVE stages whose ``escalate_at`` has passed and that were
    never escalated, notifies every escalator of each once, and flags the
    stage so it is never picked up again.

Architecture position:
    Kernel > Services.  Invoked by ``approval_batch.scheduler`` on a fixed
    interval and by ``scripts/run_escalation_sweep.py``.

Invariants enforced:
    Escalate once -- the flag is flipped by a conditional update
        (``WHERE is_escalated = false``) as the last write of each stage's
        own transaction; the stage row is locked with SKIP LOCKED so two
        sweepers never work the same stage at once.
    Advisory only -- the scanner never changes ``status`` and never moves
        the chain forward.

Failure modes:
    - Unknown escalator or failed delivery: logged per escalator, the
      stage is still flagged.
    - Any other error on one stage: logged, that stage's transaction is
      rolled back (it stays due for the next sweep), the sweep continues.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.db.engine import session_scope
from approval_kernel.domain.approval import NotificationEvent, NotificationType
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.ports import NotificationDispatcher, UserDirectory
from approval_kernel.exceptions import DependencyFailureError
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.approval_repository import ApprovalRepository
from approval_kernel.services.audit_log_writer import AuditLogWriter

logger = get_logger("services.escalation_scanner")


@dataclass(frozen=True)
class StageEscalation:
    """Outcome for one stage."""

    stage_id: UUID
    escalated: bool
    notified: int = 0
    unknown_escalators: int = 0


@dataclass(frozen=True)
class SweepResult:
    """Summary of one sweep."""

    started_at: datetime
    due: int
    escalated: int
    skipped: int
    failed: int
    notifications_sent: int
    unknown_escalators: int

    @property
    def is_clean(self) -> bool:
        return self.failed == 0


class EscalationScanner:
    """
    Escalates overdue stages.

    Contract:
        ``run_sweep()`` may be called any number of times; a stage is
        notified at most once across all calls.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        user_directory: UserDirectory,
        dispatcher: NotificationDispatcher,
        system_actor_id: UUID,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._user_directory = user_directory
        self._dispatcher = dispatcher
        self._system_actor_id = system_actor_id
        self._clock = clock or SystemClock()

    def run_sweep(self) -> SweepResult:
        now = self._clock.now()

        with session_scope(self._session_factory) as session:
            due_ids = ApprovalRepository(session).due_stage_ids(now)

        escalated = skipped = failed = sent = unknown = 0
        for stage_id in due_ids:
            try:
                outcome = self._escalate_stage(stage_id, now)
            except Exception:
                failed += 1
                logger.exception(
                    "stage_escalation_failed",
                    extra={"stage_id": str(stage_id)},
                )
                continue
            if outcome.escalated:
                escalated += 1
            else:
                skipped += 1
            sent += outcome.notified
            unknown += outcome.unknown_escalators

        result = SweepResult(
            started_at=now,
            due=len(due_ids),
            escalated=escalated,
            skipped=skipped,
            failed=failed,
            notifications_sent=sent,
            unknown_escalators=unknown,
        )
        log = logger.info if due_ids else logger.debug
        log(
            "escalation_sweep_completed",
            extra={
                "due": result.due,
                "escalated": result.escalated,
                "skipped": result.skipped,
                "failed": result.failed,
                "notifications_sent": result.notifications_sent,
            },
        )
        return result

    def _escalate_stage(self, stage_id: UUID, now: datetime) -> StageEscalation:
        with session_scope(self._session_factory) as session:
            repo = ApprovalRepository(session)
            stage = repo.lock_due_stage(stage_id, now)
            if stage is None:
                # Acted on or claimed by another sweeper since the scan.
                return StageEscalation(stage_id=stage_id, escalated=False)

            template_id = stage.approval.template_id
            escalators = list(stage.escalators or ())

            with LogContext.bind(
                template_id=str(template_id), approval_id=str(stage.approval_id),
            ):
                notified = unknown = 0
                for email in escalators:
                    if self._notify_escalator(email, template_id, stage.level):
                        notified += 1
                    else:
                        unknown += 1

                if not repo.mark_escalated(stage_id, now):
                    logger.warning(
                        "stage_already_escalated",
                        extra={"stage_id": str(stage_id)},
                    )
                    return StageEscalation(stage_id=stage_id, escalated=False)

                AuditLogWriter(session, self._clock).record_escalated(
                    template_id,
                    performed_by=self._system_actor_id,
                    level=stage.level,
                    escalators=escalators,
                )
                logger.info(
                    "stage_escalated",
                    extra={
                        "stage_id": str(stage_id),
                        "stage_level": stage.level,
                        "escalate_at": stage.escalate_at,
                        "notified": notified,
                    },
                )
            return StageEscalation(
                stage_id=stage_id,
                escalated=True,
                notified=notified,
                unknown_escalators=unknown,
            )

    def _notify_escalator(self, email: str, template_id: UUID, level: int) -> bool:
        """Send one ESCALATION notice.  False when the escalator cannot be resolved."""
        try:
            user = self._user_directory.find_by_email(email)
        except DependencyFailureError as exc:
            logger.warning(
                "escalator_lookup_failed",
                extra={"escalator": email, "stage_level": level, "reason": exc.reason},
            )
            return False
        if user is None:
            logger.warning(
                "escalator_unknown",
                extra={"escalator": email, "stage_level": level},
            )
            return False

        try:
            self._dispatcher.create(
                NotificationEvent(
                    type=NotificationType.ESCALATION,
                    template_id=template_id,
                    send_to=user.user_id,
                )
            )
        except Exception:
            logger.warning(
                "notification_delivery_failed",
                extra={
                    "notification_type": NotificationType.ESCALATION.value,
                    "escalator": email,
                },
                exc_info=True,
            )
        return True
