"""
Tests for EscalationScanner.

Validates the sweep: due-stage selection against the clock, one
ESCALATION notice per escalator, the escalate-once flag, the ESCALATED
audit entry, and that the sweep never touches stage or approval status.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from approval_kernel.db.engine import session_scope
from approval_kernel.domain.approval import (
    ApprovalStatus,
    AuditAction,
    NotificationType,
    StageStatus,
)
from approval_kernel.models.approval import ApprovalStageModel
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.selectors.template_log_selector import TemplateLogSelector
from approval_kernel.services.approval_repository import ApprovalRepository

from tests.fakes import SYSTEM_ACTOR_ID, make_rule


def _submit(manager, make_template, submitter, approver="a@x.com", reviewer=None):
    template_id = make_template()
    manager.submit(template_id, "MEDIUM", approver, reviewer, actor=submitter)
    return template_id


def _stages(session_factory, template_id):
    with session_scope(session_factory) as s:
        return ApprovalSelector(s).current_for_template(template_id).stages


class TestDueSelection:
    def test_nothing_due_before_the_deadline(
        self, manager, scanner, make_template, submitter, dispatcher, clock,
    ):
        _submit(manager, make_template, submitter)
        dispatcher.events.clear()
        clock.advance_minutes(59)

        result = scanner.run_sweep()

        assert result.due == 0
        assert result.escalated == 0
        assert dispatcher.events == []

    def test_deadline_one_second_ago_is_due(
        self, manager, scanner, make_template, submitter, dispatcher,
        user_directory, session_factory, clock,
    ):
        template_id = _submit(manager, make_template, submitter)
        dispatcher.events.clear()
        clock.advance_minutes(60)
        clock.advance(1)

        result = scanner.run_sweep()

        assert result.due == 1
        assert result.escalated == 1
        assert result.notifications_sent == 1
        assert result.is_clean

        escalations = dispatcher.of_type(NotificationType.ESCALATION)
        assert len(escalations) == 1
        assert escalations[0].template_id == template_id
        assert escalations[0].send_to == user_directory.users["e1@x.com"].user_id
        assert _stages(session_factory, template_id)[0].is_escalated is True

    def test_deadline_an_hour_ahead_is_not_due(
        self, manager, scanner, make_template, submitter, session_factory, clock,
    ):
        template_id = _submit(manager, make_template, submitter)
        with session_scope(session_factory) as s:
            stage = s.execute(select(ApprovalStageModel)).scalar_one()
            escalate_at = stage.escalate_at

        clock.set_time(escalate_at - timedelta(hours=1))
        assert scanner.run_sweep().due == 0

        clock.set_time(escalate_at - timedelta(seconds=1))
        assert scanner.run_sweep().due == 0

        clock.set_time(escalate_at + timedelta(seconds=1))
        assert scanner.run_sweep().escalated == 1
        assert _stages(session_factory, template_id)[0].is_escalated is True

    def test_due_ids_are_ordered_by_deadline(
        self, manager, make_template, submitter, session_factory, clock, rule_provider,
    ):
        rule_provider.rules = [make_rule(1, time_limit=30)]
        early = _submit(manager, make_template, submitter)
        rule_provider.rules = [make_rule(1, time_limit=10)]
        earliest = _submit(manager, make_template, submitter)
        clock.advance_minutes(31)

        with session_scope(session_factory) as s:
            due = ApprovalRepository(s).due_stage_ids(clock.now())
            owners = [s.get(ApprovalStageModel, i).approval.template_id for i in due]

        assert owners == [earliest, early]

    def test_decided_stages_are_never_due(
        self, manager, scanner, make_template, submitter, actor_for, dispatcher, clock,
    ):
        template_id = _submit(manager, make_template, submitter)
        manager.approve(template_id, actor_for("a@x.com"))
        dispatcher.events.clear()
        clock.advance_minutes(120)

        result = scanner.run_sweep()

        assert result.due == 0
        assert dispatcher.events == []

    def test_pending_stage_of_a_rejected_chain_is_never_due(
        self, manager, scanner, make_template, submitter, actor_for,
        rule_provider, dispatcher, session_factory, clock,
    ):
        rule_provider.rules = [
            make_rule(1, time_limit=60, escalators=("e1@x.com",)),
            make_rule(2, time_limit=120, escalators=("e2@x.com",)),
        ]
        template_id = _submit(manager, make_template, submitter, reviewer="r@x.com")
        manager.reject(template_id, actor_for("r@x.com"))
        dispatcher.events.clear()
        clock.advance_minutes(121)

        result = scanner.run_sweep()

        assert result.due == 0
        assert result.escalated == 0
        assert dispatcher.of_type(NotificationType.ESCALATION) == []
        stages = _stages(session_factory, template_id)
        assert [s.status for s in stages] == [StageStatus.REJECTED, StageStatus.ACTIVE]
        assert [s.is_escalated for s in stages] == [False, False]

    def test_lock_refuses_a_stage_whose_approval_was_decided(
        self, manager, make_template, submitter, actor_for, rule_provider,
        session_factory, clock,
    ):
        rule_provider.rules = [make_rule(1), make_rule(2, time_limit=120)]
        template_id = _submit(manager, make_template, submitter, reviewer="r@x.com")
        manager.reject(template_id, actor_for("r@x.com"))
        clock.advance_minutes(121)

        with session_scope(session_factory) as s:
            stage_id = s.execute(
                select(ApprovalStageModel.id).where(ApprovalStageModel.level == 2)
            ).scalar_one()
            repo = ApprovalRepository(s)
            assert repo.due_stage_ids(clock.now()) == []
            assert repo.lock_due_stage(stage_id, clock.now()) is None


class TestEscalateOnce:
    def test_second_sweep_sends_nothing(
        self, manager, scanner, make_template, submitter, dispatcher, clock,
    ):
        _submit(manager, make_template, submitter)
        clock.advance_minutes(61)

        first = scanner.run_sweep()
        sent_after_first = len(dispatcher.of_type(NotificationType.ESCALATION))
        second = scanner.run_sweep()

        assert first.escalated == 1
        assert second.due == 0
        assert len(dispatcher.of_type(NotificationType.ESCALATION)) == sent_after_first == 1

    def test_status_is_untouched(
        self, manager, scanner, make_template, submitter, session_factory, clock,
    ):
        template_id = _submit(manager, make_template, submitter)
        clock.advance_minutes(61)

        scanner.run_sweep()

        view = manager.get_approval(template_id)
        assert view.status == ApprovalStatus.ACTIVE
        assert [s.status for s in view.stages] == [StageStatus.ACTIVE]

    def test_escalated_stage_can_still_be_approved(
        self, manager, scanner, make_template, submitter, actor_for, clock,
    ):
        template_id = _submit(manager, make_template, submitter)
        clock.advance_minutes(61)
        scanner.run_sweep()

        view = manager.approve(template_id, actor_for("a@x.com"))

        assert view.status == ApprovalStatus.APPROVED
        assert view.stages[0].is_escalated is True

    def test_only_the_overdue_stage_of_a_chain_escalates(
        self, manager, scanner, make_template, submitter, rule_provider,
        dispatcher, user_directory, session_factory, clock,
    ):
        rule_provider.rules = [
            make_rule(1, time_limit=60, escalators=("e1@x.com",)),
            make_rule(2, time_limit=240, escalators=("e2@x.com",)),
        ]
        template_id = _submit(manager, make_template, submitter, reviewer="r@x.com")
        dispatcher.events.clear()
        clock.advance_minutes(61)

        scanner.run_sweep()

        stages = _stages(session_factory, template_id)
        assert [s.is_escalated for s in stages] == [True, False]
        assert [e.send_to for e in dispatcher.events] == [
            user_directory.users["e1@x.com"].user_id,
        ]

    def test_mark_escalated_is_conditional(
        self, manager, make_template, submitter, session_factory, clock,
    ):
        _submit(manager, make_template, submitter)
        clock.advance_minutes(61)

        with session_scope(session_factory) as s:
            stage_id = s.execute(select(ApprovalStageModel.id)).scalar_one()
            repo = ApprovalRepository(s)
            assert repo.mark_escalated(stage_id, clock.now()) is True
            assert repo.mark_escalated(stage_id, clock.now()) is False


class TestEscalationAudit:
    def test_escalated_entry_is_written_by_the_system_actor(
        self, manager, scanner, make_template, submitter, session_factory, clock,
    ):
        template_id = _submit(manager, make_template, submitter)
        clock.advance_minutes(61)

        scanner.run_sweep()

        with session_scope(session_factory) as s:
            latest = TemplateLogSelector(s).list_for_template(template_id).entries[0]
        assert latest.action == AuditAction.ESCALATED
        assert latest.performed_by == SYSTEM_ACTOR_ID
        assert latest.previous_status is None
        assert latest.new_status is None
        assert "e1@x.com" in latest.notes

    def test_sweep_is_logged(
        self, manager, scanner, make_template, submitter, clock, captured_logs,
    ):
        template_id = _submit(manager, make_template, submitter)
        clock.advance_minutes(61)

        scanner.run_sweep()

        logs = captured_logs()
        escalated = [r for r in logs if r["message"] == "stage_escalated"]
        assert len(escalated) == 1
        assert escalated[0]["template_id"] == str(template_id)
        assert any(r["message"] == "escalation_sweep_completed" for r in logs)


class TestEscalatorFailures:
    def test_unknown_escalator_still_flags(
        self, manager, scanner, make_template, submitter, rule_provider,
        dispatcher, session_factory, clock, captured_logs,
    ):
        rule_provider.rules = [make_rule(1, escalators=("ghost@x.com", "e1@x.com"))]
        template_id = _submit(manager, make_template, submitter)
        dispatcher.events.clear()
        clock.advance_minutes(61)

        result = scanner.run_sweep()

        assert result.escalated == 1
        assert result.notifications_sent == 1
        assert result.unknown_escalators == 1
        assert len(dispatcher.events) == 1
        assert _stages(session_factory, template_id)[0].is_escalated is True
        assert any(r["message"] == "escalator_unknown" for r in captured_logs())

    def test_delivery_failure_still_flags(
        self, manager, scanner, make_template, submitter, dispatcher, session_factory, clock,
    ):
        template_id = _submit(manager, make_template, submitter)
        dispatcher.fail = True
        clock.advance_minutes(61)

        result = scanner.run_sweep()

        assert result.escalated == 1
        assert result.is_clean
        assert _stages(session_factory, template_id)[0].is_escalated is True

        dispatcher.fail = False
        assert scanner.run_sweep().due == 0
        assert dispatcher.events == []

    def test_directory_outage_counts_as_unresolved(
        self, manager, scanner, make_template, submitter, user_directory, clock,
    ):
        _submit(manager, make_template, submitter)
        user_directory.unreachable = True
        clock.advance_minutes(61)

        result = scanner.run_sweep()

        assert result.escalated == 1
        assert result.unknown_escalators == 1
        assert result.notifications_sent == 0

    def test_one_failing_stage_does_not_abort_the_sweep(
        self, manager, scanner, make_template, submitter, session_factory,
        clock, monkeypatch, captured_logs,
    ):
        first = _submit(manager, make_template, submitter)
        second = _submit(manager, make_template, submitter)
        clock.advance_minutes(61)

        with session_scope(session_factory) as s:
            stages = s.execute(select(ApprovalStageModel)).scalars().all()
            poisoned = next(st.id for st in stages if st.approval.template_id == first)

        original = ApprovalRepository.mark_escalated

        def _flaky(self, stage_id, now):
            if stage_id == poisoned:
                raise RuntimeError("lock timeout")
            return original(self, stage_id, now)

        monkeypatch.setattr(ApprovalRepository, "mark_escalated", _flaky)

        result = scanner.run_sweep()

        assert result.due == 2
        assert result.failed == 1
        assert result.escalated == 1
        assert not result.is_clean
        assert _stages(session_factory, first)[0].is_escalated is False
        assert _stages(session_factory, second)[0].is_escalated is True
        assert any(r["message"] == "stage_escalation_failed" for r in captured_logs())

        # The failed stage stays due and is picked up by the next sweep.
        monkeypatch.setattr(ApprovalRepository, "mark_escalated", original)
        retry = scanner.run_sweep()
        assert retry.escalated == 1
        assert _stages(session_factory, first)[0].is_escalated is True


@pytest.mark.parametrize("escalators,expected", [
    (("e1@x.com",), 1),
    (("e1@x.com", "e2@x.com"), 2),
])
def test_one_notice_per_escalator(
    manager, scanner, make_template, submitter, rule_provider, dispatcher,
    clock, escalators, expected,
):
    rule_provider.rules = [make_rule(1, escalators=escalators)]
    _submit(manager, make_template, submitter)
    dispatcher.events.clear()
    clock.advance_minutes(61)

    scanner.run_sweep()

    assert len(dispatcher.of_type(NotificationType.ESCALATION)) == expected
