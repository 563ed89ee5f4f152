"""
Tests for approval domain types (``approval_kernel.domain.approval``).

Covers the lifecycle state machines, identity normalization, the
current-stage rule and the frozen guarantee on value objects.
"""

from dataclasses import FrozenInstanceError
from types import SimpleNamespace
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    STAGE_TRANSITIONS,
    SUBMITTABLE_TEMPLATE_STATUSES,
    TERMINAL_APPROVAL_STATUSES,
    Actor,
    ApprovalStatus,
    NotificationEvent,
    NotificationType,
    Priority,
    StageStatus,
    TemplateStatus,
    can_transition_approval,
    can_transition_stage,
    current_stage,
    normalize_identity,
)


# =========================================================================
# Enums
# =========================================================================


class TestEnums:
    def test_priority_values(self):
        assert {p.value for p in Priority} == {"HIGH", "MEDIUM", "LOW"}

    def test_approval_status_values(self):
        assert {s.value for s in ApprovalStatus} == {
            "ACTIVE", "APPROVED", "REJECTED", "CLOSED",
        }

    def test_stage_status_values(self):
        assert {s.value for s in StageStatus} == {"ACTIVE", "APPROVED", "REJECTED"}

    def test_notification_types(self):
        assert {t.value for t in NotificationType} == {
            "SEND_FOR_REVIEW",
            "SEND_FOR_APPROVAL",
            "REVIEWED",
            "ACCEPTED",
            "REJECTED",
            "ESCALATION",
        }

    def test_only_draft_is_submittable(self):
        assert SUBMITTABLE_TEMPLATE_STATUSES == frozenset({TemplateStatus.DRAFT})


# =========================================================================
# State machines
# =========================================================================


class TestApprovalTransitions:
    @pytest.mark.parametrize("target", [
        ApprovalStatus.APPROVED, ApprovalStatus.REJECTED, ApprovalStatus.CLOSED,
    ])
    def test_active_moves_to_any_terminal(self, target):
        assert can_transition_approval(ApprovalStatus.ACTIVE, target)

    def test_terminal_states_have_no_outgoing_edges(self):
        for status in TERMINAL_APPROVAL_STATUSES:
            assert APPROVAL_TRANSITIONS[status] == frozenset()
            for target in ApprovalStatus:
                assert not can_transition_approval(status, target)

    def test_active_is_the_only_non_terminal_state(self):
        assert set(ApprovalStatus) - TERMINAL_APPROVAL_STATUSES == {ApprovalStatus.ACTIVE}

    def test_active_to_active_is_not_a_transition(self):
        assert not can_transition_approval(ApprovalStatus.ACTIVE, ApprovalStatus.ACTIVE)


class TestStageTransitions:
    def test_active_moves_to_approved_or_rejected(self):
        assert STAGE_TRANSITIONS[StageStatus.ACTIVE] == frozenset({
            StageStatus.APPROVED, StageStatus.REJECTED,
        })

    def test_decided_stages_are_final(self):
        assert not can_transition_stage(StageStatus.APPROVED, StageStatus.REJECTED)
        assert not can_transition_stage(StageStatus.REJECTED, StageStatus.APPROVED)
        assert not can_transition_stage(StageStatus.APPROVED, StageStatus.ACTIVE)


# =========================================================================
# Identity normalization
# =========================================================================


class TestNormalizeIdentity:
    def test_lowercases_and_strips(self):
        assert normalize_identity("  Alice@Example.COM ") == "alice@example.com"

    def test_idempotent(self):
        once = normalize_identity(" A@X.com")
        assert normalize_identity(once) == once


# =========================================================================
# Current stage
# =========================================================================


def _stage(level, status="ACTIVE"):
    return SimpleNamespace(level=level, status=status)


class TestCurrentStage:
    def test_minimum_active_level_wins(self):
        stages = [_stage(2), _stage(1), _stage(3)]
        assert current_stage(stages).level == 1

    def test_decided_stages_are_skipped(self):
        stages = [_stage(1, "APPROVED"), _stage(2), _stage(3)]
        assert current_stage(stages).level == 2

    def test_none_when_nothing_active(self):
        stages = [_stage(1, "APPROVED"), _stage(2, "REJECTED")]
        assert current_stage(stages) is None

    def test_empty(self):
        assert current_stage([]) is None

    def test_accepts_enum_status(self):
        stages = [_stage(1, StageStatus.APPROVED), _stage(2, StageStatus.ACTIVE)]
        assert current_stage(stages).level == 2


# =========================================================================
# Value objects
# =========================================================================


class TestFrozen:
    def test_actor_is_frozen(self):
        actor = Actor(user_id=uuid4(), email="a@x.com")
        with pytest.raises(FrozenInstanceError):
            actor.email = "b@x.com"

    def test_notification_event_is_frozen(self):
        event = NotificationEvent(
            type=NotificationType.ESCALATION,
            template_id=uuid4(),
            send_to=uuid4(),
        )
        assert event.from_user is None
        with pytest.raises(FrozenInstanceError):
            event.send_to = uuid4()
