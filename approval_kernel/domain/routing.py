"""
Stage routing (``approval_kernel.domain.routing``).

Responsibility
--------------
Turns the escalation matrix returned by the rule provider into the
concrete, ordered stage list for one approval instance.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.

Rules
-----
1. Keep rules for the template's channel, with ``status == ACTIVE`` and
   the requested priority; order by ``level``.
2. No rule left -> ``RulesNotConfiguredError``.
3. Levels must run 1..N without gaps or repeats -> else
   ``AmbiguousRoutingError``.
4. Identities are matched 1:1 against the ordered slots.  Any count
   mismatch is an ``AmbiguousRoutingError``.

``chain_identities`` builds the identity list the submit endpoint
accepts today (one approver, optionally preceded by one reviewer).
"""

from __future__ import annotations

from typing import Iterable, Sequence

from approval_kernel.domain.approval import (
    Priority,
    StagePlan,
    StageRule,
    StageStatus,
    normalize_identity,
)
from approval_kernel.exceptions import (
    AmbiguousRoutingError,
    ReviewerRequiredError,
    RulesNotConfiguredError,
)


def applicable_rules(
    rules: Iterable[StageRule],
    *,
    channel_id: str,
    priority: Priority | str,
) -> tuple[StageRule, ...]:
    """Filter the matrix to active rules for this channel and priority, ordered by level."""
    wanted_priority = Priority(priority).value
    matching = [
        rule for rule in rules
        if str(rule.channel_id) == str(channel_id)
        and rule.status == StageStatus.ACTIVE.value
        and rule.priority == wanted_priority
    ]
    return tuple(sorted(matching, key=lambda r: r.level))


def _check_levels(slots: Sequence[StageRule], identity_count: int) -> None:
    levels = [rule.level for rule in slots]
    expected = list(range(1, len(slots) + 1))
    if levels != expected:
        raise AmbiguousRoutingError(
            len(slots),
            identity_count,
            reason=f"stage levels must be contiguous from 1, got {levels}",
        )
    for rule in slots:
        if not rule.escalators:
            raise AmbiguousRoutingError(
                len(slots),
                identity_count,
                reason=f"level {rule.level} has no escalators",
            )


def route_stages(
    rules: Iterable[StageRule],
    *,
    channel_id: str,
    priority: Priority | str,
    identities: Sequence[str],
) -> tuple[StagePlan, ...]:
    """Compute the ordered stage plans for one approval.

    Args:
        rules: Every rule the provider returned (unfiltered).
        channel_id: The owning template's channel.
        priority: Requested priority.
        identities: Approver identities in level order, one per slot.

    Returns:
        One ``StagePlan`` per applicable rule, level 1 first.

    Raises:
        RulesNotConfiguredError: No rule applies.
        AmbiguousRoutingError: Levels are not 1..N, a slot has no
            escalators, or ``len(identities)`` differs from the slot count.
    """
    slots = applicable_rules(rules, channel_id=channel_id, priority=priority)
    if not slots:
        raise RulesNotConfiguredError(str(channel_id), Priority(priority).value)

    _check_levels(slots, len(identities))

    if len(identities) != len(slots):
        raise AmbiguousRoutingError(len(slots), len(identities))

    return tuple(
        StagePlan(
            level=rule.level,
            role_id=rule.role_id,
            approver=normalize_identity(identity),
            time_limit=rule.time_limit,
            warning_offset=rule.warning_offset,
            escalators=tuple(normalize_identity(e) for e in rule.escalators),
        )
        for rule, identity in zip(slots, identities)
    )


def chain_identities(
    slot_count: int,
    approver: str,
    reviewer: str | None = None,
) -> list[str]:
    """Identities for a review-then-approve chain of ``slot_count`` stages.

    One slot takes the approver alone.  Two slots take the reviewer at
    level 1 and the approver at level 2.
    """
    if slot_count == 1:
        return [approver]
    if slot_count == 2:
        if not reviewer:
            raise ReviewerRequiredError(slot_count)
        return [reviewer, approver]
    supplied = 1 + (1 if reviewer else 0)
    raise AmbiguousRoutingError(
        slot_count,
        supplied,
        reason="at most a reviewer and an approver can be supplied",
    )
