"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Workflow callers (the HTTP layer, the sweep scheduler, tests) must react to
failures by KIND, not by message text:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has an HTTP_STATUS attribute (the response it maps to)
  4. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        manager.approve(template_id, actor)
    except NotCurrentApproverError as e:
        return {"error": e.code, "expected": e.expected_approver}, e.http_status

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ApprovalWorkflowError:

    ApprovalWorkflowError (base)
    |
    +-- ValidationError
    |   +-- InvalidInputError
    |
    +-- NotFoundError
    |   +-- TemplateNotFoundError
    |   +-- ApprovalNotFoundError
    |   +-- NoActiveStageError
    |
    +-- ForbiddenError
    |   +-- NotCurrentApproverError
    |
    +-- ConflictError
    |   +-- ApprovalAlreadyActiveError
    |   +-- TemplateNotSubmittableError
    |   +-- ConcurrentTransitionError
    |   +-- InvalidStatusTransitionError
    |
    +-- RoutingError
    |   +-- RulesNotConfiguredError
    |   +-- AmbiguousRoutingError
    |   |   +-- ReviewerRequiredError
    |   +-- UnknownApproverError
    |
    +-- DependencyFailureError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                       | HTTP | When Raised
-------------|----------------------------|------|------------------------------
Validation   | INVALID_INPUT              | 400  | Malformed request data
-------------|----------------------------|------|------------------------------
Not found    | TEMPLATE_NOT_FOUND         | 404  | Document store has no template
             | APPROVAL_NOT_FOUND         | 404  | No (active) approval
             | NO_ACTIVE_STAGE            | 404  | Approval has no active stages
-------------|----------------------------|------|------------------------------
Forbidden    | NOT_CURRENT_APPROVER       | 403  | Actor is not the stage approver
-------------|----------------------------|------|------------------------------
Conflict     | APPROVAL_ALREADY_ACTIVE    | 400  | Template already submitted
             | TEMPLATE_NOT_SUBMITTABLE   | 400  | Document not in DRAFT
             | CONCURRENT_TRANSITION      | 409  | Lost a compare-and-set race
             | INVALID_STATUS_TRANSITION  | 409  | Illegal state machine edge
-------------|----------------------------|------|------------------------------
Routing      | RULES_NOT_CONFIGURED       | 400  | No applicable stage rules
             | AMBIGUOUS_ROUTING          | 400  | Slots and identities mismatch
             | REVIEWER_REQUIRED          | 400  | Multi-stage chain, no reviewer
             | UNKNOWN_APPROVER           | 400  | Identity not in user directory
-------------|----------------------------|------|------------------------------
Dependency   | DEPENDENCY_FAILURE         | 503  | Rule provider / directory down
-------------|----------------------------|------|------------------------------
Immutability | IMMUTABILITY_VIOLATION     | 500  | Audit entry / deadline rewrite

Notification delivery failures are deliberately NOT in this hierarchy: they
are logged and swallowed by the dispatcher boundary and never reach callers.
"""


class ApprovalWorkflowError(Exception):
    """
    Base exception for all approval workflow errors.

    All subclasses must have `code` and `http_status` class attributes.
    """

    code: str = "APPROVAL_WORKFLOW_ERROR"
    http_status: int = 500


# Validation


class ValidationError(ApprovalWorkflowError):
    """Base exception for malformed input, rejected before any persistence."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400


class InvalidInputError(ValidationError):
    """A request field is missing or malformed."""

    code: str = "INVALID_INPUT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Not found


class NotFoundError(ApprovalWorkflowError):
    """Base exception for missing resources."""

    code: str = "NOT_FOUND"
    http_status: int = 404


class TemplateNotFoundError(NotFoundError):
    """The owning template does not exist in the document store."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class ApprovalNotFoundError(NotFoundError):
    """No approval (or no active approval) exists for the template."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"No approval found for template {template_id}")


class NoActiveStageError(NotFoundError):
    """The active approval has no active stages left."""

    code: str = "NO_ACTIVE_STAGE"

    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(f"Approval {approval_id} has no active stage")


# Forbidden


class ForbiddenError(ApprovalWorkflowError):
    """Base exception for actors not allowed to act."""

    code: str = "FORBIDDEN"
    http_status: int = 403


class NotCurrentApproverError(ForbiddenError):
    """The acting identity is not the approver of the current stage."""

    code: str = "NOT_CURRENT_APPROVER"

    def __init__(self, template_id: str, acting_identity: str, level: int):
        self.template_id = template_id
        self.acting_identity = acting_identity
        self.level = level
        super().__init__(
            f"{acting_identity} is not the approver of stage {level} "
            f"for template {template_id}"
        )


# Conflict


class ConflictError(ApprovalWorkflowError):
    """Base exception for state conflicts."""

    code: str = "CONFLICT"
    http_status: int = 409


class ApprovalAlreadyActiveError(ConflictError):
    """The template already has an ACTIVE approval."""

    code: str = "APPROVAL_ALREADY_ACTIVE"
    http_status: int = 400

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template {template_id} is already submitted for approval")


class TemplateNotSubmittableError(ConflictError):
    """The owning document is not in a submittable state."""

    code: str = "TEMPLATE_NOT_SUBMITTABLE"
    http_status: int = 400

    def __init__(self, template_id: str, status: str):
        self.template_id = template_id
        self.status = status
        super().__init__(
            f"Template {template_id} cannot be submitted from status {status}"
        )


class ConcurrentTransitionError(ConflictError):
    """A compare-and-set update found the row already moved by another transaction."""

    code: str = "CONCURRENT_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, expected_status: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_status = expected_status
        super().__init__(
            f"{entity_type} {entity_id} is no longer {expected_status}: "
            "modified by a concurrent transaction"
        )


class InvalidStatusTransitionError(ConflictError):
    """Requested status change is not an edge of the state machine."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, entity_type: str, from_status: str, to_status: str):
        self.entity_type = entity_type
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid {entity_type} transition: {from_status} -> {to_status}"
        )


# Routing


class RoutingError(ApprovalWorkflowError):
    """Base exception for stage routing failures."""

    code: str = "ROUTING_ERROR"
    http_status: int = 400


class RulesNotConfiguredError(RoutingError):
    """No active escalation rule matches the channel and priority."""

    code: str = "RULES_NOT_CONFIGURED"

    def __init__(self, channel_id: str, priority: str):
        self.channel_id = channel_id
        self.priority = priority
        super().__init__(
            f"No approval rules configured for channel {channel_id} "
            f"with priority {priority}"
        )


class AmbiguousRoutingError(RoutingError):
    """Rule slots cannot be matched 1:1 with the supplied identities."""

    code: str = "AMBIGUOUS_ROUTING"

    def __init__(self, slot_count: int, identity_count: int, reason: str = ""):
        self.slot_count = slot_count
        self.identity_count = identity_count
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Cannot route {identity_count} identities onto "
            f"{slot_count} stage slots{detail}"
        )


class ReviewerRequiredError(AmbiguousRoutingError):
    """A multi-stage chain was requested without a reviewer."""

    code: str = "REVIEWER_REQUIRED"

    def __init__(self, slot_count: int):
        super().__init__(
            slot_count, 1, reason="a reviewer is required for multi-stage chains"
        )


class UnknownApproverError(RoutingError):
    """A named approver or reviewer does not resolve to a known user."""

    code: str = "UNKNOWN_APPROVER"

    def __init__(self, identity: str, role: str = "approver"):
        self.identity = identity
        self.role = role
        super().__init__(f"Unknown {role}: {identity}")


# Dependencies


class DependencyFailureError(ApprovalWorkflowError):
    """An upstream collaborator (rule provider, user directory) is unreachable."""

    code: str = "DEPENDENCY_FAILURE"
    http_status: int = 503

    def __init__(self, dependency: str, reason: str):
        self.dependency = dependency
        self.reason = reason
        super().__init__(f"{dependency} unavailable: {reason}")


# Immutability


class ImmutabilityViolationError(ApprovalWorkflowError):
    """Attempted to modify or delete an immutable record or field."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
