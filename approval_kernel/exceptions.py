"""
Typed exception hierarchy for the approval engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the HTTP layer, a scheduler, an operator console) must react to
engine errors by category: an unauthorized approver is a 403, a decision on
a finished request is a 409, a directory outage is retried.  Matching on
message strings is fragile, so every error is:
  1. A TYPED exception class (catch by type, not message)
  2. Tagged with a class-level CODE attribute (machine-readable, API-safe)
  3. Carrying structured DATA as attributes

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalEngineError (base)
    |
    +-- DefinitionError
    |   +-- DefinitionValidationError
    |   +-- DefinitionNotFoundError
    |   +-- DefinitionVersionError
    |
    +-- SubmissionError
    |   +-- MissingFieldError
    |   +-- FieldKindMismatchError
    |   +-- InvalidDecisionError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedPrincipalError
    |
    +-- ConflictError
    |   +-- DuplicateDecisionError
    |   +-- InstanceTerminalError
    |   +-- StepNotActiveError
    |   +-- StepBlockedError
    |   +-- InstanceNotFoundError
    |
    +-- ResolutionError
    |   +-- EmptyApproverSetError
    |
    +-- CollaboratorError
    |   +-- DirectoryUnavailableError
    |   +-- NotifierError
    |
    +-- AuditError
    |   +-- AuditLogSealedError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- EngineInvariantError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Definition      | DEFINITION_INVALID          | Structural validation failed at publish
                | DEFINITION_NOT_FOUND        | Unknown definition id / version
                | DEFINITION_VERSION_CONFLICT | Version not greater than latest
----------------|-----------------------------|-----------------------------------------
Submission      | MISSING_FIELD               | Declared required field absent
                | FIELD_KIND_MISMATCH         | Field kind differs from declaration
                | INVALID_DECISION            | Malformed decision (e.g. no delegate)
----------------|-----------------------------|-----------------------------------------
Authorization   | UNAUTHORIZED_PRINCIPAL      | Principal not a resolved approver
----------------|-----------------------------|-----------------------------------------
Conflict        | DUPLICATE_DECISION          | Second non-comment decision on a step
                | INSTANCE_TERMINAL           | Instance approved/rejected/cancelled
                | STEP_NOT_ACTIVE             | Step never activated or not approval
                | STEP_BLOCKED                | Step awaits operator intervention
                | INSTANCE_NOT_FOUND          | Unknown instance id
----------------|-----------------------------|-----------------------------------------
Resolution      | EMPTY_APPROVER_SET          | Reassignment with no principals
----------------|-----------------------------|-----------------------------------------
Collaborator    | DIRECTORY_UNAVAILABLE       | Directory lookup failed (retryable)
                | NOTIFIER_FAILED             | Notifier raised (logged, never fatal)
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_LOG_SEALED            | Append after instance terminal
                | AUDIT_CHAIN_BROKEN          | Hash chain validation failed
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an audit row
----------------|-----------------------------|-----------------------------------------
Engine          | ENGINE_INVARIANT_VIOLATION  | Programming fault; instance flagged

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        engine.record_decision(instance_id, "manager_review", "bob", "approve")
    except UnauthorizedPrincipalError as e:
        return {"error": e.code, "principal": e.principal, "step": e.step_id}
    except ConflictError as e:
        return {"error": e.code}

EngineInvariantError is never caught by the engine itself: the instance
is flagged BLOCKED, an ENGINE_FAULT audit entry is written, and the error
propagates.
"""

from typing import Any


class ApprovalEngineError(Exception):
    """
    Base exception for all approval engine errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_ENGINE_ERROR"


# Definition errors


class DefinitionError(ApprovalEngineError):
    """Base exception for workflow definition errors."""

    code: str = "DEFINITION_ERROR"


class DefinitionValidationError(DefinitionError):
    """Definition failed structural validation; it was not published."""

    code: str = "DEFINITION_INVALID"

    def __init__(self, definition_id: str, version: int, errors: list[Any]):
        self.definition_id = definition_id
        self.version = version
        self.errors = list(errors)
        summary = "; ".join(str(e) for e in self.errors[:5])
        if len(self.errors) > 5:
            summary += f" (+{len(self.errors) - 5} more)"
        super().__init__(
            f"Definition {definition_id} v{version} is invalid: {summary}"
        )


class DefinitionNotFoundError(DefinitionError):
    """No published definition with the given id (and version)."""

    code: str = "DEFINITION_NOT_FOUND"

    def __init__(self, definition_id: str, version: int | None = None):
        self.definition_id = definition_id
        self.version = version
        label = definition_id if version is None else f"{definition_id} v{version}"
        super().__init__(f"Definition not found: {label}")


class DefinitionVersionError(DefinitionError):
    """Published version must be strictly greater than the latest."""

    code: str = "DEFINITION_VERSION_CONFLICT"

    def __init__(self, definition_id: str, version: int, latest_version: int):
        self.definition_id = definition_id
        self.version = version
        self.latest_version = latest_version
        super().__init__(
            f"Definition {definition_id}: version {version} must be greater "
            f"than latest published version {latest_version}"
        )


# Submission errors


class SubmissionError(ApprovalEngineError):
    """Base exception for malformed submissions and decision requests."""

    code: str = "SUBMISSION_ERROR"


class MissingFieldError(SubmissionError):
    """A field the definition declares as required was not submitted."""

    code: str = "MISSING_FIELD"

    def __init__(self, definition_id: str, field_name: str):
        self.definition_id = definition_id
        self.field_name = field_name
        super().__init__(
            f"Required field '{field_name}' missing for definition {definition_id}"
        )


class FieldKindMismatchError(SubmissionError):
    """A submitted field's kind differs from its declared kind."""

    code: str = "FIELD_KIND_MISMATCH"

    def __init__(self, field_name: str, expected_kind: str, actual_kind: str):
        self.field_name = field_name
        self.expected_kind = expected_kind
        self.actual_kind = actual_kind
        super().__init__(
            f"Field '{field_name}' must be {expected_kind}, got {actual_kind}"
        )


class InvalidDecisionError(SubmissionError):
    """Decision request is malformed (e.g. Delegate without a target)."""

    code: str = "INVALID_DECISION"

    def __init__(self, step_id: str, reason: str):
        self.step_id = step_id
        self.reason = reason
        super().__init__(f"Invalid decision on step {step_id}: {reason}")


# Authorization errors


class AuthorizationError(ApprovalEngineError):
    """Base exception for authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedPrincipalError(AuthorizationError):
    """Principal is not among the step's resolved approvers."""

    code: str = "UNAUTHORIZED_PRINCIPAL"

    def __init__(self, instance_id: str, step_id: str, principal: str):
        self.instance_id = str(instance_id)
        self.step_id = step_id
        self.principal = principal
        super().__init__(
            f"Principal {principal} is not an approver of step {step_id} "
            f"on instance {instance_id}"
        )


# Conflict errors


class ConflictError(ApprovalEngineError):
    """Base exception for requests that conflict with instance state."""

    code: str = "CONFLICT"


class DuplicateDecisionError(ConflictError):
    """Principal already approved, rejected or delegated on this step."""

    code: str = "DUPLICATE_DECISION"

    def __init__(self, instance_id: str, step_id: str, principal: str):
        self.instance_id = str(instance_id)
        self.step_id = step_id
        self.principal = principal
        super().__init__(
            f"Principal {principal} already decided step {step_id} "
            f"on instance {instance_id}"
        )


class InstanceTerminalError(ConflictError):
    """Instance reached a terminal status; no further operation applies."""

    code: str = "INSTANCE_TERMINAL"

    def __init__(self, instance_id: str, status: str):
        self.instance_id = str(instance_id)
        self.status = status
        super().__init__(f"Instance {instance_id} is {status}")


class StepNotActiveError(ConflictError):
    """Step was never activated for this instance or is not an approval step."""

    code: str = "STEP_NOT_ACTIVE"

    def __init__(self, instance_id: str, step_id: str):
        self.instance_id = str(instance_id)
        self.step_id = step_id
        super().__init__(f"Step {step_id} is not active on instance {instance_id}")


class StepBlockedError(ConflictError):
    """Step is blocked and awaits operator reassignment."""

    code: str = "STEP_BLOCKED"

    def __init__(self, instance_id: str, step_id: str):
        self.instance_id = str(instance_id)
        self.step_id = step_id
        super().__init__(f"Step {step_id} on instance {instance_id} is blocked")


class InstanceNotFoundError(ConflictError):
    """No instance with the given id."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = str(instance_id)
        super().__init__(f"Instance not found: {instance_id}")


# Resolution errors


class ResolutionError(ApprovalEngineError):
    """Base exception for approver resolution errors."""

    code: str = "RESOLUTION_ERROR"


class EmptyApproverSetError(ResolutionError):
    """An explicit approver set was empty."""

    code: str = "EMPTY_APPROVER_SET"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Empty approver set for step {step_id}")


# Collaborator errors


class CollaboratorError(ApprovalEngineError):
    """Base exception for external collaborator failures."""

    code: str = "COLLABORATOR_ERROR"


class DirectoryUnavailableError(CollaboratorError):
    """Directory lookup failed; the engine retries on a later tick."""

    code: str = "DIRECTORY_UNAVAILABLE"

    def __init__(self, kind: str, value: str, reason: str = ""):
        self.kind = kind
        self.value = value
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Directory unavailable for {kind}:{value}{detail}")


class NotifierError(CollaboratorError):
    """Notifier delivery failed."""

    code: str = "NOTIFIER_FAILED"

    def __init__(self, event: str, reason: str):
        self.event = event
        self.reason = reason
        super().__init__(f"Notifier failed for {event}: {reason}")


# Audit errors


class AuditError(ApprovalEngineError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditLogSealedError(AuditError):
    """Audit trail of a terminal instance accepts no further entries."""

    code: str = "AUDIT_LOG_SEALED"

    def __init__(self, instance_id: str):
        self.instance_id = str(instance_id)
        super().__init__(f"Audit log for instance {instance_id} is sealed")


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, instance_id: str, seq: int, expected_hash: str, actual_hash: str):
        self.instance_id = str(instance_id)
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken for instance {instance_id} at seq {seq}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Immutability errors


class ImmutabilityError(ApprovalEngineError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Engine faults


class EngineInvariantError(ApprovalEngineError):
    """Internal invariant violated (e.g. a node activated twice).

    Programming-fault class: the affected instance is flagged and the
    error always propagates.
    """

    code: str = "ENGINE_INVARIANT_VIOLATION"

    def __init__(self, instance_id: str, detail: str):
        self.instance_id = str(instance_id)
        self.detail = detail
        super().__init__(f"Engine invariant violated on instance {instance_id}: {detail}")
