"""
Typed Exception Hierarchy for the Land Records Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval and registry operations fail for precise, recurring reasons: a
duplicate pending request, an approver holding the wrong role, a wizard
session that is no longer editable.  Callers (HTTP adapters, batch jobs,
tests) must branch on the failure KIND, never on message text.

Every exception therefore:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (not just a message string)

Example:
    try:
        engine.approve(request_id, approver_id, approver_role)
    except ForbiddenError as e:
        api_response(status=403, code=e.code, required=e.required_role)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LandRecordsError (base)
    |
    +-- ValidationError
    +-- NotFoundError
    |   +-- ApprovalRequestNotFoundError
    |   +-- WizardSessionNotFoundError
    |   +-- DocumentNotFoundError
    +-- ForbiddenError
    +-- InvalidStateError
    +-- DuplicateRequestError
    +-- UnsupportedActionError
    +-- ExecutionError
    |   +-- ExecutionFailedError
    +-- ImmutabilityViolationError
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                  | When Raised
----------------------|------------------------------------------------------
VALIDATION_FAILED     | Missing/invalid input, incomplete wizard session
NOT_FOUND             | Referenced entity does not exist
FORBIDDEN             | Approver role does not match the required role
INVALID_STATE         | Operation not allowed in the entity's current status
DUPLICATE_REQUEST     | A PENDING request already exists for the triple
UNSUPPORTED_ACTION    | No handler for (entity type, action type)
EXECUTION_ERROR       | Dispatcher could not apply the mutation
EXECUTION_FAILED      | Approval aborted because execution failed
IMMUTABILITY_VIOLATION| UPDATE/DELETE attempted on an append-only row
CONFIGURATION_ERROR   | Configuration file missing or malformed
"""

from __future__ import annotations

from typing import Any


class LandRecordsError(Exception):
    """Base exception for all land records kernel errors."""

    code: str = "LAND_RECORDS_ERROR"

    def __init__(self, message: str = ""):
        self.message = message
        super().__init__(message)


class ValidationError(LandRecordsError):
    """Input failed validation.

    ``field`` names the offending input when a single field is at fault.
    ``missing`` lists the human-readable requirements an incomplete wizard
    session lacks.
    """

    code: str = "VALIDATION_FAILED"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        missing: list[str] | None = None,
    ):
        self.field = field
        self.missing = list(missing or [])
        super().__init__(message)


class NotFoundError(LandRecordsError):
    """A referenced entity does not exist (or is soft-deleted)."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} {entity_id} not found")


class ApprovalRequestNotFoundError(NotFoundError):
    """Approval request id does not exist."""

    def __init__(self, request_id: Any):
        super().__init__("ApprovalRequest", request_id)


class WizardSessionNotFoundError(NotFoundError):
    """Wizard session id does not exist."""

    def __init__(self, session_id: Any):
        super().__init__("WizardSession", session_id)


class DocumentNotFoundError(NotFoundError):
    """A stored document could not be located."""

    def __init__(self, location: Any):
        super().__init__("Document", location)


class ForbiddenError(LandRecordsError):
    """The acting role is not allowed to perform the operation."""

    code: str = "FORBIDDEN"

    def __init__(self, actor_role: str, required_role: str, operation: str):
        self.actor_role = actor_role
        self.required_role = required_role
        self.operation = operation
        super().__init__(
            f"Role {actor_role} cannot {operation}; requires {required_role}"
        )


class InvalidStateError(LandRecordsError):
    """Operation not permitted in the entity's current status."""

    code: str = "INVALID_STATE"

    def __init__(self, entity_type: str, entity_id: Any, status: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity_type} {entity_id} in status {status}"
        )


class DuplicateRequestError(LandRecordsError):
    """A PENDING approval request already exists for the same target."""

    code: str = "DUPLICATE_REQUEST"

    def __init__(self, entity_type: str, entity_id: str, action_type: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.action_type = action_type
        super().__init__(
            f"A pending {action_type} request already exists for "
            f"{entity_type} {entity_id}"
        )


class UnsupportedActionError(LandRecordsError):
    """No execution handler is registered for the pair."""

    code: str = "UNSUPPORTED_ACTION"

    def __init__(self, entity_type: str, action_type: str):
        self.entity_type = entity_type
        self.action_type = action_type
        super().__init__(
            f"Unsupported action {action_type} on {entity_type}"
        )


class ExecutionError(LandRecordsError):
    """The dispatcher could not apply an approved mutation.

    ``cause`` is the underlying error.  When the mutation belonged to a
    wizard session, ``session_id`` identifies it and ``session_status``
    carries the status the caller should record (FAILED).
    """

    code: str = "EXECUTION_ERROR"

    def __init__(
        self,
        entity_type: str,
        action_type: str,
        cause: BaseException,
        session_id: str | None = None,
        session_status: str | None = None,
    ):
        self.entity_type = entity_type
        self.action_type = action_type
        self.cause = cause
        self.session_id = session_id
        self.session_status = session_status
        super().__init__(
            f"Execution of {action_type} on {entity_type} failed: {cause}"
        )


class ExecutionFailedError(ExecutionError):
    """Approval aborted because the dispatcher failed.  Nothing was persisted."""

    code: str = "EXECUTION_FAILED"

    def __init__(self, request_id: Any, error: ExecutionError):
        self.request_id = None if request_id is None else str(request_id)
        super().__init__(
            error.entity_type,
            error.action_type,
            error.cause,
            session_id=error.session_id,
            session_status=error.session_status,
        )


class ImmutabilityViolationError(LandRecordsError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class ConfigurationError(LandRecordsError):
    """Configuration file missing, malformed, or inconsistent."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message)
