"""
Approval domain types (``landreg_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the maker-checker workflow: the entity and action
vocabularies, staff roles, the request lifecycle state machine, the
approver hierarchy, and the frozen DTOs services return to callers.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* ``APPROVAL_TRANSITIONS`` defines the only valid status transitions:
  PENDING -> APPROVED | REJECTED.  Terminal states have no outgoing edges.
* ``ApprovalHierarchy.resolve`` is total: unknown (entity, maker role)
  pairs fall back to the default approver role.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from uuid import UUID


class EntityType(str, Enum):
    """Kinds of records an approval request can target."""

    OWNER = "OWNER"
    LAND_PARCEL = "LAND_PARCEL"
    LEASE = "LEASE"
    ENCUMBRANCE = "ENCUMBRANCE"
    WIZARD_SESSION = "WIZARD_SESSION"


class ActionType(str, Enum):
    """Mutations an approval request can authorize."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    TRANSFER = "TRANSFER"
    ADD_OWNER = "ADD_OWNER"
    SUBDIVIDE = "SUBDIVIDE"


class Role(str, Enum):
    """Staff roles known to the default approval hierarchy."""

    SUBCITY_NORMAL = "SUBCITY_NORMAL"
    SUBCITY_AUDITOR = "SUBCITY_AUDITOR"
    SUBCITY_ADMIN = "SUBCITY_ADMIN"
    CITY_ADMIN = "CITY_ADMIN"
    REVENUE_ADMIN = "REVENUE_ADMIN"


# =========================================================================
# Approval Status Lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
})


def can_transition(current: ApprovalStatus, target: ApprovalStatus) -> bool:
    return target in APPROVAL_TRANSITIONS[current]


class ApprovalLogAction(str, Enum):
    """Entries written to the append-only approval log."""

    CREATE = "CREATE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"


# =========================================================================
# Approver hierarchy
# =========================================================================


@dataclass(frozen=True)
class ApprovalHierarchy:
    """Maps (entity type, maker role) to the role that must approve.

    When the resolved approver role equals the maker's own role the maker
    is self-approving and no request row is created.
    """

    rules: Mapping[tuple[str, str], str]
    default_approver_role: str = Role.SUBCITY_ADMIN.value

    def resolve(self, entity_type: EntityType | str, maker_role: str) -> str:
        key = (_value(entity_type), _value(maker_role))
        return self.rules.get(key, self.default_approver_role)

    def is_self_approving(self, entity_type: EntityType | str, maker_role: str) -> bool:
        return self.resolve(entity_type, maker_role) == _value(maker_role)


def _value(item: Any) -> str:
    return item.value if isinstance(item, Enum) else str(item)


# =========================================================================
# Request and Log Records
# =========================================================================


@dataclass(frozen=True)
class ApprovalLogEntry:
    """One append-only log row. Immutable."""

    id: UUID
    request_id: UUID
    action: ApprovalLogAction
    performed_by: UUID
    performed_by_role: str
    previous_status: ApprovalStatus | None
    new_status: ApprovalStatus
    comments: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request."""

    id: UUID
    entity_type: EntityType
    entity_id: str
    action_type: ActionType
    request_data: dict[str, Any]
    status: ApprovalStatus
    maker_id: UUID
    maker_role: str
    approver_role: str
    sub_city_id: UUID | None = None
    comments: str | None = None
    rejection_reason: str | None = None
    approver_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    logs: tuple[ApprovalLogEntry, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES


@dataclass(frozen=True)
class ExecutionResult:
    """What the dispatcher did for one approved mutation.

    ``session_status`` is an instruction for the caller: the status the
    originating wizard session should move to (None for non-wizard work).
    """

    entity_type: EntityType
    action_type: ActionType
    entity_id: str
    summary: dict[str, Any] = field(default_factory=dict)
    session_status: str | None = None


@dataclass(frozen=True)
class ApprovalOutcome:
    """Result of ``create_approval_request``.

    Exactly one of ``request`` / ``immediate_result`` is set.
    """

    requires_approval: bool
    approver_role: str
    request: ApprovalRequest | None = None
    immediate_result: ExecutionResult | None = None


@dataclass(frozen=True)
class ApprovalDecisionResult:
    """Result of a successful ``approve``."""

    request: ApprovalRequest
    execution: ExecutionResult
