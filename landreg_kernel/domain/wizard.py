"""
Wizard session domain rules (``landreg_kernel.domain.wizard``).

Responsibility
--------------
The draft-session lifecycle, the step-name to slot mapping, and the pure
completeness check run before a session may be submitted.

Architecture position
---------------------
**Kernel domain layer** -- pure functions and value objects.  ZERO I/O.

Invariants enforced
-------------------
* Step data may only be written while the session is DRAFT or REJECTED.
* Completeness requirements are reported in a fixed order so callers can
  render them as a checklist.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from landreg_kernel.exceptions import ValidationError


class WizardStatus(str, Enum):
    """Wizard session lifecycle states."""

    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"
    MERGED = "MERGED"


EDITABLE_STATUSES: frozenset[WizardStatus] = frozenset({
    WizardStatus.DRAFT,
    WizardStatus.REJECTED,
})

SUBMITTABLE_STATUSES = EDITABLE_STATUSES


class WizardStep(str, Enum):
    """Step names accepted by ``save_step``."""

    PARCEL = "parcel"
    PARCEL_DOCS = "parcel-docs"
    OWNER = "owner"
    OWNER_DOCS = "owner-docs"
    LEASE = "lease"
    LEASE_DOCS = "lease-docs"


STEP_SLOTS: dict[WizardStep, str] = {
    WizardStep.PARCEL: "parcel_data",
    WizardStep.PARCEL_DOCS: "parcel_docs",
    WizardStep.OWNER: "owner_data",
    WizardStep.OWNER_DOCS: "owner_docs",
    WizardStep.LEASE: "lease_data",
    WizardStep.LEASE_DOCS: "lease_docs",
}

DOCUMENT_STEPS: frozenset[WizardStep] = frozenset({
    WizardStep.PARCEL_DOCS,
    WizardStep.OWNER_DOCS,
    WizardStep.LEASE_DOCS,
})

LEASE_TENURE = "LEASE"

PARCEL_INFORMATION = "Parcel Information"
PARCEL_DOCUMENTS = "Parcel Documents"
OWNER_INFORMATION = "Owner Information"
OWNER_DOCUMENTS = "Owner Documents"
LEASE_INFORMATION = "Lease Information"
LEASE_DOCUMENTS = "Lease Documents"


def parse_step(step: str | WizardStep) -> WizardStep | None:
    try:
        return WizardStep(step)
    except ValueError:
        return None


def _is_plain_file_name(name: Any) -> bool:
    return (
        isinstance(name, str)
        and bool(name.strip())
        and name not in (".", "..")
        and "/" not in name
        and "\\" not in name
    )


def check_step_data(step: WizardStep, data: Any) -> Any:
    """Reject step data whose shape the completeness check or execution cannot read.

    Document steps take a list of document objects, each with a plain
    ``file_name``.  The owner step takes one owner object or a list of
    them.  Parcel and lease steps take a single object.  Returns the data
    to store, with ``None`` on a document step read as an empty list.

    Raises:
        ValidationError: with ``field="data"``.
    """
    if step in DOCUMENT_STEPS:
        docs = [] if data is None else data
        if not isinstance(docs, list):
            raise ValidationError(f"{step.value} expects a list of documents", field="data")
        for doc in docs:
            if not isinstance(doc, dict) or not _is_plain_file_name(doc.get("file_name")):
                raise ValidationError(
                    f"{step.value} entries need a plain file_name", field="data",
                )
            doc_type = doc.get("doc_type")
            if doc_type is not None and not isinstance(doc_type, str):
                raise ValidationError(f"{step.value} doc_type must be text", field="data")
        return docs

    if data is None:
        return None
    if step == WizardStep.OWNER and isinstance(data, list):
        if not all(isinstance(owner, dict) for owner in data):
            raise ValidationError("owner list may only contain owner objects", field="data")
        return data
    if not isinstance(data, dict):
        raise ValidationError(f"{step.value} expects an object", field="data")
    return data


def normalize_owners(owner_data: Any) -> list[dict[str, Any]]:
    """Owner step data may be one owner mapping or a list of them."""
    if not owner_data:
        return []
    if isinstance(owner_data, dict):
        return [owner_data]
    return [owner for owner in owner_data if owner]


def is_lease_tenure(parcel_data: dict[str, Any] | None) -> bool:
    tenure = (parcel_data or {}).get("tenure_type")
    return isinstance(tenure, str) and tenure.strip().upper() == LEASE_TENURE


def find_missing_requirements(
    parcel_data: dict[str, Any] | None,
    parcel_docs: list[Any] | None,
    owner_data: Any,
    owner_docs: list[Any] | None,
    lease_data: dict[str, Any] | None,
    lease_docs: list[Any] | None,
) -> list[str]:
    """Return the human-readable requirements a session still lacks.

    Owner documents are only required when at least one owner is new (has
    no ``owner_id``).  Lease requirements apply only to LEASE tenure.
    """
    missing: list[str] = []
    if not parcel_data:
        missing.append(PARCEL_INFORMATION)
    if not parcel_docs:
        missing.append(PARCEL_DOCUMENTS)

    owners = normalize_owners(owner_data)
    if not owners:
        missing.append(OWNER_INFORMATION)
    has_new_owner = any(not owner.get("owner_id") for owner in owners)
    if has_new_owner and not owner_docs:
        missing.append(OWNER_DOCUMENTS)

    if is_lease_tenure(parcel_data):
        if not lease_data:
            missing.append(LEASE_INFORMATION)
        if not lease_docs:
            missing.append(LEASE_DOCUMENTS)
    return missing


@dataclass(frozen=True)
class WizardValidation:
    valid: bool
    missing: tuple[str, ...] = ()


@dataclass(frozen=True)
class DocumentRef:
    """A stored document as recorded in a session's docs slot."""

    file_name: str
    doc_type: str
    location: str
    size_bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "doc_type": self.doc_type,
            "location": self.location,
            "size_bytes": self.size_bytes,
        }


@dataclass(frozen=True)
class WizardSession:
    """Immutable snapshot of a wizard session."""

    id: UUID
    user_id: UUID
    user_role: str
    status: WizardStatus
    current_step: str | None
    sub_city_id: UUID | None = None
    parcel_data: dict[str, Any] | None = None
    parcel_docs: tuple[dict[str, Any], ...] = ()
    owner_data: Any = None
    owner_docs: tuple[dict[str, Any], ...] = ()
    lease_data: dict[str, Any] | None = None
    lease_docs: tuple[dict[str, Any], ...] = ()
    approval_request_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    expires_at: datetime | None = None
    submitted_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES
