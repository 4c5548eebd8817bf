"""
Module: landreg_kernel.models.approval
Responsibility: ORM persistence for approval requests and their append-only
    decision log.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Valid status values: DB check constraint limits status to
      PENDING / APPROVED / REJECTED.
    - Single pending request: a partial unique index allows at most one
      PENDING, non-deleted row per (entity_type, entity_id, action_type).
      This index is the authoritative guard; the service-level lookup is
      the fast path that yields a friendly error.
    - Append-only log: ApprovalLogModel rows reject UPDATE and DELETE.

Failure modes:
    - IntegrityError on a second pending request for the same triple.
    - ImmutabilityViolationError on log UPDATE/DELETE.

Audit relevance:
    The log is the maker-checker trail: who created, approved or rejected
    each request, with the status before and after.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from landreg_kernel.db.base import Base, UUIDString
from landreg_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from landreg_kernel.domain.approval import ApprovalLogEntry, ApprovalRequest

_PENDING_PREDICATE = "status = 'PENDING' AND is_deleted = false"


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        Status moves PENDING -> APPROVED or PENDING -> REJECTED exactly once.
        ``rejection_reason`` is set only on REJECTED.

    Guarantees:
        - No duplicate pending requests per (entity_type, entity_id,
          action_type).
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ck_approval_requests_valid_status",
        ),
        Index(
            "ix_approval_requests_pending_unique",
            "entity_type", "entity_id", "action_type",
            unique=True,
            postgresql_where=text(_PENDING_PREDICATE),
            sqlite_where=text(_PENDING_PREDICATE),
        ),
        Index(
            "ix_approval_requests_queue",
            "approver_role", "status", "sub_city_id", "created_at",
        ),
        Index("ix_approval_requests_maker", "maker_id", "status"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    request_data: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="PENDING",
    )
    maker_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    maker_role: Mapped[str] = mapped_column(String(50), nullable=False)
    approver_role: Mapped[str] = mapped_column(String(50), nullable=False)
    approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    sub_city_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    rejected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    logs: Mapped[list["ApprovalLogModel"]] = relationship(
        "ApprovalLogModel",
        back_populates="request",
        order_by="ApprovalLogModel.sequence",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.id} "
            f"{self.entity_type}/{self.action_type} status={self.status}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from landreg_kernel.domain.approval import (
            ActionType,
            ApprovalRequest as ApprovalRequestDTO,
            ApprovalStatus,
            EntityType,
        )

        return ApprovalRequestDTO(
            id=self.id,
            entity_type=EntityType(self.entity_type),
            entity_id=self.entity_id,
            action_type=ActionType(self.action_type),
            request_data=dict(self.request_data or {}),
            status=ApprovalStatus(self.status),
            maker_id=self.maker_id,
            maker_role=self.maker_role,
            approver_role=self.approver_role,
            sub_city_id=self.sub_city_id,
            comments=self.comments,
            rejection_reason=self.rejection_reason,
            approver_id=self.approver_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            approved_at=self.approved_at,
            rejected_at=self.rejected_at,
            logs=tuple(log.to_dto() for log in self.logs),
        )


class ApprovalLogModel(Base):
    """Persistent approval log entry. Append-only.

    Contract:
        Entries are immutable once created -- no UPDATE, no DELETE.
        ``sequence`` orders entries of one request.
    """

    __tablename__ = "approval_logs"

    __table_args__ = (
        Index("ix_approval_logs_request_id", "request_id", "sequence"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    performed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    performed_by_role: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    request: Mapped["ApprovalRequestModel"] = relationship(
        "ApprovalRequestModel",
        back_populates="logs",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalLog {self.id} request={self.request_id} "
            f"{self.previous_status}->{self.new_status}>"
        )

    def to_dto(self) -> ApprovalLogEntry:
        from landreg_kernel.domain.approval import (
            ApprovalLogAction,
            ApprovalLogEntry as ApprovalLogEntryDTO,
            ApprovalStatus,
        )

        return ApprovalLogEntryDTO(
            id=self.id,
            request_id=self.request_id,
            action=ApprovalLogAction(self.action),
            performed_by=self.performed_by,
            performed_by_role=self.performed_by_role,
            previous_status=(
                ApprovalStatus(self.previous_status)
                if self.previous_status is not None else None
            ),
            new_status=ApprovalStatus(self.new_status),
            comments=self.comments,
            created_at=self.created_at,
        )


# =============================================================================
# ORM-Level Immutability for the Log (Append-Only)
# =============================================================================


@event.listens_for(ApprovalLogModel, "before_update")
def prevent_log_update(mapper, connection, target):
    """Prevent updates to approval log entries."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalLog",
        entity_id=str(target.id),
        reason="Approval log entries are immutable -- cannot modify",
    )


@event.listens_for(ApprovalLogModel, "before_delete")
def prevent_log_delete(mapper, connection, target):
    """Prevent deletion of approval log entries."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalLog",
        entity_id=str(target.id),
        reason="Approval log entries are immutable -- cannot delete",
    )
