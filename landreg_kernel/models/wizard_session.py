"""
Module: landreg_kernel.models.wizard_session
Responsibility: ORM persistence for multi-step registration drafts.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - status is one of the WizardStatus values (check constraint).
    - Step slots are JSON and are always REASSIGNED, never mutated in
      place, so the unit of work sees every change.

Failure modes:
    - None beyond the check constraint.

Audit relevance:
    approval_request_id links a submitted session to its maker-checker
    request; submitted_at / completed_at bound the approval window.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from landreg_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from landreg_kernel.domain.wizard import WizardSession


class WizardSessionModel(Base):
    """A draft composite registration assembled step by step."""

    __tablename__ = "wizard_sessions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'PENDING_APPROVAL', 'APPROVED', 'REJECTED', "
            "'FAILED', 'MERGED')",
            name="ck_wizard_sessions_valid_status",
        ),
        Index("ix_wizard_sessions_user_status", "user_id", "status"),
        Index("ix_wizard_sessions_expiry", "status", "expires_at"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    user_role: Mapped[str] = mapped_column(String(50), nullable=False)
    sub_city_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    current_step: Mapped[str | None] = mapped_column(String(20), nullable=True)

    parcel_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    parcel_docs: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    owner_data: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    owner_docs: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    lease_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    lease_docs: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)

    approval_request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return f"<WizardSession {self.id} status={self.status} step={self.current_step}>"

    def to_dto(self) -> WizardSession:
        from landreg_kernel.domain.wizard import WizardSession as WizardSessionDTO
        from landreg_kernel.domain.wizard import WizardStatus

        return WizardSessionDTO(
            id=self.id,
            user_id=self.user_id,
            user_role=self.user_role,
            status=WizardStatus(self.status),
            current_step=self.current_step,
            sub_city_id=self.sub_city_id,
            parcel_data=self.parcel_data,
            parcel_docs=tuple(self.parcel_docs or ()),
            owner_data=self.owner_data,
            owner_docs=tuple(self.owner_docs or ()),
            lease_data=self.lease_data,
            lease_docs=tuple(self.lease_docs or ()),
            approval_request_id=self.approval_request_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            expires_at=self.expires_at,
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
        )
