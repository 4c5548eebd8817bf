"""
Module: landreg_kernel.models.document_promotion
Responsibility: Outbox rows describing temporary wizard documents that must
    be moved to permanent storage once the registration that references
    them has committed.

Architecture position: Kernel > Models.

Invariants enforced:
    - Rows are written inside the business transaction, so a rolled-back
      registration leaves no promotion behind.
    - status is PENDING, PROMOTED or FAILED.

Audit relevance:
    FAILED rows, with ``last_error`` and ``attempts``, are the
    reconciliation list for documents whose move did not complete.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from landreg_kernel.db.base import Base, UUIDString


class PromotionStatus:
    PENDING = "PENDING"
    PROMOTED = "PROMOTED"
    FAILED = "FAILED"


class DocumentPromotionModel(Base):
    """A pending move of one temporary document to its owning entity."""

    __tablename__ = "document_promotions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'PROMOTED', 'FAILED')",
            name="ck_document_promotions_valid_status",
        ),
        Index("ix_document_promotions_status", "status", "created_at"),
        Index("ix_document_promotions_session", "session_id"),
    )

    session_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    step: Mapped[str] = mapped_column(String(20), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    doc_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PromotionStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    permanent_location: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    promoted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<DocumentPromotion {self.file_name} -> "
            f"{self.target_entity_type}:{self.target_entity_id} {self.status}>"
        )
