"""
Module: landreg_kernel.models.audit_log
Responsibility: Append-only audit trail rows written by the database audit
    sink for every registry mutation and workflow transition.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Audit rows are never updated or deleted (ORM listeners).

Failure modes:
    - ImmutabilityViolationError on UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from landreg_kernel.db.base import Base, UUIDString
from landreg_kernel.exceptions import ImmutabilityViolationError


class AuditLogModel(Base):
    """One audit trail entry."""

    __tablename__ = "audit_logs"

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        Index("ix_audit_logs_actor", "actor_id", "created_at"),
    )

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    changes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    source_address: Mapped[str] = mapped_column(
        String(64), nullable=False, default="SYSTEM",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.entity_type}:{self.entity_id}>"


@event.listens_for(AuditLogModel, "before_update")
def prevent_audit_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditLog",
        entity_id=str(target.id),
        reason="Audit log entries are immutable -- cannot modify",
    )


@event.listens_for(AuditLogModel, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditLog",
        entity_id=str(target.id),
        reason="Audit log entries are immutable -- cannot delete",
    )
