"""
Audit sink (``landreg_kernel.services.audit_sink``).

Responsibility:
    Records an audit trail entry for every registry mutation and workflow
    transition.  Auditing is best-effort: a failure to write an entry is
    logged and never aborts the business operation that triggered it.

Architecture position:
    Kernel > Services.  Used by the dispatcher, the approval engine and the
    wizard orchestrator.

Invariants enforced:
    - The entry is written inside a SAVEPOINT of the caller's transaction,
      so a failed insert rolls back only itself.
    - ``record`` never raises.

Failure modes:
    - Any database or serialization error -> logged as
      ``audit_record_failed`` and swallowed.
"""

from __future__ import annotations

from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from landreg_kernel.domain.clock import Clock, SystemClock
from landreg_kernel.domain.payloads import to_jsonable
from landreg_kernel.logging_config import get_logger
from landreg_kernel.models.audit_log import AuditLogModel

logger = get_logger("services.audit_sink")

SYSTEM_SOURCE = "SYSTEM"


class AuditSink(Protocol):
    """Best-effort audit trail writer."""

    def record(
        self,
        session: Session,
        actor_id: UUID,
        action: str,
        entity_type: str,
        entity_id: Any,
        changes: dict[str, Any] | None = None,
        source_address: str = SYSTEM_SOURCE,
    ) -> None:
        ...


class DatabaseAuditSink:
    """Writes ``AuditLogModel`` rows into the caller's transaction."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def record(
        self,
        session: Session,
        actor_id: UUID,
        action: str,
        entity_type: str,
        entity_id: Any,
        changes: dict[str, Any] | None = None,
        source_address: str = SYSTEM_SOURCE,
    ) -> None:
        try:
            with session.begin_nested():
                session.add(
                    AuditLogModel(
                        actor_id=actor_id,
                        action=action,
                        entity_type=entity_type,
                        entity_id=str(entity_id),
                        changes=to_jsonable(changes or {}),
                        source_address=source_address,
                        created_at=self._clock.now(),
                    )
                )
        except (SQLAlchemyError, TypeError, ValueError):
            logger.warning(
                "audit_record_failed",
                extra={
                    "action": action,
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                },
                exc_info=True,
            )
