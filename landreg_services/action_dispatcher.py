"""
landreg_services.action_dispatcher -- Executes approved mutations.

Responsibility:
    Given an (entity type, action type) pair and its stored payload,
    selects the handler from a static dispatch table, parses the payload
    into its typed variant, and runs the handler inside a SAVEPOINT of the
    caller's transaction.  Any failure is reported as one
    ``ExecutionError`` wrapping the cause.

Architecture position:
    Services -- called by ``ApprovalWorkflowEngine`` on approve and on
    self-approval, and by ``WizardSessionOrchestrator`` for self-approving
    wizard submissions.  Always receives an open session.

Invariants enforced:
    - One table, no conditional dispatch: a missing key is the single
      default case and raises ``UnsupportedActionError``.
    - All-or-nothing: a failing handler rolls back its SAVEPOINT, so no
      partially created entity survives.
    - The dispatcher never writes wizard session status.  It reports the
      status to apply through ``ExecutionResult.session_status`` or
      ``ExecutionError.session_status``.

Failure modes:
    - UnsupportedActionError: no handler for the pair (raised directly).
    - ExecutionError: payload invalid, business rule violated, database
      error, or any other exception raised by a handler; ``cause`` holds
      the original exception.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from landreg_kernel.domain.approval import ActionType, EntityType, ExecutionResult
from landreg_kernel.domain.clock import Clock, SystemClock
from landreg_kernel.domain.payloads import parse_payload
from landreg_kernel.domain.wizard import WizardStatus
from landreg_kernel.exceptions import ExecutionError, UnsupportedActionError
from landreg_kernel.logging_config import get_logger
from landreg_kernel.services.audit_sink import AuditSink
from landreg_modules.lease.service import LeaseBillingGenerator
from landreg_services import action_handlers as handlers
from landreg_services.action_handlers import ActionHandler, HandlerContext

logger = get_logger("services.action_dispatcher")


DISPATCH_TABLE: dict[tuple[EntityType, ActionType], ActionHandler] = {
    (EntityType.OWNER, ActionType.CREATE): handlers.create_owner,
    (EntityType.LAND_PARCEL, ActionType.TRANSFER): handlers.transfer_parcel,
    (EntityType.LAND_PARCEL, ActionType.ADD_OWNER): handlers.add_parcel_owner,
    (EntityType.LAND_PARCEL, ActionType.SUBDIVIDE): handlers.subdivide_parcel,
    (EntityType.LAND_PARCEL, ActionType.DELETE): handlers.delete_parcel,
    (EntityType.LEASE, ActionType.CREATE): handlers.create_lease,
    (EntityType.LEASE, ActionType.UPDATE): handlers.update_lease,
    (EntityType.ENCUMBRANCE, ActionType.CREATE): handlers.create_encumbrance,
    (EntityType.WIZARD_SESSION, ActionType.CREATE): handlers.execute_wizard,
}


def _coerce(entity_type: Any, action_type: Any) -> tuple[EntityType, ActionType]:
    try:
        return EntityType(entity_type), ActionType(action_type)
    except ValueError as exc:
        raise UnsupportedActionError(
            getattr(entity_type, "value", str(entity_type)),
            getattr(action_type, "value", str(action_type)),
        ) from exc


class ActionExecutionDispatcher:
    """
    Maps (entity type, action type) to the handler that applies it.

    Contract:
        ``execute`` either returns an ``ExecutionResult`` with every change
        flushed into the caller's transaction, or raises with the
        transaction exactly as it was before the call.

    Guarantees:
        - Handlers are looked up, never chosen by branching.
        - Wizard failures carry ``session_id`` and ``session_status`` FAILED
          so the caller can record the outcome.

    Non-goals:
        - Does NOT commit, retry, or move documents.
        - Does NOT check roles; the approval engine has already decided.
    """

    def __init__(
        self,
        audit: AuditSink,
        billing: LeaseBillingGenerator | None = None,
        clock: Clock | None = None,
        handlers: Mapping[tuple[EntityType, ActionType], ActionHandler] | None = None,
    ) -> None:
        self._audit = audit
        self._billing = billing or LeaseBillingGenerator()
        self._clock = clock or SystemClock()
        self._handlers = dict(DISPATCH_TABLE if handlers is None else handlers)

    def supports(self, entity_type: EntityType | str, action_type: ActionType | str) -> bool:
        try:
            key = _coerce(entity_type, action_type)
        except UnsupportedActionError:
            return False
        return key in self._handlers

    def ensure_supported(
        self,
        entity_type: EntityType | str,
        action_type: ActionType | str,
    ) -> tuple[EntityType, ActionType]:
        key = _coerce(entity_type, action_type)
        if key not in self._handlers:
            raise UnsupportedActionError(key[0].value, key[1].value)
        return key

    def execute(
        self,
        session: Session,
        entity_type: EntityType | str,
        action_type: ActionType | str,
        entity_id: str,
        payload: Mapping[str, Any] | Any,
        *,
        actor_id: UUID,
        request_id: UUID | None = None,
    ) -> ExecutionResult:
        """Apply one mutation.

        Preconditions:
            ``session`` has an open transaction.

        Raises:
            UnsupportedActionError: no handler for the pair.
            ExecutionError: anything went wrong inside the handler.
        """
        entity, action = self.ensure_supported(entity_type, action_type)
        handler = self._handlers[(entity, action)]
        context = HandlerContext(
            session=session,
            actor_id=actor_id,
            entity_id=str(entity_id),
            clock=self._clock,
            audit=self._audit,
            billing=self._billing,
            request_id=request_id,
        )

        try:
            with session.begin_nested():
                typed = parse_payload(entity, action, payload)
                result = handler(context, typed)
        except Exception as exc:
            session_id = None
            session_status = None
            if entity == EntityType.WIZARD_SESSION:
                session_id = str(entity_id)
                session_status = WizardStatus.FAILED.value
            logger.warning(
                "action_execution_failed",
                extra={
                    "entity_type": entity.value,
                    "action_type": action.value,
                    "entity_id": str(entity_id),
                    "error_code": getattr(exc, "code", type(exc).__name__),
                },
            )
            raise ExecutionError(
                entity.value,
                action.value,
                exc,
                session_id=session_id,
                session_status=session_status,
            ) from exc

        logger.info(
            "action_executed",
            extra={
                "entity_type": entity.value,
                "action_type": action.value,
                "entity_id": result.entity_id,
                "request_id": str(request_id) if request_id else None,
            },
        )
        return result
