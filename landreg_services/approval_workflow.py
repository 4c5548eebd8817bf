"""
landreg_services.approval_workflow -- Maker-checker approval engine.

Responsibility:
    Gates every state-changing registry operation behind role-based
    approval.  A maker's request is either executed immediately (when the
    maker's role is its own approver role) or stored as a PENDING approval
    request that an approver holding the resolved role later approves or
    rejects.  Approval runs the mutation through the dispatcher in the same
    transaction as the status change.

Architecture position:
    Services -- composes ``ApprovalService`` (kernel persistence),
    ``ActionExecutionDispatcher`` and the audit sink.  All work runs in
    transactions obtained from the shared ``TransactionManager``; when
    called from inside another component's transaction the engine joins it.

Invariants enforced:
    - PENDING -> APPROVED | REJECTED, both terminal (``ApprovalService``).
    - At most one PENDING request per (entity_type, entity_id, action_type).
    - Approve/reject require ``approver_role == request.approver_role``.
    - A failed execution leaves the request PENDING and the registry
      untouched; the linked wizard session is marked FAILED afterwards in
      a separate transaction.
    - Documents are promoted only after the registering transaction has
      committed.

Failure modes:
    - ApprovalRequestNotFoundError, InvalidStateError, ForbiddenError,
      DuplicateRequestError, ValidationError (blank rejection reason,
      malformed payload), UnsupportedActionError, ExecutionFailedError.

Audit relevance:
    Creation, approval and rejection each write an audit entry; rejecting
    a wizard request writes a second entry for the session.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from landreg_kernel.db.transaction import TransactionManager
from landreg_kernel.domain.approval import (
    ActionType,
    ApprovalDecisionResult,
    ApprovalHierarchy,
    ApprovalOutcome,
    ApprovalRequest,
    ApprovalStatus,
    EntityType,
    ExecutionResult,
)
from landreg_kernel.domain.clock import Clock, SystemClock
from landreg_kernel.domain.payloads import parse_payload
from landreg_kernel.domain.wizard import WizardStatus
from landreg_kernel.exceptions import (
    ExecutionError,
    ExecutionFailedError,
    ForbiddenError,
    ValidationError,
)
from landreg_kernel.logging_config import LogContext, get_logger
from landreg_kernel.models.approval import ApprovalRequestModel
from landreg_kernel.models.wizard_session import WizardSessionModel
from landreg_kernel.services.approval_service import ApprovalService
from landreg_kernel.services.audit_sink import AuditSink
from landreg_services.action_dispatcher import ActionExecutionDispatcher
from landreg_services.document_outbox import DocumentPromotionRelay

logger = get_logger("services.approval_workflow")


class ApprovalWorkflowEngine:
    """
    Maker-checker state machine over approval requests.

    Contract:
        ``create_approval_request`` returns an ``ApprovalOutcome``:
        ``requires_approval`` False with ``immediate_result`` for a
        self-approving maker, otherwise True with the stored request.
        ``approve`` returns the updated request with the execution result.
        ``reject`` returns the updated request.

    Guarantees:
        - Every public operation is atomic: it commits completely or
          leaves persisted state as it was.
        - The dispatcher runs at most once per request: a second approve
          fails the PENDING check before dispatching.

    Non-goals:
        - Does NOT authenticate the caller; actor ids and roles are
          trusted input.
        - Does NOT retry failed executions.
    """

    def __init__(
        self,
        transactions: TransactionManager,
        dispatcher: ActionExecutionDispatcher,
        audit: AuditSink,
        hierarchy: ApprovalHierarchy,
        clock: Clock | None = None,
        promotion_relay: DocumentPromotionRelay | None = None,
    ) -> None:
        self._transactions = transactions
        self._dispatcher = dispatcher
        self._audit = audit
        self._hierarchy = hierarchy
        self._clock = clock or SystemClock()
        self._promotion_relay = promotion_relay

    @property
    def hierarchy(self) -> ApprovalHierarchy:
        return self._hierarchy

    # =========================================================================
    # Create
    # =========================================================================

    def create_approval_request(
        self,
        entity_type: EntityType | str,
        entity_id: Any,
        action_type: ActionType | str,
        payload: Mapping[str, Any],
        *,
        maker_id: UUID,
        maker_role: str,
        sub_city_id: UUID | None = None,
        comments: str | None = None,
    ) -> ApprovalOutcome:
        """Submit a mutation for approval, or execute it for a self-approving maker.

        Raises:
            UnsupportedActionError: no handler for the pair.
            ValidationError: the payload does not match its schema.
            DuplicateRequestError: a PENDING request exists for the triple.
            ExecutionFailedError: self-approval execution failed.
        """
        entity, action = self._dispatcher.ensure_supported(entity_type, action_type)
        typed = parse_payload(entity, action, payload)
        entity_id = str(entity_id)
        approver_role = self._hierarchy.resolve(entity, maker_role)

        with LogContext.bind(actor_id=str(maker_id)):
            if approver_role == maker_role:
                result = self._execute_immediately(
                    entity, action, entity_id, typed, maker_id, maker_role,
                )
                return ApprovalOutcome(
                    requires_approval=False,
                    approver_role=approver_role,
                    immediate_result=result,
                )

            with self._transactions.transaction() as session:
                service = ApprovalService(session, self._clock)
                model = service.create_request(
                    entity_type=entity,
                    entity_id=entity_id,
                    action_type=action,
                    request_data=typed.to_dict(),
                    maker_id=maker_id,
                    maker_role=maker_role,
                    approver_role=approver_role,
                    sub_city_id=sub_city_id,
                    comments=comments,
                )
                self._audit.record(
                    session,
                    maker_id,
                    "CREATE",
                    "approval_requests",
                    model.id,
                    {
                        "entity_type": entity.value,
                        "entity_id": entity_id,
                        "action_type": action.value,
                        "approver_role": approver_role,
                        "maker_role": maker_role,
                    },
                )
                request = model.to_dto()

        return ApprovalOutcome(
            requires_approval=True,
            approver_role=approver_role,
            request=request,
        )

    def _execute_immediately(
        self,
        entity: EntityType,
        action: ActionType,
        entity_id: str,
        payload: Any,
        maker_id: UUID,
        maker_role: str,
    ) -> ExecutionResult:
        try:
            with self._transactions.transaction() as session:
                try:
                    result = self._dispatcher.execute(
                        session, entity, action, entity_id, payload, actor_id=maker_id,
                    )
                except ExecutionError as exc:
                    raise ExecutionFailedError(None, exc) from exc
                self._audit.record(
                    session,
                    maker_id,
                    "SELF_APPROVE",
                    entity.value,
                    result.entity_id,
                    {
                        "action_type": action.value,
                        "maker_role": maker_role,
                        "execution": result.summary,
                    },
                )
                self._apply_session_status(session, entity, entity_id, result.session_status)
        except ExecutionFailedError as exc:
            self.mark_session_failed(exc)
            raise

        logger.info(
            "approval_self_executed",
            extra={
                "entity_type": entity.value,
                "action_type": action.value,
                "entity_id": result.entity_id,
            },
        )
        self.promote_documents(entity, entity_id)
        return result

    # =========================================================================
    # Decisions
    # =========================================================================

    def approve(
        self,
        request_id: UUID,
        approver_id: UUID,
        approver_role: str,
        comments: str | None = None,
    ) -> ApprovalDecisionResult:
        """Approve a PENDING request and execute its mutation."""
        with LogContext.bind(actor_id=str(approver_id), request_id=str(request_id)):
            try:
                with self._transactions.transaction() as session:
                    service = ApprovalService(session, self._clock)
                    model = self._load_decidable(service, request_id, approver_role, "approve")
                    entity = EntityType(model.entity_type)

                    try:
                        result = self._dispatcher.execute(
                            session,
                            entity,
                            model.action_type,
                            model.entity_id,
                            self._execution_payload(model),
                            actor_id=approver_id,
                            request_id=model.id,
                        )
                    except ExecutionError as exc:
                        raise ExecutionFailedError(model.id, exc) from exc

                    service.mark_approved(model, approver_id, approver_role, comments)
                    self._audit.record(
                        session,
                        approver_id,
                        "APPROVE",
                        "approval_requests",
                        model.id,
                        {
                            "entity_type": model.entity_type,
                            "entity_id": model.entity_id,
                            "action_type": model.action_type,
                            "comments": comments,
                            "execution": result.summary,
                        },
                    )
                    self._apply_session_status(
                        session, entity, model.entity_id, result.session_status,
                    )
                    request = model.to_dto()
            except ExecutionFailedError as exc:
                self.mark_session_failed(exc)
                raise

        self.promote_documents(entity, request.entity_id)
        return ApprovalDecisionResult(request=request, execution=result)

    def reject(
        self,
        request_id: UUID,
        approver_id: UUID,
        approver_role: str,
        reason: str,
    ) -> ApprovalRequest:
        """Reject a PENDING request.  A wizard session goes back to its maker."""
        if reason is None or not reason.strip():
            raise ValidationError("A rejection reason is required", field="reason")
        reason = reason.strip()

        with LogContext.bind(actor_id=str(approver_id), request_id=str(request_id)):
            with self._transactions.transaction() as session:
                service = ApprovalService(session, self._clock)
                model = self._load_decidable(service, request_id, approver_role, "reject")
                service.mark_rejected(model, approver_id, approver_role, reason)
                self._audit.record(
                    session,
                    approver_id,
                    "REJECT",
                    "approval_requests",
                    model.id,
                    {
                        "entity_type": model.entity_type,
                        "entity_id": model.entity_id,
                        "action_type": model.action_type,
                        "reason": reason,
                    },
                )

                if model.entity_type == EntityType.WIZARD_SESSION.value:
                    wizard = session.get(WizardSessionModel, UUID(model.entity_id))
                    if wizard is not None:
                        wizard.status = WizardStatus.REJECTED.value
                        wizard.updated_at = self._clock.now()
                        self._audit.record(
                            session,
                            approver_id,
                            "UPDATE",
                            "wizard_sessions",
                            wizard.id,
                            {
                                "status": WizardStatus.REJECTED.value,
                                "approval_request_id": str(model.id),
                                "reason": reason,
                            },
                        )
                return model.to_dto()

    def _load_decidable(
        self,
        service: ApprovalService,
        request_id: UUID,
        approver_role: str,
        operation: str,
    ) -> ApprovalRequestModel:
        model = service.load_for_decision(request_id)
        service.ensure_pending(model, operation)
        if approver_role != model.approver_role:
            raise ForbiddenError(approver_role, model.approver_role, operation)
        return model

    @staticmethod
    def _execution_payload(model: ApprovalRequestModel) -> dict[str, Any]:
        payload = dict(model.request_data or {})
        if model.entity_type == EntityType.WIZARD_SESSION.value:
            payload.update(
                session_id=model.entity_id,
                sub_city_id=str(model.sub_city_id) if model.sub_city_id else None,
                maker_id=str(model.maker_id),
                maker_role=model.maker_role,
            )
        return payload

    # =========================================================================
    # Wizard session side-effects
    # =========================================================================

    def _apply_session_status(
        self,
        session: Session,
        entity: EntityType,
        entity_id: str,
        status: str | None,
    ) -> None:
        if entity != EntityType.WIZARD_SESSION or status is None:
            return
        wizard = session.get(WizardSessionModel, UUID(entity_id))
        if wizard is None:
            return
        now = self._clock.now()
        wizard.status = status
        wizard.updated_at = now
        wizard.completed_at = now
        session.flush()

    def mark_session_failed(self, error: ExecutionError) -> None:
        """Best-effort: record FAILED on the wizard session in its own transaction."""
        if error.session_id is None or error.session_status is None:
            return
        try:
            with self._transactions.independent() as session:
                wizard = session.get(WizardSessionModel, UUID(error.session_id))
                if wizard is not None:
                    wizard.status = error.session_status
                    wizard.updated_at = self._clock.now()
        except SQLAlchemyError:
            logger.error(
                "wizard_session_failure_not_recorded",
                extra={"session_id": error.session_id},
                exc_info=True,
            )
            return
        logger.warning(
            "wizard_session_execution_failed",
            extra={"session_id": error.session_id, "cause": str(error.cause)},
        )

    def promote_documents(self, entity: EntityType, entity_id: str) -> None:
        # Inside an outer transaction nothing has committed yet; the owner of
        # that transaction (or a later relay run) promotes.
        if (
            self._promotion_relay is None
            or entity != EntityType.WIZARD_SESSION
            or self._transactions.in_transaction()
        ):
            return
        try:
            self._promotion_relay.process_pending(UUID(entity_id))
        except SQLAlchemyError:
            logger.error(
                "document_promotion_relay_failed",
                extra={"session_id": entity_id},
                exc_info=True,
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        with self._transactions.transaction() as session:
            return ApprovalService(session, self._clock).get_request(request_id)

    def list_pending(
        self,
        approver_role: str,
        sub_city_id: UUID | None = None,
    ) -> list[ApprovalRequest]:
        with self._transactions.transaction() as session:
            return ApprovalService(session, self._clock).list_pending(
                approver_role, sub_city_id,
            )

    def list_by_maker(
        self,
        maker_id: UUID,
        status: ApprovalStatus | None = None,
    ) -> list[ApprovalRequest]:
        with self._transactions.transaction() as session:
            return ApprovalService(session, self._clock).list_by_maker(maker_id, status)
