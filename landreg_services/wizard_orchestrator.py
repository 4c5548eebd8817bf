"""
landreg_services.wizard_orchestrator -- Multi-step registration drafts.

Responsibility:
    Owns the lifecycle of a wizard session: creation with an expiry, step
    saves, document attachment, the completeness check, submission into
    the approval workflow, and the sweep that removes abandoned drafts
    together with their temporary files.

Architecture position:
    Services -- composes the approval engine (for submission), the
    dispatcher (for self-approving submitters), the document lifecycle
    collaborator and the audit sink, all over the shared
    ``TransactionManager``.

Invariants enforced:
    - Step data may only change while the session is DRAFT or REJECTED.
      Editing a REJECTED session reopens it as DRAFT and clears the stale
      approval request id.
    - A session is submitted only when ``validate_session`` reports it
      complete.
    - Submission and the resulting approval request (or self-approved
      registration) commit together.

Failure modes:
    - WizardSessionNotFoundError, ValidationError (unknown step, incomplete
      session, bad document step), InvalidStateError (session not
      editable or not submittable), ExecutionFailedError (self-approved
      registration failed; the session is marked FAILED afterwards).
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from landreg_kernel.db.transaction import TransactionManager
from landreg_kernel.domain.approval import ActionType, ApprovalOutcome, EntityType
from landreg_kernel.domain.clock import Clock, SystemClock
from landreg_kernel.domain.payloads import to_jsonable
from landreg_kernel.domain.wizard import (
    DOCUMENT_STEPS,
    EDITABLE_STATUSES,
    STEP_SLOTS,
    SUBMITTABLE_STATUSES,
    DocumentRef,
    WizardSession,
    WizardStatus,
    WizardStep,
    WizardValidation,
    check_step_data,
    find_missing_requirements,
    parse_step,
)
from landreg_kernel.exceptions import (
    ExecutionError,
    ExecutionFailedError,
    InvalidStateError,
    ValidationError,
    WizardSessionNotFoundError,
)
from landreg_kernel.logging_config import LogContext, get_logger
from landreg_kernel.models.wizard_session import WizardSessionModel
from landreg_kernel.services.audit_sink import AuditSink
from landreg_services.action_dispatcher import ActionExecutionDispatcher
from landreg_services.approval_workflow import ApprovalWorkflowEngine
from landreg_services.document_storage import DocumentLifecycle

logger = get_logger("services.wizard_orchestrator")

DEFAULT_SESSION_TTL_HOURS = 24


def _missing_for(model: WizardSessionModel) -> list[str]:
    return find_missing_requirements(
        model.parcel_data,
        model.parcel_docs,
        model.owner_data,
        model.owner_docs,
        model.lease_data,
        model.lease_docs,
    )


class WizardSessionOrchestrator:
    """
    Drives wizard sessions from first draft to submitted registration.

    Contract:
        Every mutating operation returns the session as it was committed
        (``WizardSession`` snapshot) or raises with nothing persisted.

    Guarantees:
        - Step slots are replaced wholesale on each save.
        - ``sweep_expired_sessions`` only removes DRAFT sessions past their
          expiry and can be run repeatedly.

    Non-goals:
        - Does NOT check that the caller owns the session; ownership is
          enforced by the adapter that resolves the session id.
    """

    def __init__(
        self,
        transactions: TransactionManager,
        engine: ApprovalWorkflowEngine,
        dispatcher: ActionExecutionDispatcher,
        documents: DocumentLifecycle,
        audit: AuditSink,
        clock: Clock | None = None,
        session_ttl_hours: int = DEFAULT_SESSION_TTL_HOURS,
    ) -> None:
        self._transactions = transactions
        self._engine = engine
        self._dispatcher = dispatcher
        self._documents = documents
        self._audit = audit
        self._clock = clock or SystemClock()
        self._ttl = timedelta(hours=session_ttl_hours)

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def create_session(
        self,
        user_id: UUID,
        user_role: str,
        sub_city_id: UUID | None = None,
    ) -> WizardSession:
        now = self._clock.now()
        with self._transactions.transaction() as session:
            model = WizardSessionModel(
                user_id=user_id,
                user_role=user_role,
                sub_city_id=sub_city_id,
                status=WizardStatus.DRAFT.value,
                current_step=WizardStep.PARCEL.value,
                parcel_docs=[],
                owner_docs=[],
                lease_docs=[],
                created_at=now,
                updated_at=now,
                expires_at=now + self._ttl,
            )
            session.add(model)
            session.flush()
            self._audit.record(
                session,
                user_id,
                "CREATE",
                "wizard_sessions",
                model.id,
                {"user_role": user_role, "sub_city_id": sub_city_id},
            )
            logger.info(
                "wizard_session_created",
                extra={"session_id": str(model.id), "user_role": user_role},
            )
            return model.to_dto()

    def get_session(self, session_id: UUID) -> WizardSession:
        with self._transactions.transaction() as session:
            return self._load(session, session_id).to_dto()

    def get_user_draft_session(self, user_id: UUID) -> WizardSession | None:
        """The user's most recent DRAFT session that has not expired."""
        with self._transactions.transaction() as session:
            model = session.execute(
                select(WizardSessionModel)
                .where(
                    WizardSessionModel.user_id == user_id,
                    WizardSessionModel.status == WizardStatus.DRAFT.value,
                    WizardSessionModel.expires_at > self._clock.now(),
                )
                .order_by(WizardSessionModel.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return model.to_dto() if model is not None else None

    def list_user_sessions(
        self,
        user_id: UUID,
        status: WizardStatus | None = None,
    ) -> list[WizardSession]:
        with self._transactions.transaction() as session:
            stmt = select(WizardSessionModel).where(WizardSessionModel.user_id == user_id)
            if status is not None:
                stmt = stmt.where(WizardSessionModel.status == WizardStatus(status).value)
            stmt = stmt.order_by(WizardSessionModel.created_at.desc())
            return [m.to_dto() for m in session.execute(stmt).scalars()]

    # =========================================================================
    # Editing
    # =========================================================================

    def save_step(self, session_id: UUID, step: str, data: Any) -> WizardSession:
        """Replace the slot behind ``step`` with ``data``."""
        parsed = parse_step(step)
        if parsed is None:
            raise ValidationError(f"Unknown wizard step: {step}", field="step")
        checked = check_step_data(parsed, data)
        if parsed in DOCUMENT_STEPS:
            value: Any = to_jsonable(checked)
        else:
            value = to_jsonable(checked) if checked else None

        with self._transactions.transaction() as session:
            model = self._load(session, session_id, for_update=True)
            self._open_for_edit(model, "save_step")
            setattr(model, STEP_SLOTS[parsed], value)
            model.current_step = parsed.value
            session.flush()
            logger.info(
                "wizard_step_saved",
                extra={"session_id": str(model.id), "step": parsed.value},
            )
            return model.to_dto()

    def attach_document(
        self,
        session_id: UUID,
        step: str,
        file_name: str,
        content: bytes,
        doc_type: str,
    ) -> DocumentRef:
        """Store an upload temporarily and list it in the step's docs slot.

        A document with the same file name replaces the earlier one.
        """
        parsed = self._document_step(step)
        with self._transactions.transaction() as session:
            model = self._load(session, session_id, for_update=True)
            self._open_for_edit(model, "attach_document")
            ref = self._documents.store_temporary(
                model.id, parsed.value, file_name, content, doc_type,
            )
            slot = STEP_SLOTS[parsed]
            kept = [
                doc for doc in getattr(model, slot) or []
                if doc.get("file_name") != ref.file_name
            ]
            setattr(model, slot, kept + [ref.to_dict()])
            model.current_step = parsed.value
            session.flush()
            return ref

    def remove_document(self, session_id: UUID, step: str, file_name: str) -> WizardSession:
        parsed = self._document_step(step)
        with self._transactions.transaction() as session:
            model = self._load(session, session_id, for_update=True)
            self._open_for_edit(model, "remove_document")
            slot = STEP_SLOTS[parsed]
            setattr(
                model,
                slot,
                [doc for doc in getattr(model, slot) or [] if doc.get("file_name") != file_name],
            )
            session.flush()
            self._documents.delete_temporary(model.id, parsed.value, file_name)
            return model.to_dto()

    def validate_session(self, session_id: UUID) -> WizardValidation:
        with self._transactions.transaction() as session:
            missing = _missing_for(self._load(session, session_id))
        return WizardValidation(valid=not missing, missing=tuple(missing))

    # =========================================================================
    # Submission
    # =========================================================================

    def submit_for_approval(self, session_id: UUID) -> ApprovalOutcome:
        """Submit a complete session.

        Self-approving submitters have their registration executed at once
        and the session becomes APPROVED.  Everyone else gets a PENDING
        approval request and the session waits in PENDING_APPROVAL.
        """
        self_approved = False
        with LogContext.bind(session_id=str(session_id)):
            try:
                with self._transactions.transaction() as session:
                    model = self._load(session, session_id, for_update=True)
                    if WizardStatus(model.status) not in SUBMITTABLE_STATUSES:
                        raise InvalidStateError(
                            "WizardSession", model.id, model.status, "submit",
                        )
                    missing = _missing_for(model)
                    if missing:
                        raise ValidationError(
                            "Wizard session is incomplete: " + ", ".join(missing),
                            missing=missing,
                        )

                    if self._engine.hierarchy.is_self_approving(
                        EntityType.WIZARD_SESSION, model.user_role,
                    ):
                        outcome = self._execute_own_submission(session, model)
                        self_approved = True
                    else:
                        outcome = self._engine.create_approval_request(
                            EntityType.WIZARD_SESSION,
                            str(model.id),
                            ActionType.CREATE,
                            {"session_id": str(model.id)},
                            maker_id=model.user_id,
                            maker_role=model.user_role,
                            sub_city_id=model.sub_city_id,
                        )
                        now = self._clock.now()
                        model.status = WizardStatus.PENDING_APPROVAL.value
                        model.approval_request_id = outcome.request.id
                        model.submitted_at = now
                        model.updated_at = now
                    session.flush()
            except ExecutionFailedError as exc:
                self._engine.mark_session_failed(exc)
                raise

        logger.info(
            "wizard_session_submitted",
            extra={"session_id": str(session_id), "self_approved": self_approved},
        )
        if self_approved:
            self._engine.promote_documents(EntityType.WIZARD_SESSION, str(session_id))
        return outcome

    def _execute_own_submission(
        self,
        session: Session,
        model: WizardSessionModel,
    ) -> ApprovalOutcome:
        try:
            result = self._dispatcher.execute(
                session,
                EntityType.WIZARD_SESSION,
                ActionType.CREATE,
                str(model.id),
                {
                    "session_id": str(model.id),
                    "sub_city_id": str(model.sub_city_id) if model.sub_city_id else None,
                    "maker_id": str(model.user_id),
                    "maker_role": model.user_role,
                },
                actor_id=model.user_id,
            )
        except ExecutionError as exc:
            raise ExecutionFailedError(None, exc) from exc

        now = self._clock.now()
        model.status = WizardStatus.APPROVED.value
        model.approval_request_id = None
        model.submitted_at = now
        model.completed_at = now
        model.updated_at = now
        self._audit.record(
            session,
            model.user_id,
            "SELF_APPROVE",
            "wizard_sessions",
            model.id,
            {"user_role": model.user_role, "execution": result.summary},
        )
        return ApprovalOutcome(
            requires_approval=False,
            approver_role=model.user_role,
            immediate_result=result,
        )

    # =========================================================================
    # Expiry sweep
    # =========================================================================

    def sweep_expired_sessions(self) -> int:
        """Delete expired DRAFT sessions and their temporary files.

        Each session row is deleted in its own transaction.  Its files are
        removed after that commit; files that cannot be removed are logged
        as orphaned.  Returns the number of sessions removed.
        """
        now = self._clock.now()
        with self._transactions.transaction() as session:
            expired = list(
                session.execute(
                    select(WizardSessionModel.id).where(
                        WizardSessionModel.status == WizardStatus.DRAFT.value,
                        WizardSessionModel.expires_at < now,
                    )
                ).scalars()
            )

        removed = 0
        for session_id in expired:
            try:
                with self._transactions.transaction() as session:
                    model = session.get(WizardSessionModel, session_id)
                    if model is None or model.status != WizardStatus.DRAFT.value:
                        continue
                    session.delete(model)
                    session.flush()
            except SQLAlchemyError:
                logger.warning(
                    "wizard_session_sweep_failed",
                    extra={"session_id": str(session_id)},
                    exc_info=True,
                )
                continue

            removed += 1
            try:
                self._documents.cleanup_session(session_id)
            except OSError:
                logger.warning(
                    "wizard_session_files_orphaned",
                    extra={"session_id": str(session_id)},
                    exc_info=True,
                )

        logger.info(
            "wizard_sessions_swept",
            extra={"expired": len(expired), "removed": removed},
        )
        return removed

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _load(
        session: Session,
        session_id: UUID,
        *,
        for_update: bool = False,
    ) -> WizardSessionModel:
        model = session.get(WizardSessionModel, session_id, with_for_update=for_update)
        if model is None:
            raise WizardSessionNotFoundError(session_id)
        return model

    def _open_for_edit(self, model: WizardSessionModel, operation: str) -> None:
        if WizardStatus(model.status) not in EDITABLE_STATUSES:
            raise InvalidStateError("WizardSession", model.id, model.status, operation)
        if model.status == WizardStatus.REJECTED.value:
            model.status = WizardStatus.DRAFT.value
            model.approval_request_id = None
            logger.info("wizard_session_reopened", extra={"session_id": str(model.id)})
        model.updated_at = self._clock.now()

    @staticmethod
    def _document_step(step: str) -> WizardStep:
        parsed = parse_step(step)
        if parsed not in DOCUMENT_STEPS:
            raise ValidationError(f"{step} is not a document step", field="step")
        return parsed
