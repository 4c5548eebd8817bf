"""
landreg_kernel.services.approval_service -- Approval request persistence.

Responsibility:
    Persists approval requests and their log: creation with the
    duplicate-pending guard, locked loading for decisions, the APPROVED /
    REJECTED transitions, and the read queries behind approver queues.
    Role resolution, dispatch and wizard side-effects belong to the
    workflow engine in ``landreg_services``.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Lifecycle state machine checked before persisting a transition.
    - Duplicate pending request prevention: fast-path lookup plus the
      partial unique index; an IntegrityError from the index is
      translated to DuplicateRequestError.
    - Every transition appends exactly one log row.

Failure modes:
    - ApprovalRequestNotFoundError if request_id not found.
    - InvalidStateError on a decision against a terminal request.
    - DuplicateRequestError on a second pending request for the triple.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from landreg_kernel.domain.approval import (
    ActionType,
    ApprovalLogAction,
    ApprovalRequest,
    ApprovalStatus,
    EntityType,
    can_transition,
)
from landreg_kernel.domain.clock import Clock
from landreg_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    DuplicateRequestError,
    InvalidStateError,
)
from landreg_kernel.logging_config import get_logger
from landreg_kernel.models.approval import ApprovalLogModel, ApprovalRequestModel
from landreg_kernel.services.base import BaseService

logger = get_logger("services.approval_service")


class ApprovalService(BaseService):
    """Manages approval request rows and the append-only log."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        super().__init__(session, clock)

    # =========================================================================
    # Creation
    # =========================================================================

    def find_pending(
        self,
        entity_type: EntityType,
        entity_id: str,
        action_type: ActionType,
    ) -> ApprovalRequestModel | None:
        return self.session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.entity_type == entity_type.value,
                ApprovalRequestModel.entity_id == entity_id,
                ApprovalRequestModel.action_type == action_type.value,
                ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
                ApprovalRequestModel.is_deleted.is_(False),
            )
        ).scalar_one_or_none()

    def create_request(
        self,
        *,
        entity_type: EntityType,
        entity_id: str,
        action_type: ActionType,
        request_data: dict[str, Any],
        maker_id: UUID,
        maker_role: str,
        approver_role: str,
        sub_city_id: UUID | None = None,
        comments: str | None = None,
    ) -> ApprovalRequestModel:
        """Insert a PENDING request and its CREATE log row."""
        if self.find_pending(entity_type, entity_id, action_type) is not None:
            raise DuplicateRequestError(
                entity_type.value, entity_id, action_type.value,
            )

        now = self.clock.now()
        model = ApprovalRequestModel(
            entity_type=entity_type.value,
            entity_id=entity_id,
            action_type=action_type.value,
            request_data=request_data,
            status=ApprovalStatus.PENDING.value,
            maker_id=maker_id,
            maker_role=maker_role,
            approver_role=approver_role,
            sub_city_id=sub_city_id,
            comments=comments,
            is_deleted=False,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.session.begin_nested():
                self.session.add(model)
                self.session.flush()
        except IntegrityError as exc:
            # Lost the race to a concurrent maker; the partial index fired.
            raise DuplicateRequestError(
                entity_type.value, entity_id, action_type.value,
            ) from exc

        self._append_log(
            model,
            action=ApprovalLogAction.CREATE,
            performed_by=maker_id,
            performed_by_role=maker_role,
            previous_status=None,
            comments=comments,
        )

        logger.info(
            "approval_request_created",
            extra={
                "request_id": str(model.id),
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "action_type": action_type.value,
                "approver_role": approver_role,
            },
        )
        return model

    # =========================================================================
    # Decisions
    # =========================================================================

    def load_for_decision(self, request_id: UUID) -> ApprovalRequestModel:
        """Load and row-lock a request so concurrent decisions serialize."""
        model = self.session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.id == request_id,
                ApprovalRequestModel.is_deleted.is_(False),
            )
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise ApprovalRequestNotFoundError(request_id)
        return model

    def ensure_pending(self, model: ApprovalRequestModel, operation: str) -> None:
        if model.status != ApprovalStatus.PENDING.value:
            raise InvalidStateError(
                "ApprovalRequest", model.id, model.status, operation,
            )

    def mark_approved(
        self,
        model: ApprovalRequestModel,
        approver_id: UUID,
        approver_role: str,
        comments: str | None = None,
    ) -> ApprovalRequestModel:
        return self._transition(
            model,
            ApprovalStatus.APPROVED,
            action=ApprovalLogAction.APPROVE,
            actor_id=approver_id,
            actor_role=approver_role,
            comments=comments,
        )

    def mark_rejected(
        self,
        model: ApprovalRequestModel,
        approver_id: UUID,
        approver_role: str,
        reason: str,
    ) -> ApprovalRequestModel:
        return self._transition(
            model,
            ApprovalStatus.REJECTED,
            action=ApprovalLogAction.REJECT,
            actor_id=approver_id,
            actor_role=approver_role,
            comments=reason,
        )

    def _transition(
        self,
        model: ApprovalRequestModel,
        target: ApprovalStatus,
        *,
        action: ApprovalLogAction,
        actor_id: UUID,
        actor_role: str,
        comments: str | None,
    ) -> ApprovalRequestModel:
        current = ApprovalStatus(model.status)
        if not can_transition(current, target):
            raise InvalidStateError(
                "ApprovalRequest", model.id, current.value, action.value.lower(),
            )

        now = self.clock.now()
        model.status = target.value
        model.approver_id = actor_id
        model.updated_at = now
        if target == ApprovalStatus.APPROVED:
            model.approved_at = now
        else:
            model.rejected_at = now
            model.rejection_reason = comments
        self.session.flush()

        self._append_log(
            model,
            action=action,
            performed_by=actor_id,
            performed_by_role=actor_role,
            previous_status=current,
            comments=comments,
        )
        logger.info(
            f"approval_request_{target.value.lower()}",
            extra={
                "request_id": str(model.id),
                "entity_type": model.entity_type,
                "action_type": model.action_type,
                "actor_role": actor_role,
            },
        )
        return model

    def _append_log(
        self,
        model: ApprovalRequestModel,
        *,
        action: ApprovalLogAction,
        performed_by: UUID,
        performed_by_role: str,
        previous_status: ApprovalStatus | None,
        comments: str | None,
    ) -> ApprovalLogModel:
        log = ApprovalLogModel(
            request_id=model.id,
            sequence=len(model.logs) + 1,
            action=action.value,
            performed_by=performed_by,
            performed_by_role=performed_by_role,
            previous_status=previous_status.value if previous_status else None,
            new_status=model.status,
            comments=comments,
            created_at=self.clock.now(),
        )
        model.logs.append(log)
        self.session.flush()
        return log

    # =========================================================================
    # Queries
    # =========================================================================

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        model = self.session.get(ApprovalRequestModel, request_id)
        if model is None or model.is_deleted:
            raise ApprovalRequestNotFoundError(request_id)
        return model.to_dto()

    def list_pending(
        self,
        approver_role: str,
        sub_city_id: UUID | None = None,
    ) -> list[ApprovalRequest]:
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.approver_role == approver_role,
            ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
            ApprovalRequestModel.is_deleted.is_(False),
        )
        if sub_city_id is not None:
            stmt = stmt.where(ApprovalRequestModel.sub_city_id == sub_city_id)
        stmt = stmt.order_by(ApprovalRequestModel.created_at)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def list_by_maker(
        self,
        maker_id: UUID,
        status: ApprovalStatus | None = None,
    ) -> list[ApprovalRequest]:
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.maker_id == maker_id,
            ApprovalRequestModel.is_deleted.is_(False),
        )
        if status is not None:
            stmt = stmt.where(ApprovalRequestModel.status == status.value)
        stmt = stmt.order_by(ApprovalRequestModel.created_at.desc())
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]
