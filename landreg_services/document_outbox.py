"""
Document promotion relay (``landreg_services.document_outbox``).

Responsibility:
    Moves wizard documents to permanent storage AFTER the registration
    that references them has committed.  The dispatcher records one
    ``DocumentPromotionModel`` row per document inside the business
    transaction; this relay reads those rows and performs the filesystem
    moves.

Architecture position:
    Services layer.  Driven by the approval engine and the wizard
    orchestrator once their transaction has committed, and callable on its
    own (e.g. from a scheduled job) to retry failures.

Invariants enforced:
    - Each row is handled in its own transaction; one failing document
      does not hold back the others.
    - A row is retried until it is PROMOTED or has used up
      ``max_attempts``; exhausted FAILED rows are left for reconciliation.

Failure modes:
    - Storage errors are recorded on the row (status FAILED, last_error)
      and logged as ``document_promotion_failed``; they are not raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select

from landreg_kernel.db.transaction import TransactionManager
from landreg_kernel.domain.clock import Clock, SystemClock
from landreg_kernel.exceptions import LandRecordsError
from landreg_kernel.logging_config import get_logger
from landreg_kernel.models.document_promotion import (
    DocumentPromotionModel,
    PromotionStatus,
)
from landreg_services.document_storage import DocumentLifecycle

logger = get_logger("services.document_outbox")


@dataclass(frozen=True)
class PromotionSummary:
    promoted: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.promoted + self.failed


class DocumentPromotionRelay:
    """Relays pending document promotions to the document store."""

    def __init__(
        self,
        transactions: TransactionManager,
        documents: DocumentLifecycle,
        clock: Clock | None = None,
        max_attempts: int = 3,
    ):
        self._transactions = transactions
        self._documents = documents
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts

    def process_pending(self, session_id: UUID | None = None) -> PromotionSummary:
        """Promote every outstanding document, optionally for one session."""
        with self._transactions.independent() as session:
            stmt = select(DocumentPromotionModel.id).where(
                DocumentPromotionModel.status.in_(
                    [PromotionStatus.PENDING, PromotionStatus.FAILED]
                ),
                DocumentPromotionModel.attempts < self._max_attempts,
            )
            if session_id is not None:
                stmt = stmt.where(DocumentPromotionModel.session_id == session_id)
            ids = list(
                session.execute(stmt.order_by(DocumentPromotionModel.created_at)).scalars()
            )

        promoted = failed = 0
        for promotion_id in ids:
            if self._promote_one(promotion_id):
                promoted += 1
            else:
                failed += 1

        if ids:
            logger.info(
                "document_promotions_processed",
                extra={"promoted": promoted, "failed": failed},
            )
        return PromotionSummary(promoted=promoted, failed=failed)

    def _promote_one(self, promotion_id: UUID) -> bool:
        with self._transactions.independent() as session:
            row = session.get(DocumentPromotionModel, promotion_id)
            row.attempts += 1
            try:
                location = self._documents.promote_to_permanent(
                    row.session_id,
                    row.step,
                    row.file_name,
                    row.target_entity_type,
                    row.target_entity_id,
                )
            except (OSError, LandRecordsError) as exc:
                row.status = PromotionStatus.FAILED
                row.last_error = str(exc)
                logger.warning(
                    "document_promotion_failed",
                    extra={
                        "promotion_id": str(promotion_id),
                        "file_name": row.file_name,
                        "attempts": row.attempts,
                    },
                    exc_info=True,
                )
                return False
            row.status = PromotionStatus.PROMOTED
            row.permanent_location = location
            row.last_error = None
            row.promoted_at = self._clock.now()
            return True
