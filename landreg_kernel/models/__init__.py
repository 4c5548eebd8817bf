"""ORM models owned by the land records kernel."""

from landreg_kernel.models.approval import ApprovalLogModel, ApprovalRequestModel
from landreg_kernel.models.audit_log import AuditLogModel
from landreg_kernel.models.document_promotion import (
    DocumentPromotionModel,
    PromotionStatus,
)
from landreg_kernel.models.wizard_session import WizardSessionModel

__all__ = [
    "ApprovalRequestModel",
    "ApprovalLogModel",
    "AuditLogModel",
    "DocumentPromotionModel",
    "PromotionStatus",
    "WizardSessionModel",
]
