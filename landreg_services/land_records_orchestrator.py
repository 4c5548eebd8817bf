"""
landreg_services.land_records_orchestrator -- Composition root.

Responsibility:
    Creates every workflow component exactly once and wires them together
    around one shared ``TransactionManager``.  No component constructs
    another internally; this module is the single point of dependency
    injection for the land records workflow.

Architecture position:
    Services -- top of the service layer.  Adapters (HTTP handlers, CLI,
    scheduled jobs) hold one orchestrator and call through its attributes.

Invariants enforced:
    - Single-instance lifecycle: one dispatcher, one engine, one wizard
      orchestrator, one promotion relay per orchestrator.
    - DI transparency: all wiring is visible in ``__init__``.

Usage:
    orchestrator = build_land_records_orchestrator()
    outcome = orchestrator.wizard.submit_for_approval(session_id)
    orchestrator.approvals.approve(request_id, approver_id, "SUBCITY_ADMIN")
"""

from __future__ import annotations

import logging
from pathlib import Path

from landreg_config import get_active_config
from landreg_config.bridges import build_approval_hierarchy
from landreg_config.schema import WorkflowConfig
from landreg_kernel.db.engine import get_session_factory, init_engine_from_url
from landreg_kernel.db.transaction import TransactionManager
from landreg_kernel.domain.clock import Clock, SystemClock
from landreg_kernel.logging_config import configure_logging, get_logger
from landreg_kernel.services.audit_sink import AuditSink, DatabaseAuditSink
from landreg_modules.lease.service import LeaseBillingGenerator
from landreg_services.action_dispatcher import ActionExecutionDispatcher
from landreg_services.approval_workflow import ApprovalWorkflowEngine
from landreg_services.document_outbox import DocumentPromotionRelay
from landreg_services.document_storage import DocumentLifecycle, LocalDocumentStore
from landreg_services.wizard_orchestrator import WizardSessionOrchestrator

logger = get_logger("services.land_records_orchestrator")


class LandRecordsOrchestrator:
    """Central factory for workflow components.

    Contract:
        Receives a ``TransactionManager`` and the active ``WorkflowConfig``
        plus optional document store, audit sink and clock.  Constructs
        every component once, in dependency order, and exposes them as
        public attributes.

    Guarantees:
        - All components share the same TransactionManager and Clock.

    Non-goals:
        - Does NOT own the engine or connection pool lifecycle.
    """

    def __init__(
        self,
        transactions: TransactionManager,
        config: WorkflowConfig,
        documents: DocumentLifecycle | None = None,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self.transactions = transactions
        self.config = config
        self.clock = clock or SystemClock()

        # Foundational collaborators
        self.documents = documents or LocalDocumentStore(Path(config.documents.storage_root))
        self.audit = audit or DatabaseAuditSink(self.clock)
        self.billing = LeaseBillingGenerator()

        self.dispatcher = ActionExecutionDispatcher(
            audit=self.audit,
            billing=self.billing,
            clock=self.clock,
        )
        self.promotion_relay = DocumentPromotionRelay(
            transactions,
            self.documents,
            clock=self.clock,
            max_attempts=config.documents.max_promotion_attempts,
        )
        self.approvals = ApprovalWorkflowEngine(
            transactions,
            self.dispatcher,
            self.audit,
            build_approval_hierarchy(config),
            clock=self.clock,
            promotion_relay=self.promotion_relay,
        )
        self.wizard = WizardSessionOrchestrator(
            transactions,
            self.approvals,
            self.dispatcher,
            self.documents,
            self.audit,
            clock=self.clock,
            session_ttl_hours=config.wizard.session_ttl_hours,
        )


def build_land_records_orchestrator(
    config: WorkflowConfig | None = None,
    *,
    clock: Clock | None = None,
) -> LandRecordsOrchestrator:
    """Initialise logging and the database engine from configuration and wire everything."""
    config = config or get_active_config()
    configure_logging(level=getattr(logging, config.logging.level))
    init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
        pool_timeout=config.database.pool_timeout,
    )
    orchestrator = LandRecordsOrchestrator(
        TransactionManager(get_session_factory()),
        config,
        clock=clock,
    )
    logger.info(
        "land_records_orchestrator_built",
        extra={"config_id": config.config_id, "config_version": config.version},
    )
    return orchestrator
