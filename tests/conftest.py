"""
Pytest fixtures for the land records workflow test suite.

Provides:
- A fresh in-memory SQLite database per test (schema created from the ORM)
- Deterministic clock, audit sink, dispatcher, approval engine and wizard
- Registry factories for parcels, owners and ownership links
- Structured log capture

Environment Variables:
- LANDREG_TEST_DATABASE_URL: run against another database (e.g. PostgreSQL)
  instead of in-memory SQLite.  The schema is created and dropped per test.
"""

import json
import logging
import os
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from landreg_config import get_active_config
from landreg_config.bridges import build_approval_hierarchy
from landreg_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from landreg_kernel.db.transaction import TransactionManager
from landreg_kernel.domain.clock import DeterministicClock
from landreg_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from landreg_kernel.services.audit_sink import DatabaseAuditSink
from landreg_modules.lease.service import LeaseBillingGenerator
from landreg_modules.registry.orm import LandParcelModel, OwnerModel, ParcelOwnerModel
from landreg_services.action_dispatcher import ActionExecutionDispatcher
from landreg_services.approval_workflow import ApprovalWorkflowEngine
from landreg_services.document_outbox import DocumentPromotionRelay
from landreg_services.document_storage import LocalDocumentStore
from landreg_services.wizard_orchestrator import WizardSessionOrchestrator

TEST_DATABASE_URL = os.environ.get("LANDREG_TEST_DATABASE_URL", "sqlite://")


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session", autouse=True)
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture landreg logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.approve(...)
            logs = captured_logs()
            assert any(r["message"] == "action_executed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("landreg")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def database():
    """Initialise the engine and schema for one test."""
    init_engine_from_url(TEST_DATABASE_URL)
    create_tables()
    yield
    if TEST_DATABASE_URL != "sqlite://":
        drop_tables()
    reset_engine()


@pytest.fixture
def transactions(database) -> TransactionManager:
    return TransactionManager(get_session_factory())


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def actor_id():
    return uuid4()


@pytest.fixture
def sub_city_id():
    return uuid4()


@pytest.fixture
def audit_sink(deterministic_clock) -> DatabaseAuditSink:
    return DatabaseAuditSink(deterministic_clock)


@pytest.fixture
def billing() -> LeaseBillingGenerator:
    return LeaseBillingGenerator()


@pytest.fixture
def dispatcher(audit_sink, billing, deterministic_clock) -> ActionExecutionDispatcher:
    return ActionExecutionDispatcher(audit_sink, billing=billing, clock=deterministic_clock)


@pytest.fixture
def document_store(tmp_path) -> LocalDocumentStore:
    return LocalDocumentStore(tmp_path / "documents")


@pytest.fixture
def promotion_relay(transactions, document_store, deterministic_clock) -> DocumentPromotionRelay:
    return DocumentPromotionRelay(
        transactions, document_store, clock=deterministic_clock, max_attempts=3,
    )


@pytest.fixture
def hierarchy():
    """The approver hierarchy shipped in ``sets/default.yaml``."""
    return build_approval_hierarchy(get_active_config())


@pytest.fixture
def engine(
    transactions, dispatcher, audit_sink, hierarchy, deterministic_clock, promotion_relay,
) -> ApprovalWorkflowEngine:
    return ApprovalWorkflowEngine(
        transactions,
        dispatcher,
        audit_sink,
        hierarchy,
        clock=deterministic_clock,
        promotion_relay=promotion_relay,
    )


@pytest.fixture
def wizard(
    transactions, engine, dispatcher, document_store, audit_sink, deterministic_clock,
) -> WizardSessionOrchestrator:
    return WizardSessionOrchestrator(
        transactions,
        engine,
        dispatcher,
        document_store,
        audit_sink,
        clock=deterministic_clock,
        session_ttl_hours=24,
    )


# ---------------------------------------------------------------------------
# Registry factories
# ---------------------------------------------------------------------------


@pytest.fixture
def create_parcel(transactions, actor_id):
    """Factory: insert an ACTIVE parcel and return its upin."""
    counter = {"n": 0}

    def _create(
        upin: str | None = None,
        *,
        file_number: str | None = None,
        total_area_m2: Decimal = Decimal("500"),
        tenure_type: str = "OLD_POSSESSION",
        status: str = "ACTIVE",
        sub_city_id=None,
    ) -> str:
        counter["n"] += 1
        upin = upin or f"UPIN-{counter['n']:04d}-{uuid4().hex[:6]}"
        with transactions.transaction() as session:
            session.add(
                LandParcelModel(
                    upin=upin,
                    file_number=file_number or f"FILE-{upin}",
                    sub_city_id=sub_city_id,
                    tabia="03",
                    ketena="02",
                    block="14",
                    total_area_m2=total_area_m2,
                    land_use="RESIDENTIAL",
                    land_grade=Decimal("1.0"),
                    tenure_type=tenure_type,
                    status=status,
                    created_by_id=actor_id,
                )
            )
        return upin

    return _create


@pytest.fixture
def create_owner(transactions, actor_id):
    """Factory: insert an owner and return its id."""

    def _create(full_name: str = "Abebe Kebede", national_id: str | None = None):
        with transactions.transaction() as session:
            owner = OwnerModel(
                full_name=full_name,
                national_id=national_id or f"NID-{uuid4().hex[:10]}",
                phone_number="+251911000000",
                created_by_id=actor_id,
            )
            session.add(owner)
            session.flush()
            return owner.id

    return _create


@pytest.fixture
def link_owner(transactions, actor_id, deterministic_clock):
    """Factory: make an owner an active owner of a parcel."""

    def _link(upin: str, owner_id) -> None:
        with transactions.transaction() as session:
            session.add(
                ParcelOwnerModel(
                    upin=upin,
                    owner_id=owner_id,
                    acquired_at=deterministic_clock.today(),
                    is_active=True,
                    created_by_id=actor_id,
                )
            )

    return _link


@pytest.fixture
def execute_action(transactions, dispatcher, actor_id):
    """Run one dispatcher execution in its own committed transaction."""

    def _execute(entity_type, action_type, entity_id, payload, *, actor=None):
        with transactions.transaction() as session:
            return dispatcher.execute(
                session,
                entity_type,
                action_type,
                entity_id,
                payload,
                actor_id=actor or actor_id,
            )

    return _execute


# ---------------------------------------------------------------------------
# Wizard factories
# ---------------------------------------------------------------------------

WIZARD_LEASE_DATA = {
    "total_lease_amount": "120000",
    "down_payment_amount": "20000",
    "lease_period_years": 60,
    "payment_term_years": 5,
    "start_date": "2024-07-08",
    "contract_date": "2024-07-01",
}


@pytest.fixture
def build_wizard_session(wizard, sub_city_id):
    """Factory: create a wizard session with every required slot filled.

    Returns the session id.  With ``lease=False`` the parcel is registered
    under OLD_POSSESSION tenure and the lease steps are skipped.
    """

    def _build(user_id, user_role="SUBCITY_NORMAL", *, upin="WZ-0001", lease=True, owners=None):
        session = wizard.create_session(user_id, user_role, sub_city_id)
        wizard.save_step(
            session.id,
            "parcel",
            {
                "upin": upin,
                "file_number": f"FILE-{upin}",
                "total_area_m2": "400",
                "tenure_type": "LEASE" if lease else "OLD_POSSESSION",
                "land_use": "RESIDENTIAL",
                "tabia": "05",
            },
        )
        wizard.attach_document(session.id, "parcel-docs", "site_plan.pdf", b"%PDF-site", "SITE_PLAN")
        wizard.save_step(
            session.id,
            "owner",
            owners
            or [
                {
                    "full_name": "Selam Bekele",
                    "national_id": f"NID-{upin}",
                    "phone_number": "+251911000001",
                }
            ],
        )
        wizard.attach_document(session.id, "owner-docs", "id_card.pdf", b"%PDF-id", "NATIONAL_ID")
        if lease:
            wizard.save_step(session.id, "lease", dict(WIZARD_LEASE_DATA))
            wizard.attach_document(
                session.id, "lease-docs", "contract.pdf", b"%PDF-lease", "LEASE_CONTRACT",
            )
        return session.id

    return _build
