"""
WizardSessionOrchestrator.

Covers:
- Session creation and the user's current draft
- save_step: step names, data shapes, editability
- Document attach/replace/remove against the temporary store
- Completeness check and submission (pending vs self-approved)
- Expiry sweep
"""

from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from landreg_kernel.domain.approval import ActionType, ApprovalStatus, EntityType
from landreg_kernel.domain.wizard import WizardStatus
from landreg_kernel.exceptions import (
    ExecutionFailedError,
    InvalidStateError,
    ValidationError,
    WizardSessionNotFoundError,
)
from landreg_kernel.models.document_promotion import DocumentPromotionModel
from landreg_kernel.models.wizard_session import WizardSessionModel
from landreg_modules.lease.orm import BillingRecordModel, LeaseAgreementModel
from landreg_modules.registry.orm import LandParcelModel, ParcelOwnerModel
from landreg_services.action_dispatcher import DISPATCH_TABLE, ActionExecutionDispatcher
from landreg_services.document_storage import LocalDocumentStore
from landreg_services.wizard_orchestrator import WizardSessionOrchestrator


@pytest.fixture
def user_id():
    return uuid4()


class TestSessionLifecycle:

    def test_create_session(self, wizard, user_id, sub_city_id, deterministic_clock):
        created = wizard.create_session(user_id, "SUBCITY_NORMAL", sub_city_id)

        assert created.status == WizardStatus.DRAFT
        assert created.current_step == "parcel"
        assert created.sub_city_id == sub_city_id
        assert created.parcel_docs == ()
        assert created.created_at == deterministic_clock.now()
        assert (created.expires_at - created.created_at).total_seconds() == 24 * 3600

    def test_get_unknown_session(self, wizard):
        with pytest.raises(WizardSessionNotFoundError):
            wizard.get_session(uuid4())

    def test_user_draft_session(self, wizard, user_id, deterministic_clock):
        assert wizard.get_user_draft_session(user_id) is None
        created = wizard.create_session(user_id, "SUBCITY_NORMAL")

        assert wizard.get_user_draft_session(user_id).id == created.id
        assert wizard.get_user_draft_session(uuid4()) is None

        deterministic_clock.advance_hours(25)
        assert wizard.get_user_draft_session(user_id) is None

    def test_list_user_sessions(self, wizard, build_wizard_session, user_id):
        build_wizard_session(user_id)
        wizard.create_session(user_id, "SUBCITY_NORMAL")

        assert len(wizard.list_user_sessions(user_id)) == 2
        drafts = wizard.list_user_sessions(user_id, WizardStatus.DRAFT)
        assert len(drafts) == 2
        assert wizard.list_user_sessions(user_id, WizardStatus.MERGED) == []


class TestSaveStep:

    def test_save_replaces_slot(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        wizard.save_step(session.id, "parcel", {"upin": "A-1"})
        updated = wizard.save_step(session.id, "parcel", {"upin": "A-2", "tenure_type": "LEASE"})

        assert updated.parcel_data == {"upin": "A-2", "tenure_type": "LEASE"}
        assert updated.current_step == "parcel"

    def test_unknown_step(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        with pytest.raises(ValidationError) as exc_info:
            wizard.save_step(session.id, "building", {})
        assert exc_info.value.field == "step"

    def test_document_step_needs_list(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        with pytest.raises(ValidationError):
            wizard.save_step(session.id, "parcel-docs", {"file_name": "x.pdf"})

    def test_data_step_rejects_scalar(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        with pytest.raises(ValidationError):
            wizard.save_step(session.id, "owner", "Selam")

    @pytest.mark.parametrize(
        "docs",
        [
            ["plan.pdf"],
            [{"doc_type": "SITE_PLAN"}],
            [{"file_name": "../plan.pdf", "doc_type": "SITE_PLAN"}],
            [{"file_name": "plan.pdf", "doc_type": 7}],
        ],
    )
    def test_document_entries_must_be_plain_documents(self, wizard, user_id, docs):
        session = wizard.create_session(user_id, "SUBCITY_ADMIN")
        with pytest.raises(ValidationError) as exc_info:
            wizard.save_step(session.id, "parcel-docs", docs)
        assert exc_info.value.field == "data"
        assert wizard.get_session(session.id).parcel_docs == ()

    def test_document_entries_saved_as_objects(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        saved = wizard.save_step(
            session.id, "owner-docs", [{"file_name": "id.pdf", "doc_type": "NATIONAL_ID"}],
        )
        assert [doc["file_name"] for doc in saved.owner_docs] == ["id.pdf"]

    def test_owner_list_holds_only_owner_objects(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        with pytest.raises(ValidationError) as exc_info:
            wizard.save_step(session.id, "owner", ["someone"])
        assert exc_info.value.field == "data"

        validation = wizard.validate_session(session.id)
        assert "Owner Information" in validation.missing

    def test_parcel_step_rejects_list(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        with pytest.raises(ValidationError) as exc_info:
            wizard.save_step(session.id, "parcel", [{"upin": "A-1"}])
        assert exc_info.value.field == "data"

    def test_clearing_a_step(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        wizard.save_step(session.id, "lease", {"total_lease_amount": "10"})
        assert wizard.save_step(session.id, "lease", None).lease_data is None

    def test_pending_session_not_editable(self, wizard, build_wizard_session, user_id):
        session_id = build_wizard_session(user_id)
        wizard.submit_for_approval(session_id)

        with pytest.raises(InvalidStateError) as exc_info:
            wizard.save_step(session_id, "parcel", {"upin": "changed"})
        assert exc_info.value.status == "PENDING_APPROVAL"

    def test_approved_session_not_editable(self, wizard, build_wizard_session, user_id):
        session_id = build_wizard_session(user_id, "SUBCITY_ADMIN", upin="WZ-DONE")
        wizard.submit_for_approval(session_id)

        with pytest.raises(InvalidStateError) as exc_info:
            wizard.save_step(session_id, "owner", [])
        assert exc_info.value.status == "APPROVED"

    def test_editing_rejected_session_reopens_draft(
        self, wizard, engine, build_wizard_session, user_id,
    ):
        session_id = build_wizard_session(user_id)
        first = wizard.submit_for_approval(session_id).request
        engine.reject(first.id, uuid4(), "SUBCITY_ADMIN", "Wrong tabia")

        reopened = wizard.save_step(
            session_id,
            "parcel",
            {
                "upin": "WZ-0001",
                "file_number": "FILE-WZ-0001",
                "total_area_m2": "400",
                "tenure_type": "LEASE",
                "tabia": "06",
            },
        )
        assert reopened.status == WizardStatus.DRAFT
        assert reopened.approval_request_id is None

        second = wizard.submit_for_approval(session_id).request
        assert second.id != first.id
        assert second.status == ApprovalStatus.PENDING
        assert engine.get_request(first.id).status == ApprovalStatus.REJECTED


class TestDocuments:

    def test_attach_stores_temporary_file(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        ref = wizard.attach_document(session.id, "parcel-docs", "plan.pdf", b"abc", "SITE_PLAN")

        assert Path(ref.location).read_bytes() == b"abc"
        assert ref.size_bytes == 3
        stored = wizard.get_session(session.id)
        assert [d["file_name"] for d in stored.parcel_docs] == ["plan.pdf"]
        assert stored.current_step == "parcel-docs"

    def test_same_name_replaces(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        wizard.attach_document(session.id, "owner-docs", "id.pdf", b"old", "NATIONAL_ID")
        ref = wizard.attach_document(session.id, "owner-docs", "id.pdf", b"new-bytes", "NATIONAL_ID")

        docs = wizard.get_session(session.id).owner_docs
        assert len(docs) == 1
        assert docs[0]["size_bytes"] == len(b"new-bytes")
        assert Path(ref.location).read_bytes() == b"new-bytes"

    def test_remove_document(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        ref = wizard.attach_document(session.id, "lease-docs", "c.pdf", b"x", "LEASE_CONTRACT")
        wizard.attach_document(session.id, "lease-docs", "d.pdf", b"y", "LEASE_CONTRACT")

        updated = wizard.remove_document(session.id, "lease-docs", "c.pdf")

        assert [d["file_name"] for d in updated.lease_docs] == ["d.pdf"]
        assert not Path(ref.location).exists()

    def test_attach_to_data_step_rejected(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        with pytest.raises(ValidationError) as exc_info:
            wizard.attach_document(session.id, "parcel", "plan.pdf", b"x", "SITE_PLAN")
        assert exc_info.value.field == "step"

    def test_path_like_name_rejected(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        with pytest.raises(ValidationError) as exc_info:
            wizard.attach_document(session.id, "parcel-docs", "../escape.pdf", b"x", "SITE_PLAN")
        assert exc_info.value.field == "file_name"
        assert wizard.get_session(session.id).parcel_docs == ()


class TestValidation:

    def test_empty_session(self, wizard, user_id):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        result = wizard.validate_session(session.id)
        assert result.valid is False
        assert result.missing == (
            "Parcel Information",
            "Parcel Documents",
            "Owner Information",
        )

    def test_complete_session(self, wizard, build_wizard_session, user_id):
        result = wizard.validate_session(build_wizard_session(user_id))
        assert result.valid is True
        assert result.missing == ()

    def test_lease_tenure_needs_lease_steps(self, wizard, build_wizard_session, user_id):
        session_id = build_wizard_session(user_id)
        wizard.save_step(session_id, "lease", None)
        wizard.remove_document(session_id, "lease-docs", "contract.pdf")

        assert wizard.validate_session(session_id).missing == (
            "Lease Information",
            "Lease Documents",
        )


class TestSubmit:

    def test_incomplete_session_rejected(self, wizard, user_id, transactions):
        session = wizard.create_session(user_id, "SUBCITY_NORMAL")
        wizard.save_step(session.id, "parcel", {"upin": "X-1", "tenure_type": "LEASE"})

        with pytest.raises(ValidationError) as exc_info:
            wizard.submit_for_approval(session.id)

        assert exc_info.value.missing == [
            "Parcel Documents",
            "Owner Information",
            "Lease Information",
            "Lease Documents",
        ]
        assert wizard.get_session(session.id).status == WizardStatus.DRAFT

    def test_normal_user_waits_for_approval(self, wizard, engine, build_wizard_session, user_id):
        session_id = build_wizard_session(user_id)

        outcome = wizard.submit_for_approval(session_id)

        assert outcome.requires_approval is True
        assert outcome.approver_role == "SUBCITY_ADMIN"
        stored = wizard.get_session(session_id)
        assert stored.status == WizardStatus.PENDING_APPROVAL
        assert stored.approval_request_id == outcome.request.id
        assert stored.submitted_at is not None
        assert [r.id for r in engine.list_pending("SUBCITY_ADMIN")] == [outcome.request.id]

    def test_resubmitting_pending_session(self, wizard, build_wizard_session, user_id):
        session_id = build_wizard_session(user_id)
        wizard.submit_for_approval(session_id)

        with pytest.raises(InvalidStateError):
            wizard.submit_for_approval(session_id)

    def test_admin_registers_directly(
        self, wizard, build_wizard_session, transactions, user_id, captured_logs,
    ):
        session_id = build_wizard_session(user_id, "SUBCITY_ADMIN", upin="WZ-ADMIN")

        outcome = wizard.submit_for_approval(session_id)

        assert outcome.requires_approval is False
        assert outcome.request is None
        assert outcome.immediate_result.summary["parcel_upin"] == "WZ-ADMIN"
        stored = wizard.get_session(session_id)
        assert stored.status == WizardStatus.APPROVED
        assert stored.approval_request_id is None

        with transactions.transaction() as session:
            parcel = session.execute(
                select(LandParcelModel).where(LandParcelModel.upin == "WZ-ADMIN")
            ).scalar_one()
            assert parcel.created_by_id == user_id
            lease = session.execute(
                select(LeaseAgreementModel).where(LeaseAgreementModel.upin == "WZ-ADMIN")
            ).scalar_one()
            bills = session.execute(
                select(func.count(BillingRecordModel.id)).where(
                    BillingRecordModel.lease_id == lease.id
                )
            ).scalar_one()
            assert bills == 5
            promotions = session.execute(select(DocumentPromotionModel)).scalars().all()

        assert len(promotions) == 3
        assert all(p.status == "PROMOTED" for p in promotions)
        lease_doc = next(p for p in promotions if p.step == "lease-docs")
        assert lease_doc.target_entity_type == "LEASE"
        assert lease_doc.target_entity_id == str(lease.id)
        assert Path(lease_doc.permanent_location).read_bytes() == b"%PDF-lease"
        assert any(r["message"] == "wizard_session_submitted" for r in captured_logs())

    def test_existing_owner_needs_no_owner_documents(
        self, wizard, create_owner, transactions, user_id,
    ):
        owner_id = create_owner("Existing Holder", "NID-EXISTING")
        session = wizard.create_session(user_id, "SUBCITY_ADMIN")
        wizard.save_step(
            session.id,
            "parcel",
            {
                "upin": "WZ-OLD",
                "file_number": "FILE-WZ-OLD",
                "total_area_m2": "250",
                "tenure_type": "OLD_POSSESSION",
            },
        )
        wizard.attach_document(session.id, "parcel-docs", "plan.pdf", b"p", "SITE_PLAN")
        wizard.save_step(session.id, "owner", {"owner_id": str(owner_id)})

        assert wizard.validate_session(session.id).valid
        outcome = wizard.submit_for_approval(session.id)

        summary = outcome.immediate_result.summary
        assert summary["owners_created"] == 0
        assert summary["owner_ids"] == [str(owner_id)]
        assert summary["lease_id"] is None
        with transactions.transaction() as db:
            link = db.execute(
                select(ParcelOwnerModel).where(ParcelOwnerModel.upin == "WZ-OLD")
            ).scalar_one()
            assert link.owner_id == owner_id

    def test_failed_self_registration_marks_session_failed(
        self, wizard, build_wizard_session, create_parcel, user_id,
    ):
        create_parcel("WZ-TAKEN")
        session_id = build_wizard_session(user_id, "SUBCITY_ADMIN", upin="WZ-TAKEN")

        with pytest.raises(ExecutionFailedError):
            wizard.submit_for_approval(session_id)

        assert wizard.get_session(session_id).status == WizardStatus.FAILED

    def test_unexpected_handler_error_marks_session_failed(
        self, build_wizard_session, transactions, engine, document_store, audit_sink,
        deterministic_clock, user_id,
    ):
        def broken_registration(ctx, payload):
            raise KeyError("file_name")

        handlers = {
            **DISPATCH_TABLE,
            (EntityType.WIZARD_SESSION, ActionType.CREATE): broken_registration,
        }
        admin_wizard = WizardSessionOrchestrator(
            transactions,
            engine,
            ActionExecutionDispatcher(audit_sink, clock=deterministic_clock, handlers=handlers),
            document_store,
            audit_sink,
            clock=deterministic_clock,
        )
        session_id = build_wizard_session(user_id, "SUBCITY_ADMIN", upin="WZ-BROKEN")

        with pytest.raises(ExecutionFailedError) as exc_info:
            admin_wizard.submit_for_approval(session_id)

        assert isinstance(exc_info.value.cause, KeyError)
        assert exc_info.value.request_id is None
        assert admin_wizard.get_session(session_id).status == WizardStatus.FAILED
        with transactions.transaction() as session:
            assert session.execute(
                select(func.count(LandParcelModel.id)).where(LandParcelModel.upin == "WZ-BROKEN")
            ).scalar_one() == 0


class TestSweep:

    def test_removes_only_expired_drafts(
        self, wizard, build_wizard_session, document_store, transactions,
        deterministic_clock, user_id,
    ):
        stale = wizard.create_session(user_id, "SUBCITY_NORMAL")
        ref = wizard.attach_document(stale.id, "parcel-docs", "plan.pdf", b"x", "SITE_PLAN")
        submitted = build_wizard_session(user_id)
        wizard.submit_for_approval(submitted)

        deterministic_clock.advance_hours(25)
        fresh = wizard.create_session(user_id, "SUBCITY_NORMAL")

        assert wizard.sweep_expired_sessions() == 1

        with transactions.transaction() as session:
            remaining = set(session.execute(select(WizardSessionModel.id)).scalars())
        assert remaining == {submitted, fresh.id}
        assert not Path(ref.location).exists()
        assert not Path(ref.location).parent.parent.exists()

    def test_sweep_is_repeatable(self, wizard, deterministic_clock, user_id):
        wizard.create_session(user_id, "SUBCITY_NORMAL")
        deterministic_clock.advance_hours(25)

        assert wizard.sweep_expired_sessions() == 1
        assert wizard.sweep_expired_sessions() == 0

    def test_files_removed_after_row_is_gone(
        self, transactions, engine, dispatcher, audit_sink, deterministic_clock,
        tmp_path, user_id,
    ):
        seen_rows = []

        class CheckingStore(LocalDocumentStore):
            def cleanup_session(self, session_id):
                with transactions.transaction() as session:
                    seen_rows.append(session.get(WizardSessionModel, session_id))
                super().cleanup_session(session_id)

        store = CheckingStore(tmp_path / "checked")
        sweeping = WizardSessionOrchestrator(
            transactions, engine, dispatcher, store, audit_sink, clock=deterministic_clock,
        )
        stale = sweeping.create_session(user_id, "SUBCITY_NORMAL")
        ref = sweeping.attach_document(stale.id, "parcel-docs", "plan.pdf", b"x", "SITE_PLAN")
        deterministic_clock.advance_hours(25)

        assert sweeping.sweep_expired_sessions() == 1
        assert seen_rows == [None]
        assert not Path(ref.location).exists()

    def test_undeletable_files_are_logged(
        self, transactions, engine, dispatcher, audit_sink, deterministic_clock,
        tmp_path, user_id, captured_logs,
    ):
        class LockedStore(LocalDocumentStore):
            def cleanup_session(self, session_id):
                raise PermissionError("read-only volume")

        sweeping = WizardSessionOrchestrator(
            transactions, engine, dispatcher, LockedStore(tmp_path / "locked"),
            audit_sink, clock=deterministic_clock,
        )
        stale = sweeping.create_session(user_id, "SUBCITY_NORMAL")
        deterministic_clock.advance_hours(25)

        assert sweeping.sweep_expired_sessions() == 1
        with transactions.transaction() as session:
            assert session.get(WizardSessionModel, stale.id) is None
        orphaned = [r for r in captured_logs() if r["message"] == "wizard_session_files_orphaned"]
        assert [r["session_id"] for r in orphaned] == [str(stale.id)]
