"""
ActionExecutionDispatcher.

Covers:
- The static dispatch table covers exactly the supported pairs
- Unsupported pairs raise UnsupportedActionError before any work
- Handler failures of any kind surface as ExecutionError with the cause attached
- A failing handler leaves nothing behind (SAVEPOINT rollback)
- Wizard failures carry the session id and FAILED status
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from landreg_kernel.domain.approval import ActionType, EntityType, ExecutionResult
from landreg_kernel.domain.payloads import PAYLOAD_SCHEMAS
from landreg_kernel.exceptions import (
    ExecutionError,
    UnsupportedActionError,
    ValidationError,
    WizardSessionNotFoundError,
)
from landreg_modules.registry.orm import OwnerModel
from landreg_services.action_dispatcher import DISPATCH_TABLE, ActionExecutionDispatcher

OWNER_PAYLOAD = {
    "full_name": "Meron Alemu",
    "national_id": "ET-100200",
    "phone_number": "+251911223344",
}


class TestDispatchTable:

    def test_table_matches_payload_schemas(self):
        assert set(DISPATCH_TABLE) == set(PAYLOAD_SCHEMAS)
        assert len(DISPATCH_TABLE) == 9

    @pytest.mark.parametrize(
        "entity, action",
        [
            ("OWNER", "CREATE"),
            ("LAND_PARCEL", "TRANSFER"),
            ("LAND_PARCEL", "ADD_OWNER"),
            ("LAND_PARCEL", "SUBDIVIDE"),
            ("LAND_PARCEL", "DELETE"),
            ("LEASE", "CREATE"),
            ("LEASE", "UPDATE"),
            ("ENCUMBRANCE", "CREATE"),
            ("WIZARD_SESSION", "CREATE"),
        ],
    )
    def test_supported(self, dispatcher, entity, action):
        assert dispatcher.supports(entity, action)

    @pytest.mark.parametrize(
        "entity, action",
        [("OWNER", "DELETE"), ("LEASE", "TRANSFER"), ("BUILDING", "CREATE"), ("OWNER", "ARCHIVE")],
    )
    def test_unsupported(self, dispatcher, entity, action):
        assert not dispatcher.supports(entity, action)
        with pytest.raises(UnsupportedActionError):
            dispatcher.ensure_supported(entity, action)

    def test_ensure_supported_returns_enums(self, dispatcher):
        assert dispatcher.ensure_supported("LEASE", "UPDATE") == (EntityType.LEASE, ActionType.UPDATE)


class TestExecute:

    def test_success_returns_result_and_logs(self, execute_action, captured_logs):
        result = execute_action(EntityType.OWNER, ActionType.CREATE, "new", OWNER_PAYLOAD)

        assert isinstance(result, ExecutionResult)
        assert result.entity_type == EntityType.OWNER
        assert result.session_status is None
        logs = captured_logs()
        executed = [r for r in logs if r["message"] == "action_executed"]
        assert executed and executed[0]["entity_id"] == result.entity_id

    def test_unsupported_pair_raises_directly(self, execute_action):
        with pytest.raises(UnsupportedActionError):
            execute_action("OWNER", "SUBDIVIDE", "x", {})

    def test_invalid_payload_wrapped(self, execute_action, captured_logs):
        with pytest.raises(ExecutionError) as exc_info:
            execute_action("OWNER", "CREATE", "new", {"full_name": "No Id"})

        error = exc_info.value
        assert error.code == "EXECUTION_ERROR"
        assert isinstance(error.cause, ValidationError)
        assert error.session_id is None
        assert error.session_status is None
        assert any(r["message"] == "action_execution_failed" for r in captured_logs())

    def test_wizard_failure_carries_session(self, execute_action):
        session_id = uuid4()
        with pytest.raises(ExecutionError) as exc_info:
            execute_action(
                "WIZARD_SESSION", "CREATE", str(session_id), {"session_id": str(session_id)},
            )

        error = exc_info.value
        assert isinstance(error.cause, WizardSessionNotFoundError)
        assert error.session_id == str(session_id)
        assert error.session_status == "FAILED"

    def test_failed_handler_leaves_nothing(self, transactions, audit_sink, actor_id):
        def half_done(ctx, payload):
            ctx.session.add(
                OwnerModel(
                    full_name=payload.full_name,
                    national_id=payload.national_id,
                    phone_number=payload.phone_number,
                    created_by_id=ctx.actor_id,
                )
            )
            ctx.session.flush()
            raise ValidationError("second half failed")

        dispatcher = ActionExecutionDispatcher(
            audit_sink, handlers={(EntityType.OWNER, ActionType.CREATE): half_done},
        )
        with transactions.transaction() as session:
            with pytest.raises(ExecutionError):
                dispatcher.execute(
                    session, "OWNER", "CREATE", "new", OWNER_PAYLOAD, actor_id=actor_id,
                )
            # The caller's transaction is still usable and holds no owner.
            assert session.execute(select(func.count(OwnerModel.id))).scalar_one() == 0

    def test_unexpected_exception_wrapped(self, transactions, audit_sink, actor_id):
        def broken(ctx, payload):
            raise KeyError("file_name")

        dispatcher = ActionExecutionDispatcher(
            audit_sink, handlers={(EntityType.OWNER, ActionType.CREATE): broken},
        )
        with transactions.transaction() as session:
            with pytest.raises(ExecutionError) as exc_info:
                dispatcher.execute(
                    session, "OWNER", "CREATE", "new", OWNER_PAYLOAD, actor_id=actor_id,
                )
        assert isinstance(exc_info.value.cause, KeyError)

    def test_custom_table_limits_support(self, audit_sink):
        dispatcher = ActionExecutionDispatcher(audit_sink, handlers={})
        assert not dispatcher.supports("OWNER", "CREATE")
