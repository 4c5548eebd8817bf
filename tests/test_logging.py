"""
Structured logging (landreg_kernel/logging_config.py).

Covers:
- Kernel exceptions rendered as exc_* fields, with the cause kept out
- Money, dates and ids rendered as JSON strings
- Request-scoped context wins over same-named extra fields
- Approval and wizard operations bind actor, request and session ids
- configure_logging / reset_logging lifecycle of the landreg logger
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from landreg_kernel.exceptions import (
    ExecutionError,
    ExecutionFailedError,
    ForbiddenError,
    ValidationError,
)
from landreg_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def stream():
    out = StringIO()
    handler = logging.StreamHandler(out)
    handler.setFormatter(StructuredFormatter())
    configure_logging(handler=handler, level=logging.DEBUG)
    return out


def _records(out: StringIO) -> list[dict]:
    return [json.loads(line) for line in out.getvalue().splitlines() if line]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class TestExceptionFields:

    def test_forbidden_role_fields(self, stream):
        try:
            raise ForbiddenError("SUBCITY_NORMAL", "SUBCITY_ADMIN", "approve")
        except ForbiddenError:
            get_logger("test").error("approval_forbidden", exc_info=True)

        record = _records(stream)[0]
        assert record["exc_code"] == "FORBIDDEN"
        assert record["exc_type"] == "ForbiddenError"
        assert record["exc_actor_role"] == "SUBCITY_NORMAL"
        assert record["exc_required_role"] == "SUBCITY_ADMIN"
        assert "traceback" in record

    def test_execution_failure_keeps_cause_out(self, stream):
        session_id = str(uuid4())
        error = ExecutionError(
            "WIZARD_SESSION", "CREATE", ValidationError("taken", field="upin"),
            session_id=session_id, session_status="FAILED",
        )
        try:
            raise ExecutionFailedError(None, error)
        except ExecutionFailedError:
            get_logger("test").error("execution_failed", exc_info=True)

        record = _records(stream)[0]
        assert record["exc_code"] == "EXECUTION_FAILED"
        assert record["exc_session_id"] == session_id
        assert record["exc_session_status"] == "FAILED"
        assert record["exc_request_id"] is None
        assert "exc_cause" not in record

    def test_plain_exception_has_no_code(self, stream):
        try:
            raise KeyError("file_name")
        except KeyError:
            get_logger("test").warning("unexpected", exc_info=True)

        record = _records(stream)[0]
        assert record["exc_type"] == "KeyError"
        assert "exc_code" not in record


# ---------------------------------------------------------------------------
# Values and context
# ---------------------------------------------------------------------------


class TestRecordValues:

    def test_money_dates_and_ids_are_strings(self, stream):
        lease_id = uuid4()
        get_logger("modules.lease").info(
            "lease_bills_generated",
            extra={
                "lease_id": lease_id,
                "annual_installment": Decimal("20000.00"),
                "first_due": date(2025, 7, 8),
                "generated_at": datetime(2024, 1, 1, 12, tzinfo=timezone.utc),
            },
        )

        record = _records(stream)[0]
        assert record["logger"] == "landreg.modules.lease"
        assert record["lease_id"] == str(lease_id)
        assert record["annual_installment"] == "20000.00"
        assert record["first_due"] == "2025-07-08"
        assert record["generated_at"] == "2024-01-01T12:00:00+00:00"

    def test_context_wins_over_extra(self, stream):
        with LogContext.bind(session_id="bound"):
            get_logger("test").info("step", extra={"session_id": "extra", "step": "owner"})

        record = _records(stream)[0]
        assert record["session_id"] == "bound"
        assert record["step"] == "owner"

    def test_nested_bind_restores_outer_values(self):
        with LogContext.bind(actor_id="maker", session_id="s-1"):
            with LogContext.bind(actor_id="checker", request_id=uuid4(), tenant="ignored"):
                inner = LogContext.get_all()
            outer = LogContext.get_all()

        assert inner["actor_id"] == "checker"
        assert inner["session_id"] == "s-1"
        assert "tenant" not in inner
        assert outer == {"actor_id": "maker", "session_id": "s-1"}
        assert LogContext.get_all() == {}

    def test_set_keeps_unset_fields(self):
        LogContext.set(correlation_id="c-1")
        LogContext.set(actor_id="a-1")
        assert LogContext.get_all() == {"correlation_id": "c-1", "actor_id": "a-1"}


class TestOperationContext:

    def test_approve_binds_checker_and_request(self, engine, captured_logs):
        maker_id, approver_id = uuid4(), uuid4()
        request = engine.create_approval_request(
            "OWNER", "ET-700", "CREATE",
            {"full_name": "Abel Tesfaye", "national_id": "ET-700", "phone_number": "0911000700"},
            maker_id=maker_id, maker_role="SUBCITY_NORMAL",
        ).request

        engine.approve(request.id, approver_id, "SUBCITY_ADMIN")

        executed = [r for r in captured_logs() if r["message"] == "action_executed"]
        assert executed[0]["actor_id"] == str(approver_id)
        assert executed[0]["request_id"] == str(request.id)
        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_second_configure_is_ignored(self, stream):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert len(logging.getLogger("landreg").handlers) == 1

    def test_reset_detaches_and_restores_warning(self, stream):
        reset_logging()
        landreg = logging.getLogger("landreg")
        assert landreg.handlers == []
        assert landreg.level == logging.WARNING

        get_logger("test").info("dropped")
        assert stream.getvalue() == ""
