"""Tests for the structured logging system (voucher_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from voucher_kernel.domain.documents import DocumentStatus, DocumentType
from voucher_kernel.exceptions import SequenceContentionError, ValidationError
from voucher_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from voucher_kernel.services.sequence_service import NumberSequenceService


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    return handler, stream


def _lines(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


def _structured_handlers() -> list[logging.Handler]:
    namespace = logging.getLogger("voucher_kernel")
    return [h for h in namespace.handlers if isinstance(h.formatter, StructuredFormatter)]


def _by_message(records: list[dict], message: str) -> dict:
    matches = [r for r in records if r["message"] == message]
    assert matches, f"no {message!r} line in {[r['message'] for r in records]}"
    return matches[-1]


# ---------------------------------------------------------------------------
# Line format
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_header_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("services.sequence").info("sequence_allocated", extra={"value": 7})

        [line] = _lines(stream)
        assert line["level"] == "INFO"
        assert line["logger"] == "voucher_kernel.services.sequence"
        assert line["message"] == "sequence_allocated"
        assert line["value"] == 7
        # Millisecond precision, UTC offset.
        assert line["ts"].endswith("+00:00")
        assert len(line["ts"].split(".")[1]) == len("123+00:00")

    def test_unset_context_fields_are_omitted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(scope_key="BookA"):
            get_logger("test").info("document_created")

        [line] = _lines(stream)
        assert line["scope_key"] == "BookA"
        for absent in ("correlation_id", "actor_id", "document_type", "document_id"):
            assert absent not in line

    def test_enum_context_written_as_value(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(document_type=DocumentType.CHEQUE):
            get_logger("test").info(
                "document_posted", extra={"previous_status": DocumentStatus.DRAFT}
            )

        [line] = _lines(stream)
        assert line["document_type"] == "cheque"
        assert line["previous_status"] == "draft"

    def test_amounts_keep_every_digit(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        document_id = uuid4()
        get_logger("test").info(
            "document_created",
            extra={
                "amount": Decimal("98765432.123456789"),
                "source_document_id": document_id,
                "document_date": date(2024, 3, 15),
            },
        )

        [line] = _lines(stream)
        assert line["amount"] == "98765432.123456789"
        assert line["source_document_id"] == str(document_id)
        assert line["document_date"] == "2024-03-15"

    def test_extra_never_overrides_bound_context(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(scope_key="BookA"):
            get_logger("test").warning("sequence_contention", extra={"scope_key": "BookB"})

        [line] = _lines(stream)
        assert line["scope_key"] == "BookA"

    def test_contention_error_flattened(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        try:
            raise SequenceContentionError("cheque", "BookA", "lock timeout")
        except SequenceContentionError:
            get_logger("test").error("reservation_failed", exc_info=True)

        [line] = _lines(stream)
        assert line["exc_type"] == "SequenceContentionError"
        assert line["exc_code"] == "SEQUENCE_CONTENTION"
        assert line["exc_retryable"] is True
        assert line["exc_scope_key"] == "BookA"
        assert line["exc_reason"] == "lock timeout"
        assert "SequenceContentionError" in line["traceback"]

    def test_foreign_exception_has_no_code(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        try:
            raise RuntimeError("disk full")
        except RuntimeError:
            get_logger("test").error("commit_failed", exc_info=True)

        [line] = _lines(stream)
        assert line["exc_type"] == "RuntimeError"
        assert line["exc_message"] == "disk full"
        assert "exc_code" not in line


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_renders_values_as_text(self):
        actor = uuid4()
        LogContext.set(actor_id=actor, document_type=DocumentType.VOUCHER)
        assert LogContext.get_all() == {"actor_id": str(actor), "document_type": "voucher"}

    def test_set_none_keeps_previous_value(self):
        LogContext.set(correlation_id="req-1")
        LogContext.set(correlation_id=None, scope_key="BookA")
        assert LogContext.get_all() == {"correlation_id": "req-1", "scope_key": "BookA"}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="entry_id"):
            LogContext.set(entry_id="x")
        with pytest.raises(TypeError):
            with LogContext.bind(ledger="main"):
                pass

    def test_nested_bind_restores_each_level(self):
        with LogContext.bind(scope_key="BookA", document_type=DocumentType.CHEQUE):
            with LogContext.bind(document_type=DocumentType.VOUCHER, document_id="v-1"):
                assert LogContext.get_all() == {
                    "scope_key": "BookA",
                    "document_type": "voucher",
                    "document_id": "v-1",
                }
            assert LogContext.get_all() == {"scope_key": "BookA", "document_type": "cheque"}
        assert LogContext.get_all() == {}

    def test_bind_restores_after_exception(self):
        with pytest.raises(ValueError):
            with LogContext.bind(document_id="d-1"):
                raise ValueError("boom")
        assert "document_id" not in LogContext.get_all()


# ---------------------------------------------------------------------------
# configure_logging / reset_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_second_call_installs_nothing(self):
        first, first_stream = _make_handler()
        configure_logging(handler=first)
        second, second_stream = _make_handler()
        configure_logging(handler=second)

        assert _structured_handlers() == [first]
        get_logger("test").info("once")
        assert [r["message"] for r in _lines(first_stream)] == ["once"]
        assert second_stream.getvalue() == ""

    def test_level_by_name(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level="debug")
        get_logger("services.sequence").debug("sequence_allocated")

        assert [r["message"] for r in _lines(stream)] == ["sequence_allocated"]

    def test_unknown_level_name_rejected(self):
        with pytest.raises(ValueError, match="LOUD"):
            configure_logging(level="LOUD")
        assert _structured_handlers() == []

    def test_debug_suppressed_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.debug("sequence_allocated")
        logger.warning("sequence_contention")

        assert [r["message"] for r in _lines(stream)] == ["sequence_contention"]

    def test_reset_removes_only_installed_handler(self):
        foreign = logging.NullHandler()
        namespace = logging.getLogger("voucher_kernel")
        namespace.addHandler(foreign)
        try:
            handler, _ = _make_handler()
            configure_logging(handler=handler)
            reset_logging()
            assert handler not in namespace.handlers
            assert foreign in namespace.handlers
        finally:
            namespace.removeHandler(foreign)


# ---------------------------------------------------------------------------
# Events emitted by the services
# ---------------------------------------------------------------------------


class TestNumberingEvents:

    def test_create_binds_document_context(self, captured_logs, document_service, cheque_payload, actor_id):
        view = document_service.create_document(cheque_payload(), actor_id=actor_id)

        created = _by_message(captured_logs(), "document_created")
        assert created["document_id"] == str(view.id)
        assert created["document_type"] == "cheque"
        assert created["scope_key"] == "BookA"
        assert created["actor_id"] == str(actor_id)
        assert created["display_number"] == "CHQ000001"
        assert created["amount"] == "1000.00"

        allocated = _by_message(captured_logs(), "sequence_allocated")
        assert allocated["document_type"] == "cheque"
        assert "document_id" not in allocated
        assert LogContext.get_all() == {}

    def test_linked_voucher_logged_under_its_own_type(self, captured_logs, document_service, cheque_payload):
        view = document_service.create_document(
            cheque_payload(cheque_account_code="2100", counter_account_code="4010")
        )

        records = captured_logs()
        allocations = [r for r in records if r["message"] == "sequence_allocated"]
        assert [r["document_type"] for r in allocations] == ["cheque", "voucher"]

        linked = _by_message(records, "linked_voucher_created")
        assert linked["document_type"] == "voucher"
        assert linked["document_id"] == str(view.linked_voucher.id)
        assert linked["source_document_id"] == str(view.id)
        assert linked["display_number"] == "V00001"

    def test_void_binds_document_context(self, captured_logs, document_service, cheque_payload):
        view = document_service.create_document(cheque_payload())
        document_service.void_document(view.id)

        voided = _by_message(captured_logs(), "document_voided")
        assert voided["document_id"] == str(view.id)
        assert voided["document_type"] == "cheque"
        assert voided["scope_key"] == "BookA"
        assert voided["previous_status"] == "draft"

    def test_contention_and_rollback_carry_numbering_context(
        self, captured_logs, document_service, cheque_payload, actor_id, monkeypatch
    ):
        def _locked_out(self, doc_type, scope_key):
            raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("lock timeout"))

        monkeypatch.setattr(NumberSequenceService, "_reserve_locked", _locked_out)

        with pytest.raises(SequenceContentionError):
            document_service.create_document(cheque_payload(), actor_id=actor_id)

        records = captured_logs()
        contention = _by_message(records, "sequence_contention")
        assert contention["level"] == "WARNING"
        assert contention["document_type"] == "cheque"
        assert contention["scope_key"] == "BookA"
        assert contention["actor_id"] == str(actor_id)
        assert contention["reason"] == "Exception"

        rolled_back = _by_message(records, "transaction_rolled_back")
        assert rolled_back["level"] == "WARNING"
        assert rolled_back["document_type"] == "cheque"
        assert rolled_back["scope_key"] == "BookA"
        assert rolled_back["actor_id"] == str(actor_id)
        assert "document_id" not in rolled_back
        assert not any(r["message"] == "document_created" for r in records)

    def test_validation_failure_logged_without_context(self, captured_logs, document_service, cheque_payload):
        with pytest.raises(ValidationError):
            document_service.create_document(cheque_payload(amount="0"))

        failed = _by_message(captured_logs(), "document_validation_failed")
        assert [e["field"] for e in failed["field_errors"]] == ["amount"]
        assert "scope_key" not in failed
