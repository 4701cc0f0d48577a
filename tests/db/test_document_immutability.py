"""
ORM immutability listeners on financial documents.

A numbered document keeps its number, amount, type, book and date forever;
a void document does not change at all; nothing is ever deleted.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest

from voucher_kernel.db.immutability import (
    FROZEN_DOCUMENT_FIELDS,
    register_immutability_listeners,
)
from voucher_kernel.exceptions import ImmutabilityViolationError
from voucher_kernel.models.document import DocumentLineModel, FinancialDocument


@pytest.fixture
def stored_cheque(session, document_service, cheque_payload):
    view = document_service.create_document(cheque_payload())
    return session.get(FinancialDocument, view.id)


@pytest.fixture
def stored_voucher(session, document_service, voucher_payload):
    view = document_service.create_document(voucher_payload())
    return session.get(FinancialDocument, view.id)


NEW_VALUES = {
    "number": 999,
    "display_number": "CHQ999999",
    "document_type": "voucher",
    "scope_key": "BookZ",
    "amount": Decimal("1.00"),
    "document_date": date(2030, 1, 1),
    "source_document_id": UUID("99999999-9999-4999-8999-999999999999"),
}


class TestFrozenFields:

    @pytest.mark.parametrize("field", sorted(FROZEN_DOCUMENT_FIELDS))
    def test_frozen_field_cannot_change(self, session, stored_cheque, field, captured_logs):
        setattr(stored_cheque, field, NEW_VALUES[field])

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        session.rollback()

        assert field in exc_info.value.reason
        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["field"] == field

    def test_mutable_fields_can_change_on_draft(self, session, stored_cheque):
        stored_cheque.description = "Reissued to correct payee spelling"
        stored_cheque.payee = "Acme Supplies Ltd"

        session.commit()

        session.refresh(stored_cheque)
        assert stored_cheque.payee == "Acme Supplies Ltd"


class TestStatusRules:

    def test_posted_cannot_return_to_draft(self, session, document_service, cheque_payload):
        view = document_service.create_document(cheque_payload(status="posted"))
        record = session.get(FinancialDocument, view.id)
        record.status = "draft"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_void_document_is_frozen(self, session, document_service, stored_cheque):
        document_service.void_document(stored_cheque.id)
        stored_cheque.payee = "Someone Else"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        session.rollback()

        assert "void" in exc_info.value.reason

    def test_void_document_cannot_be_revived(self, session, document_service, stored_cheque):
        document_service.void_document(stored_cheque.id)
        stored_cheque.status = "posted"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestDeletes:

    def test_document_cannot_be_deleted(self, session, stored_cheque):
        session.delete(stored_cheque)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_line_cannot_be_modified(self, session, stored_voucher):
        line = stored_voucher.lines[0]
        line.account_code = "9999"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_line_cannot_be_deleted(self, session, stored_voucher):
        session.delete(stored_voucher.lines[0])

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


def test_registration_is_idempotent(session, stored_voucher):
    register_immutability_listeners()
    register_immutability_listeners()

    line = session.get(DocumentLineModel, stored_voucher.lines[0].id)
    line.description = "edited"

    with pytest.raises(ImmutabilityViolationError):
        session.flush()
    session.rollback()
