"""
Validation -- turn a raw document payload into a ``DocumentDraft``.

Responsibility:
    Pure, fail-fast checks that run before any transaction is opened.  Every
    rule violation is collected (not just the first) and reported together
    in a single ``ValidationError``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by
    DocumentService.create_document before it touches storage.

Rules:
    - ``document_type`` is a known DocumentType.
    - ``scope_key`` is a non-empty string of at most 50 characters.
    - ``date`` is a calendar date (ISO string or date); no past/future limit.
    - ``status`` (optional) is ``draft`` or ``posted``.
    - Cheque: ``amount`` is a non-zero Decimal; no lines.  With
      ``cheque_account_code`` and ``counter_account_code`` (both or neither)
      and a ``cheque_kind``, the draft also carries a balanced two-line
      voucher for the absolute cheque amount.
    - Voucher: non-empty ``lines``; each line has an account code and
      non-negative debit/credit with exactly one side positive; total
      debits == total credits exactly.  ``amount``, when given, must equal
      the debit total.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from voucher_kernel.db.types import money_from_value
from voucher_kernel.domain.documents import (
    CREATABLE_STATUSES,
    ChequeDetails,
    ChequeKind,
    DocumentDraft,
    DocumentLine,
    DocumentStatus,
    DocumentType,
)
from voucher_kernel.exceptions import ValidationError

SCOPE_KEY_MAX_LENGTH = 50
ACCOUNT_CODE_MAX_LENGTH = 50
DESCRIPTION_MAX_LENGTH = 500
NAME_MAX_LENGTH = 200

_ZERO = Decimal("0")


class _Errors:
    """Accumulates field errors in payload order."""

    def __init__(self) -> None:
        self.items: list[dict] = []

    def add(self, field: str, message: str) -> None:
        self.items.append({"field": field, "message": message})

    def __bool__(self) -> bool:
        return bool(self.items)


def parse_date(value: Any) -> date:
    """Parse an ISO ``YYYY-MM-DD`` string or date; datetimes are truncated."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip())
    raise ValueError(f"Cannot parse date from {value!r}")


def _optional_text(
    payload: Mapping[str, Any],
    key: str,
    errors: _Errors,
    max_length: int,
    field: str | None = None,
) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        errors.add(field or key, "must be a string")
        return None
    value = value.strip()
    if len(value) > max_length:
        errors.add(field or key, f"must be at most {max_length} characters")
        return None
    return value or None


def _parse_enum(enum_cls, value: Any, field: str, errors: _Errors):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        errors.add(field, f"must be one of: {allowed}")
        return None


def _parse_line(index: int, raw: Any, errors: _Errors) -> DocumentLine | None:
    prefix = f"lines[{index}]"
    if not isinstance(raw, Mapping):
        errors.add(prefix, "must be an object")
        return None

    account_code = raw.get("account_code")
    if not isinstance(account_code, str) or not account_code.strip():
        errors.add(f"{prefix}.account_code", "is required")
        account_code = None
    elif len(account_code.strip()) > ACCOUNT_CODE_MAX_LENGTH:
        errors.add(
            f"{prefix}.account_code",
            f"must be at most {ACCOUNT_CODE_MAX_LENGTH} characters",
        )
        account_code = None

    sides: dict[str, Decimal | None] = {}
    for side in ("debit", "credit"):
        raw_amount = raw.get(side)
        if raw_amount is None:
            sides[side] = _ZERO
            continue
        try:
            amount = money_from_value(raw_amount)
        except ValueError as exc:
            errors.add(f"{prefix}.{side}", str(exc))
            sides[side] = None
            continue
        if amount < _ZERO:
            errors.add(f"{prefix}.{side}", "must not be negative")
            sides[side] = None
            continue
        sides[side] = amount

    debit, credit = sides["debit"], sides["credit"]
    if debit is not None and credit is not None:
        if debit == _ZERO and credit == _ZERO:
            errors.add(prefix, "must have a positive debit or credit")
        elif debit > _ZERO and credit > _ZERO:
            errors.add(prefix, "cannot carry both a debit and a credit")

    description = _optional_text(
        raw, "description", errors, DESCRIPTION_MAX_LENGTH, f"{prefix}.description"
    )

    if account_code is None or debit is None or credit is None:
        return None
    return DocumentLine(
        account_code=account_code.strip(),
        debit=debit,
        credit=credit,
        description=description,
    )


def validate_payload(payload: Mapping[str, Any]) -> DocumentDraft:
    """
    Validate a raw payload and return an immutable draft.

    Preconditions:
        ``payload`` is a mapping (typically decoded JSON).
    Postconditions:
        The returned draft satisfies every rule in the module docstring.

    Raises:
        ValidationError: With one entry per violated rule.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError([{"field": "payload", "message": "must be an object"}])

    errors = _Errors()

    document_type = None
    if payload.get("document_type") is None:
        errors.add("document_type", "is required")
    else:
        document_type = _parse_enum(
            DocumentType, payload["document_type"], "document_type", errors
        )

    scope_key = payload.get("scope_key")
    if not isinstance(scope_key, str) or not scope_key.strip():
        errors.add("scope_key", "is required")
        scope_key = None
    else:
        scope_key = scope_key.strip()
        if len(scope_key) > SCOPE_KEY_MAX_LENGTH:
            errors.add(
                "scope_key", f"must be at most {SCOPE_KEY_MAX_LENGTH} characters"
            )
            scope_key = None

    document_date = None
    if payload.get("date") is None:
        errors.add("date", "is required")
    else:
        try:
            document_date = parse_date(payload["date"])
        except ValueError:
            errors.add("date", "must be a valid calendar date (YYYY-MM-DD)")

    status = DocumentStatus.DRAFT
    if payload.get("status") is not None:
        status = _parse_enum(DocumentStatus, payload["status"], "status", errors)
        if status is not None and status not in CREATABLE_STATUSES:
            errors.add("status", "documents can only be created as draft or posted")

    description = _optional_text(payload, "description", errors, DESCRIPTION_MAX_LENGTH)

    amount: Decimal | None = None
    if payload.get("amount") is not None:
        try:
            amount = money_from_value(payload["amount"])
        except ValueError as exc:
            errors.add("amount", str(exc))

    raw_lines = payload.get("lines")
    lines: tuple[DocumentLine, ...] = ()
    cheque: ChequeDetails | None = None
    voucher_lines: tuple[DocumentLine, ...] = ()

    if document_type is DocumentType.CHEQUE:
        if payload.get("amount") is None:
            errors.add("amount", "is required for cheques")
        elif amount is not None and amount == _ZERO:
            errors.add("amount", "must be non-zero")
        if raw_lines:
            errors.add("lines", "cheques do not carry lines")
        cheque = _parse_cheque_details(payload, errors)
        voucher_lines = _cheque_voucher_lines(payload, cheque.kind, amount, errors)

    elif document_type is DocumentType.VOUCHER:
        if (
            raw_lines is None
            or isinstance(raw_lines, (str, bytes, Mapping))
            or not isinstance(raw_lines, Sequence)
            or len(raw_lines) == 0
        ):
            errors.add("lines", "a voucher needs at least one line")
        else:
            parsed = [_parse_line(i, raw, errors) for i, raw in enumerate(raw_lines)]
            if all(line is not None for line in parsed):
                lines = tuple(parsed)
                debits = sum((line.debit for line in lines), _ZERO)
                credits = sum((line.credit for line in lines), _ZERO)
                if debits != credits:
                    errors.add(
                        "lines",
                        f"voucher is unbalanced: debits={debits} credits={credits}",
                    )
                elif amount is not None and amount != debits:
                    errors.add("amount", f"must equal the debit total {debits}")
                amount = debits

    if errors:
        raise ValidationError(errors.items)

    linked_voucher = None
    if voucher_lines:
        linked_voucher = DocumentDraft(
            document_type=DocumentType.VOUCHER,
            scope_key=scope_key,
            amount=voucher_lines[0].debit,
            document_date=document_date,
            status=status,
            lines=voucher_lines,
        )

    return DocumentDraft(
        document_type=document_type,
        scope_key=scope_key,
        amount=amount,
        document_date=document_date,
        status=status,
        lines=lines,
        description=description,
        cheque=cheque,
        linked_voucher=linked_voucher,
    )


def check_draft(draft: DocumentDraft) -> DocumentDraft:
    """
    Re-check a draft that was built by hand rather than by validate_payload.

    Covers the rules that keep stored numbers meaningful: a non-zero amount,
    a creatable status, balanced voucher lines whose debit total is the
    amount, no lines on cheques, and a linked voucher only on a cheque.

    Raises:
        ValidationError: With one entry per violated rule.
    """
    errors = _Errors()
    _check_draft(draft, errors, "")
    if draft.linked_voucher is not None:
        if draft.document_type is not DocumentType.CHEQUE:
            errors.add("linked_voucher", "only cheques carry a linked voucher")
        elif draft.linked_voucher.document_type is not DocumentType.VOUCHER:
            errors.add("linked_voucher.document_type", "must be voucher")
        else:
            _check_draft(draft.linked_voucher, errors, "linked_voucher.")
            if (
                isinstance(draft.amount, Decimal)
                and draft.linked_voucher.amount != abs(draft.amount)
            ):
                errors.add("linked_voucher.amount", "must equal the cheque amount")
            if draft.linked_voucher.linked_voucher is not None:
                errors.add("linked_voucher.linked_voucher", "cannot be nested")
    if errors:
        raise ValidationError(errors.items)
    return draft


def _check_draft(draft: DocumentDraft, errors: _Errors, prefix: str) -> None:
    if not isinstance(draft.document_type, DocumentType):
        errors.add(f"{prefix}document_type", "must be a DocumentType")
        return
    if not draft.scope_key or len(draft.scope_key) > SCOPE_KEY_MAX_LENGTH:
        errors.add(
            f"{prefix}scope_key",
            f"must be 1 to {SCOPE_KEY_MAX_LENGTH} characters",
        )
    if not isinstance(draft.status, DocumentStatus) or draft.status not in CREATABLE_STATUSES:
        errors.add(f"{prefix}status", "documents can only be created as draft or posted")
    if (
        not isinstance(draft.amount, Decimal)
        or not draft.amount.is_finite()
        or draft.amount == _ZERO
    ):
        errors.add(f"{prefix}amount", "must be a finite non-zero Decimal")

    if draft.document_type is DocumentType.CHEQUE:
        if draft.lines:
            errors.add(f"{prefix}lines", "cheques do not carry lines")
        return

    if not draft.lines:
        errors.add(f"{prefix}lines", "a voucher needs at least one line")
        return
    for index, line in enumerate(draft.lines):
        field = f"{prefix}lines[{index}]"
        if not line.account_code:
            errors.add(f"{field}.account_code", "is required")
        if line.debit < _ZERO or line.credit < _ZERO:
            errors.add(field, "must not be negative")
        elif (line.debit > _ZERO) == (line.credit > _ZERO):
            errors.add(field, "must have exactly one positive side")
    if draft.total_debits != draft.total_credits:
        errors.add(
            f"{prefix}lines",
            f"voucher is unbalanced: debits={draft.total_debits} "
            f"credits={draft.total_credits}",
        )
    elif draft.amount != draft.total_debits:
        errors.add(f"{prefix}amount", f"must equal the debit total {draft.total_debits}")


def _account_code(payload: Mapping[str, Any], key: str, errors: _Errors) -> str | None:
    """Stripped code, None when absent, "" when present but invalid."""
    raw = payload.get(key)
    if raw is None:
        return None
    if not isinstance(raw, str) or not raw.strip():
        errors.add(key, "must be a non-empty account code")
        return ""
    if len(raw.strip()) > ACCOUNT_CODE_MAX_LENGTH:
        errors.add(key, f"must be at most {ACCOUNT_CODE_MAX_LENGTH} characters")
        return ""
    return raw.strip()


def _cheque_voucher_lines(
    payload: Mapping[str, Any],
    kind: ChequeKind | None,
    amount: Decimal | None,
    errors: _Errors,
) -> tuple[DocumentLine, ...]:
    """
    Lines of the voucher that records a cheque in the books.

    Payable: debit the cheque account, credit the payee's counter account.
    Receivable: debit the drawer's counter account, credit the cheque account.
    """
    cheque_account = _account_code(payload, "cheque_account_code", errors)
    counter_account = _account_code(payload, "counter_account_code", errors)
    if cheque_account is None and counter_account is None:
        return ()

    if cheque_account is None:
        errors.add("cheque_account_code", "is required with counter_account_code")
    if counter_account is None:
        errors.add("counter_account_code", "is required with cheque_account_code")
    if cheque_account and cheque_account == counter_account:
        errors.add("counter_account_code", "must differ from cheque_account_code")
    if payload.get("cheque_kind") is None:
        errors.add("cheque_kind", "is required to issue a voucher for the cheque")

    if not (cheque_account and counter_account and kind and amount):
        return ()
    if cheque_account == counter_account:
        return ()

    value = abs(amount)
    if kind is ChequeKind.PAYABLE:
        debit_account, credit_account = cheque_account, counter_account
    else:
        debit_account, credit_account = counter_account, cheque_account
    return (
        DocumentLine(account_code=debit_account, debit=value),
        DocumentLine(account_code=credit_account, credit=value),
    )


def _parse_cheque_details(
    payload: Mapping[str, Any], errors: _Errors
) -> ChequeDetails:
    kind = None
    if payload.get("cheque_kind") is not None:
        kind = _parse_enum(ChequeKind, payload["cheque_kind"], "cheque_kind", errors)

    due_date = None
    if payload.get("due_date") is not None:
        try:
            due_date = parse_date(payload["due_date"])
        except ValueError:
            errors.add("due_date", "must be a valid calendar date (YYYY-MM-DD)")

    return ChequeDetails(
        kind=kind,
        bank_name=_optional_text(payload, "bank_name", errors, NAME_MAX_LENGTH),
        branch_name=_optional_text(payload, "branch_name", errors, NAME_MAX_LENGTH),
        due_date=due_date,
        drawer=_optional_text(payload, "drawer", errors, NAME_MAX_LENGTH),
        payee=_optional_text(payload, "payee", errors, NAME_MAX_LENGTH),
    )
