"""
Documents -- immutable value types for vouchers and cheques.

Responsibility:
    Defines the enumerated document variants, the lifecycle statuses and
    their allowed transitions, and the frozen ``DocumentDraft`` produced by
    validation and consumed by the creation service.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - A draft's voucher lines balance (sum of debits == sum of credits).
      ``validation.validate_payload`` builds drafts from raw payloads and
      ``validation.check_draft`` re-checks drafts built by hand.
    - Status lifecycle: DRAFT | POSTED at creation, -> VOID, never back.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class DocumentType(str, Enum):
    """Kind of financial document; each has its own number sequences."""

    VOUCHER = "voucher"
    CHEQUE = "cheque"


class DocumentStatus(str, Enum):
    """Lifecycle status of a financial document.

    Contract: created as DRAFT or POSTED; a DRAFT may be POSTED; either
    may become VOID.
    Guarantees: VOID is terminal.
    """

    DRAFT = "draft"
    POSTED = "posted"
    VOID = "void"


class ChequeKind(str, Enum):
    """Direction of a cheque relative to the book that records it."""

    PAYABLE = "payable"
    RECEIVABLE = "receivable"


ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.DRAFT: frozenset({DocumentStatus.POSTED, DocumentStatus.VOID}),
    DocumentStatus.POSTED: frozenset({DocumentStatus.VOID}),
    DocumentStatus.VOID: frozenset(),
}

CREATABLE_STATUSES: frozenset[DocumentStatus] = frozenset(
    {DocumentStatus.DRAFT, DocumentStatus.POSTED}
)


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    """Return True iff ``current -> target`` is a permitted lifecycle move."""
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True, slots=True)
class DocumentLine:
    """One debit or credit row of a voucher.

    Exactly one of ``debit``/``credit`` is positive; the other is zero.
    """

    account_code: str
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    description: str | None = None


@dataclass(frozen=True, slots=True)
class ChequeDetails:
    """Optional particulars printed on a cheque."""

    kind: ChequeKind | None = None
    bank_name: str | None = None
    branch_name: str | None = None
    due_date: date | None = None
    drawer: str | None = None
    payee: str | None = None


@dataclass(frozen=True, slots=True)
class DocumentDraft:
    """A validated, not-yet-numbered document."""

    document_type: DocumentType
    scope_key: str
    amount: Decimal
    document_date: date
    status: DocumentStatus = DocumentStatus.DRAFT
    lines: tuple[DocumentLine, ...] = ()
    description: str | None = None
    cheque: ChequeDetails | None = None
    # Voucher recording a cheque, numbered and stored with it
    linked_voucher: DocumentDraft | None = None

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal("0"))


@dataclass(frozen=True)
class FinancialDocumentView:
    """Read-only snapshot of a persisted document returned to callers."""

    id: UUID
    number: int
    display_number: str
    document_type: DocumentType
    scope_key: str
    amount: Decimal
    document_date: date
    status: DocumentStatus
    created_by_id: UUID
    created_at: datetime | None = None
    voided_at: datetime | None = None
    description: str | None = None
    lines: tuple[DocumentLine, ...] = ()
    cheque: ChequeDetails | None = None
    source_document_id: UUID | None = None
    linked_voucher: FinancialDocumentView | None = None
