"""Pure domain layer: document values, validation, numbering, clock."""

from voucher_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from voucher_kernel.domain.documents import (
    ALLOWED_TRANSITIONS,
    ChequeDetails,
    ChequeKind,
    DocumentDraft,
    DocumentLine,
    DocumentStatus,
    DocumentType,
    FinancialDocumentView,
    can_transition,
)
from voucher_kernel.domain.numbering import NumberingPolicy, format_document_number
from voucher_kernel.domain.validation import validate_payload

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ChequeDetails",
    "ChequeKind",
    "Clock",
    "DeterministicClock",
    "DocumentDraft",
    "DocumentLine",
    "DocumentStatus",
    "DocumentType",
    "FinancialDocumentView",
    "NumberingPolicy",
    "SystemClock",
    "can_transition",
    "format_document_number",
    "validate_payload",
]
