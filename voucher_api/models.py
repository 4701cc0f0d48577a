"""Pydantic models for the voucher service REST API."""

import datetime as dt
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from voucher_kernel.domain.documents import (
    ChequeKind,
    DocumentStatus,
    DocumentType,
    FinancialDocumentView,
)


# Request Models


class DocumentLineIn(BaseModel):
    """One voucher row. Exactly one of debit/credit must be positive."""

    model_config = ConfigDict(extra="forbid")

    account_code: str = Field(..., description="Ledger account code")
    debit: Decimal = Field(default=Decimal("0"), description="Debit amount")
    credit: Decimal = Field(default=Decimal("0"), description="Credit amount")
    description: Optional[str] = None


class _DocumentFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    scope_key: str = Field(..., description="Book, branch or fiscal period of the sequence")
    date: dt.date = Field(..., description="Transaction date (YYYY-MM-DD)")
    status: Optional[DocumentStatus] = Field(
        default=None, description="draft (default) or posted"
    )
    description: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Plain mapping for DocumentService.create_document."""
        return self.model_dump(exclude_none=True)


class _ChequeFields(BaseModel):
    amount: Optional[Decimal] = Field(default=None, description="Non-zero cheque amount")
    cheque_kind: Optional[ChequeKind] = None
    bank_name: Optional[str] = None
    branch_name: Optional[str] = None
    due_date: Optional[dt.date] = None
    drawer: Optional[str] = None
    payee: Optional[str] = None
    cheque_account_code: Optional[str] = Field(
        default=None, description="Cheques payable/receivable account of the linked voucher"
    )
    counter_account_code: Optional[str] = Field(
        default=None, description="Payee (payable) or drawer (receivable) account"
    )


class CreateChequeRequest(_ChequeFields, _DocumentFields):
    """Request to create a cheque."""

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["document_type"] = DocumentType.CHEQUE
        return payload


class CreateVoucherRequest(_DocumentFields):
    """Request to create a balanced voucher."""

    lines: List[DocumentLineIn] = Field(default_factory=list)
    amount: Optional[Decimal] = Field(
        default=None, description="Optional; must equal the debit total"
    )

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["document_type"] = DocumentType.VOUCHER
        return payload


class CreateDocumentRequest(_ChequeFields, _DocumentFields):
    """Request to create a document of either type."""

    document_type: DocumentType
    lines: Optional[List[DocumentLineIn]] = None


# Response Models


class DocumentLineOut(BaseModel):
    account_code: str
    debit: Decimal
    credit: Decimal
    description: Optional[str] = None


class ChequeOut(BaseModel):
    kind: Optional[ChequeKind] = None
    bank_name: Optional[str] = None
    branch_name: Optional[str] = None
    due_date: Optional[dt.date] = None
    drawer: Optional[str] = None
    payee: Optional[str] = None


class DocumentResponse(BaseModel):
    """A persisted voucher or cheque."""

    id: UUID
    number: int
    display_number: str
    document_type: DocumentType
    scope_key: str
    amount: Decimal
    date: dt.date
    status: DocumentStatus
    description: Optional[str] = None
    created_by_id: UUID
    created_at: Optional[dt.datetime] = None
    voided_at: Optional[dt.datetime] = None
    lines: List[DocumentLineOut] = Field(default_factory=list)
    cheque: Optional[ChequeOut] = None
    source_document_id: Optional[UUID] = Field(
        default=None, description="Cheque this voucher was issued for"
    )
    linked_voucher: Optional["DocumentResponse"] = None

    @classmethod
    def from_view(cls, view: FinancialDocumentView) -> "DocumentResponse":
        return cls(
            id=view.id,
            number=view.number,
            display_number=view.display_number,
            document_type=view.document_type,
            scope_key=view.scope_key,
            amount=view.amount,
            date=view.document_date,
            status=view.status,
            description=view.description,
            created_by_id=view.created_by_id,
            created_at=view.created_at,
            voided_at=view.voided_at,
            lines=[
                DocumentLineOut(
                    account_code=line.account_code,
                    debit=line.debit,
                    credit=line.credit,
                    description=line.description,
                )
                for line in view.lines
            ],
            cheque=(
                ChequeOut(
                    kind=view.cheque.kind,
                    bank_name=view.cheque.bank_name,
                    branch_name=view.cheque.branch_name,
                    due_date=view.cheque.due_date,
                    drawer=view.cheque.drawer,
                    payee=view.cheque.payee,
                )
                if view.cheque is not None
                else None
            ),
            source_document_id=view.source_document_id,
            linked_voucher=(
                cls.from_view(view.linked_voucher)
                if view.linked_voucher is not None
                else None
            ),
        )


class ErrorBody(BaseModel):
    code: str
    message: str
    retryable: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Envelope for every non-2xx response."""

    error: ErrorBody


class HealthResponse(BaseModel):
    status: str
    service: str
