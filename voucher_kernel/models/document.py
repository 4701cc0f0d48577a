"""
Module: voucher_kernel.models.document
Responsibility: ORM persistence for financial documents (vouchers, cheques)
    and their voucher lines.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value enums only.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Number uniqueness: UNIQUE(document_type, scope_key, number).  This is
      the last line of defence behind the locked counter row.
    - Immutability of number, type, scope, amount and date once inserted,
      and of everything once VOID (ORM listeners in db/immutability.py).

Failure modes:
    - IntegrityError on a duplicate (document_type, scope_key, number).
    - ImmutabilityViolationError on forbidden UPDATE/DELETE.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from voucher_kernel.db.base import TrackedBase, UUIDString
from voucher_kernel.db.types import Money
from voucher_kernel.domain.documents import DocumentStatus, DocumentType


class FinancialDocument(TrackedBase):
    """
    Voucher or cheque header row.

    Contract:
        ``number`` is reserved from NumberSequenceService inside the same
        transaction as the INSERT of this row.  It is never recomputed.

    Non-goals:
        Balance of voucher lines is NOT re-checked here; validation runs
        before the row is built.
    """

    __tablename__ = "financial_documents"

    __table_args__ = (
        UniqueConstraint(
            "document_type", "scope_key", "number", name="uq_document_number"
        ),
        Index("idx_document_scope", "document_type", "scope_key"),
        Index("idx_document_date", "document_date"),
        Index("idx_document_status", "status"),
        Index("idx_document_source", "source_document_id"),
    )

    document_type: Mapped[DocumentType] = mapped_column(
        String(20),
        nullable=False,
    )

    # Book / branch / fiscal period the number sequence belongs to
    scope_key: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    number: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    # Policy-rendered number, e.g. V00012
    display_number: Mapped[str] = mapped_column(
        String(60),
        nullable=False,
    )

    # Signed; non-zero. For vouchers, the debit total.
    amount: Mapped[Decimal] = mapped_column(
        Money(),
        nullable=False,
    )

    document_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    status: Mapped[DocumentStatus] = mapped_column(
        String(10),
        default=DocumentStatus.DRAFT,
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Cheque particulars
    cheque_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    branch_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    drawer: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payee: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Cheque a voucher was issued for, set only on linked vouchers
    source_document_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("financial_documents.id"),
        nullable=True,
    )

    lines: Mapped[list["DocumentLineModel"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentLineModel.line_no",
    )

    def __repr__(self) -> str:
        return f"<FinancialDocument {self.display_number} status={self.status}>"


class DocumentLineModel(TrackedBase):
    """
    One debit or credit row of a voucher.

    Lines are written once with their parent and never updated or deleted.
    """

    __tablename__ = "financial_document_lines"

    __table_args__ = (
        UniqueConstraint("document_id", "line_no", name="uq_document_line_no"),
        Index("idx_line_document", "document_id"),
        Index("idx_line_account", "account_code"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("financial_documents.id"),
        nullable=False,
    )

    # Position within the voucher (0-based, deterministic ordering)
    line_no: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    account_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    debit: Mapped[Decimal] = mapped_column(
        Money(),
        nullable=False,
        default=Decimal("0"),
    )

    credit: Mapped[Decimal] = mapped_column(
        Money(),
        nullable=False,
        default=Decimal("0"),
    )

    description: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    document: Mapped["FinancialDocument"] = relationship(
        back_populates="lines",
    )

    def __repr__(self) -> str:
        return f"<DocumentLine {self.line_no} {self.account_code}>"
