"""
DocumentService -- validate, number, and persist one financial document.

Responsibility:
    The externally invoked creation workflow.  Turns a raw payload into a
    committed voucher or cheque with a freshly reserved number, as one
    atomic unit.  Also reads documents back, posts drafts and voids them.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the HTTP adapter
    (voucher_api) with one session per request.

Procedure (create_document):
    1. validate_payload, or check_draft for a hand-built draft (pure; no
       transaction is touched on failure)
    2. NumberSequenceService.reserve_next  (same transaction)
    3. build FinancialDocument + lines, INSERT, flush
    3a. cheque with a linked voucher: reserve the voucher number, INSERT
        the voucher pointing back at the cheque, flush
    4. commit

Failure modes:
    - ValidationError: step 1 failed; nothing was touched.
    - SequenceContentionError: step 2 failed; rolled back; safe to retry.
    - PersistenceError: steps 3-4 failed; rolled back together with every
      counter update, so the reserved numbers are released, not leaked.
    - Any other exception (including KeyboardInterrupt / task
      cancellation) also rolls back before propagating.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.domain.documents import (
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
from voucher_kernel.domain.validation import check_draft, validate_payload
from voucher_kernel.exceptions import (
    DocumentNotFoundError,
    InvalidStatusTransitionError,
    LinkedVoucherNotFoundError,
    PersistenceError,
    ValidationError,
    VoucherKernelError,
)
from voucher_kernel.logging_config import LogContext, get_logger
from voucher_kernel.models.document import DocumentLineModel, FinancialDocument
from voucher_kernel.services.sequence_service import (
    NumberingStrategy,
    NumberSequenceService,
)

logger = get_logger("services.document")

# Recorded as creator when the caller does not identify itself.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


class DocumentService:
    """
    Creates, reads, posts and voids vouchers and cheques.

    Contract:
        By default every public method defines its own transaction boundary:
        commit on success, rollback on failure.  With ``auto_commit=False``
        the caller owns the transaction and nothing is committed or rolled
        back here.

    Guarantees:
        - A returned view always corresponds to a committed row with a
          committed number (when auto_commit=True).
        - On failure neither the document nor the counter advance is
          committed.

    Non-goals:
        - Does NOT retry on SequenceContentionError; the caller decides.
        - Does NOT list or edit documents.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policies: Mapping[DocumentType, NumberingPolicy] | None = None,
        strategy: NumberingStrategy = NumberingStrategy.LOCKED,
        max_retries: int = NumberSequenceService.DEFAULT_MAX_RETRIES,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policies = dict(policies) if policies else None
        self._auto_commit = auto_commit
        self._numbers = NumberSequenceService(
            session, strategy=strategy, max_retries=max_retries
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_document(
        self,
        payload: Mapping[str, Any] | DocumentDraft,
        actor_id: UUID | None = None,
    ) -> FinancialDocumentView:
        """
        Validate, number, and persist one document atomically.

        A cheque draft that carries a linked voucher is stored together with
        that voucher: both numbers are reserved and both rows inserted in
        the same transaction, so they commit or roll back as one.

        Args:
            payload: Raw payload mapping (decoded JSON) or a DocumentDraft.
                Drafts are re-checked with ``check_draft``.
            actor_id: Who is creating the document.  Defaults to
                SYSTEM_ACTOR_ID.

        Returns:
            View of the committed document including ``id`` and ``number``;
            for a cheque with a linked voucher, ``linked_voucher`` is set.

        Raises:
            ValidationError, SequenceContentionError, PersistenceError.
        """
        try:
            if isinstance(payload, DocumentDraft):
                draft = check_draft(payload)
            else:
                draft = validate_payload(payload)
        except ValidationError as exc:
            logger.info(
                "document_validation_failed",
                extra={"field_errors": exc.field_errors},
            )
            raise

        actor = actor_id or SYSTEM_ACTOR_ID

        with LogContext.bind(
            scope_key=draft.scope_key,
            actor_id=actor,
            document_type=draft.document_type,
        ):
            try:
                record = self._insert(draft, actor)
                linked = None
                if draft.linked_voucher is not None:
                    linked = self._insert(
                        replace(
                            draft.linked_voucher,
                            description=draft.linked_voucher.description
                            or f"Cheque {record.display_number}",
                        ),
                        actor,
                        source=record,
                    )
                view = to_view(record, linked_voucher=to_view(linked) if linked else None)
                if self._auto_commit:
                    self._session.commit()
            except VoucherKernelError:
                self._rollback()
                raise
            except SQLAlchemyError as exc:
                self._rollback()
                raise PersistenceError(
                    "create_document", str(getattr(exc, "orig", None) or exc)
                ) from exc
            except BaseException:
                self._rollback()
                raise

            with LogContext.bind(document_id=view.id):
                logger.info(
                    "document_created",
                    extra={
                        "number": view.number,
                        "display_number": view.display_number,
                        "status": view.status.value,
                        "amount": view.amount,
                    },
                )
            if view.linked_voucher is not None:
                voucher = view.linked_voucher
                with LogContext.bind(
                    document_type=voucher.document_type, document_id=voucher.id
                ):
                    logger.info(
                        "linked_voucher_created",
                        extra={
                            "source_document_id": view.id,
                            "number": voucher.number,
                            "display_number": voucher.display_number,
                        },
                    )
        return view

    def _insert(
        self,
        draft: DocumentDraft,
        actor: UUID,
        source: FinancialDocument | None = None,
    ) -> FinancialDocument:
        """Reserve the next number for the draft's key and flush its row."""
        with LogContext.bind(document_type=draft.document_type):
            number = self._numbers.reserve_next(draft.document_type, draft.scope_key)
        record = self._build_record(draft, number, actor)
        record.source_document_id = source.id if source is not None else None
        self._session.add(record)
        self._session.flush()
        return record

    def _build_record(
        self, draft: DocumentDraft, number: int, actor: UUID
    ) -> FinancialDocument:
        record = FinancialDocument(
            document_type=draft.document_type.value,
            scope_key=draft.scope_key,
            number=number,
            display_number=format_document_number(
                draft.document_type, number, self._policies
            ),
            amount=draft.amount,
            document_date=draft.document_date,
            status=draft.status.value,
            description=draft.description,
            created_by_id=actor,
        )
        if draft.cheque is not None:
            record.cheque_kind = draft.cheque.kind.value if draft.cheque.kind else None
            record.bank_name = draft.cheque.bank_name
            record.branch_name = draft.cheque.branch_name
            record.due_date = draft.cheque.due_date
            record.drawer = draft.cheque.drawer
            record.payee = draft.cheque.payee
        record.lines = [
            DocumentLineModel(
                line_no=index,
                account_code=line.account_code,
                debit=line.debit,
                credit=line.credit,
                description=line.description,
                created_by_id=actor,
            )
            for index, line in enumerate(draft.lines)
        ]
        return record

    # ------------------------------------------------------------------
    # Read / lifecycle
    # ------------------------------------------------------------------

    def get_document(self, document_id: UUID | str) -> FinancialDocumentView:
        """
        Load one document by id.

        Raises:
            DocumentNotFoundError: No document with that id.
        """
        record = self._session.get(FinancialDocument, self._parse_id(document_id))
        if record is None:
            raise DocumentNotFoundError(str(document_id))
        linked = self._find_linked_voucher(record)
        return to_view(record, linked_voucher=to_view(linked) if linked else None)

    def get_linked_voucher(self, cheque_id: UUID | str) -> FinancialDocumentView:
        """
        Load the voucher that was issued together with a cheque.

        Raises:
            DocumentNotFoundError: No cheque with that id.
            LinkedVoucherNotFoundError: The cheque has no voucher.
        """
        record = self._session.get(FinancialDocument, self._parse_id(cheque_id))
        if record is None or record.document_type != DocumentType.CHEQUE.value:
            raise DocumentNotFoundError(str(cheque_id))
        linked = self._find_linked_voucher(record)
        if linked is None:
            raise LinkedVoucherNotFoundError(str(record.id))
        return to_view(linked)

    def _find_linked_voucher(self, record: FinancialDocument) -> FinancialDocument | None:
        if record.document_type != DocumentType.CHEQUE.value:
            return None
        return self._session.execute(
            select(FinancialDocument)
            .where(FinancialDocument.source_document_id == record.id)
            .where(FinancialDocument.document_type == DocumentType.VOUCHER.value)
        ).scalar_one_or_none()

    def post_document(
        self, document_id: UUID | str, actor_id: UUID | None = None
    ) -> FinancialDocumentView:
        """
        Move a draft document to POSTED.

        Raises:
            DocumentNotFoundError: No document with that id.
            InvalidStatusTransitionError: Document is not a draft.
            PersistenceError: Storage failure; nothing changed.
        """
        return self._transition(document_id, DocumentStatus.POSTED, actor_id)

    def void_document(
        self, document_id: UUID | str, actor_id: UUID | None = None
    ) -> FinancialDocumentView:
        """
        Move a draft or posted document to VOID.

        The number stays attached to the void document and is never
        reissued.

        Raises:
            DocumentNotFoundError: No document with that id.
            InvalidStatusTransitionError: Document is already void.
            PersistenceError: Storage failure; nothing changed.
        """
        return self._transition(document_id, DocumentStatus.VOID, actor_id)

    def _transition(
        self,
        document_id: UUID | str,
        target: DocumentStatus,
        actor_id: UUID | None,
    ) -> FinancialDocumentView:
        doc_id = self._parse_id(document_id)
        actor = actor_id or SYSTEM_ACTOR_ID
        operation = "void_document" if target is DocumentStatus.VOID else "post_document"

        with LogContext.bind(document_id=doc_id, actor_id=actor):
            view, previous = self._apply_transition(doc_id, target, actor, operation)
            with LogContext.bind(
                scope_key=view.scope_key, document_type=view.document_type
            ):
                logger.info(
                    "document_voided" if target is DocumentStatus.VOID else "document_posted",
                    extra={
                        "display_number": view.display_number,
                        "previous_status": previous.value,
                    },
                )
        return view

    def _apply_transition(
        self,
        doc_id: UUID,
        target: DocumentStatus,
        actor: UUID,
        operation: str,
    ) -> tuple[FinancialDocumentView, DocumentStatus]:
        try:
            record = self._session.execute(
                select(FinancialDocument)
                .where(FinancialDocument.id == doc_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if record is None:
                raise DocumentNotFoundError(str(doc_id))

            current = DocumentStatus(record.status)
            if not can_transition(current, target):
                raise InvalidStatusTransitionError(
                    str(doc_id), current.value, target.value
                )

            record.status = target.value
            if target is DocumentStatus.VOID:
                record.voided_at = self._clock.now()
            record.updated_by_id = actor
            self._session.flush()
            view = to_view(record)
            if self._auto_commit:
                self._session.commit()
        except VoucherKernelError:
            self._rollback()
            raise
        except SQLAlchemyError as exc:
            self._rollback()
            raise PersistenceError(
                operation, str(getattr(exc, "orig", None) or exc)
            ) from exc
        except BaseException:
            self._rollback()
            raise
        return view, current

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()
            logger.warning("transaction_rolled_back")

    @staticmethod
    def _parse_id(document_id: UUID | str) -> UUID:
        if isinstance(document_id, UUID):
            return document_id
        try:
            return UUID(str(document_id))
        except ValueError:
            raise DocumentNotFoundError(str(document_id)) from None


def to_view(
    record: FinancialDocument,
    linked_voucher: FinancialDocumentView | None = None,
) -> FinancialDocumentView:
    """Snapshot an ORM row into an immutable view."""
    document_type = DocumentType(record.document_type)
    cheque = None
    if document_type is DocumentType.CHEQUE:
        cheque = ChequeDetails(
            kind=ChequeKind(record.cheque_kind) if record.cheque_kind else None,
            bank_name=record.bank_name,
            branch_name=record.branch_name,
            due_date=record.due_date,
            drawer=record.drawer,
            payee=record.payee,
        )
    return FinancialDocumentView(
        id=record.id,
        number=record.number,
        display_number=record.display_number,
        document_type=document_type,
        scope_key=record.scope_key,
        amount=record.amount,
        document_date=record.document_date,
        status=DocumentStatus(record.status),
        created_by_id=record.created_by_id,
        created_at=record.created_at,
        voided_at=record.voided_at,
        description=record.description,
        lines=tuple(
            DocumentLine(
                account_code=line.account_code,
                debit=line.debit,
                credit=line.credit,
                description=line.description,
            )
            for line in sorted(record.lines, key=lambda line: line.line_no)
        ),
        cheque=cheque,
        source_document_id=record.source_document_id,
        linked_voucher=linked_voucher,
    )
