"""
ORM-Level Immutability Enforcement for financial documents.

===============================================================================
WHY THIS EXISTS
===============================================================================

A document number, once handed out and committed, identifies a real piece of
paper (a printed cheque, a filed voucher).  Changing the number, the amount,
or the book it belongs to after the fact would silently break the
numbering audit trail.  Voided documents stay on file with their number and
never come back to life.

SQLAlchemy fires events before UPDATE/DELETE statements reach the database.
These listeners intercept them and raise ImmutabilityViolationError, which
aborts the flush; the database is never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule
--------------------|-------------------------------------------------------
FinancialDocument   | number, display_number, document_type, scope_key,
                    | amount, document_date, source_document_id never
                    | change after INSERT
FinancialDocument   | status only moves along ALLOWED_TRANSITIONS
FinancialDocument   | nothing changes once VOID (except audit metadata)
FinancialDocument   | never deleted
DocumentLineModel   | never updated, never deleted

updated_at / updated_by_id are audit metadata and always allowed to change.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from voucher_kernel.domain.documents import DocumentStatus, can_transition
from voucher_kernel.exceptions import ImmutabilityViolationError
from voucher_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

FROZEN_DOCUMENT_FIELDS = frozenset(
    {
        "number",
        "display_number",
        "document_type",
        "scope_key",
        "amount",
        "document_date",
        "source_document_id",
    }
)

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _as_status(value) -> DocumentStatus:
    return value if isinstance(value, DocumentStatus) else DocumentStatus(value)


def _check_document_immutability(mapper, connection, target):
    """
    Block changes to frozen fields and illegal status moves.

    Status history tells us whether this flush is the void transition
    itself (old status DRAFT/POSTED, new VOID: allowed) or a change to an
    already-void document (old status VOID: blocked).
    """
    for field in FROZEN_DOCUMENT_FIELDS:
        if get_history(target, field).deleted:
            raise _blocked(
                "FinancialDocument",
                target.id,
                "UPDATE",
                f"Cannot modify field '{field}' on a numbered document",
                field=field,
            )

    status_history = get_history(target, "status")
    if status_history.deleted:
        old_status = _as_status(status_history.deleted[0])
        new_status = _as_status(target.status)
        if old_status != new_status and not can_transition(old_status, new_status):
            raise _blocked(
                "FinancialDocument",
                target.id,
                "UPDATE",
                f"Status cannot move from {old_status.value} to {new_status.value}",
                field="status",
            )
        was_void = old_status == DocumentStatus.VOID
    else:
        was_void = _as_status(target.status) == DocumentStatus.VOID

    if was_void:
        for attr in inspect(target).attrs:
            if attr.key in _AUDIT_FIELDS or attr.key == "lines":
                continue
            if attr.history.has_changes():
                raise _blocked(
                    "FinancialDocument",
                    target.id,
                    "UPDATE",
                    f"Cannot modify field '{attr.key}' on a void document",
                    field=attr.key,
                )


def _check_document_delete(mapper, connection, target):
    """Documents are voided, never deleted."""
    raise _blocked(
        "FinancialDocument",
        target.id,
        "DELETE",
        "Financial documents cannot be deleted; void them instead",
    )


def _check_line_immutability(mapper, connection, target):
    """Lines are written once with their parent."""
    raise _blocked(
        "DocumentLine",
        target.id,
        "UPDATE",
        "Document lines cannot be modified",
    )


def _check_line_delete(mapper, connection, target):
    raise _blocked(
        "DocumentLine",
        target.id,
        "DELETE",
        "Document lines cannot be deleted",
    )


_LISTENERS = (
    ("FinancialDocument", "before_update", _check_document_immutability),
    ("FinancialDocument", "before_delete", _check_document_delete),
    ("DocumentLineModel", "before_update", _check_line_immutability),
    ("DocumentLineModel", "before_delete", _check_line_delete),
)


def _models():
    from voucher_kernel.models.document import DocumentLineModel, FinancialDocument

    return {
        "FinancialDocument": FinancialDocument,
        "DocumentLineModel": DocumentLineModel,
    }


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).

    Call during application start-up, after models are importable and
    before any document is written.
    """
    models = _models()
    for model_name, event_name, listener in _LISTENERS:
        target = models[model_name]
        if not event.contains(target, event_name, listener):
            event.listen(target, event_name, listener)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to bypass the guards.
    """
    models = _models()
    for model_name, event_name, listener in _LISTENERS:
        target = models[model_name]
        if event.contains(target, event_name, listener):
            event.remove(target, event_name, listener)
