"""
Typed Exception Hierarchy for the Voucher Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the document creation workflow need to decide, without parsing
messages, whether a failure is the client's fault, a transient conflict that
can be retried, or an infrastructure fault.  Every exception therefore has:

  1. A TYPED class (catch by type, not message)
  2. A class-level CODE (machine-readable, API-safe)
  3. A class-level RETRYABLE flag (may the whole call be repeated as-is?)
  4. Structured DATA attributes (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    VoucherKernelError (base)
    |
    +-- ValidationError
    |
    +-- DocumentError
    |   +-- DocumentNotFoundError
    |   |   +-- LinkedVoucherNotFoundError
    |   +-- InvalidStatusTransitionError
    |
    +-- ConcurrencyError
    |   +-- SequenceContentionError
    |
    +-- PersistenceError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                       | HTTP | Retry | When Raised
---------------------------|------|-------|-------------------------------------
VALIDATION_ERROR           | 400  | no    | Payload fails a validation rule
DOCUMENT_NOT_FOUND         | 404  | no    | Document id doesn't exist
LINKED_VOUCHER_NOT_FOUND   | 404  | no    | Cheque has no linked voucher
INVALID_STATUS_TRANSITION  | 409  | no    | e.g. voiding a void document
SEQUENCE_CONTENTION        | 409  | yes   | Lock timeout / CAS retries exhausted
PERSISTENCE_ERROR          | 500  | no    | Storage failure; transaction rolled back
IMMUTABILITY_VIOLATION     | 409  | no    | Changing a number, amount, void doc...

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        view = service.create_document(payload)
    except ValidationError as e:
        return {"error": e.code, "fields": e.field_errors}
    except SequenceContentionError:
        # Nothing was committed; resubmit the same payload.
        view = service.create_document(payload)
"""


class VoucherKernelError(Exception):
    """
    Base exception for all voucher kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "VOUCHER_KERNEL_ERROR"
    retryable: bool = False


# Validation


class ValidationError(VoucherKernelError):
    """
    Payload failed one or more validation rules.

    Raised before any transaction is opened, so no state has changed.
    ``field_errors`` is a list of ``{"field": ..., "message": ...}`` dicts.
    """

    code: str = "VALIDATION_ERROR"

    def __init__(self, field_errors: list[dict]):
        self.field_errors = field_errors
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in field_errors)
        super().__init__(f"Document payload is invalid ({summary})")


# Document lifecycle


class DocumentError(VoucherKernelError):
    """Base exception for document lifecycle errors."""

    code: str = "DOCUMENT_ERROR"


class DocumentNotFoundError(DocumentError):
    """Document with given ID was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class LinkedVoucherNotFoundError(DocumentNotFoundError):
    """The cheque exists but no voucher was issued for it."""

    code: str = "LINKED_VOUCHER_NOT_FOUND"

    def __init__(self, cheque_id: str):
        self.document_id = cheque_id
        DocumentError.__init__(self, f"No voucher was issued for cheque {cheque_id}")


class InvalidStatusTransitionError(DocumentError):
    """Requested status change is not allowed from the current status."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, document_id: str, from_status: str, to_status: str):
        self.document_id = document_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Document {document_id} cannot move from {from_status} to {to_status}"
        )


# Concurrency


class ConcurrencyError(VoucherKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class SequenceContentionError(ConcurrencyError):
    """
    A number could not be reserved because of a concurrent writer.

    No number was issued and the enclosing transaction was rolled back.
    The whole create call is safe to retry with the same payload.
    """

    code: str = "SEQUENCE_CONTENTION"
    retryable: bool = True

    def __init__(self, document_type: str, scope_key: str, reason: str):
        self.document_type = document_type
        self.scope_key = scope_key
        self.reason = reason
        super().__init__(
            f"Could not reserve a {document_type} number in scope "
            f"'{scope_key}': {reason}"
        )


# Persistence


class PersistenceError(VoucherKernelError):
    """
    Storage layer failed after validation.

    The transaction was rolled back together with the counter update, so
    the reserved number is released rather than leaked as a gap.
    """

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Persistence failure during {operation}: {reason}")


# Immutability


class ImmutabilityError(VoucherKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record or field."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
