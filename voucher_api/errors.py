"""Translate kernel exceptions into the JSON error envelope."""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from voucher_kernel.exceptions import (
    DocumentNotFoundError,
    ImmutabilityViolationError,
    InvalidStatusTransitionError,
    PersistenceError,
    SequenceContentionError,
    ValidationError,
    VoucherKernelError,
)
from voucher_kernel.logging_config import get_logger

logger = get_logger("api.errors")

STATUS_BY_ERROR = {
    ValidationError: 400,
    DocumentNotFoundError: 404,
    InvalidStatusTransitionError: 409,
    SequenceContentionError: 409,
    ImmutabilityViolationError: 409,
    PersistenceError: 500,
}

# Seconds a client should wait before resubmitting after contention.
RETRY_AFTER_SECONDS = 1


def status_for(exc: VoucherKernelError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 500


def _details(exc: VoucherKernelError) -> Dict[str, Any]:
    if isinstance(exc, ValidationError):
        return {"field_errors": exc.field_errors}
    if isinstance(exc, SequenceContentionError):
        return {"document_type": exc.document_type, "scope_key": exc.scope_key}
    if isinstance(exc, DocumentNotFoundError):
        return {"document_id": exc.document_id}
    if isinstance(exc, InvalidStatusTransitionError):
        return {
            "document_id": exc.document_id,
            "from_status": exc.from_status,
            "to_status": exc.to_status,
        }
    if isinstance(exc, PersistenceError):
        return {"operation": exc.operation}
    return {}


def error_response(
    status_code: int,
    code: str,
    message: str,
    retryable: bool = False,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "retryable": retryable,
                "details": details or {},
            }
        },
        headers=headers,
    )


def _field_name(loc) -> str:
    """Render a pydantic location such as ('body', 'lines', 0, 'debit')."""
    name = ""
    for part in loc:
        if part == "body" and not name:
            continue
        if isinstance(part, int):
            name += f"[{part}]"
        else:
            name += f".{part}" if name else str(part)
    return name or "payload"


async def handle_kernel_error(request: Request, exc: VoucherKernelError) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "api_request_failed",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "error_code": exc.code,
        },
    )
    # Storage failures are reported without driver internals.
    if isinstance(exc, PersistenceError):
        message = f"Could not persist document during {exc.operation}"
    else:
        message = str(exc)
    headers = (
        {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None
    )
    return error_response(
        status_code,
        exc.code,
        message,
        retryable=exc.retryable,
        details=_details(exc),
        headers=headers,
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed JSON and wrong types are reported like any invalid payload."""
    field_errors = [
        {
            "field": "payload"
            if err.get("type") == "json_invalid"
            else _field_name(err.get("loc", ())),
            "message": err.get("msg", "invalid"),
        }
        for err in exc.errors()
    ]
    logger.info(
        "api_request_failed",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": 400,
            "error_code": ValidationError.code,
        },
    )
    return error_response(
        400,
        ValidationError.code,
        "Document payload is invalid",
        details={"field_errors": field_errors},
    )


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(VoucherKernelError, handle_kernel_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
