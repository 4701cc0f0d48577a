"""REST API routes for the voucher service.

Handlers are plain ``def`` functions: FastAPI runs them in its thread pool,
so each request holds its own session and transaction while it blocks on
the counter row lock.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path

from voucher_api.dependencies import get_actor_id, get_document_service
from voucher_api.models import (
    CreateChequeRequest,
    CreateDocumentRequest,
    CreateVoucherRequest,
    DocumentResponse,
    ErrorResponse,
    HealthResponse,
)
from voucher_kernel.services.document_service import DocumentService

router = APIRouter()

_CREATE_ERRORS = {
    400: {"model": ErrorResponse, "description": "Payload failed validation"},
    409: {"model": ErrorResponse, "description": "Sequence contention; retry"},
    500: {"model": ErrorResponse, "description": "Document could not be persisted"},
}
_LIFECYCLE_ERRORS = {
    404: {"model": ErrorResponse, "description": "Document not found"},
    409: {"model": ErrorResponse, "description": "Status change not allowed"},
}


@router.post(
    "/documents",
    response_model=DocumentResponse,
    status_code=201,
    responses=_CREATE_ERRORS,
)
def create_document(
    request: CreateDocumentRequest,
    service: DocumentService = Depends(get_document_service),
    actor_id: Optional[UUID] = Depends(get_actor_id),
):
    """
    Create a voucher or cheque with the next number in its scope.

    Args:
        request: Document payload
        service: Document service bound to this request's session
        actor_id: Creator from the X-Actor-Id header

    Returns:
        The committed document
    """
    view = service.create_document(request.to_payload(), actor_id=actor_id)
    return DocumentResponse.from_view(view)


@router.post(
    "/cheques",
    response_model=DocumentResponse,
    status_code=201,
    responses=_CREATE_ERRORS,
)
def create_cheque(
    request: CreateChequeRequest,
    service: DocumentService = Depends(get_document_service),
    actor_id: Optional[UUID] = Depends(get_actor_id),
):
    """Create a cheque."""
    view = service.create_document(request.to_payload(), actor_id=actor_id)
    return DocumentResponse.from_view(view)


@router.post(
    "/vouchers",
    response_model=DocumentResponse,
    status_code=201,
    responses=_CREATE_ERRORS,
)
def create_voucher(
    request: CreateVoucherRequest,
    service: DocumentService = Depends(get_document_service),
    actor_id: Optional[UUID] = Depends(get_actor_id),
):
    """Create a balanced voucher."""
    view = service.create_document(request.to_payload(), actor_id=actor_id)
    return DocumentResponse.from_view(view)


@router.get(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    responses={404: _LIFECYCLE_ERRORS[404]},
)
def get_document(
    document_id: str = Path(..., description="Document id"),
    service: DocumentService = Depends(get_document_service),
):
    """Read one document back."""
    return DocumentResponse.from_view(service.get_document(document_id))


@router.get(
    "/cheques/{cheque_id}/voucher",
    response_model=DocumentResponse,
    responses={404: {"model": ErrorResponse, "description": "Cheque or voucher not found"}},
)
def get_cheque_voucher(
    cheque_id: str = Path(..., description="Cheque id"),
    service: DocumentService = Depends(get_document_service),
):
    """Read the voucher issued together with a cheque."""
    return DocumentResponse.from_view(service.get_linked_voucher(cheque_id))


@router.post(
    "/documents/{document_id}/post",
    response_model=DocumentResponse,
    responses=_LIFECYCLE_ERRORS,
)
def post_document(
    document_id: str = Path(..., description="Document id"),
    service: DocumentService = Depends(get_document_service),
    actor_id: Optional[UUID] = Depends(get_actor_id),
):
    """Post a draft document."""
    return DocumentResponse.from_view(
        service.post_document(document_id, actor_id=actor_id)
    )


@router.post(
    "/documents/{document_id}/void",
    response_model=DocumentResponse,
    responses=_LIFECYCLE_ERRORS,
)
def void_document(
    document_id: str = Path(..., description="Document id"),
    service: DocumentService = Depends(get_document_service),
    actor_id: Optional[UUID] = Depends(get_actor_id),
):
    """Void a draft or posted document. Its number is never reissued."""
    return DocumentResponse.from_view(
        service.void_document(document_id, actor_id=actor_id)
    )


@router.get("/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", service="voucher")
