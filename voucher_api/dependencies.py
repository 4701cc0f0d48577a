"""Dependency injection for the voucher service."""

from functools import lru_cache
from typing import Iterator, Optional
from uuid import UUID

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from voucher_config import VoucherSettings, get_active_settings
from voucher_kernel.db.engine import get_session
from voucher_kernel.exceptions import ValidationError
from voucher_kernel.services.document_service import DocumentService


@lru_cache()
def get_default_settings() -> VoucherSettings:
    """
    Get settings from the active settings file.

    Returns:
        VoucherSettings instance (cached singleton)
    """
    return get_active_settings()


def get_settings(request: Request) -> VoucherSettings:
    """Settings the running app was created with."""
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_default_settings()


def get_db_session() -> Iterator[Session]:
    """One session per request, closed when the response is sent."""
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def get_document_service(
    session: Session = Depends(get_db_session),
    settings: VoucherSettings = Depends(get_settings),
) -> DocumentService:
    return DocumentService(
        session,
        policies=settings.numbering.policies,
        strategy=settings.numbering.strategy,
        max_retries=settings.numbering.max_retries,
    )


def get_actor_id(x_actor_id: Optional[str] = Header(default=None)) -> Optional[UUID]:
    """
    Actor from the optional ``X-Actor-Id`` header.

    Raises:
        ValidationError: Header present but not a UUID.
    """
    if x_actor_id is None or not x_actor_id.strip():
        return None
    try:
        return UUID(x_actor_id.strip())
    except ValueError:
        raise ValidationError(
            [{"field": "X-Actor-Id", "message": "must be a UUID"}]
        ) from None
