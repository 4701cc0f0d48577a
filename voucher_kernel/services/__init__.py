"""Services for the voucher kernel (write side)."""

from voucher_kernel.services.document_service import (
    SYSTEM_ACTOR_ID,
    DocumentService,
    to_view,
)
from voucher_kernel.services.sequence_service import (
    NumberingStrategy,
    NumberSequenceCounter,
    NumberSequenceService,
)

__all__ = [
    "DocumentService",
    "NumberSequenceCounter",
    "NumberSequenceService",
    "NumberingStrategy",
    "SYSTEM_ACTOR_ID",
    "to_view",
]
