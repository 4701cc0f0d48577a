"""ORM models for the voucher kernel."""

from voucher_kernel.models.document import DocumentLineModel, FinancialDocument

__all__ = [
    "DocumentLineModel",
    "FinancialDocument",
]
