"""
Voucher Kernel

Sequential numbering and atomic persistence for financial documents:
- Per-book, per-type voucher and cheque numbers
- Locked counter rows (no MAX+1)
- Validate, number, and insert in one transaction
- Typed, machine-readable errors
"""

__version__ = "0.1.0"
