"""
Numbering -- display formatting for reserved document numbers.

The counter hands out plain integers; what is printed on a voucher or a
cheque is the integer rendered through a per-type policy, e.g. ``V00012``
for the twelfth voucher of a book.  Pure functions, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass

from voucher_kernel.domain.documents import DocumentType


@dataclass(frozen=True, slots=True)
class NumberingPolicy:
    """How numbers of one document type are rendered.

    ``width`` is a minimum; numbers longer than it are printed in full.
    """

    prefix: str = ""
    width: int = 5

    def __post_init__(self) -> None:
        if self.width < 1:
            raise ValueError(f"width must be >= 1, got {self.width}")

    def format(self, number: int) -> str:
        if number < 1:
            raise ValueError(f"document numbers start at 1, got {number}")
        return f"{self.prefix}{number:0{self.width}d}"


DEFAULT_POLICIES: dict[DocumentType, NumberingPolicy] = {
    DocumentType.VOUCHER: NumberingPolicy(prefix="V", width=5),
    DocumentType.CHEQUE: NumberingPolicy(prefix="CHQ", width=6),
}


def format_document_number(
    document_type: DocumentType,
    number: int,
    policies: dict[DocumentType, NumberingPolicy] | None = None,
) -> str:
    """Render ``number`` using the policy registered for ``document_type``."""
    policy = (policies or DEFAULT_POLICIES).get(document_type)
    if policy is None:
        policy = DEFAULT_POLICIES[document_type]
    return policy.format(number)
