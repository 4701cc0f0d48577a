"""
Module: voucher_kernel.db.types
Responsibility: The exact monetary column type and the money coercion helper
    shared by the models and the validator.
Architecture position: Kernel > DB.  MUST NOT import from models/, domain/,
    or services/.

CRITICAL: No floats anywhere in the kernel.  All monetary amounts use Decimal
with explicit precision.  SQLite has no exact decimal storage (its NUMERIC
affinity is a REAL), so there the value is kept as text.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

MONEY_PRECISION = 38
MONEY_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP

_MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)

# Sign, integer digits, point, fraction.
_MONEY_TEXT_LENGTH = MONEY_PRECISION + 2


class Money(TypeDecorator):
    """
    Monetary amount: 38 digits total, 9 decimal places.

    Numeric(38, 9) on PostgreSQL.  On SQLite the amount is stored as its
    fixed-point string so that it reads back digit for digit.  Bound values
    are quantized to 9 places on every backend.
    """

    impl = Numeric(MONEY_PRECISION, MONEY_DECIMAL_PLACES)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(_MONEY_TEXT_LENGTH))
        return dialect.type_descriptor(
            Numeric(MONEY_PRECISION, MONEY_DECIMAL_PLACES, asdecimal=True)
        )

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        quantized = Decimal(value).quantize(_MONEY_QUANTUM, rounding=DEFAULT_ROUNDING)
        if dialect.name == "sqlite":
            return format(quantized, "f")
        return quantized

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))


def money_from_value(value: Any) -> Decimal:
    """
    Coerce a payload value into a finite Decimal.

    Accepts Decimal, int, or a numeric string.  Floats are converted through
    ``str()`` so that ``0.1`` becomes ``Decimal("0.1")`` rather than its
    binary expansion.  Booleans are rejected even though they are ints.

    Raises:
        ValueError: If the value is not numeric, not finite, or has more
            than MONEY_DECIMAL_PLACES fractional digits.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a monetary amount: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"not a monetary amount: {value!r}") from None
    else:
        raise ValueError(f"not a monetary amount: {value!r}")

    if not result.is_finite():
        raise ValueError(f"amount must be finite: {value!r}")
    try:
        quantized = result.quantize(_MONEY_QUANTUM, rounding=DEFAULT_ROUNDING)
    except InvalidOperation:
        raise ValueError(f"amount out of range: {value!r}") from None
    if result != quantized:
        raise ValueError(
            f"amount has more than {MONEY_DECIMAL_PLACES} decimal places: {value!r}"
        )
    return result
