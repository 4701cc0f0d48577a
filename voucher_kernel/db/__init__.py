"""Database layer - engine, base classes, types, and immutability guards."""

from voucher_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from voucher_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
)
from voucher_kernel.db.types import Money, money_from_value

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "money_from_value",
]
