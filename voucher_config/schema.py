"""
VoucherSettings schema.

Frozen dataclasses the YAML settings file is parsed into.  The loader builds
them; everything else only reads them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from voucher_kernel.domain.documents import DocumentType
from voucher_kernel.domain.numbering import DEFAULT_POLICIES, NumberingPolicy
from voucher_kernel.services.sequence_service import NumberingStrategy


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection and locking parameters handed to init_engine_from_url."""

    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    lock_timeout_ms: int = 5000
    sqlite_busy_timeout: float = 30.0


@dataclass(frozen=True)
class NumberingSettings:
    """Counter discipline and display formats."""

    strategy: NumberingStrategy = NumberingStrategy.LOCKED
    max_retries: int = 5
    policies: dict[DocumentType, NumberingPolicy] = field(
        default_factory=lambda: dict(DEFAULT_POLICIES)
    )


@dataclass(frozen=True)
class ApiSettings:
    title: str = "Voucher Service"
    cors_origins: tuple[str, ...] = ()


@dataclass(frozen=True)
class VoucherSettings:
    """Root settings object returned by get_active_settings()."""

    database: DatabaseSettings
    numbering: NumberingSettings = field(default_factory=NumberingSettings)
    api: ApiSettings = field(default_factory=ApiSettings)
    log_level: str = "INFO"
    checksum: str = ""
