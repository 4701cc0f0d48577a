"""
Settings Loader (``voucher_config.loader``).

Responsibility
--------------
Loads the YAML settings file and parses it into the frozen dataclasses of
``voucher_config.schema``.  Runtime code never calls this directly; the
single entry point is ``voucher_config.get_active_settings()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``database.url``  -> ``KeyError``.
* Out-of-range or unknown values  -> ``ValueError`` naming the key.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from voucher_config.schema import (
    ApiSettings,
    DatabaseSettings,
    NumberingSettings,
    VoucherSettings,
)
from voucher_kernel.domain.documents import DocumentType
from voucher_kernel.domain.numbering import DEFAULT_POLICIES, NumberingPolicy
from voucher_kernel.services.sequence_service import NumberingStrategy

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _positive_int(section: dict[str, Any], key: str, default: int, where: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{where}.{key} must be a positive integer, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    """Parse the ``database`` section; ``url`` is required."""
    busy = data.get("sqlite_busy_timeout", 30.0)
    if isinstance(busy, bool) or not isinstance(busy, (int, float)) or busy <= 0:
        raise ValueError(
            f"database.sqlite_busy_timeout must be a positive number, got {busy!r}"
        )
    return DatabaseSettings(
        url=str(data["url"]),
        echo=bool(data.get("echo", False)),
        pool_size=_positive_int(data, "pool_size", 20, "database"),
        max_overflow=int(data.get("max_overflow", 10)),
        pool_timeout=_positive_int(data, "pool_timeout", 30, "database"),
        lock_timeout_ms=_positive_int(data, "lock_timeout_ms", 5000, "database"),
        sqlite_busy_timeout=float(busy),
    )


def parse_policy(data: dict[str, Any], where: str) -> NumberingPolicy:
    prefix = data.get("prefix", "")
    if not isinstance(prefix, str):
        raise ValueError(f"{where}.prefix must be a string, got {prefix!r}")
    return NumberingPolicy(
        prefix=prefix,
        width=_positive_int(data, "width", 5, where),
    )


def parse_numbering(data: dict[str, Any]) -> NumberingSettings:
    """
    Parse the ``numbering`` section.

    Document types without an entry under ``policies`` keep their default
    display format.
    """
    try:
        strategy = NumberingStrategy(data.get("strategy", NumberingStrategy.LOCKED.value))
    except ValueError:
        allowed = ", ".join(s.value for s in NumberingStrategy)
        raise ValueError(
            f"numbering.strategy must be one of: {allowed}, got {data.get('strategy')!r}"
        ) from None

    policies = dict(DEFAULT_POLICIES)
    for type_name, policy_data in (data.get("policies") or {}).items():
        try:
            document_type = DocumentType(type_name)
        except ValueError:
            raise ValueError(
                f"numbering.policies has unknown document type {type_name!r}"
            ) from None
        policies[document_type] = parse_policy(
            policy_data or {}, f"numbering.policies.{type_name}"
        )

    return NumberingSettings(
        strategy=strategy,
        max_retries=_positive_int(data, "max_retries", 5, "numbering"),
        policies=policies,
    )


def parse_api(data: dict[str, Any]) -> ApiSettings:
    origins = data.get("cors_origins") or []
    if isinstance(origins, str):
        origins = [origins]
    return ApiSettings(
        title=str(data.get("title", "Voucher Service")),
        cors_origins=tuple(str(o) for o in origins),
    )


def parse_settings(data: dict[str, Any]) -> VoucherSettings:
    """
    Parse a whole settings document.

    Postconditions:
        - ``checksum`` is the SHA-256 of the canonical input document.
    """
    level = str((data.get("logging") or {}).get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}, got {level!r}")

    return VoucherSettings(
        database=parse_database(data["database"]),
        numbering=parse_numbering(data.get("numbering") or {}),
        api=parse_api(data.get("api") or {}),
        log_level=level,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
