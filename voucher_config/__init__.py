"""
voucher_config: single public entrypoint for service settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``.  No other component reads the settings file or
    environment variables directly.

Architecture position:
    Configuration sits above ``voucher_kernel`` and below ``voucher_api``.
    The kernel MUST NEVER import from ``voucher_config``; the API layer
    hands plain values (policies, strategy, retry limit) to kernel services.

Failure modes:
    - ``FileNotFoundError`` -- settings file missing.
    - ``KeyError`` / ``ValueError`` -- structural or range errors.

Audit relevance:
    Every successful call logs ``settings_loaded`` with the file path,
    checksum, strategy and database dialect, tying served requests to the
    exact settings that governed their numbering.
"""

from __future__ import annotations

import os
from pathlib import Path

from voucher_config.loader import load_yaml_file, parse_settings
from voucher_config.schema import (
    ApiSettings,
    DatabaseSettings,
    NumberingSettings,
    VoucherSettings,
)
from voucher_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "defaults.yaml"

# Environment overrides
SETTINGS_PATH_ENV = "VOUCHER_SETTINGS"
DATABASE_URL_ENV = "VOUCHER_DATABASE_URL"


def get_active_settings(path: Path | str | None = None) -> VoucherSettings:
    """The ONLY public settings entrypoint.

    Resolution order for the file: ``path`` argument, then the
    ``VOUCHER_SETTINGS`` environment variable, then the bundled
    ``defaults.yaml``.  ``VOUCHER_DATABASE_URL``, when set, replaces
    ``database.url``.

    Raises:
        FileNotFoundError, KeyError, ValueError.
    """
    settings_path = Path(path or os.environ.get(SETTINGS_PATH_ENV) or DEFAULT_SETTINGS_PATH)
    data = load_yaml_file(settings_path)

    url_override = os.environ.get(DATABASE_URL_ENV)
    if url_override:
        data.setdefault("database", {})["url"] = url_override

    settings = parse_settings(data)

    _logger.info(
        "settings_loaded",
        extra={
            "settings_path": str(settings_path),
            "checksum": settings.checksum,
            "numbering_strategy": settings.numbering.strategy.value,
            "database_dialect": settings.database.url.split(":", 1)[0],
            "url_overridden": bool(url_override),
        },
    )
    return settings


__all__ = [
    "ApiSettings",
    "DatabaseSettings",
    "NumberingSettings",
    "VoucherSettings",
    "get_active_settings",
]
