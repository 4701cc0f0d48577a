"""
Structured JSON logging for the voucher kernel.

Every record under the ``voucher_kernel`` logger is written as one JSON line.
The numbering context of the unit of work in progress (request correlation
id, actor, book, document type and document id) lives in context variables,
so the HTTP middleware, the document service and the sequence service all
stamp the same fields without threading them through call signatures.
Context variables are per thread and per asyncio task.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

LOGGER_NAMESPACE = "voucher_kernel"

# Stamped on every line while bound, in this order.
CONTEXT_FIELDS = (
    "correlation_id",
    "actor_id",
    "scope_key",
    "document_type",
    "document_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"voucher_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _context_vars[name]
    except KeyError:
        raise TypeError(f"unknown log context field: {name!r}") from None


def _as_text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


class LogContext:
    """Numbering context stamped onto every log line of the current task."""

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set context fields.  ``None`` leaves a field unchanged."""
        for name, value in fields.items():
            var = _context_var(name)
            if value is not None:
                var.set(_as_text(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Return the bound fields, skipping unset ones."""
        values = ((name, var.get()) for name, var in _context_vars.items())
        return {name: value for name, value in values if value is not None}

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """Bind fields for the duration of a ``with`` block, then restore."""
        tokens = []
        for name, value in fields.items():
            var = _context_var(name)
            if value is not None:
                tokens.append((var, var.set(_as_text(value))))
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.makeLogRecord({}))
) | {"message", "asctime", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Flatten an exception into ``exc_*`` keys.

    VoucherKernelError subclasses contribute their code, retry flag and
    structured attributes (scope_key, document_id, field_errors, ...).
    """
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
        fields["exc_retryable"] = bool(getattr(exc, "retryable", False))
    for key, value in vars(exc).items():
        if not key.startswith("_"):
            fields[f"exc_{key}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: header, numbering context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES and key not in entry:
                entry[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            entry.update(_exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default)


# ---------------------------------------------------------------------------
# Loggers and configuration
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger under the voucher_kernel namespace, e.g. ``services.document``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_installed_handler: logging.Handler | None = None
_lock = threading.Lock()


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    levels = logging.getLevelNamesMapping()
    try:
        return levels[level.upper()]
    except KeyError:
        raise ValueError(f"unknown log level: {level!r}") from None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach the JSON handler to the voucher_kernel logger.

    Only the first call installs a handler; later calls are no-ops until
    reset_logging().  Records do not propagate to the root logger.
    """
    global _installed_handler
    with _lock:
        if _installed_handler is not None:
            return
        namespace = logging.getLogger(LOGGER_NAMESPACE)
        namespace.setLevel(_resolve_level(level))
        namespace.propagate = False
        installed = handler or logging.StreamHandler(stream or sys.stderr)
        installed.setFormatter(StructuredFormatter())
        namespace.addHandler(installed)
        _installed_handler = installed


def reset_logging() -> None:
    """Remove the installed handler so configure_logging() applies again."""
    global _installed_handler
    with _lock:
        namespace = logging.getLogger(LOGGER_NAMESPACE)
        if _installed_handler is not None:
            namespace.removeHandler(_installed_handler)
            _installed_handler.close()
            _installed_handler = None
        namespace.setLevel(logging.WARNING)
