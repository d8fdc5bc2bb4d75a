"""
Structured JSON logging for the ledger kernel.

Every record becomes one JSON object per line.  Services log snake_case
event names (``entry_posted``, ``reversal_completed``) and put the data in
``extra``; the formatter merges in whatever ledger context is bound
(organization, actor, entry, workspace) so a posting can be followed across
the journal, materializer and auditor without passing ids around.

    with LogContext.bind(organization_id=org_id, entry_id=entry.id):
        logger.info("entry_posted", extra={"entry_number": number})

    {"ts": "...", "level": "INFO", "logger": "ledger_kernel.services.journal_entry",
     "message": "entry_posted", "organization_id": "...", "entry_id": "...",
     "entry_number": "JE/2024/01/0001"}
"""

__all__ = [
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
from types import MappingProxyType
from typing import Any, Iterator, Mapping
from uuid import UUID

_LOGGER_PREFIX = "ledger_kernel"

CONTEXT_FIELDS = (
    "correlation_id",
    "organization_id",
    "actor_id",
    "entry_id",
    "workspace_id",
    "trace_id",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_bound: ContextVar[Mapping[str, str]] = ContextVar("ledger_log_context", default=_EMPTY)


def _merged(fields: Mapping[str, Any]) -> Mapping[str, str]:
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise KeyError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
    current = dict(_bound.get())
    current.update({name: str(value) for name, value in fields.items() if value is not None})
    return MappingProxyType(current)


class LogContext:
    """
    Ledger identifiers attached to every record logged in the current
    thread or task.  Backed by one ContextVar holding a read-only mapping.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Bind fields until cleared.  None values leave a field as it is."""
        _bound.set(_merged(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_bound.get())

    @staticmethod
    def clear() -> None:
        _bound.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[Mapping[str, str]]:
        """Bind fields for the duration of a block, restoring the outer values after."""
        token = _bound.set(_merged(fields))
        try:
            yield _bound.get()
        finally:
            _bound.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "taskName",
}


def _jsonable(value: Any) -> Any:
    """Amounts stay exact strings; ids, dates and enums get their plain form."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # LedgerKernelError subclasses keep their context as public attributes
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, event, context, extra."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_bound.get())
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED and key not in payload
        )

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger named ``ledger_kernel.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``ledger_kernel`` logger.  Only the first
    call has any effect until reset_logging() runs.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    kernel_logger.addHandler(handler)


def reset_logging() -> None:
    """Drop the handlers installed by configure_logging().  Tests only."""
    global _configured
    with _lock:
        _configured = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
