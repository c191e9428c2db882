from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

operation_id_ctx_var: ContextVar[str | None] = ContextVar("operation_id", default=None)

_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
}


class OperationIdFilter(logging.Filter):
    """Attach the current upload batch / bulk operation id to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        record.operation_id = operation_id_ctx_var.get() or "-"
        return True


@contextmanager
def operation_scope(operation_id: str) -> Iterator[str]:
    """Bind *operation_id* to log records emitted inside the block.

    Tasks spawned inside the block copy the context, so per-item upload and
    bulk tasks inherit the id of the operation that started them.
    """
    token = operation_id_ctx_var.set(operation_id)
    try:
        yield operation_id
    finally:
        operation_id_ctx_var.reset(token)


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


class JsonFormatter(logging.Formatter):
    """One JSON object per record: level, logger, operation id and any extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "operation_id": getattr(record, "operation_id", "-"),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_KEYS or key in payload or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=_json_default)


def configure_logging(json_logs: bool = False) -> None:
    """Configure root logger with an operation-id aware formatter."""
    handler = logging.StreamHandler()
    handler.addFilter(OperationIdFilter())
    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s [%(operation_id)s] %(message)s")
        )

    logging.basicConfig(level=logging.INFO, handlers=[handler], force=True)
