# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# STATUS: Core - Structured logging with context
# PURPOSE: Consistent, queryable logging across producer and consumer
# CREATED: 18 OCT 2026
# ============================================================================
"""
Structured Logging

JSON (production) or human-readable (development) logs, tagged with the
batch / message / job currently being handled.

Context is held in a ContextVar, so it follows the coroutine that set it:
the consumer opens a batch context, then a message context per envelope,
and every line logged underneath carries those ids.

Usage:
    from core.logging import get_logger, log_context, log_checkpoint

    logger = get_logger(__name__, component=ComponentType.CONSUMER)

    with log_context(batch_id=batch_id):
        with log_context(message_id=envelope.id, job_id=message.job_id):
            logger.info("Executing job")
            log_checkpoint("job_acked", {"artifact_url": url})

Checkpoints emitted by the queue:
    job_submitted, job_acked, job_retried, job_dead_lettered, batch_completed
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Union


class ComponentType(str, Enum):
    """Component types for logging categorization."""
    PRODUCER = "producer"
    CONSUMER = "consumer"
    ADAPTER = "adapter"
    MESSAGING = "messaging"
    WORKER = "worker"


# ============================================================================
# CONTEXT
# ============================================================================

@dataclass(frozen=True)
class LogContext:
    """Ids attached to every record logged inside a log_context() block."""
    batch_id: Optional[str] = None
    message_id: Optional[str] = None
    job_id: Optional[str] = None
    queue_name: Optional[str] = None
    worker_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


_current_context: ContextVar[LogContext] = ContextVar("log_context", default=LogContext())


def get_current_context() -> LogContext:
    return _current_context.get()


@contextmanager
def log_context(**fields: Optional[str]) -> Iterator[LogContext]:
    """
    Layer ids over the current context for the duration of the block.

    Unspecified fields are inherited from the enclosing context.
    """
    context = replace(_current_context.get(), **fields)
    token = _current_context.set(context)
    try:
        yield context
    finally:
        _current_context.reset(token)


# ============================================================================
# FORMATTERS
# ============================================================================

def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _record_data(record: logging.LogRecord) -> Dict[str, Any]:
    data = getattr(record, "data", None)
    return data if isinstance(data, dict) else {}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def __init__(self, service: str = "screenshot-queue"):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": _utc_timestamp(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = get_current_context().to_dict()
        if context:
            entry["context"] = context

        data = _record_data(record)
        if data:
            entry["data"] = data

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry["source"] = f"{record.filename}:{record.lineno}"
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Single-line format for development, with ids inline."""

    _SHORT_NAMES = (("batch_id", "batch"), ("message_id", "msg"), ("job_id", "job"))

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        context = get_current_context()
        tags = [
            f"{short}={getattr(context, name)}"
            for name, short in self._SHORT_NAMES
            if getattr(context, name)
        ]
        line = f"{timestamp} {record.levelname:<8} {record.name}"
        if tags:
            line += f" [{' '.join(tags)}]"
        line += f": {record.getMessage()}"

        data = _record_data(record)
        if data:
            line += f" {data}"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


# ============================================================================
# LOGGERS
# ============================================================================

class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that tags records with the component name.

    Keyword data passed as extra={...} ends up under "data" in JSON output.
    """

    def process(self, msg, kwargs):
        data = dict(kwargs.pop("extra", None) or {})
        component = self.extra.get("component") if self.extra else None
        if component is not None:
            data.setdefault("component", getattr(component, "value", component))
        kwargs["extra"] = {"data": data}
        return msg, kwargs


def get_logger(
    name: str,
    component: Optional[ComponentType] = None,
) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (e.g., "worker.consumer")
        component: Optional component type for categorization
    """
    return ContextLogger(logging.getLogger(name), {"component": component})


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: JSON lines; also enabled by SCREENSHOT_LOG_FORMAT=json
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_output or os.getenv("SCREENSHOT_LOG_FORMAT", "").lower() == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = HumanFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)

    # The Service Bus SDK logs every link operation at INFO
    logging.getLogger("azure").setLevel(logging.WARNING)


# ============================================================================
# CHECKPOINTS
# ============================================================================

_checkpoint_logger = logging.getLogger("checkpoint")


def log_checkpoint(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log a named lifecycle checkpoint.

    The current batch / message / job ids are copied into the record so a
    job's history can be reconstructed from checkpoints alone.

    Args:
        name: Checkpoint name
        data: Optional checkpoint data
        logger: Logger to use (defaults to "checkpoint")
    """
    payload: Dict[str, Any] = {"checkpoint": name, "timestamp": _utc_timestamp()}
    payload.update(get_current_context().to_dict())
    if data:
        payload["data"] = data

    (logger or _checkpoint_logger).info(f"CHECKPOINT: {name}", extra={"data": payload})


__all__ = [
    "ComponentType",
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
    "log_checkpoint",
]
