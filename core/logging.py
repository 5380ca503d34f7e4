# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# STATUS: Core - Structured logging with context
# PURPOSE: Consistent, queryable logging across orchestrator and backends
# CREATED: 02 MAR 2026
# ============================================================================
"""
Structured Logging

Log lines carry the job they are about. Callback handlers wrap their work
in log_context(), and both formatters read the active context, so plain
``logging.getLogger(__name__)`` loggers need nothing special:

    logger = logging.getLogger(__name__)

    with log_context(job_id="3f2a...", array_index=4):
        logger.info("Array element ended")

    # 2026-03-02 10:00:00 INFO     orchestrator.cluster [job=3f2a..., array=4]: Array element ended

Context lives in a ContextVar, so concurrent asyncio tasks handling
callbacks for different jobs never see each other's fields.

Set LOG_FORMAT=json for one JSON object per line.
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union


# Libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "psycopg.pool", "uvicorn.access")


# ============================================================================
# CONTEXT
# ============================================================================

@dataclass(frozen=True)
class LogContext:
    """Contextual fields attached to every log line."""
    job_id: Optional[str] = None
    array_index: Optional[int] = None
    owner_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Set fields only, with extra merged in."""
        fields = {k: v for k, v in asdict(self).items() if v is not None and k != "extra"}
        fields.update(self.extra)
        return fields

    def label(self) -> str:
        """Short inline form for human-readable lines."""
        parts = []
        if self.owner_id:
            parts.append(f"owner={self.owner_id}")
        if self.job_id:
            parts.append(f"job={self.job_id}")
        if self.array_index is not None:
            parts.append(f"array={self.array_index}")
        return f" [{', '.join(parts)}]" if parts else ""


_current_context: ContextVar[LogContext] = ContextVar(
    "cluster_log_context", default=LogContext()
)


def get_current_context() -> LogContext:
    return _current_context.get()


@contextmanager
def log_context(**kwargs):
    """
    Add fields to the logging context for the duration of a block.

    Fields not given are inherited from the enclosing context, and extra
    dicts are merged.
    """
    parent = get_current_context()
    extra = {**parent.extra, **kwargs.pop("extra", {})}
    token = _current_context.set(replace(parent, extra=extra, **kwargs))
    try:
        yield get_current_context()
    finally:
        _current_context.reset(token)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _record_data(record: logging.LogRecord) -> Optional[Dict[str, Any]]:
    # log_checkpoint() passes its payload as extra={"extra": {...}}
    data = getattr(record, "extra", None)
    return data if isinstance(data, dict) and data else None


# ============================================================================
# FORMATTERS
# ============================================================================

class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": _utc_now().isoformat(),
            "level": record.levelname,
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
    """Readable lines for development, with the job context inline."""

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"{_utc_now():%Y-%m-%d %H:%M:%S} {record.levelname:<8} {record.name}"
            f"{get_current_context().label()}: {record.getMessage()}"
        )
        data = _record_data(record)
        if data:
            line += f" {data}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
) -> None:
    """
    Install one stdout handler on the root logger.

    Args:
        level: Log level name or number
        json_output: JSON lines instead of human-readable ones
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    use_json = json_output or os.getenv("LOG_FORMAT", "").lower() == "json"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if use_json else HumanFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)

    if level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


# ============================================================================
# CHECKPOINT LOGGING
# ============================================================================

def log_checkpoint(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log a named lifecycle checkpoint, e.g. "cluster_job_ended".

    Search the logs for a checkpoint name plus a job id to follow one job
    through the system.
    """
    logger = logger or logging.getLogger("checkpoint")

    payload: Dict[str, Any] = {"checkpoint": name}
    payload.update(
        {k: v for k, v in get_current_context().to_dict().items() if k in ("job_id", "array_index", "owner_id")}
    )
    if data:
        payload["data"] = data

    logger.info(f"CHECKPOINT: {name}", extra={"extra": payload})


__all__ = [
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "configure_logging",
    "log_context",
    "get_current_context",
    "log_checkpoint",
]
