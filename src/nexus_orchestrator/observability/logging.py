"""
Structured logging for the Nexus orchestrator with trace ID support.

Every pipeline run sets its pipeline id as the trace id, so all log lines a
run produces (stages, retries, incidents, review items) can be correlated.
"""

import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, TextIO

# Context variable for trace ID propagation
trace_id_ctx: ContextVar[str | None] = ContextVar("trace_id", default=None)

# Global logger cache
_loggers: dict[str, "StructuredLogger"] = {}

# Attributes owned by logging.LogRecord; never rendered as fields
_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
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
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
    }
)

_FORMATTER_FIELDS = frozenset({"trace_id", "op", "ms", "duration_ms"})


def _render_value(value: Any) -> str:
    text = str(value)
    if not text or any(ch.isspace() for ch in text):
        return f'"{text}"'
    return text


class StructuredFormatter(logging.Formatter):
    """Single-line key=value formatter with trace ID support."""

    def format(self, record: logging.LogRecord) -> str:
        trace_id = trace_id_ctx.get() or getattr(record, "trace_id", None) or "-"

        mod = record.name.rsplit(".", 1)[-1]
        op = getattr(record, "op", record.funcName or "-")

        duration = getattr(record, "ms", getattr(record, "duration_ms", None))
        ms_part = f" ms={duration:.1f}" if isinstance(duration, int | float) else ""

        timestamp = datetime.now(UTC).isoformat()
        fields = "".join(
            f" {key}={_render_value(value)}"
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in _FORMATTER_FIELDS
        )

        line = (
            f"t={timestamp} level={record.levelname} trace={trace_id} mod={mod} "
            f'op={op}{ms_part} msg="{record.getMessage()}"{fields}'
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger:
    """Structured logger taking fields as keyword arguments."""

    def __init__(self, name: str, bound: dict[str, Any] | None = None):
        self.name = name
        self.logger = logging.getLogger(name)
        self._bound = dict(bound or {})

    def bind(self, **fields: Any) -> "StructuredLogger":
        """Return a logger that adds ``fields`` to every line."""
        return StructuredLogger(self.name, {**self._bound, **fields})

    def _log(self, level: int, msg: str, exc_info: bool = False, **kwargs: Any) -> None:
        extra = {k: v for k, v in {**self._bound, **kwargs}.items() if k not in _RECORD_ATTRS}
        extra["trace_id"] = trace_id_ctx.get()
        self.logger.log(level, msg, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, **kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log at error level with the active exception's traceback."""
        self._log(logging.ERROR, msg, exc_info=True, **kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, msg, **kwargs)

    def timed(self, msg: str, duration_ms: float, **kwargs: Any) -> None:
        """Log with timing information."""
        kwargs["ms"] = duration_ms
        self.info(msg, **kwargs)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Install the structured formatter on the root logger."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    logging.getLogger("opentelemetry").setLevel(logging.WARNING)


def set_trace_id(trace_id: str) -> None:
    """Set trace ID in current context."""
    trace_id_ctx.set(trace_id)


def get_trace_id() -> str | None:
    """Get current trace ID from context."""
    return trace_id_ctx.get()


def clear_trace_id() -> None:
    """Clear trace ID from current context."""
    trace_id_ctx.set(None)
