"""
Severity-classified errors threaded through every orchestrator component.

A single exception type carries an explicit ``ErrorSeverity`` tag instead of
an exception hierarchy. The severity is fixed when the error is built and
decides what happens next:

- CRITICAL: abort the current unit of work
- RETRYABLE: transient, eligible for ``with_retry``
- FALLBACK: provider-specific, try the next provider
- DEGRADED: stage partially succeeded, continue
- RECOVERABLE: non-essential stage failed, continue without it
"""

import re
import traceback
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..observability.logging import get_logger

logger = get_logger(__name__)

ERROR_CODE_PATTERN = re.compile(r"^NEXUS_[A-Z]+_[A-Z_]+$")

# Error codes (NEXUS_{DOMAIN}_{TYPE})
NEXUS_UNKNOWN_ERROR = "NEXUS_UNKNOWN_ERROR"
NEXUS_RETRY_INVALID_OPTIONS = "NEXUS_RETRY_INVALID_OPTIONS"
NEXUS_RETRY_EXHAUSTED = "NEXUS_RETRY_EXHAUSTED"
NEXUS_FALLBACK_NO_PROVIDERS = "NEXUS_FALLBACK_NO_PROVIDERS"
NEXUS_FALLBACK_EXHAUSTED = "NEXUS_FALLBACK_EXHAUSTED"
NEXUS_PIPELINE_ALREADY_RUNNING = "NEXUS_PIPELINE_ALREADY_RUNNING"
NEXUS_PIPELINE_COMPLETED = "NEXUS_PIPELINE_COMPLETED"
NEXUS_PIPELINE_INVALID_STATE = "NEXUS_PIPELINE_INVALID_STATE"
NEXUS_INVALID_STAGE = "NEXUS_INVALID_STAGE"
NEXUS_STATE_NOT_FOUND = "NEXUS_STATE_NOT_FOUND"
NEXUS_STATE_INIT_FAILED = "NEXUS_STATE_INIT_FAILED"
NEXUS_INCIDENT_NOT_FOUND = "NEXUS_INCIDENT_NOT_FOUND"
NEXUS_REVIEW_ITEM_NOT_FOUND = "NEXUS_REVIEW_ITEM_NOT_FOUND"
NEXUS_REVIEW_ITEM_ALREADY_RESOLVED = "NEXUS_REVIEW_ITEM_ALREADY_RESOLVED"
NEXUS_REVIEW_ITEM_SAVE_FAILED = "NEXUS_REVIEW_ITEM_SAVE_FAILED"
NEXUS_REVIEW_QUEUE_QUERY_FAILED = "NEXUS_REVIEW_QUEUE_QUERY_FAILED"
NEXUS_QUEUE_TOPIC_NOT_FOUND = "NEXUS_QUEUE_TOPIC_NOT_FOUND"
NEXUS_QUEUE_TOPIC_SAVE_FAILED = "NEXUS_QUEUE_TOPIC_SAVE_FAILED"
NEXUS_QUEUE_TOPIC_CLEAR_FAILED = "NEXUS_QUEUE_TOPIC_CLEAR_FAILED"
NEXUS_STORAGE_READ_FAILED = "NEXUS_STORAGE_READ_FAILED"
NEXUS_STORAGE_WRITE_FAILED = "NEXUS_STORAGE_WRITE_FAILED"
NEXUS_COST_BUDGET_NOT_FOUND = "NEXUS_COST_BUDGET_NOT_FOUND"


class ErrorSeverity(str, Enum):
    """How the orchestrator must react to an error."""

    CRITICAL = "CRITICAL"
    DEGRADED = "DEGRADED"
    RECOVERABLE = "RECOVERABLE"
    RETRYABLE = "RETRYABLE"
    FALLBACK = "FALLBACK"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class NexusError(Exception):
    """Classified orchestrator error with code, stage and structured context."""

    def __init__(
        self,
        code: str,
        message: str,
        severity: ErrorSeverity,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
        timestamp: str | None = None,
    ):
        super().__init__(message)
        if not ERROR_CODE_PATTERN.match(code):
            logger.warning("Invalid error code format", code=code)

        self.code = code
        self.message = message
        self.severity = ErrorSeverity(severity)
        self.stage = stage
        self.context: dict[str, Any] = dict(context or {})
        self.timestamp = timestamp or _now_iso()

    @property
    def is_retryable(self) -> bool:
        return self.severity is ErrorSeverity.RETRYABLE

    def __repr__(self) -> str:
        return (
            f"NexusError(code={self.code!r}, severity={self.severity.value}, "
            f"stage={self.stage!r}, message={self.message!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serializable view of the error."""
        return {
            "name": "NexusError",
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "stage": self.stage,
            "retryable": self.is_retryable,
            "context": self.context,
            "timestamp": self.timestamp,
        }

    @classmethod
    def critical(
        cls,
        code: str,
        message: str,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> "NexusError":
        return cls(code, message, ErrorSeverity.CRITICAL, stage, context)

    @classmethod
    def retryable(
        cls,
        code: str,
        message: str,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> "NexusError":
        return cls(code, message, ErrorSeverity.RETRYABLE, stage, context)

    @classmethod
    def fallback(
        cls,
        code: str,
        message: str,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> "NexusError":
        return cls(code, message, ErrorSeverity.FALLBACK, stage, context)

    @classmethod
    def degraded(
        cls,
        code: str,
        message: str,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> "NexusError":
        return cls(code, message, ErrorSeverity.DEGRADED, stage, context)

    @classmethod
    def recoverable(
        cls,
        code: str,
        message: str,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> "NexusError":
        return cls(code, message, ErrorSeverity.RECOVERABLE, stage, context)

    @classmethod
    def from_error(cls, error: Any, stage: str | None = None) -> "NexusError":
        """Wrap anything raised into a NexusError, CRITICAL unless already classified."""
        if isinstance(error, NexusError):
            if stage and not error.stage:
                wrapped = cls(
                    error.code,
                    error.message,
                    error.severity,
                    stage,
                    error.context,
                    timestamp=error.timestamp,
                )
                wrapped.__cause__ = error.__cause__
                return wrapped
            return error

        if isinstance(error, BaseException):
            wrapped = cls(
                NEXUS_UNKNOWN_ERROR,
                str(error),
                ErrorSeverity.CRITICAL,
                stage,
                {
                    "originalName": type(error).__name__,
                    "originalStack": "".join(traceback.format_exception(error)),
                },
            )
            wrapped.__cause__ = error
            return wrapped

        if isinstance(error, str):
            return cls(NEXUS_UNKNOWN_ERROR, error, ErrorSeverity.CRITICAL, stage)

        return cls(
            NEXUS_UNKNOWN_ERROR,
            str(error),
            ErrorSeverity.CRITICAL,
            stage,
            {"originalValue": error},
        )


def is_retryable(error: Any) -> bool:
    """True only for errors classified RETRYABLE."""
    return isinstance(error, NexusError) and error.is_retryable


def get_severity(error: Any) -> ErrorSeverity:
    """Severity of ``error``; anything unclassified counts as CRITICAL."""
    if isinstance(error, NexusError):
        return error.severity
    return ErrorSeverity.CRITICAL


def should_fallback(error: Any) -> bool:
    """True when the next provider should be tried."""
    return get_severity(error) in (ErrorSeverity.FALLBACK, ErrorSeverity.RETRYABLE)


def can_continue(error: Any) -> bool:
    """True when the pipeline may continue past the failed stage."""
    return get_severity(error) in (ErrorSeverity.DEGRADED, ErrorSeverity.RECOVERABLE)
