"""
Bounded retries with exponential backoff and jitter, driven by error severity.

Key features:
- Retry history returned with the result
- Optional observer notified before every retry delay
- Option validation before the operation is ever invoked
"""

import asyncio
import math
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

from ..observability.logging import get_logger
from ..observability.metrics import counter
from .errors import NEXUS_RETRY_INVALID_OPTIONS, ErrorSeverity, NexusError

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 30000


class RetryObserver(Protocol):
    """Receives one notification per retry, before the backoff sleep."""

    def on_retry(self, attempt: int, delay_ms: int, error: NexusError) -> None: ...


@dataclass
class RetryAttempt:
    attempt: int
    error: str
    delay: int

    def to_dict(self) -> dict[str, Any]:
        return {"attempt": self.attempt, "error": self.error, "delay": self.delay}


@dataclass
class RetryResult(Generic[T]):
    """Successful outcome of ``with_retry``."""

    result: T
    attempts: int
    total_delay_ms: int
    history: list[RetryAttempt] = field(default_factory=list)


def calculate_delay(attempt: int, base_delay_ms: int, max_delay_ms: int) -> int:
    """Backoff for zero-based ``attempt``: capped exponential with 50-100% jitter."""
    capped = min(base_delay_ms * (2**attempt), max_delay_ms)
    jitter = 0.5 + random.random() * 0.5
    return math.floor(capped * jitter)


def _validate(max_retries: int, base_delay_ms: int, max_delay_ms: int, stage: str | None) -> None:
    for name, value in (
        ("max_retries", max_retries),
        ("base_delay_ms", base_delay_ms),
        ("max_delay_ms", max_delay_ms),
    ):
        if value < 0:
            raise NexusError.critical(
                NEXUS_RETRY_INVALID_OPTIONS,
                f"{name} must be non-negative, got {value}",
                stage,
                {name: value},
            )


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
    stage: str | None = None,
    observer: RetryObserver | None = None,
) -> RetryResult[T]:
    """
    Call ``fn`` until it succeeds, retrying only RETRYABLE errors.

    Any other failure is re-raised unchanged on the spot. Once more than
    ``max_retries`` retries would be needed, a CRITICAL error is raised that
    keeps the original code, message and stage and records the retry history
    in its context.
    """
    _validate(max_retries, base_delay_ms, max_delay_ms, stage)

    history: list[RetryAttempt] = []
    total_delay_ms = 0
    attempt = 0
    stage_label = stage or "unknown"

    while True:
        try:
            result = await fn()
            if attempt > 0:
                logger.info("Operation succeeded after retry", stage=stage, attempts=attempt + 1)
            return RetryResult(
                result=result,
                attempts=attempt + 1,
                total_delay_ms=total_delay_ms,
                history=history,
            )
        except Exception as e:
            error = NexusError.from_error(e, stage)
            if not error.is_retryable:
                raise

            if attempt >= max_retries:
                counter("retry_exhausted_total", "Retry sequences that ran out").add(
                    1, {"stage": stage_label}
                )
                logger.error(
                    "Retries exhausted",
                    stage=stage,
                    code=error.code,
                    attempts=attempt + 1,
                )
                exhausted = NexusError(
                    error.code,
                    error.message,
                    ErrorSeverity.CRITICAL,
                    error.stage or stage,
                    {
                        **error.context,
                        "originalSeverity": error.severity.value,
                        "retryAttempts": attempt + 1,
                        "exhaustedRetries": True,
                        "retryHistory": [h.to_dict() for h in history],
                    },
                )
                raise exhausted from e

            delay_ms = calculate_delay(attempt, base_delay_ms, max_delay_ms)
            history.append(RetryAttempt(attempt=attempt + 1, error=error.message, delay=delay_ms))
            total_delay_ms += delay_ms
            counter("retry_attempts_total", "Retries scheduled").add(1, {"stage": stage_label})

            logger.warning(
                "Retrying after failure",
                stage=stage,
                code=error.code,
                attempt=attempt + 1,
                max_retries=max_retries,
                delay_ms=delay_ms,
            )
            if observer is not None:
                observer.on_retry(attempt + 1, delay_ms, error)

            await asyncio.sleep(delay_ms / 1000)
            attempt += 1
