"""
Ordered provider fallback with per-attempt tracking.

Providers are tried one after another, never concurrently. Any failure moves
on to the next provider; the first success wins.
"""

import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

from ..observability.logging import get_logger
from ..observability.metrics import counter
from .errors import NEXUS_FALLBACK_EXHAUSTED, NEXUS_FALLBACK_NO_PROVIDERS, NexusError

logger = get_logger(__name__)

T = TypeVar("T")
P = TypeVar("P", bound="NamedProvider")

PRIMARY = "primary"
FALLBACK = "fallback"


class NamedProvider(Protocol):
    name: str


@dataclass(frozen=True)
class Provider:
    """Minimal named provider, for callers without their own provider objects."""

    name: str


class FallbackObserver(Protocol):
    """Receives one notification per provider switch."""

    def on_fallback(self, from_provider: str, to_provider: str, error: NexusError) -> None: ...


@dataclass
class FallbackAttempt:
    provider: str
    success: bool
    duration_ms: float
    error: NexusError | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "provider": self.provider,
            "success": self.success,
            "durationMs": self.duration_ms,
        }
        if self.error is not None:
            data["errorCode"] = self.error.code
        return data


@dataclass
class FallbackResult(Generic[T]):
    result: T
    provider: str
    tier: str
    attempts: list[FallbackAttempt] = field(default_factory=list)


async def with_fallback(
    providers: Sequence[P],
    executor: Callable[[P], Awaitable[T]],
    *,
    stage: str | None = None,
    observer: FallbackObserver | None = None,
) -> FallbackResult[T]:
    """Run ``executor`` against each provider in order until one succeeds."""
    if not providers:
        raise NexusError.critical(
            NEXUS_FALLBACK_NO_PROVIDERS, "No providers configured for fallback", stage
        )

    attempts: list[FallbackAttempt] = []
    stage_label = stage or "unknown"

    for index, provider in enumerate(providers):
        start = time.perf_counter()
        try:
            result = await executor(provider)
        except Exception as e:
            error = NexusError.from_error(e, stage)
            duration_ms = (time.perf_counter() - start) * 1000
            attempts.append(
                FallbackAttempt(
                    provider=provider.name, success=False, duration_ms=duration_ms, error=error
                )
            )
            logger.warning(
                "Provider failed",
                stage=stage,
                provider=provider.name,
                code=error.code,
                duration_ms=round(duration_ms, 2),
            )

            if index + 1 < len(providers):
                next_provider = providers[index + 1].name
                counter("fallback_transitions_total", "Provider switches").add(
                    1, {"stage": stage_label}
                )
                if observer is not None:
                    observer.on_fallback(provider.name, next_provider, error)
            continue

        attempts.append(
            FallbackAttempt(
                provider=provider.name,
                success=True,
                duration_ms=(time.perf_counter() - start) * 1000,
            )
        )
        tier = PRIMARY if index == 0 else FALLBACK
        if tier == FALLBACK:
            logger.info("Fallback provider succeeded", stage=stage, provider=provider.name)
        return FallbackResult(result=result, provider=provider.name, tier=tier, attempts=attempts)

    counter("fallback_exhausted_total", "Fallback chains with no successful provider").add(
        1, {"stage": stage_label}
    )
    raise NexusError.critical(
        NEXUS_FALLBACK_EXHAUSTED,
        f"All {len(providers)} providers failed",
        stage,
        {"attempts": [a.to_dict() for a in attempts]},
    )
