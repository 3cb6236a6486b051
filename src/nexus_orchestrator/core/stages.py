"""
Stage contract for the content pipeline.

Stages form a closed set (``StageName``) behind one polymorphic interface:
``Stage.execute(StageInput) -> StageOutput``, raising ``NexusError`` on
failure. The executor looks stages up in a ``StageRegistry`` that only
accepts known names.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .errors import NEXUS_INVALID_STAGE, ErrorSeverity, NexusError


class StageName(StrEnum):
    """Every stage the orchestrator knows about."""

    NEWS_SOURCING = "news-sourcing"
    RESEARCH = "research"
    SCRIPT_GEN = "script-gen"
    PRONUNCIATION = "pronunciation"
    TTS = "tts"
    VISUAL_GEN = "visual-gen"
    RENDER = "render"
    THUMBNAIL = "thumbnail"
    YOUTUBE = "youtube"
    TWITTER = "twitter"
    NOTIFICATIONS = "notifications"


# render is a known stage but is not sequenced
STAGE_ORDER: tuple[StageName, ...] = (
    StageName.NEWS_SOURCING,
    StageName.RESEARCH,
    StageName.SCRIPT_GEN,
    StageName.PRONUNCIATION,
    StageName.TTS,
    StageName.VISUAL_GEN,
    StageName.THUMBNAIL,
    StageName.YOUTUBE,
    StageName.TWITTER,
    StageName.NOTIFICATIONS,
)

STAGE_CRITICALITY: dict[StageName, ErrorSeverity] = {
    StageName.NEWS_SOURCING: ErrorSeverity.CRITICAL,
    StageName.RESEARCH: ErrorSeverity.CRITICAL,
    StageName.SCRIPT_GEN: ErrorSeverity.CRITICAL,
    StageName.TTS: ErrorSeverity.CRITICAL,
    StageName.RENDER: ErrorSeverity.CRITICAL,
    StageName.YOUTUBE: ErrorSeverity.CRITICAL,
    StageName.PRONUNCIATION: ErrorSeverity.DEGRADED,
    StageName.VISUAL_GEN: ErrorSeverity.DEGRADED,
    StageName.THUMBNAIL: ErrorSeverity.DEGRADED,
    StageName.TWITTER: ErrorSeverity.RECOVERABLE,
    StageName.NOTIFICATIONS: ErrorSeverity.RECOVERABLE,
}


def is_known_stage(name: str) -> bool:
    return name in StageName._value2member_map_


def get_stage_criticality(stage: str) -> ErrorSeverity:
    """How essential ``stage`` is; unknown stages count as CRITICAL."""
    if not is_known_stage(stage):
        return ErrorSeverity.CRITICAL
    return STAGE_CRITICALITY[StageName(stage)]


@dataclass
class ProviderInfo:
    name: str
    tier: str = "primary"
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "tier": self.tier, "attempts": self.attempts}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderInfo":
        return cls(
            name=data.get("name", "unknown"),
            tier=data.get("tier", "primary"),
            attempts=data.get("attempts", 1),
        )


@dataclass
class StageCost:
    total_cost: float = 0.0
    breakdown: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"totalCost": self.total_cost, "breakdown": list(self.breakdown)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StageCost":
        return cls(total_cost=data.get("totalCost", 0.0), breakdown=list(data.get("breakdown", [])))


@dataclass
class QualityContext:
    """Run-wide, append-only record of degradation, fallbacks and flags."""

    degraded_stages: list[str] = field(default_factory=list)
    fallbacks_used: list[str] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)

    def add_degraded(self, stage: str) -> None:
        if stage not in self.degraded_stages:
            self.degraded_stages.append(stage)

    def add_fallback(self, stage: str, provider: str) -> None:
        self.fallbacks_used.append(f"{stage}:{provider}")

    def add_flag(self, flag: str) -> None:
        self.flags.append(flag)

    def copy(self) -> "QualityContext":
        return QualityContext(
            degraded_stages=list(self.degraded_stages),
            fallbacks_used=list(self.fallbacks_used),
            flags=list(self.flags),
        )

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "degradedStages": list(self.degraded_stages),
            "fallbacksUsed": list(self.fallbacks_used),
            "flags": list(self.flags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "QualityContext":
        data = data or {}
        return cls(
            degraded_stages=list(data.get("degradedStages", [])),
            fallbacks_used=list(data.get("fallbacksUsed", [])),
            flags=list(data.get("flags", [])),
        )


@dataclass
class StageInput:
    pipeline_id: str
    previous_stage: str | None
    data: Any
    config: dict[str, Any]
    quality_context: QualityContext


@dataclass
class StageOutput:
    """What a stage hands back on success."""

    success: bool
    data: Any
    provider: ProviderInfo
    quality: dict[str, Any] = field(default_factory=dict)
    cost: StageCost = field(default_factory=StageCost)
    duration_ms: float = 0.0
    warnings: list[str] = field(default_factory=list)
    artifacts: list[dict[str, Any]] = field(default_factory=list)

    @property
    def measurements(self) -> dict[str, Any]:
        return self.quality.get("measurements", {}) or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "quality": self.quality,
            "cost": self.cost.to_dict(),
            "durationMs": self.duration_ms,
            "provider": self.provider.to_dict(),
            "warnings": list(self.warnings),
            "artifacts": list(self.artifacts),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StageOutput":
        return cls(
            success=data.get("success", True),
            data=data.get("data"),
            quality=data.get("quality", {}) or {},
            cost=StageCost.from_dict(data.get("cost", {}) or {}),
            duration_ms=data.get("durationMs", 0.0),
            provider=ProviderInfo.from_dict(data.get("provider", {}) or {}),
            warnings=list(data.get("warnings", [])),
            artifacts=list(data.get("artifacts", [])),
        )


class Stage(ABC):
    """Abstract base class for pipeline stages."""

    def __init__(self, name: str):
        if not is_known_stage(name):
            raise NexusError.critical(NEXUS_INVALID_STAGE, f"Unknown stage: {name}", name)
        self.name = StageName(name)

    @abstractmethod
    async def execute(self, stage_input: StageInput) -> StageOutput:
        """Run the stage. Raises NexusError on failure."""
        ...


class FunctionStage(Stage):
    """Stage backed by a plain coroutine function."""

    def __init__(self, name: str, fn: Callable[[StageInput], Awaitable[StageOutput]]):
        super().__init__(name)
        self.fn = fn

    async def execute(self, stage_input: StageInput) -> StageOutput:
        return await self.fn(stage_input)


class StageRegistry:
    """Known stages keyed by name."""

    def __init__(self, stages: Iterable[Stage] = ()):
        self._stages: dict[StageName, Stage] = {}
        for stage in stages:
            self.register(stage)

    def register(self, stage: Stage) -> None:
        if not is_known_stage(stage.name):
            raise NexusError.critical(
                NEXUS_INVALID_STAGE, f"Unknown stage: {stage.name}", str(stage.name)
            )
        self._stages[StageName(stage.name)] = stage

    def get(self, name: str) -> Stage:
        if not is_known_stage(name) or StageName(name) not in self._stages:
            raise NexusError.critical(
                NEXUS_INVALID_STAGE, f"No stage registered for {name}", name
            )
        return self._stages[StageName(name)]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and is_known_stage(name) and StageName(name) in self._stages

    def names(self) -> list[StageName]:
        return list(self._stages)
