"""Core orchestration primitives: errors, retry, fallback and the stage contract."""

from .errors import ErrorSeverity, NexusError, can_continue, get_severity, is_retryable, should_fallback
from .fallback import FallbackAttempt, FallbackResult, Provider, with_fallback
from .retry import RetryResult, calculate_delay, with_retry
from .stages import (
    STAGE_CRITICALITY,
    STAGE_ORDER,
    FunctionStage,
    ProviderInfo,
    QualityContext,
    Stage,
    StageCost,
    StageInput,
    StageName,
    StageOutput,
    StageRegistry,
)

__all__ = [
    "ErrorSeverity",
    "NexusError",
    "can_continue",
    "get_severity",
    "is_retryable",
    "should_fallback",
    "FallbackAttempt",
    "FallbackResult",
    "Provider",
    "with_fallback",
    "RetryResult",
    "calculate_delay",
    "with_retry",
    "STAGE_CRITICALITY",
    "STAGE_ORDER",
    "FunctionStage",
    "ProviderInfo",
    "QualityContext",
    "Stage",
    "StageCost",
    "StageInput",
    "StageName",
    "StageOutput",
    "StageRegistry",
]
