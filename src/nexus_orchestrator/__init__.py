"""
Nexus Orchestrator - fault-tolerant pipeline engine for daily video production

Runs a fixed sequence of stages (news sourcing through publishing) for one
pipeline id per day, classifying every failure by severity so that a run ends
completed, failed, skipped or paused instead of crashing.

Key Features:
- Severity-tagged errors with retry and provider fallback primitives
- Durable per-stage state with resume from the last good stage
- Incident log with post-mortem templates and a daily digest
- Pre-publish quality gate backed by a human review queue
- Failed topics re-queued for the next day, budget and cost alerts

Quick Start:
    >>> from nexus_orchestrator import FunctionStage, setup_container
    >>>
    >>> container = setup_container()
    >>> registry = container.get("stage_registry")
    >>> registry.register(FunctionStage("news-sourcing", source_news))
    >>> ...
    >>> result = await container.get("executor").execute("2026-01-22")
    >>> print(result.status, result.completed_stages)

Configuration:
    Environment variables with the NEXUS_ prefix and nested sections:
    - NEXUS_RETRY__MAX_DELAY_MS=30000
    - NEXUS_STORAGE__BACKEND=local
    - NEXUS_OBSERVABILITY__LOG_LEVEL=INFO
"""

__version__ = "1.0.0"

from .config.container import Container, get_container, setup_container
from .config.settings import Settings, get_settings
from .core.errors import ErrorSeverity, NexusError
from .core.fallback import with_fallback
from .core.pipeline import PipelineExecutor, PipelineResult, execute_pipeline, resume_pipeline
from .core.retry import with_retry
from .core.stages import FunctionStage, Stage, StageInput, StageName, StageOutput, StageRegistry
from .core.state import PipelineStatus

__all__ = [
    "Container",
    "get_container",
    "setup_container",
    "Settings",
    "get_settings",
    "ErrorSeverity",
    "NexusError",
    "with_fallback",
    "with_retry",
    "PipelineExecutor",
    "PipelineResult",
    "execute_pipeline",
    "resume_pipeline",
    "FunctionStage",
    "Stage",
    "StageInput",
    "StageName",
    "StageOutput",
    "StageRegistry",
    "PipelineStatus",
]
