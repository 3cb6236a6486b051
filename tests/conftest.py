"""
Global pytest configuration and fixtures for test isolation.

Every test starts from clean global state: cached settings and container,
the metrics collector, the tracing manager and the trace id are reset, and
``random`` is reseeded so retry jitter is reproducible.
"""

import logging
import random
from typing import Any

import pytest

import nexus_orchestrator.observability.metrics as metrics_module
import nexus_orchestrator.observability.tracing as tracing_module
from nexus_orchestrator.config.container import get_container
from nexus_orchestrator.config.settings import PipelineConfig, RetryConfig, Settings, get_settings
from nexus_orchestrator.core.pipeline import PipelineExecutor
from nexus_orchestrator.core.stages import (
    STAGE_ORDER,
    ProviderInfo,
    Stage,
    StageCost,
    StageInput,
    StageOutput,
    StageRegistry,
)
from nexus_orchestrator.core.state import PipelineStateStore
from nexus_orchestrator.cost.budget import StoreBudgetTracker
from nexus_orchestrator.incidents.logger import IncidentLogger
from nexus_orchestrator.incidents.queries import IncidentQueries
from nexus_orchestrator.observability.logging import clear_trace_id
from nexus_orchestrator.quality.checkpoint import QualityGate
from nexus_orchestrator.review.queue import ReviewQueue
from nexus_orchestrator.storage.documents import InMemoryDocumentStore
from nexus_orchestrator.topics.manager import TopicQueue

PIPELINE_ID = "2026-01-22"


def reset_all_global_state():
    """Completely reset all global state and reseed everything."""
    random.seed(1337)
    get_settings.cache_clear()
    get_container.cache_clear()
    metrics_module._metrics_collector = None
    tracing_module._tracing_manager = None
    clear_trace_id()


@pytest.fixture(autouse=True)
def test_isolation():
    """Per-test isolation to ensure clean state for each test."""
    reset_all_global_state()
    yield


@pytest.fixture
def restore_root_logger():
    """Undo handler and level changes made by setup_logging."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def store():
    """Fresh in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def fast_settings():
    """Settings with zero retry delays and no state-init backoff."""
    return Settings(
        retry=RetryConfig(base_delay_ms=0, max_delay_ms=0, stages={}),
        pipeline=PipelineConfig(state_init_backoff_seconds=0),
    )


def make_output(
    data: Any = None,
    *,
    provider: str = "primary-provider",
    tier: str = "primary",
    attempts: int = 1,
    cost: float = 0.0,
    breakdown: list[dict[str, Any]] | None = None,
    measurements: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
    artifacts: list[dict[str, Any]] | None = None,
) -> StageOutput:
    """Build a successful stage output."""
    return StageOutput(
        success=True,
        data=data if data is not None else {},
        provider=ProviderInfo(name=provider, tier=tier, attempts=attempts),
        quality={"measurements": measurements or {}},
        cost=StageCost(total_cost=cost, breakdown=breakdown or []),
        warnings=warnings or [],
        artifacts=artifacts or [],
    )


class ScriptedStage(Stage):
    """Stage that records its inputs and fails or succeeds as scripted."""

    def __init__(self, name: str):
        super().__init__(name)
        self.calls: list[StageInput] = []
        self.failures: list[Exception] = []
        self.always: Exception | None = None
        self.output = make_output({"stage": name})

    def fail_times(self, count: int, error: Exception) -> None:
        self.failures.extend([error] * count)

    def reset(self) -> None:
        self.calls.clear()
        self.failures.clear()
        self.always = None

    async def execute(self, stage_input: StageInput) -> StageOutput:
        self.calls.append(stage_input)
        if self.failures:
            raise self.failures.pop(0)
        if self.always is not None:
            raise self.always
        return self.output


class PipelineHarness:
    """Executor wired to real collaborators over one in-memory store."""

    def __init__(self, store: InMemoryDocumentStore, settings: Settings):
        self.store = store
        self.settings = settings
        self.stages = {name: ScriptedStage(name) for name in STAGE_ORDER}
        self.registry = StageRegistry(self.stages.values())
        self.state = PipelineStateStore(store)
        self.review_queue = ReviewQueue(store)
        self.quality_gate = QualityGate(store, self.review_queue)
        self.topic_queue = TopicQueue(store)
        self.budget = StoreBudgetTracker(store)
        self.incident_queries = IncidentQueries(store)
        self.incident_logger = IncidentLogger(store, self.incident_queries)
        self.executor = PipelineExecutor(
            self.state,
            self.registry,
            incident_logger=self.incident_logger,
            quality_gate=self.quality_gate,
            topic_queue=self.topic_queue,
            budget_tracker=self.budget,
            settings=settings,
        )

    def reset_stages(self) -> None:
        for stage in self.stages.values():
            stage.reset()


@pytest.fixture
def harness(store, fast_settings):
    """Pipeline executor with scripted stages for every known stage."""
    return PipelineHarness(store, fast_settings)


@pytest.fixture
def stage_output():
    """Factory for successful stage outputs."""
    return make_output
