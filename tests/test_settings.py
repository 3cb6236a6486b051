"""
Tests for settings validation and container wiring.
"""

from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from nexus_orchestrator.config.container import Container, get_container, setup_container
from nexus_orchestrator.config.settings import (
    CostConfig,
    ObservabilityConfig,
    Settings,
    StorageConfig,
    get_settings,
)
from nexus_orchestrator.core.errors import NEXUS_PIPELINE_COMPLETED, NexusError
from nexus_orchestrator.core.pipeline import PipelineExecutor, execute_pipeline, resume_pipeline
from nexus_orchestrator.core.stages import STAGE_ORDER
from nexus_orchestrator.storage.documents import InMemoryDocumentStore, LocalDocumentStore

from conftest import PIPELINE_ID, ScriptedStage


class TestSettings:
    """Test defaults, environment overrides and validation."""

    def test_defaults(self):
        settings = Settings()

        assert settings.retry.max_delay_ms == 30000
        assert settings.stage.model_dump() == {"timeout_ms": 300000, "retries": 3}
        assert settings.pipeline.publish_stage == "youtube"
        assert settings.pipeline.max_pipeline_duration_ms == 4 * 60 * 60 * 1000
        assert "pronunciation" not in settings.pipeline.critical_stages
        assert settings.queue.max_retries == 2
        assert settings.cost.warning_threshold == 0.75
        assert settings.storage.backend == "memory"
        assert not settings.is_production()

    @pytest.mark.parametrize(
        "stage, retries, delay",
        [("tts", 5, 3000), ("twitter", 2, 1000), ("render", 3, 5000), ("unknown", 3, 2000)],
    )
    def test_policy_for(self, stage, retries, delay):
        policy = Settings().retry.policy_for(stage)
        assert (policy.max_retries, policy.base_delay_ms) == (retries, delay)

    def test_environment_overrides(self, monkeypatch):
        """Nested sections are set with a double underscore delimiter."""
        monkeypatch.setenv("NEXUS_RETRY__MAX_DELAY_MS", "5000")
        monkeypatch.setenv("NEXUS_STORAGE__BACKEND", "local")
        monkeypatch.setenv("NEXUS_ENVIRONMENT", "production")

        settings = Settings()

        assert settings.retry.max_delay_ms == 5000
        assert settings.retry.base_delay_ms == 2000
        assert settings.storage.backend == "local"
        assert settings.is_production()

    def test_cost_thresholds_validated(self):
        with pytest.raises(ValidationError):
            CostConfig(warning_threshold=1.0, critical_threshold=0.5)

    def test_storage_backend_validated(self):
        with pytest.raises(ValidationError):
            StorageConfig(backend="s3")

    def test_log_level_normalized(self):
        assert ObservabilityConfig(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            ObservabilityConfig(log_level="verbose")

    def test_environment_validated(self):
        with pytest.raises(ValidationError):
            Settings(environment="qa")

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()


class TestContainer:
    """Test service registration and default wiring."""

    def test_one_document_store_shared(self):
        container = setup_container(Settings())
        store = container.get("document_store")

        assert isinstance(store, InMemoryDocumentStore)
        for name in (
            "state_store",
            "incident_queries",
            "incident_logger",
            "review_queue",
            "topic_queue",
            "budget_tracker",
            "quality_gate",
        ):
            assert container.get(name).store is store

    def test_executor_wiring(self):
        container = setup_container(Settings())
        executor = container.get("executor")

        assert isinstance(executor, PipelineExecutor)
        assert executor.state is container.get("state_store")
        assert executor.registry is container.get("stage_registry")
        assert executor.budget is container.get("budget_tracker")
        assert executor.alert_sink is None

    def test_settings_flow_into_services(self):
        settings = Settings(cost=CostConfig(warning_threshold=0.5, critical_threshold=0.8))
        container = setup_container(settings)

        budget = container.get("budget_tracker")
        assert budget.warning_threshold == 0.5
        assert budget.critical_threshold == 0.8
        assert container.get("topic_queue").max_retries == 2
        assert container.get("quality_gate").publish_stage == "youtube"

    def test_alert_sink_singleton(self):
        """A registered alert sink reaches the executor and the budget tracker."""
        sink = AsyncMock()
        container = setup_container(Settings())
        container.register_singleton("alert_sink", sink)

        assert container.get("executor").alert_sink is sink
        assert container.get("budget_tracker").alert_sink is sink

    def test_local_backend(self, tmp_path):
        settings = Settings(storage=StorageConfig(backend="local", root=tmp_path))
        store = setup_container(settings).get("document_store")

        assert isinstance(store, LocalDocumentStore)

    def test_unknown_service(self):
        assert Container(Settings()).get("missing", "fallback") == "fallback"

    def test_get_container_cached(self):
        assert get_container() is get_container()

    @pytest.mark.asyncio
    async def test_async_resources_cleaned_up(self):
        class Resource:
            def __init__(self):
                self.entered = False
                self.exited = False

            async def __aenter__(self):
                self.entered = True
                return self

            async def __aexit__(self, *exc):
                self.exited = True

        resource = Resource()
        container = Container(Settings())
        container.register_singleton("resource", resource)

        async with container.lifespan():
            assert await container.get_async("resource") is resource
            assert resource.entered

        assert resource.exited


class TestModuleLevelRunners:
    """Test execute_pipeline and resume_pipeline through the default container."""

    @pytest.mark.asyncio
    async def test_execute_then_resume(self, monkeypatch):
        monkeypatch.setenv("NEXUS_RETRY__MAX_DELAY_MS", "0")
        registry = get_container().get("stage_registry")
        for name in STAGE_ORDER:
            registry.register(ScriptedStage(name))

        result = await execute_pipeline(PIPELINE_ID)
        assert result.success

        with pytest.raises(NexusError) as exc_info:
            await resume_pipeline(PIPELINE_ID)
        assert exc_info.value.code == NEXUS_PIPELINE_COMPLETED
