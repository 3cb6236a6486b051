"""
Dependency injection container for the orchestrator's collaborators.

Key features:
- One explicitly constructed document store shared by every collaborator
- Query cache owned by the incident queries
- Lazy initialization of services through named factories
- Lifecycle management for async resources
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, TypeVar

from ..observability.logging import get_logger
from .settings import Settings, get_settings

T = TypeVar("T")

logger = get_logger(__name__)


class Container:
    """Dependency injection container with async lifecycle management."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Any] = {}
        self._singletons: dict[str, Any] = {}
        self._async_resources: dict[str, Any] = {}

    def register_factory(self, name: str, factory: Any) -> None:
        """Register a factory function for a service."""
        self._factories[name] = factory

    def register_singleton(self, name: str, instance: Any) -> None:
        """Register a singleton instance."""
        self._singletons[name] = instance

    def get(self, name: str, default: Any = None) -> Any:
        """Get a service by name."""
        if name in self._singletons:
            return self._singletons[name]

        if name in self._services:
            return self._services[name]

        if name in self._factories:
            instance = self._factories[name](self)
            self._services[name] = instance
            return instance

        return default

    async def get_async(self, name: str, default: Any = None) -> Any:
        """Get an async service by name, entering it if it is an async context manager."""
        if name in self._async_resources:
            return self._async_resources[name]

        service = self.get(name, default)

        if hasattr(service, "__aenter__"):
            async_service = await service.__aenter__()
            self._async_resources[name] = async_service
            return async_service

        return service

    async def cleanup(self) -> None:
        """Cleanup all async resources."""
        for name, resource in self._async_resources.items():
            if hasattr(resource, "__aexit__"):
                try:
                    await resource.__aexit__(None, None, None)
                except Exception as e:
                    logger.error("Error cleaning up resource", resource=name, error=str(e))

        self._async_resources.clear()

    @asynccontextmanager
    async def lifespan(self):
        """Async context manager for container lifecycle."""
        try:
            yield self
        finally:
            await self.cleanup()


def setup_container(settings: Settings | None = None) -> Container:
    """Setup container with default service factories."""
    container = Container(settings)

    def _document_store_factory(c: Container):
        from ..storage.documents import InMemoryDocumentStore, LocalDocumentStore

        if c.settings.storage.backend == "local":
            return LocalDocumentStore(c.settings.storage.root)
        return InMemoryDocumentStore()

    def _state_store_factory(c: Container):
        from ..core.state import PipelineStateStore

        return PipelineStateStore(
            c.get("document_store"),
            max_pipeline_duration_ms=c.settings.pipeline.max_pipeline_duration_ms,
        )

    def _incident_queries_factory(c: Container):
        from ..incidents.queries import IncidentQueries
        from ..storage.cache import TTLCache

        return IncidentQueries(
            c.get("document_store"), TTLCache(default_ttl=c.settings.incidents.cache_ttl_seconds)
        )

    def _incident_logger_factory(c: Container):
        from ..incidents.logger import IncidentLogger

        return IncidentLogger(c.get("document_store"), c.get("incident_queries"))

    def _review_queue_factory(c: Container):
        from ..review.queue import ReviewQueue

        return ReviewQueue(c.get("document_store"))

    def _topic_queue_factory(c: Container):
        from ..topics.manager import TopicQueue

        return TopicQueue(c.get("document_store"), max_retries=c.settings.queue.max_retries)

    def _budget_tracker_factory(c: Container):
        from ..cost.budget import StoreBudgetTracker

        cost = c.settings.cost
        return StoreBudgetTracker(
            c.get("document_store"),
            initial_credit=cost.initial_credit,
            warning_threshold=cost.warning_threshold,
            critical_threshold=cost.critical_threshold,
            alert_cooldown_seconds=cost.alert_cooldown_seconds,
            alert_sink=c.get("alert_sink"),
        )

    def _quality_gate_factory(c: Container):
        from ..quality.checkpoint import QualityGate

        return QualityGate(
            c.get("document_store"),
            c.get("review_queue"),
            publish_stage=c.settings.pipeline.publish_stage,
        )

    def _stage_registry_factory(c: Container):
        from ..core.stages import StageRegistry

        return StageRegistry()

    def _executor_factory(c: Container):
        from ..core.pipeline import PipelineExecutor

        return PipelineExecutor.from_container(c)

    container.register_factory("document_store", _document_store_factory)
    container.register_factory("state_store", _state_store_factory)
    container.register_factory("incident_queries", _incident_queries_factory)
    container.register_factory("incident_logger", _incident_logger_factory)
    container.register_factory("review_queue", _review_queue_factory)
    container.register_factory("topic_queue", _topic_queue_factory)
    container.register_factory("budget_tracker", _budget_tracker_factory)
    container.register_factory("quality_gate", _quality_gate_factory)
    container.register_factory("stage_registry", _stage_registry_factory)
    container.register_factory("executor", _executor_factory)

    return container


@lru_cache
def get_container() -> Container:
    """Get cached container instance."""
    return setup_container()
