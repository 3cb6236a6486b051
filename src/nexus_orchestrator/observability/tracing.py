"""
OpenTelemetry tracing for pipeline runs and stage invocations.

Key features:
- Spans around every pipeline run and stage call
- NoOp tracer until an SDK provider is installed
- Error recording and span status on failure
"""

import asyncio
import functools
from collections.abc import Callable
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, SpanExporter
from opentelemetry.trace import NoOpTracer, Status, StatusCode, Tracer

from .logging import get_logger

logger = get_logger(__name__)


class TracingManager:
    """Owns the tracer provider for the orchestrator."""

    def __init__(self, service_name: str = "nexus-orchestrator", service_version: str = "1.0.0"):
        self.service_name = service_name
        self.service_version = service_version
        self.tracer_provider: TracerProvider | None = None
        self.tracer: Tracer = NoOpTracer()

    def initialize(self, exporter: SpanExporter | None = None) -> None:
        """Install an SDK tracer provider, optionally exporting spans."""
        resource = Resource.create(
            {"service.name": self.service_name, "service.version": self.service_version}
        )
        self.tracer_provider = TracerProvider(resource=resource)
        if exporter is not None:
            self.tracer_provider.add_span_processor(SimpleSpanProcessor(exporter))

        self.tracer = self.tracer_provider.get_tracer(self.service_name, self.service_version)
        logger.info("Tracing initialized", service=self.service_name)

    @contextmanager
    def span(self, name: str, attributes: dict[str, Any] | None = None):
        """Context manager for creating spans."""
        with self.tracer.start_as_current_span(name) as span:
            for key, value in (attributes or {}).items():
                span.set_attribute(key, str(value))
            try:
                yield span
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

    def shutdown(self) -> None:
        if self.tracer_provider:
            self.tracer_provider.shutdown()
        self.tracer = NoOpTracer()


# Global tracing manager
_tracing_manager: TracingManager | None = None


def setup_tracing(
    service_name: str = "nexus-orchestrator",
    service_version: str = "1.0.0",
    exporter: SpanExporter | None = None,
) -> TracingManager:
    """Setup global tracing manager with an SDK provider."""
    global _tracing_manager
    _tracing_manager = TracingManager(service_name, service_version)
    _tracing_manager.initialize(exporter)
    return _tracing_manager


def get_tracing_manager() -> TracingManager:
    """Get global tracing manager; spans are no-ops until setup_tracing runs."""
    global _tracing_manager
    if _tracing_manager is None:
        _tracing_manager = TracingManager()
    return _tracing_manager


def get_tracer() -> Tracer:
    return get_tracing_manager().tracer


def trace_span(name: str | None = None, attributes: dict[str, Any] | None = None):
    """Decorator for automatic span creation around sync or async callables."""

    def decorator(func: Callable) -> Callable:
        span_name = name or f"{func.__module__}.{func.__qualname__}"
        span_attributes = {"function.name": func.__name__, **(attributes or {})}

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            with get_tracing_manager().span(span_name, span_attributes) as span:
                result = await func(*args, **kwargs)
                if hasattr(result, "success"):
                    span.set_attribute("result.success", bool(result.success))
                if hasattr(result, "status"):
                    span.set_attribute("result.status", str(result.status))
                return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with get_tracing_manager().span(span_name, span_attributes):
                return func(*args, **kwargs)

        return async_wrapper if asyncio.iscoroutinefunction(func) else sync_wrapper

    return decorator


def add_span_attributes(**attributes: Any) -> None:
    """Add attributes to the current span."""
    current_span = trace.get_current_span()
    if current_span.is_recording():
        for key, value in attributes.items():
            current_span.set_attribute(key, str(value))
