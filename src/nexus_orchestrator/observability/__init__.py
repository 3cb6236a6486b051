"""
Observability for the Nexus orchestrator.

Core Components:
- Structured Logging: single-line key=value records with the pipeline id as trace id
- Metrics: OpenTelemetry counters and histograms for stages, retries and decisions
- Tracing: OpenTelemetry spans around pipeline runs and stage calls

Usage:
    >>> from nexus_orchestrator.observability import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Stage completed", pipeline_id="2026-01-22", stage="tts")

Configuration:
    - NEXUS_OBSERVABILITY__LOG_LEVEL=INFO
    - NEXUS_OBSERVABILITY__ENABLE_METRICS=true
    - NEXUS_OBSERVABILITY__ENABLE_TRACING=false
"""

from .logging import get_logger, set_trace_id, setup_logging
from .metrics import counter, get_metrics_collector, histogram, timer
from .tracing import get_tracer, setup_tracing, trace_span

__all__ = [
    "get_logger",
    "setup_logging",
    "set_trace_id",
    "counter",
    "histogram",
    "timer",
    "get_metrics_collector",
    "trace_span",
    "get_tracer",
    "setup_tracing",
]
