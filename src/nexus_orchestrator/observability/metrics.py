"""
Pipeline metrics on top of OpenTelemetry.

Key features:
- Named instruments for stages, retries, fallbacks, incidents and quality decisions
- Business counters kept in-process for run summaries
- No-op meter fallback until metrics are set up
"""

import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any

from opentelemetry.metrics import Counter as OTelCounter
from opentelemetry.metrics import Histogram, Meter, NoOpMeter

from .logging import get_logger

logger = get_logger(__name__)

METRIC_PREFIX = "nexus"


class MetricsCollector:
    """Centralized metrics collection and management."""

    def __init__(self, meter: Meter):
        self.meter = meter
        self._counters: dict[str, OTelCounter] = {}
        self._histograms: dict[str, Histogram] = {}

        # Business metrics
        self._stage_runs: dict[str, int] = defaultdict(int)
        self._stage_failures: dict[str, int] = defaultdict(int)
        self._stage_durations: dict[str, list[float]] = defaultdict(list)
        self._pipeline_outcomes: dict[str, int] = defaultdict(int)

        self._setup_default_metrics()

    def _setup_default_metrics(self) -> None:
        """Setup default orchestrator metrics."""
        self._counters["stage_executions_total"] = self.meter.create_counter(
            f"{METRIC_PREFIX}_stage_executions_total",
            description="Total stage executions by outcome",
            unit="1",
        )
        self._histograms["stage_duration"] = self.meter.create_histogram(
            f"{METRIC_PREFIX}_stage_duration_ms",
            description="Stage execution duration",
            unit="ms",
        )
        self._counters["pipeline_runs_total"] = self.meter.create_counter(
            f"{METRIC_PREFIX}_pipeline_runs_total",
            description="Total pipeline runs by terminal status",
            unit="1",
        )
        self._histograms["pipeline_duration"] = self.meter.create_histogram(
            f"{METRIC_PREFIX}_pipeline_duration_ms",
            description="Pipeline run duration",
            unit="ms",
        )

    def counter(self, name: str, description: str = "", unit: str = "1") -> OTelCounter:
        """Get or create a counter metric."""
        if name not in self._counters:
            self._counters[name] = self.meter.create_counter(
                f"{METRIC_PREFIX}_{name}", description=description, unit=unit
            )
        return self._counters[name]

    def histogram(self, name: str, description: str = "", unit: str = "1") -> Histogram:
        """Get or create a histogram metric."""
        if name not in self._histograms:
            self._histograms[name] = self.meter.create_histogram(
                f"{METRIC_PREFIX}_{name}", description=description, unit=unit
            )
        return self._histograms[name]

    def record_stage(self, stage: str, duration_ms: float, outcome: str) -> None:
        """Record one stage execution."""
        attributes = {"stage": stage, "outcome": outcome}

        self._counters["stage_executions_total"].add(1, attributes)
        self._histograms["stage_duration"].record(duration_ms, attributes)

        self._stage_runs[stage] += 1
        if outcome != "completed":
            self._stage_failures[stage] += 1
        self._stage_durations[stage].append(duration_ms)

    def record_pipeline(self, status: str, duration_ms: float) -> None:
        """Record a finished pipeline run."""
        attributes = {"status": status}

        self._counters["pipeline_runs_total"].add(1, attributes)
        self._histograms["pipeline_duration"].record(duration_ms, attributes)
        self._pipeline_outcomes[status] += 1

    def get_business_metrics(self) -> dict[str, Any]:
        """Get aggregated stage and pipeline metrics."""
        stages = {}
        for stage, runs in self._stage_runs.items():
            durations = self._stage_durations[stage]
            stages[stage] = {
                "runs": runs,
                "failures": self._stage_failures[stage],
                "failure_rate": self._stage_failures[stage] / runs if runs else 0,
                "avg_duration_ms": sum(durations) / len(durations) if durations else 0,
            }

        return {"stages": stages, "pipelines": dict(self._pipeline_outcomes)}


# Global metrics collector instance
_metrics_collector: MetricsCollector | None = None


def setup_metrics(meter: Meter) -> MetricsCollector:
    """Setup global metrics collector."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(meter)
    return _metrics_collector


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector, falling back to a no-op meter."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(NoOpMeter(METRIC_PREFIX))
    return _metrics_collector


def counter(name: str, description: str = "", unit: str = "1") -> OTelCounter:
    """Get or create a counter metric."""
    return get_metrics_collector().counter(name, description, unit)


def histogram(name: str, description: str = "", unit: str = "1") -> Histogram:
    """Get or create a histogram metric."""
    return get_metrics_collector().histogram(name, description, unit)


@contextmanager
def timer(metric_name: str, attributes: dict[str, str] | None = None):
    """Context manager recording elapsed milliseconds into a histogram."""
    start_time = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        histogram(f"{metric_name}_duration_ms", "Operation duration", "ms").record(
            duration_ms, attributes or {}
        )
