"""
Tests for structured logging, metrics and tracing.
"""

import io
import logging
import sys

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from nexus_orchestrator.observability.logging import (
    StructuredFormatter,
    get_logger,
    get_trace_id,
    set_trace_id,
    setup_logging,
)
from nexus_orchestrator.observability.metrics import (
    get_metrics_collector,
    setup_metrics,
    timer,
)
from nexus_orchestrator.observability.tracing import (
    get_tracer,
    get_tracing_manager,
    setup_tracing,
    trace_span,
)

from conftest import PIPELINE_ID


@pytest.fixture
def log_stream(restore_root_logger):
    stream = io.StringIO()
    setup_logging("DEBUG", stream)
    return stream


@pytest.fixture
def metric_reader():
    reader = InMemoryMetricReader()
    setup_metrics(MeterProvider(metric_readers=[reader]).get_meter("test"))
    return reader


@pytest.fixture
def span_exporter():
    exporter = InMemorySpanExporter()
    setup_tracing("nexus-test", "0.0.1", exporter)
    yield exporter
    get_tracing_manager().shutdown()


def metric_names(reader: InMemoryMetricReader) -> set[str]:
    data = reader.get_metrics_data()
    return {
        metric.name
        for resource in data.resource_metrics
        for scope in resource.scope_metrics
        for metric in scope.metrics
    }


class TestStructuredLogging:
    """Test key=value output with trace ids."""

    def test_line_format(self, log_stream):
        set_trace_id(PIPELINE_ID)

        get_logger("nexus_orchestrator.core.pipeline").info(
            "Stage failed", stage="tts", error="disk full"
        )

        line = log_stream.getvalue().strip()
        assert "level=INFO" in line
        assert f"trace={PIPELINE_ID}" in line
        assert "mod=pipeline" in line
        assert 'msg="Stage failed"' in line
        assert "stage=tts" in line
        assert 'error="disk full"' in line

    def test_missing_trace_id(self, log_stream):
        get_logger("nexus_orchestrator.test").warning("No run")
        assert "trace=- " in log_stream.getvalue()
        assert get_trace_id() is None

    def test_timed(self, log_stream):
        get_logger("nexus_orchestrator.test").timed("Stage completed", 12.34, stage="tts")
        assert "ms=12.3" in log_stream.getvalue()

    def test_bind(self, log_stream):
        """Bound fields appear on every line of the bound logger only."""
        base = get_logger("nexus_orchestrator.test")
        bound = base.bind(pipeline_id=PIPELINE_ID)

        bound.info("first")
        base.info("second")

        first, second = log_stream.getvalue().strip().splitlines()
        assert f"pipeline_id={PIPELINE_ID}" in first
        assert "pipeline_id" not in second

    def test_level_filter(self, restore_root_logger):
        stream = io.StringIO()
        setup_logging("warning", stream)

        logger = get_logger("nexus_orchestrator.test")
        logger.info("hidden")
        logger.error("shown")

        assert "hidden" not in stream.getvalue()
        assert "shown" in stream.getvalue()

    def test_exception_traceback(self):
        formatter = StructuredFormatter()
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord(
                "nexus_orchestrator.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )

        output = formatter.format(record)
        assert 'msg="failed"' in output
        assert "ValueError: bad" in output


class TestMetrics:
    """Test business metrics and OpenTelemetry instruments."""

    def test_business_metrics(self):
        collector = get_metrics_collector()
        collector.record_stage("tts", 10.0, "completed")
        collector.record_stage("tts", 30.0, "failed")
        collector.record_pipeline("skipped", 40.0)

        metrics = collector.get_business_metrics()

        assert metrics["stages"]["tts"] == {
            "runs": 2,
            "failures": 1,
            "failure_rate": 0.5,
            "avg_duration_ms": 20.0,
        }
        assert metrics["pipelines"] == {"skipped": 1}

    def test_instruments_exported(self, metric_reader):
        collector = get_metrics_collector()
        collector.record_stage("research", 5.0, "completed")
        collector.record_pipeline("completed", 50.0)
        collector.counter("incidents_total", "Incidents").add(1, {"severity": "CRITICAL"})

        names = metric_names(metric_reader)
        assert {
            "nexus_stage_executions_total",
            "nexus_stage_duration_ms",
            "nexus_pipeline_runs_total",
            "nexus_pipeline_duration_ms",
            "nexus_incidents_total",
        } <= names

    def test_counter_reused(self):
        collector = get_metrics_collector()
        assert collector.counter("retries_total") is collector.counter("retries_total")

    def test_timer(self, metric_reader):
        with timer("digest"):
            pass
        assert "nexus_digest_duration_ms" in metric_names(metric_reader)


class TestTracing:
    """Test spans around pipeline runs and decorated callables."""

    def test_noop_until_setup(self):
        span = get_tracer().start_span("anything")
        assert not span.is_recording()

    @pytest.mark.asyncio
    async def test_pipeline_spans(self, harness, span_exporter):
        await harness.executor.execute(PIPELINE_ID)

        spans = span_exporter.get_finished_spans()
        run_span = next(s for s in spans if s.name == "pipeline.execute")
        stage_spans = [s for s in spans if s.name == "pipeline.stage"]

        assert run_span.attributes["result.status"] == "completed"
        assert run_span.attributes["result.success"] is True
        assert len(stage_spans) == 10
        assert stage_spans[0].attributes["stage"] == "news-sourcing"
        assert stage_spans[0].parent.span_id == run_span.context.span_id

    @pytest.mark.asyncio
    async def test_async_error_recorded(self, span_exporter):
        @trace_span("failing.operation")
        async def failing():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await failing()

        (span,) = span_exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.attributes["function.name"] == "failing"
        assert any(event.name == "exception" for event in span.events)

    def test_sync_function_wrapped(self, span_exporter):
        @trace_span(attributes={"component": "digest"})
        def summarize():
            return 3

        assert summarize() == 3
        (span,) = span_exporter.get_finished_spans()
        assert span.name.endswith("summarize")
        assert span.attributes["component"] == "digest"
