"""
Tests for incident logging, resolution, queries and the daily digest.
"""

from datetime import UTC, datetime, timedelta

import pytest

from nexus_orchestrator.core.errors import NEXUS_INCIDENT_NOT_FOUND, ErrorSeverity, NexusError
from nexus_orchestrator.incidents import (
    Incident,
    IncidentError,
    IncidentLogger,
    IncidentQueries,
    IncidentSeverity,
    ResolutionDetails,
    ResolutionType,
    RootCause,
    get_incident_summary_for_digest,
    infer_root_cause,
    is_video_impact_stage,
    map_severity,
)
from nexus_orchestrator.storage.cache import TTLCache

from conftest import PIPELINE_ID


def make_incident(
    stage: str = "tts",
    severity: IncidentSeverity = IncidentSeverity.CRITICAL,
    code: str = "NEXUS_TTS_TIMEOUT",
    start_time: str | None = None,
    date: str = PIPELINE_ID,
) -> Incident:
    return Incident(
        date=date,
        pipeline_id=date,
        stage=stage,
        error=IncidentError(code=code, message=f"{stage} broke"),
        severity=severity,
        start_time=start_time or datetime.now(UTC).isoformat(),
        root_cause=infer_root_cause(code),
    )


@pytest.fixture
def queries(store):
    return IncidentQueries(store)


@pytest.fixture
def incident_logger(store, queries):
    return IncidentLogger(store, queries)


class TestClassification:
    """Test severity mapping and root cause inference."""

    def test_map_severity(self):
        """CRITICAL stays critical; retryable and recoverable are recoverable; rest warn."""
        assert map_severity(ErrorSeverity.CRITICAL) == IncidentSeverity.CRITICAL
        assert map_severity(ErrorSeverity.RECOVERABLE) == IncidentSeverity.RECOVERABLE
        assert map_severity(ErrorSeverity.RETRYABLE) == IncidentSeverity.RECOVERABLE
        assert map_severity(ErrorSeverity.DEGRADED) == IncidentSeverity.WARNING
        assert map_severity(ErrorSeverity.FALLBACK) == IncidentSeverity.WARNING
        assert map_severity("CRITICAL") == IncidentSeverity.CRITICAL

    def test_infer_root_cause(self):
        """Keywords in the error code pick the root cause."""
        assert infer_root_cause("NEXUS_TTS_TIMEOUT") == RootCause.TIMEOUT
        assert infer_root_cause("NEXUS_GEMINI_RATE_LIMIT") == RootCause.RATE_LIMIT
        assert infer_root_cause("NEXUS_TTS_QUOTA_EXCEEDED") == RootCause.QUOTA_EXCEEDED
        assert infer_root_cause("NEXUS_YOUTUBE_AUTH_EXPIRED") == RootCause.AUTH_FAILURE
        assert infer_root_cause("NEXUS_SCRIPT_INVALID_INPUT") == RootCause.DATA_ERROR
        assert infer_root_cause("NEXUS_RENDER_CRASH") == RootCause.UNKNOWN

    def test_video_impact_stages(self):
        assert is_video_impact_stage("tts")
        assert is_video_impact_stage("TTS")
        assert not is_video_impact_stage("twitter")


class TestIncidentLogger:
    """Test incident creation and resolution."""

    @pytest.mark.asyncio
    async def test_ids_are_sequential_per_date(self, incident_logger):
        """Ids are the date plus a zero-padded per-date sequence."""
        first = await incident_logger.log_incident(make_incident())
        second = await incident_logger.log_incident(make_incident(stage="render"))
        other_day = await incident_logger.log_incident(make_incident(date="2026-01-23"))

        assert first == "2026-01-22-001"
        assert second == "2026-01-22-002"
        assert other_day == "2026-01-23-001"

    @pytest.mark.asyncio
    async def test_critical_incident_gets_post_mortem(self, incident_logger, queries):
        """CRITICAL incidents are stored open with a post-mortem template."""
        incident_id = await incident_logger.log_incident(make_incident())
        record = await queries.get_incident_by_id(incident_id)

        assert record.is_open
        assert record.post_mortem is not None
        assert record.post_mortem.impact["stageAffected"] == "tts"
        assert record.post_mortem.impact["potentialVideoImpact"] is True
        assert record.post_mortem.summary == "CRITICAL incident in tts stage: tts broke"
        assert record.root_cause == RootCause.TIMEOUT

    @pytest.mark.asyncio
    async def test_warning_incident_has_no_post_mortem(self, incident_logger, queries):
        incident_id = await incident_logger.log_incident(
            make_incident(stage="visual-gen", severity=IncidentSeverity.WARNING)
        )
        record = await queries.get_incident_by_id(incident_id)
        assert record.post_mortem is None

    @pytest.mark.asyncio
    async def test_stored_with_camel_case_keys(self, incident_logger, store):
        """Incident documents use camelCase fields and plain enum values."""
        incident_id = await incident_logger.log_incident(make_incident())
        document = await store.get_document("incidents", incident_id)

        assert document["pipelineId"] == PIPELINE_ID
        assert document["severity"] == "CRITICAL"
        assert document["rootCause"] == "timeout"
        assert document["isOpen"] is True

    @pytest.mark.asyncio
    async def test_resolve_records_duration(self, incident_logger, queries):
        """Resolving closes the incident with a duration since it started."""
        started = (datetime.now(UTC) - timedelta(seconds=90)).isoformat()
        incident_id = await incident_logger.log_incident(make_incident(start_time=started))

        await incident_logger.resolve_incident(
            incident_id, ResolutionDetails(type=ResolutionType.RETRY, notes="retried")
        )
        record = await queries.get_incident_by_id(incident_id)

        assert not record.is_open
        assert record.end_time
        assert 90_000 <= record.duration < 100_000
        assert record.resolution.type == "retry"
        assert record.resolution.resolved_by == "system"

    @pytest.mark.asyncio
    async def test_resolve_missing_incident(self, incident_logger):
        with pytest.raises(NexusError) as exc_info:
            await incident_logger.resolve_incident(
                "2026-01-22-999", ResolutionDetails(type=ResolutionType.MANUAL)
            )
        assert exc_info.value.code == NEXUS_INCIDENT_NOT_FOUND


class TestIncidentQueries:
    """Test cached lookups and invalidation."""

    @pytest.mark.asyncio
    async def test_queries_by_date_stage_and_open(self, incident_logger, queries):
        await incident_logger.log_incident(make_incident(stage="tts"))
        resolved_id = await incident_logger.log_incident(make_incident(stage="render"))
        await incident_logger.resolve_incident(
            resolved_id, ResolutionDetails(type=ResolutionType.SKIP)
        )

        assert len(await queries.get_incidents_by_date(PIPELINE_ID)) == 2
        assert [i.stage for i in await queries.get_incidents_by_stage("render")] == ["render"]
        assert [i.stage for i in await queries.get_open_incidents()] == ["tts"]

    @pytest.mark.asyncio
    async def test_cache_hides_direct_writes_until_bypassed(self, store, queries):
        """Cached results are served until expiry or bypass."""
        incident_logger = IncidentLogger(store)
        await incident_logger.log_incident(make_incident())
        assert len(await queries.get_incidents_by_date(PIPELINE_ID)) == 1

        await incident_logger.log_incident(make_incident())
        assert len(await queries.get_incidents_by_date(PIPELINE_ID)) == 1
        assert len(await queries.get_incidents_by_date(PIPELINE_ID, bypass_cache=True)) == 2

    @pytest.mark.asyncio
    async def test_logging_through_logger_invalidates(self, incident_logger, queries):
        """A logger wired to the queries clears their cache on writes."""
        await incident_logger.log_incident(make_incident())
        assert len(await queries.get_incidents_by_date(PIPELINE_ID)) == 1

        await incident_logger.log_incident(make_incident())
        assert len(await queries.get_incidents_by_date(PIPELINE_ID)) == 2

    @pytest.mark.asyncio
    async def test_cache_expires(self, store):
        now = [0.0]
        queries = IncidentQueries(store, TTLCache(default_ttl=60, clock=lambda: now[0]))
        incident_logger = IncidentLogger(store)

        await incident_logger.log_incident(make_incident())
        assert len(await queries.get_open_incidents()) == 1
        await incident_logger.log_incident(make_incident())

        now[0] = 61
        assert len(await queries.get_open_incidents()) == 2

    @pytest.mark.asyncio
    async def test_missing_incident_is_none(self, queries):
        assert await queries.get_incident_by_id("nope") is None


class TestIncidentDigest:
    """Test daily digest aggregation."""

    @pytest.mark.asyncio
    async def test_summary_counts(self, store, incident_logger):
        started = (datetime.now(UTC) - timedelta(seconds=10)).isoformat()
        critical = await incident_logger.log_incident(make_incident(start_time=started))
        await incident_logger.log_incident(
            make_incident(stage="visual-gen", severity=IncidentSeverity.WARNING)
        )
        await incident_logger.log_incident(
            make_incident(stage="twitter", severity=IncidentSeverity.RECOVERABLE)
        )
        await incident_logger.log_incident(make_incident(stage="tts"))
        await incident_logger.log_incident(make_incident(date="2026-01-21"))
        await incident_logger.resolve_incident(
            critical, ResolutionDetails(type=ResolutionType.MANUAL, resolved_by="operator")
        )

        summary = await get_incident_summary_for_digest(store, PIPELINE_ID)

        assert summary.total_count == 4
        assert summary.critical_count == 2
        assert summary.warning_count == 1
        assert summary.recoverable_count == 1
        assert summary.stages_affected == ["tts", "visual-gen", "twitter"]
        assert summary.open_incidents == 3
        assert 10_000 <= summary.avg_resolution_time_ms < 20_000
        resolved_entry = next(e for e in summary.incidents if e.id == critical)
        assert resolved_entry.resolution == "manual"
        assert resolved_entry.error == "tts broke"

    @pytest.mark.asyncio
    async def test_empty_day(self, store):
        summary = await get_incident_summary_for_digest(store, "2026-03-01")

        assert summary.total_count == 0
        assert summary.avg_resolution_time_ms is None
        assert summary.stages_affected == []
        assert summary.incidents == []
