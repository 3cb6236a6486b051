"""
Incident creation, resolution and post-mortem templates.

Incident ids are ``{date}-{sequence}`` where the sequence comes from counting
the incidents already stored for that date. The count and the write are not
atomic, so two incidents logged concurrently for the same date can collide.
Pipeline runs log incidents sequentially, which keeps this safe in practice.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from ..core.errors import NEXUS_INCIDENT_NOT_FOUND, ErrorSeverity, NexusError
from ..observability.logging import get_logger
from ..observability.metrics import counter
from ..storage.documents import DocumentStore, QueryFilter
from .models import (
    Incident,
    IncidentRecord,
    IncidentSeverity,
    PostMortemTemplate,
    ResolutionDetails,
    RootCause,
)

if TYPE_CHECKING:
    from .queries import IncidentQueries

logger = get_logger(__name__)

INCIDENTS_COLLECTION = "incidents"

# Stages whose failure puts the video itself at risk
VIDEO_IMPACT_STAGES = frozenset({"tts", "render", "script-gen", "visual-gen", "thumbnail"})

_ROOT_CAUSE_KEYWORDS: tuple[tuple[tuple[str, ...], RootCause], ...] = (
    (("TIMEOUT",), RootCause.TIMEOUT),
    (("RATE_LIMIT",), RootCause.RATE_LIMIT),
    (("QUOTA",), RootCause.QUOTA_EXCEEDED),
    (("AUTH",), RootCause.AUTH_FAILURE),
    (("NETWORK", "CONNECTION"), RootCause.NETWORK_ERROR),
    (("CONFIG",), RootCause.CONFIG_ERROR),
    (("DATA", "INVALID", "VALIDATION"), RootCause.DATA_ERROR),
    (("RESOURCE", "MEMORY"), RootCause.RESOURCE_EXHAUSTED),
    (("DEPENDENCY",), RootCause.DEPENDENCY_FAILURE),
    (("OUTAGE", "UNAVAILABLE"), RootCause.API_OUTAGE),
)


def map_severity(severity: ErrorSeverity | str) -> IncidentSeverity:
    """Map an error severity onto the coarser incident severity."""
    value = severity.value if isinstance(severity, ErrorSeverity) else str(severity)
    if value == ErrorSeverity.CRITICAL.value:
        return IncidentSeverity.CRITICAL
    if value in (ErrorSeverity.RECOVERABLE.value, ErrorSeverity.RETRYABLE.value):
        return IncidentSeverity.RECOVERABLE
    return IncidentSeverity.WARNING


def infer_root_cause(error_code: str) -> RootCause:
    """Classify an error code by keyword; the first matching keyword wins."""
    upper = error_code.upper()
    for keywords, cause in _ROOT_CAUSE_KEYWORDS:
        if any(keyword in upper for keyword in keywords):
            return cause
    return RootCause.UNKNOWN


def is_video_impact_stage(stage: str) -> bool:
    return stage.lower() in VIDEO_IMPACT_STAGES


def generate_post_mortem_template(incident: Incident) -> PostMortemTemplate:
    return PostMortemTemplate(
        generated_at=datetime.now(UTC).isoformat(),
        timeline={
            "detected": incident.start_time,
            "impact": f'Stage "{incident.stage}" failed with {incident.error.code}',
        },
        summary=f"CRITICAL incident in {incident.stage} stage: {incident.error.message}",
        impact={
            "pipelineAffected": True,
            "stageAffected": incident.stage,
            "potentialVideoImpact": is_video_impact_stage(incident.stage),
        },
        root_cause_analysis="<!-- Fill in root cause analysis -->",
        action_items=[],
        lessons_learned="<!-- Fill in lessons learned -->",
    )


class IncidentLogger:
    """Persists incidents and their resolutions."""

    def __init__(self, store: DocumentStore, queries: "IncidentQueries | None" = None):
        self.store = store
        self.queries = queries

    async def generate_incident_id(self, date: str) -> str:
        existing = await self.store.query_documents(
            INCIDENTS_COLLECTION, [QueryFilter("date", "==", date)]
        )
        return f"{date}-{len(existing) + 1:03d}"

    async def log_incident(self, incident: Incident) -> str:
        """Store ``incident`` as an open record and return its id."""
        now = datetime.now(UTC).isoformat()
        incident_id = await self.generate_incident_id(incident.date)

        record = IncidentRecord(
            **incident.model_dump(),
            id=incident_id,
            is_open=True,
            created_at=now,
            updated_at=now,
        )
        if incident.severity == IncidentSeverity.CRITICAL:
            record.post_mortem = generate_post_mortem_template(incident)

        await self.store.set_document(INCIDENTS_COLLECTION, incident_id, record.to_document())
        self._invalidate()

        counter("incidents_logged_total", "Incidents logged").add(
            1, {"severity": str(incident.severity), "stage": incident.stage}
        )
        logger.info(
            "Incident logged",
            incident_id=incident_id,
            pipeline_id=incident.pipeline_id,
            stage=incident.stage,
            severity=str(incident.severity),
            root_cause=str(incident.root_cause),
        )
        if incident.severity == IncidentSeverity.CRITICAL:
            logger.info(
                "CRITICAL incident logged, alert delivery left to caller",
                incident_id=incident_id,
            )
        return incident_id

    async def resolve_incident(self, incident_id: str, resolution: ResolutionDetails) -> None:
        """Close an open incident, recording when and how it was resolved."""
        document = await self.store.get_document(INCIDENTS_COLLECTION, incident_id)
        if document is None:
            raise NexusError.recoverable(
                NEXUS_INCIDENT_NOT_FOUND,
                f"Incident not found: {incident_id}",
                "incidents",
                {"incidentId": incident_id},
            )

        incident = IncidentRecord.from_document(document)
        now = datetime.now(UTC)
        end_time = now.isoformat()
        duration = round((now - datetime.fromisoformat(incident.start_time)).total_seconds() * 1000)

        await self.store.update_document(
            INCIDENTS_COLLECTION,
            incident_id,
            {
                "isOpen": False,
                "endTime": end_time,
                "duration": duration,
                "resolution": resolution.to_document(),
                "updatedAt": end_time,
            },
        )
        self._invalidate()

        logger.info(
            "Incident resolved",
            incident_id=incident_id,
            pipeline_id=incident.pipeline_id,
            stage=incident.stage,
            severity=str(incident.severity),
            resolution_type=str(resolution.type),
            duration_ms=duration,
        )

    def _invalidate(self) -> None:
        if self.queries is not None:
            self.queries.clear_cache()
