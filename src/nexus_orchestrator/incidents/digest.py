"""Daily incident summaries for the digest notification."""

from ..observability.logging import get_logger
from ..storage.documents import DocumentStore, QueryFilter
from .logger import INCIDENTS_COLLECTION
from .models import IncidentDigestEntry, IncidentRecord, IncidentSeverity, IncidentSummary

logger = get_logger(__name__)


async def get_incident_summary_for_digest(store: DocumentStore, date: str) -> IncidentSummary:
    """Aggregate every incident logged for ``date``."""
    documents = await store.query_documents(INCIDENTS_COLLECTION, [QueryFilter("date", "==", date)])
    incidents = [IncidentRecord.from_document(doc) for doc in documents]

    severities = [i.severity for i in incidents]
    stages_affected = list(dict.fromkeys(i.stage for i in incidents))

    resolved = [i for i in incidents if i.end_time and i.duration is not None]
    avg_resolution_time_ms = (
        round(sum(i.duration or 0 for i in resolved) / len(resolved)) if resolved else None
    )

    entries = [
        IncidentDigestEntry(
            id=i.id,
            stage=i.stage,
            severity=i.severity,
            error=i.error.message,
            resolution=i.resolution.type if i.resolution else None,
            duration=i.duration,
        )
        for i in incidents
    ]

    summary = IncidentSummary(
        date=date,
        total_count=len(incidents),
        critical_count=severities.count(IncidentSeverity.CRITICAL),
        warning_count=severities.count(IncidentSeverity.WARNING),
        recoverable_count=severities.count(IncidentSeverity.RECOVERABLE),
        stages_affected=stages_affected,
        avg_resolution_time_ms=avg_resolution_time_ms,
        open_incidents=sum(1 for i in incidents if not i.end_time),
        incidents=entries,
    )

    logger.debug(
        "Incident digest summary generated",
        date=date,
        total_count=summary.total_count,
        critical_count=summary.critical_count,
        open_incidents=summary.open_incidents,
    )
    return summary
