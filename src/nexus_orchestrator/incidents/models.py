"""Incident records, resolutions and digest summaries."""

from enum import StrEnum
from typing import Any, Literal

from pydantic import Field

from ..storage.models import DocumentModel


class IncidentSeverity(StrEnum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    RECOVERABLE = "RECOVERABLE"


class RootCause(StrEnum):
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTH_FAILURE = "auth_failure"
    NETWORK_ERROR = "network_error"
    CONFIG_ERROR = "config_error"
    DATA_ERROR = "data_error"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    DEPENDENCY_FAILURE = "dependency_failure"
    API_OUTAGE = "api_outage"
    UNKNOWN = "unknown"


class ResolutionType(StrEnum):
    RETRY = "retry"
    FALLBACK = "fallback"
    SKIP = "skip"
    MANUAL = "manual"
    AUTO_RECOVERED = "auto_recovered"


class IncidentError(DocumentModel):
    code: str
    message: str


class Incident(DocumentModel):
    """An incident as reported, before it is assigned an id."""

    date: str
    pipeline_id: str
    stage: str
    error: IncidentError
    severity: IncidentSeverity
    start_time: str
    root_cause: RootCause = RootCause.UNKNOWN
    context: dict[str, Any] = Field(default_factory=dict)


class ResolutionDetails(DocumentModel):
    type: ResolutionType
    notes: str = ""
    resolved_by: Literal["system", "operator"] = "system"


class PostMortemTemplate(DocumentModel):
    generated_at: str
    timeline: dict[str, str]
    summary: str
    impact: dict[str, Any]
    root_cause_analysis: str
    action_items: list[str] = Field(default_factory=list)
    lessons_learned: str


class IncidentRecord(Incident):
    """A persisted incident."""

    id: str
    is_open: bool = True
    end_time: str | None = None
    duration: int | None = None
    resolution: ResolutionDetails | None = None
    post_mortem: PostMortemTemplate | None = None
    created_at: str
    updated_at: str


class IncidentDigestEntry(DocumentModel):
    id: str
    stage: str
    severity: IncidentSeverity
    error: str
    resolution: ResolutionType | None = None
    duration: int | None = None


class IncidentSummary(DocumentModel):
    """Aggregate of one day's incidents, for the daily digest."""

    date: str
    total_count: int
    critical_count: int
    warning_count: int
    recoverable_count: int
    stages_affected: list[str]
    avg_resolution_time_ms: int | None
    open_incidents: int
    incidents: list[IncidentDigestEntry]
