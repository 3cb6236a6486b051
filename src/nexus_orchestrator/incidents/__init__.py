"""Incident logging, resolution, queries and daily digest."""

from .digest import get_incident_summary_for_digest
from .logger import (
    IncidentLogger,
    generate_post_mortem_template,
    infer_root_cause,
    is_video_impact_stage,
    map_severity,
)
from .models import (
    Incident,
    IncidentError,
    IncidentRecord,
    IncidentSeverity,
    IncidentSummary,
    ResolutionDetails,
    ResolutionType,
    RootCause,
)
from .queries import IncidentQueries

__all__ = [
    "get_incident_summary_for_digest",
    "IncidentLogger",
    "generate_post_mortem_template",
    "infer_root_cause",
    "is_video_impact_stage",
    "map_severity",
    "Incident",
    "IncidentError",
    "IncidentRecord",
    "IncidentSeverity",
    "IncidentSummary",
    "ResolutionDetails",
    "ResolutionType",
    "RootCause",
    "IncidentQueries",
]
