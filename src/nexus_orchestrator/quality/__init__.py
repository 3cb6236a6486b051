"""Pre-publish quality gate."""

from .checkpoint import QualityGate, ReviewOutcome, extract_preview_urls
from .gate import (
    calculate_metrics,
    detect_all_issues,
    get_quality_decision,
    persist_quality_decision,
    quality_gate_check,
)
from .models import (
    IssueCode,
    IssueSeverity,
    PipelineQualityRun,
    QualityDecision,
    QualityDecisionResult,
    QualityDecisionType,
    QualityIssue,
    QualityMetricsSummary,
)

__all__ = [
    "QualityGate",
    "ReviewOutcome",
    "extract_preview_urls",
    "calculate_metrics",
    "detect_all_issues",
    "get_quality_decision",
    "persist_quality_decision",
    "quality_gate_check",
    "IssueCode",
    "IssueSeverity",
    "PipelineQualityRun",
    "QualityDecision",
    "QualityDecisionResult",
    "QualityDecisionType",
    "QualityIssue",
    "QualityMetricsSummary",
]
