"""Quality issues, metrics and publish decisions."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import Field

from ..core.stages import QualityContext, StageOutput
from ..storage.models import DocumentModel


class QualityDecisionType(StrEnum):
    AUTO_PUBLISH = "AUTO_PUBLISH"
    AUTO_PUBLISH_WITH_WARNING = "AUTO_PUBLISH_WITH_WARNING"
    HUMAN_REVIEW = "HUMAN_REVIEW"


class IssueSeverity(StrEnum):
    MAJOR = "major"
    MINOR = "minor"


class IssueCode(StrEnum):
    TTS_FALLBACK = "tts-provider-fallback"
    HIGH_VISUAL_FALLBACK = "visual-fallback-30"
    WORD_COUNT_OOB = "word-count-out-of-bounds"
    PRONUNCIATION_UNRESOLVED = "pronunciation-unknown-3+"
    COMBINED_FALLBACK = "combined-fallback"
    TTS_RETRY_HIGH = "tts-retry-high"
    LOW_VISUAL_FALLBACK = "visual-fallback-low"
    WORD_COUNT_EDGE = "word-count-edge"
    PRONUNCIATION_FEW = "pronunciation-unknown-1-3"
    THUMBNAIL_FALLBACK_ONLY = "thumbnail-fallback"
    STAGE_DEGRADED = "stage-degraded"


class QualityIssue(DocumentModel):
    code: IssueCode
    severity: IssueSeverity
    stage: str
    message: str


class QualityMetricsSummary(DocumentModel):
    total_stages: int = 0
    degraded_stages: int = 0
    fallbacks_used: int = 0
    total_warnings: int = 0
    script_word_count: int = 0
    visual_fallback_percent: float = 0.0
    pronunciation_unknowns: int = 0
    tts_provider: str = "unknown"
    thumbnail_fallback: bool = False


class StageQualitySummary(DocumentModel):
    status: str
    provider: str
    tier: str


class QualityDecisionResult(DocumentModel):
    """Outcome of the core issue-based quality check."""

    decision: QualityDecisionType
    reasons: list[str]
    issues: list[QualityIssue]
    metrics: QualityMetricsSummary
    timestamp: str
    stage_quality_summary: dict[str, StageQualitySummary] = Field(default_factory=dict)

    @property
    def major_issues(self) -> list[QualityIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.MAJOR]

    @property
    def minor_issues(self) -> list[QualityIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.MINOR]


class QualityDecision(DocumentModel):
    """Pre-publish checkpoint decision, persisted once per checkpoint."""

    decision: QualityDecisionType
    reason: str
    reasons: list[str] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)
    review_item_ids: list[str] = Field(default_factory=list)
    pause_before_stage: str | None = None
    metrics: dict[str, Any] = Field(default_factory=dict)
    core_decision: QualityDecisionResult | None = None
    timestamp: str

    @property
    def requires_review(self) -> bool:
        return self.decision == QualityDecisionType.HUMAN_REVIEW


@dataclass
class PipelineQualityRun:
    """Everything the core quality check looks at."""

    pipeline_id: str
    stages: dict[str, StageOutput] = field(default_factory=dict)
    quality_context: QualityContext = field(default_factory=QualityContext)
