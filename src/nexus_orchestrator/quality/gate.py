"""
Core pre-publish quality check.

Each detector looks at one aspect of a finished run (provider tiers, scene
fallbacks, script length, pronunciation, degradation) and reports at most one
issue. Issues are classified major or minor and combined into a decision:

- any major issue, or more than two minor issues: HUMAN_REVIEW
- one or two minor issues: AUTO_PUBLISH_WITH_WARNING
- no issues: AUTO_PUBLISH
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from ..observability.logging import get_logger
from ..storage.documents import DocumentStore
from .models import (
    IssueCode,
    IssueSeverity,
    PipelineQualityRun,
    QualityDecision,
    QualityDecisionResult,
    QualityDecisionType,
    QualityIssue,
    QualityMetricsSummary,
    StageQualitySummary,
)

logger = get_logger(__name__)

MIN_WORDS = 1200
MAX_WORDS = 1800
WORD_COUNT_EDGE_PERCENT = 0.05
VISUAL_FALLBACK_THRESHOLD_PERCENT = 30
PRONUNCIATION_UNKNOWN_THRESHOLD = 3
TTS_RETRY_THRESHOLD = 2
MAX_MINOR_ISSUES = 2

QUALITY_DECISION_DOC = "current"
QUALITY_DECISION_VERSION = 1


def _measurements(run: PipelineQualityRun, stage: str) -> dict[str, Any]:
    output = run.stages.get(stage)
    return output.measurements if output is not None else {}


def _fallback_for(run: PipelineQualityRun, stage: str) -> str | None:
    prefix = f"{stage}:"
    for entry in run.quality_context.fallbacks_used:
        if entry.startswith(prefix):
            return entry[len(prefix):]
    return None


def _word_count(run: PipelineQualityRun) -> int:
    output = run.stages.get("script-gen")
    if output is None:
        return 0
    count = output.measurements.get("wordCount")
    if not count and isinstance(output.data, dict):
        count = output.data.get("wordCount")
    return int(count or 0)


def _visual_fallback(run: PipelineQualityRun) -> tuple[int, int, float]:
    measurements = _measurements(run, "visual-gen")
    fallback_count = measurements.get("fallbackCount") or 0
    total_scenes = measurements.get("totalScenes") or 1
    return fallback_count, total_scenes, fallback_count / total_scenes * 100


def detect_tts_fallback(run: PipelineQualityRun) -> QualityIssue | None:
    tts = run.stages.get("tts")
    if tts is None:
        logger.debug("No TTS stage output found", pipeline_id=run.pipeline_id)
        return None

    provider = tts.provider.name if tts.provider.tier == "fallback" else _fallback_for(run, "tts")
    if provider is None:
        return None
    return QualityIssue(
        code=IssueCode.TTS_FALLBACK,
        severity=IssueSeverity.MAJOR,
        stage="tts",
        message=f"TTS fallback provider used: {provider} (primary TTS unavailable)",
    )


def detect_tts_retry_issues(run: PipelineQualityRun) -> QualityIssue | None:
    tts = run.stages.get("tts")
    if tts is None:
        return None

    attempts = tts.provider.attempts or 1
    if tts.provider.tier == "primary" and attempts > TTS_RETRY_THRESHOLD:
        return QualityIssue(
            code=IssueCode.TTS_RETRY_HIGH,
            severity=IssueSeverity.MINOR,
            stage="tts",
            message=f"TTS required {attempts} attempts before succeeding",
        )
    return None


def detect_visual_fallback_ratio(run: PipelineQualityRun) -> QualityIssue | None:
    if "visual-gen" not in run.stages:
        logger.debug("No visual-gen stage output found", pipeline_id=run.pipeline_id)
        return None

    fallback_count, total_scenes, percent = _visual_fallback(run)
    if percent > VISUAL_FALLBACK_THRESHOLD_PERCENT:
        return QualityIssue(
            code=IssueCode.HIGH_VISUAL_FALLBACK,
            severity=IssueSeverity.MAJOR,
            stage="visual-gen",
            message=(
                f"Visual fallback rate {percent:.1f}% exceeds 30% threshold "
                f"({fallback_count}/{total_scenes} scenes)"
            ),
        )
    if percent > 0:
        return QualityIssue(
            code=IssueCode.LOW_VISUAL_FALLBACK,
            severity=IssueSeverity.MINOR,
            stage="visual-gen",
            message=f"Visual fallback rate {percent:.1f}% ({fallback_count}/{total_scenes} scenes)",
        )
    return None


def detect_word_count_issues(run: PipelineQualityRun) -> QualityIssue | None:
    if "script-gen" not in run.stages:
        logger.debug("No script-gen stage output found", pipeline_id=run.pipeline_id)
        return None

    word_count = _word_count(run)
    if word_count == 0:
        return None

    if word_count < MIN_WORDS or word_count > MAX_WORDS:
        return QualityIssue(
            code=IssueCode.WORD_COUNT_OOB,
            severity=IssueSeverity.MAJOR,
            stage="script-gen",
            message=f"Word count {word_count} is outside acceptable range [{MIN_WORDS}, {MAX_WORDS}]",
        )

    lower_edge = MIN_WORDS * (1 + WORD_COUNT_EDGE_PERCENT)
    upper_edge = MAX_WORDS * (1 - WORD_COUNT_EDGE_PERCENT)
    if word_count < lower_edge or word_count > upper_edge:
        boundary = "minimum" if word_count < lower_edge else "maximum"
        return QualityIssue(
            code=IssueCode.WORD_COUNT_EDGE,
            severity=IssueSeverity.MINOR,
            stage="script-gen",
            message=f"Word count {word_count} is near the {boundary} boundary",
        )
    return None


def detect_pronunciation_issues(run: PipelineQualityRun) -> QualityIssue | None:
    if "pronunciation" not in run.stages:
        logger.debug("No pronunciation stage output found", pipeline_id=run.pipeline_id)
        return None

    measurements = _measurements(run, "pronunciation")
    unknown_count = measurements.get("unknownCount") or 0
    unresolved_count = measurements.get("unresolvedCount") or unknown_count

    if unresolved_count > PRONUNCIATION_UNKNOWN_THRESHOLD:
        return QualityIssue(
            code=IssueCode.PRONUNCIATION_UNRESOLVED,
            severity=IssueSeverity.MAJOR,
            stage="pronunciation",
            message=f"{unresolved_count} pronunciation unknowns remain unresolved (threshold: 3)",
        )
    if 0 < unknown_count <= PRONUNCIATION_UNKNOWN_THRESHOLD:
        return QualityIssue(
            code=IssueCode.PRONUNCIATION_FEW,
            severity=IssueSeverity.MINOR,
            stage="pronunciation",
            message=f"{unknown_count} unknown term(s) flagged for pronunciation review",
        )
    return None


def detect_thumbnail_issues(run: PipelineQualityRun) -> QualityIssue | None:
    thumbnail = run.stages.get("thumbnail")
    if thumbnail is None:
        logger.debug("No thumbnail stage output found", pipeline_id=run.pipeline_id)
        return None

    if thumbnail.provider.tier == "fallback":
        message = f"Thumbnail using fallback template ({thumbnail.provider.name})"
    else:
        provider = _fallback_for(run, "thumbnail")
        if provider is None:
            return None
        message = f"Thumbnail using fallback: {provider or 'template'}"

    return QualityIssue(
        code=IssueCode.THUMBNAIL_FALLBACK_ONLY,
        severity=IssueSeverity.MINOR,
        stage="thumbnail",
        message=message,
    )


def detect_combined_issues(run: PipelineQualityRun) -> QualityIssue | None:
    has_thumbnail_fallback = detect_thumbnail_issues(run) is not None
    fallback_count, _, _ = _visual_fallback(run)

    if has_thumbnail_fallback and fallback_count > 0:
        return QualityIssue(
            code=IssueCode.COMBINED_FALLBACK,
            severity=IssueSeverity.MAJOR,
            stage="combined",
            message="Both thumbnail and visual generation used fallbacks - significant quality degradation",
        )
    return None


def detect_degraded_stages(run: PipelineQualityRun) -> QualityIssue | None:
    degraded = run.quality_context.degraded_stages
    if not degraded:
        return None
    return QualityIssue(
        code=IssueCode.STAGE_DEGRADED,
        severity=IssueSeverity.MINOR,
        stage="pipeline",
        message=f"Degraded stage(s): {', '.join(degraded)}",
    )


DETECTORS: tuple[Callable[[PipelineQualityRun], QualityIssue | None], ...] = (
    detect_tts_fallback,
    detect_tts_retry_issues,
    detect_visual_fallback_ratio,
    detect_word_count_issues,
    detect_pronunciation_issues,
    detect_thumbnail_issues,
    detect_combined_issues,
    detect_degraded_stages,
)


def detect_all_issues(
    run: PipelineQualityRun, minor_codes: frozenset[IssueCode] = frozenset()
) -> list[QualityIssue]:
    """
    Run every detector, skipping any that fail, with one issue per code.

    Issues whose code is in ``minor_codes`` are reported as minor.
    """
    issues: list[QualityIssue] = []

    for detector in DETECTORS:
        try:
            issue = detector(run)
        except Exception as e:
            logger.warning(
                "Issue detector failed",
                detector=detector.__name__,
                pipeline_id=run.pipeline_id,
                error=str(e),
            )
            continue
        if issue is not None and issue.code in minor_codes:
            issue = issue.model_copy(update={"severity": IssueSeverity.MINOR.value})
        if issue is not None and all(existing.code != issue.code for existing in issues):
            issues.append(issue)

    logger.info(
        "Quality issue detection complete",
        pipeline_id=run.pipeline_id,
        issue_count=len(issues),
        major_count=sum(1 for i in issues if i.severity == IssueSeverity.MAJOR),
        minor_count=sum(1 for i in issues if i.severity == IssueSeverity.MINOR),
    )
    return issues


def calculate_metrics(run: PipelineQualityRun) -> QualityMetricsSummary:
    _, _, visual_percent = _visual_fallback(run)
    pronunciation = _measurements(run, "pronunciation")
    tts = run.stages.get("tts")
    thumbnail = run.stages.get("thumbnail")

    return QualityMetricsSummary(
        total_stages=len(run.stages),
        degraded_stages=len(run.quality_context.degraded_stages),
        fallbacks_used=len(run.quality_context.fallbacks_used),
        total_warnings=sum(len(output.warnings) for output in run.stages.values()),
        script_word_count=_word_count(run),
        visual_fallback_percent=round(visual_percent, 1),
        pronunciation_unknowns=(
            pronunciation.get("unresolvedCount") or pronunciation.get("unknownCount") or 0
        ),
        tts_provider=tts.provider.name if tts is not None else "unknown",
        thumbnail_fallback=(
            (thumbnail is not None and thumbnail.provider.tier == "fallback")
            or _fallback_for(run, "thumbnail") is not None
        ),
    )


def summarize_stage_quality(
    run: PipelineQualityRun, issues: list[QualityIssue]
) -> dict[str, StageQualitySummary]:
    summary = {}
    for stage_name, output in run.stages.items():
        severities = {i.severity for i in issues if i.stage == stage_name}
        if IssueSeverity.MAJOR in severities:
            status = "fail"
        elif IssueSeverity.MINOR in severities:
            status = "warn"
        else:
            status = "pass"
        summary[stage_name] = StageQualitySummary(
            status=status, provider=output.provider.name, tier=output.provider.tier
        )
    return summary


def quality_gate_check(
    run: PipelineQualityRun, minor_codes: frozenset[IssueCode] = frozenset()
) -> QualityDecisionResult:
    """Decide whether a finished run may publish, based on detected issues."""
    start = time.perf_counter()
    logger.info("Starting pre-publish quality gate check", pipeline_id=run.pipeline_id)

    issues = detect_all_issues(run, minor_codes)
    major = [i for i in issues if i.severity == IssueSeverity.MAJOR]
    minor = [i for i in issues if i.severity == IssueSeverity.MINOR]

    if major:
        decision = QualityDecisionType.HUMAN_REVIEW
        reasons = [f"{len(major)} major issue(s) detected requiring human review"]
        reasons += [f"[MAJOR] {i.stage}: {i.message}" for i in major]
    elif len(minor) > MAX_MINOR_ISSUES:
        decision = QualityDecisionType.HUMAN_REVIEW
        reasons = [f"{len(minor)} minor issues exceed threshold (max: {MAX_MINOR_ISSUES})"]
        reasons += [f"[MINOR] {i.stage}: {i.message}" for i in minor]
    elif minor:
        decision = QualityDecisionType.AUTO_PUBLISH_WITH_WARNING
        reasons = [f"{len(minor)} minor issue(s) detected - publishing with warnings"]
        reasons += [f"[WARNING] {i.stage}: {i.message}" for i in minor]
    else:
        decision = QualityDecisionType.AUTO_PUBLISH
        reasons = ["All quality checks passed - no issues detected"]

    result = QualityDecisionResult(
        decision=decision,
        reasons=reasons,
        issues=issues,
        metrics=calculate_metrics(run),
        timestamp=datetime.now(UTC).isoformat(),
        stage_quality_summary=summarize_stage_quality(run, issues),
    )

    logger.info(
        "Pre-publish quality gate check complete",
        pipeline_id=run.pipeline_id,
        decision=str(decision),
        major_issues=len(major),
        minor_issues=len(minor),
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return result


def _decision_collection(pipeline_id: str) -> str:
    return f"pipelines/{pipeline_id}/quality-decision"


async def persist_quality_decision(
    store: DocumentStore, pipeline_id: str, decision: QualityDecision
) -> None:
    """Store the checkpoint decision. Failures are logged, never raised."""
    try:
        await store.set_document(
            _decision_collection(pipeline_id),
            QUALITY_DECISION_DOC,
            {**decision.to_document(), "version": QUALITY_DECISION_VERSION},
        )
    except Exception as e:
        logger.error(
            "Failed to persist quality decision",
            pipeline_id=pipeline_id,
            decision=str(decision.decision),
            error=str(e),
        )
        return

    logger.info(
        "Quality decision persisted",
        pipeline_id=pipeline_id,
        decision=str(decision.decision),
        issue_count=len(decision.issues),
    )


async def get_quality_decision(store: DocumentStore, pipeline_id: str) -> QualityDecision | None:
    try:
        document = await store.get_document(_decision_collection(pipeline_id), QUALITY_DECISION_DOC)
        if document is None:
            return None
        document.pop("version", None)
        return QualityDecision.from_document(document)
    except Exception as e:
        logger.error("Failed to retrieve quality decision", pipeline_id=pipeline_id, error=str(e))
        return None
