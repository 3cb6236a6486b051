"""
Pre-publish quality checkpoint.

Pending critical review items always win: while any remain for the pipeline,
the decision is HUMAN_REVIEW and the core issue check is not consulted. A
review queue that cannot be queried counts as having nothing pending, so
publishing never blocks on review infrastructure.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from ..core.stages import QualityContext, StageOutput
from ..observability.logging import get_logger
from ..observability.metrics import counter
from ..review.models import ReviewItem, ReviewItemStatus, ReviewItemType
from ..review.queue import ReviewQueue
from ..storage.documents import DocumentStore
from .gate import persist_quality_decision, quality_gate_check
from .models import (
    IssueCode,
    IssueSeverity,
    PipelineQualityRun,
    QualityDecision,
    QualityDecisionResult,
    QualityDecisionType,
)

logger = get_logger(__name__)

DEFAULT_PUBLISH_STAGE = "youtube"
REJECTION_RESOLUTION = "Quality review rejected - publish cancelled"
APPROVAL_RESOLUTION = "Quality review approved - proceeding to publish"

# A TTS fallback in a running pipeline publishes with a warning.
CHECKPOINT_MINOR_CODES = frozenset({IssueCode.TTS_FALLBACK})


@dataclass
class ReviewOutcome:
    success: bool
    error: str | None = None


def extract_preview_urls(run: PipelineQualityRun) -> dict[str, str | None]:
    def first_url(stage: str, artifact_type: str | None = None) -> str | None:
        output = run.stages.get(stage)
        if output is None:
            return None
        for artifact in output.artifacts:
            if artifact_type is None or artifact.get("type") == artifact_type:
                return artifact.get("url")
        return None

    return {
        "video": first_url("render", "video"),
        "thumbnail": first_url("thumbnail"),
        "script": first_url("script-gen", "text"),
    }


class QualityGate:
    """Combines pending reviews and the core issue check into a publish decision."""

    def __init__(
        self,
        store: DocumentStore,
        review_queue: ReviewQueue,
        publish_stage: str = DEFAULT_PUBLISH_STAGE,
    ):
        self.store = store
        self.review_queue = review_queue
        self.publish_stage = publish_stage

    async def _pending_critical_reviews(self, pipeline_id: str) -> list[ReviewItem]:
        try:
            return await self.review_queue.get_pending_critical_reviews(pipeline_id)
        except Exception as e:
            logger.error(
                "Review queue check failed, treating as no pending reviews",
                pipeline_id=pipeline_id,
                error=str(e),
            )
            return []

    def _pending_decision(self, pending: list[ReviewItem]) -> QualityDecision:
        return QualityDecision(
            decision=QualityDecisionType.HUMAN_REVIEW,
            reason=f"{len(pending)} pending review items require resolution",
            reasons=[f"{len(pending)} pending review items require resolution"],
            issues=[f"Pending {item.type} review from {item.stage} stage" for item in pending],
            review_item_ids=[item.id for item in pending],
            pause_before_stage=self.publish_stage,
            metrics={"pendingReviews": len(pending)},
            timestamp=datetime.now(UTC).isoformat(),
        )

    async def check_pending_reviews(self, pipeline_id: str) -> QualityDecision:
        """Only the pending-review part of the checkpoint, used when resuming after review."""
        pending = await self._pending_critical_reviews(pipeline_id)
        if pending:
            decision = self._pending_decision(pending)
        else:
            decision = QualityDecision(
                decision=QualityDecisionType.AUTO_PUBLISH,
                reason="No pending reviews remain",
                reasons=["No pending reviews remain"],
                timestamp=datetime.now(UTC).isoformat(),
            )
        await self._record(pipeline_id, decision)
        return decision

    async def check(
        self,
        pipeline_id: str,
        stage_outputs: dict[str, StageOutput],
        quality_context: QualityContext,
    ) -> QualityDecision:
        """Full checkpoint run right before the publish stage."""
        pending = await self._pending_critical_reviews(pipeline_id)
        if pending:
            logger.info(
                "Pending critical reviews block publishing",
                pipeline_id=pipeline_id,
                pending_count=len(pending),
            )
            decision = self._pending_decision(pending)
            await self._record(pipeline_id, decision)
            return decision

        run = PipelineQualityRun(
            pipeline_id=pipeline_id, stages=dict(stage_outputs), quality_context=quality_context
        )
        core = quality_gate_check(run, CHECKPOINT_MINOR_CODES)

        review_item_ids: list[str] = []
        pause_before_stage = None
        if core.decision == QualityDecisionType.HUMAN_REVIEW:
            pause_before_stage = self.publish_stage
            try:
                review_item_ids.append(
                    await self.create_quality_review_item(pipeline_id, core, run)
                )
            except Exception as e:
                logger.error(
                    "Failed to create quality review item", pipeline_id=pipeline_id, error=str(e)
                )

        decision = QualityDecision(
            decision=core.decision,
            reason=core.reasons[0],
            reasons=core.reasons,
            issues=[f"{issue.stage}: {issue.message}" for issue in core.issues],
            review_item_ids=review_item_ids,
            pause_before_stage=pause_before_stage,
            metrics=core.metrics.to_document(),
            core_decision=core,
            timestamp=core.timestamp,
        )
        await self._record(pipeline_id, decision)
        return decision

    async def _record(self, pipeline_id: str, decision: QualityDecision) -> None:
        counter("quality_decisions_total", "Pre-publish quality decisions").add(
            1, {"decision": str(decision.decision)}
        )
        await persist_quality_decision(self.store, pipeline_id, decision)

    async def create_quality_review_item(
        self, pipeline_id: str, decision: QualityDecisionResult, run: PipelineQualityRun
    ) -> str:
        major = decision.major_issues
        stage_quality = {}
        for stage_name, output in run.stages.items():
            summary = decision.stage_quality_summary.get(stage_name)
            stage_quality[stage_name] = {
                "status": summary.status if summary else "pass",
                "metrics": output.measurements,
            }

        review_id = await self.review_queue.add_to_review_queue(
            ReviewItemType.QUALITY,
            pipeline_id,
            "pre-publish",
            {
                "decision": QualityDecisionType.HUMAN_REVIEW.value,
                "issues": [issue.to_document() for issue in major],
                "previewUrls": extract_preview_urls(run),
            },
            {"qualityDecision": decision.to_document(), "stageQuality": stage_quality},
        )
        logger.info(
            "Quality review item created",
            pipeline_id=pipeline_id,
            review_id=review_id,
            issue_count=sum(1 for i in decision.issues if i.severity == IssueSeverity.MAJOR),
        )
        return review_id

    async def _pending_item(self, review_id: str) -> tuple[ReviewItem | None, str | None]:
        item = await self.review_queue.get_review_item(review_id)
        if item is None:
            logger.warning("Review item not found", review_id=review_id)
            return None, "Review item not found"
        if item.status != ReviewItemStatus.PENDING:
            logger.warning("Review item already resolved", review_id=review_id, status=item.status)
            return None, "Review item already resolved"
        return item, None

    async def handle_review_approval(self, review_id: str, resolved_by: str) -> bool:
        try:
            item, _ = await self._pending_item(review_id)
            if item is None:
                return False
            await self.review_queue.resolve_review_item(review_id, APPROVAL_RESOLUTION, resolved_by)
        except Exception as e:
            logger.error("Failed to approve quality review", review_id=review_id, error=str(e))
            return False

        logger.info(
            "Quality review approved",
            review_id=review_id,
            pipeline_id=item.pipeline_id,
            resolved_by=resolved_by,
        )
        return True

    async def handle_review_rejection(self, review_id: str, resolved_by: str) -> ReviewOutcome:
        try:
            item, error = await self._pending_item(review_id)
            if item is None:
                return ReviewOutcome(success=False, error=error)
            await self.review_queue.resolve_review_item(
                review_id, REJECTION_RESOLUTION, resolved_by
            )
        except Exception as e:
            logger.error("Failed to reject quality review", review_id=review_id, error=str(e))
            return ReviewOutcome(success=False, error=str(e))

        logger.info(
            "Quality review rejected",
            review_id=review_id,
            pipeline_id=item.pipeline_id,
            resolved_by=resolved_by,
        )
        return ReviewOutcome(success=True)
