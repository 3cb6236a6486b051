"""
Pipeline executor: runs the fixed stage sequence for one pipeline id.

Key features:
- Collaborators injected through the container
- Stage failures routed by severity and stage criticality in one place
- Every side effect (state writes, incidents, queue, budget) is best-effort
- Resume loads persisted outputs of completed stages
- OpenTelemetry spans around runs and stage invocations
"""

import time
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from tenacity import AsyncRetrying, stop_after_attempt, wait_incrementing

from ..config.container import Container, get_container
from ..config.settings import Settings, StageRetryPolicy, get_settings
from ..cost.budget import AlertSink, BudgetTracker, round_cost
from ..incidents.logger import IncidentLogger, infer_root_cause, map_severity
from ..incidents.models import Incident, IncidentError, IncidentSeverity
from ..observability.logging import get_logger, set_trace_id
from ..observability.metrics import get_metrics_collector
from ..observability.tracing import add_span_attributes, trace_span
from ..quality.checkpoint import QualityGate
from ..quality.models import QualityDecision, QualityDecisionType
from ..topics.manager import TopicQueue
from .errors import (
    NEXUS_FALLBACK_EXHAUSTED,
    NEXUS_INVALID_STAGE,
    NEXUS_PIPELINE_ALREADY_RUNNING,
    NEXUS_PIPELINE_COMPLETED,
    NEXUS_PIPELINE_INVALID_STATE,
    NEXUS_RETRY_EXHAUSTED,
    NEXUS_STATE_INIT_FAILED,
    ErrorSeverity,
    NexusError,
)
from .fallback import FALLBACK
from .retry import RetryResult, with_retry
from .stages import (
    STAGE_ORDER,
    QualityContext,
    Stage,
    StageInput,
    StageName,
    StageOutput,
    StageRegistry,
    get_stage_criticality,
)
from .state import RESUMABLE_STATUSES, PipelineStateStore, PipelineStatus

logger = get_logger(__name__)

ORCHESTRATOR = "orchestrator"
QUALITY_WARNING_FLAG = "quality:auto-publish-with-warning"

# Error code fragments that name a provider-side failure
PROVIDER_FAILURE_MARKERS = (
    "_TIMEOUT",
    "_RATE_LIMIT",
    "_SYNTHESIS_FAILED",
    "_GENERATION_FAILED",
    "_UNAVAILABLE",
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def original_severity(error: NexusError) -> ErrorSeverity:
    """Severity before retry exhaustion escalated it, or the error's own severity."""
    raw = error.context.get("originalSeverity")
    if raw is None:
        return error.severity
    try:
        return ErrorSeverity(raw)
    except ValueError:
        return error.severity


def skip_reason(
    stage: str, error: NexusError, severity: ErrorSeverity, retry_attempts: int
) -> str | None:
    """Why a failed critical stage should skip the run rather than fail it, or None."""
    if error.code == NEXUS_FALLBACK_EXHAUSTED:
        return f"All fallback providers exhausted for {stage}"

    exhausted = error.context.get("exhaustedRetries") is True or (
        retry_attempts > 0
        and (
            error.code == NEXUS_RETRY_EXHAUSTED
            or severity in (ErrorSeverity.RETRYABLE, ErrorSeverity.FALLBACK)
        )
    )
    if exhausted:
        return f"{stage} failed after {retry_attempts} retries: {error.message}"

    if any(marker in error.code for marker in PROVIDER_FAILURE_MARKERS):
        return f"{stage} provider failure: {error.code}"
    return None


def service_category(service: str) -> str:
    name = service.lower()
    if name.startswith("gemini"):
        return "gemini"
    if name.startswith(("chirp", "wavenet")) or name.endswith("-tts"):
        return "tts"
    return "render"


def cost_breakdown(outputs: Sequence[StageOutput]) -> dict[str, float]:
    """Spend per service category across ``outputs``."""
    totals = {"gemini": 0.0, "tts": 0.0, "render": 0.0}
    for output in outputs:
        for item in output.cost.breakdown:
            totals[service_category(item.get("service", ""))] += item.get("cost", 0.0)
    return {category: round_cost(amount) for category, amount in totals.items()}


@dataclass
class SkipInfo:
    """Why a run ended skipped, and where its topic went."""

    reason: str
    stage: str
    topic_queued: bool = False
    queued_for_date: str | None = None
    incident_id: str | None = None

    def extra(self) -> dict[str, Any]:
        data: dict[str, Any] = {"topicQueued": self.topic_queued}
        if self.queued_for_date is not None:
            data["queuedForDate"] = self.queued_for_date
        if self.incident_id is not None:
            data["incidentId"] = self.incident_id
        return data

    def to_dict(self) -> dict[str, Any]:
        return {"reason": self.reason, "stage": self.stage, **self.extra()}


@dataclass
class PipelineResult:
    """Complete pipeline execution result."""

    success: bool
    pipeline_id: str
    status: PipelineStatus
    stage_outputs: dict[str, StageOutput] = field(default_factory=dict)
    completed_stages: list[str] = field(default_factory=list)
    skipped_stages: list[str] = field(default_factory=list)
    quality_context: QualityContext = field(default_factory=QualityContext)
    total_duration_ms: float = 0.0
    total_cost: float = 0.0
    error: dict[str, Any] | None = None
    skip_info: SkipInfo | None = None
    quality_decision: QualityDecision | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "pipelineId": self.pipeline_id,
            "status": str(self.status),
            "stageOutputs": {name: out.to_dict() for name, out in self.stage_outputs.items()},
            "completedStages": list(self.completed_stages),
            "skippedStages": list(self.skipped_stages),
            "qualityContext": self.quality_context.to_dict(),
            "totalDurationMs": self.total_duration_ms,
            "totalCost": self.total_cost,
            "error": self.error,
            "skipInfo": self.skip_info.to_dict() if self.skip_info else None,
            "qualityDecision": (
                self.quality_decision.to_document() if self.quality_decision else None
            ),
        }


@dataclass
class _Run:
    """Mutable bookkeeping for one execute or resume call."""

    pipeline_id: str
    started: float = field(default_factory=time.perf_counter)
    quality_context: QualityContext = field(default_factory=QualityContext)
    stage_outputs: dict[str, StageOutput] = field(default_factory=dict)
    completed_stages: list[str] = field(default_factory=list)
    skipped_stages: list[str] = field(default_factory=list)
    total_cost: float = 0.0
    # spend of this call only, excluding outputs restored on resume
    run_cost: float = 0.0
    previous_stage: str | None = None
    previous_output: StageOutput | None = None
    seed_data: Any = None
    queued_topic: str | None = None
    resumed_from_pause: bool = False
    error: NexusError | None = None
    abort_reason: str | None = None
    skip_info: SkipInfo | None = None
    quality_decision: QualityDecision | None = None
    paused: bool = False

    @property
    def aborted(self) -> bool:
        return self.error is not None

    @property
    def skipped(self) -> bool:
        return self.skip_info is not None

    @property
    def succeeded(self) -> bool:
        return not (self.aborted or self.skipped or self.paused)

    @property
    def status(self) -> PipelineStatus:
        if self.aborted:
            return PipelineStatus.FAILED
        if self.skipped:
            return PipelineStatus.SKIPPED
        if self.paused:
            return PipelineStatus.PAUSED
        return PipelineStatus.COMPLETED

    def stage_data(self) -> Any:
        if self.previous_output is not None:
            return self.previous_output.data
        return self.seed_data


class PipelineExecutor:
    """
    Runs ``STAGE_ORDER`` for a pipeline id and classifies every stage failure.

    A run ends completed, failed, skipped or paused. The notifications stage
    runs after every run whatever its outcome, followed by cost bookkeeping.
    """

    def __init__(
        self,
        state_store: PipelineStateStore,
        registry: StageRegistry,
        *,
        incident_logger: IncidentLogger,
        quality_gate: QualityGate,
        topic_queue: TopicQueue,
        budget_tracker: BudgetTracker,
        settings: Settings | None = None,
        alert_sink: AlertSink | None = None,
    ):
        self.state = state_store
        self.registry = registry
        self.incident_logger = incident_logger
        self.quality_gate = quality_gate
        self.topic_queue = topic_queue
        self.budget = budget_tracker
        self.settings = settings or get_settings()
        self.alert_sink = alert_sink

    @classmethod
    def from_container(cls, container: Container) -> "PipelineExecutor":
        return cls(
            container.get("state_store"),
            container.get("stage_registry"),
            incident_logger=container.get("incident_logger"),
            quality_gate=container.get("quality_gate"),
            topic_queue=container.get("topic_queue"),
            budget_tracker=container.get("budget_tracker"),
            settings=container.settings,
            alert_sink=container.get("alert_sink"),
        )

    @property
    def sequenced_stages(self) -> list[StageName]:
        return [stage for stage in STAGE_ORDER if stage != StageName.NOTIFICATIONS]

    @trace_span("pipeline.execute")
    async def execute(self, pipeline_id: str) -> PipelineResult:
        """Run every stage for ``pipeline_id`` from the start."""
        set_trace_id(pipeline_id)
        if await self.state.is_locked(pipeline_id):
            raise NexusError.critical(
                NEXUS_PIPELINE_ALREADY_RUNNING,
                f"Pipeline {pipeline_id} is already running",
                ORCHESTRATOR,
            )

        run = _Run(pipeline_id=pipeline_id)
        await self._load_queued_topic(run)
        await self._initialize_state(pipeline_id)

        logger.info(
            "Pipeline started",
            pipeline_id=pipeline_id,
            from_queue=run.queued_topic is not None,
            stage_count=len(STAGE_ORDER),
        )
        await self._run_stages(run, self.sequenced_stages)
        return await self._finish(run)

    @trace_span("pipeline.resume")
    async def resume(self, pipeline_id: str, from_stage: str | None = None) -> PipelineResult:
        """
        Continue a failed, skipped or paused run.

        Stages before the resume point are not re-executed: their persisted
        outputs are loaded instead. Without ``from_stage`` the run resumes at
        the earliest stage not marked completed.
        """
        set_trace_id(pipeline_id)
        state = await self.state.get_state(pipeline_id)
        status = state.get("status")

        if status == PipelineStatus.RUNNING:
            raise NexusError.critical(
                NEXUS_PIPELINE_ALREADY_RUNNING,
                f"Pipeline {pipeline_id} is already running",
                ORCHESTRATOR,
            )
        if status == PipelineStatus.COMPLETED:
            raise NexusError.critical(
                NEXUS_PIPELINE_COMPLETED,
                f"Pipeline {pipeline_id} already completed",
                ORCHESTRATOR,
            )
        if status not in RESUMABLE_STATUSES:
            raise NexusError.critical(
                NEXUS_PIPELINE_INVALID_STATE,
                f"Pipeline {pipeline_id} cannot be resumed from status {status}",
                ORCHESTRATOR,
            )

        stages_state: dict[str, Any] = state.get("stages") or {}
        if from_stage is not None:
            if from_stage not in STAGE_ORDER:
                raise NexusError.critical(
                    NEXUS_INVALID_STAGE, f"Cannot resume from unknown stage: {from_stage}", ORCHESTRATOR
                )
            start_stage = StageName(from_stage)
        else:
            start_stage = next(
                (
                    stage
                    for stage in STAGE_ORDER
                    if (stages_state.get(stage) or {}).get("status") != PipelineStatus.COMPLETED
                ),
                StageName.NOTIFICATIONS,
            )

        run = _Run(
            pipeline_id=pipeline_id,
            quality_context=QualityContext.from_dict(state.get("qualityContext")),
            resumed_from_pause=(
                status == PipelineStatus.PAUSED
                and start_stage == self.settings.pipeline.publish_stage
            ),
        )

        start_index = STAGE_ORDER.index(start_stage)
        for stage_name in STAGE_ORDER[:start_index]:
            await self._restore_stage(run, stage_name, stages_state.get(stage_name) or {})
        if start_index > 0:
            run.previous_stage = STAGE_ORDER[start_index - 1]

        await self._best_effort("start resume", self.state.start_resume(pipeline_id))
        logger.info(
            "Pipeline resumed",
            pipeline_id=pipeline_id,
            previous_status=status,
            from_stage=start_stage,
            restored_stages=len(run.completed_stages),
        )

        remaining = [s for s in STAGE_ORDER[start_index:] if s != StageName.NOTIFICATIONS]
        await self._run_stages(run, remaining)
        return await self._finish(run)

    async def _restore_stage(self, run: _Run, stage_name: str, entry: dict[str, Any]) -> None:
        if entry.get("status") == PipelineStatus.COMPLETED:
            output = await self.state.load_stage_output(run.pipeline_id, stage_name)
            if output is not None:
                run.stage_outputs[stage_name] = output
                run.completed_stages.append(stage_name)
                run.total_cost += output.cost.total_cost
                run.previous_output = output
                return
            logger.warning(
                "Completed stage has no persisted output",
                pipeline_id=run.pipeline_id,
                stage=stage_name,
            )
        elif (
            entry.get("status") == PipelineStatus.FAILED
            and stage_name not in run.quality_context.degraded_stages
        ):
            run.skipped_stages.append(stage_name)

    async def _load_queued_topic(self, run: _Run) -> None:
        """Seed the run with a topic queued by an earlier skipped run, if one is due."""
        pipeline_id = run.pipeline_id
        try:
            queued = await self.topic_queue.check_today_queued_topic(pipeline_id)
            if queued is None:
                return

            if queued.retry_count >= self.settings.queue.max_retries:
                logger.warning(
                    "Queued topic reached max retries, proceeding fresh",
                    pipeline_id=pipeline_id,
                    topic=queued.topic,
                    retry_count=queued.retry_count,
                )
                await self.topic_queue.clear_queued_topic(pipeline_id)
                return

            updated = await self.topic_queue.increment_retry_count(pipeline_id)
            if updated is None:
                logger.warning(
                    "Queued topic exhausted its retries, proceeding fresh",
                    pipeline_id=pipeline_id,
                    topic=queued.topic,
                )
                return
        except Exception as e:
            logger.error(
                "Failed to check queued topic, proceeding fresh",
                pipeline_id=pipeline_id,
                error=str(e),
            )
            return

        run.queued_topic = updated.topic
        run.seed_data = {"queuedTopic": updated.topic, "fromQueue": True}
        logger.info(
            "Using queued topic",
            pipeline_id=pipeline_id,
            topic=updated.topic,
            retry_count=updated.retry_count,
        )

    async def _initialize_state(self, pipeline_id: str) -> None:
        pipeline = self.settings.pipeline
        backoff = pipeline.state_init_backoff_seconds
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(pipeline.state_init_attempts),
                wait=wait_incrementing(start=backoff, increment=backoff),
                reraise=True,
            ):
                with attempt:
                    await self.state.initialize_pipeline(pipeline_id)
        except Exception as e:
            logger.error(
                "Failed to initialize pipeline state",
                pipeline_id=pipeline_id,
                attempts=pipeline.state_init_attempts,
                error=str(e),
            )
            raise NexusError.critical(
                NEXUS_STATE_INIT_FAILED,
                f"Failed to initialize pipeline state: {e}",
                ORCHESTRATOR,
            ) from e

    async def _best_effort(self, action: str, write: Awaitable[Any]) -> Any:
        """Await a side effect, logging instead of raising when it fails."""
        try:
            return await write
        except Exception as e:
            logger.error(f"Failed to {action}", error=str(e))
            return None

    async def _run_stages(self, run: _Run, stages: Sequence[str]) -> None:
        for stage_name in stages:
            if stage_name == self.settings.pipeline.publish_stage:
                if not await self._quality_checkpoint(run):
                    return
            if not await self._execute_stage(run, stage_name):
                return

    def _stage_input(self, run: _Run, data: Any) -> StageInput:
        return StageInput(
            pipeline_id=run.pipeline_id,
            previous_stage=run.previous_stage,
            data=data,
            config=self.settings.stage.model_dump(),
            quality_context=run.quality_context.copy(),
        )

    @trace_span("pipeline.stage")
    async def _invoke_stage(
        self, stage: Stage, stage_input: StageInput, policy: StageRetryPolicy
    ) -> RetryResult[StageOutput]:
        add_span_attributes(stage=stage.name, pipeline_id=stage_input.pipeline_id)
        return await with_retry(
            lambda: stage.execute(stage_input),
            max_retries=policy.max_retries,
            base_delay_ms=policy.base_delay_ms,
            max_delay_ms=self.settings.retry.max_delay_ms,
            stage=stage.name,
        )

    async def _execute_stage(self, run: _Run, stage_name: str) -> bool:
        """Run one stage; False when the run must stop here."""
        pipeline_id = run.pipeline_id
        stage_input = self._stage_input(run, run.stage_data())
        policy = self.settings.retry.policy_for(stage_name)

        logger.info("Stage started", pipeline_id=pipeline_id, stage=stage_name)
        await self._best_effort(
            f"record {stage_name} start",
            self.state.update_stage_status(
                pipeline_id, stage_name, PipelineStatus.RUNNING, startTime=_now()
            ),
        )

        start = time.perf_counter()
        try:
            stage = self.registry.get(stage_name)
            outcome = await self._invoke_stage(stage, stage_input, policy)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            get_metrics_collector().record_stage(stage_name, duration_ms, "failed")
            return await self._handle_stage_failure(run, stage_name, e, duration_ms)

        duration_ms = (time.perf_counter() - start) * 1000
        get_metrics_collector().record_stage(stage_name, duration_ms, "completed")
        await self._handle_stage_success(
            run, stage_name, outcome.result, outcome.attempts - 1, duration_ms
        )
        return True

    async def _handle_stage_success(
        self,
        run: _Run,
        stage_name: str,
        output: StageOutput,
        retry_attempts: int,
        duration_ms: float,
    ) -> None:
        pipeline_id = run.pipeline_id
        run.stage_outputs[stage_name] = output
        run.completed_stages.append(stage_name)
        run.total_cost += output.cost.total_cost
        run.run_cost += output.cost.total_cost
        for warning in output.warnings:
            run.quality_context.add_flag(warning)

        if output.provider.tier == FALLBACK:
            run.quality_context.add_fallback(stage_name, output.provider.name)
            logger.warning(
                "Stage used fallback provider",
                pipeline_id=pipeline_id,
                stage=stage_name,
                provider=output.provider.name,
            )

        run.previous_stage = stage_name
        run.previous_output = output

        logger.timed(
            "Stage completed",
            duration_ms,
            pipeline_id=pipeline_id,
            stage=stage_name,
            provider=output.provider.name,
            tier=output.provider.tier,
            cost=output.cost.total_cost,
            retry_attempts=retry_attempts,
        )

        await self._best_effort(
            f"record {stage_name} completion",
            self.state.update_stage_status(
                pipeline_id,
                stage_name,
                PipelineStatus.COMPLETED,
                endTime=_now(),
                durationMs=round(duration_ms, 2),
                provider=output.provider.to_dict(),
                cost=output.cost.to_dict(),
            ),
        )
        if retry_attempts > 0:
            await self._best_effort(
                f"record {stage_name} retry attempts",
                self.state.update_retry_attempts(pipeline_id, stage_name, retry_attempts),
            )
        await self._best_effort(
            f"persist {stage_name} output",
            self.state.persist_stage_output(pipeline_id, stage_name, output),
        )
        await self._best_effort(
            "persist quality context",
            self.state.update_quality_context(pipeline_id, run.quality_context),
        )

    async def _handle_stage_failure(
        self, run: _Run, stage_name: str, exc: Exception, duration_ms: float
    ) -> bool:
        pipeline_id = run.pipeline_id
        error = NexusError.from_error(exc, stage_name)
        severity = original_severity(error)
        retry_attempts = error.context.get("retryAttempts", 0)

        logger.error(
            "Stage failed",
            pipeline_id=pipeline_id,
            stage=stage_name,
            code=error.code,
            severity=severity.value,
            retry_attempts=retry_attempts,
            error=error.message,
        )

        incident_id = await self._log_incident(run, stage_name, error, severity, retry_attempts)

        await self._best_effort(
            f"record {stage_name} failure",
            self.state.update_stage_status(
                pipeline_id,
                stage_name,
                PipelineStatus.FAILED,
                endTime=_now(),
                durationMs=round(duration_ms, 2),
                error={
                    "code": error.code,
                    "message": error.message,
                    "severity": error.severity.value,
                    "incidentId": incident_id,
                },
                retryAttempts=retry_attempts,
            ),
        )

        criticality = get_stage_criticality(stage_name)
        if severity == ErrorSeverity.CRITICAL or (
            severity not in (ErrorSeverity.RECOVERABLE, ErrorSeverity.DEGRADED)
            and criticality == ErrorSeverity.CRITICAL
        ):
            reason = None
            if stage_name in self.settings.pipeline.critical_stages:
                reason = skip_reason(stage_name, error, severity, retry_attempts)
            if reason is None:
                await self._abort(run, stage_name, error)
            else:
                await self._skip(run, stage_name, error, reason, incident_id)
            return False

        if ErrorSeverity.RECOVERABLE in (severity, criticality):
            run.skipped_stages.append(stage_name)
            logger.warning(
                "Stage skipped, continuing pipeline", pipeline_id=pipeline_id, stage=stage_name
            )
        else:
            run.quality_context.add_degraded(stage_name)
            logger.warning(
                "Stage degraded, continuing pipeline", pipeline_id=pipeline_id, stage=stage_name
            )
            await self._best_effort(
                "persist quality context",
                self.state.update_quality_context(pipeline_id, run.quality_context),
            )

        run.previous_stage = stage_name
        return True

    async def _log_incident(
        self,
        run: _Run,
        stage_name: str,
        error: NexusError,
        severity: ErrorSeverity,
        retry_attempts: int,
    ) -> str | None:
        incident = Incident(
            date=run.pipeline_id,
            pipeline_id=run.pipeline_id,
            stage=stage_name,
            error=IncidentError(code=error.code, message=error.message),
            severity=map_severity(severity),
            start_time=error.timestamp,
            root_cause=infer_root_cause(error.code),
            context={
                "provider": "unknown",
                "attempt": max(retry_attempts, 1),
                "fallbacksUsed": list(run.quality_context.fallbacks_used),
                "qualityContext": run.quality_context.to_dict(),
                **error.context,
            },
        )
        try:
            incident_id = await self.incident_logger.log_incident(incident)
        except Exception as e:
            logger.error(
                "Failed to log incident",
                pipeline_id=run.pipeline_id,
                stage=stage_name,
                error=str(e),
            )
            return None

        if incident.severity == IncidentSeverity.CRITICAL and self.alert_sink is not None:
            await self._best_effort(
                "send critical incident alert",
                self.alert_sink(
                    IncidentSeverity.CRITICAL.value,
                    {
                        "incidentId": incident_id,
                        "pipelineId": run.pipeline_id,
                        "stage": stage_name,
                        "code": error.code,
                        "message": error.message,
                        "rootCause": str(incident.root_cause),
                    },
                ),
            )
        return incident_id

    async def _abort(self, run: _Run, stage_name: str, error: NexusError) -> None:
        run.error = error
        run.abort_reason = f"{stage_name} failed: {error.message}"
        logger.error(
            "Pipeline aborted",
            pipeline_id=run.pipeline_id,
            stage=stage_name,
            code=error.code,
        )
        await self._best_effort(
            "mark pipeline failed", self.state.mark_failed(run.pipeline_id, error)
        )

    def _processing_topic(self, run: _Run) -> str | None:
        if run.queued_topic:
            return run.queued_topic
        sourced = run.stage_outputs.get(StageName.NEWS_SOURCING)
        if sourced is not None and isinstance(sourced.data, dict):
            return sourced.data.get("topic") or sourced.data.get("selectedTopic")
        return None

    async def _skip(
        self,
        run: _Run,
        stage_name: str,
        error: NexusError,
        reason: str,
        incident_id: str | None,
    ) -> None:
        skip_info = SkipInfo(reason=reason, stage=stage_name, incident_id=incident_id)
        topic = self._processing_topic(run)
        if topic:
            try:
                skip_info.queued_for_date = await self.topic_queue.queue_failed_topic(
                    topic, error.code, stage_name, run.pipeline_id
                )
                skip_info.topic_queued = True
            except Exception as e:
                logger.error(
                    "Failed to re-queue topic",
                    pipeline_id=run.pipeline_id,
                    topic=topic,
                    error=str(e),
                )

        run.skip_info = skip_info
        logger.warning(
            "Pipeline skipped",
            pipeline_id=run.pipeline_id,
            stage=stage_name,
            reason=reason,
            topic_queued=skip_info.topic_queued,
            queued_for_date=skip_info.queued_for_date,
        )
        await self._best_effort(
            "mark pipeline skipped",
            self.state.mark_skipped(run.pipeline_id, reason, stage_name, **skip_info.extra()),
        )

    async def _quality_checkpoint(self, run: _Run) -> bool:
        """Pre-publish decision; False when the run pauses for review."""
        pipeline_id = run.pipeline_id
        try:
            if run.resumed_from_pause:
                decision = await self.quality_gate.check_pending_reviews(pipeline_id)
            else:
                decision = await self.quality_gate.check(
                    pipeline_id, run.stage_outputs, run.quality_context
                )
        except Exception as e:
            logger.error(
                "Quality checkpoint failed, continuing to publish",
                pipeline_id=pipeline_id,
                error=str(e),
            )
            return True

        run.quality_decision = decision
        logger.info(
            "Quality checkpoint decided",
            pipeline_id=pipeline_id,
            decision=str(decision.decision),
            reason=decision.reason,
        )

        if decision.decision == QualityDecisionType.HUMAN_REVIEW:
            run.paused = True
            publish_stage = decision.pause_before_stage or self.settings.pipeline.publish_stage
            await self._best_effort(
                "mark pipeline paused", self.state.mark_paused(pipeline_id, publish_stage)
            )
            logger.warning(
                "Pipeline paused for human review",
                pipeline_id=pipeline_id,
                pause_before_stage=publish_stage,
                review_item_ids=decision.review_item_ids,
            )
            return False

        if decision.decision == QualityDecisionType.AUTO_PUBLISH_WITH_WARNING:
            run.quality_context.add_flag(QUALITY_WARNING_FLAG)
            await self._best_effort(
                "persist quality context",
                self.state.update_quality_context(pipeline_id, run.quality_context),
            )
        return True

    async def _run_notifications(self, run: _Run) -> None:
        stage_name = StageName.NOTIFICATIONS
        if stage_name not in self.registry:
            logger.warning("No notifications stage registered", pipeline_id=run.pipeline_id)
            return

        data = {
            "pipelineAborted": run.aborted,
            "pipelineSkipped": run.skipped,
            "pipelinePaused": run.paused,
            "abortReason": run.abort_reason,
            "skipInfo": run.skip_info.to_dict() if run.skip_info else None,
            "qualityDecision": run.quality_decision.to_document() if run.quality_decision else None,
            "completedStages": list(run.completed_stages),
            "skippedStages": list(run.skipped_stages),
            "totalCost": round_cost(run.total_cost),
        }
        stage_input = self._stage_input(run, data)

        start = time.perf_counter()
        try:
            outcome = await self._invoke_stage(
                self.registry.get(stage_name), stage_input, self.settings.retry.policy_for(stage_name)
            )
        except Exception as e:
            get_metrics_collector().record_stage(
                stage_name, (time.perf_counter() - start) * 1000, "failed"
            )
            logger.error(
                "Notifications failed, pipeline outcome unchanged",
                pipeline_id=run.pipeline_id,
                error=str(e),
            )
            return

        duration_ms = (time.perf_counter() - start) * 1000
        get_metrics_collector().record_stage(stage_name, duration_ms, "completed")
        output = outcome.result
        run.stage_outputs[stage_name] = output
        run.total_cost += output.cost.total_cost
        run.run_cost += output.cost.total_cost
        if run.succeeded:
            run.completed_stages.append(stage_name)

        await self._best_effort(
            "record notifications completion",
            self.state.update_stage_status(
                run.pipeline_id,
                stage_name,
                PipelineStatus.COMPLETED,
                endTime=_now(),
                durationMs=round(duration_ms, 2),
                provider=output.provider.to_dict(),
            ),
        )
        await self._best_effort(
            "persist notifications output",
            self.state.persist_stage_output(run.pipeline_id, stage_name, output),
        )

    async def _record_costs(self, run: _Run) -> None:
        pipeline_id = run.pipeline_id
        total = round_cost(run.total_cost)
        await self._best_effort(
            "update total cost", self.state.update_total_cost(pipeline_id, total)
        )
        await self._best_effort(
            "update budget", self.budget.update_budget_spent(round_cost(run.run_cost), pipeline_id)
        )
        alert = await self._best_effort(
            "check cost thresholds",
            self.budget.check_cost_thresholds(
                total, pipeline_id, cost_breakdown(list(run.stage_outputs.values()))
            ),
        )
        if alert is not None and alert.triggered:
            logger.info(
                "Cost threshold crossed",
                pipeline_id=pipeline_id,
                severity=alert.severity,
                alert_sent=alert.sent,
            )

    async def _finish(self, run: _Run) -> PipelineResult:
        pipeline_id = run.pipeline_id
        await self._run_notifications(run)
        await self._record_costs(run)

        # skipped runs have already re-queued the topic for a later date
        if run.queued_topic:
            await self._best_effort(
                "clear queued topic", self.topic_queue.clear_queued_topic(pipeline_id)
            )
        if run.succeeded:
            await self._best_effort("mark pipeline complete", self.state.mark_complete(pipeline_id))

        status = run.status
        total_duration_ms = (time.perf_counter() - run.started) * 1000
        get_metrics_collector().record_pipeline(status.value, total_duration_ms)

        error = None
        if run.error is not None:
            error = {
                "code": run.error.code,
                "message": run.error.message,
                "stage": run.error.stage,
                "severity": run.error.severity.value,
            }

        logger.timed(
            "Pipeline finished",
            total_duration_ms,
            pipeline_id=pipeline_id,
            status=status.value,
            completed_stages=len(run.completed_stages),
            skipped_stages=len(run.skipped_stages),
            total_cost=round_cost(run.total_cost),
        )

        return PipelineResult(
            success=run.succeeded,
            pipeline_id=pipeline_id,
            status=status,
            stage_outputs=run.stage_outputs,
            completed_stages=run.completed_stages,
            skipped_stages=run.skipped_stages,
            quality_context=run.quality_context,
            total_duration_ms=total_duration_ms,
            total_cost=round_cost(run.total_cost),
            error=error,
            skip_info=run.skip_info,
            quality_decision=run.quality_decision,
        )


async def execute_pipeline(pipeline_id: str) -> PipelineResult:
    """Run ``pipeline_id`` with the executor from the default container."""
    return await get_container().get("executor").execute(pipeline_id)


async def resume_pipeline(pipeline_id: str, from_stage: str | None = None) -> PipelineResult:
    """Resume ``pipeline_id`` with the executor from the default container."""
    return await get_container().get("executor").resume(pipeline_id, from_stage)
