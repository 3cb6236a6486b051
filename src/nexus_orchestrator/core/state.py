"""
Durable per-pipeline state: run status, per-stage status and stage outputs.

Status transitions are ``pending -> running -> completed | failed | skipped |
paused``. A pipeline may be resumed from ``failed``, ``skipped`` or
``paused``. Exclusion between runs of the same pipeline id is a status check,
not a lock; callers serialize runs per id.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from ..observability.logging import get_logger
from ..storage.documents import DocumentStore
from .errors import NEXUS_STATE_NOT_FOUND, NexusError
from .stages import QualityContext, StageOutput

logger = get_logger(__name__)

PIPELINES_COLLECTION = "pipelines"
DEFAULT_MAX_PIPELINE_DURATION_MS = 4 * 60 * 60 * 1000


class PipelineStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    PAUSED = "paused"


RESUMABLE_STATUSES = frozenset(
    {PipelineStatus.FAILED, PipelineStatus.SKIPPED, PipelineStatus.PAUSED}
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _outputs_collection(pipeline_id: str) -> str:
    return f"{PIPELINES_COLLECTION}/{pipeline_id}/outputs"


def _costs_collection(pipeline_id: str) -> str:
    return f"{PIPELINES_COLLECTION}/{pipeline_id}/costs"


class PipelineStateStore:
    """Reads and writes pipeline state documents through a ``DocumentStore``."""

    def __init__(
        self,
        store: DocumentStore,
        max_pipeline_duration_ms: int = DEFAULT_MAX_PIPELINE_DURATION_MS,
    ):
        self.store = store
        self.max_pipeline_duration_ms = max_pipeline_duration_ms

    async def initialize_pipeline(self, pipeline_id: str) -> None:
        """Start a fresh run, discarding stage history from earlier runs."""
        now = _now()
        await self.store.set_document(
            PIPELINES_COLLECTION,
            pipeline_id,
            {
                "pipelineId": pipeline_id,
                "status": PipelineStatus.RUNNING.value,
                "currentStage": None,
                "startTime": now,
                "endTime": None,
                "stages": {},
                "qualityContext": QualityContext().to_dict(),
                "error": None,
                "skipInfo": None,
                "pauseBeforeStage": None,
                "totalCost": 0.0,
                "updatedAt": now,
            },
        )
        logger.info("Pipeline state initialized", pipeline_id=pipeline_id)

    async def start_resume(self, pipeline_id: str) -> None:
        """Mark a resumed run as running, keeping stage history and quality context."""
        now = _now()
        await self.store.update_document(
            PIPELINES_COLLECTION,
            pipeline_id,
            {
                "status": PipelineStatus.RUNNING.value,
                "startTime": now,
                "endTime": None,
                "error": None,
                "skipInfo": None,
                "pauseBeforeStage": None,
                "updatedAt": now,
            },
        )

    async def update_stage_status(
        self, pipeline_id: str, stage: str, status: str, **meta: Any
    ) -> None:
        """Replace the status entry of one stage and make it the current stage."""
        entry = {"status": str(status), **meta}
        await self.store.update_document(
            PIPELINES_COLLECTION,
            pipeline_id,
            {f"stages.{stage}": entry, "currentStage": str(stage), "updatedAt": _now()},
        )

    async def get_state(self, pipeline_id: str) -> dict[str, Any]:
        state = await self.store.get_document(PIPELINES_COLLECTION, pipeline_id)
        if state is None:
            raise NexusError.critical(
                NEXUS_STATE_NOT_FOUND,
                f"Pipeline state not found: {pipeline_id}",
                "orchestrator",
            )
        return state

    async def find_state(self, pipeline_id: str) -> dict[str, Any] | None:
        return await self.store.get_document(PIPELINES_COLLECTION, pipeline_id)

    async def mark_complete(self, pipeline_id: str) -> None:
        await self._finish(pipeline_id, PipelineStatus.COMPLETED)

    async def mark_failed(self, pipeline_id: str, error: NexusError) -> None:
        await self._finish(
            pipeline_id,
            PipelineStatus.FAILED,
            error={
                "code": error.code,
                "message": error.message,
                "severity": error.severity.value,
                "stage": error.stage,
            },
        )

    async def mark_skipped(
        self, pipeline_id: str, reason: str, stage: str, **skip_info: Any
    ) -> None:
        await self._finish(
            pipeline_id,
            PipelineStatus.SKIPPED,
            skipInfo={"reason": reason, "stage": str(stage), **skip_info},
        )

    async def mark_paused(self, pipeline_id: str, stage: str) -> None:
        await self._finish(pipeline_id, PipelineStatus.PAUSED, pauseBeforeStage=str(stage))

    async def _finish(self, pipeline_id: str, status: PipelineStatus, **fields: Any) -> None:
        now = _now()
        await self.store.update_document(
            PIPELINES_COLLECTION,
            pipeline_id,
            {"status": status.value, "endTime": now, "updatedAt": now, **fields},
        )
        logger.info("Pipeline state finalized", pipeline_id=pipeline_id, status=status.value)

    async def update_quality_context(
        self, pipeline_id: str, quality_context: QualityContext
    ) -> None:
        await self.store.update_document(
            PIPELINES_COLLECTION,
            pipeline_id,
            {"qualityContext": quality_context.to_dict(), "updatedAt": _now()},
        )

    async def update_retry_attempts(self, pipeline_id: str, stage: str, attempts: int) -> None:
        await self.store.update_document(
            PIPELINES_COLLECTION,
            pipeline_id,
            {f"stages.{stage}.retryAttempts": attempts},
        )

    async def persist_stage_output(
        self, pipeline_id: str, stage: str, output: StageOutput
    ) -> None:
        await self.store.set_document(
            _outputs_collection(pipeline_id),
            str(stage),
            {"data": output.data, "output": output.to_dict(), "timestamp": _now()},
        )

    async def load_stage_output(self, pipeline_id: str, stage: str) -> StageOutput | None:
        """Output persisted by a completed stage, or None when nothing was stored."""
        document = await self.store.get_document(_outputs_collection(pipeline_id), str(stage))
        if document is None:
            return None
        if "output" in document:
            return StageOutput.from_dict(document["output"])
        return StageOutput.from_dict({"data": document.get("data")})

    async def update_total_cost(self, pipeline_id: str, total_cost: float) -> None:
        now = _now()
        await self.store.set_document(
            _costs_collection(pipeline_id), "total", {"total": total_cost, "timestamp": now}
        )
        if await self.find_state(pipeline_id) is not None:
            await self.store.update_document(
                PIPELINES_COLLECTION, pipeline_id, {"totalCost": total_cost, "updatedAt": now}
            )

    async def is_locked(self, pipeline_id: str) -> bool:
        """True while another run of ``pipeline_id`` is running and not stale."""
        state = await self.find_state(pipeline_id)
        if state is None or state.get("status") != PipelineStatus.RUNNING.value:
            return False

        started = state.get("startTime")
        if not started:
            return True
        elapsed_ms = (datetime.now(UTC) - datetime.fromisoformat(started)).total_seconds() * 1000
        if elapsed_ms >= self.max_pipeline_duration_ms:
            logger.warning(
                "Stale running pipeline found, allowing override",
                pipeline_id=pipeline_id,
                elapsed_ms=round(elapsed_ms),
            )
            return False
        return True
