"""
Notifications stage: delivers the terminal pipeline outcome to every channel.

Channels run concurrently and fail independently. The stage itself always
succeeds; channel failures are reported in its output and as warnings.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from ..core.stages import ProviderInfo, Stage, StageCost, StageInput, StageName, StageOutput
from ..observability.logging import get_logger
from ..observability.metrics import counter

logger = get_logger(__name__)


class NotificationChannel(ABC):
    """One delivery channel (chat webhook, email, ...)."""

    name: str = "channel"

    @abstractmethod
    async def send(self, summary: dict[str, Any]) -> dict[str, Any]:
        """Deliver ``summary``. Raises on delivery failure."""
        ...


def pipeline_status(data: dict[str, Any]) -> str:
    if data.get("pipelineAborted"):
        return "failed"
    if data.get("pipelineSkipped"):
        return "skipped"
    if data.get("pipelinePaused"):
        return "paused"
    return "completed"


def build_pipeline_summary(pipeline_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Channel-neutral summary of a finished run."""
    quality_decision = data.get("qualityDecision") or {}
    return {
        "pipelineId": pipeline_id,
        "status": pipeline_status(data),
        "completedStages": list(data.get("completedStages", [])),
        "skippedStages": list(data.get("skippedStages", [])),
        "totalCost": round(data.get("totalCost", 0.0), 4),
        "abortReason": data.get("abortReason"),
        "skipInfo": data.get("skipInfo"),
        "qualityDecision": quality_decision.get("decision"),
    }


class NotificationsStage(Stage):
    """Final stage of every run, whatever its outcome."""

    def __init__(self, channels: Sequence[NotificationChannel] = ()):
        super().__init__(StageName.NOTIFICATIONS)
        self.channels = list(channels)

    async def _send(self, channel: NotificationChannel, summary: dict[str, Any]) -> dict[str, Any]:
        start = time.perf_counter()
        detail = await channel.send(summary)
        return {
            "sent": True,
            "latencyMs": round((time.perf_counter() - start) * 1000, 2),
            **(detail or {}),
        }

    async def execute(self, stage_input: StageInput) -> StageOutput:
        start = time.perf_counter()
        summary = build_pipeline_summary(stage_input.pipeline_id, stage_input.data or {})

        logger.info(
            "Starting notifications stage",
            pipeline_id=stage_input.pipeline_id,
            pipeline_status=summary["status"],
            channel_count=len(self.channels),
        )

        outcomes = await asyncio.gather(
            *(self._send(channel, summary) for channel in self.channels),
            return_exceptions=True,
        )

        channels: dict[str, dict[str, Any]] = {}
        warnings: list[str] = []
        for channel, outcome in zip(self.channels, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                channels[channel.name] = {"sent": False, "error": str(outcome)}
                warnings.append(f"{channel.name} notification failed: {outcome}")
                logger.warning(
                    "Notification channel failed",
                    pipeline_id=stage_input.pipeline_id,
                    channel=channel.name,
                    error=str(outcome),
                )
            else:
                channels[channel.name] = outcome

        sent = sum(1 for result in channels.values() if result["sent"])
        failed = len(channels) - sent
        counter("notifications_sent_total", "Notifications delivered").add(sent)
        counter("notifications_failed_total", "Notifications that failed").add(failed)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Notifications stage complete",
            pipeline_id=stage_input.pipeline_id,
            notifications_sent=sent,
            notifications_failed=failed,
            duration_ms=round(duration_ms, 2),
        )

        return StageOutput(
            success=True,
            data={"channels": channels, "summary": summary},
            provider=ProviderInfo(name="notifications", tier="primary", attempts=1),
            quality={"measurements": {"notificationsSent": sent, "notificationsFailed": failed}},
            cost=StageCost(total_cost=0.0),
            duration_ms=duration_ms,
            warnings=warnings,
        )
