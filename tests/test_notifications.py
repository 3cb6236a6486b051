"""
Tests for the notifications stage and pipeline summaries.
"""

import asyncio

import pytest

from nexus_orchestrator.core.stages import QualityContext, StageInput
from nexus_orchestrator.notifications import (
    NotificationChannel,
    NotificationsStage,
    build_pipeline_summary,
    pipeline_status,
)

from conftest import PIPELINE_ID


class RecordingChannel(NotificationChannel):
    def __init__(self, name: str, error: Exception | None = None, detail=None):
        self.name = name
        self.error = error
        self.detail = detail
        self.summaries = []

    async def send(self, summary):
        self.summaries.append(summary)
        if self.error is not None:
            raise self.error
        return self.detail


class RendezvousChannel(NotificationChannel):
    """Only completes once its partner has started, so it needs concurrent sends."""

    def __init__(self, name: str, mine: asyncio.Event, partner: asyncio.Event):
        self.name = name
        self.mine = mine
        self.partner = partner

    async def send(self, summary):
        self.mine.set()
        await asyncio.wait_for(self.partner.wait(), timeout=1)
        return {}


def stage_input(data=None) -> StageInput:
    return StageInput(
        pipeline_id=PIPELINE_ID,
        previous_stage="twitter",
        data=data or {},
        config={},
        quality_context=QualityContext(),
    )


class TestSummary:
    """Test the channel-neutral run summary."""

    @pytest.mark.parametrize(
        "data, expected",
        [
            ({}, "completed"),
            ({"pipelineAborted": True, "pipelineSkipped": True}, "failed"),
            ({"pipelineSkipped": True}, "skipped"),
            ({"pipelinePaused": True}, "paused"),
        ],
    )
    def test_status(self, data, expected):
        assert pipeline_status(data) == expected

    def test_build_summary(self):
        summary = build_pipeline_summary(
            PIPELINE_ID,
            {
                "completedStages": ["news-sourcing", "research"],
                "skippedStages": ["twitter"],
                "totalCost": 0.123456,
                "qualityDecision": {"decision": "AUTO_PUBLISH"},
            },
        )

        assert summary == {
            "pipelineId": PIPELINE_ID,
            "status": "completed",
            "completedStages": ["news-sourcing", "research"],
            "skippedStages": ["twitter"],
            "totalCost": 0.1235,
            "abortReason": None,
            "skipInfo": None,
            "qualityDecision": "AUTO_PUBLISH",
        }


class TestNotificationsStage:
    """Test channel fan-out."""

    @pytest.mark.asyncio
    async def test_all_channels_receive_summary(self):
        discord = RecordingChannel("discord", detail={"messageId": "m1"})
        email = RecordingChannel("email")
        stage = NotificationsStage([discord, email])

        output = await stage.execute(stage_input({"pipelineAborted": True, "abortReason": "tts failed"}))

        assert output.success
        assert discord.summaries[0]["status"] == "failed"
        assert email.summaries[0]["abortReason"] == "tts failed"
        assert output.data["channels"]["discord"]["sent"] is True
        assert output.data["channels"]["discord"]["messageId"] == "m1"
        assert "latencyMs" in output.data["channels"]["email"]
        assert output.measurements == {"notificationsSent": 2, "notificationsFailed": 0}
        assert output.provider.name == "notifications"
        assert output.cost.total_cost == 0.0
        assert output.warnings == []

    @pytest.mark.asyncio
    async def test_channels_run_concurrently(self):
        first_started, second_started = asyncio.Event(), asyncio.Event()
        stage = NotificationsStage(
            [
                RendezvousChannel("discord", first_started, second_started),
                RendezvousChannel("email", second_started, first_started),
            ]
        )

        output = await stage.execute(stage_input())
        assert output.measurements["notificationsSent"] == 2

    @pytest.mark.asyncio
    async def test_channel_failure_is_isolated(self):
        """One failing channel never prevents the others or fails the stage."""
        discord = RecordingChannel("discord", error=RuntimeError("webhook 500"))
        email = RecordingChannel("email")
        stage = NotificationsStage([discord, email])

        output = await stage.execute(stage_input())

        assert output.success
        assert output.data["channels"]["discord"] == {"sent": False, "error": "webhook 500"}
        assert output.data["channels"]["email"]["sent"] is True
        assert output.warnings == ["discord notification failed: webhook 500"]
        assert output.measurements == {"notificationsSent": 1, "notificationsFailed": 1}

    @pytest.mark.asyncio
    async def test_no_channels(self):
        output = await NotificationsStage().execute(stage_input())

        assert output.success
        assert output.data["channels"] == {}
        assert output.data["summary"]["pipelineId"] == PIPELINE_ID
