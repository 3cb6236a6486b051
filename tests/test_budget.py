"""
Tests for budget tracking and per-video cost alerts.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from nexus_orchestrator.cost.budget import (
    ALERTS_DOC_ID,
    BUDGET_COLLECTION,
    CRITICAL,
    WARNING,
    StoreBudgetTracker,
    round_cost,
)

from conftest import PIPELINE_ID

BREAKDOWN = {"gemini": 0.123456, "tts": 0.4, "render": 0.0}


@pytest.fixture
def sink():
    return AsyncMock()


@pytest.fixture
def tracker(store, sink):
    return StoreBudgetTracker(store, alert_sink=sink)


class TestBudget:
    """Test budget initialization and spend."""

    @pytest.mark.asyncio
    async def test_budget_created_on_first_use(self, tracker):
        budget = await tracker.get_budget()

        assert budget["initialCredit"] == 300.0
        assert budget["totalSpent"] == 0.0
        assert budget["remaining"] == 300.0

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, tracker):
        await tracker.initialize_budget(50)
        await tracker.initialize_budget(100)
        assert (await tracker.get_budget())["initialCredit"] == 50

    @pytest.mark.asyncio
    async def test_spend_accumulates_rounded(self, tracker):
        await tracker.update_budget_spent(0.123456)
        await tracker.update_budget_spent(0.5)

        budget = await tracker.get_budget()
        assert budget["totalSpent"] == 0.6235
        assert budget["remaining"] == 299.3765

    def test_round_cost(self):
        assert round_cost(0.123456) == 0.1235


class TestCostThresholds:
    """Test warning and critical alerts with cooldown."""

    @pytest.mark.asyncio
    async def test_below_warning(self, tracker, sink):
        result = await tracker.check_cost_thresholds(0.5, PIPELINE_ID, BREAKDOWN)

        assert not result.triggered
        assert not result.sent
        sink.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_warning_sent(self, tracker, sink, store):
        result = await tracker.check_cost_thresholds(0.8, PIPELINE_ID, BREAKDOWN)

        assert result.triggered and result.sent
        assert result.severity == WARNING
        severity, payload = sink.await_args.args
        assert severity == WARNING
        assert payload["pipelineId"] == PIPELINE_ID
        assert payload["threshold"] == 0.75
        assert payload["breakdown"] == {"gemini": 0.1235, "tts": 0.4, "render": 0.0}
        assert payload["budgetRemaining"] == 300.0

        alerts = await store.get_document(BUDGET_COLLECTION, ALERTS_DOC_ID)
        assert alerts["warningCount"] == 1
        assert alerts["lastWarningAt"] == payload["timestamp"]

    @pytest.mark.asyncio
    async def test_critical_at_threshold(self, tracker, sink):
        result = await tracker.check_cost_thresholds(1.0, PIPELINE_ID, BREAKDOWN)
        assert result.severity == CRITICAL
        assert sink.await_args.args[0] == CRITICAL

    @pytest.mark.asyncio
    async def test_cooldown_per_severity(self, tracker, sink):
        """A second alert of the same severity within the hour is suppressed."""
        await tracker.check_cost_thresholds(0.8, PIPELINE_ID, BREAKDOWN)
        second = await tracker.check_cost_thresholds(0.9, "2026-01-23", BREAKDOWN)

        assert second.triggered and not second.sent
        assert second.reason == "Alert in cooldown period (1 hour between alerts)"

        critical = await tracker.check_cost_thresholds(1.5, "2026-01-23", BREAKDOWN)
        assert critical.sent
        assert sink.await_count == 2

    @pytest.mark.asyncio
    async def test_cooldown_expires(self, tracker, sink, store):
        month = datetime.now(UTC).strftime("%Y-%m")
        old = (datetime.now(UTC) - timedelta(hours=2)).isoformat()
        await store.set_document(
            BUDGET_COLLECTION,
            ALERTS_DOC_ID,
            {"warningCount": 1, "criticalCount": 0, "month": month, "lastWarningAt": old},
        )

        result = await tracker.check_cost_thresholds(0.8, PIPELINE_ID, BREAKDOWN)

        assert result.sent
        assert (await store.get_document(BUDGET_COLLECTION, ALERTS_DOC_ID))["warningCount"] == 2

    @pytest.mark.asyncio
    async def test_alert_state_resets_each_month(self, tracker, sink, store):
        recent = datetime.now(UTC).isoformat()
        await store.set_document(
            BUDGET_COLLECTION,
            ALERTS_DOC_ID,
            {"warningCount": 7, "criticalCount": 0, "month": "1999-01", "lastWarningAt": recent},
        )

        result = await tracker.check_cost_thresholds(0.8, PIPELINE_ID, BREAKDOWN)

        assert result.sent
        assert (await store.get_document(BUDGET_COLLECTION, ALERTS_DOC_ID))["warningCount"] == 1

    @pytest.mark.asyncio
    async def test_no_sink(self, store):
        tracker = StoreBudgetTracker(store)
        result = await tracker.check_cost_thresholds(2.0, PIPELINE_ID, BREAKDOWN)

        assert result.triggered
        assert not result.sent
        assert result.reason == "No alert sink configured"

    @pytest.mark.asyncio
    async def test_custom_thresholds(self, store, sink):
        tracker = StoreBudgetTracker(
            store, warning_threshold=0.1, critical_threshold=0.2, alert_sink=sink
        )
        result = await tracker.check_cost_thresholds(0.15, PIPELINE_ID, {})
        assert result.severity == WARNING
