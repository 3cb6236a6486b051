"""
Budget tracking and per-video cost alerts.

Budget figures are informational: nothing here gates pipeline execution.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ..core.errors import NEXUS_COST_BUDGET_NOT_FOUND, NexusError
from ..observability.logging import get_logger
from ..storage.documents import DocumentStore

logger = get_logger(__name__)

BUDGET_COLLECTION = "budget"
BUDGET_DOC_ID = "current"
ALERTS_DOC_ID = "alerts"

WARNING = "WARNING"
CRITICAL = "CRITICAL"

AlertSink = Callable[[str, dict[str, Any]], Awaitable[None]]


def round_cost(cost: float) -> float:
    return round(cost, 4)


def _current_month() -> str:
    return datetime.now(UTC).strftime("%Y-%m")


@dataclass
class CostAlertResult:
    triggered: bool
    sent: bool
    severity: str | None = None
    reason: str | None = None


class BudgetTracker(ABC):
    """Budget collaborator called after every run."""

    @abstractmethod
    async def update_budget_spent(self, amount: float, date: str | None = None) -> None:
        """Add ``amount`` to the money spent so far."""

    @abstractmethod
    async def check_cost_thresholds(
        self, video_cost: float, pipeline_id: str, breakdown: dict[str, float]
    ) -> CostAlertResult:
        """Alert when one video's cost crosses the warning or critical threshold."""


class StoreBudgetTracker(BudgetTracker):
    """Budget and alert state kept in the ``budget`` collection."""

    def __init__(
        self,
        store: DocumentStore,
        initial_credit: float = 300.0,
        warning_threshold: float = 0.75,
        critical_threshold: float = 1.0,
        alert_cooldown_seconds: float = 3600.0,
        alert_sink: AlertSink | None = None,
    ):
        self.store = store
        self.initial_credit = initial_credit
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self.alert_cooldown_seconds = alert_cooldown_seconds
        self.alert_sink = alert_sink

    async def initialize_budget(self, credit_amount: float | None = None) -> None:
        if await self.store.get_document(BUDGET_COLLECTION, BUDGET_DOC_ID) is not None:
            return

        credit = self.initial_credit if credit_amount is None else credit_amount
        now = datetime.now(UTC)
        await self.store.set_document(
            BUDGET_COLLECTION,
            BUDGET_DOC_ID,
            {
                "initialCredit": credit,
                "totalSpent": 0.0,
                "remaining": credit,
                "startDate": now.date().isoformat(),
                "lastUpdated": now.isoformat(),
            },
        )
        logger.info("Budget initialized", credit_amount=credit)

    async def get_budget(self) -> dict[str, Any]:
        """Current budget document, created with the initial credit when missing."""
        budget = await self.store.get_document(BUDGET_COLLECTION, BUDGET_DOC_ID)
        if budget is None:
            logger.info("Budget not found, initializing with defaults")
            await self.initialize_budget()
            budget = await self.store.get_document(BUDGET_COLLECTION, BUDGET_DOC_ID)
            if budget is None:
                raise NexusError.critical(
                    NEXUS_COST_BUDGET_NOT_FOUND,
                    "Failed to initialize budget document",
                    "cost-budget",
                )
        return budget

    async def update_budget_spent(self, amount: float, date: str | None = None) -> None:
        budget = await self.get_budget()
        total_spent = round_cost(budget["totalSpent"] + amount)
        remaining = round_cost(budget["initialCredit"] - total_spent)

        await self.store.set_document(
            BUDGET_COLLECTION,
            BUDGET_DOC_ID,
            {
                **budget,
                "totalSpent": total_spent,
                "remaining": remaining,
                "lastUpdated": datetime.now(UTC).isoformat(),
            },
        )
        logger.info(
            "Budget updated",
            amount=amount,
            date=date or datetime.now(UTC).date().isoformat(),
            total_spent=total_spent,
            remaining=remaining,
        )

    async def _alert_state(self) -> dict[str, Any]:
        month = _current_month()
        state = await self.store.get_document(BUDGET_COLLECTION, ALERTS_DOC_ID)
        if state is None or state.get("month") != month:
            return {"warningCount": 0, "criticalCount": 0, "month": month}
        return state

    def _in_cooldown(self, last_alert_at: str | None) -> bool:
        if not last_alert_at:
            return False
        elapsed = (datetime.now(UTC) - datetime.fromisoformat(last_alert_at)).total_seconds()
        return elapsed < self.alert_cooldown_seconds

    async def check_cost_thresholds(
        self, video_cost: float, pipeline_id: str, breakdown: dict[str, float]
    ) -> CostAlertResult:
        if video_cost >= self.critical_threshold:
            severity, threshold = CRITICAL, self.critical_threshold
        elif video_cost >= self.warning_threshold:
            severity, threshold = WARNING, self.warning_threshold
        else:
            logger.debug(
                "Video cost within thresholds", pipeline_id=pipeline_id, video_cost=video_cost
            )
            return CostAlertResult(triggered=False, sent=False)

        state = await self._alert_state()
        last_key = "lastCriticalAt" if severity == CRITICAL else "lastWarningAt"
        if self._in_cooldown(state.get(last_key)):
            logger.info(
                "Cost alert in cooldown period, not sending",
                pipeline_id=pipeline_id,
                severity=severity,
                video_cost=video_cost,
            )
            return CostAlertResult(
                triggered=True,
                sent=False,
                severity=severity,
                reason="Alert in cooldown period (1 hour between alerts)",
            )

        if self.alert_sink is None:
            logger.warning(
                "Cost threshold crossed with no alert sink configured",
                pipeline_id=pipeline_id,
                severity=severity,
                video_cost=video_cost,
            )
            return CostAlertResult(
                triggered=True, sent=False, severity=severity, reason="No alert sink configured"
            )

        budget = await self.get_budget()
        payload = {
            "severity": severity,
            "pipelineId": pipeline_id,
            "videoCost": video_cost,
            "breakdown": {k: round_cost(v) for k, v in breakdown.items()},
            "threshold": threshold,
            "budgetRemaining": budget["remaining"],
            "timestamp": datetime.now(UTC).isoformat(),
        }
        await self.alert_sink(severity, payload)

        count_key = "criticalCount" if severity == CRITICAL else "warningCount"
        state[count_key] = state.get(count_key, 0) + 1
        state[last_key] = payload["timestamp"]
        await self.store.set_document(BUDGET_COLLECTION, ALERTS_DOC_ID, state)

        logger.warning(
            f"Cost alert triggered: {severity}",
            pipeline_id=pipeline_id,
            video_cost=video_cost,
            threshold=threshold,
            budget_remaining=budget["remaining"],
        )
        return CostAlertResult(triggered=True, sent=True, severity=severity)
