"""Budget tracking and cost alerts."""

from .budget import AlertSink, BudgetTracker, CostAlertResult, StoreBudgetTracker, round_cost

__all__ = ["AlertSink", "BudgetTracker", "CostAlertResult", "StoreBudgetTracker", "round_cost"]
