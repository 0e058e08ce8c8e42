"""Budget aggregation package."""

from kakeibo.budget.aggregator import (
    daily_allowance,
    day_total,
    days_left_in_month,
    month_key,
    monthly_total,
    percentage_spent,
    remaining,
    summarize_month,
    summarize_week,
    week_start,
)
from kakeibo.budget.monitor import BudgetMonitor

__all__ = [
    "BudgetMonitor",
    "daily_allowance",
    "day_total",
    "days_left_in_month",
    "month_key",
    "monthly_total",
    "percentage_spent",
    "remaining",
    "summarize_month",
    "summarize_week",
    "week_start",
]
