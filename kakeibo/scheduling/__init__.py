"""Recurrence scheduling package."""

from kakeibo.scheduling.recurrence import (
    add_months,
    days_until,
    initial_next_occurrence,
    is_due,
    monthly_projection,
    next_occurrence,
    normalized_monthly_amount,
)

__all__ = [
    "add_months",
    "days_until",
    "initial_next_occurrence",
    "is_due",
    "monthly_projection",
    "next_occurrence",
    "normalized_monthly_amount",
]
