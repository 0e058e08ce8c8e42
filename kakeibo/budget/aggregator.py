"""
Budget Aggregator

Pure functions deriving the month's spend position from stored records.
Remaining balance is never stored; it is recomputed from the expenses on
every change.

Example: limit ₹10,000, spent ₹8,200 -> remaining ₹1,800.
With 9 days left in the month the daily allowance is ₹200.

Weeks run Sunday to Saturday. The weekly average is taken over the four
full weeks before the current one, so a new week compares against a month
of history rather than against itself.
"""

import calendar
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

from kakeibo.models.records import Budget, Expense
from kakeibo.models.summaries import BudgetSummary, WeeklySummary


TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def month_key(value: Union[date, datetime]) -> str:
    """Month key (YYYY-MM) of a date."""
    return f"{value.year:04d}-{value.month:02d}"


def monthly_total(expenses: Iterable[Expense], year_month: str) -> Decimal:
    """Sum of expense amounts dated within the month."""
    return sum(
        (e.amount for e in expenses if month_key(e.expense_datetime) == year_month),
        ZERO,
    )


def day_total(expenses: Iterable[Expense], day: Union[date, datetime]) -> Decimal:
    """Sum of expense amounts dated on one calendar day."""
    if isinstance(day, datetime):
        day = day.date()
    return sum(
        (e.amount for e in expenses if e.expense_datetime.date() == day),
        ZERO,
    )


def remaining(
    budget: Optional[Union[Budget, Decimal]],
    total: Decimal,
) -> Optional[Decimal]:
    """
    Signed remaining balance.

    Returns:
        limit - total (negative when over budget), or None without a budget
    """
    if budget is None:
        return None
    limit = budget.limit if isinstance(budget, Budget) else Decimal(budget)
    return limit - total


def days_left_in_month(today: Optional[Union[date, datetime]] = None) -> int:
    """Days after today in the current month (0 on the last day)."""
    today = today or date.today()
    last_day = calendar.monthrange(today.year, today.month)[1]
    return max(0, last_day - today.day)


def daily_allowance(remaining_amount: Optional[Decimal], days_left: int) -> Decimal:
    """
    What can be spent per day for the rest of the month.

    Floored at zero: an overspent month allows nothing, not a negative amount.
    """
    if remaining_amount is None or days_left <= 0 or remaining_amount <= 0:
        return ZERO
    return _quantize(remaining_amount / Decimal(days_left))


def percentage_spent(budget: Optional[Union[Budget, Decimal]], total: Decimal) -> float:
    """Share of the limit spent, in percent (0 without a positive limit)."""
    if budget is None:
        return 0.0
    limit = budget.limit if isinstance(budget, Budget) else Decimal(budget)
    if limit <= 0:
        return 0.0
    return float(total / limit * 100)


def summarize_month(
    expenses: Iterable[Expense],
    budget: Optional[Budget],
    today: Optional[Union[date, datetime]] = None,
) -> BudgetSummary:
    """Everything a budget display needs for the month containing today."""
    today = today or date.today()
    if isinstance(today, datetime):
        today = today.date()
    expenses = list(expenses)

    key = month_key(today)
    spent = monthly_total(expenses, key)
    balance = remaining(budget, spent)
    days_left = days_left_in_month(today)

    return BudgetSummary(
        month=key,
        limit=budget.limit if budget else None,
        spent=spent,
        remaining=balance,
        percentage_spent=percentage_spent(budget, spent),
        days_left=days_left,
        daily_allowance=daily_allowance(balance, days_left),
        today_spent=day_total(expenses, today),
    )


def week_start(value: Union[date, datetime]) -> date:
    """The Sunday on or before a day."""
    if isinstance(value, datetime):
        value = value.date()
    return value - timedelta(days=(value.weekday() + 1) % 7)


def summarize_week(
    expenses: Iterable[Expense],
    today: Optional[Union[date, datetime]] = None,
    daily_budget: Optional[Union[Decimal, str, int]] = None,
) -> WeeklySummary:
    """
    This week's total against the previous four weeks.

    Args:
        expenses: All known expenses; filtered by date here
        today: Day whose week is summarized
        daily_budget: When given, each day of the week so far is counted
            as on budget (spent at most this much) or over budget
    """
    today = today or date.today()
    if isinstance(today, datetime):
        today = today.date()
    expenses = list(expenses)

    start = week_start(today)
    end = start + timedelta(days=7)
    history_start = start - timedelta(days=28)

    this_week = [e for e in expenses if start <= e.expense_datetime.date() < end]
    history = [e for e in expenses if history_start <= e.expense_datetime.date() < start]

    total = sum((e.amount for e in this_week), ZERO)
    average = _quantize(sum((e.amount for e in history), ZERO) / Decimal(4))
    change = float((total - average) / average * 100) if average > 0 else 0.0
    biggest = max(this_week, key=lambda e: e.amount, default=None)

    limit = None
    on_budget = over_budget = None
    if daily_budget is not None:
        limit = Decimal(str(daily_budget))
        on_budget = over_budget = 0
        for offset in range((today - start).days + 1):
            if day_total(this_week, start + timedelta(days=offset)) <= limit:
                on_budget += 1
            else:
                over_budget += 1

    return WeeklySummary(
        week_start=start,
        as_of=today,
        total=total,
        expense_count=len(this_week),
        weekly_average=average,
        change_from_average=change,
        biggest_expense_id=biggest.id if biggest else None,
        biggest_expense_description=biggest.description if biggest else None,
        biggest_expense_amount=biggest.amount if biggest else None,
        daily_budget=limit,
        days_on_budget=on_budget,
        days_over_budget=over_budget,
    )
