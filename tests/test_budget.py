"""Tests for budget aggregation and the budget monitor."""

import itertools
from datetime import date, datetime
from decimal import Decimal

import pytest

from kakeibo.budget import (
    BudgetMonitor,
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
from kakeibo.models import Bill, Budget, Expense


def expense(amount, when):
    return Expense(description="Spend", amount=Decimal(amount), expense_datetime=when)


class TestAggregator:
    """Tests for the pure aggregation functions."""

    def test_month_key(self):
        assert month_key(date(2025, 1, 5)) == "2025-01"
        assert month_key(datetime(2025, 11, 30, 23, 0)) == "2025-11"

    def test_monthly_total_only_counts_month(self):
        """Expenses outside the month are ignored."""
        expenses = [
            expense("8000", datetime(2025, 1, 3)),
            expense("200", datetime(2025, 1, 31, 23, 59)),
            expense("999", datetime(2025, 2, 1)),
        ]
        assert monthly_total(expenses, "2025-01") == Decimal("8200")

    def test_monthly_total_ignores_ordering(self):
        """Any permutation of the same expenses gives the same total."""
        expenses = [
            expense("0.10", datetime(2025, 1, 9)),
            expense("1200.55", datetime(2025, 1, 2)),
            expense("0.20", datetime(2025, 1, 30)),
            expense("75", datetime(2024, 12, 31, 23, 59)),
        ]
        totals = {
            monthly_total(ordering, "2025-01")
            for ordering in itertools.permutations(expenses)
        }
        assert totals == {Decimal("1200.85")}

    def test_remaining_example(self):
        """Limit 10000, spent 8200 -> 1800 remaining."""
        budget = Budget(id="2025-01", limit=Decimal("10000"))
        assert remaining(budget, Decimal("8200")) == Decimal("1800")

    def test_remaining_is_signed(self):
        """Overspending gives a negative remaining."""
        assert remaining(Decimal("1000"), Decimal("1250")) == Decimal("-250")

    def test_remaining_without_budget(self):
        assert remaining(None, Decimal("50")) is None

    def test_daily_allowance_example(self):
        """1800 over 9 days is 200 per day."""
        assert daily_allowance(Decimal("1800"), 9) == Decimal("200.00")

    def test_daily_allowance_floors_at_zero(self):
        """No allowance when overspent or out of days."""
        assert daily_allowance(Decimal("-250"), 5) == Decimal("0.00")
        assert daily_allowance(Decimal("500"), 0) == Decimal("0.00")
        assert daily_allowance(None, 5) == Decimal("0.00")

    def test_daily_allowance_rounds(self):
        assert daily_allowance(Decimal("100"), 3) == Decimal("33.33")

    def test_days_left_in_month(self):
        """Last day minus today's day."""
        assert days_left_in_month(date(2025, 1, 22)) == 9
        assert days_left_in_month(date(2025, 1, 31)) == 0
        assert days_left_in_month(date(2024, 2, 1)) == 28

    def test_percentage_spent(self):
        assert percentage_spent(Decimal("10000"), Decimal("8200")) == pytest.approx(82.0)
        assert percentage_spent(None, Decimal("10")) == 0.0
        assert percentage_spent(Decimal("0"), Decimal("10")) == 0.0

    def test_day_total(self):
        expenses = [
            expense("100", datetime(2025, 1, 22, 8, 0)),
            expense("50", datetime(2025, 1, 22, 20, 0)),
            expense("70", datetime(2025, 1, 21, 20, 0)),
        ]
        assert day_total(expenses, date(2025, 1, 22)) == Decimal("150")

    def test_summarize_month(self):
        """The summary ties all the pieces together."""
        budget = Budget(id="2025-01", limit=Decimal("10000"))
        expenses = [
            expense("8000", datetime(2025, 1, 3)),
            expense("200", datetime(2025, 1, 22, 9, 0)),
        ]
        summary = summarize_month(expenses, budget, today=datetime(2025, 1, 22, 10, 0))
        assert summary.month == "2025-01"
        assert summary.spent == Decimal("8200")
        assert summary.remaining == Decimal("1800")
        assert summary.days_left == 9
        assert summary.daily_allowance == Decimal("200.00")
        assert summary.today_spent == Decimal("200")
        assert summary.is_near_limit


class TestWeeklySummary:
    """Tests for the week-on-week spend summary."""

    def test_week_starts_on_sunday(self):
        assert week_start(date(2025, 1, 22)) == date(2025, 1, 19)
        assert week_start(date(2025, 1, 19)) == date(2025, 1, 19)
        assert week_start(datetime(2025, 1, 25, 23, 0)) == date(2025, 1, 19)

    def test_total_against_previous_four_weeks(self):
        expenses = [
            expense("300", datetime(2025, 1, 19, 9, 0)),
            expense("1200", datetime(2025, 1, 21, 13, 0)),
            expense("150", datetime(2025, 1, 22, 8, 0)),
            expense("2000", datetime(2025, 1, 18, 23, 0)),
            expense("2000", datetime(2024, 12, 22, 12, 0)),
            expense("999", datetime(2024, 12, 21, 12, 0)),
        ]
        summary = summarize_week(expenses, date(2025, 1, 22))

        assert summary.week_start == date(2025, 1, 19)
        assert summary.total == Decimal("1650")
        assert summary.expense_count == 3
        assert summary.weekly_average == Decimal("1000.00")
        assert summary.change_from_average == pytest.approx(65.0)
        assert summary.is_above_average
        assert summary.biggest_expense_amount == Decimal("1200")
        assert summary.biggest_expense_id == expenses[1].id
        assert summary.days_on_budget is None
        assert summary.days_over_budget is None

    def test_days_on_and_over_budget(self):
        """Days with no spending count as on budget."""
        expenses = [
            expense("300", datetime(2025, 1, 19, 9, 0)),
            expense("700", datetime(2025, 1, 21, 13, 0)),
            expense("550", datetime(2025, 1, 21, 19, 0)),
            expense("150", datetime(2025, 1, 22, 8, 0)),
        ]
        summary = summarize_week(expenses, date(2025, 1, 22), daily_budget="500")

        assert summary.daily_budget == Decimal("500")
        assert summary.days_on_budget == 3
        assert summary.days_over_budget == 1

    def test_empty_week_without_history(self):
        summary = summarize_week([], date(2025, 1, 22))
        assert summary.total == Decimal("0")
        assert summary.weekly_average == Decimal("0")
        assert summary.change_from_average == 0.0
        assert summary.biggest_expense_id is None
        assert not summary.is_above_average


class TestBudgetMonitor:
    """Tests for recomputation on store changes."""

    def test_recomputes_on_expense_change(self, store, clock):
        """Adding an expense updates the summary and notifies listeners."""
        monitor = BudgetMonitor(store, clock=clock)
        seen = []
        monitor.subscribe(seen.append)
        monitor.start()

        store.put("budgets", Budget(id="2025-01", limit=Decimal("10000")))
        store.put("expenses", expense("8200", datetime(2025, 1, 10)))

        assert monitor.summary.remaining == Decimal("1800")
        assert monitor.summary.daily_allowance == Decimal("200.00")
        assert seen[-1] == monitor.summary

    def test_ignores_unrelated_collections(self, store, clock):
        """Bill changes do not trigger a recompute."""
        monitor = BudgetMonitor(store, clock=clock)
        seen = []
        monitor.subscribe(seen.append)
        monitor.start()
        count = len(seen)

        store.put("bills", Bill(name="Water", amount=Decimal("300"), due_date=date(2025, 2, 1)))
        assert len(seen) == count

    def test_stop_detaches(self, store, clock):
        monitor = BudgetMonitor(store, clock=clock)
        seen = []
        monitor.subscribe(seen.append)
        monitor.start()
        monitor.stop()
        count = len(seen)
        store.put("expenses", expense("10", datetime(2025, 1, 10)))
        assert len(seen) == count

    def test_weekly_summary_uses_store_and_clock(self, store, clock):
        monitor = BudgetMonitor(store, clock=clock)
        store.put("expenses", expense("800", datetime(2025, 1, 20, 12, 0)))

        summary = monitor.weekly_summary(daily_budget=Decimal("500"))

        assert summary.week_start == date(2025, 1, 19)
        assert summary.total == Decimal("800")
        assert summary.days_over_budget == 1
        assert summary.days_on_budget == 3
