"""Tests for the recurrence scheduler."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from kakeibo.models import Frequency, RecurringTemplate
from kakeibo.scheduling import (
    add_months,
    days_until,
    initial_next_occurrence,
    is_due,
    monthly_projection,
    next_occurrence,
    normalized_monthly_amount,
)


def template(amount, frequency, is_active=True):
    return RecurringTemplate(
        description="Subscription",
        amount=Decimal(amount),
        frequency=frequency,
        start_date=datetime(2025, 1, 1),
        next_occurrence=datetime(2025, 2, 1),
        is_active=is_active,
    )


class TestNextOccurrence:
    """Tests for one frequency step."""

    @pytest.mark.parametrize(
        "frequency, expected",
        [
            (Frequency.DAILY, date(2025, 1, 16)),
            (Frequency.WEEKLY, date(2025, 1, 22)),
            (Frequency.MONTHLY, date(2025, 2, 15)),
            (Frequency.YEARLY, date(2026, 1, 15)),
        ],
    )
    def test_simple_steps(self, frequency, expected):
        """Each frequency moves by its natural unit."""
        assert next_occurrence(date(2025, 1, 15), frequency) == expected

    def test_month_end_rolls_over(self):
        """Jan 31 + 1 month lands on Mar 3 in a non-leap year."""
        assert next_occurrence(date(2025, 1, 31), Frequency.MONTHLY) == date(2025, 3, 3)

    def test_month_end_rolls_over_leap_year(self):
        """Jan 31 + 1 month lands on Mar 2 in a leap year."""
        assert next_occurrence(date(2024, 1, 31), Frequency.MONTHLY) == date(2024, 3, 2)

    def test_leap_day_plus_one_year(self):
        """Feb 29 + 1 year lands on Mar 1."""
        assert next_occurrence(date(2024, 2, 29), Frequency.YEARLY) == date(2025, 3, 1)

    def test_clamp_month_end(self):
        """Clamping keeps the step inside the target month."""
        assert next_occurrence(date(2025, 1, 31), Frequency.MONTHLY, clamp_month_end=True) == date(2025, 2, 28)
        assert next_occurrence(date(2024, 2, 29), Frequency.YEARLY, clamp_month_end=True) == date(2025, 2, 28)

    def test_december_to_january(self):
        """Monthly steps cross the year boundary."""
        assert next_occurrence(date(2024, 12, 10), Frequency.MONTHLY) == date(2025, 1, 10)

    def test_datetime_keeps_time_of_day(self):
        """Datetime anchors keep their time."""
        result = next_occurrence(datetime(2025, 1, 31, 9, 30), Frequency.MONTHLY)
        assert result == datetime(2025, 3, 3, 9, 30)

    def test_add_months_backwards(self):
        """Negative month counts step back."""
        assert add_months(date(2025, 3, 31), -1, clamp=True) == date(2025, 2, 28)
        assert add_months(date(2025, 1, 15), -120) == date(2015, 1, 15)


class TestInitialOccurrence:
    """Tests for scheduling a new template."""

    def test_past_start_anchors_to_now(self):
        """A start in the past never yields an occurrence in the past."""
        now = datetime(2025, 1, 22, 10, 0)
        result = initial_next_occurrence(date(2024, 6, 1), Frequency.MONTHLY, now=now)
        assert result == datetime(2025, 2, 22, 10, 0)

    def test_future_start_steps_from_start(self):
        """A future start is stepped from itself."""
        now = datetime(2025, 1, 22, 10, 0)
        result = initial_next_occurrence(datetime(2025, 2, 1), Frequency.WEEKLY, now=now)
        assert result == datetime(2025, 2, 8)

    def test_result_never_before_start(self):
        """The first occurrence is after the start date."""
        now = datetime(2025, 1, 22)
        start = datetime(2025, 1, 31)
        assert initial_next_occurrence(start, Frequency.MONTHLY, now=now) >= start

    def test_timezone_aware_start(self):
        """An aware start is converted to naive local time before comparing."""
        now = datetime(2025, 1, 22, 10, 0)
        start = datetime(2025, 2, 1, 9, 0).astimezone(timezone.utc)
        result = initial_next_occurrence(start, Frequency.MONTHLY, now=now)
        assert result.tzinfo is None
        assert result == datetime(2025, 3, 1, 9, 0)

    def test_timezone_aware_now(self):
        now = datetime(2025, 1, 22, 10, 0).astimezone(timezone.utc)
        result = initial_next_occurrence(date(2025, 1, 1), Frequency.WEEKLY, now=now)
        assert result == datetime(2025, 1, 29, 10, 0)


class TestDueDates:
    """Tests for is_due and days_until."""

    def test_is_due_ignores_time_of_day(self):
        """Later the same day is still due today."""
        assert is_due(datetime(2025, 1, 22, 23, 59), today=datetime(2025, 1, 22, 0, 1))

    def test_is_due_past_and_future(self):
        assert is_due(date(2025, 1, 1), today=date(2025, 1, 22))
        assert not is_due(date(2025, 1, 23), today=date(2025, 1, 22))

    def test_days_until_signed(self):
        """Overdue dates are negative."""
        assert days_until(date(2025, 1, 25), today=date(2025, 1, 22)) == 3
        assert days_until(date(2025, 1, 20), today=datetime(2025, 1, 22, 18, 0)) == -2
        assert days_until(date(2025, 1, 22), today=date(2025, 1, 22)) == 0


class TestProjection:
    """Tests for the monthly projection."""

    def test_normalized_amounts(self):
        """daily x30, weekly x4, monthly x1, yearly /12."""
        assert normalized_monthly_amount(Decimal("10"), Frequency.DAILY) == Decimal("300")
        assert normalized_monthly_amount(Decimal("100"), Frequency.WEEKLY) == Decimal("400")
        assert normalized_monthly_amount(Decimal("649"), Frequency.MONTHLY) == Decimal("649")
        assert normalized_monthly_amount(Decimal("1200"), Frequency.YEARLY) == Decimal("100")

    def test_projection_sums_active_only(self):
        """Paused templates do not count."""
        templates = [
            template("10", Frequency.DAILY),
            template("100", Frequency.WEEKLY),
            template("1000", Frequency.YEARLY),
            template("5000", Frequency.MONTHLY, is_active=False),
        ]
        assert monthly_projection(templates) == Decimal("783.33")

    def test_projection_empty(self):
        assert monthly_projection([]) == Decimal("0.00")
