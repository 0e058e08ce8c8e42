"""
Recurrence Scheduler

Pure date arithmetic shared by recurring expense templates and recurring
bills. Nothing here touches storage.

DESIGN DECISION: Monthly and yearly steps keep the day of month and let it
overflow into the next month when the target month is shorter:
- Jan 31 + 1 month -> Mar 3 (non-leap year), Mar 2 (leap year)
- Feb 29 + 1 year  -> Mar 1

Users' existing schedules were computed this way, so it stays the default.
Passing clamp_month_end=True clamps to the last day of the target month
instead (Jan 31 -> Feb 28).

Anchors may be `date` or `datetime`; the result has the anchor's type and,
for datetimes, its time of day.
"""

import calendar
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, TypeVar, Union

from kakeibo.models.records import Frequency, RecurringTemplate, naive_local


DateLike = TypeVar("DateLike", date, datetime)

TWO_PLACES = Decimal("0.01")

# Occurrences per month; yearly amounts are divided by 12 instead
OCCURRENCES_PER_MONTH: dict[Frequency, Decimal] = {
    Frequency.DAILY: Decimal("30"),
    Frequency.WEEKLY: Decimal("4"),
    Frequency.MONTHLY: Decimal("1"),
}


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _as_datetime(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return naive_local(value)
    return datetime.combine(value, datetime.min.time())


# =============================================================================
# STEPPING
# =============================================================================

def add_months(anchor: DateLike, months: int, clamp: bool = False) -> DateLike:
    """
    Move an anchor by whole calendar months.

    Without clamping, a day that does not exist in the target month rolls
    over into the following month.
    """
    index = anchor.month - 1 + months
    year = anchor.year + index // 12
    month = index % 12 + 1

    if clamp:
        last_day = calendar.monthrange(year, month)[1]
        return anchor.replace(year=year, month=month, day=min(anchor.day, last_day))

    return anchor.replace(year=year, month=month, day=1) + timedelta(days=anchor.day - 1)


def next_occurrence(
    anchor: DateLike,
    frequency: Frequency,
    clamp_month_end: bool = False,
) -> DateLike:
    """
    One frequency step after the anchor.

    Args:
        anchor: Date to step from
        frequency: daily (+1 day), weekly (+7 days), monthly, yearly
        clamp_month_end: Clamp month/year steps instead of rolling over
    """
    frequency = Frequency(frequency)
    if frequency == Frequency.DAILY:
        return anchor + timedelta(days=1)
    if frequency == Frequency.WEEKLY:
        return anchor + timedelta(days=7)
    if frequency == Frequency.MONTHLY:
        return add_months(anchor, 1, clamp=clamp_month_end)
    return add_months(anchor, 12, clamp=clamp_month_end)


def initial_next_occurrence(
    start: Union[date, datetime],
    frequency: Frequency,
    now: Optional[datetime] = None,
    clamp_month_end: bool = False,
) -> datetime:
    """
    First occurrence for a new (or rescheduled) template.

    A start date in the past is replaced by now, so a new template never
    begins with an occurrence already behind it.
    """
    now = naive_local(now or datetime.now())
    start = _as_datetime(start)
    anchor = now if start < now else start
    return next_occurrence(anchor, frequency, clamp_month_end=clamp_month_end)


# =============================================================================
# DUE DATES
# =============================================================================

def is_due(next_at: Union[date, datetime], today: Optional[Union[date, datetime]] = None) -> bool:
    """True when the occurrence's calendar date is today or earlier."""
    today = _as_date(today or date.today())
    return _as_date(next_at) <= today


def days_until(target: Union[date, datetime], today: Optional[Union[date, datetime]] = None) -> int:
    """Signed calendar-day distance; negative means overdue."""
    today = _as_date(today or date.today())
    return (_as_date(target) - today).days


# =============================================================================
# PROJECTION
# =============================================================================

def normalized_monthly_amount(amount: Decimal, frequency: Frequency) -> Decimal:
    """Monthly equivalent of one occurrence (unrounded)."""
    frequency = Frequency(frequency)
    if frequency == Frequency.YEARLY:
        return Decimal(amount) / 12
    return Decimal(amount) * OCCURRENCES_PER_MONTH[frequency]


def monthly_projection(templates: Iterable[RecurringTemplate]) -> Decimal:
    """Projected monthly cost of the active templates, to 2 decimals."""
    total = sum(
        (
            normalized_monthly_amount(t.amount, t.frequency)
            for t in templates
            if t.is_active
        ),
        Decimal("0"),
    )
    return total.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
