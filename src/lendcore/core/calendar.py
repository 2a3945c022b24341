"""Calendar and day-count utilities used by every engine component."""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Union

from dateutil.relativedelta import relativedelta


class RepaymentCycle(str, Enum):
    """Installment frequency of a loan."""

    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUALLY = "semi_annually"
    ANNUALLY = "annually"


class DayCountConvention(str, Enum):
    """Day-count conventions for accrual between two dates."""

    ACT_365 = "act_365"
    ACT_360 = "act_360"
    THIRTY_360 = "30_360"


PERIODS_PER_YEAR = {
    RepaymentCycle.WEEKLY: 52,
    RepaymentCycle.BI_WEEKLY: 26,
    RepaymentCycle.MONTHLY: 12,
    RepaymentCycle.QUARTERLY: 4,
    RepaymentCycle.SEMI_ANNUALLY: 2,
    RepaymentCycle.ANNUALLY: 1,
}

# Month-based cycles step with relativedelta, the others with fixed day counts
MONTHS_PER_PERIOD = {
    RepaymentCycle.MONTHLY: 1,
    RepaymentCycle.QUARTERLY: 3,
    RepaymentCycle.SEMI_ANNUALLY: 6,
    RepaymentCycle.ANNUALLY: 12,
}

DAYS_PER_PERIOD = {
    RepaymentCycle.WEEKLY: 7,
    RepaymentCycle.BI_WEEKLY: 14,
}


def days_between(start: date, end: date) -> int:
    """Signed number of whole days from ``start`` to ``end``."""
    return (end - start).days


def days_overdue(next_due_date: date, evaluation_date: date) -> int:
    """Whole days past the due date, never negative."""
    return max(0, days_between(next_due_date, evaluation_date))


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping to the last day of shorter months."""
    return start + relativedelta(months=months)


def add_periods(start: date, cycle: RepaymentCycle, periods: int) -> date:
    """Date ``periods`` installments after ``start``.

    Always computed from ``start`` so that a 31st-of-month start date does not
    drift to the 28th after February.
    """
    if cycle in MONTHS_PER_PERIOD:
        return add_months(start, MONTHS_PER_PERIOD[cycle] * periods)
    return start + timedelta(days=DAYS_PER_PERIOD[cycle] * periods)


def periods_per_year(cycle: RepaymentCycle) -> int:
    return PERIODS_PER_YEAR[RepaymentCycle(cycle)]


def year_fraction(start: date, end: date,
                  convention: DayCountConvention = DayCountConvention.ACT_365) -> Decimal:
    """Fraction of a year between two dates under ``convention``."""
    if convention == DayCountConvention.ACT_365:
        return Decimal(days_between(start, end)) / Decimal(365)
    if convention == DayCountConvention.ACT_360:
        return Decimal(days_between(start, end)) / Decimal(360)

    # 30/360 US (bond basis)
    d1 = min(start.day, 30)
    d2 = end.day
    if d2 == 31 and d1 == 30:
        d2 = 30
    days = 360 * (end.year - start.year) + 30 * (end.month - start.month) + (d2 - d1)
    return Decimal(days) / Decimal(360)


def to_naive_utc(value: datetime) -> datetime:
    """Timestamps are kept naive; aware ones are converted to UTC first."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def end_of_day(value: Union[date, datetime]) -> datetime:
    """Normalise a point-in-time query bound to a naive ``datetime``.

    A plain ``date`` covers the whole day.
    """
    if isinstance(value, datetime):
        return to_naive_utc(value)
    return datetime.combine(value, time.max)


def to_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return to_naive_utc(value).date()
    return value
