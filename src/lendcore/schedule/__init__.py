"""Amortization schedules, billing and interest utilities."""

from .amortization import (
    AmortizationGenerator, ScheduleEntry, calculate_installment, generate_schedule, schedule_totals,
)
from .billing import bill_through, next_unpaid_due_date, refresh_due_date
from .interest import (
    annual_percentage_rate, early_payoff_amount, effective_annual_rate, interest_for_period,
)

__all__ = [
    "AmortizationGenerator",
    "ScheduleEntry",
    "calculate_installment",
    "generate_schedule",
    "schedule_totals",
    "bill_through",
    "next_unpaid_due_date",
    "refresh_due_date",
    "annual_percentage_rate",
    "early_payoff_amount",
    "effective_annual_rate",
    "interest_for_period",
]
