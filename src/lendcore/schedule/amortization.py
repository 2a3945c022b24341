"""Amortization schedule generation.

Reducing-balance schedules use the standard annuity installment

    A = P * r * (1 + r)^n / ((1 + r)^n - 1)

where ``r`` is the periodic rate (annual percent / periods per year / 100).
Interest of each installment is the remaining balance times ``r`` rounded to the
cent; principal is the installment less interest. The last installment takes
whatever balance remains, so scheduled principal always sums to the original
principal exactly.

Flat-rate schedules charge ``P * annual rate * term / 12`` of interest, spread
evenly over the installments.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict
import logging

from ..core.calendar import (
    MONTHS_PER_PERIOD, RepaymentCycle, add_periods, periods_per_year,
)
from ..core.exceptions import InvalidAmountError, InvalidTermError
from ..core.loan import InterestMethod
from ..core.money import ZERO, percent_to_rate, round_money, to_decimal

logger = logging.getLogger(__name__)


class ScheduleEntry(BaseModel):
    """One installment of a schedule. Immutable once generated."""

    model_config = ConfigDict(frozen=True)

    installment_number: int
    due_date: date
    scheduled_principal: Decimal
    scheduled_interest: Decimal
    scheduled_total: Decimal
    outstanding_after: Decimal


def number_of_installments(term_months: int, cycle: RepaymentCycle) -> int:
    """Installments needed to cover ``term_months`` at ``cycle`` frequency."""
    cycle = RepaymentCycle(cycle)
    if cycle in MONTHS_PER_PERIOD:
        months = MONTHS_PER_PERIOD[cycle]
        if term_months % months != 0:
            raise InvalidTermError(
                f"Term of {term_months} months is not a whole number of {cycle.value} periods"
            )
        return term_months // months

    installments = term_months * periods_per_year(cycle) // 12
    if installments <= 0:
        raise InvalidTermError(f"Term of {term_months} months yields no {cycle.value} installments")
    return installments


def calculate_installment(principal: Any, annual_rate_percent: Any, installments: int,
                          cycle: RepaymentCycle = RepaymentCycle.MONTHLY,
                          places: int = 2) -> Decimal:
    """Level installment for a reducing-balance loan, rounded to the cent."""
    principal = to_decimal(principal)
    rate = percent_to_rate(annual_rate_percent) / periods_per_year(cycle)

    if rate == 0:
        return round_money(principal / installments, places)

    growth = (1 + rate) ** installments
    return round_money(principal * rate * growth / (growth - 1), places)


class AmortizationGenerator:
    """Produces the original payment schedule of a loan."""

    def __init__(self, currency_places: int = 2):
        self.currency_places = currency_places
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def generate_schedule(self, principal: Any, annual_rate_percent: Any, term_months: int,
                          cycle: RepaymentCycle = RepaymentCycle.MONTHLY,
                          start_date: Optional[date] = None,
                          interest_method: InterestMethod = InterestMethod.REDUCING) -> List[ScheduleEntry]:
        """Generate the schedule. Pure: identical inputs give identical output."""
        principal = to_decimal(principal)
        annual_rate_percent = to_decimal(annual_rate_percent)

        if term_months is None or term_months <= 0:
            raise InvalidTermError(f"Term must be positive, got {term_months}")
        if principal <= 0:
            raise InvalidAmountError(f"Principal must be positive, got {principal}")
        if annual_rate_percent < 0:
            raise InvalidAmountError(f"Interest rate cannot be negative, got {annual_rate_percent}")
        if start_date is None:
            raise ValueError("A schedule start date is required")

        cycle = RepaymentCycle(cycle)
        installments = number_of_installments(term_months, cycle)

        if InterestMethod(interest_method) == InterestMethod.FLAT:
            schedule = self._generate_flat_schedule(
                principal, annual_rate_percent, term_months, installments, cycle, start_date
            )
        else:
            schedule = self._generate_reducing_schedule(
                principal, annual_rate_percent, installments, cycle, start_date
            )

        self.logger.debug(f"Generated {len(schedule)} installments for principal {principal} "
                          f"at {annual_rate_percent}% ({cycle.value}, {interest_method})")
        return schedule

    def _generate_reducing_schedule(self, principal: Decimal, annual_rate_percent: Decimal,
                                    installments: int, cycle: RepaymentCycle,
                                    start_date: date) -> List[ScheduleEntry]:
        places = self.currency_places
        rate = percent_to_rate(annual_rate_percent) / periods_per_year(cycle)
        installment = calculate_installment(principal, annual_rate_percent, installments, cycle, places)

        schedule = []
        balance = principal
        for number in range(1, installments + 1):
            interest = round_money(balance * rate, places)

            if number == installments:
                principal_part = balance
            else:
                # Rounding can push the level installment past what is left
                principal_part = min(max(installment - interest, ZERO), balance)

            balance -= principal_part
            schedule.append(self._entry(number, start_date, cycle, principal_part, interest, balance))

        return schedule

    def _generate_flat_schedule(self, principal: Decimal, annual_rate_percent: Decimal,
                                term_months: int, installments: int, cycle: RepaymentCycle,
                                start_date: date) -> List[ScheduleEntry]:
        places = self.currency_places
        total_interest = round_money(
            principal * percent_to_rate(annual_rate_percent) * term_months / 12, places
        )
        principal_per_installment = round_money(principal / installments, places)
        interest_per_installment = round_money(total_interest / installments, places)

        schedule = []
        balance = principal
        interest_left = total_interest
        for number in range(1, installments + 1):
            if number == installments:
                principal_part = balance
                interest = interest_left
            else:
                principal_part = min(principal_per_installment, balance)
                interest = min(interest_per_installment, interest_left)

            balance -= principal_part
            interest_left -= interest
            schedule.append(self._entry(number, start_date, cycle, principal_part, interest, balance))

        return schedule

    def _entry(self, number: int, start_date: date, cycle: RepaymentCycle,
               principal_part: Decimal, interest: Decimal, balance: Decimal) -> ScheduleEntry:
        return ScheduleEntry(
            installment_number=number,
            due_date=add_periods(start_date, cycle, number),
            scheduled_principal=principal_part,
            scheduled_interest=interest,
            scheduled_total=principal_part + interest,
            outstanding_after=balance,
        )


def generate_schedule(principal: Any, annual_rate_percent: Any, term_months: int,
                      cycle: RepaymentCycle = RepaymentCycle.MONTHLY,
                      start_date: Optional[date] = None,
                      interest_method: InterestMethod = InterestMethod.REDUCING) -> List[ScheduleEntry]:
    """Module-level shortcut using cent precision."""
    return AmortizationGenerator().generate_schedule(
        principal, annual_rate_percent, term_months, cycle, start_date, interest_method
    )


def schedule_totals(schedule: List[ScheduleEntry]) -> Dict[str, Decimal]:
    """Installment, total interest and total repayment of a schedule."""
    if not schedule:
        return {"installment": ZERO, "total_principal": ZERO,
                "total_interest": ZERO, "total_repayment": ZERO}

    total_principal = sum((e.scheduled_principal for e in schedule), ZERO)
    total_interest = sum((e.scheduled_interest for e in schedule), ZERO)
    return {
        "installment": schedule[0].scheduled_total,
        "total_principal": total_principal,
        "total_interest": total_interest,
        "total_repayment": total_principal + total_interest,
    }
