"""Interest utilities: payoff quotes, period accrual and rate disclosures."""

from datetime import date
from decimal import Decimal
from typing import Any
import math

from ..core.calendar import DayCountConvention, RepaymentCycle, periods_per_year, year_fraction
from ..core.exceptions import InvalidAmountError, InvalidTermError
from ..core.money import ZERO, percent_to_rate, round_money, to_decimal
from .amortization import calculate_installment


def early_payoff_amount(outstanding_balance: Any, remaining_installments: int, annual_rate_percent: Any,
                        cycle: RepaymentCycle = RepaymentCycle.MONTHLY,
                        penalty_percent: Any = 0) -> Decimal:
    """Amount needed to settle a loan before maturity.

    Remaining balance, plus the reducing-balance interest the remaining
    installments would have carried, plus an early-settlement penalty on the
    balance.
    """
    balance = to_decimal(outstanding_balance)
    if balance <= 0 or remaining_installments <= 0:
        return round_money(max(balance, ZERO))

    rate = percent_to_rate(annual_rate_percent) / periods_per_year(cycle)
    installment = calculate_installment(balance, annual_rate_percent, remaining_installments, cycle)

    remaining_interest = ZERO
    running = balance
    for _ in range(remaining_installments):
        interest = running * rate
        remaining_interest += interest
        running = max(running - (installment - interest), ZERO)

    penalty = balance * percent_to_rate(penalty_percent)
    return round_money(balance + remaining_interest + penalty)


def interest_for_period(balance: Any, annual_rate_percent: Any, start: date, end: date,
                        convention: DayCountConvention = DayCountConvention.ACT_365) -> Decimal:
    """Simple interest accrued on ``balance`` between two dates."""
    balance = to_decimal(balance)
    if balance <= 0 or end <= start:
        return ZERO
    return round_money(balance * percent_to_rate(annual_rate_percent) * year_fraction(start, end, convention))


def effective_annual_rate(nominal_rate_percent: Any, compounding_periods_per_year: int = 12) -> Decimal:
    """EAR = (1 + r/n)^n - 1, returned in percent."""
    if compounding_periods_per_year <= 0:
        raise InvalidTermError("Compounding periods per year must be positive")
    nominal = percent_to_rate(nominal_rate_percent)
    if nominal < 0:
        raise InvalidAmountError("Nominal rate cannot be negative")

    ear = (1 + nominal / compounding_periods_per_year) ** compounding_periods_per_year - 1
    return (ear * 100).quantize(Decimal("0.0001"))


def annual_percentage_rate(installment: Any, principal: Any, installments: int,
                           periods_per_year_: int = 12, tolerance: float = 1e-10,
                           max_iterations: int = 100) -> float:
    """Nominal annual rate (percent) equating the installment stream to the principal.

    Solved with Newton-Raphson on the periodic rate.
    """
    payment = float(installment)
    pv = float(principal)
    n = installments
    if payment <= 0 or pv <= 0 or n <= 0:
        raise InvalidAmountError("Installment, principal and count must be positive")
    if payment * n <= pv:
        # Installments do not even return the principal: no positive rate exists
        return 0.0

    rate = 0.01
    for _ in range(max_iterations):
        growth = (1 + rate) ** n
        f = payment * (1 - 1 / growth) / rate - pv
        df = payment * (n / ((1 + rate) ** (n + 1) * rate) - (1 - 1 / growth) / rate ** 2)
        step = f / df
        rate -= step
        if rate <= 0:
            rate = tolerance
        if math.fabs(step) < tolerance:
            break

    return rate * periods_per_year_ * 100
