"""Schedule billing: turning due installments into outstanding interest.

Interest is billed as contracted: each installment bills the interest of the
original schedule when it falls due, whatever principal was prepaid before it.
A prepayment shortens the loan (it covers later installments of the schedule)
rather than lowering the interest of the installments left. Nothing more is
billed once principal is fully repaid or the loan is written off.

Shared by live repayment posting and point-in-time reconstruction so that both
arrive at the same loan state for the same history.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from ..core.loan import Loan, LoanStatus
from ..core.money import ZERO
from .amortization import ScheduleEntry


def installments_due(schedule: List[ScheduleEntry], as_of: date) -> int:
    """Number of installments with a due date on or before ``as_of``."""
    return sum(1 for entry in schedule if entry.due_date <= as_of)


def next_unpaid_due_date(schedule: List[ScheduleEntry], paid_toward_schedule: Decimal) -> Optional[date]:
    """Due date of the first installment not fully covered by cumulative payments."""
    cumulative = ZERO
    for entry in schedule:
        cumulative += entry.scheduled_total
        if cumulative > paid_toward_schedule:
            return entry.due_date
    return None


def derive_status(loan: Loan, on_date: date) -> LoanStatus:
    """Status implied by the buckets and due date.

    Written-off loans stay written off. A defaulted loan stays defaulted until
    it is repaid in full.
    """
    if loan.status == LoanStatus.WRITTEN_OFF:
        return loan.status
    if loan.get_total_outstanding() == 0:
        return LoanStatus.CLOSED
    if loan.status == LoanStatus.DEFAULTED:
        return loan.status
    if loan.next_due_date is not None and loan.next_due_date < on_date:
        return LoanStatus.OVERDUE
    return LoanStatus.ACTIVE


def bill_through(loan: Loan, schedule: List[ScheduleEntry], as_of: date) -> Loan:
    """Return a copy of ``loan`` with interest billed for installments due by ``as_of``.

    Billing stops once principal is fully repaid, so interest of later
    installments is never charged on an early payoff, and once the loan is
    written off.
    """
    if loan.outstanding_principal == 0 or loan.status == LoanStatus.WRITTEN_OFF:
        return loan

    due = installments_due(schedule, as_of)
    if due <= loan.billed_installments:
        return loan

    newly_billed = sum(
        (entry.scheduled_interest for entry in schedule[loan.billed_installments:due]), ZERO
    )
    return loan.evolve(
        outstanding_interest=loan.outstanding_interest + newly_billed,
        billed_installments=due,
    )


def refresh_due_date(loan: Loan, schedule: List[ScheduleEntry], on_date: date) -> Loan:
    """Recompute ``next_due_date`` and ``status`` after the buckets changed."""
    if loan.get_total_outstanding() == 0:
        next_due = None
    else:
        next_due = next_unpaid_due_date(schedule, loan.paid_toward_schedule)

    refreshed = loan.evolve(next_due_date=next_due)
    return refreshed.evolve(status=derive_status(refreshed, on_date))
