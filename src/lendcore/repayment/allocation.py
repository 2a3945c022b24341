"""Repayment allocation waterfall.

A payment is applied penalties -> fees -> interest -> principal. Each bucket
takes ``min(remaining, outstanding)``; whatever is left over after principal is
returned as ``unallocated_excess`` for the caller to refund or hold.
"""

from decimal import Decimal
from typing import Any
from pydantic import BaseModel, ConfigDict
import logging

from ..core.exceptions import InvalidAmountError, OverAllocationError
from ..core.loan import Loan
from ..core.money import ZERO, to_decimal

logger = logging.getLogger(__name__)

WATERFALL_ORDER = ("penalty", "fees", "interest", "principal")


class Allocation(BaseModel):
    """Split of a single payment across the outstanding buckets."""

    model_config = ConfigDict(frozen=True)

    penalty: Decimal = ZERO
    fees: Decimal = ZERO
    interest: Decimal = ZERO
    principal: Decimal = ZERO
    total: Decimal = ZERO
    unallocated_excess: Decimal = ZERO

    @property
    def applied(self) -> Decimal:
        """Amount applied to the loan, excluding any excess."""
        return self.penalty + self.fees + self.interest + self.principal

    def negated(self) -> "Allocation":
        """Offsetting allocation used by reversals."""
        return Allocation(
            penalty=-self.penalty,
            fees=-self.fees,
            interest=-self.interest,
            principal=-self.principal,
            total=-self.total,
            unallocated_excess=-self.unallocated_excess,
        )


def allocate(amount_received: Any, outstanding_penalty: Any, outstanding_fees: Any,
             outstanding_interest: Any, outstanding_principal: Any) -> Allocation:
    """Split ``amount_received`` over the buckets in fixed waterfall order.

    Pure and idempotent: no hidden state and no clock reads.
    """
    amount = to_decimal(amount_received)
    buckets = {
        "penalty": to_decimal(outstanding_penalty),
        "fees": to_decimal(outstanding_fees),
        "interest": to_decimal(outstanding_interest),
        "principal": to_decimal(outstanding_principal),
    }

    if amount < 0:
        raise InvalidAmountError(f"Amount received cannot be negative, got {amount}")
    for name, outstanding in buckets.items():
        if outstanding < 0:
            raise InvalidAmountError(f"Outstanding {name} cannot be negative, got {outstanding}")

    remaining = amount
    applied = {}
    for name in WATERFALL_ORDER:
        applied[name] = min(remaining, buckets[name])
        remaining -= applied[name]

    allocation = Allocation(total=amount, unallocated_excess=remaining, **applied)
    logger.debug(f"Allocated {amount}: penalty={allocation.penalty} fees={allocation.fees} "
                 f"interest={allocation.interest} principal={allocation.principal} "
                 f"excess={allocation.unallocated_excess}")
    return allocation


def allocate_to_loan(amount_received: Any, loan: Loan) -> Allocation:
    """Allocate against the loan's current buckets."""
    return allocate(
        amount_received,
        loan.outstanding_penalty,
        loan.outstanding_fees,
        loan.outstanding_interest,
        loan.outstanding_principal,
    )


def apply_allocation(loan: Loan, allocation: Allocation) -> Loan:
    """Return a copy of ``loan`` with the allocation decremented from its buckets.

    Raises ``OverAllocationError`` instead of producing a negative bucket or an
    outstanding principal above the original principal. ``loan`` itself is
    never modified, so a failure leaves the caller's state unchanged.
    """
    updated = {
        "outstanding_penalty": loan.outstanding_penalty - allocation.penalty,
        "outstanding_fees": loan.outstanding_fees - allocation.fees,
        "outstanding_interest": loan.outstanding_interest - allocation.interest,
        "outstanding_principal": loan.outstanding_principal - allocation.principal,
    }

    for field, value in updated.items():
        if value < 0:
            raise OverAllocationError(
                f"Allocation would leave {field} of loan {loan.loan_id} at {value}"
            )
    if updated["outstanding_principal"] > loan.principal:
        raise OverAllocationError(
            f"Allocation would raise outstanding principal of loan {loan.loan_id} above {loan.principal}"
        )

    updated["paid_toward_schedule"] = (
        loan.paid_toward_schedule + allocation.interest + allocation.principal
    )
    return loan.evolve(**updated)
