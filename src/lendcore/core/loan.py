"""Loan definitions for the loan financial engine."""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .calendar import RepaymentCycle
from .money import ZERO


class LoanStatus(str, Enum):
    """Loan lifecycle states."""

    PENDING = "pending"
    ACTIVE = "active"
    OVERDUE = "overdue"
    CLOSED = "closed"
    DEFAULTED = "defaulted"
    WRITTEN_OFF = "written_off"


class InterestMethod(str, Enum):
    """Interest methods for schedule generation."""

    REDUCING = "reducing"  # Interest on the declining balance, level installment
    FLAT = "flat"          # Interest fixed on the original principal


# Statuses that accept charges and penalty assessment
OPEN_STATUSES = (LoanStatus.ACTIVE, LoanStatus.OVERDUE)

# Statuses that carry credit risk; defaulted loans stay on balance sheet in Stage 3
CLASSIFIED_STATUSES = OPEN_STATUSES + (LoanStatus.DEFAULTED,)


class Loan(BaseModel):
    """A disbursed loan and its outstanding buckets.

    Terms are fixed at disbursement. Outstanding fields, ``next_due_date``,
    ``status`` and the replay counters change only through posted records:
    repayments, reversals, charges and status changes.
    """

    # Identification
    loan_id: str
    organisation_id: str
    customer_id: Optional[str] = None

    # Terms
    principal: Decimal = Field(gt=0, description="Original principal")
    annual_interest_rate: Decimal = Field(ge=0, description="Annual rate in percent")
    term_months: int = Field(gt=0)
    repayment_cycle: RepaymentCycle = RepaymentCycle.MONTHLY
    interest_method: InterestMethod = InterestMethod.REDUCING
    disbursement_date: date

    # Outstanding buckets
    outstanding_principal: Decimal = Field(ge=0)
    outstanding_interest: Decimal = Field(default=ZERO, ge=0)
    outstanding_fees: Decimal = Field(default=ZERO, ge=0)
    outstanding_penalty: Decimal = Field(default=ZERO, ge=0)

    next_due_date: Optional[date] = None
    status: LoanStatus = LoanStatus.PENDING

    # Installments whose interest has been billed, and cumulative
    # interest + principal paid against the schedule
    billed_installments: int = Field(default=0, ge=0)
    paid_toward_schedule: Decimal = ZERO

    # Optimistic concurrency version, bumped on every committed change
    version: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_principal_bounds(self) -> "Loan":
        """Outstanding principal never exceeds the original principal."""
        if self.outstanding_principal > self.principal:
            raise ValueError("Outstanding principal cannot exceed original principal")
        return self

    def evolve(self, **changes) -> "Loan":
        """Validated copy with ``changes`` applied; the original is left untouched."""
        return self.__class__.model_validate({**self.model_dump(), **changes})

    def get_exposure(self) -> Decimal:
        """On-balance sheet exposure: principal plus billed interest."""
        return self.outstanding_principal + self.outstanding_interest

    def get_total_outstanding(self) -> Decimal:
        return (self.outstanding_principal + self.outstanding_interest
                + self.outstanding_fees + self.outstanding_penalty)

    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_classifiable(self) -> bool:
        return self.status in CLASSIFIED_STATUSES


class LoanSnapshot(BaseModel):
    """Consistent read of a loan's state at a point in time."""

    model_config = ConfigDict(frozen=True)

    loan_id: str
    organisation_id: str
    as_of: date
    outstanding_principal: Decimal
    outstanding_interest: Decimal
    outstanding_fees: Decimal
    outstanding_penalty: Decimal
    next_due_date: Optional[date] = None
    status: LoanStatus
    billed_installments: int = 0

    @classmethod
    def from_loan(cls, loan: Loan, as_of: date) -> "LoanSnapshot":
        return cls(
            loan_id=loan.loan_id,
            organisation_id=loan.organisation_id,
            as_of=as_of,
            outstanding_principal=loan.outstanding_principal,
            outstanding_interest=loan.outstanding_interest,
            outstanding_fees=loan.outstanding_fees,
            outstanding_penalty=loan.outstanding_penalty,
            next_due_date=loan.next_due_date,
            status=loan.status,
            billed_installments=loan.billed_installments,
        )

    @property
    def exposure(self) -> Decimal:
        return self.outstanding_principal + self.outstanding_interest

    @property
    def total_outstanding(self) -> Decimal:
        return (self.outstanding_principal + self.outstanding_interest
                + self.outstanding_fees + self.outstanding_penalty)

    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_classifiable(self) -> bool:
        return self.status in CLASSIFIED_STATUSES
