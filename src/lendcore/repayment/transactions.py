"""Immutable repayment, charge and status-change records."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.loan import LoanStatus
from .allocation import Allocation


class TransactionKind(str, Enum):
    """Repayment record kinds. Reversals offset, they never edit."""

    REPAYMENT = "repayment"
    REVERSAL = "reversal"


class ChargeKind(str, Enum):
    PENALTY = "penalty"
    FEE = "fee"


class RepaymentTransaction(BaseModel):
    """A posted repayment and its allocation breakdown."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    loan_id: str
    organisation_id: str
    kind: TransactionKind = TransactionKind.REPAYMENT
    amount: Decimal
    payment_date: date
    method: str = "cash"
    reference: Optional[str] = None
    allocation: Allocation
    reverses: Optional[str] = Field(None, description="Transaction offset by this reversal")
    reason: Optional[str] = None
    sequence: int = Field(default=0, ge=0, description="Posting order within the book")
    recorded_at: Optional[datetime] = None
    schema_version: int = 1


class LoanCharge(BaseModel):
    """A penalty or fee added to a loan's outstanding buckets."""

    model_config = ConfigDict(frozen=True)

    charge_id: str
    loan_id: str
    organisation_id: str
    kind: ChargeKind
    amount: Decimal = Field(gt=0)
    charge_date: date
    reference_due_date: Optional[date] = Field(None, description="Installment the charge relates to")
    sequence: int = Field(default=0, ge=0)
    schema_version: int = 1


class LoanStatusChange(BaseModel):
    """A default or write-off decision, replayed like any other record."""

    model_config = ConfigDict(frozen=True)

    change_id: str
    loan_id: str
    organisation_id: str
    status: LoanStatus
    effective_date: date
    reason: Optional[str] = None
    outstanding_at_change: Decimal = Field(ge=0, description="Total outstanding once billed to the effective date")
    sequence: int = Field(default=0, ge=0)
    recorded_at: Optional[datetime] = None
    schema_version: int = 1

    @field_validator("status")
    @classmethod
    def check_terminal_status(cls, v: LoanStatus) -> LoanStatus:
        if v not in (LoanStatus.DEFAULTED, LoanStatus.WRITTEN_OFF):
            raise ValueError(f"Status changes record defaults and write-offs, got {v.value}")
        return v
