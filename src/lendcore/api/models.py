"""Pydantic models for the loan engine API.

Amounts are ``Decimal`` and travel as decimal strings in JSON.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

from ..accounting.ifrs9 import ECLResult
from ..accounting.provisions import ProvisionResult
from ..core.calendar import RepaymentCycle
from ..core.loan import InterestMethod, Loan, LoanSnapshot, LoanStatus
from ..repayment.allocation import Allocation
from ..repayment.posting import PAYMENT_METHODS
from ..repayment.transactions import LoanStatusChange, RepaymentTransaction
from ..risk.classification import RiskClassification
from ..schedule.amortization import ScheduleEntry


# Request models
class ScheduleRequest(BaseModel):
    """Request model for schedule generation."""

    principal: Decimal
    annual_interest_rate: Decimal
    term_months: int
    repayment_cycle: RepaymentCycle = RepaymentCycle.MONTHLY
    interest_method: InterestMethod = InterestMethod.REDUCING
    start_date: date


class AllocationRequest(BaseModel):
    """Request model for a waterfall allocation."""

    amount_received: Decimal
    outstanding_penalty: Decimal = Decimal("0")
    outstanding_fees: Decimal = Decimal("0")
    outstanding_interest: Decimal = Decimal("0")
    outstanding_principal: Decimal = Decimal("0")


class ClassifyRequest(BaseModel):
    next_due_date: Optional[date] = None
    evaluation_date: date
    outstanding_balance: Decimal


class ECLRequest(BaseModel):
    stage: int
    exposure_at_default: Decimal
    probability_of_default: Decimal
    loss_given_default: Decimal


class ProvisionRequest(BaseModel):
    regulatory_bucket: str
    outstanding_exposure: Decimal


class DisbursementRequest(BaseModel):
    """Request model for disbursing a loan."""

    organisation_id: str
    principal: Decimal
    annual_interest_rate: Decimal
    term_months: int
    disbursement_date: date
    repayment_cycle: RepaymentCycle = RepaymentCycle.MONTHLY
    interest_method: InterestMethod = InterestMethod.REDUCING
    loan_id: Optional[str] = None
    customer_id: Optional[str] = None


class RepaymentRequest(BaseModel):
    """Request model for posting a repayment."""

    amount: Decimal
    payment_date: date
    method: str = "cash"
    reference: Optional[str] = None
    organisation_id: Optional[str] = None
    as_of: Optional[date] = None

    @field_validator("method")
    @classmethod
    def validate_method(cls, v):
        if v.lower() not in PAYMENT_METHODS:
            raise ValueError(f"Invalid payment method: {v}. Valid options: {list(PAYMENT_METHODS)}")
        return v.lower()


class ReversalRequest(BaseModel):
    reason: Optional[str] = None
    reversal_date: Optional[date] = None


class EvaluationRequest(BaseModel):
    evaluation_timestamp: Optional[datetime] = None


class StatusChangeRequest(BaseModel):
    """Request model for a default or write-off."""

    status: LoanStatus
    effective_date: date
    reason: Optional[str] = None


# Response models
class ScheduleResponse(BaseModel):
    """Generated schedule with its totals."""

    entries: List[ScheduleEntry]
    totals: Dict[str, Decimal]


class ClassificationResponse(BaseModel):
    classified: bool
    classification: Optional[RiskClassification] = None
    aging_bucket: Optional[str] = None


class ECLResponse(BaseModel):
    stage: int
    ecl_value: Decimal


class ProvisionResponse(BaseModel):
    regulatory_bucket: str
    provision_rate: Decimal
    provision_amount: Decimal


class LoanResponse(BaseModel):
    """Loan record and its original schedule."""

    loan: Loan
    schedule: List[ScheduleEntry]


class LoanDetailResponse(BaseModel):
    loan: Loan
    snapshot: LoanSnapshot
    transactions: List[RepaymentTransaction]


class PostingResponse(BaseModel):
    """Committed repayment or reversal."""

    transaction: RepaymentTransaction
    allocation: Allocation
    loan: Loan
    warnings: List[str] = Field(default_factory=list)


class StatusChangeResponse(BaseModel):
    change: LoanStatusChange
    loan: Loan


class EvaluationResponse(BaseModel):
    loan_id: str
    evaluation_timestamp: datetime
    classification: Optional[RiskClassification] = None
    ecl: Optional[ECLResult] = None
    provision: Optional[ProvisionResult] = None
    summary: Dict[str, Any]


class PointInTimeResponse(BaseModel):
    """Stored and recomputed ECL for a past date."""

    loan_id: str
    as_of: datetime
    stored: Optional[ECLResult] = None
    recomputed: Optional[ECLResult] = None
    consistent: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str  # "healthy" or "unhealthy"
    timestamp: datetime
    checks: Dict[str, Any]
