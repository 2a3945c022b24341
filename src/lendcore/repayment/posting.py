"""Repayment posting, reversal and the state transitions they share with replay.

``apply_transaction``, ``apply_charge`` and ``apply_status_change`` are the
only ways a loan's outstanding buckets and status change. Live posting and point-in-time reconstruction both
go through them, so replaying a loan's history reproduces its live state.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, List, Optional
from pydantic import BaseModel, ConfigDict, Field
import logging
import uuid

from ..core.config import EngineConfig
from ..core.exceptions import RepaymentRejectedError
from ..core.loan import Loan, LoanStatus
from ..core.money import to_decimal
from ..schedule.amortization import ScheduleEntry
from ..schedule.billing import bill_through, derive_status, refresh_due_date
from .allocation import allocate_to_loan, apply_allocation
from .transactions import ChargeKind, LoanCharge, LoanStatusChange, RepaymentTransaction, TransactionKind

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "bank_transfer", "mobile_money", "standing_order")

# Statuses that reject new repayments
REJECTING_STATUSES = (LoanStatus.PENDING, LoanStatus.CLOSED, LoanStatus.WRITTEN_OFF)


class RepaymentValidation(BaseModel):
    """Outcome of pre-posting checks."""

    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class RepaymentPosted(BaseModel):
    """Event emitted after a repayment is committed."""

    model_config = ConfigDict(frozen=True)

    loan_id: str
    organisation_id: str
    transaction_id: str
    amount: Decimal
    payment_date: date
    unallocated_excess: Decimal
    loan_status: LoanStatus
    loan_version: int


class RepaymentReversed(BaseModel):
    """Event emitted after a reversal is committed."""

    model_config = ConfigDict(frozen=True)

    loan_id: str
    organisation_id: str
    transaction_id: str
    reversed_transaction_id: str
    reason: Optional[str] = None
    loan_status: LoanStatus
    loan_version: int


class PostingResult(BaseModel):
    """Committed transaction together with the loan state it produced."""

    model_config = ConfigDict(frozen=True)

    transaction: RepaymentTransaction
    loan: Loan
    warnings: List[str] = Field(default_factory=list)


def apply_transaction(loan: Loan, schedule: List[ScheduleEntry],
                      transaction: RepaymentTransaction) -> Loan:
    """Bill through the payment date, apply the recorded allocation and refresh the due date."""
    billed = bill_through(loan, schedule, transaction.payment_date)
    applied = apply_allocation(billed, transaction.allocation)
    return refresh_due_date(applied, schedule, transaction.payment_date)


def apply_charge(loan: Loan, charge: LoanCharge) -> Loan:
    """Add a penalty or fee charge to the matching bucket."""
    if charge.kind == ChargeKind.PENALTY:
        charged = loan.evolve(outstanding_penalty=loan.outstanding_penalty + charge.amount)
    else:
        charged = loan.evolve(outstanding_fees=loan.outstanding_fees + charge.amount)
    return charged.evolve(status=derive_status(charged, charge.charge_date))


def apply_status_change(loan: Loan, schedule: List[ScheduleEntry], change: LoanStatusChange) -> Loan:
    """Bill through the effective date and move the loan to the recorded status."""
    billed = bill_through(loan, schedule, change.effective_date)
    return refresh_due_date(billed.evolve(status=change.status), schedule, change.effective_date)


class RepaymentService:
    """Posts and reverses repayments against loans held in a ``LoanBook``.

    Each posting runs under the loan's lock: the loan is read, billed,
    allocated and committed together with its transaction, or nothing is
    stored at all.
    """

    def __init__(self, book, config: Optional[EngineConfig] = None,
                 listeners: Optional[List[Callable[[BaseModel], None]]] = None):
        self.book = book
        self.config = config or EngineConfig()
        self.policy = self.config.get_repayment_policy()
        self.listeners = list(listeners or [])
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def add_listener(self, listener: Callable[[BaseModel], None]) -> None:
        self.listeners.append(listener)

    def validate_repayment(self, loan: Loan, amount: Any, payment_date: date,
                           method: str = "cash", organisation_id: Optional[str] = None,
                           as_of: Optional[date] = None) -> RepaymentValidation:
        """Check a repayment request against a loan without changing anything."""
        errors = []
        warnings = []
        amount = to_decimal(amount)
        today = as_of or date.today()

        if not self.policy["allow_future_dates"] and payment_date > today:
            errors.append("Payment date cannot be in the future")
        if payment_date < loan.disbursement_date:
            errors.append("Payment date cannot precede disbursement")
        else:
            last_activity = self.book.last_activity_date(loan.loan_id)
            if payment_date < last_activity:
                errors.append(f"Payment date cannot precede the last posted activity on {last_activity}")

        if organisation_id is not None and organisation_id != loan.organisation_id:
            errors.append(f"Loan {loan.loan_id} does not belong to organisation {organisation_id}")
        if loan.status in REJECTING_STATUSES:
            errors.append(f"Cannot post repayment for {loan.status.value.upper()} loan")

        if amount <= 0:
            errors.append("Repayment amount must be greater than zero")
        if method.lower() not in PAYMENT_METHODS:
            errors.append(f"Unsupported payment method: {method}")

        total_outstanding = loan.get_total_outstanding()
        if amount > total_outstanding * self.policy["overpayment_warning_ratio"]:
            warnings.append("Repayment amount exceeds outstanding balance by more than 10%")

        return RepaymentValidation(is_valid=not errors, errors=errors, warnings=warnings)

    def post_repayment(self, loan_id: str, amount: Any, payment_date: date,
                       method: str = "cash", reference: Optional[str] = None,
                       organisation_id: Optional[str] = None,
                       as_of: Optional[date] = None) -> PostingResult:
        """Validate, allocate and commit a repayment."""
        amount = to_decimal(amount)

        with self.book.lock_for(loan_id):
            loan = self.book.get_loan(loan_id)
            schedule = self.book.get_schedule(loan_id)
            expected_version = loan.version

            billed = bill_through(loan, schedule, payment_date)
            validation = self.validate_repayment(billed, amount, payment_date, method,
                                                 organisation_id, as_of)
            if not validation.is_valid:
                self.logger.info(f"Rejected repayment of {amount} on {loan_id}: {validation.errors}")
                raise RepaymentRejectedError(validation.errors, validation.warnings)
            for warning in validation.warnings:
                self.logger.warning(f"Repayment of {amount} on {loan_id}: {warning}")

            allocation = allocate_to_loan(amount, billed)
            transaction = RepaymentTransaction(
                transaction_id=str(uuid.uuid4()),
                loan_id=loan_id,
                organisation_id=loan.organisation_id,
                amount=amount,
                payment_date=payment_date,
                method=method.lower(),
                reference=reference,
                allocation=allocation,
                sequence=self.book.next_sequence(),
                recorded_at=datetime.now(),
            )
            updated = apply_transaction(loan, schedule, transaction)
            stored = self.book.commit(updated, expected_version, transaction=transaction)

        self.logger.info(f"Posted repayment {transaction.transaction_id} of {amount} on {loan_id}; "
                         f"status {stored.status.value}, next due {stored.next_due_date}")
        if allocation.unallocated_excess > 0:
            self.logger.info(f"Unallocated excess of {allocation.unallocated_excess} on {loan_id}")

        self._emit(RepaymentPosted(
            loan_id=loan_id,
            organisation_id=stored.organisation_id,
            transaction_id=transaction.transaction_id,
            amount=amount,
            payment_date=payment_date,
            unallocated_excess=allocation.unallocated_excess,
            loan_status=stored.status,
            loan_version=stored.version,
        ))
        return PostingResult(transaction=transaction, loan=stored, warnings=validation.warnings)

    def reverse_repayment(self, transaction_id: str, reason: Optional[str] = None,
                          reversal_date: Optional[date] = None) -> PostingResult:
        """Offset a posted repayment with a new reversal transaction.

        The original record is left as it is; each repayment can be reversed once.
        """
        original = self.book.get_transaction(transaction_id)
        loan_id = original.loan_id
        reversal_date = reversal_date or date.today()

        with self.book.lock_for(loan_id):
            errors = []
            if original.kind == TransactionKind.REVERSAL:
                errors.append("Cannot reverse a reversal")
            elif self.book.is_reversed(transaction_id):
                errors.append(f"Transaction {transaction_id} is already reversed")
            if self.book.get_loan(loan_id).status == LoanStatus.WRITTEN_OFF:
                errors.append("Cannot reverse a repayment on a WRITTEN_OFF loan")
            last_activity = self.book.last_activity_date(loan_id)
            if reversal_date < last_activity:
                errors.append(f"Reversal date cannot precede the last posted activity on {last_activity}")
            if errors:
                raise RepaymentRejectedError(errors)

            loan = self.book.get_loan(loan_id)
            schedule = self.book.get_schedule(loan_id)
            expected_version = loan.version

            reversal = RepaymentTransaction(
                transaction_id=str(uuid.uuid4()),
                loan_id=loan_id,
                organisation_id=original.organisation_id,
                kind=TransactionKind.REVERSAL,
                amount=-original.amount,
                payment_date=reversal_date,
                method=original.method,
                reference=original.reference,
                allocation=original.allocation.negated(),
                reverses=transaction_id,
                reason=reason,
                sequence=self.book.next_sequence(),
                recorded_at=datetime.now(),
            )
            updated = apply_transaction(loan, schedule, reversal)
            stored = self.book.commit(updated, expected_version, transaction=reversal)

        self.logger.info(f"Reversed repayment {transaction_id} on {loan_id} ({reason or 'no reason given'})")
        self._emit(RepaymentReversed(
            loan_id=loan_id,
            organisation_id=stored.organisation_id,
            transaction_id=reversal.transaction_id,
            reversed_transaction_id=transaction_id,
            reason=reason,
            loan_status=stored.status,
            loan_version=stored.version,
        ))
        return PostingResult(transaction=reversal, loan=stored)

    def _emit(self, event: BaseModel) -> None:
        # Delivery belongs to the listeners; a failing one does not undo the commit
        for listener in self.listeners:
            try:
                listener(event)
            except Exception as e:
                self.logger.error(f"Listener failed on {event.__class__.__name__}: {e}")
