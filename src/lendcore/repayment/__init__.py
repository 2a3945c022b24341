"""Repayment allocation, posting and penalties."""

from .allocation import Allocation, allocate, allocate_to_loan, apply_allocation
from .penalties import calculate_penalty
from .transactions import ChargeKind, LoanCharge, LoanStatusChange, RepaymentTransaction, TransactionKind
from .posting import (
    PostingResult, RepaymentPosted, RepaymentReversed, RepaymentService, RepaymentValidation,
    apply_charge, apply_status_change, apply_transaction,
)

__all__ = [
    "Allocation",
    "allocate",
    "allocate_to_loan",
    "apply_allocation",
    "calculate_penalty",
    "ChargeKind",
    "LoanCharge",
    "LoanStatusChange",
    "RepaymentTransaction",
    "TransactionKind",
    "PostingResult",
    "RepaymentPosted",
    "RepaymentReversed",
    "RepaymentService",
    "RepaymentValidation",
    "apply_charge",
    "apply_status_change",
    "apply_transaction",
]
