"""Exception hierarchy for the loan financial engine."""

from typing import List, Optional


class LoanEngineError(Exception):
    """Base exception for all engine errors."""


class InvalidAmountError(LoanEngineError):
    """Raised when a principal, payment or exposure amount is not acceptable."""


class InvalidTermError(LoanEngineError):
    """Raised when a loan term cannot produce a schedule."""


class OverAllocationError(LoanEngineError):
    """Raised when applying an allocation would push a bucket outside its bounds."""


class InvalidStageError(LoanEngineError):
    """Raised when an IFRS 9 stage is not 1, 2 or 3."""


class ScheduleNotFoundError(LoanEngineError):
    """Raised when classification is requested for a loan without a schedule."""


class InvalidRiskParameterError(LoanEngineError):
    """Raised when PD or LGD falls outside [0, 1]."""


class LoanNotFoundError(LoanEngineError):
    """Raised when a referenced loan or transaction does not exist."""


class ConcurrentModificationError(LoanEngineError):
    """Raised when a loan was modified since it was read."""


class InvalidStatusTransitionError(LoanEngineError):
    """Raised when a default or write-off is not allowed from the loan's current status."""


class RepaymentRejectedError(LoanEngineError):
    """Raised when a repayment fails validation before allocation."""

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__("; ".join(self.errors))
