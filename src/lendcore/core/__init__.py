"""Core components of the loan financial engine."""

from .calendar import DayCountConvention, RepaymentCycle
from .config import EngineConfig
from .exceptions import (
    ConcurrentModificationError, InvalidAmountError, InvalidRiskParameterError, InvalidStageError,
    InvalidStatusTransitionError, InvalidTermError, LoanEngineError, LoanNotFoundError,
    OverAllocationError, RepaymentRejectedError, ScheduleNotFoundError,
)
from .loan import InterestMethod, Loan, LoanSnapshot, LoanStatus
from .engine import EvaluationResult, LoanEngine

__all__ = [
    "DayCountConvention",
    "RepaymentCycle",
    "EngineConfig",
    "ConcurrentModificationError",
    "InvalidAmountError",
    "InvalidRiskParameterError",
    "InvalidStageError",
    "InvalidStatusTransitionError",
    "InvalidTermError",
    "LoanEngineError",
    "LoanNotFoundError",
    "OverAllocationError",
    "RepaymentRejectedError",
    "ScheduleNotFoundError",
    "InterestMethod",
    "Loan",
    "LoanSnapshot",
    "LoanStatus",
    "EvaluationResult",
    "LoanEngine",
]
