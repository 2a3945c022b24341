"""Calculation history and point-in-time recalculation."""

from .store import CalculationHistory, LoanBook
from .recalculation import PointInTimeService, reconstruct_state, replay

__all__ = [
    "CalculationHistory",
    "LoanBook",
    "PointInTimeService",
    "reconstruct_state",
    "replay",
]
