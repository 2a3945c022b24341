"""Loan Financial Engine - amortization, repayment allocation, IFRS 9 staging, ECL and provisioning."""

# Core engine and components
from .core.engine import LoanEngine, EvaluationResult
from .core.config import EngineConfig
from .core.loan import Loan, LoanSnapshot, LoanStatus, InterestMethod
from .core.calendar import RepaymentCycle, DayCountConvention

# Schedules
from .schedule.amortization import AmortizationGenerator, ScheduleEntry, generate_schedule

# Repayments
from .repayment.allocation import Allocation, allocate
from .repayment.posting import RepaymentService, PostingResult

# Classification
from .risk.classification import IFRS9Stage, RegulatoryBucket, RiskClassification, classify

# IFRS 9 Expected Credit Loss and regulatory provisions
from .accounting.ifrs9 import IFRS9Calculator, ECLResult, compute_ecl
from .accounting.provisions import ProvisioningEngine, ProvisionResult, compute_provision

# Point-in-time history
from .history.store import CalculationHistory, LoanBook
from .history.recalculation import PointInTimeService

# Portfolio reporting
from .reporting.portfolio import PortfolioReporter

__version__ = "0.1.0"
__author__ = "lendcore contributors"

__all__ = [
    # Core components
    "LoanEngine",
    "EvaluationResult",
    "EngineConfig",
    "Loan",
    "LoanSnapshot",
    "LoanStatus",
    "InterestMethod",
    "RepaymentCycle",
    "DayCountConvention",

    # Schedules
    "AmortizationGenerator",
    "ScheduleEntry",
    "generate_schedule",

    # Repayments
    "Allocation",
    "allocate",
    "RepaymentService",
    "PostingResult",

    # Classification
    "IFRS9Stage",
    "RegulatoryBucket",
    "RiskClassification",
    "classify",

    # IFRS 9 Accounting
    "IFRS9Calculator",
    "ECLResult",
    "compute_ecl",
    "ProvisioningEngine",
    "ProvisionResult",
    "compute_provision",

    # History
    "CalculationHistory",
    "LoanBook",
    "PointInTimeService",

    # Reporting
    "PortfolioReporter",
]
