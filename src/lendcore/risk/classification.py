"""Delinquency measurement, IFRS 9 staging and regulatory classification.

The IFRS 9 stage and the regulatory bucket are two independent mappings of the
same days-overdue figure. A loan can be Stage 2 and Doubtful at the same time;
neither is derived from the other.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict
import logging

from ..core.calendar import days_overdue
from ..core.config import EngineConfig, bucket_for_days
from ..core.exceptions import InvalidStageError, ScheduleNotFoundError
from ..core.money import to_decimal

logger = logging.getLogger(__name__)


class IFRS9Stage(int, Enum):
    """IFRS 9 credit-risk stage."""

    STAGE_1 = 1  # Performing, 12-month ECL
    STAGE_2 = 2  # Significant increase in credit risk, lifetime ECL
    STAGE_3 = 3  # Credit-impaired, lifetime ECL

    @classmethod
    def coerce(cls, value: Any) -> "IFRS9Stage":
        """Accept an ``IFRS9Stage`` or 1/2/3; anything else is an ``InvalidStageError``."""
        if isinstance(value, bool):
            raise InvalidStageError(f"Invalid IFRS 9 stage: {value!r}")
        try:
            return cls(value)
        except ValueError:
            raise InvalidStageError(f"Invalid IFRS 9 stage: {value!r}") from None


class RegulatoryBucket(str, Enum):
    """Jurisdictional delinquency classification."""

    STANDARD = "standard"
    SUBSTANDARD = "substandard"
    DOUBTFUL = "doubtful"
    LOSS = "loss"


AGING_BUCKETS = (
    (30, "0-30"),
    (60, "31-60"),
    (90, "61-90"),
    (180, "91-180"),
    (None, "180+"),
)


class RiskClassification(BaseModel):
    """Classification of a loan as of an evaluation date.

    Derived, never mutated: a later evaluation supersedes it.
    """

    model_config = ConfigDict(frozen=True)

    loan_id: Optional[str] = None
    evaluation_date: date
    next_due_date: date
    days_overdue: int
    ifrs9_stage: IFRS9Stage
    regulatory_bucket: RegulatoryBucket
    outstanding_balance: Decimal
    schema_version: int = 1


def aging_bucket(days: int) -> str:
    """Delinquency aging band label for ``days`` overdue."""
    for upper, label in AGING_BUCKETS:
        if upper is None or days <= upper:
            return label
    return AGING_BUCKETS[-1][1]


class DelinquencyClassifier:
    """Pure classifier over (next due date, evaluation date, balance)."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.thresholds = self.config.get_stage_thresholds()
        self.buckets = self.config.get_regulatory_buckets()

    def stage_for_days(self, days: int) -> IFRS9Stage:
        if days >= self.thresholds["stage_3_min_days"]:
            return IFRS9Stage.STAGE_3
        if days >= self.thresholds["stage_2_min_days"]:
            return IFRS9Stage.STAGE_2
        return IFRS9Stage.STAGE_1

    def bucket_for_days(self, days: int) -> RegulatoryBucket:
        return RegulatoryBucket(bucket_for_days(self.buckets, days, "name"))

    def classify(self, next_due_date: Optional[date], evaluation_date: date,
                 outstanding_balance: Any) -> Optional[RiskClassification]:
        """Classify a loan; ``None`` when nothing is outstanding."""
        balance = to_decimal(outstanding_balance)
        if balance <= 0:
            return None
        if next_due_date is None:
            raise ScheduleNotFoundError("Cannot classify a loan without a next due date")

        days = days_overdue(next_due_date, evaluation_date)
        return RiskClassification(
            evaluation_date=evaluation_date,
            next_due_date=next_due_date,
            days_overdue=days,
            ifrs9_stage=self.stage_for_days(days),
            regulatory_bucket=self.bucket_for_days(days),
            outstanding_balance=balance,
        )


def classify(next_due_date: Optional[date], evaluation_date: date,
             outstanding_balance: Any) -> Optional[RiskClassification]:
    """Classify with the default policy thresholds."""
    return DelinquencyClassifier().classify(next_due_date, evaluation_date, outstanding_balance)
