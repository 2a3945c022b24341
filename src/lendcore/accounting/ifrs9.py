"""IFRS 9 Expected Credit Loss calculations."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
import numpy as np
import logging
import uuid

from ..core.config import EngineConfig, bucket_for_days
from ..core.exceptions import InvalidAmountError, InvalidRiskParameterError
from ..core.money import ZERO, round_money, to_decimal
from ..risk.classification import IFRS9Stage, RiskClassification

logger = logging.getLogger(__name__)

ONE = Decimal("1")


class ECLResult(BaseModel):
    """Expected Credit Loss calculation record. Append-only history entry."""

    model_config = ConfigDict(frozen=True)

    result_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    loan_id: str
    organisation_id: str
    stage: IFRS9Stage
    probability_of_default: Decimal = Field(ge=0, le=1)
    loss_given_default: Decimal = Field(ge=0, le=1)
    exposure_at_default: Decimal = Field(ge=0)
    ecl_value: Decimal = Field(ge=0, description="Expected Credit Loss amount")
    days_overdue: int = Field(default=0, ge=0)
    calculation_timestamp: datetime
    history_sequence: Optional[int] = Field(None, ge=0, description="Last posting sequence reflected in the figures")
    schema_version: int = 1

    @property
    def coverage_ratio(self) -> Decimal:
        """ECL / EAD ratio."""
        if self.exposure_at_default > 0:
            return self.ecl_value / self.exposure_at_default
        return ZERO

    def same_calculation(self, other: "ECLResult") -> bool:
        """Equal figures, ignoring record identity and timestamp."""
        return (
            self.loan_id == other.loan_id
            and self.stage == other.stage
            and self.probability_of_default == other.probability_of_default
            and self.loss_given_default == other.loss_given_default
            and self.exposure_at_default == other.exposure_at_default
            and self.ecl_value == other.ecl_value
            and self.days_overdue == other.days_overdue
        )


class RiskParameters(BaseModel):
    """PD and LGD supplied by a risk model."""

    model_config = ConfigDict(frozen=True)

    pd_12m: Decimal = Field(ge=0, le=1)
    pd_lifetime: Decimal = Field(ge=0, le=1)
    lgd: Decimal = Field(ge=0, le=1)

    def pd_for_stage(self, stage: IFRS9Stage) -> Decimal:
        """12-month PD for Stage 1, lifetime PD for Stages 2 and 3."""
        if IFRS9Stage.coerce(stage) == IFRS9Stage.STAGE_1:
            return self.pd_12m
        return self.pd_lifetime


class RiskParameterProvider:
    """Source of PD/LGD for a classified loan.

    The estimation methodology lives outside the engine; subclasses adapt
    whichever risk model the lender uses.
    """

    def get_parameters(self, loan_id: str, classification: RiskClassification) -> RiskParameters:
        raise NotImplementedError


class TableRiskParameterProvider(RiskParameterProvider):
    """Days-overdue PD table with a lifetime multiplier and a flat LGD."""

    def __init__(self, config: Optional[EngineConfig] = None):
        params = (config or EngineConfig()).get_risk_parameters()
        self.pd_table = sorted(
            params["pd_by_days_overdue"],
            key=lambda row: float("inf") if row.get("max_days") is None else row["max_days"],
        )
        self.lifetime_multiplier = params["lifetime_pd_multiplier"]
        self.lgd = params["lgd"]

    def get_parameters(self, loan_id: str, classification: RiskClassification) -> RiskParameters:
        pd_12m = to_decimal(bucket_for_days(self.pd_table, classification.days_overdue, "pd"))
        pd_lifetime = min(pd_12m * self.lifetime_multiplier, ONE)
        return RiskParameters(pd_12m=pd_12m, pd_lifetime=pd_lifetime, lgd=self.lgd)


def compute_ecl(stage: Any, exposure_at_default: Any, probability_of_default: Any,
                loss_given_default: Any, places: int = 2) -> Decimal:
    """ECL = EAD x PD x LGD, rounded to the cent.

    The caller supplies the PD variant matching the stage (12-month for Stage 1,
    lifetime otherwise).
    """
    IFRS9Stage.coerce(stage)
    ead = to_decimal(exposure_at_default)
    pd = to_decimal(probability_of_default)
    lgd = to_decimal(loss_given_default)

    if ead < 0:
        raise InvalidAmountError(f"Exposure at default cannot be negative, got {ead}")
    if not (0 <= pd <= 1):
        raise InvalidRiskParameterError(f"PD must be between 0 and 1, got {pd}")
    if not (0 <= lgd <= 1):
        raise InvalidRiskParameterError(f"LGD must be between 0 and 1, got {lgd}")

    return round_money(ead * pd * lgd, places)


class IFRS9Calculator:
    """
    IFRS 9 Expected Credit Loss calculator.

    Stage comes from the delinquency classifier, PD/LGD from a
    ``RiskParameterProvider`` and EAD from the loan's outstanding exposure.
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 risk_provider: Optional[RiskParameterProvider] = None):
        """Initialize IFRS 9 calculator."""
        self.config = config or EngineConfig()
        self.risk_provider = risk_provider or TableRiskParameterProvider(self.config)
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def calculate_loan_ecl(self, loan_id: str, organisation_id: str,
                           classification: RiskClassification, exposure_at_default: Any,
                           calculation_timestamp: datetime,
                           history_sequence: Optional[int] = None) -> ECLResult:
        """Calculate an ECL record for a classified loan."""
        params = self.risk_provider.get_parameters(loan_id, classification)
        stage = classification.ifrs9_stage
        pd_used = params.pd_for_stage(stage)

        ecl = compute_ecl(stage, exposure_at_default, pd_used, params.lgd, self.config.currency_places)

        self.logger.debug(f"Stage {stage.value} ECL for {loan_id}: {ecl} "
                          f"(EAD: {exposure_at_default}, PD: {pd_used}, LGD: {params.lgd})")

        return ECLResult(
            loan_id=loan_id,
            organisation_id=organisation_id,
            stage=stage,
            probability_of_default=pd_used,
            loss_given_default=params.lgd,
            exposure_at_default=to_decimal(exposure_at_default),
            ecl_value=ecl,
            days_overdue=classification.days_overdue,
            calculation_timestamp=calculation_timestamp,
            history_sequence=history_sequence,
        )

    def calculate_ecl_summary(self, ecl_results: List[ECLResult]) -> Dict[str, Any]:
        """Portfolio-level ECL summary by stage."""
        stage_summary = {
            stage: {'count': 0, 'ead': ZERO, 'ecl': ZERO} for stage in IFRS9Stage
        }

        for result in ecl_results:
            stage_summary[result.stage]['count'] += 1
            stage_summary[result.stage]['ead'] += result.exposure_at_default
            stage_summary[result.stage]['ecl'] += result.ecl_value

        total_ead = sum((s['ead'] for s in stage_summary.values()), ZERO)
        total_ecl = sum((s['ecl'] for s in stage_summary.values()), ZERO)

        return {
            'total_loans': len(ecl_results),
            'total_ead': total_ead,
            'total_ecl': total_ecl,
            'overall_coverage_ratio': total_ecl / total_ead if total_ead > 0 else ZERO,
            'stage_breakdown': {
                f"stage_{stage.value}": {
                    'count': data['count'],
                    'ead': data['ead'],
                    'ecl': data['ecl'],
                    'coverage_ratio': data['ecl'] / data['ead'] if data['ead'] > 0 else ZERO,
                }
                for stage, data in stage_summary.items()
            }
        }

    def generate_stage_transition_matrix(self, previous: List[RiskClassification],
                                         current: List[RiskClassification]) -> np.ndarray:
        """Row-normalised stage migration matrix between two evaluation runs.

        Rows are the stage in ``previous``, columns the stage in ``current``;
        only loans classified in both runs are counted.
        """
        before = {c.loan_id: c.ifrs9_stage for c in previous if c.loan_id}
        counts = np.zeros((3, 3))
        for classification in current:
            if classification.loan_id in before:
                counts[before[classification.loan_id] - 1, classification.ifrs9_stage - 1] += 1

        row_totals = counts.sum(axis=1, keepdims=True)
        return np.divide(counts, row_totals, out=np.zeros_like(counts), where=row_totals > 0)

    def validate_ecl_model(self, historical_results: List[ECLResult],
                           actual_losses: List[float]) -> Dict[str, float]:
        """Validate ECL model performance against realised losses."""

        if len(historical_results) != len(actual_losses):
            raise ValueError("Historical results and actual losses must have same length")

        predicted = np.array([float(r.ecl_value) for r in historical_results])
        actual = np.array([float(loss) for loss in actual_losses])

        mae = float(np.mean(np.abs(predicted - actual))) if len(actual) else 0.0
        mse = float(np.mean((predicted - actual) ** 2)) if len(actual) else 0.0

        total_predicted = float(predicted.sum())
        total_actual = float(actual.sum())
        coverage_ratio = total_predicted / total_actual if total_actual > 0 else float('inf')

        return {
            'mean_absolute_error': mae,
            'mean_squared_error': mse,
            'root_mean_squared_error': float(np.sqrt(mse)),
            'coverage_ratio': coverage_ratio,
            'total_predicted_ecl': total_predicted,
            'total_actual_losses': total_actual
        }
