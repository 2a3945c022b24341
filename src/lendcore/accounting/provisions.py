"""Regulatory provisioning at fixed rates per classification bucket.

Reported separately from IFRS 9 ECL; the two figures are never reconciled into
one number.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
import logging
import uuid

from ..core.config import EngineConfig
from ..core.exceptions import InvalidAmountError
from ..core.money import ZERO, round_money, to_decimal
from ..risk.classification import RegulatoryBucket, RiskClassification

logger = logging.getLogger(__name__)


class ProvisionResult(BaseModel):
    """Regulatory provision record. Append-only history entry."""

    model_config = ConfigDict(frozen=True)

    result_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    loan_id: str
    organisation_id: str
    classification_bucket: RegulatoryBucket
    provision_rate: Decimal = Field(ge=0, le=1)
    outstanding_exposure: Decimal = Field(ge=0)
    provision_amount: Decimal = Field(ge=0)
    days_overdue: int = Field(default=0, ge=0)
    effective_date: datetime
    history_sequence: Optional[int] = Field(None, ge=0, description="Last posting sequence reflected in the figures")
    schema_version: int = 1

    @property
    def provision_percentage(self) -> Decimal:
        return self.provision_rate * 100


class ProvisioningEngine:
    """Engine for regulatory provisions."""

    def __init__(self, config: Optional[EngineConfig] = None):
        """Initialize provisioning engine."""
        self.config = config or EngineConfig()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def get_rate(self, regulatory_bucket: Any) -> Decimal:
        return self.config.get_provision_rate(RegulatoryBucket(regulatory_bucket).value)

    def compute_provision(self, regulatory_bucket: Any, outstanding_exposure: Any) -> Decimal:
        """Provision = exposure x bucket rate, rounded to the cent."""
        exposure = to_decimal(outstanding_exposure)
        if exposure < 0:
            raise InvalidAmountError(f"Outstanding exposure cannot be negative, got {exposure}")
        return round_money(exposure * self.get_rate(regulatory_bucket), self.config.currency_places)

    def calculate_loan_provision(self, loan_id: str, organisation_id: str,
                                 classification: RiskClassification, outstanding_exposure: Any,
                                 effective_date: datetime,
                                 history_sequence: Optional[int] = None) -> ProvisionResult:
        """Calculate a provision record for a classified loan."""
        bucket = classification.regulatory_bucket
        amount = self.compute_provision(bucket, outstanding_exposure)

        self.logger.debug(f"{bucket.value} provision for {loan_id}: {amount} "
                          f"(exposure: {outstanding_exposure})")

        return ProvisionResult(
            loan_id=loan_id,
            organisation_id=organisation_id,
            classification_bucket=bucket,
            provision_rate=self.get_rate(bucket),
            outstanding_exposure=to_decimal(outstanding_exposure),
            provision_amount=amount,
            days_overdue=classification.days_overdue,
            effective_date=effective_date,
            history_sequence=history_sequence,
        )

    def calculate_provisions(self, provision_results: List[ProvisionResult]) -> Dict[str, Any]:
        """Total provisions by bucket."""
        bucket_provisions = {bucket.value: ZERO for bucket in RegulatoryBucket}
        total_exposure = ZERO

        for result in provision_results:
            bucket_provisions[result.classification_bucket.value] += result.provision_amount
            total_exposure += result.outstanding_exposure

        total_provisions = sum(bucket_provisions.values(), ZERO)

        return {
            'total_provisions': total_provisions,
            'bucket_provisions': bucket_provisions,
            'total_exposure': total_exposure,
            'provision_coverage_ratio': total_provisions / total_exposure if total_exposure > 0 else ZERO,
        }


def compute_provision(regulatory_bucket: Any, outstanding_exposure: Any) -> Decimal:
    """Provision with the default bucket rates."""
    return ProvisioningEngine().compute_provision(regulatory_bucket, outstanding_exposure)
