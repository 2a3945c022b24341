"""Configuration management for the loan financial engine."""

from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional
import yaml
from pydantic import BaseModel, Field

from .money import to_decimal


DEFAULT_REGULATORY_BUCKETS: List[Dict[str, Any]] = [
    {"name": "standard", "max_days": 30, "provision_rate": 0.00},
    {"name": "substandard", "max_days": 90, "provision_rate": 0.10},
    {"name": "doubtful", "max_days": 180, "provision_rate": 0.25},
    {"name": "loss", "max_days": None, "provision_rate": 1.00},
]

DEFAULT_PD_TABLE: List[Dict[str, Any]] = [
    {"max_days": 30, "pd": 0.01},
    {"max_days": 90, "pd": 0.05},
    {"max_days": 180, "pd": 0.25},
    {"max_days": None, "pd": 0.50},
]


class EngineConfig(BaseModel):
    """Loan engine policy configuration."""

    rounding: Dict[str, Any] = Field(default_factory=dict)
    ifrs9: Dict[str, Any] = Field(default_factory=dict)
    regulatory_buckets: List[Dict[str, Any]] = Field(default_factory=list)
    penalties: Dict[str, Any] = Field(default_factory=dict)
    risk_parameters: Dict[str, Any] = Field(default_factory=dict)
    repayment: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def load_default(cls) -> "EngineConfig":
        """Load default configuration from package yaml file."""
        config_path = Path(__file__).parent.parent / "config.yaml"
        return cls.load_from_file(config_path)

    @classmethod
    def load_from_file(cls, config_path: Path) -> "EngineConfig":
        """Load configuration from YAML file."""
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
        return cls(**config_data)

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False, indent=2, sort_keys=False)

    @property
    def currency_places(self) -> int:
        return int(self.rounding.get("currency_places", 2))

    def get_stage_thresholds(self) -> Dict[str, int]:
        """Minimum days overdue for IFRS 9 stages 2 and 3."""
        return {
            "stage_2_min_days": int(self.ifrs9.get("stage_2_min_days", 31)),
            "stage_3_min_days": int(self.ifrs9.get("stage_3_min_days", 90)),
        }

    def get_regulatory_buckets(self) -> List[Dict[str, Any]]:
        """Regulatory bucket table ordered by upper bound, open bucket last."""
        buckets = self.regulatory_buckets or DEFAULT_REGULATORY_BUCKETS
        return sorted(
            buckets,
            key=lambda b: float("inf") if b.get("max_days") is None else b["max_days"],
        )

    def get_provision_rate(self, bucket_name: str) -> Decimal:
        """Provision rate for a regulatory bucket name."""
        for bucket in self.get_regulatory_buckets():
            if bucket["name"] == bucket_name:
                return to_decimal(bucket.get("provision_rate", 0))

        # Ultimate fallback: unknown buckets are fully provisioned
        return Decimal("1")

    def get_penalty_policy(self) -> Dict[str, Any]:
        penalties = self.penalties
        return {
            "rate_per_period": to_decimal(penalties.get("rate_per_period", 0.02)),
            "period_days": int(penalties.get("period_days", 30)),
            "grace_days": int(penalties.get("grace_days", 0)),
        }

    def get_risk_parameters(self) -> Dict[str, Any]:
        params = self.risk_parameters
        return {
            "pd_by_days_overdue": params.get("pd_by_days_overdue") or DEFAULT_PD_TABLE,
            "lifetime_pd_multiplier": to_decimal(params.get("lifetime_pd_multiplier", 2.5)),
            "lgd": to_decimal(params.get("lgd", 0.40)),
        }

    def get_repayment_policy(self) -> Dict[str, Any]:
        repayment = self.repayment
        return {
            "overpayment_warning_ratio": to_decimal(repayment.get("overpayment_warning_ratio", 1.10)),
            "allow_future_dates": bool(repayment.get("allow_future_dates", False)),
        }

    def validate_risk_parameters(self, pd: float, lgd: float) -> bool:
        """Validate PD/LGD against probability bounds."""
        return 0 <= pd <= 1 and 0 <= lgd <= 1


def bucket_for_days(table: List[Dict[str, Any]], days: int, value_key: str) -> Optional[Any]:
    """Look up ``value_key`` in an ordered ``max_days`` band table."""
    for row in table:
        max_days = row.get("max_days")
        if max_days is None or days <= max_days:
            return row.get(value_key)
    return None
