"""Portfolio reports over classification, ECL and provision records.

Reports only render stored records; they never recompute a figure. Amounts are
converted to float here, at the edge, for tabular output.
"""

from typing import Any, Dict, List
import logging

import pandas as pd

from ..accounting.ifrs9 import ECLResult
from ..accounting.provisions import ProvisionResult
from ..risk.classification import AGING_BUCKETS, IFRS9Stage, RegulatoryBucket, RiskClassification, aging_bucket

logger = logging.getLogger(__name__)

STAGES = [stage.value for stage in IFRS9Stage]
BUCKETS = [bucket.value for bucket in RegulatoryBucket]
AGING_LABELS = [label for _, label in AGING_BUCKETS]


class PortfolioReporter:
    """Tabular portfolio views for reporting and export collaborators."""

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def classifications_frame(self, classifications: List[RiskClassification]) -> pd.DataFrame:
        columns = ["loan_id", "evaluation_date", "days_overdue", "aging_bucket",
                   "ifrs9_stage", "regulatory_bucket", "outstanding_balance"]
        rows = [
            {
                "loan_id": c.loan_id,
                "evaluation_date": c.evaluation_date,
                "days_overdue": c.days_overdue,
                "aging_bucket": aging_bucket(c.days_overdue),
                "ifrs9_stage": c.ifrs9_stage.value,
                "regulatory_bucket": c.regulatory_bucket.value,
                "outstanding_balance": float(c.outstanding_balance),
            }
            for c in classifications
        ]
        return pd.DataFrame(rows, columns=columns)

    def ecl_frame(self, ecl_results: List[ECLResult]) -> pd.DataFrame:
        columns = ["loan_id", "organisation_id", "stage", "pd", "lgd", "ead", "ecl",
                   "calculation_timestamp"]
        rows = [
            {
                "loan_id": r.loan_id,
                "organisation_id": r.organisation_id,
                "stage": r.stage.value,
                "pd": float(r.probability_of_default),
                "lgd": float(r.loss_given_default),
                "ead": float(r.exposure_at_default),
                "ecl": float(r.ecl_value),
                "calculation_timestamp": r.calculation_timestamp,
            }
            for r in ecl_results
        ]
        return pd.DataFrame(rows, columns=columns)

    def provisions_frame(self, provision_results: List[ProvisionResult]) -> pd.DataFrame:
        columns = ["loan_id", "organisation_id", "bucket", "rate", "exposure", "provision",
                   "effective_date"]
        rows = [
            {
                "loan_id": r.loan_id,
                "organisation_id": r.organisation_id,
                "bucket": r.classification_bucket.value,
                "rate": float(r.provision_rate),
                "exposure": float(r.outstanding_exposure),
                "provision": float(r.provision_amount),
                "effective_date": r.effective_date,
            }
            for r in provision_results
        ]
        return pd.DataFrame(rows, columns=columns)

    def stage_breakdown(self, ecl_results: List[ECLResult]) -> pd.DataFrame:
        """Count, EAD, ECL and coverage per IFRS 9 stage."""
        df = self.ecl_frame(ecl_results)
        breakdown = (
            df.groupby("stage")
            .agg(count=("loan_id", "count"), ead=("ead", "sum"), ecl=("ecl", "sum"))
            .reindex(STAGES, fill_value=0)
        )
        breakdown = breakdown.astype({"count": int, "ead": float, "ecl": float})
        breakdown["coverage_ratio"] = (breakdown["ecl"] / breakdown["ead"]).fillna(0.0)
        breakdown.index.name = "stage"
        return breakdown.round({"ead": 2, "ecl": 2})

    def aging_breakdown(self, classifications: List[RiskClassification]) -> pd.DataFrame:
        """Loan count and outstanding balance per delinquency aging band."""
        df = self.classifications_frame(classifications)
        breakdown = (
            df.groupby("aging_bucket")
            .agg(count=("loan_id", "count"), outstanding_balance=("outstanding_balance", "sum"))
            .reindex(AGING_LABELS, fill_value=0)
        )
        breakdown = breakdown.astype({"count": int, "outstanding_balance": float})
        breakdown.index.name = "aging_bucket"
        return breakdown.round({"outstanding_balance": 2})

    def provision_breakdown(self, provision_results: List[ProvisionResult]) -> pd.DataFrame:
        """Exposure and provision totals per regulatory bucket."""
        df = self.provisions_frame(provision_results)
        breakdown = (
            df.groupby("bucket")
            .agg(count=("loan_id", "count"), exposure=("exposure", "sum"),
                 provision=("provision", "sum"))
            .reindex(BUCKETS, fill_value=0)
        )
        breakdown = breakdown.astype({"count": int, "exposure": float, "provision": float})
        breakdown.index.name = "bucket"
        return breakdown.round({"exposure": 2, "provision": 2})

    def migration_matrix(self, previous: List[RiskClassification],
                         current: List[RiskClassification], normalize: bool = False) -> pd.DataFrame:
        """Stage migration between two evaluation runs, rows ``from`` and columns ``to``.

        Only loans present in both runs are counted.
        """
        before = pd.DataFrame(
            [{"loan_id": c.loan_id, "from_stage": c.ifrs9_stage.value} for c in previous],
            columns=["loan_id", "from_stage"],
        )
        after = pd.DataFrame(
            [{"loan_id": c.loan_id, "to_stage": c.ifrs9_stage.value} for c in current],
            columns=["loan_id", "to_stage"],
        )
        merged = before.merge(after, on="loan_id", how="inner")

        matrix = (
            pd.crosstab(merged["from_stage"], merged["to_stage"])
            .reindex(index=STAGES, columns=STAGES, fill_value=0)
            .astype(int)
        )
        matrix.index.name = "from_stage"
        matrix.columns.name = "to_stage"

        if normalize:
            totals = matrix.sum(axis=1)
            matrix = matrix.div(totals.where(totals > 0, 1), axis=0)
        return matrix

    def portfolio_summary(self, classifications: List[RiskClassification],
                          ecl_results: List[ECLResult],
                          provision_results: List[ProvisionResult]) -> Dict[str, Any]:
        """Headline figures with ECL and regulatory provisions side by side."""
        stages = self.stage_breakdown(ecl_results)
        provisions = self.provision_breakdown(provision_results)

        total_ead = float(stages["ead"].sum())
        total_ecl = float(stages["ecl"].sum())
        total_provisions = float(provisions["provision"].sum())

        self.logger.info(f"Portfolio summary over {len(classifications)} classified loans")
        return {
            "loans_classified": len(classifications),
            "total_ead": round(total_ead, 2),
            "total_ecl": round(total_ecl, 2),
            "ecl_coverage_ratio": total_ecl / total_ead if total_ead > 0 else 0.0,
            "total_regulatory_provisions": round(total_provisions, 2),
            "stage_breakdown": stages.to_dict(orient="index"),
            "aging_breakdown": self.aging_breakdown(classifications).to_dict(orient="index"),
            "provision_breakdown": provisions.to_dict(orient="index"),
        }
