"""IFRS 9 Expected Credit Loss and regulatory provisioning."""

from .ifrs9 import (
    ECLResult, IFRS9Calculator, RiskParameterProvider, RiskParameters, TableRiskParameterProvider,
    compute_ecl,
)
from .provisions import ProvisioningEngine, ProvisionResult, compute_provision

__all__ = [
    "ECLResult",
    "IFRS9Calculator",
    "RiskParameterProvider",
    "RiskParameters",
    "TableRiskParameterProvider",
    "compute_ecl",
    "ProvisioningEngine",
    "ProvisionResult",
    "compute_provision",
]
