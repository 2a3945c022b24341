"""Delinquency and staging classification."""

from .classification import (
    DelinquencyClassifier, IFRS9Stage, RegulatoryBucket, RiskClassification, aging_bucket, classify,
)

__all__ = [
    "DelinquencyClassifier",
    "IFRS9Stage",
    "RegulatoryBucket",
    "RiskClassification",
    "aging_bucket",
    "classify",
]
