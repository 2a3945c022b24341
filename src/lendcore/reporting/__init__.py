"""Portfolio reporting."""

from .portfolio import PortfolioReporter

__all__ = ["PortfolioReporter"]
