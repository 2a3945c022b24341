"""Pytest configuration and shared fixtures."""

import pytest
import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

from lendcore.core.config import EngineConfig
from lendcore.core.engine import LoanEngine
from lendcore.core.loan import Loan, LoanStatus
from lendcore.schedule.amortization import generate_schedule


@pytest.fixture(scope="session")
def test_config():
    """Test configuration fixture."""
    return EngineConfig.load_default()


@pytest.fixture
def temp_dir():
    """Temporary directory fixture."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def engine(test_config):
    """Fresh engine with an empty loan book."""
    return LoanEngine(test_config)


@pytest.fixture
def standard_schedule():
    """10,000 at 12% over 24 months, monthly from 2024-01-01."""
    return generate_schedule("10000", "12", 24, start_date=date(2024, 1, 1))


@pytest.fixture
def simple_loan():
    """Active loan with some interest and penalty outstanding."""
    return Loan(
        loan_id="loan_001",
        organisation_id="org_001",
        principal=Decimal("1000"),
        annual_interest_rate=Decimal("12"),
        term_months=12,
        disbursement_date=date(2024, 1, 1),
        outstanding_principal=Decimal("800"),
        outstanding_interest=Decimal("50"),
        outstanding_fees=Decimal("5"),
        outstanding_penalty=Decimal("10"),
        next_due_date=date(2024, 3, 1),
        status=LoanStatus.ACTIVE,
    )


@pytest.fixture
def disbursed_loan(engine):
    """Loan disbursed through the engine on 2024-01-01."""
    return engine.disburse("org_001", "10000", "12", 24, date(2024, 1, 1), loan_id="loan_pit")


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "property: marks tests as property-based tests"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        # Mark property-based tests
        if "test_properties" in item.nodeid:
            item.add_marker(pytest.mark.property)

        # Mark integration tests
        if any(name in item.nodeid for name in ["integration", "test_engine", "test_api",
                                                "test_point_in_time"]):
            item.add_marker(pytest.mark.integration)

        # Mark slow tests
        if any(marker in item.nodeid for marker in ["concurrent", "full_term"]):
            item.add_marker(pytest.mark.slow)


# Custom assertion helpers
def assert_buckets_non_negative(loan):
    """Assert that no outstanding bucket is negative."""
    for field in ("outstanding_principal", "outstanding_interest",
                  "outstanding_fees", "outstanding_penalty"):
        value = getattr(loan, field)
        assert value >= 0, f"{field} should be non-negative, got {value}"


def assert_allocation_conserves(allocation, amount):
    """Assert that an allocation accounts for every unit received."""
    total = (allocation.penalty + allocation.fees + allocation.interest
             + allocation.principal + allocation.unallocated_excess)
    assert total == Decimal(str(amount)), f"Allocation sums to {total}, expected {amount}"
