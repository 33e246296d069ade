"""Pytest fixtures for compliance engine tests."""

from datetime import datetime, timedelta, timezone

import pytest

from src.compliance.config import ComplianceConfig
from src.portfolio.reader import InMemoryPortfolioReader
from src.portfolio.schemas import Advisor, Holding, HouseholdRecord, PortfolioAggregate

NOW = datetime(2026, 3, 2, 2, 0, 0, tzinfo=timezone.utc)

# Relative to the wall clock for code paths that evaluate at the current time
RECENT_REVIEW = datetime.now(timezone.utc) - timedelta(days=30)


def make_holding(
    ticker: str = "AAPL",
    value: float = 10_000.0,
    asset_class: str | None = "equity",
    shares: float = 0.0,
    cost_basis: float | None = None,
    company_name: str | None = None,
) -> Holding:
    return Holding(
        ticker=ticker,
        current_value=value,
        shares=shares,
        company_name=company_name,
        asset_class=asset_class,
        cost_basis=cost_basis,
    )


def make_aggregate(
    holdings: list[Holding],
    household_id: int = 42,
    advisor_id: int = 7,
    risk_tolerance: str | None = "moderate",
    last_review_date: datetime | None = None,
    household_name: str | None = "Smith Family",
    advisor_name: str | None = "Jane Advisor",
) -> PortfolioAggregate:
    return PortfolioAggregate(
        household_id=household_id,
        advisor_id=advisor_id,
        household_name=household_name,
        advisor_name=advisor_name,
        risk_tolerance=risk_tolerance,
        last_review_date=last_review_date if last_review_date is not None else NOW - timedelta(days=30),
        holdings=tuple(holdings),
    )


def balanced_holdings(total: float = 100_000.0, equity_pct: float = 50.0) -> list[Holding]:
    """Holdings spread thinly enough to avoid concentration alerts.

    Each position is 5% of ``total``; ``equity_pct`` of the value is equity.
    """
    slice_value = total * 0.05
    equity_slices = int(equity_pct / 5)
    holdings = []
    for i in range(20):
        holdings.append(make_holding(
            ticker=f"T{i:02d}",
            value=slice_value,
            asset_class="equity" if i < equity_slices else "fixed_income",
        ))
    return holdings


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def config() -> ComplianceConfig:
    return ComplianceConfig()


@pytest.fixture
def advisor() -> Advisor:
    return Advisor(advisor_id=7, name="Jane Advisor", email="jane@example.com")


@pytest.fixture
def concentrated_household() -> HouseholdRecord:
    """Household whose AAPL position is 25% of a $100,000 portfolio."""
    return HouseholdRecord(
        household_id=42,
        advisor_id=7,
        household_name="Smith Family",
        advisor_name="Jane Advisor",
        risk_tolerance="moderate",
        last_review_date=RECENT_REVIEW,
    )


@pytest.fixture
def concentrated_holdings() -> list[Holding]:
    # AAPL 25%, the rest 5% each; equity 50% overall
    holdings = [make_holding("AAPL", 25_000.0, company_name="Apple Inc.")]
    for i in range(5):
        holdings.append(make_holding(f"EQ{i}", 5_000.0))
    for i in range(10):
        holdings.append(make_holding(f"BD{i}", 5_000.0, asset_class="fixed_income"))
    return holdings


@pytest.fixture
def reader(advisor, concentrated_household, concentrated_holdings) -> InMemoryPortfolioReader:
    """One advisor with one household carrying a critical concentration alert."""
    return InMemoryPortfolioReader(
        advisors=[advisor],
        households=[concentrated_household],
        holdings={concentrated_household.household_id: concentrated_holdings},
    )
