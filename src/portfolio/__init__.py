"""Portfolio aggregate reader: the engine's read-only view of the CRM.

Components:
- Advisor / HouseholdRecord / Holding / PortfolioAggregate: normalised records
- PortfolioReader: abstract read interface
- InMemoryPortfolioReader: dictionary-backed reader for tests and demos
- PostgresPortfolioReader: asyncpg-backed reader over the CRM schema
- PortfolioDataError / DataSourceUnavailableError: reader-boundary errors
"""

from src.portfolio.errors import DataSourceUnavailableError, PortfolioDataError
from src.portfolio.reader import InMemoryPortfolioReader, PortfolioReader
from src.portfolio.repository import PostgresPortfolioReader
from src.portfolio.schemas import (
    VALID_RISK_TOLERANCES,
    Advisor,
    Holding,
    HouseholdRecord,
    PortfolioAggregate,
    RiskTolerance,
)

__all__ = [
    "Advisor",
    "DataSourceUnavailableError",
    "Holding",
    "HouseholdRecord",
    "InMemoryPortfolioReader",
    "PortfolioAggregate",
    "PortfolioDataError",
    "PortfolioReader",
    "PostgresPortfolioReader",
    "RiskTolerance",
    "VALID_RISK_TOLERANCES",
]
