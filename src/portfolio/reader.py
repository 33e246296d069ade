"""Read-only interface to the portfolio aggregate source.

The compliance engine never writes portfolio data. It needs three
reads: advisors to scan, households (optionally per advisor), and the
holdings of one household. Implementations return normalised records
from ``src.portfolio.schemas``.
"""

from abc import ABC, abstractmethod

from src.portfolio.errors import DataSourceUnavailableError
from src.portfolio.schemas import Advisor, Holding, HouseholdRecord


class PortfolioReader(ABC):
    """Abstract source of advisors, households and holdings."""

    @abstractmethod
    async def list_advisors(self) -> list[Advisor]:
        """Return every advisor whose book should be scanned.

        Raises:
            DataSourceUnavailableError: The source cannot be reached.
        """

    @abstractmethod
    async def list_households(self, advisor_id: int | None = None) -> list[HouseholdRecord]:
        """Return households for one advisor, or all households when None.

        Raises:
            DataSourceUnavailableError: The source cannot be reached.
        """

    @abstractmethod
    async def list_holdings(self, household_id: int) -> list[Holding]:
        """Return every holding across the household's accounts.

        Raises:
            PortfolioDataError: A holding row is malformed.
            DataSourceUnavailableError: The source cannot be reached.
        """


class InMemoryPortfolioReader(PortfolioReader):
    """Dictionary-backed reader for tests, demos and fixtures.

    Set ``available = False`` to simulate an unreachable source.
    """

    def __init__(
        self,
        advisors: list[Advisor] | None = None,
        households: list[HouseholdRecord] | None = None,
        holdings: dict[int, list[Holding]] | None = None,
    ) -> None:
        self._advisors = list(advisors or [])
        self._households = list(households or [])
        self._holdings = dict(holdings or {})
        self.available = True

    def _check_available(self) -> None:
        if not self.available:
            raise DataSourceUnavailableError("Portfolio data source not available")

    def add_household(self, household: HouseholdRecord, holdings: list[Holding]) -> None:
        self._households.append(household)
        self._holdings[household.household_id] = list(holdings)

    async def list_advisors(self) -> list[Advisor]:
        self._check_available()
        return list(self._advisors)

    async def list_households(self, advisor_id: int | None = None) -> list[HouseholdRecord]:
        self._check_available()
        if advisor_id is None:
            return list(self._households)
        return [h for h in self._households if h.advisor_id == advisor_id]

    async def list_holdings(self, household_id: int) -> list[Holding]:
        self._check_available()
        return list(self._holdings.get(household_id, []))
