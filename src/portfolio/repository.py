"""PostgreSQL-backed portfolio reader.

Reads the CRM tables (``users``, ``households``, ``accounts``,
``holdings``) through the shared asyncpg ``Database`` wrapper. A
household's last review is its ``updated_at`` timestamp; holdings are
linked to households through their account.
"""

import logging

import asyncpg

from src.portfolio.errors import DataSourceUnavailableError, PortfolioDataError
from src.portfolio.reader import PortfolioReader
from src.portfolio.schemas import Advisor, Holding, HouseholdRecord
from src.storage.database import Database

logger = logging.getLogger(__name__)

DEFAULT_ADVISOR_ROLES: tuple[str, ...] = ("advisor", "admin")

_CONNECTION_ERRORS = (
    OSError,
    RuntimeError,
    asyncpg.InterfaceError,
    asyncpg.PostgresConnectionError,
)

_HOUSEHOLD_COLUMNS = """
    SELECT
        h.id AS household_id,
        h.household_name,
        h.risk_tolerance,
        h.updated_at AS last_review_date,
        h.advisor_id,
        u.name AS advisor_name
    FROM households h
    LEFT JOIN users u ON u.id = h.advisor_id
"""


class PostgresPortfolioReader(PortfolioReader):
    """Portfolio reader over the CRM PostgreSQL schema.

    Malformed household rows are skipped with a warning so one bad row
    cannot hide the rest of an advisor's book. Malformed holding rows
    raise ``PortfolioDataError`` and the caller skips that household.
    Lost connections raise ``DataSourceUnavailableError``.
    """

    def __init__(
        self,
        database: Database,
        advisor_roles: tuple[str, ...] | list[str] = DEFAULT_ADVISOR_ROLES,
    ) -> None:
        self._db = database
        self._advisor_roles = list(advisor_roles)

    async def list_advisors(self) -> list[Advisor]:
        sql = """
            SELECT id AS advisor_id, name, email
            FROM users
            WHERE role = ANY($1::text[])
            ORDER BY id
        """
        try:
            rows = await self._db.fetch(sql, self._advisor_roles)
        except TimeoutError:
            raise
        except _CONNECTION_ERRORS as e:
            raise DataSourceUnavailableError(f"Failed to list advisors: {e}") from e

        advisors: list[Advisor] = []
        for row in rows:
            try:
                advisors.append(Advisor.from_row(row))
            except PortfolioDataError as e:
                logger.warning("Skipping malformed advisor row: %s", e)
        return advisors

    async def list_households(self, advisor_id: int | None = None) -> list[HouseholdRecord]:
        try:
            if advisor_id is None:
                rows = await self._db.fetch(_HOUSEHOLD_COLUMNS + " ORDER BY h.id")
            else:
                rows = await self._db.fetch(
                    _HOUSEHOLD_COLUMNS + " WHERE h.advisor_id = $1 ORDER BY h.id",
                    advisor_id,
                )
        except TimeoutError:
            raise
        except _CONNECTION_ERRORS as e:
            raise DataSourceUnavailableError(f"Failed to list households: {e}") from e

        households: list[HouseholdRecord] = []
        for row in rows:
            try:
                households.append(HouseholdRecord.from_row(row))
            except PortfolioDataError as e:
                logger.warning(
                    "Skipping malformed household row %s: %s",
                    dict(row).get("household_id"), e,
                )
        return households

    async def list_holdings(self, household_id: int) -> list[Holding]:
        sql = """
            SELECT
                ho.ticker,
                ho.company_name,
                ho.current_value,
                ho.asset_class,
                ho.sector,
                ho.shares,
                ho.cost_basis,
                ho.account_id
            FROM holdings ho
            JOIN accounts a ON a.id = ho.account_id
            WHERE a.household_id = $1
            ORDER BY ho.id
        """
        try:
            rows = await self._db.fetch(sql, household_id)
        except TimeoutError:
            raise
        except _CONNECTION_ERRORS as e:
            raise DataSourceUnavailableError(
                f"Failed to list holdings for household {household_id}: {e}"
            ) from e

        return [Holding.from_row(row) for row in rows]
