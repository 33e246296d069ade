"""Compliance scan service: reads household portfolios and runs the rules.

Read-only with respect to alert history. The presentation layer calls
these methods directly; the scheduled scan job calls
``scan_advisor_portfolios`` per advisor and feeds the result through the
ledger itself.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone

from src.compliance.config import ComplianceConfig
from src.compliance.rules import evaluate_household
from src.compliance.schemas import Alert, ComplianceStats
from src.observability.metrics import get_metrics
from src.portfolio.errors import DataSourceUnavailableError
from src.portfolio.reader import PortfolioReader
from src.portfolio.schemas import Advisor, HouseholdRecord, PortfolioAggregate

logger = logging.getLogger(__name__)


class ComplianceService:
    """Runs the compliance rule battery over households from a portfolio reader.

    Failure handling:
    - Listing households fails → ``DataSourceUnavailableError``, no partial result.
    - One household fails (malformed data, reader timeout) → warning logged,
      household skipped, scan continues.
    """

    def __init__(
        self,
        reader: PortfolioReader,
        config: ComplianceConfig | None = None,
    ) -> None:
        self._reader = reader
        self._config = config or ComplianceConfig()

    @property
    def config(self) -> ComplianceConfig:
        return self._config

    async def list_advisors(self) -> list[Advisor]:
        """Advisors whose books the scheduled scan covers.

        Raises:
            DataSourceUnavailableError: The reader failed or timed out.
        """
        try:
            return await asyncio.wait_for(
                self._reader.list_advisors(),
                timeout=self._config.reader_timeout_seconds,
            )
        except DataSourceUnavailableError:
            raise
        except Exception as e:
            raise DataSourceUnavailableError(
                f"Portfolio data source not available: {e}"
            ) from e

    async def _list_households(self, advisor_id: int | None) -> list[HouseholdRecord]:
        try:
            return await asyncio.wait_for(
                self._reader.list_households(advisor_id),
                timeout=self._config.reader_timeout_seconds,
            )
        except DataSourceUnavailableError:
            raise
        except Exception as e:
            raise DataSourceUnavailableError(
                f"Portfolio data source not available: {e}"
            ) from e

    async def _scan_household(
        self,
        household: HouseholdRecord,
        now: datetime,
    ) -> list[Alert]:
        holdings = await asyncio.wait_for(
            self._reader.list_holdings(household.household_id),
            timeout=self._config.reader_timeout_seconds,
        )
        if not holdings:
            get_metrics().record_household_skipped("no_holdings")
            return []

        aggregate = PortfolioAggregate.from_household(household, holdings)
        if aggregate.total_value <= 0:
            get_metrics().record_household_skipped("zero_value")
            return []

        return evaluate_household(aggregate, self._config, now)

    async def scan_advisor_portfolios(
        self,
        advisor_id: int | None = None,
        now: datetime | None = None,
    ) -> list[Alert]:
        """Evaluate every compliance rule across households.

        Args:
            advisor_id: Restrict to one advisor's households (default: all).
            now: Evaluation time (default: current UTC time).

        Returns:
            Flat list of alerts. No ordering is guaranteed.

        Raises:
            DataSourceUnavailableError: Households could not be listed, or the
                source went away while reading holdings.
        """
        now = now or datetime.now(timezone.utc)
        start_time = time.monotonic()

        households = await self._list_households(advisor_id)

        alerts: list[Alert] = []
        skipped = 0
        for household in households:
            try:
                alerts.extend(await self._scan_household(household, now))
            except DataSourceUnavailableError:
                raise
            except Exception as e:
                skipped += 1
                get_metrics().record_household_skipped("error")
                logger.warning(
                    "Skipping household %s during compliance scan: %s",
                    household.household_id, e,
                )

        for alert in alerts:
            get_metrics().record_alert(alert.alert_type, alert.severity)

        logger.info(
            "Compliance scan: %d households, %d skipped, %d alerts in %.2fs",
            len(households),
            skipped,
            len(alerts),
            time.monotonic() - start_time,
        )
        return alerts

    async def get_compliance_stats(self, advisor_id: int | None = None) -> ComplianceStats:
        """Run a full scan and reduce it to counts. Not cached."""
        alerts = await self.scan_advisor_portfolios(advisor_id)
        return ComplianceStats.from_alerts(alerts)

    async def get_household_alerts(self, household_id: int) -> list[Alert]:
        """Alerts for one household.

        Runs a full unfiltered scan and filters the result; the household
        filter is not pushed down to the reader.
        """
        alerts = await self.scan_advisor_portfolios()
        return [a for a in alerts if a.household_id == household_id]
