"""Owns the APScheduler instance running the compliance jobs."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import BaseScheduler

from src.compliance.config import ComplianceConfig
from src.compliance.dispatcher import NotificationDispatcher
from src.compliance.jobs import AlertHistoryCleanupJob, ComplianceScanJob, ScanRunResult
from src.compliance.ledger import AlertHistoryLedger
from src.compliance.service import ComplianceService

logger = logging.getLogger(__name__)


class ComplianceScheduler:
    """Wires the daily scan and the hourly cleanup onto one scheduler.

    ``initialize()`` may be called any number of times; each job stops
    its previous trigger first, so exactly one trigger per job is armed.
    """

    def __init__(
        self,
        service: ComplianceService,
        ledger: AlertHistoryLedger,
        dispatcher: NotificationDispatcher,
        config: ComplianceConfig | None = None,
        scheduler: BaseScheduler | None = None,
    ) -> None:
        self._config = config or service.config
        self._scheduler = scheduler or AsyncIOScheduler(timezone=self._config.timezone)
        self._ledger = ledger
        self.scan_job = ComplianceScanJob(
            self._scheduler, service, ledger, dispatcher, self._config,
        )
        self.cleanup_job = AlertHistoryCleanupJob(
            self._scheduler, ledger, dispatcher, self._config,
        )

    @property
    def scheduler(self) -> BaseScheduler:
        return self._scheduler

    @property
    def ledger(self) -> AlertHistoryLedger:
        return self._ledger

    def initialize(self) -> None:
        """Arm both recurring triggers, replacing any from earlier calls."""
        self.scan_job.initialize()
        self.cleanup_job.initialize()
        logger.info("Compliance jobs initialized: %d scheduled", len(self._scheduler.get_jobs()))

    def start(self) -> None:
        """Initialize jobs and start the scheduler. Requires a running event loop."""
        self.initialize()
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Compliance scheduler started")

    def shutdown(self, wait: bool = False) -> None:
        self.scan_job.stop()
        self.cleanup_job.stop()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Compliance scheduler stopped")

    async def trigger_scan(self) -> ScanRunResult:
        """Run the compliance scan immediately, outside the schedule."""
        return await self.scan_job.trigger_scan()
