"""Scheduled compliance jobs: the daily scan and the hourly history cleanup.

Both jobs are armed on an APScheduler scheduler and hold a ``JobHandle``
to their current trigger. ``initialize()`` stops the previous handle
before arming a new one, so re-initialising (restart, hot reload) never
leaves duplicate triggers behind.

Neither job body ever raises into the scheduler: failures are logged and
reported to the system owner, and the trigger fires again at its next
natural time.
"""

import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger

from src.compliance.channels import Notification
from src.compliance.config import ComplianceConfig
from src.compliance.dispatcher import NotificationDispatcher
from src.compliance.ledger import AlertHistoryLedger
from src.compliance.messages import (
    build_advisor_notification,
    build_failure_notice,
    build_run_summary,
)
from src.compliance.schemas import Alert
from src.compliance.service import ComplianceService
from src.observability.logging import bind_context, clear_context
from src.observability.metrics import get_metrics
from src.portfolio.errors import DataSourceUnavailableError
from src.portfolio.schemas import Advisor

logger = structlog.get_logger(__name__)

SCAN_JOB_ID = "compliance_scan"
CLEANUP_JOB_ID = "alert_history_cleanup"

STATM_PATH = "/proc/self/statm"


class JobHandle:
    """Handle to one armed recurring trigger on a scheduler."""

    def __init__(self, scheduler: BaseScheduler, job_id: str) -> None:
        self._scheduler = scheduler
        self._job_id = job_id

    @property
    def job_id(self) -> str:
        return self._job_id

    @property
    def next_run_time(self) -> datetime | None:
        job = self._scheduler.get_job(self._job_id)
        return getattr(job, "next_run_time", None)

    def stop(self) -> None:
        """Remove the trigger. Safe to call when it is already gone."""
        try:
            self._scheduler.remove_job(self._job_id)
        except JobLookupError:
            logger.debug("Job already removed", job_id=self._job_id)


def current_rss_mb() -> float | None:
    """Resident set size of this process right now, in MB.

    Read from ``/proc/self/statm`` (second field, in pages). Returns None
    where procfs is not available.
    """
    try:
        with open(STATM_PATH) as f:
            resident_pages = int(f.read().split()[1])
    except (OSError, IndexError, ValueError):
        return None
    return resident_pages * os.sysconf("SC_PAGE_SIZE") / (1024 * 1024)


@dataclass
class ScanRunResult:
    """Summary of one compliance scan job run."""

    started_at: datetime
    advisors_scanned: int = 0
    advisors_notified: int = 0
    alerts_found: int = 0
    critical_alerts: int = 0
    notification_failures: int = 0
    errors: list[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return not self.errors


class ComplianceScanJob:
    """Daily scan of every advisor's households with throttled notification.

    Per run: list advisors, scan each advisor's households, pass the
    alerts through the ledger, send each advisor one message covering
    their new alerts, then send the owner a run summary if anything new
    was found.
    """

    def __init__(
        self,
        scheduler: BaseScheduler,
        service: ComplianceService,
        ledger: AlertHistoryLedger,
        dispatcher: NotificationDispatcher,
        config: ComplianceConfig | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._service = service
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._config = config or service.config
        self._handle: JobHandle | None = None

    @property
    def handle(self) -> JobHandle | None:
        return self._handle

    def initialize(self) -> JobHandle:
        """Arm the daily trigger, replacing any trigger armed earlier."""
        if self._handle is not None:
            self._handle.stop()
            logger.info("Stopped existing compliance scan trigger")

        self._scheduler.add_job(
            self.run,
            trigger=CronTrigger(
                hour=self._config.scan_hour,
                minute=self._config.scan_minute,
                timezone=self._config.timezone,
            ),
            id=SCAN_JOB_ID,
            name="Daily compliance scan",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._handle = JobHandle(self._scheduler, SCAN_JOB_ID)

        logger.info(
            "Compliance scan scheduled",
            hour=self._config.scan_hour,
            minute=self._config.scan_minute,
            timezone=self._config.timezone,
        )
        return self._handle

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.stop()
            self._handle = None

    async def run(self, now: datetime | None = None) -> ScanRunResult:
        """Scheduled entry point. Never raises."""
        return await self._execute(now, trigger="scheduled", propagate=False)

    async def trigger_scan(self, now: datetime | None = None) -> ScanRunResult:
        """Run one scan immediately, outside the schedule.

        Behaves like a scheduled firing, except that an unavailable data
        source is re-raised to the caller after the owner is notified.

        Raises:
            DataSourceUnavailableError: The portfolio reader is unavailable.
        """
        logger.info("Manual compliance scan requested")
        return await self._execute(now, trigger="manual", propagate=True)

    async def _execute(
        self,
        now: datetime | None,
        trigger: str,
        propagate: bool,
    ) -> ScanRunResult:
        now = now or datetime.now(timezone.utc)
        result = ScanRunResult(started_at=now)
        start_time = time.monotonic()
        bind_context(job=SCAN_JOB_ID, run_id=uuid.uuid4().hex[:12])

        logger.info("Starting compliance scan", trigger=trigger, started_at=now.isoformat())

        try:
            advisors = await self._service.list_advisors()
            logger.info("Scanning portfolios", advisors=len(advisors))

            for advisor in advisors:
                alerts = await self._service.scan_advisor_portfolios(
                    advisor.advisor_id, now=now,
                )
                result.advisors_scanned += 1

                new_alerts = await self._ledger.admit_and_filter(alerts, now)
                if not new_alerts:
                    continue

                result.alerts_found += len(new_alerts)
                result.critical_alerts += sum(
                    1 for a in new_alerts if a.severity == "critical"
                )
                await self._notify_advisor(advisor, new_alerts, now, result)

            result.elapsed_seconds = time.monotonic() - start_time
            logger.info(
                "Compliance scan complete",
                alerts_found=result.alerts_found,
                critical=result.critical_alerts,
                advisors_scanned=result.advisors_scanned,
                advisors_notified=result.advisors_notified,
                elapsed_seconds=round(result.elapsed_seconds, 2),
            )

            if result.alerts_found > 0:
                await self._deliver(build_run_summary(
                    owner=self._dispatcher.config.owner,
                    total_alerts=result.alerts_found,
                    critical_alerts=result.critical_alerts,
                    advisors_scanned=result.advisors_scanned,
                    advisors_notified=result.advisors_notified,
                    completed_at=datetime.now(timezone.utc),
                ))

            get_metrics().record_scan("success", result.elapsed_seconds, trigger=trigger)
            get_metrics().set_ledger_size(await self._ledger.size())

        except Exception as e:
            result.elapsed_seconds = time.monotonic() - start_time
            result.errors.append(f"{type(e).__name__}: {e}")
            get_metrics().record_scan("error", result.elapsed_seconds, trigger=trigger)
            logger.exception("Compliance scan failed", error=str(e))

            await self._deliver(build_failure_notice(
                owner=self._dispatcher.config.owner,
                job_name="Compliance Scan",
                error=e,
                failed_at=datetime.now(timezone.utc),
            ))

            if propagate and isinstance(e, DataSourceUnavailableError):
                raise
        finally:
            clear_context()

        return result

    async def _notify_advisor(
        self,
        advisor: Advisor,
        new_alerts: list[Alert],
        now: datetime,
        result: ScanRunResult,
    ) -> None:
        notification = build_advisor_notification(
            advisor,
            new_alerts,
            max_warning_lines=self._dispatcher.config.max_warning_lines,
            now=now,
        )
        if notification is None:
            # Only info alerts: nothing to push
            return

        if await self._deliver(notification):
            result.advisors_notified += 1
            logger.info(
                "Notified advisor",
                advisor_id=advisor.advisor_id,
                advisor=advisor.display_name,
                alerts=len(new_alerts),
            )
        else:
            result.notification_failures += 1

    async def _deliver(self, notification: Notification) -> bool:
        try:
            return await self._dispatcher.deliver(notification)
        except Exception as e:
            logger.error(
                "Notification dispatch failed",
                title=notification.title,
                recipient=notification.recipient.name,
                error=str(e),
            )
            return False


class AlertHistoryCleanupJob:
    """Hourly pruning of alert history entries past the retention window."""

    def __init__(
        self,
        scheduler: BaseScheduler,
        ledger: AlertHistoryLedger,
        dispatcher: NotificationDispatcher | None = None,
        config: ComplianceConfig | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._config = config or ComplianceConfig()
        self._handle: JobHandle | None = None

    @property
    def handle(self) -> JobHandle | None:
        return self._handle

    def initialize(self) -> JobHandle:
        """Arm the hourly trigger, replacing any trigger armed earlier."""
        if self._handle is not None:
            self._handle.stop()
            logger.info("Stopped existing alert history cleanup trigger")

        self._scheduler.add_job(
            self.run,
            trigger=CronTrigger(
                minute=self._config.cleanup_minute,
                timezone=self._config.timezone,
            ),
            id=CLEANUP_JOB_ID,
            name="Hourly alert history cleanup",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._handle = JobHandle(self._scheduler, CLEANUP_JOB_ID)

        logger.info("Alert history cleanup scheduled", minute=self._config.cleanup_minute)
        return self._handle

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.stop()
            self._handle = None

    async def run(self, now: datetime | None = None) -> int:
        """Prune expired history entries. Never raises.

        Returns:
            Number of entries removed (0 on failure).
        """
        try:
            removed = await self._ledger.prune(now)
            remaining = await self._ledger.size()
        except Exception as e:
            logger.exception("Alert history cleanup failed", error=str(e))
            await self._report_failure(e)
            return 0

        get_metrics().record_ledger_pruned(removed)
        get_metrics().set_ledger_size(remaining)
        rss_mb = current_rss_mb()
        logger.info(
            "Alert history cleanup complete",
            removed=removed,
            remaining=remaining,
            rss_mb=round(rss_mb, 1) if rss_mb is not None else None,
        )
        return removed

    async def _report_failure(self, error: Exception) -> None:
        if self._dispatcher is None:
            return
        notice = build_failure_notice(
            owner=self._dispatcher.config.owner,
            job_name="Alert History Cleanup",
            error=error,
            failed_at=datetime.now(timezone.utc),
        )
        try:
            await self._dispatcher.deliver(notice)
        except Exception as e:
            logger.error("Failure notice dispatch failed", error=str(e))
