"""Tests for the scheduled compliance scan and history cleanup jobs."""

import os
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

import src.compliance.jobs as jobs_module
from conftest import NOW, balanced_holdings, make_holding
from src.compliance.channels import Notification, NotificationChannel
from src.compliance.config import ComplianceConfig
from src.compliance.dispatcher import NotificationConfig, NotificationDispatcher
from src.compliance.jobs import (
    CLEANUP_JOB_ID,
    SCAN_JOB_ID,
    AlertHistoryCleanupJob,
    ComplianceScanJob,
    JobHandle,
    current_rss_mb,
)
from src.compliance.ledger import InMemoryAlertLedger
from src.compliance.service import ComplianceService
from src.portfolio.errors import DataSourceUnavailableError
from src.portfolio.reader import InMemoryPortfolioReader
from src.portfolio.schemas import Advisor, HouseholdRecord


class RecordingChannel(NotificationChannel):
    """Channel that records every notification it is given."""

    def __init__(self, succeed: bool = True):
        self.sent: list[Notification] = []
        self.succeed = succeed

    @property
    def name(self) -> str:
        return "recording"

    async def send(self, notification: Notification) -> bool:
        self.sent.append(notification)
        return self.succeed

    def titles_for(self, kind: str) -> list[str]:
        return [n.title for n in self.sent if n.recipient.kind == kind]


# ── Fixtures ────────────────────────────────────────────


@pytest.fixture
def scheduler():
    # Never started: jobs stay pending, which is enough to inspect them
    return AsyncIOScheduler()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def dispatcher(channel):
    return NotificationDispatcher(
        [channel],
        NotificationConfig(retry_max_attempts=1, retry_delays=[0.0]),
    )


@pytest.fixture
def ledger():
    return InMemoryAlertLedger()


@pytest.fixture
def scan_job(scheduler, reader, ledger, dispatcher):
    return ComplianceScanJob(scheduler, ComplianceService(reader), ledger, dispatcher)


# ── JobHandle / initialize ──────────────────────────────


class TestJobHandle:
    """Tests for JobHandle."""

    def test_stop_removes_job(self, scheduler):
        scheduler.add_job(lambda: None, "interval", minutes=5, id="x")
        handle = JobHandle(scheduler, "x")

        handle.stop()
        assert scheduler.get_jobs() == []

    def test_stop_twice_is_safe(self, scheduler):
        handle = JobHandle(scheduler, "missing")
        handle.stop()
        handle.stop()

    def test_next_run_time_missing_job(self, scheduler):
        assert JobHandle(scheduler, "missing").next_run_time is None


class TestScanJobInitialize:
    """Tests for ComplianceScanJob trigger management."""

    def test_initialize_arms_daily_trigger(self, scan_job, scheduler):
        handle = scan_job.initialize()

        jobs = scheduler.get_jobs()
        assert [j.id for j in jobs] == [SCAN_JOB_ID]
        assert handle.job_id == SCAN_JOB_ID
        assert "hour='2'" in str(jobs[0].trigger)
        assert "minute='0'" in str(jobs[0].trigger)

    def test_initialize_is_idempotent(self, scan_job, scheduler):
        scan_job.initialize()
        scan_job.initialize()
        scan_job.initialize()

        assert [j.id for j in scheduler.get_jobs()] == [SCAN_JOB_ID]

    def test_configured_time(self, scheduler, reader, ledger, dispatcher):
        config = ComplianceConfig(scan_hour=5, scan_minute=30)
        job = ComplianceScanJob(scheduler, ComplianceService(reader, config), ledger, dispatcher)
        job.initialize()

        trigger = str(scheduler.get_jobs()[0].trigger)
        assert "hour='5'" in trigger
        assert "minute='30'" in trigger

    def test_stop(self, scan_job, scheduler):
        scan_job.initialize()
        scan_job.stop()

        assert scheduler.get_jobs() == []
        assert scan_job.handle is None


# ── Scan runs ───────────────────────────────────────────


class TestScanJobRun:
    """Tests for ComplianceScanJob.run."""

    @pytest.mark.asyncio
    async def test_first_run_notifies_advisor_and_owner(self, scan_job, channel):
        result = await scan_job.run(now=NOW)

        assert result.succeeded
        assert result.advisors_scanned == 1
        assert result.advisors_notified == 1
        assert result.alerts_found == 1
        assert result.critical_alerts == 1
        assert channel.titles_for("advisor") == [
            "Compliance Alert Summary - 1 Critical, 0 Warnings"
        ]
        assert channel.titles_for("owner") == ["Nightly Compliance Scan Complete"]

    @pytest.mark.asyncio
    async def test_throttled_then_renotified(self, scan_job, channel):
        await scan_job.run(now=NOW)
        channel.sent.clear()

        # Three days later the unchanged alert is throttled
        second = await scan_job.run(now=NOW + timedelta(days=3))
        assert second.alerts_found == 0
        assert channel.sent == []

        # Eight days after the first notification it is sent again
        third = await scan_job.run(now=NOW + timedelta(days=8))
        assert third.alerts_found == 1
        assert len(channel.titles_for("advisor")) == 1
        assert "CRITICAL ALERTS (1):" in channel.sent[0].body

    @pytest.mark.asyncio
    async def test_info_only_alerts_not_pushed(
        self, scheduler, ledger, dispatcher, channel, advisor,
        concentrated_household, concentrated_holdings,
    ):
        # Advisor 9's only alert is an informational underperformer
        losing = make_holding("INTC", 15_000.0, shares=100, cost_basis=250.0)
        reader = InMemoryPortfolioReader(
            advisors=[advisor, Advisor(advisor_id=9, name="Quiet Advisor")],
        )
        reader.add_household(concentrated_household, concentrated_holdings)
        reader.add_household(
            HouseholdRecord(
                household_id=50,
                advisor_id=9,
                risk_tolerance="moderate",
                last_review_date=NOW,
            ),
            [losing] + balanced_holdings(total=185_000.0),
        )
        job = ComplianceScanJob(scheduler, ComplianceService(reader), ledger, dispatcher)

        result = await job.run(now=NOW)

        assert result.advisors_scanned == 2
        assert result.alerts_found == 2
        assert result.advisors_notified == 1
        assert len(channel.titles_for("advisor")) == 1

    @pytest.mark.asyncio
    async def test_unavailable_source_reported_not_raised(self, scan_job, reader, channel):
        reader.available = False

        result = await scan_job.run(now=NOW)

        assert not result.succeeded
        assert "DataSourceUnavailableError" in result.errors[0]
        assert channel.titles_for("owner") == ["Compliance Scan Failed"]
        assert channel.titles_for("advisor") == []

    @pytest.mark.asyncio
    async def test_trigger_scan_propagates_unavailable_source(self, scan_job, reader, channel):
        reader.available = False

        with pytest.raises(DataSourceUnavailableError):
            await scan_job.trigger_scan(now=NOW)

        assert channel.titles_for("owner") == ["Compliance Scan Failed"]

    @pytest.mark.asyncio
    async def test_trigger_scan_shares_ledger_with_schedule(self, scan_job, channel):
        await scan_job.trigger_scan(now=NOW)
        result = await scan_job.run(now=NOW + timedelta(hours=1))

        assert result.alerts_found == 0

    @pytest.mark.asyncio
    async def test_failed_delivery_counted(self, scheduler, reader, ledger):
        channel = RecordingChannel(succeed=False)
        dispatcher = NotificationDispatcher(
            [channel], NotificationConfig(retry_max_attempts=1, retry_delays=[0.0]),
        )
        job = ComplianceScanJob(scheduler, ComplianceService(reader), ledger, dispatcher)

        result = await job.run(now=NOW)

        assert result.succeeded
        assert result.advisors_notified == 0
        assert result.notification_failures == 1
        # Admitted before dispatch, so not retried on the next run
        assert (await ledger.get("conc_42_AAPL")) is not None

    @pytest.mark.asyncio
    async def test_dispatcher_exception_does_not_stop_scan(self, scheduler, reader, ledger):
        dispatcher = NotificationDispatcher(
            [RecordingChannel()], NotificationConfig(retry_max_attempts=1, retry_delays=[0.0]),
        )
        dispatcher.deliver = AsyncMock(side_effect=RuntimeError("transport broken"))
        job = ComplianceScanJob(scheduler, ComplianceService(reader), ledger, dispatcher)

        result = await job.run(now=NOW)

        assert result.succeeded
        assert result.notification_failures == 1


# ── Cleanup job ─────────────────────────────────────────


class TestAlertHistoryCleanupJob:
    """Tests for AlertHistoryCleanupJob."""

    def test_initialize_hourly_and_idempotent(self, scheduler, ledger):
        job = AlertHistoryCleanupJob(scheduler, ledger)
        job.initialize()
        job.initialize()

        jobs = scheduler.get_jobs()
        assert [j.id for j in jobs] == [CLEANUP_JOB_ID]
        assert "minute='0'" in str(jobs[0].trigger)
        assert "hour" not in str(jobs[0].trigger)

    @pytest.mark.asyncio
    async def test_run_prunes_expired(self, scheduler, scan_job, ledger):
        await scan_job.run(now=NOW)
        job = AlertHistoryCleanupJob(scheduler, ledger)

        assert await job.run(now=NOW + timedelta(days=29)) == 0
        assert await job.run(now=NOW + timedelta(days=30)) == 1
        assert await ledger.size() == 0

    @pytest.mark.asyncio
    async def test_failure_reported_to_owner(self, scheduler, dispatcher, channel):
        ledger = AsyncMock()
        ledger.prune = AsyncMock(side_effect=ConnectionError("redis down"))
        job = AlertHistoryCleanupJob(scheduler, ledger, dispatcher)

        assert await job.run(now=NOW) == 0
        assert channel.titles_for("owner") == ["Alert History Cleanup Failed"]

    @pytest.mark.asyncio
    async def test_failure_without_dispatcher(self, scheduler):
        ledger = AsyncMock()
        ledger.prune = AsyncMock(side_effect=ConnectionError("redis down"))
        job = AlertHistoryCleanupJob(scheduler, ledger)

        assert await job.run(now=NOW) == 0

    @pytest.mark.asyncio
    async def test_run_logs_current_rss(self, scheduler, ledger):
        job = AlertHistoryCleanupJob(scheduler, ledger)

        with patch("src.compliance.jobs.current_rss_mb", return_value=61.24), \
                patch("src.compliance.jobs.logger") as log:
            await job.run(now=NOW)

        fields = log.info.call_args.kwargs
        assert fields["rss_mb"] == 61.2
        assert fields["removed"] == 0


class TestCurrentRss:
    """Tests for current_rss_mb."""

    def test_reads_resident_pages(self, tmp_path, monkeypatch):
        statm = tmp_path / "statm"
        statm.write_text("12000 2560 300 10 0 900 0\n")
        monkeypatch.setattr(jobs_module, "STATM_PATH", str(statm))

        expected = 2560 * os.sysconf("SC_PAGE_SIZE") / (1024 * 1024)
        assert current_rss_mb() == pytest.approx(expected)

    def test_follows_resident_size_down(self, tmp_path, monkeypatch):
        statm = tmp_path / "statm"
        monkeypatch.setattr(jobs_module, "STATM_PATH", str(statm))

        statm.write_text("12000 100000 300 10 0 900 0\n")
        before = current_rss_mb()
        statm.write_text("12000 15000 300 10 0 900 0\n")

        assert current_rss_mb() < before

    def test_missing_procfs(self, tmp_path, monkeypatch):
        monkeypatch.setattr(jobs_module, "STATM_PATH", str(tmp_path / "absent"))
        assert current_rss_mb() is None

    def test_garbled_statm(self, tmp_path, monkeypatch):
        statm = tmp_path / "statm"
        statm.write_text("garbage\n")
        monkeypatch.setattr(jobs_module, "STATM_PATH", str(statm))
        assert current_rss_mb() is None
