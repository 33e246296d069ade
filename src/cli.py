"""
Command-line interface for the compliance alert engine.

Provides commands to run compliance scans on demand, inspect alerts and
statistics, maintain alert history, and run the nightly scheduler.

Usage:
    compliance-engine scan                  # Scan every household
    compliance-engine stats                 # Alert counts by severity and type
    compliance-engine household-alerts 42   # Alerts for one household
    compliance-engine trigger-scan          # Run the notifying scan job now
    compliance-engine cleanup-history       # Prune expired alert history
    compliance-engine scheduler             # Run scheduled jobs until stopped
"""

import asyncio
import json
import signal
import sys
from typing import Any

import click

from src.config.settings import get_settings
from src.observability.logging import setup_logging
from src.observability.metrics import get_metrics

SEVERITY_COLORS = {"critical": "red", "warning": "yellow", "info": "cyan"}


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Compliance Engine - Nightly portfolio compliance monitoring."""
    setup_logging("DEBUG" if debug else None)


async def _open_service(config: Any) -> tuple[Any, Any]:
    """Connect to the CRM database and build a compliance service over it."""
    from src.compliance.service import ComplianceService
    from src.portfolio.repository import PostgresPortfolioReader
    from src.storage.database import Database

    db = Database()
    await db.connect()
    reader = PostgresPortfolioReader(db, advisor_roles=config.advisor_roles)
    return db, ComplianceService(reader, config)


async def _require_healthy(db: Any) -> None:
    """Raise DataSourceUnavailableError unless the CRM answers a trivial query."""
    from src.portfolio.errors import DataSourceUnavailableError

    if not await db.health_check():
        raise DataSourceUnavailableError("CRM database health check failed")


def _build_ledger(config: Any) -> tuple[Any, Any]:
    """Alert history ledger for the configured backend, plus its Redis client if any."""
    from src.compliance.ledger import InMemoryAlertLedger, RedisAlertLedger

    settings = get_settings()
    if not settings.uses_redis_ledger:
        return InMemoryAlertLedger.from_config(config), None

    import redis.asyncio as redis

    redis_client = redis.from_url(
        str(settings.redis_url),
        encoding="utf-8",
        decode_responses=True,
    )
    ledger = RedisAlertLedger.from_config(redis_client, config, key=settings.alert_ledger_key)
    return ledger, redis_client


def _echo_alert(idx: int, alert: Any) -> None:
    color = SEVERITY_COLORS.get(alert.severity, "white")
    click.echo(click.style(f"\n{idx}. [{alert.severity.upper()}] {alert.title}", fg=color))
    click.echo(f"   Household: {alert.household_name} (#{alert.household_id})")
    click.echo(f"   Advisor:   {alert.advisor_name} (#{alert.advisor_id})")
    click.echo(f"   Issue:     {alert.description}")
    click.echo(f"   Action:    {alert.recommendation}")
    for holding in alert.affected_holdings:
        click.echo(
            f"   - {holding.ticker}: {holding.percentage:.1f}% (${holding.value:,.0f})"
        )


def _echo_alerts(alerts: list[Any], as_json: bool) -> None:
    from src.compliance.schemas import sort_by_severity

    ordered = sort_by_severity(alerts)
    if as_json:
        click.echo(json.dumps([a.to_dict() for a in ordered], indent=2))
        return

    if not ordered:
        click.echo("No compliance alerts found.")
        return

    for idx, alert in enumerate(ordered, 1):
        _echo_alert(idx, alert)

    click.echo(f"\n{'-' * 60}")
    click.echo(f"Found {len(ordered)} alerts")


@main.command()
@click.option("--advisor-id", type=int, default=None, help="Restrict to one advisor")
@click.option("--json", "as_json", is_flag=True, help="Output alerts as JSON")
def scan(advisor_id: int | None, as_json: bool) -> None:
    """Evaluate every compliance rule and print the alerts.

    Read-only: alert history is not consulted or updated.

    Example:
        compliance-engine scan --advisor-id 7
    """
    from src.compliance.config import ComplianceConfig
    from src.portfolio.errors import DataSourceUnavailableError

    async def run():
        db, service = await _open_service(ComplianceConfig())
        try:
            alerts = await service.scan_advisor_portfolios(advisor_id)
        except DataSourceUnavailableError as e:
            click.echo(click.style(f"Scan failed: {e}", fg="red"), err=True)
            sys.exit(1)
        finally:
            await db.close()

        _echo_alerts(alerts, as_json)

    asyncio.run(run())


@main.command()
@click.option("--advisor-id", type=int, default=None, help="Restrict to one advisor")
def stats(advisor_id: int | None) -> None:
    """Show alert counts by severity and type."""
    from src.compliance.config import ComplianceConfig
    from src.portfolio.errors import DataSourceUnavailableError

    async def run():
        db, service = await _open_service(ComplianceConfig())
        try:
            result = await service.get_compliance_stats(advisor_id)
        except DataSourceUnavailableError as e:
            click.echo(click.style(f"Stats failed: {e}", fg="red"), err=True)
            sys.exit(1)
        finally:
            await db.close()

        click.echo("\nCompliance Statistics:")
        click.echo("-" * 40)
        click.echo(f"  Total alerts:        {result.total_alerts}")
        click.echo(click.style(f"  Critical:            {result.critical_alerts}", fg="red"))
        click.echo(click.style(f"  Warning:             {result.warning_alerts}", fg="yellow"))
        click.echo(f"  Info:                {result.info_alerts}")
        click.echo(f"  Households affected: {result.households_affected}")
        click.echo("\nBy type:")
        for alert_type, count in result.alerts_by_type.items():
            click.echo(f"  {alert_type:<22} {count}")

    asyncio.run(run())


@main.command("household-alerts")
@click.argument("household_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output alerts as JSON")
def household_alerts(household_id: int, as_json: bool) -> None:
    """Show the alerts for one household."""
    from src.compliance.config import ComplianceConfig
    from src.portfolio.errors import DataSourceUnavailableError

    async def run():
        db, service = await _open_service(ComplianceConfig())
        try:
            alerts = await service.get_household_alerts(household_id)
        except DataSourceUnavailableError as e:
            click.echo(click.style(f"Lookup failed: {e}", fg="red"), err=True)
            sys.exit(1)
        finally:
            await db.close()

        _echo_alerts(alerts, as_json)

    asyncio.run(run())


@main.command("trigger-scan")
def trigger_scan() -> None:
    """Run the notifying compliance scan job once, immediately.

    Same as a scheduled firing: alerts pass through alert history and
    advisors are notified. Exits non-zero if the data source is down.
    """
    from src.compliance.config import ComplianceConfig
    from src.compliance.dispatcher import NotificationDispatcher
    from src.compliance.scheduler import ComplianceScheduler
    from src.portfolio.errors import DataSourceUnavailableError

    async def run():
        config = ComplianceConfig()
        db, service = await _open_service(config)
        ledger, redis_client = _build_ledger(config)

        try:
            scheduler = ComplianceScheduler(
                service, ledger, NotificationDispatcher(), config,
            )
            result = await scheduler.trigger_scan()
        except DataSourceUnavailableError as e:
            click.echo(click.style(f"Scan failed: {e}", fg="red"), err=True)
            sys.exit(1)
        finally:
            if redis_client is not None:
                await redis_client.aclose()
            await db.close()

        click.echo("\nCompliance Scan Results:")
        click.echo("-" * 40)
        click.echo(f"  Advisors scanned:  {result.advisors_scanned}")
        click.echo(f"  Advisors notified: {result.advisors_notified}")
        click.echo(f"  New alerts:        {result.alerts_found}")
        click.echo(f"  Critical alerts:   {result.critical_alerts}")
        click.echo(f"  Elapsed:           {result.elapsed_seconds:.2f}s")
        if result.errors:
            for error in result.errors:
                click.echo(click.style(f"  Error: {error}", fg="red"))
            sys.exit(1)

    asyncio.run(run())


@main.command("cleanup-history")
def cleanup_history() -> None:
    """Prune alert history entries past the retention window.

    Only meaningful with the Redis ledger backend; the in-memory ledger
    lives inside the scheduler process.
    """
    from apscheduler.schedulers.asyncio import AsyncIOScheduler

    from src.compliance.config import ComplianceConfig
    from src.compliance.jobs import AlertHistoryCleanupJob

    async def run():
        config = ComplianceConfig()
        ledger, redis_client = _build_ledger(config)
        try:
            job = AlertHistoryCleanupJob(AsyncIOScheduler(), ledger, config=config)
            removed = await job.run()
            remaining = await ledger.size()
        finally:
            if redis_client is not None:
                await redis_client.aclose()

        click.echo(f"\nRemoved {removed} expired alert history entries")
        click.echo(f"Entries remaining: {remaining}")

    asyncio.run(run())


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def scheduler(metrics: bool, metrics_port: int | None) -> None:
    """Run the nightly scan and hourly cleanup until stopped."""
    import structlog

    from src.compliance.config import ComplianceConfig
    from src.compliance.dispatcher import NotificationDispatcher
    from src.compliance.scheduler import ComplianceScheduler
    from src.portfolio.errors import DataSourceUnavailableError

    logger = structlog.get_logger()

    async def run():
        config = ComplianceConfig()
        db, service = await _open_service(config)
        try:
            await _require_healthy(db)
        except DataSourceUnavailableError as e:
            await db.close()
            click.echo(click.style(f"Scheduler not started: {e}", fg="red"), err=True)
            sys.exit(1)

        ledger, redis_client = _build_ledger(config)

        if metrics:
            get_metrics().start_server(port=metrics_port)

        compliance_scheduler = ComplianceScheduler(
            service, ledger, NotificationDispatcher(), config,
        )
        stop_event = asyncio.Event()

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

        try:
            compliance_scheduler.start()
            for job in compliance_scheduler.scheduler.get_jobs():
                logger.info("Job scheduled", job_id=job.id, next_run=str(job.next_run_time))
            await stop_event.wait()
        finally:
            logger.info("Shutting down compliance scheduler")
            compliance_scheduler.shutdown()
            if redis_client is not None:
                await redis_client.aclose()
            await db.close()

    asyncio.run(run())


if __name__ == "__main__":
    main()
