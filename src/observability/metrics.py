"""
Prometheus metrics for the compliance alert engine.

Tracks scan outcomes, alert volume by type and severity, skipped
households, notification delivery, and the size of the alert history
ledger. Exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Full scans are I/O bound on the portfolio reader
SCAN_BUCKETS = (0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the compliance engine.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_scan("success", duration=3.2)
        metrics.record_alert("concentration_risk", "critical")
    """

    def __init__(self):
        """Initialize Prometheus metrics."""
        self._server_port: int | None = None

        self.scans = Counter(
            "compliance_scans_total",
            "Total compliance scans run",
            ["trigger", "status"],  # trigger: scheduled, manual, query
        )

        self.scan_duration = Histogram(
            "compliance_scan_duration_seconds",
            "Wall-clock duration of a compliance scan",
            ["trigger"],
            buckets=SCAN_BUCKETS,
        )

        self.alerts_detected = Counter(
            "compliance_alerts_detected_total",
            "Alerts produced by rule evaluation",
            ["alert_type", "severity"],
        )

        self.households_skipped = Counter(
            "compliance_households_skipped_total",
            "Households skipped during a scan",
            ["reason"],  # no_holdings, zero_value, error
        )

        self.notifications = Counter(
            "compliance_notifications_total",
            "Notifications handed to the dispatcher",
            ["recipient", "status"],  # recipient: advisor, owner
        )

        self.ledger_entries = Gauge(
            "compliance_ledger_entries",
            "Tracked alert history entries",
        )

        self.ledger_pruned = Counter(
            "compliance_ledger_pruned_total",
            "Alert history entries removed by the cleanup job",
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start the Prometheus scrape endpoint once per process.

        Later calls are no-ops while the first endpoint is listening.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        if self._server_port is not None:
            logger.debug("Metrics server already listening on port %d", self._server_port)
            return

        port = port or get_settings().metrics_port
        start_http_server(port, registry=REGISTRY)
        self._server_port = port
        logger.info("Metrics endpoint listening on port %d", port)

    # Convenience methods

    def record_scan(
        self,
        status: str,
        duration: float | None = None,
        trigger: str = "scheduled",
    ) -> None:
        """
        Record the outcome of one scan.

        Args:
            status: success or error
            duration: Elapsed seconds, if measured
            trigger: What started the scan
        """
        self.scans.labels(trigger=trigger, status=status).inc()
        if duration is not None:
            self.scan_duration.labels(trigger=trigger).observe(duration)

    def record_alert(self, alert_type: str, severity: str, count: int = 1) -> None:
        """Record alerts produced by the rule evaluator."""
        self.alerts_detected.labels(alert_type=alert_type, severity=severity).inc(count)

    def record_household_skipped(self, reason: str) -> None:
        """Record a household that did not reach rule evaluation."""
        self.households_skipped.labels(reason=reason).inc()

    def record_notification(self, recipient: str, delivered: bool) -> None:
        """Record a notification delivery attempt."""
        status = "delivered" if delivered else "failed"
        self.notifications.labels(recipient=recipient, status=status).inc()

    def set_ledger_size(self, size: int) -> None:
        """Update the tracked-entries gauge."""
        self.ledger_entries.set(size)

    def record_ledger_pruned(self, count: int) -> None:
        """Record entries removed by a cleanup pass."""
        if count > 0:
            self.ledger_pruned.inc(count)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
