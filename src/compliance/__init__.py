"""Compliance alert engine: rules, alert history and scheduled scans.

Components:
- Alert / AffectedHolding / ComplianceStats: alert records and aggregate counts
- AlertType / AlertSeverity: Literal types for type safety
- VALID_ALERT_TYPES / VALID_SEVERITIES: Frozensets for runtime validation
- ComplianceConfig: Pydantic settings for rule thresholds and schedules
- evaluate_household: the five compliance rules over one household
- ComplianceService: scans, stats and per-household alerts over a reader
- AlertHistoryLedger / InMemoryAlertLedger / RedisAlertLedger: notification throttling
- NotificationChannel / LogChannel / WebhookChannel: delivery channels
- NotificationConfig / NotificationDispatcher: dispatch orchestration
- ComplianceScanJob / AlertHistoryCleanupJob / JobHandle: scheduled jobs
- ComplianceScheduler: owns the scheduler running both jobs
"""

from src.compliance.channels import (
    LogChannel,
    Notification,
    NotificationChannel,
    Recipient,
    WebhookChannel,
)
from src.compliance.config import ComplianceConfig
from src.compliance.dispatcher import NotificationConfig, NotificationDispatcher
from src.compliance.jobs import (
    AlertHistoryCleanupJob,
    ComplianceScanJob,
    JobHandle,
    ScanRunResult,
)
from src.compliance.ledger import (
    AlertHistoryEntry,
    AlertHistoryLedger,
    InMemoryAlertLedger,
    RedisAlertLedger,
)
from src.compliance.rules import evaluate_household
from src.compliance.scheduler import ComplianceScheduler
from src.compliance.schemas import (
    VALID_ALERT_TYPES,
    VALID_SEVERITIES,
    AffectedHolding,
    Alert,
    AlertSeverity,
    AlertType,
    ComplianceStats,
    sort_by_severity,
)
from src.compliance.service import ComplianceService

__all__ = [
    "AffectedHolding",
    "Alert",
    "AlertHistoryCleanupJob",
    "AlertHistoryEntry",
    "AlertHistoryLedger",
    "AlertSeverity",
    "AlertType",
    "ComplianceConfig",
    "ComplianceScanJob",
    "ComplianceScheduler",
    "ComplianceService",
    "ComplianceStats",
    "InMemoryAlertLedger",
    "JobHandle",
    "LogChannel",
    "Notification",
    "NotificationChannel",
    "NotificationConfig",
    "NotificationDispatcher",
    "Recipient",
    "RedisAlertLedger",
    "ScanRunResult",
    "VALID_ALERT_TYPES",
    "VALID_SEVERITIES",
    "WebhookChannel",
    "evaluate_household",
    "sort_by_severity",
]
