"""Schema definitions for compliance alerts and alert statistics.

An Alert is an immutable value produced by a rule for one household. Its
``alert_id`` is deterministic (rule prefix, household, optional ticker),
which is what lets the alert history ledger recognise the same issue
across independent scan runs. ``created_at`` is the evaluation time and
is recomputed on every scan.
"""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

AlertType = Literal[
    "concentration_risk",
    "suitability_mismatch",
    "annual_review_due",
    "large_position",
    "underperforming",
]

VALID_ALERT_TYPES: frozenset[str] = frozenset({
    "concentration_risk",
    "suitability_mismatch",
    "annual_review_due",
    "large_position",
    "underperforming",
})

AlertSeverity = Literal["critical", "warning", "info"]

VALID_SEVERITIES: frozenset[str] = frozenset({
    "critical",
    "warning",
    "info",
})

# Urgency order, most urgent first
SEVERITY_RANK: dict[str, int] = {
    "critical": 0,
    "warning": 1,
    "info": 2,
}

# Alert id prefix per rule
ALERT_ID_PREFIXES: dict[str, str] = {
    "concentration_risk": "conc",
    "suitability_mismatch": "suit",
    "annual_review_due": "review",
    "large_position": "large",
    "underperforming": "under",
}


def make_alert_id(alert_type: str, household_id: int, key: str | None = None) -> str:
    """Build the deterministic identity of an alert.

    Args:
        alert_type: Rule that produced the alert.
        household_id: Household the alert is about.
        key: Disambiguator for rules that fire per holding (the ticker).

    Returns:
        e.g. ``conc_42_AAPL`` or ``review_42``.
    """
    prefix = ALERT_ID_PREFIXES[alert_type]
    if key is None:
        return f"{prefix}_{household_id}"
    return f"{prefix}_{household_id}_{key}"


@dataclass(frozen=True)
class AffectedHolding:
    """A holding referenced by an alert."""

    ticker: str
    percentage: float
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticker": self.ticker,
            "percentage": self.percentage,
            "value": self.value,
        }


@dataclass(frozen=True)
class Alert:
    """A compliance issue detected for one household.

    Attributes:
        alert_id: Deterministic identity, the join key into alert history.
        alert_type: Rule that fired.
        severity: Urgency level (critical, warning, info).
        household_id: Household the alert is about.
        household_name: Household display name.
        advisor_id: Advisor responsible for the household.
        advisor_name: Advisor display name.
        title: Short human-readable summary.
        description: What was detected.
        recommendation: Suggested next step for the advisor.
        affected_holdings: Holdings involved, for per-holding rules.
        created_at: When the rule was evaluated.
    """

    alert_id: str
    alert_type: str
    severity: str
    household_id: int
    household_name: str
    advisor_id: int
    advisor_name: str
    title: str
    description: str
    recommendation: str
    affected_holdings: tuple[AffectedHolding, ...] = ()
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        if self.alert_type not in VALID_ALERT_TYPES:
            raise ValueError(
                f"Invalid alert_type {self.alert_type!r}. "
                f"Must be one of: {sorted(VALID_ALERT_TYPES)}"
            )
        if self.severity not in VALID_SEVERITIES:
            raise ValueError(
                f"Invalid severity {self.severity!r}. "
                f"Must be one of: {sorted(VALID_SEVERITIES)}"
            )

    @property
    def severity_rank(self) -> int:
        return SEVERITY_RANK[self.severity]

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "alert_id": self.alert_id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "household_id": self.household_id,
            "household_name": self.household_name,
            "advisor_id": self.advisor_id,
            "advisor_name": self.advisor_name,
            "title": self.title,
            "description": self.description,
            "recommendation": self.recommendation,
            "affected_holdings": [h.to_dict() for h in self.affected_holdings],
            "created_at": self.created_at.isoformat(),
        }


def sort_by_severity(alerts: Iterable[Alert]) -> list[Alert]:
    """Order alerts most urgent first; stable within a severity."""
    return sorted(alerts, key=lambda a: a.severity_rank)


@dataclass
class ComplianceStats:
    """Counts over a batch of alerts. A projection with no lifecycle of its own."""

    total_alerts: int = 0
    critical_alerts: int = 0
    warning_alerts: int = 0
    info_alerts: int = 0
    alerts_by_type: dict[str, int] = field(
        default_factory=lambda: {t: 0 for t in sorted(VALID_ALERT_TYPES)}
    )
    households_affected: int = 0

    @classmethod
    def from_alerts(cls, alerts: Iterable[Alert]) -> "ComplianceStats":
        """Reduce a batch of alerts to severity, type and household counts.

        Args:
            alerts: Alerts from one scan.

        Returns:
            ComplianceStats with every alert type present (zero if unseen).
        """
        alerts = list(alerts)
        by_severity = Counter(a.severity for a in alerts)
        by_type = Counter(a.alert_type for a in alerts)

        return cls(
            total_alerts=len(alerts),
            critical_alerts=by_severity["critical"],
            warning_alerts=by_severity["warning"],
            info_alerts=by_severity["info"],
            alerts_by_type={t: by_type[t] for t in sorted(VALID_ALERT_TYPES)},
            households_affected=len({a.household_id for a in alerts}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_alerts": self.total_alerts,
            "critical_alerts": self.critical_alerts,
            "warning_alerts": self.warning_alerts,
            "info_alerts": self.info_alerts,
            "alerts_by_type": dict(self.alerts_by_type),
            "households_affected": self.households_affected,
        }
