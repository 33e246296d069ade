"""Compliance engine configuration.

Rule thresholds, the alert re-notification and retention windows, and
the cadence of the two scheduled jobs. Defaults are the firm's
compliance policy; all settings can be overridden via ``COMPLIANCE_*``
environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ComplianceConfig(BaseSettings):
    """Configuration for rule evaluation, alert history and scheduling."""

    model_config = SettingsConfigDict(
        env_prefix="COMPLIANCE_",
        case_sensitive=False,
        extra="ignore",
    )

    # Concentration risk: single holding as % of portfolio
    concentration_warning_pct: float = Field(
        default=10.0,
        gt=0.0,
        le=100.0,
        description="Holding percentage above which concentration_risk fires (warning)",
    )
    concentration_critical_pct: float = Field(
        default=20.0,
        gt=0.0,
        le=100.0,
        description="Holding percentage above which concentration_risk becomes critical",
    )

    # Suitability: equity % bands per risk tolerance
    conservative_max_equity_pct: float = Field(
        default=40.0,
        ge=0.0,
        le=100.0,
        description="Maximum equity percentage for conservative households",
    )
    moderate_min_equity_pct: float = Field(
        default=40.0,
        ge=0.0,
        le=100.0,
        description="Minimum equity percentage for moderate households",
    )
    moderate_max_equity_pct: float = Field(
        default=70.0,
        ge=0.0,
        le=100.0,
        description="Maximum equity percentage for moderate households",
    )
    aggressive_min_equity_pct: float = Field(
        default=70.0,
        ge=0.0,
        le=100.0,
        description="Minimum equity percentage for aggressive households",
    )

    # Annual review
    review_due_days: int = Field(
        default=365,
        ge=1,
        description="Days since last review above which annual_review_due fires (warning)",
    )
    review_critical_days: int = Field(
        default=400,
        ge=1,
        description="Days since last review above which annual_review_due becomes critical",
    )
    review_missing_days: int = Field(
        default=999,
        ge=1,
        description="Days assumed when a household has no review on record",
    )

    # Large position (informational)
    large_position_min_portfolio: float = Field(
        default=500_000.0,
        ge=0.0,
        description="Portfolio value above which large positions are evaluated",
    )
    large_position_min_value: float = Field(
        default=100_000.0,
        ge=0.0,
        description="Position value above which a holding counts as large",
    )
    large_position_min_pct: float = Field(
        default=5.0,
        ge=0.0,
        le=100.0,
        description="Portfolio percentage above which a large position is reported",
    )

    # Underperforming (informational)
    underperforming_loss_pct: float = Field(
        default=-20.0,
        le=0.0,
        description="Gain/loss percentage below which a holding is underperforming",
    )
    underperforming_min_value: float = Field(
        default=10_000.0,
        ge=0.0,
        description="Position value above which underperformance is reported",
    )

    # Alert history ledger
    renotify_after_days: int = Field(
        default=7,
        ge=1,
        le=90,
        description="Days before a still-present alert is notified again",
    )
    history_retention_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Days after first detection before a history entry is pruned",
    )

    # Scheduling
    scan_hour: int = Field(default=2, ge=0, le=23, description="Daily scan hour")
    scan_minute: int = Field(default=0, ge=0, le=59, description="Daily scan minute")
    cleanup_minute: int = Field(
        default=0,
        ge=0,
        le=59,
        description="Minute past each hour at which the history cleanup runs",
    )
    timezone: str = Field(default="UTC", description="Timezone for job triggers")

    # Portfolio reader
    reader_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Timeout for a single portfolio reader call",
    )
    advisor_roles: list[str] = Field(
        default=["advisor", "admin"],
        description="User roles enumerated as advisors by the scheduled scan",
    )
