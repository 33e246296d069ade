"""Rendering of compliance notifications.

Advisors get one consolidated message per scan covering all of their
newly relevant alerts, with critical and warning alerts in separate
sections. Info alerts are scan output only and never appear in advisor
messages. The system owner gets a run summary or a failure notice.
"""

from datetime import datetime, timezone

from src.compliance.channels import Notification, Recipient
from src.compliance.schemas import Alert
from src.portfolio.schemas import Advisor


def advisor_recipient(advisor: Advisor) -> Recipient:
    return Recipient(
        kind="advisor",
        name=advisor.display_name,
        recipient_id=advisor.advisor_id,
        address=advisor.email,
    )


def build_advisor_notification(
    advisor: Advisor,
    alerts: list[Alert],
    max_warning_lines: int = 5,
    now: datetime | None = None,
) -> Notification | None:
    """Render the alert summary for one advisor.

    Every critical alert is listed with household, issue and action.
    Warnings are listed by title, the first ``max_warning_lines`` only,
    followed by a count of the rest.

    Args:
        advisor: Recipient advisor.
        alerts: New alerts for the advisor's households.
        max_warning_lines: Warnings listed individually.
        now: Render time.

    Returns:
        Notification, or None when there is nothing critical or warning
        to report.
    """
    critical = [a for a in alerts if a.severity == "critical"]
    warnings = [a for a in alerts if a.severity == "warning"]
    if not critical and not warnings:
        return None

    title = (
        f"Compliance Alert Summary - {len(critical)} Critical, "
        f"{len(warnings)} Warnings"
    )

    lines = [
        f"Dear {advisor.display_name},",
        "",
        "Your nightly compliance scan has detected the following issues:",
        "",
    ]

    if critical:
        lines.append(f"CRITICAL ALERTS ({len(critical)}):")
        lines.append("These require immediate attention:")
        lines.append("")
        for idx, alert in enumerate(critical, start=1):
            lines.append(f"{idx}. {alert.title}")
            lines.append(f"   Household: {alert.household_name}")
            lines.append(f"   Issue: {alert.description}")
            lines.append(f"   Action: {alert.recommendation}")
            lines.append("")

    if warnings:
        lines.append(f"WARNING ALERTS ({len(warnings)}):")
        lines.append("Please review these within the next few days:")
        lines.append("")
        for idx, alert in enumerate(warnings[:max_warning_lines], start=1):
            lines.append(f"{idx}. {alert.title} - {alert.household_name}")
        if len(warnings) > max_warning_lines:
            lines.append("")
            lines.append(f"... and {len(warnings) - max_warning_lines} more warnings.")
        lines.append("")

    lines.append("Log in to your Advisor Dashboard to view full details and take action.")
    lines.append("")
    lines.append("Best regards,")
    lines.append("Compliance Monitoring System")

    return Notification(
        recipient=advisor_recipient(advisor),
        title=title,
        body="\n".join(lines),
        created_at=now or datetime.now(timezone.utc),
    )


def build_run_summary(
    owner: Recipient,
    total_alerts: int,
    critical_alerts: int,
    advisors_scanned: int,
    advisors_notified: int,
    completed_at: datetime,
) -> Notification:
    """Render the owner's summary of a completed scan run."""
    body = "\n".join([
        f"Compliance scan completed at {completed_at:%Y-%m-%d %H:%M:%S %Z}.",
        "",
        "Summary:",
        f"- Total new alerts: {total_alerts}",
        f"- Critical alerts: {critical_alerts}",
        f"- Advisors scanned: {advisors_scanned}",
        f"- Advisors notified: {advisors_notified}",
    ])
    return Notification(
        recipient=owner,
        title="Nightly Compliance Scan Complete",
        body=body,
        created_at=completed_at,
    )


def build_failure_notice(
    owner: Recipient,
    job_name: str,
    error: BaseException,
    failed_at: datetime,
) -> Notification:
    """Render the owner's notice that a scheduled job failed."""
    body = "\n".join([
        f"The {job_name.lower()} failed at {failed_at:%Y-%m-%d %H:%M:%S %Z}.",
        "",
        f"Error: {type(error).__name__}: {error}",
        "",
        "Please check the logs and investigate.",
    ])
    return Notification(
        recipient=owner,
        title=f"{job_name} Failed",
        body=body,
        created_at=failed_at,
    )
