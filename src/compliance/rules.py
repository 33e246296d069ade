"""Stateless compliance rules evaluated against one household's portfolio.

Each function checks a single rule against a ``PortfolioAggregate`` and
returns the alerts it produces. No I/O, no state: alert history,
throttling and notification live in the scan job and the ledger.

All rules are independent and order-insensitive; ``evaluate_household``
runs all five and concatenates their output.
"""

from datetime import datetime, timezone

from src.compliance.config import ComplianceConfig
from src.compliance.schemas import AffectedHolding, Alert, make_alert_id
from src.portfolio.schemas import Holding, PortfolioAggregate


def _portfolio_pct(value: float, total_value: float) -> float:
    # Multiply first so round-number inputs stay exact at the thresholds
    return value * 100 / total_value


def _money(value: float) -> str:
    return f"${value:,.0f}"


def _alert_fields(
    aggregate: PortfolioAggregate,
    alert_type: str,
    severity: str,
    key: str | None,
    now: datetime,
    **text: str,
) -> dict:
    """Common Alert constructor arguments for a household."""
    return dict(
        alert_id=make_alert_id(alert_type, aggregate.household_id, key),
        alert_type=alert_type,
        severity=severity,
        household_id=aggregate.household_id,
        household_name=aggregate.household_display_name,
        advisor_id=aggregate.advisor_id,
        advisor_name=aggregate.advisor_display_name,
        created_at=now,
        **text,
    )


def check_concentration_risk(
    aggregate: PortfolioAggregate,
    total_value: float,
    config: ComplianceConfig,
    now: datetime,
) -> list[Alert]:
    """Flag every holding that is too large a share of the portfolio.

    Fires when a holding exceeds ``concentration_warning_pct`` of total
    value. Critical above ``concentration_critical_pct``. One alert per
    offending holding.

    Args:
        aggregate: Household portfolio.
        total_value: Sum of all holding values (must be positive).
        config: Thresholds.
        now: Evaluation time.

    Returns:
        List of concentration_risk alerts (may be empty).
    """
    alerts: list[Alert] = []

    for holding in aggregate.holdings:
        pct = _portfolio_pct(holding.current_value, total_value)
        if pct <= config.concentration_warning_pct:
            continue

        is_critical = pct > config.concentration_critical_pct
        limit = config.concentration_warning_pct
        company = holding.company_name or "Unknown"

        if is_critical:
            reduce_by = (pct - limit) / pct * 100
            recommendation = (
                f"CRITICAL: Immediately diversify this position. Consider selling "
                f"{reduce_by:.0f}% of holdings to reduce concentration risk."
            )
        else:
            recommendation = (
                f"Consider rebalancing to reduce {holding.ticker} exposure to below "
                f"{limit:g}% of portfolio value. Suggest diversification into other sectors."
            )

        alerts.append(Alert(
            **_alert_fields(
                aggregate,
                "concentration_risk",
                "critical" if is_critical else "warning",
                holding.ticker,
                now,
                title=f"Concentration Risk: {holding.ticker}",
                description=(
                    f"{holding.ticker} ({company}) represents {pct:.1f}% of portfolio "
                    f"value, exceeding the {limit:g}% concentration threshold."
                ),
                recommendation=recommendation,
            ),
            affected_holdings=(
                AffectedHolding(ticker=holding.ticker, percentage=pct, value=holding.current_value),
            ),
        ))

    return alerts


def check_suitability(
    aggregate: PortfolioAggregate,
    total_value: float,
    config: ComplianceConfig,
    now: datetime,
) -> Alert | None:
    """Check equity exposure against the household's stated risk tolerance.

    Missing tolerance is treated as moderate. Bands (defaults):
    conservative at most 40% equity, moderate 40-70%, aggressive at
    least 70%. Always warning severity, at most one per household.

    Returns:
        Alert or None.
    """
    tolerance = aggregate.risk_tolerance or "moderate"
    equity_pct = _portfolio_pct(aggregate.equity_value, total_value)

    if tolerance == "conservative" and equity_pct > config.conservative_max_equity_pct:
        description = (
            f"Portfolio has {equity_pct:.1f}% equity exposure, which exceeds the "
            f"recommended {config.conservative_max_equity_pct:g}% maximum for "
            f"conservative investors."
        )
    elif tolerance == "moderate" and (
        equity_pct < config.moderate_min_equity_pct
        or equity_pct > config.moderate_max_equity_pct
    ):
        description = (
            f"Portfolio has {equity_pct:.1f}% equity exposure. Moderate investors "
            f"should maintain {config.moderate_min_equity_pct:g}-"
            f"{config.moderate_max_equity_pct:g}% equity allocation."
        )
    elif tolerance == "aggressive" and equity_pct < config.aggressive_min_equity_pct:
        description = (
            f"Portfolio has {equity_pct:.1f}% equity exposure, which is below the "
            f"recommended {config.aggressive_min_equity_pct:g}% minimum for "
            f"aggressive growth investors."
        )
    else:
        return None

    return Alert(**_alert_fields(
        aggregate,
        "suitability_mismatch",
        "warning",
        None,
        now,
        title=f"Risk Profile Mismatch: {tolerance.upper()}",
        description=description,
        recommendation=(
            f"Review asset allocation with client. Consider rebalancing to align with "
            f"{tolerance} risk profile. Document any client preferences that deviate "
            f"from standard allocation."
        ),
    ))


def days_since_review(
    last_review_date: datetime | None,
    now: datetime,
    missing_days: int,
) -> int:
    """Whole days elapsed since the last review, or ``missing_days`` if never reviewed."""
    if last_review_date is None:
        return missing_days
    return (now - last_review_date).days


def check_annual_review(
    aggregate: PortfolioAggregate,
    config: ComplianceConfig,
    now: datetime,
) -> Alert | None:
    """Check whether the household's annual review is overdue.

    Fires when more than ``review_due_days`` whole days have passed since
    the last review. Critical beyond ``review_critical_days``. A
    household with no review on record counts as ``review_missing_days``.

    Returns:
        Alert or None.
    """
    days = days_since_review(aggregate.last_review_date, now, config.review_missing_days)
    if days <= config.review_due_days:
        return None

    is_critical = days > config.review_critical_days

    if aggregate.last_review_date is not None:
        description = (
            f"Last review completed {days} days ago on "
            f"{aggregate.last_review_date:%Y-%m-%d}. Annual review is "
            f"{days - config.review_due_days} days overdue."
        )
    else:
        description = "No review date on record. Annual review required for compliance."

    if is_critical:
        recommendation = (
            "URGENT: Schedule annual review immediately. Document review completion "
            "to maintain compliance."
        )
    else:
        recommendation = (
            "Schedule annual review within the next 30 days. Prepare updated risk "
            "assessment and investment policy statement."
        )

    return Alert(**_alert_fields(
        aggregate,
        "annual_review_due",
        "critical" if is_critical else "warning",
        None,
        now,
        title="Annual Review Overdue",
        description=description,
        recommendation=recommendation,
    ))


def check_large_positions(
    aggregate: PortfolioAggregate,
    total_value: float,
    config: ComplianceConfig,
    now: datetime,
) -> list[Alert]:
    """Report large positions in large portfolios (informational).

    Only evaluated when the portfolio exceeds ``large_position_min_portfolio``.
    Fires for every holding above ``large_position_min_value`` that is also
    more than ``large_position_min_pct`` of the portfolio.
    """
    if total_value <= config.large_position_min_portfolio:
        return []

    alerts: list[Alert] = []
    for holding in aggregate.holdings:
        if holding.current_value <= config.large_position_min_value:
            continue
        pct = _portfolio_pct(holding.current_value, total_value)
        if pct <= config.large_position_min_pct:
            continue

        alerts.append(Alert(
            **_alert_fields(
                aggregate,
                "large_position",
                "info",
                holding.ticker,
                now,
                title=f"Large Position: {holding.ticker}",
                description=(
                    f"{holding.ticker} position valued at {_money(holding.current_value)} "
                    f"({pct:.1f}% of portfolio)."
                ),
                recommendation=(
                    "Monitor for concentration risk. Consider tax-loss harvesting "
                    "opportunities or gradual position reduction if concentration increases."
                ),
            ),
            affected_holdings=(
                AffectedHolding(ticker=holding.ticker, percentage=pct, value=holding.current_value),
            ),
        ))

    return alerts


def _gain_loss_pct(holding: Holding) -> float | None:
    cost = holding.total_cost
    if cost is None or cost <= 0:
        return None
    return (holding.current_value - cost) * 100 / cost


def check_underperforming(
    aggregate: PortfolioAggregate,
    total_value: float,
    config: ComplianceConfig,
    now: datetime,
) -> list[Alert]:
    """Report holdings trading well below cost basis (informational).

    Fires when the loss versus ``shares * cost_basis`` is worse than
    ``underperforming_loss_pct`` and the position is worth more than
    ``underperforming_min_value``. Holdings without a cost basis are skipped.
    """
    alerts: list[Alert] = []

    for holding in aggregate.holdings:
        gain_loss_pct = _gain_loss_pct(holding)
        if gain_loss_pct is None:
            continue
        if gain_loss_pct >= config.underperforming_loss_pct:
            continue
        if holding.current_value <= config.underperforming_min_value:
            continue

        loss = abs(holding.current_value - holding.total_cost)
        alerts.append(Alert(
            **_alert_fields(
                aggregate,
                "underperforming",
                "info",
                holding.ticker,
                now,
                title=f"Underperforming: {holding.ticker}",
                description=(
                    f"{holding.ticker} is down {abs(gain_loss_pct):.1f}% from cost basis. "
                    f"Current value: {_money(holding.current_value)}, Loss: {_money(loss)}."
                ),
                recommendation=(
                    "Review investment thesis. Consider tax-loss harvesting if appropriate. "
                    "Discuss with client whether to hold, average down, or exit position."
                ),
            ),
            affected_holdings=(
                AffectedHolding(
                    ticker=holding.ticker,
                    percentage=_portfolio_pct(holding.current_value, total_value),
                    value=holding.current_value,
                ),
            ),
        ))

    return alerts


def evaluate_household(
    aggregate: PortfolioAggregate,
    config: ComplianceConfig,
    now: datetime | None = None,
) -> list[Alert]:
    """Run every compliance rule for a single household.

    Households without holdings, or whose holdings sum to zero, are not
    evaluated at all.

    Args:
        aggregate: Household portfolio.
        config: Rule thresholds.
        now: Evaluation time (default: current UTC time).

    Returns:
        Concatenated alerts from all rules (may be empty).
    """
    if not aggregate.holdings:
        return []

    total_value = aggregate.total_value
    if total_value <= 0:
        return []

    now = now or datetime.now(timezone.utc)
    alerts: list[Alert] = []

    alerts.extend(check_concentration_risk(aggregate, total_value, config, now))

    alert = check_suitability(aggregate, total_value, config, now)
    if alert is not None:
        alerts.append(alert)

    alert = check_annual_review(aggregate, config, now)
    if alert is not None:
        alerts.append(alert)

    alerts.extend(check_large_positions(aggregate, total_value, config, now))
    alerts.extend(check_underperforming(aggregate, total_value, config, now))

    return alerts
