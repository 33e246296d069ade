"""Typed records for the portfolio aggregates the compliance rules consume.

Rows coming out of the CRM database are loosely typed: money columns are
``Decimal`` or strings, timestamps may be naive, optional columns are
NULL. Everything is normalised here, at the reader boundary, so rule
evaluation only ever sees floats, aware datetimes and known enum values.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from src.portfolio.errors import PortfolioDataError

RiskTolerance = Literal["conservative", "moderate", "aggressive"]

VALID_RISK_TOLERANCES: frozenset[str] = frozenset({
    "conservative",
    "moderate",
    "aggressive",
})

UNKNOWN_NAME = "Unknown"


def _to_float(value: Any, field_name: str) -> float | None:
    """Coerce a numeric column to float, keeping NULL as None."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise PortfolioDataError(f"{field_name} must be numeric, got bool")
    try:
        if isinstance(value, str):
            value = Decimal(value.strip())
        return float(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise PortfolioDataError(f"{field_name} is not numeric: {value!r}") from e


def _to_datetime(value: Any, field_name: str) -> datetime | None:
    """Coerce a timestamp column to an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as e:
            raise PortfolioDataError(f"{field_name} is not a timestamp: {value!r}") from e
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if not isinstance(value, datetime):
        raise PortfolioDataError(f"{field_name} is not a timestamp: {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_int(value: Any, field_name: str) -> int:
    if value is None or isinstance(value, bool):
        raise PortfolioDataError(f"{field_name} is required")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise PortfolioDataError(f"{field_name} is not an integer: {value!r}") from e


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class Advisor:
    """An advisor whose households are scanned and who receives alerts."""

    advisor_id: int
    name: str | None = None
    email: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or "Advisor"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Advisor":
        data = dict(row)
        return cls(
            advisor_id=_to_int(data.get("advisor_id"), "advisor_id"),
            name=_to_text(data.get("name")),
            email=_to_text(data.get("email")),
        )


@dataclass(frozen=True)
class Holding:
    """One position inside a household account.

    Attributes:
        ticker: Security symbol; the disambiguating key in alert ids.
        current_value: Market value of the whole position.
        shares: Share count.
        company_name: Issuer name, if known.
        asset_class: Lower-cased asset class (e.g. "equity"), if known.
        sector: Sector label, if known.
        cost_basis: Cost per share, if known.
        account_id: Account the position is held in.
    """

    ticker: str
    current_value: float
    shares: float = 0.0
    company_name: str | None = None
    asset_class: str | None = None
    sector: str | None = None
    cost_basis: float | None = None
    account_id: int | None = None

    @property
    def total_cost(self) -> float | None:
        """Shares times cost per share, or None when cost basis is unknown."""
        if self.cost_basis is None:
            return None
        return self.shares * self.cost_basis

    @property
    def is_equity(self) -> bool:
        return self.asset_class == "equity"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Holding":
        """Normalise a holdings row.

        Raises:
            PortfolioDataError: Ticker missing or a numeric column unparseable.
        """
        data = dict(row)
        ticker = _to_text(data.get("ticker"))
        if ticker is None:
            raise PortfolioDataError("holding is missing ticker")

        asset_class = _to_text(data.get("asset_class"))
        account_id = data.get("account_id")

        return cls(
            ticker=ticker.upper(),
            current_value=_to_float(data.get("current_value"), "current_value") or 0.0,
            shares=_to_float(data.get("shares"), "shares") or 0.0,
            company_name=_to_text(data.get("company_name")),
            asset_class=asset_class.lower() if asset_class else None,
            sector=_to_text(data.get("sector")),
            cost_basis=_to_float(data.get("cost_basis"), "cost_basis"),
            account_id=_to_int(account_id, "account_id") if account_id is not None else None,
        )


@dataclass(frozen=True)
class HouseholdRecord:
    """Household metadata as listed by the reader, before holdings are fetched."""

    household_id: int
    advisor_id: int
    household_name: str | None = None
    advisor_name: str | None = None
    risk_tolerance: RiskTolerance | None = None
    last_review_date: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "HouseholdRecord":
        """Normalise a households row joined with its advisor.

        Raises:
            PortfolioDataError: Ids missing, unknown risk tolerance, or a bad
                review timestamp.
        """
        data = dict(row)
        tolerance = _to_text(data.get("risk_tolerance"))
        if tolerance is not None:
            tolerance = tolerance.lower()
            if tolerance not in VALID_RISK_TOLERANCES:
                raise PortfolioDataError(
                    f"Invalid risk_tolerance {tolerance!r}. "
                    f"Must be one of: {sorted(VALID_RISK_TOLERANCES)}"
                )

        return cls(
            household_id=_to_int(data.get("household_id"), "household_id"),
            advisor_id=_to_int(data.get("advisor_id"), "advisor_id"),
            household_name=_to_text(data.get("household_name")),
            advisor_name=_to_text(data.get("advisor_name")),
            risk_tolerance=tolerance,
            last_review_date=_to_datetime(data.get("last_review_date"), "last_review_date"),
        )


@dataclass(frozen=True)
class PortfolioAggregate:
    """Everything the rule evaluator needs to know about one household."""

    household_id: int
    advisor_id: int
    household_name: str | None = None
    advisor_name: str | None = None
    risk_tolerance: RiskTolerance | None = None
    last_review_date: datetime | None = None
    holdings: tuple[Holding, ...] = field(default_factory=tuple)

    @classmethod
    def from_household(
        cls,
        household: HouseholdRecord,
        holdings: list[Holding] | tuple[Holding, ...],
    ) -> "PortfolioAggregate":
        return cls(
            household_id=household.household_id,
            advisor_id=household.advisor_id,
            household_name=household.household_name,
            advisor_name=household.advisor_name,
            risk_tolerance=household.risk_tolerance,
            last_review_date=household.last_review_date,
            holdings=tuple(holdings),
        )

    @property
    def household_display_name(self) -> str:
        return self.household_name or UNKNOWN_NAME

    @property
    def advisor_display_name(self) -> str:
        return self.advisor_name or UNKNOWN_NAME

    @property
    def total_value(self) -> float:
        return sum(h.current_value for h in self.holdings)

    @property
    def equity_value(self) -> float:
        return sum(h.current_value for h in self.holdings if h.is_equity)
