"""Financial reconciliation rules and derived figures for liquidations.

Everything here is pure: callers pass figures in and get figures (or a
``ValidationError``) back. The ledger and workflow services call
``enforce_reconciliation`` before every flush that touches money.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Protocol

from liquidation_tracker.errors import ValidationError
from liquidation_tracker.services.state_machine import DocumentStatus

if TYPE_CHECKING:
    from liquidation_tracker.models import Liquidation

# Days an HEI has to liquidate after funds are released
LIQUIDATION_PERIOD_DAYS = 90

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


class CoverageStatus(str, Enum):
    """How much of the received amount has been liquidated."""

    UNLIQUIDATED = "UNLIQUIDATED"
    PARTIALLY_LIQUIDATED = "PARTIALLY_LIQUIDATED"
    FULLY_LIQUIDATED = "FULLY_LIQUIDATED"


class RunningFigures(Protocol):
    """Shape of a running-data row as far as reconciliation cares."""

    grantees_liquidated: int
    amount_complete_docs: Decimal
    amount_refunded: Decimal
    total_amount_liquidated: Decimal


def money(value: Decimal | int | float | str | None) -> Decimal:
    """Quantize a value to cents. ``None`` is zero."""
    if value is None:
        return ZERO.quantize(CENT)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def effective_due_date(date_fund_released: date | None, due_date: date | None = None) -> date | None:
    """Explicit due date, or release date plus the liquidation period."""
    if due_date is not None:
        return due_date
    if date_fund_released is None:
        return None
    return date_fund_released + timedelta(days=LIQUIDATION_PERIOD_DAYS)


def days_lapsed(date_fund_released: date | None, submitted_at: datetime | date | None) -> int | None:
    """Days between the liquidation deadline and submission.

    Positive means submitted early, negative means late. ``None`` until both
    dates are known.
    """
    if date_fund_released is None or submitted_at is None:
        return None
    submitted = submitted_at.date() if isinstance(submitted_at, datetime) else submitted_at
    deadline = date_fund_released + timedelta(days=LIQUIDATION_PERIOD_DAYS)
    return (deadline - submitted).days


def lapsing_period(date_fund_released: date | None, submitted_at: datetime | date | None) -> int:
    """Days overdue at submission; 0 when on time or not yet submitted."""
    lapsed = days_lapsed(date_fund_released, submitted_at)
    if lapsed is None or lapsed >= 0:
        return 0
    return -lapsed


def liquidation_percentage(amount_liquidated: Decimal, amount_received: Decimal) -> Decimal:
    """Percentage of received funds already liquidated, 2 decimal places."""
    received = money(amount_received)
    if received <= ZERO:
        return ZERO.quantize(CENT)
    return (money(amount_liquidated) / received * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def coverage_status(amount_liquidated: Decimal, amount_received: Decimal) -> CoverageStatus:
    liquidated = money(amount_liquidated)
    if liquidated <= ZERO or money(amount_received) <= ZERO:
        return CoverageStatus.UNLIQUIDATED
    if liquidation_percentage(liquidated, amount_received) >= HUNDRED:
        return CoverageStatus.FULLY_LIQUIDATED
    return CoverageStatus.PARTIALLY_LIQUIDATED


def determine_document_status(has_beneficiaries: bool, has_documents: bool) -> DocumentStatus:
    """Document completeness at submission time."""
    if has_beneficiaries and has_documents:
        return DocumentStatus.COMPLETE
    if has_beneficiaries or has_documents:
        return DocumentStatus.PARTIAL
    return DocumentStatus.NONE


def running_totals(entries: Iterable[RunningFigures]) -> tuple[Decimal, Decimal, int]:
    """Sum (liquidated, refunded, grantees) over running-data rows."""
    liquidated = ZERO
    refunded = ZERO
    grantees = 0
    for entry in entries:
        liquidated += money(entry.total_amount_liquidated)
        refunded += money(entry.amount_refunded)
        grantees += entry.grantees_liquidated or 0
    return money(liquidated), money(refunded), grantees


def check_reconciliation(
    amount_received: Decimal,
    amount_disbursed: Decimal,
    amount_refunded: Decimal,
    running_entries: Iterable[RunningFigures] = (),
    number_of_grantees: int | None = None,
) -> dict[str, list[str]]:
    """Collect reconciliation violations keyed by field. Empty dict when clean."""
    errors: dict[str, list[str]] = {}
    received = money(amount_received)
    disbursed = money(amount_disbursed)
    refunded = money(amount_refunded)

    if received < ZERO:
        errors.setdefault("amount_received", []).append("The amount received must be at least 0.")
    if disbursed < ZERO:
        errors.setdefault("amount_disbursed", []).append("The amount disbursed must be at least 0.")
    if disbursed + refunded > received:
        errors.setdefault("amount_disbursed", []).append(
            f"Disbursed ({disbursed}) plus refunded ({refunded}) exceeds the amount received ({received})."
        )

    entries = list(running_entries)
    complete_docs = sum((money(e.amount_complete_docs) for e in entries), ZERO)
    reported = sum((money(e.total_amount_liquidated) for e in entries), ZERO)
    running_refunds = sum((money(e.amount_refunded) for e in entries), ZERO)
    # Both the documented amount and the reported total are bounded.
    liquidated = max(complete_docs, reported)
    if liquidated + running_refunds > received:
        errors.setdefault("running_data", []).append(
            f"Liquidated ({liquidated}) plus refunded ({running_refunds}) exceeds "
            f"the total disbursements ({received})."
        )

    grantees = sum(e.grantees_liquidated or 0 for e in entries)
    if number_of_grantees is not None and grantees > number_of_grantees:
        errors.setdefault("grantees_liquidated", []).append(
            f"Grantees liquidated ({grantees}) exceeds the number of grantees ({number_of_grantees})."
        )
    return errors


def enforce_reconciliation(liquidation: Liquidation) -> None:
    """Raise ValidationError unless the liquidation's figures reconcile.

    Expects ``running_data`` to be loaded.
    """
    errors = check_reconciliation(
        liquidation.amount_received,
        liquidation.amount_disbursed,
        liquidation.amount_refunded,
        liquidation.running_data,
        liquidation.number_of_grantees,
    )
    if errors:
        raise ValidationError(errors)


@dataclass(frozen=True)
class FinancialSummary:
    """Read-only financial figures for one liquidation."""

    amount_received: Decimal
    amount_disbursed: Decimal
    amount_liquidated: Decimal
    amount_refunded: Decimal
    amount_unliquidated: Decimal
    liquidation_percentage: Decimal
    coverage_status: CoverageStatus
    due_date: date | None
    days_lapsed: int | None
    lapsing_period: int

    @classmethod
    def for_liquidation(cls, liquidation: Liquidation) -> FinancialSummary:
        received = money(liquidation.amount_received)
        liquidated = money(liquidation.amount_liquidated)
        return cls(
            amount_received=received,
            amount_disbursed=money(liquidation.amount_disbursed),
            amount_liquidated=liquidated,
            amount_refunded=money(liquidation.amount_refunded),
            amount_unliquidated=money(received - liquidated),
            liquidation_percentage=liquidation_percentage(liquidated, received),
            coverage_status=coverage_status(liquidated, received),
            due_date=effective_due_date(liquidation.date_fund_released, liquidation.due_date),
            days_lapsed=days_lapsed(liquidation.date_fund_released, liquidation.submitted_at),
            lapsing_period=lapsing_period(liquidation.date_fund_released, liquidation.submitted_at),
        )
