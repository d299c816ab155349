"""Ledger service - beneficiaries, running data and tracking entries.

Totals on the liquidation are always recomputed from the child rows and the
proposed state is reconciled before anything is changed, so a rejected
write leaves both the session and the database untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from liquidation_tracker.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from liquidation_tracker.models import (
    Liquidation,
    LiquidationBeneficiary,
    LiquidationRunningData,
    LiquidationTrackingEntry,
)
from liquidation_tracker.services.authorization import (
    ActorContext,
    can_manage_beneficiaries,
    require,
    require_region,
)
from liquidation_tracker.services.reconciliation import (
    check_reconciliation,
    coverage_status,
    money,
    running_totals,
)
from liquidation_tracker.services.roles import Capability
from liquidation_tracker.services.state_machine import DocumentStatus, LiquidationStateMachine
from liquidation_tracker.services.workflow import LiquidationService, normalize_document_status

logger = logging.getLogger(__name__)

LEDGER_PERMISSION_MESSAGE = "Only Regional Coordinators and above can manage ledger entries."


@dataclass
class BeneficiaryInput:
    last_name: str | None = None
    first_name: str | None = None
    amount: Decimal | None = None
    student_no: str | None = None
    middle_name: str | None = None
    extension_name: str | None = None
    award_no: str | None = None
    date_disbursed: date | None = None
    remarks: str | None = None


@dataclass
class RunningDataInput:
    grantees_liquidated: int = 0
    amount_complete_docs: Decimal = Decimal("0")
    amount_refunded: Decimal = Decimal("0")
    refund_or_no: str | None = None
    total_amount_liquidated: Decimal | None = None
    transmittal_ref_no: str | None = None
    group_transmittal_ref_no: str | None = None


@dataclass
class TrackingEntryInput:
    document_status: str | None = None
    received_by: str | None = None
    date_received: date | None = None
    document_location: str | None = None
    reviewed_by: str | None = None
    date_reviewed: date | None = None
    rc_note: str | None = None
    date_endorsement: date | None = None
    coverage_status: str | None = None


def validate_beneficiary(data: BeneficiaryInput) -> dict[str, list[str]]:
    """Field errors for one beneficiary row."""
    errors: dict[str, list[str]] = {}
    if not (data.last_name or "").strip():
        errors["last_name"] = ["The last name field is required."]
    if not (data.first_name or "").strip():
        errors["first_name"] = ["The first name field is required."]
    if data.amount is None:
        errors["amount"] = ["The amount field is required."]
    elif money(data.amount) < 0:
        errors["amount"] = ["The amount must be at least 0."]
    for name, limit in (("student_no", 50), ("middle_name", 100), ("extension_name", 20), ("award_no", 100)):
        value = getattr(data, name)
        if value is not None and len(value) > limit:
            errors[name] = [f"The {name.replace('_', ' ')} may not be greater than {limit} characters."]
    return errors


def build_beneficiary(data: BeneficiaryInput) -> LiquidationBeneficiary:
    def clean(value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    return LiquidationBeneficiary(
        student_no=clean(data.student_no),
        last_name=data.last_name.strip(),
        first_name=data.first_name.strip(),
        middle_name=clean(data.middle_name),
        extension_name=clean(data.extension_name),
        award_no=clean(data.award_no),
        date_disbursed=data.date_disbursed,
        amount=money(data.amount),
        remarks=clean(data.remarks),
    )


class LedgerService:
    """Manages the child ledgers of a liquidation and keeps totals in sync."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.liquidations = LiquidationService(session)

    # =========================================================================
    # Beneficiaries
    # =========================================================================

    async def authorize_beneficiary_change(self, actor: ActorContext, liquidation: Liquidation) -> None:
        """Role/ownership guard, then status guard, for beneficiary edits."""
        region_id = await self.liquidations.hei_region_id(liquidation)
        if not can_manage_beneficiaries(actor, liquidation, region_id):
            raise PermissionDeniedError("You do not have permission to change beneficiaries of this liquidation.")
        if not LiquidationStateMachine.is_editable_by_hei(liquidation.status):
            raise InvalidStateError(
                "Beneficiaries can only be changed while the liquidation is a draft or returned to the HEI.",
                current_status=liquidation.status,
            )

    async def list_beneficiaries(self, actor: ActorContext, liquidation_id: UUID) -> list[LiquidationBeneficiary]:
        liquidation = await self.liquidations.get_for_actor(actor, liquidation_id)
        return list(liquidation.beneficiaries)

    async def add_beneficiary(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        data: BeneficiaryInput,
    ) -> LiquidationBeneficiary:
        liquidation = await self.liquidations.load(liquidation_id)
        await self.authorize_beneficiary_change(actor, liquidation)

        errors = validate_beneficiary(data)
        if errors:
            raise ValidationError(errors)

        beneficiary = build_beneficiary(data)
        self.add_beneficiaries(liquidation, [beneficiary])
        await self.liquidations.flush()
        logger.info("Beneficiary %s added to %s by %s", beneficiary.full_name, liquidation.control_no, actor.user_id)
        return beneficiary

    def add_beneficiaries(self, liquidation: Liquidation, beneficiaries: list[LiquidationBeneficiary]) -> None:
        """Attach beneficiaries after reconciling the resulting disbursed total."""
        disbursed = self._sum_amounts([*liquidation.beneficiaries, *beneficiaries])
        self._reconcile(liquidation, amount_disbursed=disbursed)
        liquidation.beneficiaries.extend(beneficiaries)
        liquidation.amount_disbursed = disbursed

    async def remove_beneficiary(self, actor: ActorContext, liquidation_id: UUID, beneficiary_id: UUID) -> None:
        liquidation = await self.liquidations.load(liquidation_id)
        await self.authorize_beneficiary_change(actor, liquidation)

        beneficiary = self._find(liquidation.beneficiaries, beneficiary_id, "Beneficiary")
        liquidation.beneficiaries.remove(beneficiary)
        liquidation.amount_disbursed = self._sum_amounts(liquidation.beneficiaries)
        await self.liquidations.flush()
        logger.info("Beneficiary %s removed from %s by %s", beneficiary_id, liquidation.control_no, actor.user_id)

    # =========================================================================
    # Running data
    # =========================================================================

    async def list_running_data(self, actor: ActorContext, liquidation_id: UUID) -> list[LiquidationRunningData]:
        liquidation = await self.liquidations.get_for_actor(actor, liquidation_id)
        return list(liquidation.running_data)

    async def add_running_data(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        data: RunningDataInput,
    ) -> LiquidationRunningData:
        liquidation = await self._load_for_ledger(actor, liquidation_id)

        errors: dict[str, list[str]] = {}
        if data.grantees_liquidated < 0:
            errors["grantees_liquidated"] = ["The grantees liquidated must be at least 0."]
        if money(data.amount_complete_docs) < 0:
            errors["amount_complete_docs"] = ["The amount with complete documents must be at least 0."]
        if money(data.amount_refunded) < 0:
            errors["amount_refunded"] = ["The amount refunded must be at least 0."]
        if data.total_amount_liquidated is not None and money(data.total_amount_liquidated) < 0:
            errors["total_amount_liquidated"] = ["The total amount liquidated must be at least 0."]
        if data.refund_or_no is not None and len(data.refund_or_no) > 100:
            errors["refund_or_no"] = ["The refund OR no may not be greater than 100 characters."]
        if errors:
            raise ValidationError(errors)

        total_liquidated = (
            data.amount_complete_docs if data.total_amount_liquidated is None else data.total_amount_liquidated
        )
        entry = LiquidationRunningData(
            grantees_liquidated=data.grantees_liquidated,
            amount_complete_docs=money(data.amount_complete_docs),
            amount_refunded=money(data.amount_refunded),
            refund_or_no=data.refund_or_no,
            total_amount_liquidated=money(total_liquidated),
            transmittal_ref_no=data.transmittal_ref_no,
            group_transmittal_ref_no=data.group_transmittal_ref_no,
            sort_order=max((e.sort_order for e in liquidation.running_data), default=0) + 1,
        )
        self.add_running_entries(liquidation, [entry])
        await self.liquidations.flush()
        logger.info(
            "Running data added to %s by %s: liquidated=%s refunded=%s",
            liquidation.control_no,
            actor.user_id,
            entry.total_amount_liquidated,
            entry.amount_refunded,
        )
        return entry

    def add_running_entries(self, liquidation: Liquidation, entries: list[LiquidationRunningData]) -> None:
        """Attach running-data rows after reconciling the resulting totals."""
        rows = [*liquidation.running_data, *entries]
        liquidated, refunded, _ = running_totals(rows)
        self._reconcile(liquidation, amount_refunded=refunded, running_entries=rows)
        liquidation.running_data.extend(entries)
        liquidation.amount_liquidated = liquidated
        liquidation.amount_refunded = refunded

    async def remove_running_data(self, actor: ActorContext, liquidation_id: UUID, entry_id: UUID) -> None:
        liquidation = await self._load_for_ledger(actor, liquidation_id)

        entry = self._find(liquidation.running_data, entry_id, "Running data entry")
        liquidation.running_data.remove(entry)
        liquidated, refunded, _ = running_totals(liquidation.running_data)
        liquidation.amount_liquidated = liquidated
        liquidation.amount_refunded = refunded
        await self.liquidations.flush()

    # =========================================================================
    # Tracking entries
    # =========================================================================

    async def list_tracking_entries(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
    ) -> list[LiquidationTrackingEntry]:
        liquidation = await self.liquidations.get_for_actor(actor, liquidation_id)
        return list(liquidation.tracking_entries)

    async def add_tracking_entry(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        data: TrackingEntryInput,
    ) -> LiquidationTrackingEntry:
        """Add a tracking entry and sync the liquidation's document status to it."""
        liquidation = await self._load_for_ledger(actor, liquidation_id)

        coverage = data.coverage_status or coverage_status(
            liquidation.amount_liquidated,
            liquidation.amount_received,
        ).value
        if coverage not in ("UNLIQUIDATED", "PARTIALLY_LIQUIDATED", "FULLY_LIQUIDATED"):
            raise ValidationError.for_field("coverage_status", "The selected coverage status is invalid.")

        document_status = normalize_document_status(data.document_status)
        entry = LiquidationTrackingEntry(
            document_status=document_status.value,
            received_by=data.received_by,
            date_received=data.date_received,
            document_location=data.document_location,
            reviewed_by=data.reviewed_by,
            date_reviewed=data.date_reviewed,
            rc_note=data.rc_note,
            date_endorsement=data.date_endorsement,
            coverage_status=coverage,
        )
        liquidation.tracking_entries.append(entry)
        liquidation.document_status = document_status.value
        await self.liquidations.flush()
        return entry

    async def remove_tracking_entry(self, actor: ActorContext, liquidation_id: UUID, entry_id: UUID) -> None:
        liquidation = await self._load_for_ledger(actor, liquidation_id)

        entry = self._find(liquidation.tracking_entries, entry_id, "Tracking entry")
        liquidation.tracking_entries.remove(entry)
        if liquidation.tracking_entries:
            liquidation.document_status = liquidation.tracking_entries[-1].document_status
        else:
            liquidation.document_status = DocumentStatus.NONE.value
        await self.liquidations.flush()

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_for_ledger(self, actor: ActorContext, liquidation_id: UUID) -> Liquidation:
        liquidation = await self.liquidations.load(liquidation_id)
        require(actor, Capability.MANAGE_LEDGER, LEDGER_PERMISSION_MESSAGE)
        require_region(actor, await self.liquidations.hei_region_id(liquidation))
        return liquidation

    def _reconcile(
        self,
        liquidation: Liquidation,
        amount_disbursed: Decimal | None = None,
        amount_refunded: Decimal | None = None,
        running_entries: Iterable[LiquidationRunningData] | None = None,
    ) -> None:
        errors = check_reconciliation(
            liquidation.amount_received,
            liquidation.amount_disbursed if amount_disbursed is None else amount_disbursed,
            liquidation.amount_refunded if amount_refunded is None else amount_refunded,
            liquidation.running_data if running_entries is None else running_entries,
            liquidation.number_of_grantees,
        )
        if errors:
            raise ValidationError(errors)

    @staticmethod
    def _sum_amounts(beneficiaries: Iterable[LiquidationBeneficiary]) -> Decimal:
        return money(sum((money(b.amount) for b in beneficiaries), Decimal("0")))

    @staticmethod
    def _find(rows, row_id: UUID, label: str):
        for row in rows:
            if row.id == row_id:
                return row
        raise NotFoundError(f"{label} not found.", {"id": str(row_id)})
