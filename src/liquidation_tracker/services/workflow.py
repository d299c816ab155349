"""Liquidation workflow service - owns the status lifecycle and its side effects."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from liquidation_tracker.errors import (
    ConcurrencyError,
    DuplicateControlNumberError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from liquidation_tracker.models import (
    HEI,
    Liquidation,
    LiquidationCompliance,
    LiquidationReview,
    LiquidationTransmittal,
    Program,
    utcnow,
)
from liquidation_tracker.services.authorization import (
    ActorContext,
    authorize_update,
    require,
    require_region,
    require_view,
    scope_query,
)
from liquidation_tracker.services.reconciliation import (
    check_reconciliation,
    determine_document_status,
    effective_due_date,
    money,
)
from liquidation_tracker.services.roles import Capability
from liquidation_tracker.services.state_machine import (
    DocumentStatus,
    LiquidationStateMachine,
    LiquidationStatus,
    ReviewType,
    WorkflowAction,
)

logger = logging.getLogger(__name__)

RETURN_REMARKS_REQUIRED = "Please provide remarks explaining why the liquidation is being returned."

_SEMESTERS = {
    "1": "1ST",
    "1st": "1ST",
    "1st semester": "1ST",
    "first": "1ST",
    "first semester": "1ST",
    "2": "2ND",
    "2nd": "2ND",
    "2nd semester": "2ND",
    "second": "2ND",
    "second semester": "2ND",
    "3": "SUMMER",
    "summer": "SUMMER",
    "sum": "SUMMER",
}

_DOCUMENT_STATUSES = {
    "COMPLETE": DocumentStatus.COMPLETE,
    "COMPLETED": DocumentStatus.COMPLETE,
    "PARTIAL": DocumentStatus.PARTIAL,
    "INCOMPLETE": DocumentStatus.PARTIAL,
    "NONE": DocumentStatus.NONE,
    "N/A": DocumentStatus.NONE,
    "NA": DocumentStatus.NONE,
}

# Fields Update may touch. Status and control number are never editable.
UPDATABLE_FIELDS = frozenset({
    "academic_year",
    "semester",
    "batch_no",
    "program_id",
    "date_fund_released",
    "due_date",
    "number_of_grantees",
    "total_disbursements",
    "fund_source",
    "purpose",
    "remarks",
})

_CHILDREN = (
    Liquidation.beneficiaries,
    Liquidation.reviews,
    Liquidation.transmittal,
    Liquidation.compliance,
    Liquidation.tracking_entries,
    Liquidation.running_data,
    Liquidation.documents,
)


def normalize_semester(value: Any) -> str:
    """Map free-form semester input to 1ST, 2ND or SUMMER (default 1ST)."""
    if value is None:
        return "1ST"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return _SEMESTERS.get(str(value).strip().lower(), "1ST")


def normalize_document_status(value: Any) -> DocumentStatus:
    if value is None:
        return DocumentStatus.NONE
    return _DOCUMENT_STATUSES.get(str(value).strip().upper(), DocumentStatus.NONE)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass
class LiquidationInput:
    """Fields accepted when creating a liquidation."""

    academic_year: str | None = None
    uii: str | None = None
    dv_control_no: str | None = None
    program_id: UUID | None = None
    semester: str | None = None
    batch_no: str | None = None
    date_fund_released: date | None = None
    due_date: date | None = None
    number_of_grantees: int | None = None
    total_disbursements: Decimal | None = None
    fund_source: str | None = None
    purpose: str | None = None
    remarks: str | None = None
    document_status: str | None = None


@dataclass
class TransmittalInput:
    """Hand-off details recorded on endorsement to accounting."""

    transmittal_reference_no: str | None = None
    receiver_name: str | None = None
    document_location: str | None = None
    number_of_folders: int | None = None
    folder_location_number: str | None = None
    group_transmittal: str | None = None
    other_file_location: str | None = None


class LiquidationService:
    """Service for the liquidation lifecycle.

    Operations:
    - create / update: draft authoring, never touches status
    - submit: creator hands the report to the RC
    - endorse_to_accounting / return_to_hei: RC review
    - endorse_to_coa / return_to_rc: Accountant review
    - relocate_transmittal: move the physical folders

    Every transition checks the actor's role first and the current status
    second. Field validation runs after both, and nothing is written until
    all checks pass.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_liquidation(
        self,
        liquidation_id: UUID,
        load_children: bool = True,
    ) -> Liquidation | None:
        """Load a liquidation, optionally with every child collection."""
        stmt = select(Liquidation).where(Liquidation.id == liquidation_id)
        if load_children:
            stmt = stmt.options(*(selectinload(rel) for rel in _CHILDREN)).execution_options(
                populate_existing=True
            )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def load(self, liquidation_id: UUID) -> Liquidation:
        """Load a liquidation with children or raise NotFoundError."""
        liquidation = await self.get_liquidation(liquidation_id)
        if liquidation is None:
            raise NotFoundError("Liquidation not found.", {"liquidation_id": str(liquidation_id)})
        return liquidation

    async def get_for_actor(self, actor: ActorContext, liquidation_id: UUID) -> Liquidation:
        """Load a liquidation the actor is allowed to see."""
        liquidation = await self.load(liquidation_id)
        require_view(actor, liquidation, await self.hei_region_id(liquidation))
        return liquidation

    async def hei_region_id(self, liquidation: Liquidation) -> UUID | None:
        result = await self.session.execute(
            select(HEI.region_id).where(HEI.id == liquidation.hei_id)
        )
        return result.scalar_one_or_none()

    async def list_liquidations(
        self,
        actor: ActorContext,
        program_id: UUID | None = None,
        status: str | None = None,
        document_status: str | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Liquidation], int]:
        """Role-scoped, filtered and paginated list. Returns (items, total)."""
        stmt = scope_query(actor, select(Liquidation))
        if program_id is not None:
            stmt = stmt.where(Liquidation.program_id == program_id)
        if status:
            stmt = stmt.where(Liquidation.status == status)
        if document_status:
            stmt = stmt.where(Liquidation.document_status == document_status)
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            matching_heis = select(HEI.id).where(func.lower(HEI.name).like(pattern))
            stmt = stmt.where(
                or_(
                    func.lower(Liquidation.control_no).like(pattern),
                    Liquidation.hei_id.in_(matching_heis),
                )
            )

        count_result = await self.session.execute(
            select(func.count()).select_from(stmt.subquery())
        )
        total = count_result.scalar_one()

        stmt = (
            stmt.order_by(Liquidation.created_at.desc(), Liquidation.control_no)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total

    async def review_history(self, actor: ActorContext, liquidation_id: UUID) -> list[LiquidationReview]:
        """Review entries ordered by sequence."""
        liquidation = await self.get_for_actor(actor, liquidation_id)
        return list(liquidation.reviews)

    # =========================================================================
    # Authoring
    # =========================================================================

    async def find_hei_by_uii(self, uii: str) -> HEI | None:
        result = await self.session.execute(
            select(HEI).where(func.lower(HEI.uii) == uii.strip().lower())
        )
        return result.scalar_one_or_none()

    async def generate_control_no(self, reserved: Iterable[str] = ()) -> str:
        """Next free ``LIQ-YYYY-NNNNN`` number for the current year."""
        prefix = f"LIQ-{utcnow().year}-"
        result = await self.session.execute(
            select(Liquidation.control_no).where(Liquidation.control_no.like(f"{prefix}%"))
        )
        taken = set(result.scalars().all()) | set(reserved)
        numbers = [
            int(no[len(prefix):])
            for no in taken
            if no.startswith(prefix) and no[len(prefix):].isdigit()
        ]
        return f"{prefix}{max(numbers, default=0) + 1:05d}"

    async def control_no_exists(self, control_no: str) -> bool:
        result = await self.session.execute(
            select(Liquidation.id).where(Liquidation.control_no == control_no)
        )
        return result.first() is not None

    async def build_liquidation(
        self,
        data: LiquidationInput,
        hei: HEI,
        created_by_id: UUID,
        reserved_control_nos: set[str] | None = None,
    ) -> Liquidation:
        """Validate input and build an unsaved draft liquidation.

        ``reserved_control_nos`` holds numbers already claimed by the same
        batch; it is updated with the number this liquidation takes.
        """
        reserved = reserved_control_nos if reserved_control_nos is not None else set()
        errors: dict[str, list[str]] = {}

        academic_year = _clean(data.academic_year)
        if academic_year is None:
            errors["academic_year"] = ["The academic year field is required."]
        elif len(academic_year) > 20:
            errors["academic_year"] = ["The academic year may not be greater than 20 characters."]

        batch_no = _clean(data.batch_no)
        if batch_no is not None and len(batch_no) > 50:
            errors["batch_no"] = ["The batch no may not be greater than 50 characters."]

        control_no = _clean(data.dv_control_no)
        if control_no is not None and len(control_no) > 100:
            errors["dv_control_no"] = ["The DV Control No. may not be greater than 100 characters."]

        total = money(data.total_disbursements)
        if total < 0:
            errors["total_disbursements"] = ["The total disbursements must be at least 0."]

        if data.number_of_grantees is not None and data.number_of_grantees < 0:
            errors["number_of_grantees"] = ["The number of grantees must be at least 0."]

        if data.program_id is not None and await self.session.get(Program, data.program_id) is None:
            errors["program_id"] = ["The selected program is invalid."]

        if errors:
            raise ValidationError(errors)

        if control_no is None:
            control_no = await self.generate_control_no(reserved)
        elif control_no in reserved or await self.control_no_exists(control_no):
            raise DuplicateControlNumberError(control_no)
        reserved.add(control_no)

        return Liquidation(
            control_no=control_no,
            hei_id=hei.id,
            program_id=data.program_id,
            academic_year=academic_year,
            semester=normalize_semester(data.semester),
            batch_no=batch_no,
            date_fund_released=data.date_fund_released,
            due_date=effective_due_date(data.date_fund_released, data.due_date),
            number_of_grantees=data.number_of_grantees,
            amount_received=total,
            amount_disbursed=money(0),
            amount_liquidated=money(0),
            amount_refunded=money(0),
            fund_source=_clean(data.fund_source),
            purpose=_clean(data.purpose),
            remarks=_clean(data.remarks),
            status=LiquidationStatus.DRAFT.value,
            document_status=normalize_document_status(data.document_status).value,
            created_by_id=created_by_id,
        )

    async def _resolve_hei_for_creator(self, actor: ActorContext, uii: str | None) -> HEI:
        # HEI users always file for their own institution
        if actor.can(Capability.VIEW_OWN_HEI):
            hei = await self.session.get(HEI, actor.hei_id) if actor.hei_id else None
            if hei is None:
                raise PermissionDeniedError("Your account is not linked to an HEI.")
            if _clean(uii) and uii.strip().lower() != hei.uii.lower():
                raise PermissionDeniedError("You can only create liquidations for your own HEI.")
            return hei

        if not _clean(uii):
            raise ValidationError.for_field("uii", "The UII field is required.")
        hei = await self.find_hei_by_uii(uii)
        if hei is None:
            raise ValidationError.for_field("uii", "No HEI found with this UII.")
        return hei

    async def create(self, actor: ActorContext, data: LiquidationInput) -> Liquidation:
        """Create a draft liquidation."""
        require(actor, Capability.CREATE_LIQUIDATION, "You do not have permission to create liquidations.")
        hei = await self._resolve_hei_for_creator(actor, data.uii)
        liquidation = await self.build_liquidation(data, hei, actor.user_id)

        self.session.add(liquidation)
        await self._flush_new(liquidation.control_no)

        logger.info(
            "Liquidation %s created for HEI %s by %s (%s)",
            liquidation.control_no,
            hei.uii,
            actor.user_id,
            actor.ip_address,
        )
        return liquidation

    async def update(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        changes: dict[str, Any],
        expected_version: int | None = None,
    ) -> Liquidation:
        """Update editable fields. Status is never changed here."""
        liquidation = await self.load(liquidation_id)
        authorize_update(actor, liquidation, await self.hei_region_id(liquidation))

        rejected = sorted(set(changes) - UPDATABLE_FIELDS)
        if rejected:
            raise ValidationError({name: ["This field cannot be changed."] for name in rejected})

        values = dict(changes)
        errors: dict[str, list[str]] = {}
        if "academic_year" in values:
            values["academic_year"] = _clean(values["academic_year"])
            if values["academic_year"] is None:
                errors["academic_year"] = ["The academic year field is required."]
            elif len(values["academic_year"]) > 20:
                errors["academic_year"] = ["The academic year may not be greater than 20 characters."]
        if "batch_no" in values:
            values["batch_no"] = _clean(values["batch_no"])
            if values["batch_no"] is not None and len(values["batch_no"]) > 50:
                errors["batch_no"] = ["The batch no may not be greater than 50 characters."]
        if "semester" in values:
            values["semester"] = normalize_semester(values["semester"])
        if values.get("program_id") is not None and await self.session.get(Program, values["program_id"]) is None:
            errors["program_id"] = ["The selected program is invalid."]
        if values.get("number_of_grantees") is not None and values["number_of_grantees"] < 0:
            errors["number_of_grantees"] = ["The number of grantees must be at least 0."]
        if errors:
            raise ValidationError(errors)

        received = money(values.pop("total_disbursements", liquidation.amount_received))
        grantees = values.get("number_of_grantees", liquidation.number_of_grantees)
        errors = check_reconciliation(
            received,
            liquidation.amount_disbursed,
            liquidation.amount_refunded,
            liquidation.running_data,
            grantees,
        )
        if errors:
            raise ValidationError(errors)

        self._check_version(liquidation, expected_version)
        release_changed = (
            "date_fund_released" in values and values["date_fund_released"] != liquidation.date_fund_released
        )
        for name, value in values.items():
            setattr(liquidation, name, value)
        liquidation.amount_received = received
        # A new release date moves the derived deadline unless one was sent.
        if liquidation.due_date is None or (release_changed and "due_date" not in values):
            liquidation.due_date = effective_due_date(liquidation.date_fund_released, None)

        await self.flush()
        logger.info("Liquidation %s updated by %s (%s)", liquidation.control_no, actor.user_id, actor.ip_address)
        return liquidation

    # =========================================================================
    # Transitions
    # =========================================================================

    async def submit(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        remarks: str | None = None,
        expected_version: int | None = None,
    ) -> Liquidation:
        """Submit (or resubmit) a liquidation for RC review. Creator only."""
        liquidation = await self.load(liquidation_id)

        if liquidation.created_by_id != actor.user_id:
            raise PermissionDeniedError("Only the creator can submit this liquidation.")
        LiquidationStateMachine.next_status(liquidation.status, WorkflowAction.SUBMIT)
        if not liquidation.beneficiaries:
            raise InvalidStateError(
                "Add at least one beneficiary before submitting this liquidation.",
                current_status=liquidation.status,
                action=WorkflowAction.SUBMIT.value,
            )

        self._check_version(liquidation, expected_version)
        resubmission = LiquidationStateMachine.is_resubmission(liquidation.status)
        now = utcnow()

        self._transition(liquidation, WorkflowAction.SUBMIT, actor)
        liquidation.submitted_at = now
        liquidation.document_status = determine_document_status(
            bool(liquidation.beneficiaries),
            bool(liquidation.documents),
        ).value

        note = _clean(remarks)
        if resubmission:
            self._append_review(liquidation, actor, ReviewType.HEI_RESUBMISSION, remarks=note)
            compliance = liquidation.compliance
            if compliance is not None and compliance.compliance_status == "pending_hei_review":
                compliance.compliance_status = "documents_submitted"
                compliance.compliance_submitted_at = now
        elif note is not None:
            liquidation.remarks = note

        await self.flush()
        return liquidation

    async def endorse_to_accounting(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        transmittal: TransmittalInput,
        review_remarks: str | None = None,
        expected_version: int | None = None,
    ) -> Liquidation:
        """RC endorsement to accounting with transmittal details."""
        liquidation = await self.load(liquidation_id)

        require(actor, Capability.ENDORSE_TO_ACCOUNTING, "Only Regional Coordinator can endorse to accounting.")
        require_region(actor, await self.hei_region_id(liquidation))
        LiquidationStateMachine.next_status(liquidation.status, WorkflowAction.ENDORSE_TO_ACCOUNTING)

        reference_no = _clean(transmittal.transmittal_reference_no)
        if reference_no is None:
            raise ValidationError.for_field(
                "transmittal_reference_no",
                "Transmittal reference number is required for endorsement.",
            )
        if len(reference_no) > 255:
            raise ValidationError.for_field(
                "transmittal_reference_no",
                "The transmittal reference number may not be greater than 255 characters.",
            )
        if transmittal.number_of_folders is not None and transmittal.number_of_folders < 0:
            raise ValidationError.for_field("number_of_folders", "The number of folders must be at least 0.")

        self._check_version(liquidation, expected_version)
        now = utcnow()
        self._upsert_transmittal(liquidation, actor, transmittal, reference_no, now)

        self._transition(liquidation, WorkflowAction.ENDORSE_TO_ACCOUNTING, actor)
        liquidation.reviewed_by_id = actor.user_id
        liquidation.reviewed_at = now
        self._append_review(liquidation, actor, ReviewType.RC_ENDORSEMENT, remarks=_clean(review_remarks))

        await self.flush()
        return liquidation

    async def return_to_hei(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        review_remarks: str | None,
        documents_for_compliance: str | None = None,
        receiver_name: str | None = None,
        document_location: str | None = None,
        expected_version: int | None = None,
    ) -> Liquidation:
        """RC return to the HEI with remarks and an optional compliance checklist."""
        liquidation = await self.load(liquidation_id)

        require(actor, Capability.RETURN_TO_HEI, "Only Regional Coordinator can return liquidation to HEI.")
        require_region(actor, await self.hei_region_id(liquidation))
        LiquidationStateMachine.next_status(liquidation.status, WorkflowAction.RETURN_TO_HEI)

        remarks = _clean(review_remarks)
        if remarks is None:
            raise ValidationError.for_field("review_remarks", RETURN_REMARKS_REQUIRED)

        self._check_version(liquidation, expected_version)
        now = utcnow()
        checklist = _clean(documents_for_compliance)

        self._transition(liquidation, WorkflowAction.RETURN_TO_HEI, actor)
        liquidation.reviewed_by_id = actor.user_id
        liquidation.reviewed_at = now
        self._append_review(
            liquidation,
            actor,
            ReviewType.RC_RETURN,
            remarks=remarks,
            documents_for_compliance=checklist,
        )

        if checklist is not None:
            if liquidation.compliance is None:
                liquidation.compliance = LiquidationCompliance(
                    documents_required=checklist,
                    compliance_status="pending_hei_review",
                    concerns_recorded_at=now,
                )
            else:
                liquidation.compliance.documents_required = checklist
                liquidation.compliance.compliance_status = "pending_hei_review"
                liquidation.compliance.concerns_recorded_at = now
                liquidation.compliance.compliance_submitted_at = None

        existing = liquidation.transmittal
        if existing is not None:
            if _clean(receiver_name) is not None:
                existing.receiver_name = _clean(receiver_name)
            location = _clean(document_location)
            if location is not None and location != existing.document_location:
                self._record_location(existing, location, notes="Returned to HEI")

        await self.flush()
        return liquidation

    async def endorse_to_coa(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        accountant_remarks: str | None = None,
        expected_version: int | None = None,
    ) -> Liquidation:
        """Accountant endorsement to COA. Terminal."""
        liquidation = await self.load(liquidation_id)

        require(actor, Capability.ENDORSE_TO_COA, "Only Accountant can endorse to COA.")
        LiquidationStateMachine.next_status(liquidation.status, WorkflowAction.ENDORSE_TO_COA)

        self._check_version(liquidation, expected_version)
        now = utcnow()
        self._transition(liquidation, WorkflowAction.ENDORSE_TO_COA, actor)
        liquidation.accountant_reviewed_by_id = actor.user_id
        liquidation.accountant_reviewed_at = now
        liquidation.coa_endorsed_by_id = actor.user_id
        liquidation.coa_endorsed_at = now
        self._append_review(
            liquidation,
            actor,
            ReviewType.ACCOUNTANT_ENDORSEMENT,
            remarks=_clean(accountant_remarks),
        )

        await self.flush()
        return liquidation

    async def return_to_rc(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        accountant_remarks: str | None,
        expected_version: int | None = None,
    ) -> Liquidation:
        """Accountant return to the RC with remarks."""
        liquidation = await self.load(liquidation_id)

        require(actor, Capability.RETURN_TO_RC, "Only Accountant can return liquidation to Regional Coordinator.")
        LiquidationStateMachine.next_status(liquidation.status, WorkflowAction.RETURN_TO_RC)

        remarks = _clean(accountant_remarks)
        if remarks is None:
            raise ValidationError.for_field("accountant_remarks", RETURN_REMARKS_REQUIRED)

        self._check_version(liquidation, expected_version)
        self._transition(liquidation, WorkflowAction.RETURN_TO_RC, actor)
        liquidation.accountant_reviewed_by_id = actor.user_id
        liquidation.accountant_reviewed_at = utcnow()
        self._append_review(liquidation, actor, ReviewType.ACCOUNTANT_RETURN, remarks=remarks)

        await self.flush()
        return liquidation

    async def relocate_transmittal(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        location: str | None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> LiquidationTransmittal:
        """Record a move of the physical documents."""
        liquidation = await self.load(liquidation_id)

        require(actor, Capability.MANAGE_LEDGER, "You do not have permission to relocate transmittals.")
        require_region(actor, await self.hei_region_id(liquidation))
        transmittal = liquidation.transmittal
        if transmittal is None:
            raise ValidationError.for_field("transmittal", "This liquidation has no transmittal yet.")
        new_location = _clean(location)
        if new_location is None:
            raise ValidationError.for_field("location", "The location field is required.")
        if len(new_location) > 255:
            raise ValidationError.for_field("location", "The location may not be greater than 255 characters.")

        self._check_version(liquidation, expected_version)
        self._record_location(transmittal, new_location, notes=_clean(notes))
        await self.flush()
        logger.info(
            "Transmittal for %s relocated to %s by %s",
            liquidation.control_no,
            new_location,
            actor.user_id,
        )
        return transmittal

    # =========================================================================
    # Helpers
    # =========================================================================

    def _transition(self, liquidation: Liquidation, action: WorkflowAction, actor: ActorContext) -> None:
        from_status = liquidation.status
        to_status = LiquidationStateMachine.next_status(from_status, action)
        liquidation.status = to_status.value
        liquidation.status_changed_at = utcnow()
        logger.info(
            "Liquidation %s: %s -> %s by %s (%s)",
            liquidation.control_no,
            from_status,
            to_status.value,
            actor.user_id,
            actor.ip_address,
        )

    def _append_review(
        self,
        liquidation: Liquidation,
        actor: ActorContext,
        review_type: ReviewType,
        remarks: str | None = None,
        documents_for_compliance: str | None = None,
    ) -> LiquidationReview:
        review = LiquidationReview(
            sequence=len(liquidation.reviews) + 1,
            review_type=review_type.value,
            performed_by_id=actor.user_id,
            performed_by_name=actor.name,
            remarks=remarks,
            documents_for_compliance=documents_for_compliance,
            performed_at=utcnow(),
        )
        liquidation.reviews.append(review)
        return review

    def _upsert_transmittal(
        self,
        liquidation: Liquidation,
        actor: ActorContext,
        details: TransmittalInput,
        reference_no: str,
        now: datetime,
    ) -> LiquidationTransmittal:
        location = _clean(details.document_location)
        existing = liquidation.transmittal
        if existing is None:
            existing = LiquidationTransmittal(
                transmittal_reference_no=reference_no,
                document_location=location,
                endorsed_by_id=actor.user_id,
                endorsed_at=now,
                location_history=[],
            )
            liquidation.transmittal = existing
        else:
            existing.transmittal_reference_no = reference_no
            existing.endorsed_by_id = actor.user_id
            existing.endorsed_at = now
            if location is not None and location != existing.document_location:
                self._record_location(existing, location, notes="Re-endorsed to accounting")

        existing.receiver_name = _clean(details.receiver_name)
        existing.number_of_folders = details.number_of_folders
        existing.folder_location_number = _clean(details.folder_location_number)
        existing.group_transmittal = _clean(details.group_transmittal)
        existing.other_file_location = _clean(details.other_file_location)
        return existing

    def _record_location(
        self,
        transmittal: LiquidationTransmittal,
        location: str,
        notes: str | None = None,
    ) -> None:
        # JSON columns are not mutation-tracked; assign a new list
        entry = {
            "location": location,
            "previous_location": transmittal.document_location,
            "changed_at": utcnow().isoformat(),
            "notes": notes,
        }
        transmittal.location_history = [*(transmittal.location_history or []), entry]
        transmittal.document_location = location

    def _check_version(self, liquidation: Liquidation, expected_version: int | None) -> None:
        if expected_version is not None and liquidation.version != expected_version:
            raise ConcurrencyError(
                "This liquidation was modified by another user. Reload and try again.",
                {"expected_version": expected_version, "current_version": liquidation.version},
            )

    async def flush(self) -> None:
        try:
            await self.session.flush()
        except StaleDataError as exc:
            raise ConcurrencyError(
                "This liquidation was modified by another user. Reload and try again."
            ) from exc

    async def _flush_new(self, control_no: str) -> None:
        try:
            await self.session.flush()
        except IntegrityError as exc:
            if "control_no" in str(exc.orig):
                raise DuplicateControlNumberError(control_no) from exc
            raise
