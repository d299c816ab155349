"""Tests for the liquidation workflow service."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from liquidation_tracker.errors import (
    ConcurrencyError,
    DuplicateControlNumberError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from liquidation_tracker.models import Liquidation
from liquidation_tracker.services.authorization import ActorContext
from liquidation_tracker.services.workflow import (
    LiquidationInput,
    LiquidationService,
    TransmittalInput,
    normalize_document_status,
    normalize_semester,
)

from .conftest import Directory, MakeLiquidation

TRANSMITTAL = TransmittalInput(
    transmittal_reference_no="TR-2025-014",
    receiver_name="Records Unit",
    document_location="Cabinet A",
    number_of_folders=2,
)


@pytest.fixture
def service(session: AsyncSession) -> LiquidationService:
    return LiquidationService(session)


async def submitted(
    service: LiquidationService,
    make_liquidation: MakeLiquidation,
    hei_actor: ActorContext,
) -> Liquidation:
    liquidation = await make_liquidation()
    return await service.submit(hei_actor, liquidation.id)


async def endorsed(
    service: LiquidationService,
    make_liquidation: MakeLiquidation,
    hei_actor: ActorContext,
    rc_actor: ActorContext,
) -> Liquidation:
    liquidation = await submitted(service, make_liquidation, hei_actor)
    return await service.endorse_to_accounting(rc_actor, liquidation.id, TRANSMITTAL)


class TestNormalization:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1", "1ST"),
            ("1st", "1ST"),
            ("1st Semester", "1ST"),
            (2, "2ND"),
            (2.0, "2ND"),
            ("Second", "2ND"),
            ("summer", "SUMMER"),
            (None, "1ST"),
            ("unknown", "1ST"),
        ],
    )
    def test_semester(self, value, expected):
        assert normalize_semester(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("completed", "COMPLETE"),
            ("Incomplete", "PARTIAL"),
            ("N/A", "NONE"),
            (None, "NONE"),
            ("", "NONE"),
        ],
    )
    def test_document_status(self, value, expected):
        assert normalize_document_status(value).value == expected


class TestCreate:
    async def test_hei_creates_draft(self, service, hei_actor, directory: Directory):
        liquidation = await service.create(
            hei_actor,
            LiquidationInput(
                academic_year="2024-2025",
                total_disbursements=Decimal("150000"),
                date_fund_released=date(2025, 1, 1),
                semester="2nd",
                program_id=directory.program.id,
            ),
        )

        assert liquidation.status == "draft"
        assert liquidation.hei_id == directory.hei.id
        assert liquidation.amount_received == Decimal("150000.00")
        assert liquidation.document_status == "NONE"
        assert liquidation.semester == "2ND"
        assert liquidation.due_date == date(2025, 4, 1)
        assert liquidation.control_no.startswith("LIQ-")
        assert liquidation.version == 1

    async def test_generated_control_numbers_increment(self, service, hei_actor):
        first = await service.create(hei_actor, LiquidationInput(academic_year="2024-2025"))
        second = await service.create(hei_actor, LiquidationInput(academic_year="2024-2025"))

        prefix, _, number = first.control_no.rpartition("-")
        assert second.control_no == f"{prefix}-{int(number) + 1:05d}"

    async def test_duplicate_control_number(self, service, hei_actor):
        data = LiquidationInput(academic_year="2024-2025", dv_control_no="2025-0001")
        await service.create(hei_actor, data)

        with pytest.raises(DuplicateControlNumberError) as exc_info:
            await service.create(hei_actor, data)
        assert exc_info.value.control_no == "2025-0001"

    async def test_rc_cannot_create(self, service, rc_actor):
        with pytest.raises(PermissionDeniedError):
            await service.create(rc_actor, LiquidationInput(academic_year="2024-2025", uii="HEI-001"))

    async def test_hei_user_cannot_file_for_other_hei(self, service, hei_actor):
        with pytest.raises(PermissionDeniedError):
            await service.create(hei_actor, LiquidationInput(academic_year="2024-2025", uii="HEI-002"))

    async def test_admin_needs_known_uii(self, service, admin_actor):
        with pytest.raises(ValidationError) as exc_info:
            await service.create(admin_actor, LiquidationInput(academic_year="2024-2025", uii="NOPE"))
        assert "uii" in exc_info.value.errors

    async def test_admin_resolves_uii_case_insensitively(self, service, admin_actor, directory: Directory):
        liquidation = await service.create(admin_actor, LiquidationInput(academic_year="2024-2025", uii="hei-002"))
        assert liquidation.hei_id == directory.other_hei.id

    async def test_field_validation(self, service, hei_actor):
        with pytest.raises(ValidationError) as exc_info:
            await service.create(
                hei_actor,
                LiquidationInput(
                    academic_year=" ",
                    batch_no="B" * 51,
                    total_disbursements=Decimal("-1"),
                    number_of_grantees=-3,
                ),
            )
        assert set(exc_info.value.errors) == {
            "academic_year",
            "batch_no",
            "total_disbursements",
            "number_of_grantees",
        }


class TestSubmit:
    async def test_first_submission(self, service, make_liquidation, hei_actor):
        liquidation = await make_liquidation()
        result = await service.submit(hei_actor, liquidation.id)

        assert result.status == "for_initial_review"
        assert result.submitted_at is not None
        assert result.document_status == "PARTIAL"
        assert result.reviews == []

    async def test_first_submission_keeps_remarks(self, service, make_liquidation, hei_actor):
        liquidation = await make_liquidation(remarks="Drafted by registrar")

        result = await service.submit(hei_actor, liquidation.id, remarks="  Initial submission notes ")

        assert result.remarks == "Initial submission notes"
        assert result.reviews == []

    async def test_first_submission_without_remarks_keeps_existing(self, service, make_liquidation, hei_actor):
        liquidation = await make_liquidation(remarks="Drafted by registrar")

        result = await service.submit(hei_actor, liquidation.id, remarks="   ")
        assert result.remarks == "Drafted by registrar"

    async def test_zero_beneficiaries_rejected_for_any_creator(self, service, make_liquidation, admin_actor):
        liquidation = await make_liquidation(actor=admin_actor, beneficiaries=0)

        with pytest.raises(InvalidStateError, match="at least one beneficiary"):
            await service.submit(admin_actor, liquidation.id)

        reloaded = await service.load(liquidation.id)
        assert reloaded.status == "draft"

    async def test_only_creator_can_submit(self, service, make_liquidation, admin_actor, super_admin_actor):
        liquidation = await make_liquidation()

        for actor in (admin_actor, super_admin_actor):
            with pytest.raises(PermissionDeniedError, match="Only the creator"):
                await service.submit(actor, liquidation.id)

    async def test_cannot_submit_twice(self, service, make_liquidation, hei_actor):
        liquidation = await submitted(service, make_liquidation, hei_actor)

        with pytest.raises(InvalidStateError):
            await service.submit(hei_actor, liquidation.id)

    async def test_stale_version_rejected(self, service, make_liquidation, hei_actor):
        liquidation = await make_liquidation()
        stale = liquidation.version - 1

        with pytest.raises(ConcurrencyError):
            await service.submit(hei_actor, liquidation.id, expected_version=stale)

        reloaded = await service.load(liquidation.id)
        assert reloaded.status == "draft"

    async def test_current_version_accepted(self, service, make_liquidation, hei_actor):
        liquidation = await make_liquidation()
        result = await service.submit(hei_actor, liquidation.id, expected_version=liquidation.version)
        assert result.status == "for_initial_review"


class TestRegionalCoordinatorReview:
    async def test_endorse_to_accounting(self, service, make_liquidation, hei_actor, rc_actor):
        liquidation = await endorsed(service, make_liquidation, hei_actor, rc_actor)

        assert liquidation.status == "endorsed_to_accounting"
        assert liquidation.reviewed_by_id == rc_actor.user_id
        assert liquidation.transmittal.transmittal_reference_no == "TR-2025-014"
        assert liquidation.transmittal.document_location == "Cabinet A"
        assert [r.review_type for r in liquidation.reviews] == ["rc_endorsement"]
        assert liquidation.reviews[0].performed_by_name == "Rita Coordinator"

    @pytest.mark.parametrize("reference", [None, "", "   "])
    async def test_endorse_requires_transmittal_reference(
        self, service, make_liquidation, hei_actor, rc_actor, reference
    ):
        liquidation = await submitted(service, make_liquidation, hei_actor)

        with pytest.raises(ValidationError) as exc_info:
            await service.endorse_to_accounting(
                rc_actor,
                liquidation.id,
                TransmittalInput(transmittal_reference_no=reference),
            )
        assert "transmittal_reference_no" in exc_info.value.errors

        reloaded = await service.load(liquidation.id)
        assert reloaded.status == "for_initial_review"
        assert reloaded.reviews == []
        assert reloaded.transmittal is None

    async def test_endorse_rejects_long_reference(self, service, make_liquidation, hei_actor, rc_actor):
        liquidation = await submitted(service, make_liquidation, hei_actor)

        with pytest.raises(ValidationError):
            await service.endorse_to_accounting(
                rc_actor,
                liquidation.id,
                TransmittalInput(transmittal_reference_no="T" * 256),
            )

    async def test_role_checked_before_state(self, service, make_liquidation, accountant_actor):
        liquidation = await make_liquidation()

        with pytest.raises(PermissionDeniedError, match="Only Regional Coordinator"):
            await service.endorse_to_accounting(accountant_actor, liquidation.id, TRANSMITTAL)

    async def test_state_checked_before_fields(self, service, make_liquidation, rc_actor):
        liquidation = await make_liquidation()

        with pytest.raises(InvalidStateError, match="not available for Regional Coordinator review"):
            await service.endorse_to_accounting(rc_actor, liquidation.id, TransmittalInput())

    async def test_rc_outside_region_rejected(self, service, make_liquidation, hei_actor, other_rc_actor):
        liquidation = await submitted(service, make_liquidation, hei_actor)

        with pytest.raises(PermissionDeniedError, match="outside your assigned region"):
            await service.endorse_to_accounting(other_rc_actor, liquidation.id, TRANSMITTAL)

    async def test_super_admin_may_endorse(self, service, make_liquidation, hei_actor, super_admin_actor):
        liquidation = await submitted(service, make_liquidation, hei_actor)
        result = await service.endorse_to_accounting(super_admin_actor, liquidation.id, TRANSMITTAL)
        assert result.status == "endorsed_to_accounting"

    async def test_return_to_hei_with_checklist(self, service, make_liquidation, hei_actor, rc_actor):
        liquidation = await submitted(service, make_liquidation, hei_actor)
        result = await service.return_to_hei(
            rc_actor,
            liquidation.id,
            review_remarks="Missing official receipts",
            documents_for_compliance="Official receipts; signed disbursement sheet",
        )

        assert result.status == "returned_to_hei"
        review = result.reviews[-1]
        assert review.review_type == "rc_return"
        assert review.remarks == "Missing official receipts"
        assert review.documents_for_compliance == "Official receipts; signed disbursement sheet"
        assert result.compliance.compliance_status == "pending_hei_review"
        assert result.compliance.documents_required == "Official receipts; signed disbursement sheet"

    @pytest.mark.parametrize("remarks", [None, "", "  "])
    async def test_return_to_hei_requires_remarks(self, service, make_liquidation, hei_actor, rc_actor, remarks):
        liquidation = await submitted(service, make_liquidation, hei_actor)

        with pytest.raises(ValidationError) as exc_info:
            await service.return_to_hei(rc_actor, liquidation.id, review_remarks=remarks)
        assert "review_remarks" in exc_info.value.errors

        reloaded = await service.load(liquidation.id)
        assert reloaded.status == "for_initial_review"

    async def test_resubmission_marks_compliance_submitted(self, service, make_liquidation, hei_actor, rc_actor):
        liquidation = await submitted(service, make_liquidation, hei_actor)
        await service.return_to_hei(
            rc_actor,
            liquidation.id,
            review_remarks="Incomplete",
            documents_for_compliance="Receipts",
        )

        result = await service.submit(hei_actor, liquidation.id, remarks="Receipts attached")

        assert result.status == "for_initial_review"
        assert [r.review_type for r in result.reviews] == ["rc_return", "hei_resubmission"]
        assert result.reviews[-1].remarks == "Receipts attached"
        assert result.compliance.compliance_status == "documents_submitted"
        assert result.compliance.compliance_submitted_at is not None


class TestAccountantReview:
    async def test_endorse_to_coa(self, service, make_liquidation, hei_actor, rc_actor, accountant_actor):
        liquidation = await endorsed(service, make_liquidation, hei_actor, rc_actor)
        result = await service.endorse_to_coa(accountant_actor, liquidation.id, accountant_remarks="OK")

        assert result.status == "endorsed_to_coa"
        assert result.coa_endorsed_by_id == accountant_actor.user_id
        assert result.accountant_reviewed_at is not None
        assert result.reviews[-1].review_type == "accountant_endorsement"

    async def test_rc_cannot_endorse_to_coa(self, service, make_liquidation, hei_actor, rc_actor):
        liquidation = await endorsed(service, make_liquidation, hei_actor, rc_actor)

        with pytest.raises(PermissionDeniedError, match="Only Accountant"):
            await service.endorse_to_coa(rc_actor, liquidation.id)

    async def test_return_to_rc_on_draft_is_invalid_state(self, service, make_liquidation, accountant_actor):
        liquidation = await make_liquidation()

        with pytest.raises(InvalidStateError, match="not pending Accountant review"):
            await service.return_to_rc(accountant_actor, liquidation.id, accountant_remarks="Wrong")

    async def test_return_to_rc_requires_remarks(
        self, service, make_liquidation, hei_actor, rc_actor, accountant_actor
    ):
        liquidation = await endorsed(service, make_liquidation, hei_actor, rc_actor)

        with pytest.raises(ValidationError) as exc_info:
            await service.return_to_rc(accountant_actor, liquidation.id, accountant_remarks=" ")
        assert "accountant_remarks" in exc_info.value.errors

    async def test_terminal_status_rejects_everything(
        self, service, make_liquidation, hei_actor, rc_actor, accountant_actor
    ):
        liquidation = await endorsed(service, make_liquidation, hei_actor, rc_actor)
        await service.endorse_to_coa(accountant_actor, liquidation.id)

        with pytest.raises(InvalidStateError):
            await service.return_to_rc(accountant_actor, liquidation.id, accountant_remarks="Too late")
        with pytest.raises(InvalidStateError):
            await service.return_to_hei(rc_actor, liquidation.id, review_remarks="Too late")
        with pytest.raises(InvalidStateError):
            await service.submit(hei_actor, liquidation.id)


class TestRoundTrip:
    async def test_full_round_trip(self, service, make_liquidation, hei_actor, rc_actor, accountant_actor):
        liquidation = await make_liquidation()
        await service.submit(hei_actor, liquidation.id)
        await service.endorse_to_accounting(rc_actor, liquidation.id, TRANSMITTAL, review_remarks="Complete")
        await service.return_to_rc(accountant_actor, liquidation.id, accountant_remarks="Check folder count")
        await service.endorse_to_accounting(
            rc_actor,
            liquidation.id,
            TransmittalInput(transmittal_reference_no="TR-2025-015", document_location="Cabinet B"),
        )
        await service.endorse_to_coa(accountant_actor, liquidation.id)

        result = await service.load(liquidation.id)
        assert result.status == "endorsed_to_coa"
        assert [r.review_type for r in result.reviews] == [
            "rc_endorsement",
            "accountant_return",
            "rc_endorsement",
            "accountant_endorsement",
        ]
        assert [r.sequence for r in result.reviews] == [1, 2, 3, 4]
        assert result.transmittal.transmittal_reference_no == "TR-2025-015"
        assert result.transmittal.document_location == "Cabinet B"
        assert result.transmittal.location_history[-1]["previous_location"] == "Cabinet A"

    async def test_history_is_append_only(self, service, make_liquidation, hei_actor, rc_actor, accountant_actor):
        liquidation = await endorsed(service, make_liquidation, hei_actor, rc_actor)
        first = [(r.id, r.review_type, r.remarks) for r in liquidation.reviews]

        await service.return_to_rc(accountant_actor, liquidation.id, accountant_remarks="Recount")
        result = await service.load(liquidation.id)

        assert [(r.id, r.review_type, r.remarks) for r in result.reviews[:1]] == first
        assert len(result.reviews) == 2


class TestUpdate:
    async def test_hei_creator_updates_draft(self, service, make_liquidation, hei_actor):
        liquidation = await make_liquidation()
        result = await service.update(
            hei_actor,
            liquidation.id,
            {"purpose": "Second tranche", "semester": "summer"},
            expected_version=liquidation.version,
        )
        assert result.purpose == "Second tranche"
        assert result.semester == "SUMMER"

    async def test_hei_cannot_update_after_submit(self, service, make_liquidation, hei_actor):
        liquidation = await submitted(service, make_liquidation, hei_actor)

        with pytest.raises(PermissionDeniedError):
            await service.update(hei_actor, liquidation.id, {"purpose": "Late edit"})

    async def test_status_is_never_updatable(self, service, make_liquidation, admin_actor):
        liquidation = await make_liquidation()

        with pytest.raises(ValidationError) as exc_info:
            await service.update(admin_actor, liquidation.id, {"status": "endorsed_to_coa"})
        assert exc_info.value.errors == {"status": ["This field cannot be changed."]}

    async def test_lowering_total_below_disbursed_rejected(self, service, make_liquidation, admin_actor):
        liquidation = await make_liquidation(beneficiaries=2)

        with pytest.raises(ValidationError) as exc_info:
            await service.update(admin_actor, liquidation.id, {"total_disbursements": Decimal("15000")})
        assert "amount_disbursed" in exc_info.value.errors

        reloaded = await service.load(liquidation.id)
        assert reloaded.amount_received == Decimal("100000.00")

    async def test_rc_updates_within_region_only(self, service, make_liquidation, rc_actor, other_rc_actor):
        liquidation = await make_liquidation()

        result = await service.update(rc_actor, liquidation.id, {"remarks": "Checked"})
        assert result.remarks == "Checked"
        with pytest.raises(PermissionDeniedError):
            await service.update(other_rc_actor, liquidation.id, {"remarks": "Nope"})

    async def test_stale_version(self, service, make_liquidation, admin_actor):
        liquidation = await make_liquidation()
        with pytest.raises(ConcurrencyError):
            await service.update(admin_actor, liquidation.id, {"remarks": "x"}, expected_version=99)

    async def test_new_release_date_moves_derived_due_date(self, service, make_liquidation, admin_actor):
        liquidation = await make_liquidation(date_fund_released=date(2025, 1, 1))
        assert liquidation.due_date == date(2025, 4, 1)

        result = await service.update(admin_actor, liquidation.id, {"date_fund_released": date(2025, 2, 1)})
        assert result.due_date == date(2025, 5, 2)

    async def test_explicit_due_date_wins_over_release_date(self, service, make_liquidation, admin_actor):
        liquidation = await make_liquidation(date_fund_released=date(2025, 1, 1))

        result = await service.update(
            admin_actor,
            liquidation.id,
            {"date_fund_released": date(2025, 2, 1), "due_date": date(2025, 6, 30)},
        )
        assert result.due_date == date(2025, 6, 30)

    async def test_unrelated_update_keeps_due_date(self, service, make_liquidation, admin_actor):
        liquidation = await make_liquidation(date_fund_released=date(2025, 1, 1), due_date=date(2025, 3, 15))

        result = await service.update(admin_actor, liquidation.id, {"purpose": "Tuition"})
        assert result.due_date == date(2025, 3, 15)


class TestConcurrentTransitions:
    async def test_interleaved_transition_is_rejected(
        self,
        service,
        session,
        session_factory,
        make_liquidation,
        hei_actor,
        rc_actor,
        accountant_actor,
    ):
        liquidation = await endorsed(service, make_liquidation, hei_actor, rc_actor)
        await session.commit()

        async def rival_endorses_to_coa() -> None:
            async with session_factory() as rival:
                await LiquidationService(rival).endorse_to_coa(
                    accountant_actor, liquidation.id, accountant_remarks="Complete"
                )
                await rival.commit()

        class InterleavedService(LiquidationService):
            """Lets another session commit between loading and flushing."""

            async def load(self, liquidation_id):
                loaded = await super().load(liquidation_id)
                await rival_endorses_to_coa()
                return loaded

        async with session_factory() as racer:
            with pytest.raises(ConcurrencyError):
                await InterleavedService(racer).return_to_rc(
                    accountant_actor, liquidation.id, accountant_remarks="Recount folders"
                )
            await racer.rollback()

        async with session_factory() as check:
            final = await LiquidationService(check).load(liquidation.id)
        assert final.status == "endorsed_to_coa"
        assert [review.review_type for review in final.reviews] == ["rc_endorsement", "accountant_endorsement"]

    async def test_transition_on_fresh_state_after_rival_commit(
        self,
        service,
        session,
        session_factory,
        make_liquidation,
        hei_actor,
        rc_actor,
        accountant_actor,
    ):
        liquidation = await endorsed(service, make_liquidation, hei_actor, rc_actor)
        await session.commit()

        async with session_factory() as first, session_factory() as second:
            await LiquidationService(second).load(liquidation.id)
            await LiquidationService(first).endorse_to_coa(accountant_actor, liquidation.id)
            await first.commit()

            with pytest.raises(InvalidStateError):
                await LiquidationService(second).return_to_rc(
                    accountant_actor, liquidation.id, accountant_remarks="Too late"
                )


class TestReads:
    async def test_list_is_role_scoped(
        self, service, make_liquidation, hei_actor, admin_actor, rc_actor, other_rc_actor, accountant_actor
    ):
        await make_liquidation()
        await make_liquidation(actor=admin_actor, uii="HEI-002")

        _, hei_total = await service.list_liquidations(hei_actor)
        _, rc_total = await service.list_liquidations(rc_actor)
        _, other_rc_total = await service.list_liquidations(other_rc_actor)
        _, accountant_total = await service.list_liquidations(accountant_actor)

        assert (hei_total, rc_total, other_rc_total, accountant_total) == (1, 1, 1, 2)

    async def test_list_filters_and_search(self, service, make_liquidation, hei_actor, admin_actor):
        first = await make_liquidation(dv_control_no="2025-0001")
        await make_liquidation(dv_control_no="2025-0002")
        await service.submit(hei_actor, first.id)

        items, total = await service.list_liquidations(admin_actor, status="for_initial_review")
        assert total == 1
        assert items[0].id == first.id

        _, total = await service.list_liquidations(admin_actor, search="northern luzon")
        assert total == 2

        items, total = await service.list_liquidations(admin_actor, search="0002")
        assert total == 1
        assert items[0].control_no == "2025-0002"

    async def test_pagination(self, service, make_liquidation, admin_actor):
        for _ in range(3):
            await make_liquidation(beneficiaries=0)

        items, total = await service.list_liquidations(admin_actor, page=2, page_size=2)
        assert total == 3
        assert len(items) == 1

    async def test_hei_cannot_view_other_institution(self, service, make_liquidation, admin_actor, hei_actor):
        liquidation = await make_liquidation(actor=admin_actor, uii="HEI-002")

        with pytest.raises(PermissionDeniedError):
            await service.get_for_actor(hei_actor, liquidation.id)

    async def test_missing_liquidation(self, service, admin_actor):
        with pytest.raises(NotFoundError):
            await service.get_for_actor(admin_actor, uuid4())


class TestRelocateTransmittal:
    async def test_relocate_appends_history(self, service, make_liquidation, hei_actor, rc_actor):
        liquidation = await endorsed(service, make_liquidation, hei_actor, rc_actor)

        transmittal = await service.relocate_transmittal(
            rc_actor,
            liquidation.id,
            location="Archive Room 2",
            notes="Moved for audit",
        )

        assert transmittal.document_location == "Archive Room 2"
        assert transmittal.location_history[-1]["previous_location"] == "Cabinet A"
        assert transmittal.location_history[-1]["notes"] == "Moved for audit"

    async def test_relocate_requires_transmittal(self, service, make_liquidation, rc_actor):
        liquidation = await make_liquidation()

        with pytest.raises(ValidationError):
            await service.relocate_transmittal(rc_actor, liquidation.id, location="Anywhere")

    async def test_hei_cannot_relocate(self, service, make_liquidation, hei_actor, rc_actor):
        liquidation = await endorsed(service, make_liquidation, hei_actor, rc_actor)

        with pytest.raises(PermissionDeniedError):
            await service.relocate_transmittal(hei_actor, liquidation.id, location="Home")
