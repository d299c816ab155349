"""Liquidation API endpoints: authoring, workflow transitions and bulk import."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, File, Path, Query, UploadFile, status

from liquidation_tracker.api.dependencies import AppSettings, CurrentActor, DbSession
from liquidation_tracker.api.schemas import (
    AccountantReviewRequest,
    EndorseToAccountingRequest,
    ErrorResponse,
    FinancialSummaryResponse,
    ImportResponse,
    LiquidationCreate,
    LiquidationDetailResponse,
    LiquidationListResponse,
    LiquidationResponse,
    LiquidationUpdate,
    ReturnToHEIRequest,
    ReviewResponse,
    SubmitRequest,
    TransmittalLocationRequest,
    TransmittalResponse,
)
from liquidation_tracker.models import Liquidation
from liquidation_tracker.services.import_service import ImportService
from liquidation_tracker.services.reconciliation import FinancialSummary
from liquidation_tracker.services.workflow import (
    LiquidationInput,
    LiquidationService,
    TransmittalInput,
)

router = APIRouter(prefix="/liquidations", tags=["liquidations"])

ERROR_RESPONSES = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


def to_response(liquidation: Liquidation) -> LiquidationResponse:
    response = LiquidationResponse.model_validate(liquidation)
    response.financial = FinancialSummaryResponse.model_validate(
        FinancialSummary.for_liquidation(liquidation)
    )
    return response


def to_detail(liquidation: Liquidation) -> LiquidationDetailResponse:
    response = LiquidationDetailResponse.model_validate(liquidation)
    response.financial = FinancialSummaryResponse.model_validate(
        FinancialSummary.for_liquidation(liquidation)
    )
    return response


async def _committed_detail(db: DbSession, liquidation_id: UUID) -> LiquidationDetailResponse:
    await db.commit()
    service = LiquidationService(db)
    return to_detail(await service.load(liquidation_id))


# ============================================================================
# Liquidation CRUD
# ============================================================================


@router.post(
    "",
    response_model=LiquidationDetailResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_liquidation(
    db: DbSession,
    actor: CurrentActor,
    payload: LiquidationCreate,
) -> LiquidationDetailResponse:
    """Create a liquidation in draft status."""
    service = LiquidationService(db)
    liquidation = await service.create(actor, LiquidationInput(**payload.model_dump()))
    return await _committed_detail(db, liquidation.id)


@router.get(
    "",
    response_model=LiquidationListResponse,
    responses=ERROR_RESPONSES,
)
async def list_liquidations(
    db: DbSession,
    actor: CurrentActor,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    document_status: str | None = None,
    program_id: UUID | None = None,
    search: str | None = None,
) -> LiquidationListResponse:
    """List liquidations visible to the acting user."""
    service = LiquidationService(db)
    items, total = await service.list_liquidations(
        actor,
        program_id=program_id,
        status=status_filter,
        document_status=document_status,
        search=search,
        page=page,
        page_size=page_size,
    )
    return LiquidationListResponse(
        items=[to_response(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post(
    "/bulk-import",
    response_model=ImportResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def bulk_import_liquidations(
    db: DbSession,
    actor: CurrentActor,
    settings: AppSettings,
    file: Annotated[UploadFile, File()],
) -> ImportResponse:
    """Import liquidations from an Excel sheet. All rows or none."""
    service = ImportService(db, settings)
    content = await file.read()
    result = await service.import_liquidations(actor, file.filename, content)
    await db.commit()
    return ImportResponse(
        imported=result.imported,
        skipped_rows=result.skipped_rows,
        ids=result.ids,
        message=f"Successfully imported {result.imported} liquidations.",
    )


@router.get(
    "/{liquidation_id}",
    response_model=LiquidationDetailResponse,
    responses=ERROR_RESPONSES,
)
async def get_liquidation(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
) -> LiquidationDetailResponse:
    """Get a liquidation with its children and financial summary."""
    service = LiquidationService(db)
    return to_detail(await service.get_for_actor(actor, liquidation_id))


@router.put(
    "/{liquidation_id}",
    response_model=LiquidationDetailResponse,
    responses=ERROR_RESPONSES,
)
async def update_liquidation(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    payload: LiquidationUpdate,
) -> LiquidationDetailResponse:
    """Update editable fields of a liquidation."""
    changes = payload.model_dump(exclude_unset=True)
    expected_version = changes.pop("expected_version", None)
    service = LiquidationService(db)
    await service.update(actor, liquidation_id, changes, expected_version=expected_version)
    return await _committed_detail(db, liquidation_id)


# ============================================================================
# Workflow transitions
# ============================================================================


@router.post(
    "/{liquidation_id}/submit",
    response_model=LiquidationDetailResponse,
    responses=ERROR_RESPONSES,
)
async def submit_liquidation(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    payload: SubmitRequest | None = None,
) -> LiquidationDetailResponse:
    """Submit or resubmit a liquidation for RC review."""
    payload = payload or SubmitRequest()
    service = LiquidationService(db)
    await service.submit(
        actor,
        liquidation_id,
        remarks=payload.remarks,
        expected_version=payload.expected_version,
    )
    return await _committed_detail(db, liquidation_id)


@router.post(
    "/{liquidation_id}/endorse-to-accounting",
    response_model=LiquidationDetailResponse,
    responses=ERROR_RESPONSES,
)
async def endorse_to_accounting(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    payload: EndorseToAccountingRequest,
) -> LiquidationDetailResponse:
    """RC endorsement to accounting."""
    service = LiquidationService(db)
    await service.endorse_to_accounting(
        actor,
        liquidation_id,
        transmittal=TransmittalInput(
            transmittal_reference_no=payload.transmittal_reference_no,
            receiver_name=payload.receiver_name,
            document_location=payload.document_location,
            number_of_folders=payload.number_of_folders,
            folder_location_number=payload.folder_location_number,
            group_transmittal=payload.group_transmittal,
            other_file_location=payload.other_file_location,
        ),
        review_remarks=payload.review_remarks,
        expected_version=payload.expected_version,
    )
    return await _committed_detail(db, liquidation_id)


@router.post(
    "/{liquidation_id}/return-to-hei",
    response_model=LiquidationDetailResponse,
    responses=ERROR_RESPONSES,
)
async def return_to_hei(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    payload: ReturnToHEIRequest,
) -> LiquidationDetailResponse:
    """RC return to the HEI."""
    service = LiquidationService(db)
    await service.return_to_hei(
        actor,
        liquidation_id,
        review_remarks=payload.review_remarks,
        documents_for_compliance=payload.documents_for_compliance,
        receiver_name=payload.receiver_name,
        document_location=payload.document_location,
        expected_version=payload.expected_version,
    )
    return await _committed_detail(db, liquidation_id)


@router.post(
    "/{liquidation_id}/endorse-to-coa",
    response_model=LiquidationDetailResponse,
    responses=ERROR_RESPONSES,
)
async def endorse_to_coa(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    payload: AccountantReviewRequest | None = None,
) -> LiquidationDetailResponse:
    """Accountant endorsement to COA."""
    payload = payload or AccountantReviewRequest()
    service = LiquidationService(db)
    await service.endorse_to_coa(
        actor,
        liquidation_id,
        accountant_remarks=payload.accountant_remarks,
        expected_version=payload.expected_version,
    )
    return await _committed_detail(db, liquidation_id)


@router.post(
    "/{liquidation_id}/return-to-rc",
    response_model=LiquidationDetailResponse,
    responses=ERROR_RESPONSES,
)
async def return_to_rc(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    payload: AccountantReviewRequest,
) -> LiquidationDetailResponse:
    """Accountant return to the RC."""
    service = LiquidationService(db)
    await service.return_to_rc(
        actor,
        liquidation_id,
        accountant_remarks=payload.accountant_remarks,
        expected_version=payload.expected_version,
    )
    return await _committed_detail(db, liquidation_id)


@router.get(
    "/{liquidation_id}/reviews",
    response_model=list[ReviewResponse],
    responses=ERROR_RESPONSES,
)
async def review_history(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
) -> list[ReviewResponse]:
    """Review history, oldest first."""
    service = LiquidationService(db)
    reviews = await service.review_history(actor, liquidation_id)
    return [ReviewResponse.model_validate(review) for review in reviews]


@router.post(
    "/{liquidation_id}/transmittal/location",
    response_model=TransmittalResponse,
    responses=ERROR_RESPONSES,
)
async def relocate_transmittal(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    payload: TransmittalLocationRequest,
) -> TransmittalResponse:
    """Record a new physical location for the transmitted documents."""
    service = LiquidationService(db)
    transmittal = await service.relocate_transmittal(
        actor,
        liquidation_id,
        location=payload.location,
        notes=payload.notes,
        expected_version=payload.expected_version,
    )
    await db.commit()
    return TransmittalResponse.model_validate(transmittal)
