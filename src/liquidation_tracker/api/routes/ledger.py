"""Ledger endpoints: beneficiaries, running data and tracking entries."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, File, Path, UploadFile, status

from liquidation_tracker.api.dependencies import AppSettings, CurrentActor, DbSession
from liquidation_tracker.api.routes.liquidations import ERROR_RESPONSES
from liquidation_tracker.api.schemas import (
    BeneficiaryCreate,
    BeneficiaryResponse,
    ImportResponse,
    RunningDataCreate,
    RunningDataResponse,
    TrackingEntryCreate,
    TrackingEntryResponse,
)
from liquidation_tracker.services.import_service import ImportService
from liquidation_tracker.services.ledger_service import (
    BeneficiaryInput,
    LedgerService,
    RunningDataInput,
    TrackingEntryInput,
)

router = APIRouter(prefix="/liquidations/{liquidation_id}", tags=["ledger"])


# ============================================================================
# Beneficiaries
# ============================================================================


@router.get(
    "/beneficiaries",
    response_model=list[BeneficiaryResponse],
    responses=ERROR_RESPONSES,
)
async def list_beneficiaries(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
) -> list[BeneficiaryResponse]:
    service = LedgerService(db)
    rows = await service.list_beneficiaries(actor, liquidation_id)
    return [BeneficiaryResponse.model_validate(row) for row in rows]


@router.post(
    "/beneficiaries",
    response_model=BeneficiaryResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def add_beneficiary(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    payload: BeneficiaryCreate,
) -> BeneficiaryResponse:
    """Add one beneficiary and recompute the disbursed total."""
    service = LedgerService(db)
    beneficiary = await service.add_beneficiary(actor, liquidation_id, BeneficiaryInput(**payload.model_dump()))
    await db.commit()
    return BeneficiaryResponse.model_validate(beneficiary)


@router.post(
    "/beneficiaries/import",
    response_model=ImportResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def import_beneficiaries(
    db: DbSession,
    actor: CurrentActor,
    settings: AppSettings,
    liquidation_id: Annotated[UUID, Path()],
    file: Annotated[UploadFile, File()],
) -> ImportResponse:
    """Import beneficiaries from an Excel sheet. All rows or none."""
    service = ImportService(db, settings)
    content = await file.read()
    result = await service.import_beneficiaries(actor, liquidation_id, file.filename, content)
    await db.commit()
    return ImportResponse(
        imported=result.imported,
        skipped_rows=result.skipped_rows,
        ids=result.ids,
        message=f"Successfully imported {result.imported} beneficiaries.",
    )


@router.delete(
    "/beneficiaries/{beneficiary_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def remove_beneficiary(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    beneficiary_id: Annotated[UUID, Path()],
) -> None:
    service = LedgerService(db)
    await service.remove_beneficiary(actor, liquidation_id, beneficiary_id)
    await db.commit()


# ============================================================================
# Running data
# ============================================================================


@router.get(
    "/running-data",
    response_model=list[RunningDataResponse],
    responses=ERROR_RESPONSES,
)
async def list_running_data(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
) -> list[RunningDataResponse]:
    service = LedgerService(db)
    rows = await service.list_running_data(actor, liquidation_id)
    return [RunningDataResponse.model_validate(row) for row in rows]


@router.post(
    "/running-data",
    response_model=RunningDataResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def add_running_data(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    payload: RunningDataCreate,
) -> RunningDataResponse:
    """Add a running-data row. Totals exceeding the disbursements are rejected."""
    service = LedgerService(db)
    entry = await service.add_running_data(actor, liquidation_id, RunningDataInput(**payload.model_dump()))
    await db.commit()
    return RunningDataResponse.model_validate(entry)


@router.delete(
    "/running-data/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def remove_running_data(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    entry_id: Annotated[UUID, Path()],
) -> None:
    service = LedgerService(db)
    await service.remove_running_data(actor, liquidation_id, entry_id)
    await db.commit()


# ============================================================================
# Tracking entries
# ============================================================================


@router.get(
    "/tracking-entries",
    response_model=list[TrackingEntryResponse],
    responses=ERROR_RESPONSES,
)
async def list_tracking_entries(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
) -> list[TrackingEntryResponse]:
    service = LedgerService(db)
    rows = await service.list_tracking_entries(actor, liquidation_id)
    return [TrackingEntryResponse.model_validate(row) for row in rows]


@router.post(
    "/tracking-entries",
    response_model=TrackingEntryResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def add_tracking_entry(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    payload: TrackingEntryCreate,
) -> TrackingEntryResponse:
    service = LedgerService(db)
    entry = await service.add_tracking_entry(actor, liquidation_id, TrackingEntryInput(**payload.model_dump()))
    await db.commit()
    return TrackingEntryResponse.model_validate(entry)


@router.delete(
    "/tracking-entries/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def remove_tracking_entry(
    db: DbSession,
    actor: CurrentActor,
    liquidation_id: Annotated[UUID, Path()],
    entry_id: Annotated[UUID, Path()],
) -> None:
    service = LedgerService(db)
    await service.remove_tracking_entry(actor, liquidation_id, entry_id)
    await db.commit()
