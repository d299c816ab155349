"""Supporting document endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, File, Form, Path, UploadFile, status

from liquidation_tracker.api.dependencies import AppSettings, CurrentActor, DbSession
from liquidation_tracker.api.routes.liquidations import ERROR_RESPONSES
from liquidation_tracker.api.schemas import DocumentLinkCreate, DocumentResponse
from liquidation_tracker.services.document_store import DocumentStore

router = APIRouter(tags=["documents"])


@router.get(
    "/liquidations/{liquidation_id}/documents",
    response_model=list[DocumentResponse],
    responses=ERROR_RESPONSES,
)
async def list_documents(
    db: DbSession,
    actor: CurrentActor,
    settings: AppSettings,
    liquidation_id: Annotated[UUID, Path()],
) -> list[DocumentResponse]:
    store = DocumentStore(db, settings)
    documents = await store.list_documents(actor, liquidation_id)
    return [DocumentResponse.model_validate(doc) for doc in documents]


@router.post(
    "/liquidations/{liquidation_id}/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def upload_document(
    db: DbSession,
    actor: CurrentActor,
    settings: AppSettings,
    liquidation_id: Annotated[UUID, Path()],
    file: Annotated[UploadFile, File()],
    document_type: Annotated[str | None, Form()] = None,
    description: Annotated[str | None, Form()] = None,
) -> DocumentResponse:
    """Upload a PDF (20MB max, 3 per liquidation)."""
    store = DocumentStore(db, settings)
    content = await file.read()
    document = await store.upload_pdf(
        actor,
        liquidation_id,
        file.filename,
        content,
        document_type=document_type,
        description=description,
    )
    await db.commit()
    return DocumentResponse.model_validate(document)


@router.post(
    "/liquidations/{liquidation_id}/documents/link",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def add_document_link(
    db: DbSession,
    actor: CurrentActor,
    settings: AppSettings,
    liquidation_id: Annotated[UUID, Path()],
    payload: DocumentLinkCreate,
) -> DocumentResponse:
    """Attach a Google Drive link."""
    store = DocumentStore(db, settings)
    document = await store.add_link(
        actor,
        liquidation_id,
        payload.external_link,
        document_type=payload.document_type,
        description=payload.description,
    )
    await db.commit()
    return DocumentResponse.model_validate(document)


@router.delete(
    "/documents/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def delete_document(
    db: DbSession,
    actor: CurrentActor,
    settings: AppSettings,
    document_id: Annotated[UUID, Path()],
) -> None:
    store = DocumentStore(db, settings)
    await store.delete(actor, document_id)
    await db.commit()
