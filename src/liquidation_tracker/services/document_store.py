"""Supporting documents: stored PDFs and Google Drive links."""

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePath
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from liquidation_tracker.config import MEGABYTE, Settings, get_settings
from liquidation_tracker.errors import (
    FileFormatError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from liquidation_tracker.models import Liquidation, LiquidationDocument
from liquidation_tracker.services.authorization import ActorContext
from liquidation_tracker.services.roles import Capability
from liquidation_tracker.services.workflow import LiquidationService

logger = logging.getLogger(__name__)

# Loose uploads allowed per liquidation (RC letters and similar)
MAX_LOOSE_PDFS = 3

DEFAULT_DOCUMENT_TYPE = "RC Letter"

GOOGLE_DRIVE_LINK = re.compile(r"^https://(drive|docs)\.google\.com/\S+$")


class DocumentStore:
    """Stores PDFs under ``settings.upload_dir`` and records them per liquidation."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.root = self.settings.upload_path
        self.liquidations = LiquidationService(session)

    async def list_documents(self, actor: ActorContext, liquidation_id: UUID) -> list[LiquidationDocument]:
        liquidation = await self.liquidations.get_for_actor(actor, liquidation_id)
        return list(liquidation.documents)

    async def upload_pdf(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        filename: str | None,
        content: bytes,
        document_type: str | None = None,
        description: str | None = None,
    ) -> LiquidationDocument:
        """Store a PDF. Type, size and count are checked before writing."""
        liquidation = await self.liquidations.get_for_actor(actor, liquidation_id)

        name = PurePath(filename or "").name
        if PurePath(name).suffix.lower() != ".pdf":
            raise FileFormatError("Only PDF files are allowed.", {"filename": filename})
        if len(content) > self.settings.document_max_bytes:
            raise FileFormatError(
                f"The file size must not exceed {self.settings.document_max_bytes // MEGABYTE}MB.",
                {"size": len(content), "max_bytes": self.settings.document_max_bytes},
            )
        stored = [doc for doc in liquidation.documents if not doc.is_external]
        if len(stored) >= MAX_LOOSE_PDFS:
            raise ValidationError.for_field(
                "file",
                "Maximum of 3 PDF files allowed. Please delete an existing file first.",
            )

        relative = PurePath(str(liquidation.id)) / f"{uuid4().hex}.pdf"
        target = self.root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

        document = LiquidationDocument(
            document_type=(document_type or "").strip() or DEFAULT_DOCUMENT_TYPE,
            file_name=name,
            file_path=relative.as_posix(),
            file_type="application/pdf",
            file_size=len(content),
            is_external=False,
            description=description,
            uploaded_by_id=actor.user_id,
        )
        liquidation.documents.append(document)
        try:
            await self.session.flush()
        except Exception:
            target.unlink(missing_ok=True)
            raise

        logger.info("Document %s stored for %s by %s", name, liquidation.control_no, actor.user_id)
        return document

    async def add_link(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        url: str | None,
        document_type: str | None = None,
        description: str | None = None,
    ) -> LiquidationDocument:
        """Record an external Google Drive document."""
        liquidation = await self.liquidations.get_for_actor(actor, liquidation_id)

        link = (url or "").strip()
        if not GOOGLE_DRIVE_LINK.match(link) or len(link) > 500:
            raise ValidationError.for_field("external_link", "Please enter a valid Google Drive link.")

        document = LiquidationDocument(
            document_type=(document_type or "").strip() or DEFAULT_DOCUMENT_TYPE,
            file_name=(description or "").strip()[:255] or "Google Drive link",
            file_path="",
            file_type="link",
            file_size=0,
            external_link=link,
            is_external=True,
            description=description,
            uploaded_by_id=actor.user_id,
        )
        liquidation.documents.append(document)
        await self.session.flush()
        return document

    async def delete(self, actor: ActorContext, document_id: UUID) -> None:
        """Delete a document and its stored file."""
        document = await self.session.get(LiquidationDocument, document_id)
        if document is None:
            raise NotFoundError("Document not found.", {"document_id": str(document_id)})
        result = await self.session.execute(
            select(Liquidation.created_by_id).where(Liquidation.id == document.liquidation_id)
        )
        creator_id = result.scalar_one()

        allowed = (
            document.uploaded_by_id == actor.user_id
            or creator_id == actor.user_id
            or actor.can(Capability.DELETE_ANY_DOCUMENT)
        )
        if not allowed:
            raise PermissionDeniedError("You do not have permission to delete this document.")

        await self.session.delete(document)
        await self.session.flush()
        if not document.is_external and document.file_path:
            self.path_for(document).unlink(missing_ok=True)
        logger.info("Document %s deleted by %s", document_id, actor.user_id)

    def path_for(self, document: LiquidationDocument) -> Path:
        return self.root / document.file_path
