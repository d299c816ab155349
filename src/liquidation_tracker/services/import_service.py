"""Excel bulk import of liquidations and beneficiaries.

Both imports are all-or-nothing: every row is parsed and validated first,
and rows are only attached to the session when the whole sheet is clean.

Liquidation sheet columns (0-indexed, first row is a header):
0 SEQ, 1 Program, 2 UII, 3 HEI name, 4 date of fund release, 5 due date,
6 academic year, 7 semester, 8 batch no, 9 DV control no, 10 number of
grantees, 11 total disbursements, 12 total amount liquidated, 13 status of
documents, 14 RC notes.

Beneficiary sheet columns (0-indexed, first row is a header):
0 student no, 1 last name, 2 first name, 3 middle name, 4 extension,
5 award no, 6 date disbursed, 7 amount, 8 remarks.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import BytesIO
from pathlib import PurePath
from typing import Any
from uuid import UUID
from zipfile import BadZipFile

import openpyxl
import xlrd
from openpyxl.utils.datetime import from_excel
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy import select
from xlrd.compdoc import CompDocError
from sqlalchemy.ext.asyncio import AsyncSession

from liquidation_tracker.config import MEGABYTE, Settings, get_settings
from liquidation_tracker.errors import (
    DuplicateControlNumberError,
    FileFormatError,
    ValidationError,
)
from liquidation_tracker.models import Liquidation, LiquidationBeneficiary, LiquidationRunningData, Program
from liquidation_tracker.services.authorization import ActorContext, in_region, require
from liquidation_tracker.services.ledger_service import (
    BeneficiaryInput,
    LedgerService,
    build_beneficiary,
    validate_beneficiary,
)
from liquidation_tracker.services.reconciliation import check_reconciliation, money
from liquidation_tracker.services.roles import Capability
from liquidation_tracker.services.workflow import LiquidationInput, LiquidationService

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = (".xlsx", ".xls")
OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

_AMOUNT_JUNK = re.compile(r"[^0-9.\-]")
_INTEGER_JUNK = re.compile(r"[^0-9\-]")


@dataclass
class ImportResult:
    """Outcome of a successful import."""

    imported: int
    skipped_rows: list[int] = field(default_factory=list)
    ids: list[UUID] = field(default_factory=list)


# =============================================================================
# Cell parsing
# =============================================================================


def cell_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def parse_amount(value: Any) -> Decimal:
    """Parse a money cell, ignoring currency symbols and separators."""
    if value is None or value == "":
        return money(0)
    if isinstance(value, (int, float, Decimal)):
        return money(value)
    cleaned = _AMOUNT_JUNK.sub("", str(value))
    if cleaned in ("", "-", "."):
        return money(0)
    try:
        return money(Decimal(cleaned))
    except InvalidOperation:
        raise ValueError(f"'{value}' is not a valid amount") from None


def parse_integer(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    cleaned = _INTEGER_JUNK.sub("", str(value))
    if cleaned in ("", "-"):
        return None
    return int(cleaned)


def parse_date(value: Any) -> date | None:
    """Parse a date cell: native dates, Excel serial numbers or text."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return from_excel(value).date()
    text = str(value).strip()
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%d-%b-%Y", "%B %d, %Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        raise ValueError(f"'{value}' is not a valid date") from None


def is_sequence_cell(value: Any) -> bool:
    """Data rows start with a numeric SEQ cell."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    text = cell_text(value)
    return text is not None and text.isdigit()


# =============================================================================
# Workbook access
# =============================================================================


def validate_upload(filename: str | None, size: int, max_bytes: int) -> None:
    """Reject uploads by extension and size before any parsing."""
    suffix = PurePath(filename or "").suffix.lower()
    if suffix not in EXCEL_EXTENSIONS:
        raise FileFormatError("Please upload an Excel file (.xlsx or .xls).", {"filename": filename})
    if size > max_bytes:
        raise FileFormatError(
            f"The file size must not exceed {max_bytes // MEGABYTE}MB.",
            {"size": size, "max_bytes": max_bytes},
        )


def _xls_cell(cell: xlrd.sheet.Cell, datemode: int) -> Any:
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
        return None
    if cell.ctype == xlrd.XL_CELL_DATE:
        return xlrd.xldate_as_datetime(cell.value, datemode)
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    return cell.value


def _read_xls_rows(content: bytes) -> list[tuple[Any, ...]]:
    try:
        book = xlrd.open_workbook(file_contents=content, on_demand=True)
    except (xlrd.XLRDError, CompDocError, ValueError, OSError) as exc:
        raise FileFormatError("The uploaded file could not be read as an Excel workbook.") from exc
    try:
        sheet = book.sheet_by_index(0)
        return [
            tuple(_xls_cell(cell, book.datemode) for cell in sheet.row(index))
            for index in range(sheet.nrows)
        ]
    finally:
        book.release_resources()


def read_rows(content: bytes) -> list[tuple[Any, ...]]:
    """All rows of the first sheet, header excluded.

    Legacy binary workbooks (OLE2 container) go through xlrd, everything
    else through openpyxl.
    """
    if content.startswith(OLE2_SIGNATURE):
        return _read_xls_rows(content)[1:]
    try:
        workbook = openpyxl.load_workbook(BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, ValueError, OSError) as exc:
        raise FileFormatError("The uploaded file could not be read as an Excel workbook.") from exc
    try:
        sheet = workbook.active
        rows = list(sheet.iter_rows(values_only=True))
    finally:
        workbook.close()
    return rows[1:]


class ImportService:
    """Bulk import of liquidations and of beneficiaries from Excel."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.liquidations = LiquidationService(session)
        self.ledger = LedgerService(session)

    async def import_liquidations(
        self,
        actor: ActorContext,
        filename: str | None,
        content: bytes,
    ) -> ImportResult:
        """Create one draft liquidation per data row, or none at all."""
        require(actor, Capability.BULK_IMPORT, "Only Regional Coordinators can bulk import liquidations.")
        validate_upload(filename, len(content), self.settings.bulk_import_max_bytes)
        rows = read_rows(content)

        programs = await self._program_lookup()
        reserved: set[str] = set()
        errors: dict[str, list[str]] = {}
        skipped: list[int] = []
        pending: list[Liquidation] = []

        for index, row in enumerate(rows, start=2):
            cells = list(row) + [None] * (15 - len(row))
            if not is_sequence_cell(cells[0]):
                skipped.append(index)
                continue
            try:
                liquidation = await self._build_row(actor, cells, programs, reserved)
            except ValueError as exc:
                errors[f"row_{index}"] = [f"Row {index}: {exc}"]
            except DuplicateControlNumberError as exc:
                errors[f"row_{index}"] = [f"Row {index}: DV Control No '{exc.control_no}' already exists."]
            except ValidationError as exc:
                errors[f"row_{index}"] = [
                    f"Row {index}: {message}" for messages in exc.errors.values() for message in messages
                ]
            else:
                pending.append(liquidation)

        if errors:
            logger.warning("Bulk import by %s rejected: %d row(s) invalid", actor.user_id, len(errors))
            raise ValidationError(errors, message=f"Import failed: {len(errors)} row(s) have errors.")
        if not pending:
            raise ValidationError.for_field("file", "The uploaded file contains no liquidation rows.")

        self.session.add_all(pending)
        await self.session.flush()
        logger.info("Bulk import by %s created %d liquidation(s)", actor.user_id, len(pending))
        return ImportResult(imported=len(pending), skipped_rows=skipped, ids=[liq.id for liq in pending])

    async def import_beneficiaries(
        self,
        actor: ActorContext,
        liquidation_id: UUID,
        filename: str | None,
        content: bytes,
    ) -> ImportResult:
        """Append beneficiaries from a sheet and recompute the disbursed total."""
        liquidation = await self.liquidations.load(liquidation_id)
        await self.ledger.authorize_beneficiary_change(actor, liquidation)
        validate_upload(filename, len(content), self.settings.bulk_import_max_bytes)
        rows = read_rows(content)

        errors: dict[str, list[str]] = {}
        skipped: list[int] = []
        beneficiaries: list[LiquidationBeneficiary] = []

        for index, row in enumerate(rows, start=2):
            cells = list(row) + [None] * (9 - len(row))
            if all(cell_text(c) is None for c in cells[:9]):
                skipped.append(index)
                continue
            try:
                data = BeneficiaryInput(
                    student_no=cell_text(cells[0]),
                    last_name=cell_text(cells[1]),
                    first_name=cell_text(cells[2]),
                    middle_name=cell_text(cells[3]),
                    extension_name=cell_text(cells[4]),
                    award_no=cell_text(cells[5]),
                    date_disbursed=parse_date(cells[6]),
                    amount=parse_amount(cells[7]) if cell_text(cells[7]) is not None else None,
                    remarks=cell_text(cells[8]),
                )
            except ValueError as exc:
                errors[f"row_{index}"] = [f"Row {index}: {exc}"]
                continue
            row_errors = validate_beneficiary(data)
            if row_errors:
                errors[f"row_{index}"] = [
                    f"Row {index}: {message}" for messages in row_errors.values() for message in messages
                ]
                continue
            beneficiaries.append(build_beneficiary(data))

        if errors:
            logger.warning(
                "Beneficiary import into %s by %s rejected: %d row(s) invalid",
                liquidation.control_no,
                actor.user_id,
                len(errors),
            )
            raise ValidationError(errors, message=f"Import failed: {len(errors)} row(s) have errors.")
        if not beneficiaries:
            raise ValidationError.for_field("file", "The uploaded file contains no beneficiary rows.")

        self.ledger.add_beneficiaries(liquidation, beneficiaries)
        await self.liquidations.flush()
        logger.info(
            "Imported %d beneficiaries into %s by %s",
            len(beneficiaries),
            liquidation.control_no,
            actor.user_id,
        )
        return ImportResult(
            imported=len(beneficiaries),
            skipped_rows=skipped,
            ids=[b.id for b in beneficiaries],
        )

    async def _program_lookup(self) -> dict[str, UUID]:
        """Active programs keyed by lower-cased code and name."""
        result = await self.session.execute(
            select(Program.id, Program.code, Program.name).where(Program.status == "active")
        )
        lookup: dict[str, UUID] = {}
        for program_id, code, name in result.all():
            lookup[code.lower()] = program_id
            lookup[name.lower()] = program_id
        return lookup

    async def _build_row(
        self,
        actor: ActorContext,
        cells: list[Any],
        programs: dict[str, UUID],
        reserved: set[str],
    ) -> Liquidation:
        uii = cell_text(cells[2])
        if uii is None:
            raise ValueError("UII is required.")
        hei = await self.liquidations.find_hei_by_uii(uii)
        if hei is None:
            raise ValueError(f"UII '{uii}' not found.")
        if actor.can(Capability.VIEW_REGION) and not in_region(actor, hei.region_id):
            raise ValueError(f"HEI '{uii}' does not belong to your assigned region.")

        program_key = cell_text(cells[1])
        data = LiquidationInput(
            uii=uii,
            program_id=programs.get(program_key.lower()) if program_key else None,
            date_fund_released=parse_date(cells[4]),
            due_date=parse_date(cells[5]),
            academic_year=cell_text(cells[6]),
            semester=cell_text(cells[7]),
            batch_no=cell_text(cells[8]),
            dv_control_no=cell_text(cells[9]),
            number_of_grantees=parse_integer(cells[10]),
            total_disbursements=parse_amount(cells[11]),
            document_status=cell_text(cells[13]),
            remarks=cell_text(cells[14]),
        )
        liquidation = await self.liquidations.build_liquidation(data, hei, actor.user_id, reserved)

        # Amount already liquidated opens the running ledger
        liquidated = parse_amount(cells[12])
        if liquidated < 0:
            raise ValueError("Total amount liquidated must be at least 0.")
        if liquidated > 0:
            entry = LiquidationRunningData(
                grantees_liquidated=0,
                amount_complete_docs=liquidated,
                amount_refunded=money(0),
                total_amount_liquidated=liquidated,
                sort_order=1,
            )
            errors = check_reconciliation(
                liquidation.amount_received,
                liquidation.amount_disbursed,
                liquidation.amount_refunded,
                [entry],
                liquidation.number_of_grantees,
            )
            if errors:
                raise ValidationError(errors)
            liquidation.running_data.append(entry)
            liquidation.amount_liquidated = liquidated
        return liquidation
