"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Liquidation schemas
# ============================================================================


class LiquidationCreate(BaseModel):
    """Schema for creating a draft liquidation."""

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


class LiquidationUpdate(BaseModel):
    """Schema for updating a liquidation. Only sent fields are changed."""

    academic_year: str | None = None
    semester: str | None = None
    batch_no: str | None = None
    program_id: UUID | None = None
    date_fund_released: date | None = None
    due_date: date | None = None
    number_of_grantees: int | None = None
    total_disbursements: Decimal | None = None
    fund_source: str | None = None
    purpose: str | None = None
    remarks: str | None = None
    expected_version: int | None = None


class FinancialSummaryResponse(BaseModel):
    """Derived financial figures."""

    model_config = ConfigDict(from_attributes=True)

    amount_received: Decimal
    amount_disbursed: Decimal
    amount_liquidated: Decimal
    amount_refunded: Decimal
    amount_unliquidated: Decimal
    liquidation_percentage: Decimal
    coverage_status: str
    due_date: date | None = None
    days_lapsed: int | None = None
    lapsing_period: int


class LiquidationResponse(BaseModel):
    """Schema for liquidation response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    control_no: str
    hei_id: UUID
    program_id: UUID | None = None
    academic_year: str
    semester: str | None = None
    batch_no: str | None = None
    date_fund_released: date | None = None
    due_date: date | None = None
    number_of_grantees: int | None = None
    amount_received: Decimal
    amount_disbursed: Decimal
    amount_liquidated: Decimal
    amount_refunded: Decimal
    fund_source: str | None = None
    purpose: str | None = None
    status: str
    document_status: str
    remarks: str | None = None
    created_by_id: UUID
    submitted_at: datetime | None = None
    reviewed_by_id: UUID | None = None
    reviewed_at: datetime | None = None
    accountant_reviewed_by_id: UUID | None = None
    accountant_reviewed_at: datetime | None = None
    coa_endorsed_by_id: UUID | None = None
    coa_endorsed_at: datetime | None = None
    status_changed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    version: int
    financial: FinancialSummaryResponse | None = None


class LiquidationListResponse(BaseModel):
    """Schema for listing liquidations."""

    items: list[LiquidationResponse]
    total: int
    page: int
    page_size: int


# ============================================================================
# Workflow schemas
# ============================================================================


class SubmitRequest(BaseModel):
    remarks: str | None = None
    expected_version: int | None = None


class EndorseToAccountingRequest(BaseModel):
    review_remarks: str | None = None
    receiver_name: str | None = None
    document_location: str | None = None
    transmittal_reference_no: str | None = None
    number_of_folders: int | None = None
    folder_location_number: str | None = None
    group_transmittal: str | None = None
    other_file_location: str | None = None
    expected_version: int | None = None


class ReturnToHEIRequest(BaseModel):
    review_remarks: str | None = None
    documents_for_compliance: str | None = None
    receiver_name: str | None = None
    document_location: str | None = None
    expected_version: int | None = None


class AccountantReviewRequest(BaseModel):
    """Body for endorse-to-COA and return-to-RC."""

    accountant_remarks: str | None = None
    expected_version: int | None = None


class TransmittalLocationRequest(BaseModel):
    location: str | None = None
    notes: str | None = None
    expected_version: int | None = None


class ReviewResponse(BaseModel):
    """Review history entry."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sequence: int
    review_type: str
    performed_by_id: UUID
    performed_by_name: str
    remarks: str | None = None
    documents_for_compliance: str | None = None
    performed_at: datetime


class TransmittalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transmittal_reference_no: str
    receiver_name: str | None = None
    document_location: str | None = None
    number_of_folders: int | None = None
    folder_location_number: str | None = None
    group_transmittal: str | None = None
    other_file_location: str | None = None
    endorsed_by_id: UUID
    endorsed_at: datetime
    received_at: datetime | None = None
    location_history: list[dict[str, Any]] = Field(default_factory=list)


class ComplianceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    documents_required: str
    compliance_status: str
    concerns_recorded_at: datetime | None = None
    compliance_submitted_at: datetime | None = None


# ============================================================================
# Ledger schemas
# ============================================================================


class BeneficiaryCreate(BaseModel):
    last_name: str | None = None
    first_name: str | None = None
    amount: Decimal | None = None
    student_no: str | None = None
    middle_name: str | None = None
    extension_name: str | None = None
    award_no: str | None = None
    date_disbursed: date | None = None
    remarks: str | None = None


class BeneficiaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_no: str | None = None
    last_name: str
    first_name: str
    middle_name: str | None = None
    extension_name: str | None = None
    full_name: str
    award_no: str | None = None
    date_disbursed: date | None = None
    amount: Decimal
    remarks: str | None = None


class RunningDataCreate(BaseModel):
    grantees_liquidated: int = 0
    amount_complete_docs: Decimal = Decimal("0")
    amount_refunded: Decimal = Decimal("0")
    refund_or_no: str | None = None
    total_amount_liquidated: Decimal | None = None
    transmittal_ref_no: str | None = None
    group_transmittal_ref_no: str | None = None


class RunningDataResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    grantees_liquidated: int
    amount_complete_docs: Decimal
    amount_refunded: Decimal
    refund_or_no: str | None = None
    total_amount_liquidated: Decimal
    transmittal_ref_no: str | None = None
    group_transmittal_ref_no: str | None = None
    sort_order: int


class TrackingEntryCreate(BaseModel):
    document_status: str | None = None
    received_by: str | None = None
    date_received: date | None = None
    document_location: str | None = None
    reviewed_by: str | None = None
    date_reviewed: date | None = None
    rc_note: str | None = None
    date_endorsement: date | None = None
    coverage_status: str | None = None


class TrackingEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_status: str
    received_by: str | None = None
    date_received: date | None = None
    document_location: str | None = None
    reviewed_by: str | None = None
    date_reviewed: date | None = None
    rc_note: str | None = None
    date_endorsement: date | None = None
    coverage_status: str
    created_at: datetime


class ImportResponse(BaseModel):
    """Result of a bulk import."""

    imported: int
    skipped_rows: list[int]
    ids: list[UUID]
    message: str


# ============================================================================
# Document schemas
# ============================================================================


class DocumentLinkCreate(BaseModel):
    external_link: str | None = None
    document_type: str | None = None
    description: str | None = None


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    liquidation_id: UUID
    document_type: str
    file_name: str
    file_type: str
    file_size: int
    external_link: str | None = None
    is_external: bool
    description: str | None = None
    uploaded_by_id: UUID
    created_at: datetime


# ============================================================================
# Detail and error schemas
# ============================================================================


class LiquidationDetailResponse(LiquidationResponse):
    """Liquidation with its child records."""

    beneficiaries: list[BeneficiaryResponse] = Field(default_factory=list)
    reviews: list[ReviewResponse] = Field(default_factory=list)
    transmittal: TransmittalResponse | None = None
    compliance: ComplianceResponse | None = None
    tracking_entries: list[TrackingEntryResponse] = Field(default_factory=list)
    running_data: list[RunningDataResponse] = Field(default_factory=list)
    documents: list[DocumentResponse] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
