"""Liquidation aggregate and its child records."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from liquidation_tracker.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class Liquidation(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Fund-disbursement report for one HEI, program and period."""

    __tablename__ = "liquidation"

    control_no: Mapped[str] = mapped_column(String(100), nullable=False)
    hei_id: Mapped[UUID] = mapped_column(ForeignKey("hei.id"), nullable=False)
    program_id: Mapped[UUID | None] = mapped_column(ForeignKey("program.id"), nullable=True)

    # Period coverage
    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)
    semester: Mapped[str | None] = mapped_column(String(20), nullable=True)
    batch_no: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Financial
    date_fund_released: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    number_of_grantees: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount_received: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    amount_disbursed: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    amount_liquidated: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    amount_refunded: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    fund_source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Status
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="draft")
    document_status: Mapped[str] = mapped_column(String(10), nullable=False, default="NONE")
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Workflow tracking
    created_by_id: Mapped[UUID] = mapped_column(ForeignKey("app_user.id"), nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reviewed_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("app_user.id"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    accountant_reviewed_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("app_user.id"), nullable=True
    )
    accountant_reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    coa_endorsed_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("app_user.id"), nullable=True)
    coa_endorsed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    status_changed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    # Optimistic concurrency token
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("control_no", name="liquidation_control_no_unique"),
        CheckConstraint(
            "status IN ('draft', 'for_initial_review', 'returned_to_hei', "
            "'endorsed_to_accounting', 'returned_to_rc', 'endorsed_to_coa')",
            name="liquidation_status_check",
        ),
        CheckConstraint(
            "document_status IN ('NONE', 'PARTIAL', 'COMPLETE')",
            name="liquidation_document_status_check",
        ),
        CheckConstraint("amount_received >= 0", name="liquidation_amount_received_check"),
        CheckConstraint(
            "amount_disbursed + amount_refunded <= amount_received",
            name="liquidation_reconciled_check",
        ),
    )

    # Relationships
    beneficiaries: Mapped[list[LiquidationBeneficiary]] = relationship(
        back_populates="liquidation",
        cascade="all, delete-orphan",
        order_by="LiquidationBeneficiary.created_at",
    )
    reviews: Mapped[list[LiquidationReview]] = relationship(
        back_populates="liquidation",
        order_by="LiquidationReview.sequence",
    )
    transmittal: Mapped[LiquidationTransmittal | None] = relationship(
        back_populates="liquidation",
        cascade="all, delete-orphan",
        uselist=False,
    )
    compliance: Mapped[LiquidationCompliance | None] = relationship(
        back_populates="liquidation",
        cascade="all, delete-orphan",
        uselist=False,
    )
    tracking_entries: Mapped[list[LiquidationTrackingEntry]] = relationship(
        back_populates="liquidation",
        cascade="all, delete-orphan",
        order_by="LiquidationTrackingEntry.created_at",
    )
    running_data: Mapped[list[LiquidationRunningData]] = relationship(
        back_populates="liquidation",
        cascade="all, delete-orphan",
        order_by="LiquidationRunningData.sort_order",
    )
    documents: Mapped[list[LiquidationDocument]] = relationship(
        back_populates="liquidation",
        cascade="all, delete-orphan",
        order_by="LiquidationDocument.created_at",
    )


class LiquidationBeneficiary(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """One funded student or grantee line item."""

    __tablename__ = "liquidation_beneficiary"

    liquidation_id: Mapped[UUID] = mapped_column(
        ForeignKey("liquidation.id"),
        nullable=False,
        index=True,
    )
    student_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    middle_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    extension_name: Mapped[str | None] = mapped_column(String(20), nullable=True)
    award_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    date_disbursed: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="liquidation_beneficiary_amount_check"),
    )

    liquidation: Mapped[Liquidation] = relationship(back_populates="beneficiaries")

    @property
    def full_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.middle_name, self.last_name) if p)
        if self.extension_name:
            name += f" {self.extension_name}"
        return name


class LiquidationReview(Base, UUIDPrimaryKeyMixin):
    """Append-only review history entry.

    Rows are inserted by the workflow service and never updated or deleted.
    """

    __tablename__ = "liquidation_review"

    liquidation_id: Mapped[UUID] = mapped_column(
        ForeignKey("liquidation.id"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    review_type: Mapped[str] = mapped_column(String(30), nullable=False)
    performed_by_id: Mapped[UUID] = mapped_column(ForeignKey("app_user.id"), nullable=False)
    performed_by_name: Mapped[str] = mapped_column(String(255), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    documents_for_compliance: Mapped[str | None] = mapped_column(Text, nullable=True)
    performed_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("liquidation_id", "sequence", name="liquidation_review_sequence_unique"),
        CheckConstraint(
            "review_type IN ('rc_return', 'rc_endorsement', 'hei_resubmission', "
            "'accountant_return', 'accountant_endorsement')",
            name="liquidation_review_type_check",
        ),
    )

    liquidation: Mapped[Liquidation] = relationship(back_populates="reviews")


class LiquidationTransmittal(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Endorsement hand-off metadata. One per liquidation."""

    __tablename__ = "liquidation_transmittal"

    liquidation_id: Mapped[UUID] = mapped_column(
        ForeignKey("liquidation.id"),
        nullable=False,
        unique=True,
    )
    transmittal_reference_no: Mapped[str] = mapped_column(String(255), nullable=False)
    receiver_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    document_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    number_of_folders: Mapped[int | None] = mapped_column(Integer, nullable=True)
    folder_location_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    group_transmittal: Mapped[str | None] = mapped_column(String(255), nullable=True)
    other_file_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    endorsed_by_id: Mapped[UUID] = mapped_column(ForeignKey("app_user.id"), nullable=False)
    endorsed_at: Mapped[datetime] = mapped_column(nullable=False)
    received_at: Mapped[datetime | None] = mapped_column(nullable=True)
    location_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    liquidation: Mapped[Liquidation] = relationship(back_populates="transmittal")

    def latest_location(self) -> str | None:
        if self.location_history:
            return self.location_history[-1].get("location") or self.document_location
        return self.document_location


class LiquidationCompliance(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Compliance checklist raised when an RC returns a liquidation."""

    __tablename__ = "liquidation_compliance"

    liquidation_id: Mapped[UUID] = mapped_column(
        ForeignKey("liquidation.id"),
        nullable=False,
        unique=True,
    )
    documents_required: Mapped[str] = mapped_column(Text, nullable=False)
    compliance_status: Mapped[str] = mapped_column(String(30), nullable=False)
    concerns_recorded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    compliance_submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "compliance_status IN ('pending_hei_review', 'documents_submitted', "
            "'under_review', 'compliant', 'non_compliant')",
            name="liquidation_compliance_status_check",
        ),
    )

    liquidation: Mapped[Liquidation] = relationship(back_populates="compliance")


class LiquidationTrackingEntry(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Document-tracking ledger row."""

    __tablename__ = "liquidation_tracking_entry"

    liquidation_id: Mapped[UUID] = mapped_column(
        ForeignKey("liquidation.id"),
        nullable=False,
        index=True,
    )
    document_status: Mapped[str] = mapped_column(String(10), nullable=False, default="NONE")
    received_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date_received: Mapped[date | None] = mapped_column(Date, nullable=True)
    document_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date_reviewed: Mapped[date | None] = mapped_column(Date, nullable=True)
    rc_note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date_endorsement: Mapped[date | None] = mapped_column(Date, nullable=True)
    coverage_status: Mapped[str] = mapped_column(String(30), nullable=False, default="UNLIQUIDATED")

    __table_args__ = (
        CheckConstraint(
            "document_status IN ('NONE', 'PARTIAL', 'COMPLETE')",
            name="tracking_entry_document_status_check",
        ),
        CheckConstraint(
            "coverage_status IN ('UNLIQUIDATED', 'PARTIALLY_LIQUIDATED', 'FULLY_LIQUIDATED')",
            name="tracking_entry_coverage_status_check",
        ),
    )

    liquidation: Mapped[Liquidation] = relationship(back_populates="tracking_entries")


class LiquidationRunningData(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Running reconciliation ledger row."""

    __tablename__ = "liquidation_running_data"

    liquidation_id: Mapped[UUID] = mapped_column(
        ForeignKey("liquidation.id"),
        nullable=False,
        index=True,
    )
    grantees_liquidated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_complete_docs: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    amount_refunded: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    refund_or_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    total_amount_liquidated: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    transmittal_ref_no: Mapped[str | None] = mapped_column(String(255), nullable=True)
    group_transmittal_ref_no: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("grantees_liquidated >= 0", name="running_data_grantees_check"),
        CheckConstraint("amount_complete_docs >= 0", name="running_data_complete_docs_check"),
        CheckConstraint("amount_refunded >= 0", name="running_data_refunded_check"),
    )

    liquidation: Mapped[Liquidation] = relationship(back_populates="running_data")


class LiquidationDocument(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Supporting document: a stored PDF or an external link."""

    __tablename__ = "liquidation_document"

    liquidation_id: Mapped[UUID] = mapped_column(
        ForeignKey("liquidation.id"),
        nullable=False,
        index=True,
    )
    document_type: Mapped[str] = mapped_column(String(255), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    file_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    external_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_external: Mapped[bool] = mapped_column(nullable=False, default=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_by_id: Mapped[UUID] = mapped_column(ForeignKey("app_user.id"), nullable=False)

    liquidation: Mapped[Liquidation] = relationship(back_populates="documents")
