"""Liquidation tracker services."""

from liquidation_tracker.services.authorization import ActorContext
from liquidation_tracker.services.document_store import DocumentStore
from liquidation_tracker.services.import_service import ImportResult, ImportService
from liquidation_tracker.services.ledger_service import (
    BeneficiaryInput,
    LedgerService,
    RunningDataInput,
    TrackingEntryInput,
)
from liquidation_tracker.services.reconciliation import CoverageStatus, FinancialSummary
from liquidation_tracker.services.roles import Capability, Role, has_capability
from liquidation_tracker.services.state_machine import (
    DocumentStatus,
    LiquidationStateMachine,
    LiquidationStatus,
    ReviewType,
    WorkflowAction,
)
from liquidation_tracker.services.workflow import (
    LiquidationInput,
    LiquidationService,
    TransmittalInput,
)

__all__ = [
    "ActorContext",
    "BeneficiaryInput",
    "Capability",
    "CoverageStatus",
    "DocumentStatus",
    "DocumentStore",
    "FinancialSummary",
    "ImportResult",
    "ImportService",
    "LedgerService",
    "LiquidationInput",
    "LiquidationService",
    "LiquidationStateMachine",
    "LiquidationStatus",
    "ReviewType",
    "Role",
    "RunningDataInput",
    "TrackingEntryInput",
    "TransmittalInput",
    "WorkflowAction",
    "has_capability",
]
