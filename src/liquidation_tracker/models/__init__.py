"""ORM models."""

from liquidation_tracker.models.base import Base, TimestampMixin, utcnow
from liquidation_tracker.models.directory import HEI, Program, Region, User
from liquidation_tracker.models.liquidation import (
    Liquidation,
    LiquidationBeneficiary,
    LiquidationCompliance,
    LiquidationDocument,
    LiquidationReview,
    LiquidationRunningData,
    LiquidationTrackingEntry,
    LiquidationTransmittal,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "utcnow",
    "HEI",
    "Program",
    "Region",
    "User",
    "Liquidation",
    "LiquidationBeneficiary",
    "LiquidationCompliance",
    "LiquidationDocument",
    "LiquidationReview",
    "LiquidationRunningData",
    "LiquidationTrackingEntry",
    "LiquidationTransmittal",
]
