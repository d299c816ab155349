"""API routes."""

from liquidation_tracker.api.routes.documents import router as documents_router
from liquidation_tracker.api.routes.health import router as health_router
from liquidation_tracker.api.routes.ledger import router as ledger_router
from liquidation_tracker.api.routes.liquidations import router as liquidations_router

__all__ = ["documents_router", "health_router", "ledger_router", "liquidations_router"]
