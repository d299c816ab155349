"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from liquidation_tracker.api.routes import (
    documents_router,
    health_router,
    ledger_router,
    liquidations_router,
)
from liquidation_tracker.config import get_settings
from liquidation_tracker.database import dispose_db, init_db
from liquidation_tracker.errors import LiquidationError

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the engine and make sure the document store exists."""
    settings = get_settings()
    settings.upload_path.mkdir(parents=True, exist_ok=True)
    init_db()
    logger.info("Liquidation tracker %s started", settings.app_version)
    yield
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title="Liquidation Tracker API",
        description="Liquidation report workflow: HEI, Regional Coordinator, Accountant, COA",
        version=settings.app_version,
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LiquidationError)
    async def liquidation_error_handler(
        request: Request, exc: LiquidationError
    ) -> JSONResponse:
        """Convert domain errors to their HTTP status and error body."""
        logger.warning(
            "%s %s rejected: %s (%s)",
            request.method,
            request.url.path,
            exc.code,
            exc.message,
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    for router in (liquidations_router, ledger_router, documents_router):
        app.include_router(router, prefix=API_PREFIX)

    return app


# Default app instance for uvicorn
app = create_app()
