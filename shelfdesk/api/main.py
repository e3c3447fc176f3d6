"""
ShelfDesk API

FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from fastapi import FastAPI
from sqlalchemy import text

from shelfdesk import __version__
from .schemas import HealthResponse
from .routes import books, users, transactions, reports, events
from .middleware import (
    setup_cors,
    setup_logging,
    setup_exception_handlers,
    LoggingConfig,
    get_cors_config,
)
from .dependencies import (
    get_settings,
    get_service_container,
    Settings,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Startup:
    - Open the database and create tables
    - Audit inventory counters against open transactions
    - Reconcile defaulter flags with the transaction log
    Shutdown:
    - Dispose database connections
    """
    services = get_service_container()
    settings = services.settings
    logger.info(f"Starting ShelfDesk in {settings.environment} mode")

    try:
        logger.info("Initializing database...")
        repository = services.repository

        with repository.get_session() as session:
            problems = services.ledger.audit(session)
        for problem in problems:
            logger.error(f"Inventory audit: {problem}")

        changed = services.classifier.reconcile()
        if changed:
            logger.info(f"Startup reconciliation updated {len(changed)} defaulter flag(s)")

        app.state.services = services
        app.state.settings = settings

        logger.info("ShelfDesk started successfully")

        yield

    finally:
        logger.info("Shutting down ShelfDesk...")
        services.close()
        logger.info("Shutdown complete")


# =============================================================================
# Application Factory
# =============================================================================

def create_app(settings: Settings = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings. If None, loads from environment.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="ShelfDesk",
        description="Library circulation desk: inventory, borrowing, fines and reports.",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # ==========================================================================
    # Middleware (order matters - last added = outermost)
    # ==========================================================================

    setup_logging(
        app,
        config=LoggingConfig(
            enabled=True,
            log_request_body=settings.debug,
        ),
        structured=settings.environment not in ("development", "test"),
    )

    setup_exception_handlers(app)

    setup_cors(
        app,
        config=get_cors_config(settings.environment, settings.cors_allowed_origins),
    )

    # ==========================================================================
    # Routers
    # ==========================================================================

    api_prefix = "/api/v1"

    app.include_router(books.router, prefix=api_prefix)
    app.include_router(users.router, prefix=api_prefix)
    app.include_router(transactions.router, prefix=api_prefix)
    app.include_router(reports.router, prefix=api_prefix)
    app.include_router(events.router, prefix=api_prefix)

    # ==========================================================================
    # Root Routes
    # ==========================================================================

    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "ShelfDesk",
            "version": __version__,
            "status": "running",
            "docs": "/docs" if settings.debug else None,
        }

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    def health_check() -> HealthResponse:
        """
        Health check endpoint.

        Checks the database and audits every book's copy counters
        against its open transactions.
        """
        services = get_service_container()
        components = {}
        problems = []
        overall_healthy = True

        try:
            with services.repository.get_session() as session:
                session.execute(text("SELECT 1"))
                problems = services.ledger.audit(session)
            components["database"] = "healthy"
        except Exception as e:
            components["database"] = f"unhealthy: {str(e)}"
            overall_healthy = False

        if problems:
            components["inventory"] = f"inconsistent: {len(problems)} problem(s)"
            overall_healthy = False
        elif overall_healthy:
            components["inventory"] = "consistent"

        components["notifier"] = "initialized" if services._notifier is not None else "idle"

        return HealthResponse(
            status="healthy" if overall_healthy else "degraded",
            version=__version__,
            components=components,
            inventory_problems=problems,
        )

    return app


# =============================================================================
# Application Instance
# =============================================================================

app = create_app()


# =============================================================================
# CLI Entry Point
# =============================================================================

def main():
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()

    # Notifier state is per process, so a single worker
    uvicorn.run(
        "shelfdesk.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        workers=1,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
