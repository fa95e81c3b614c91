"""
FastAPI Application Entry Point.

This is the main application file for the P2P Posting Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from p2p_backend.app.core.config import settings
from p2p_backend.app.api.v1.router import router as api_v1_router
from p2p_backend.app.db.session import engine, Base
from p2p_backend.app.core.observability import ObservabilityMiddleware, configure_logging
from p2p_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from p2p_backend.app.models.audit_log import AuditLog
from p2p_backend.app.models.business_event import BusinessEvent
from p2p_backend.app.models.ledger_transaction import LedgerTransaction  # before entries for FK
from p2p_backend.app.models.ledger_entry import LedgerEntry
from p2p_backend.app.models.inventory_balance import InventoryBalance
from p2p_backend.app.models.inventory_movement import InventoryMovement

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Posts purchase-to-pay business events to the ledger and inventory",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to the P2P Posting Backend API",
        "docs": "/docs",
        "health": "/health",
    }
