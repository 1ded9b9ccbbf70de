"""
PropDesk Challenge Platform - FastAPI Application
Main entry point with lifecycle management.

Service Architecture:
    Quote feed (HTTP ticks or tick.received events)
        ↓
    TradingService (per-account locks)
        ↓
    OrderValidator / OCOGroupManager → PositionLedger
        ↓
    AccountRiskEngine (drawdown, daily reset, target)
        ↓
    TradeJournal (SQLAlchemy) + EventBus (Redis Streams)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from propdesk.api import api_router
from propdesk.core.config import settings
from propdesk.core.errors import TradingError
from propdesk.core.events import (
    EventBus,
    EventType,
    SystemEvent,
    get_event_bus,
    shutdown_event_bus,
)
from propdesk.core.logging import setup_logging
from propdesk.db.journal import TradeJournal
from propdesk.db.session import close_database, get_database
from propdesk.execution.service import (
    create_trading_service,
    get_trading_service,
    set_trading_service,
)
from propdesk.schemas.trading import ErrorDetail, ErrorResponse


# =============================================================================
# Application Lifecycle
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------
    setup_logging()
    logger.info("=" * 60)
    logger.info(f"Starting {settings.PROJECT_NAME} {settings.APP_VERSION}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info("=" * 60)

    journal: Optional[TradeJournal] = None
    if settings.db.enabled:
        try:
            database = get_database()
            if settings.db.create_tables:
                await database.create_tables()
            if await database.health_check():
                journal = TradeJournal(database)
                logger.info("✓ Trade journal ready")
            else:
                logger.warning("⚠ Journal database unreachable - running without journal")
        except Exception as e:
            logger.error(f"✗ Journal initialization error: {e}")

    event_bus: Optional[EventBus] = None
    if settings.redis.enabled:
        try:
            event_bus = await get_event_bus()
            await event_bus.publish(SystemEvent(
                event_type=EventType.SYSTEM_STARTUP,
                component="api",
                status="STARTED",
                details={
                    "version": settings.APP_VERSION,
                    "environment": settings.ENVIRONMENT,
                },
            ))
            logger.info("✓ Event bus connected to Redis")
        except Exception as e:
            logger.warning(f"⚠ Event bus initialization failed: {e}")
            logger.warning("Running without event bus - ticks must be pushed over HTTP")
            event_bus = None

    service = create_trading_service(event_bus=event_bus, journal=journal)
    set_trading_service(service)
    await service.start()
    if event_bus:
        await event_bus.start_consuming()

    logger.info("-" * 60)
    logger.info(f"{settings.PROJECT_NAME} API ready to accept requests")
    logger.info("-" * 60)

    yield

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------
    logger.info("=" * 60)
    logger.info(f"Shutting down {settings.PROJECT_NAME}...")

    await service.stop()
    set_trading_service(None)

    if event_bus:
        try:
            await event_bus.publish(SystemEvent(
                event_type=EventType.SYSTEM_SHUTDOWN,
                component="api",
                status="STOPPING",
            ))
        except Exception as e:
            logger.warning(f"Could not publish shutdown event: {e}")
        try:
            await shutdown_event_bus()
            logger.info("✓ Event bus disconnected")
        except Exception as e:
            logger.error(f"Error disconnecting event bus: {e}")

    if journal:
        try:
            await close_database()
            logger.info("✓ Database connections closed")
        except Exception as e:
            logger.error(f"Error closing database: {e}")

    logger.info(f"{settings.PROJECT_NAME} shutdown complete")
    logger.info("=" * 60)


# =============================================================================
# Error Handling
# =============================================================================

async def trading_error_handler(request: Request, exc: TradingError) -> JSONResponse:
    """Map a typed failure to its status code and the error envelope."""
    body = ErrorResponse(error=ErrorDetail(**exc.to_dict()))
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


# =============================================================================
# Application Factory
# =============================================================================

def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """
    application = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.APP_VERSION,
        description="Challenge account bookkeeping: orders, positions, OCO groups and drawdown rules.",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(TradingError, trading_error_handler)
    application.include_router(api_router, prefix=settings.API_V1_STR)

    @application.get("/health", tags=["health"])
    async def health_check():
        """Liveness plus the state of the optional journal and event bus."""
        service = get_trading_service()
        status = {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "service_running": service.is_running,
            "accounts": len(service.list_accounts()),
            "journal": None,
            "event_bus": None,
        }
        if service.journal:
            status["journal"] = await service.journal.database.health_check()
        if service.event_bus:
            status["event_bus"] = await service.event_bus.health_check()
        if status["journal"] is False or status["event_bus"] is False:
            status["status"] = "degraded"
        return status

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "propdesk.main:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=settings.is_development,
    )
