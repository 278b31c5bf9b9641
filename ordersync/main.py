"""
Order Sync Engine - FastAPI Application Entry Point.

Connects a merchant's order ledger to external storefronts. Orders arrive
by signed webhook or by scheduled polling and are recorded exactly once.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from ordersync.config import get_settings
from ordersync.database import Base, async_session_maker, engine
from ordersync.exceptions import OrderSyncError
from ordersync.routers import channels, sync, webhooks
from ordersync.routers.dependencies import get_db
from ordersync.services.sync_coordinator import SyncCoordinator

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup: Create database tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")

    coordinator = SyncCoordinator(async_session_maker)
    app.state.coordinator = coordinator
    if settings.SCHEDULER_ENABLED:
        await coordinator.start()
    else:
        logger.info("Scheduler disabled - polling timers not restored")

    yield

    # Shutdown: stop timers before the pool goes away
    await coordinator.shutdown()
    await engine.dispose()
    logger.info("Database connection closed")


app = FastAPI(
    title=settings.APP_NAME,
    description="Multi-channel order ingestion and synchronization",
    version="1.0.0",
    lifespan=lifespan,
)


# --- Error envelope: {"error": {"code": ..., "message": ...}} ---

@app.exception_handler(OrderSyncError)
async def order_sync_error_handler(request: Request, exc: OrderSyncError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    return JSONResponse(
        status_code=422,
        content={"error": {"code": "VALIDATION_ERROR", "message": message}},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "HTTP_ERROR", "message": str(exc.detail)}},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=400,
        content={"error": {"code": "BAD_REQUEST", "message": str(exc)}},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"}},
    )


# Include Routers
app.include_router(channels.router, prefix="/api/channels", tags=["Channels"])
app.include_router(sync.router, prefix="/api/sync", tags=["Sync"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])


@app.get("/health")
async def health_check(db=Depends(get_db)):
    """Deep Health Check: Verifies Database Connectivity."""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        # 503 so load balancers stop sending traffic
        return JSONResponse(
            status_code=503,
            content={"error": {"code": "DATABASE_UNAVAILABLE", "message": "Database disconnected"}},
        )
    return {"status": "healthy", "database": "connected"}


@app.get("/")
async def root():
    return {"name": settings.APP_NAME, "status": "operational"}
