"""
SmartShip Backend
FastAPI application entry point

- Multi-address packing quotes and label purchase over UPS
- Tracking reconciliation poller running alongside the API
- Rate limiting with SlowAPI
- Error sanitization middleware
- Health endpoint with DB ping and poller heartbeat
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from smartship import __version__
from smartship.api.deps import close_clients
from smartship.api.routes import shipments, ups
from smartship.core.config import settings
from smartship.core.database import AsyncSessionLocal, engine
from smartship.core.error_handler import register_error_handlers
from smartship.core.rate_limit import limiter, rate_limit_exceeded_handler
from smartship.migrations import migrate_shipping_tables
from smartship.services.shipping_jobs import (
    get_poller_status,
    start_tracking_poller,
    stop_tracking_poller,
)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create tables and start the tracking poller on startup.
    Stop the poller and close HTTP clients on shutdown.
    """
    await migrate_shipping_tables(engine)

    if settings.TRACKING_POLL_ENABLED:
        await start_tracking_poller()
        logger.info("Tracking poller ENABLED")
    else:
        logger.info("Tracking poller DISABLED via config")

    yield

    await stop_tracking_poller()
    await close_clients()
    logger.info("HTTP clients closed")


app = FastAPI(
    lifespan=lifespan,
    title=f"{settings.APP_NAME} API",
    description="Multi-address UPS quoting, label purchase and tracking reconciliation.",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Health", "description": "Health check"},
        {"name": "UPS", "description": "Rates, multi-address quotes and label purchase"},
        {"name": "shipments", "description": "Shipment history, tracking and voids"},
    ],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ups.router, prefix="/api")
app.include_router(shipments.router, prefix="/api")


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": f"{settings.APP_NAME} API",
        "version": __version__,
        "status": "operational",
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check with an actual DB ping and the tracking poller heartbeat.
    Returns 503 if the database is unreachable.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "ups_configured": settings.ups_configured,
        "tracking_poller": get_poller_status(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}: {str(e)[:100]}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
