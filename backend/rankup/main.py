"""
RankUp Booking API - Main Application Entry Point

Booking lifecycle and payment orchestration for the padel coaching marketplace:
- Pay-then-book checkout with marketplace split and reconciliation reporting
- Status-guarded booking transitions (no lost updates between parties)
- One conversation per confirmed booking, live feeds over server-sent events
- Review gate with full re-scan rating aggregates
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rankup.core.config import get_settings
from rankup.core.logging import setup_logging, get_logger
from rankup.core.metrics import metrics_endpoint
from rankup.api.errors import register_error_handlers
from rankup.api.router import api_router
from rankup.api.middleware import RequestLoggingMiddleware
from rankup.infrastructure import close_redis, get_redis, get_redis_status
from rankup.services.live_feed import feed

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        payment_gateway=settings.PAYMENT_GATEWAY,
    )

    # Live feeds relay through Redis when enabled, otherwise stay in-process
    redis_client = await get_redis()
    if redis_client:
        await feed.start(redis_client)
        logger.info("redis_ready")
    else:
        logger.info("live_feed_in_process", message="Running without Redis relay")

    yield

    # Cleanup
    await feed.stop()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Booking lifecycle and payment orchestration for padel coaching sessions",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

register_error_handlers(app)

# Routes
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "redis": await get_redis_status(),
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
