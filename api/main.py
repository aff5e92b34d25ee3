"""
FastAPI application initialization
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from api.routes import health, jobs, tick, work
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.logging import setup_logging
from drivers.registry import build_registry
from engine.scheduler import EngineScheduler
import logging

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the driver registry and start the tick scheduler"""
    logger.info("Starting crawl job engine API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if getattr(app.state, "registry", None) is None:
        app.state.registry = build_registry(settings.SOURCES)

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = EngineScheduler(app.state.registry, media_processor=getattr(app.state, "media_processor", None))
        scheduler.start()

    yield

    logger.info("Shutting down crawl job engine API")
    if scheduler is not None:
        scheduler.stop()
    await app.state.registry.aclose()


app = FastAPI(
    title="Crawl Job Engine API",
    description="Resumable, budget-bounded crawl jobs advanced one tick at a time",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(RequestContextMiddleware)

app.state.registry = None
app.state.media_processor = None

app.include_router(health.router)
app.include_router(tick.router)
app.include_router(work.router)
app.include_router(jobs.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Crawl Job Engine API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "tick": "/tick",
            "work": "/work/claim",
            "jobs": "/jobs/{kind}"
        }
    }
