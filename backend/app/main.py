"""Main FastAPI application - lead ingestion service."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Import database and ALL models FIRST so they register with Base
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
from app.database import Base, init_db, ping_db, close_db

from app.models import (
    ConnectedAccount,
    IntegrationSettings,
    Lead,
    LeadActivity,
    IngestionAuditLog,
)

from app.config import settings
from app.ingestion_engine import __version__
from app.routers import webhook_routes, integration_routes
from app.scheduler import start_scheduler, stop_scheduler
from app.services.ingestion_service import get_ingestion_service, shutdown_ingestion_service

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Lead Ingestion API",
    description="Multi-tenant lead ingestion from Facebook Lead Ads, Google Ads and website forms",
    version=__version__,
    redirect_slashes=False
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================
# ROUTER REGISTRATION
# ============================================

app.include_router(webhook_routes.router)       # /api/v1/webhooks
app.include_router(integration_routes.router)   # /api/v1/integrations


# ============================================
# HEALTH & ROOT ENDPOINTS
# ============================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    database = None
    if settings.STORAGE_BACKEND == "postgres":
        database = "connected" if await ping_db() else "unavailable"

    return {
        "status": "healthy" if database != "unavailable" else "degraded",
        "database": database,
        "version": __version__,
        "storage_backend": settings.STORAGE_BACKEND,
        "lock_backend": settings.LOCK_BACKEND,
        "registered_tables": len(Base.metadata.tables),
        "tables": list(Base.metadata.tables.keys()),
        "sources": ["facebook_ads", "google_ads", "website"],
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Lead Ingestion API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# ============================================
# STARTUP & SHUTDOWN
# ============================================

@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info("Starting Lead Ingestion API...")
    logger.info("=" * 50)

    if settings.STORAGE_BACKEND == "postgres":
        await init_db()
        logger.info(f"Registered {len(Base.metadata.tables)} SQLAlchemy tables:")
        for table_name in sorted(Base.metadata.tables.keys()):
            logger.info(f"  ✓ {table_name}")
    else:
        logger.info(f"Using {settings.STORAGE_BACKEND} storage backend")

    logger.info("=" * 50)
    logger.info("Registered Routes:")
    for route in app.routes:
        if hasattr(route, 'path'):
            logger.info(f"  {route.path}")
    logger.info("=" * 50)

    get_ingestion_service()

    # Start APScheduler
    start_scheduler()

    logger.info("Application started successfully!")


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("Shutting down Lead Ingestion API...")
    stop_scheduler()
    await shutdown_ingestion_service()
    if settings.STORAGE_BACKEND == "postgres":
        await close_db()
