"""Main FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Import database and ALL models FIRST so create_all sees every table
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
from app.config import settings
from app.database import Base, engine

from app.models import (
    # Account registry
    Account,
    Opportunity,
    RenewalRecord,
    DomainMapping,

    # Communication sources
    EmailMessage,
    CalendarEvent,
    Task,

    # Meeting recaps
    MeetingRecap,
    ActionItem,

    # Derived view
    AccountViewRow,
    AccountExclusion,
    ConsolidationRun,

    # Notes
    AccountNote,
)

from app.routers import (
    webhook_routes,
    ingestion_routes,
    account_view_routes,
    sync_routes,
    maintenance_routes,
    account_routes,
)

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Account Data Consolidation API",
    description="Reconciles account feeds, communications and meeting recaps into the account view",
    version="1.0.0",
    redirect_slashes=False
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================
# ROUTER REGISTRATION
# ============================================

app.include_router(webhook_routes.router)
app.include_router(ingestion_routes.router)
app.include_router(account_view_routes.router)
app.include_router(sync_routes.router)
app.include_router(maintenance_routes.router)
app.include_router(account_routes.router)


# ============================================
# HEALTH & ROOT ENDPOINTS
# ============================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "registered_tables": len(Base.metadata.tables),
        "tables": sorted(Base.metadata.tables.keys()),
        "features": {
            "recap_matching": settings.ENABLE_RECAP_MATCHING,
            "issue_sync": settings.ENABLE_ISSUE_SYNC,
        }
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Account Data Consolidation API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


# ============================================
# STARTUP & SHUTDOWN
# ============================================

@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info("Starting Account Data Consolidation API...")
    Base.metadata.create_all(bind=engine)
    logger.info("=" * 50)
    logger.info(f"Registered {len(Base.metadata.tables)} SQLAlchemy tables:")
    for table_name in sorted(Base.metadata.tables.keys()):
        logger.info(f"  {table_name}")
    logger.info("=" * 50)
    logger.info("Application started successfully!")


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("Shutting down Account Data Consolidation API...")
