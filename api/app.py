#!/usr/bin/env python3
"""
Marketplace API server with configurable mock/development/production modes.
"""

import argparse
import logging
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import dependencies
from api.config import get_settings, get_cors_origins, is_mock_mode, requires_database
from api.database import DataProvider, get_data_provider
from api.dependencies import get_data_service
from api.routes.activity import router as activity_router
from api.routes.auctions import router as auctions_router
from api.routes.collections import router as collections_router
from api.routes.cron import router as cron_router
from api.routes.curation import router as curation_router
from api.routes.listings import router as listings_router
from api.routes.social import router as social_router
from api.routes.users import router as users_router

# Setup logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Get settings
settings = get_settings()

API_VERSION = "1.0.0"

# Create FastAPI app
app = FastAPI(
    title=f"CryptoArt Marketplace API ({settings.app_mode.value})",
    description=f"Listings, curation and social API - Running in {settings.app_mode.value} mode",
    version=API_VERSION,
    docs_url="/api/docs" if not is_mock_mode() else "/docs",
    redoc_url="/api/redoc" if not is_mock_mode() else "/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auctions_router)
app.include_router(listings_router)
app.include_router(curation_router)
app.include_router(users_router)
app.include_router(activity_router)
app.include_router(social_router)
app.include_router(cron_router)
app.include_router(collections_router)


# Startup validation
@app.on_event("startup")
async def startup_event():
    """Validate that the data provider can be initialized properly"""
    logger.info(f"Validating data provider for mode: {dependencies.PROVIDER_MODE or settings.app_mode.value}")
    try:
        get_data_provider(force_mode=dependencies.PROVIDER_MODE)
        logger.info("✅ Data provider initialized successfully")
    except Exception as e:
        logger.error(f"❌ Startup validation failed: {e}")
        raise


@app.get("/")
async def root():
    """Root endpoint with API status"""
    return {
        "name": "CryptoArt Marketplace API",
        "version": API_VERSION,
        "mode": settings.app_mode.value,
        "status": "running",
        "mock_mode": is_mock_mode(),
        "requires_database": requires_database(),
        "endpoints": {
            "docs": "/api/docs" if not is_mock_mode() else "/docs",
            "health": "/health",
            "active_auctions": "/api/auctions/active",
            "browse": "/api/listings/browse",
            "curation": "/api/curation",
            "top_patrons": "/api/social/top-patrons",
            "recent_auctions": "/api/social/recent-auctions",
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.get("/health")
async def health_check(provider: DataProvider = Depends(get_data_service)):
    """Health check endpoint"""
    status = {
        "status": "healthy",
        "mode": settings.app_mode.value,
        "mock_mode": is_mock_mode(),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

    if requires_database() and dependencies.PROVIDER_MODE != "mock":
        try:
            healthy = await provider.health_check()
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            healthy = False
            status["database_error"] = str(e)
        if not healthy:
            status["status"] = "unhealthy"
            status["database"] = "unhealthy"
            return JSONResponse(status_code=503, content=status)
        status["database"] = "healthy"
    else:
        status["database"] = "not_required"

    return status


def main():
    import uvicorn

    parser = argparse.ArgumentParser(description="CryptoArt Marketplace API Server")
    parser.add_argument('--mock', action='store_true', help='Use mock data provider instead of database')
    parser.add_argument('--host', default=settings.api_host, help='Bind host')
    parser.add_argument('--port', type=int, default=settings.api_port, help='Bind port')
    args = parser.parse_args()

    if args.mock:
        dependencies.PROVIDER_MODE = "mock"

    logger.info("=" * 60)
    logger.info(f"🚀 Starting Marketplace API in {settings.app_mode.value.upper()} mode")
    logger.info("=" * 60)
    logger.info(f"Data Mode: {'mock (--mock flag)' if args.mock else settings.app_mode.value}")
    logger.info(f"API Host: {args.host}:{args.port}")
    logger.info(f"CORS Origins: {settings.cors_origins}")
    logger.info(f"Subgraph: {settings.auctionhouse_subgraph_url}")
    logger.info("=" * 60)

    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
