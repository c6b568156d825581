#!/usr/bin/env python3
"""
Scheduled maintenance endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from api.config import get_settings
from api.database import DataProvider
from api.services.cleanup import cleanup_cache
from api.dependencies import get_data_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.get("/cleanup-cache")
async def run_cleanup(
    authorization: Optional[str] = Header(None),
    provider: DataProvider = Depends(get_data_service),
):
    """Sweep expired cache rows; guarded by CRON_SECRET when one is configured"""
    cron_secret = get_settings().cron_secret
    if cron_secret and authorization != f"Bearer {cron_secret}":
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    try:
        return await cleanup_cache(provider)
    except Exception as e:
        logger.error(f"Fatal error during cache cleanup: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to cleanup cache", "message": str(e)},
        )
