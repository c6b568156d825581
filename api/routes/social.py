#!/usr/bin/env python3
"""
FastAPI routes for social features: patron leaderboards and auction completions.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse

from api.config import get_settings
from api.database import DataProvider
from api.services.completions import CompletionSync, recent_auctions
from api.services.patrons import creator_patrons, top_patrons
from api.dependencies import get_completion_sync, get_data_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/social", tags=["social"])


def is_authorized(authorization: Optional[str], *secrets: Optional[str]) -> bool:
    """True when the bearer token matches one of the configured secrets"""
    if not authorization:
        return False
    return any(secret and authorization == f"Bearer {secret}" for secret in secrets)


@router.get("/top-patrons")
async def get_top_patrons(
    limit: int = Query(100, ge=1),
    offset: int = Query(0, ge=0),
    period: str = Query("all", description="all, 30d or 7d"),
    min_tier: Optional[str] = Query(None, alias="minTier"),
    provider: DataProvider = Depends(get_data_service),
):
    try:
        return await top_patrons(provider, limit, offset, period, min_tier)
    except Exception as e:
        logger.error(f"Failed to fetch top patrons: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch top patrons. Please try again.")


@router.get("/creator/{fid}/patrons")
async def get_creator_patrons(
    fid: str,
    limit: int = Query(50, ge=1),
    provider: DataProvider = Depends(get_data_service),
):
    try:
        creator_fid = int(fid)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid creator FID")

    try:
        return await creator_patrons(provider, creator_fid, limit)
    except Exception as e:
        logger.error(f"Failed to fetch patrons for creator {creator_fid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch creator patrons. Please try again.")


@router.get("/recent-auctions")
async def get_recent_auctions(
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    featured: bool = Query(False),
    provider: DataProvider = Depends(get_data_service),
):
    try:
        return await recent_auctions(provider, limit, offset, featured)
    except Exception as e:
        logger.error(f"Failed to fetch recent auctions: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch recent auctions. Please try again.")


@router.get("/sync/auction-completions")
async def sync_auction_completions(
    limit: int = Query(50, ge=1),
    force_refresh: bool = Query(False, alias="forceRefresh"),
    authorization: Optional[str] = Header(None),
    sync: CompletionSync = Depends(get_completion_sync),
):
    """Copy finalized auctions into the completions cache (cron or admin only)"""
    settings = get_settings()
    if not is_authorized(authorization, settings.cron_secret, settings.admin_secret):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    try:
        result = await sync.sync(limit, force_refresh)
    except Exception as e:
        logger.error(f"Failed to sync auction completions: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to sync auction completions", "details": str(e)},
        )
    return result.model_dump(mode="json")
