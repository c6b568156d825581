#!/usr/bin/env python3
"""
FastAPI routes for recently active wallets.
"""

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.services.activity import ActivityService
from api.dependencies import get_activity_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


async def _recent(kind: str, fetch, first: int):
    try:
        people = await fetch(first)
    except Exception as e:
        logger.error(f"Error fetching recent {kind}: {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, kind: [], "count": 0, "error": str(e)},
        )
    return {"success": True, kind: people, "count": len(people)}


@router.get("/recent-collectors")
async def recent_collectors(
    first: int = Query(6, ge=1, le=50),
    activity: ActivityService = Depends(get_activity_service),
):
    return await _recent("collectors", activity.recent_collectors, first)


@router.get("/recent-bidders")
async def recent_bidders(
    first: int = Query(6, ge=1, le=50),
    activity: ActivityService = Depends(get_activity_service),
):
    return await _recent("bidders", activity.recent_bidders, first)


@router.get("/recent-artists")
async def recent_artists(
    first: int = Query(6, ge=1, le=50),
    activity: ActivityService = Depends(get_activity_service),
):
    """Creators of the contracts behind the newest active listings"""
    return await _recent("artists", activity.recent_artists, first)
