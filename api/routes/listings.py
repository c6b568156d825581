#!/usr/bin/env python3
"""
FastAPI routes for browsing listings.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse

from api.models.listing import ListingsResponse, Pagination
from api.services.listings import ListingService, compute_has_more
from api.services.subgraph import MAX_BROWSE_PAGE
from api.services.activity import ActivityService
from api.dependencies import get_activity_service, get_listing_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/listings", tags=["listings"])

BROWSE_CACHE_CONTROL = "public, s-maxage=300, stale-while-revalidate=120"
NO_CACHE = "no-store, must-revalidate"
PURCHASES_CACHE_CONTROL = "public, s-maxage=60, stale-while-revalidate=120"


@router.get("/browse", response_model=ListingsResponse, response_model_by_alias=True)
async def browse_listings(
    response: Response,
    first: int = Query(20, ge=1),
    skip: int = Query(0, ge=0),
    order_by: str = Query("listingId", alias="orderBy"),
    order_direction: str = Query("desc", alias="orderDirection"),
    enrich: bool = Query(True),
    no_cache: Optional[bool] = Query(False, alias="noCache"),
    listings: ListingService = Depends(get_listing_service),
):
    """Paginated listings; hasMore relies on the subgraph returning a full page"""
    first = min(first, MAX_BROWSE_PAGE)
    response.headers["Cache-Control"] = NO_CACHE if no_cache else BROWSE_CACHE_CONTROL
    try:
        results, full_page, subgraph_down = await listings.browse(first, skip, order_by, order_direction, enrich)
    except Exception as e:
        logger.error(f"Error browsing listings: {e}")
        response.headers["Cache-Control"] = NO_CACHE
        return ListingsResponse(
            success=False,
            error=str(e),
            pagination=Pagination(first=first, skip=skip, has_more=False),
        )

    if subgraph_down:
        response.headers["Cache-Control"] = NO_CACHE

    return ListingsResponse(
        listings=results,
        count=len(results),
        subgraph_down=subgraph_down,
        pagination=Pagination(first=first, skip=skip, has_more=compute_has_more(len(results), first, full_page)),
    )


@router.get("/recently-concluded")
async def recently_concluded(
    first: int = Query(8, ge=1, le=100),
    skip: int = Query(0, ge=0),
    enrich: bool = Query(True),
    listings: ListingService = Depends(get_listing_service),
):
    """Listings finalized during the last seven days"""
    try:
        results = await listings.get_recently_concluded(first, skip, enrich)
    except Exception as e:
        logger.error(f"Error fetching recently concluded listings: {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "listings": [], "count": 0, "error": "Failed to fetch recently concluded listings"},
        )
    return {"success": True, "listings": results, "count": len(results)}


@router.get("/{listing_id}/purchases")
async def listing_purchases(
    listing_id: str,
    activity: ActivityService = Depends(get_activity_service),
):
    """Buyers of a listing with the quantity each bought, latest buyer first"""
    try:
        buyers = await activity.listing_buyers(listing_id)
    except Exception as e:
        logger.error(f"Error fetching purchases for listing {listing_id}: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to fetch purchases"})
    return JSONResponse(content={"buyers": buyers}, headers={"Cache-Control": PURCHASES_CACHE_CONTROL})
