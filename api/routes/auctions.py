#!/usr/bin/env python3
"""
FastAPI routes for auction listings.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from api.models.listing import ListingDetailResponse
from api.services.listings import ListingService
from api.services.subgraph import MAX_ACTIVE_PAGE, SubgraphError, is_rate_limit_error
from api.services.user_discovery import is_valid_address
from api.dependencies import get_listing_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auctions", tags=["auctions"])


@router.get("/active")
async def get_active_auctions(
    first: int = Query(16, ge=1, description="Number of listings, capped at 1000"),
    skip: int = Query(0, ge=0),
    enrich: bool = Query(True, description="Attach NFT metadata"),
    listings: ListingService = Depends(get_listing_service),
):
    """Active feed; always answers 200 so the page never breaks"""
    first = min(first, MAX_ACTIVE_PAGE)
    try:
        result = await listings.get_active(first, skip, enrich)
    except Exception as e:
        logger.error(f"Error fetching active auctions: {e}")
        return {"success": False, "auctions": [], "count": 0, "subgraphDown": False, "error": str(e)}

    response = {
        "success": True,
        "auctions": result["auctions"],
        "count": len(result["auctions"]),
        "subgraphDown": result["subgraph_down"],
        "degraded": result["degraded"],
    }
    if result.get("error"):
        response["error"] = result["error"]
    return response


@router.get("/by-seller/{address}")
async def get_auctions_by_seller(
    address: str,
    first: int = Query(50, ge=1, le=100),
    skip: int = Query(0, ge=0),
    enrich: bool = Query(True),
    listings: ListingService = Depends(get_listing_service),
):
    if not is_valid_address(address):
        raise HTTPException(status_code=400, detail="Invalid address format")
    try:
        auctions = await listings.get_by_seller(address, first, skip, enrich)
    except SubgraphError as e:
        logger.error(f"Error fetching listings for seller {address}: {e}")
        return {"success": False, "auctions": [], "count": 0, "error": str(e)}
    return {"success": True, "auctions": auctions, "count": len(auctions)}


@router.get("/with-bids/{address}")
async def get_auctions_with_bids(
    address: str,
    first: int = Query(100, ge=1, le=1000),
    skip: int = Query(0, ge=0),
    enrich: bool = Query(True),
    listings: ListingService = Depends(get_listing_service),
):
    """Listings the wallet has bid on, with its own top bid as currentPrice"""
    if not is_valid_address(address):
        raise HTTPException(status_code=400, detail="Invalid bidder address")
    try:
        auctions = await listings.get_with_bids(address, first, skip, enrich)
    except Exception as e:
        logger.error(f"Error fetching auctions with bids for {address}: {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "auctions": [], "count": 0, "error": str(e)},
        )
    return {"success": True, "auctions": auctions, "count": len(auctions)}


@router.get("/{listing_id}", response_model=ListingDetailResponse, response_model_by_alias=True)
async def get_auction(
    listing_id: str,
    listings: ListingService = Depends(get_listing_service),
):
    try:
        listing = await listings.get_listing(listing_id)
    except SubgraphError as e:
        if is_rate_limit_error(e):
            logger.warning(f"Rate limited fetching listing {listing_id}")
            raise HTTPException(status_code=429, detail="Rate limited by subgraph, please retry shortly")
        logger.error(f"Error fetching listing {listing_id}: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch auction")
    except asyncio.TimeoutError:
        logger.error(f"Timed out fetching listing {listing_id}")
        raise HTTPException(status_code=504, detail="Timed out fetching auction")

    if listing is None:
        raise HTTPException(status_code=404, detail="Auction not found")
    return ListingDetailResponse(listing=listing)
