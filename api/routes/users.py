#!/usr/bin/env python3
"""
FastAPI routes for user identity lookups.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from api.services.user_discovery import UserDiscovery, is_valid_address
from api.dependencies import get_user_discovery

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["users"])


@router.get("/{address}")
async def get_user(
    address: str,
    cache_only: bool = Query(False, alias="cacheOnly"),
    discovery: UserDiscovery = Depends(get_user_discovery),
):
    """Resolve a wallet to its Farcaster or ENS identity"""
    if not is_valid_address(address):
        raise HTTPException(status_code=400, detail="Invalid address format")
    try:
        user = await discovery.discover(address, cache_only=cache_only, fail_silently=False)
    except Exception as e:
        logger.error(f"Error discovering user {address}: {e}")
        raise HTTPException(status_code=502, detail="Failed to resolve user")

    return {
        "address": address.lower(),
        "found": user is not None,
        "user": user.model_dump(by_alias=True) if user else None,
    }
