#!/usr/bin/env python3
"""
FastAPI routes for per-collection sales (LSSVM pools and auctions).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from api.config import BASE_CHAIN_ID
from api.services.unified import UnifiedSales
from api.services.user_discovery import is_valid_address
from api.dependencies import get_unified_sales

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/collections", tags=["collections"])


@router.get("/{address}/sales")
async def get_collection_sales(
    address: str,
    chain_id: int = Query(BASE_CHAIN_ID, alias="chainId"),
    unified: UnifiedSales = Depends(get_unified_sales),
):
    if not is_valid_address(address):
        raise HTTPException(status_code=400, detail="Invalid address format")
    return await unified.get_sales_options(address.lower(), chain_id)
