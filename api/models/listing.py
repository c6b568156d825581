#!/usr/bin/env python3
"""
Pydantic models for auction-house listings served by the subgraph.
"""

from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ListingType(str, Enum):
    """Normalized listing types"""
    INDIVIDUAL_AUCTION = "INDIVIDUAL_AUCTION"
    FIXED_PRICE = "FIXED_PRICE"
    DYNAMIC_PRICE = "DYNAMIC_PRICE"
    OFFERS_ONLY = "OFFERS_ONLY"


class TokenSpec(str, Enum):
    """Token standards a listing can carry"""
    ERC721 = "ERC721"
    ERC1155 = "ERC1155"


class ListingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    FINALIZED = "FINALIZED"
    CANCELLED = "CANCELLED"


class CamelModel(BaseModel):
    """Base model that serializes to the camelCase shape the web clients expect"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Pagination(CamelModel):
    first: int = Field(..., description="Page size requested")
    skip: int = Field(..., description="Number of listings skipped")
    has_more: bool = Field(..., description="Whether another page is likely available")


class ListingsResponse(CamelModel):
    """Response envelope for listing feeds"""
    success: bool = Field(True, description="False when the feed could not be built")
    listings: List[Dict[str, Any]] = Field(default_factory=list, description="Enriched listings")
    count: int = Field(0, description="Number of listings returned")
    subgraph_down: bool = Field(False, description="True when the subgraph failed and data may be stale")
    degraded: bool = Field(False, description="True when served from the last-known-good cache")
    pagination: Optional[Pagination] = None
    error: Optional[str] = None


class ListingDetailResponse(CamelModel):
    success: bool = True
    listing: Dict[str, Any]
