#!/usr/bin/env python3
"""
Pydantic models for curated galleries.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import Field

from api.models.listing import CamelModel


class Gallery(CamelModel):
    id: str = Field(..., description="Gallery UUID")
    curator_address: str
    title: str
    description: Optional[str] = None
    slug: str
    is_published: bool = False
    created_at: datetime
    updated_at: datetime
    item_count: Optional[int] = None


class GalleryItem(CamelModel):
    id: str
    curation_id: str
    listing_id: str
    display_order: int
    notes: Optional[str] = None
    added_at: datetime


class GalleryCreate(CamelModel):
    user_address: str = Field(..., description="Curator wallet address")
    title: str
    description: Optional[str] = None


class GalleryUpdate(CamelModel):
    user_address: str
    title: Optional[str] = None
    description: Optional[str] = None
    is_published: Optional[bool] = None


class GalleryItemsAdd(CamelModel):
    user_address: str
    listing_ids: List[str] = Field(..., min_length=1)
    notes: Optional[str] = None


class AddItemsResult(CamelModel):
    success: bool = True
    added: int
    skipped: int
    items: List[GalleryItem]


class GalleryWithListings(Gallery):
    listings: List[Dict[str, Any]] = Field(default_factory=list)
