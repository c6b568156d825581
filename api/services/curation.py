#!/usr/bin/env python3
"""
Curated galleries: per-curator collections of listings.
"""

import logging
import re
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from api.config import get_settings
from api.database import DataProvider
from api.models.curation import AddItemsResult, Gallery, GalleryWithListings
from api.services.user_discovery import is_valid_address

logger = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 60

ListingLookup = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]


class CurationError(Exception):
    """Raised for requests the routes turn into 4xx responses"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def generate_slug(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (title or "").lower()).strip("-")
    slug = slug[:MAX_SLUG_LENGTH].strip("-")
    return slug or "gallery"


def is_gallery_id(gallery_id: Optional[str]) -> bool:
    """Gallery ids are UUIDs; anything else can never match a row"""
    try:
        uuid.UUID(str(gallery_id))
    except ValueError:
        return False
    return True


def _normalize_address(address: Optional[str]) -> str:
    if not address:
        raise CurationError("userAddress is required")
    if not is_valid_address(address):
        raise CurationError("Invalid address format")
    return address.lower()


class CurationService:
    """Gallery CRUD on top of a data provider.

    `listing_lookup` resolves a listing id to subgraph data and returns None
    for unknown listings; it is used both to validate new items and to expand
    galleries for display.
    """

    def __init__(self, provider: DataProvider, listing_lookup: ListingLookup,
                 max_galleries: Optional[int] = None):
        self.provider = provider
        self.listing_lookup = listing_lookup
        self.max_galleries = max_galleries or get_settings().max_galleries_per_user

    async def _unique_slug(self, address: str, title: str, exclude_id: Optional[str] = None) -> str:
        base = generate_slug(title)
        slug = base
        counter = 1
        while await self.provider.gallery_slug_exists(address, slug, exclude_id):
            slug = f"{base}-{counter}"
            counter += 1
        return slug

    async def _owned_gallery(self, gallery_id: str, address: str) -> Gallery:
        if not is_gallery_id(gallery_id):
            raise CurationError("Gallery not found", 404)
        gallery = await self.provider.get_gallery(gallery_id)
        if gallery is None:
            raise CurationError("Gallery not found", 404)
        if gallery.curator_address.lower() != address:
            raise CurationError("Unauthorized", 403)
        return gallery

    async def _lookup(self, listing_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.listing_lookup(listing_id)
        except Exception as e:
            logger.error(f"Error fetching listing {listing_id} for gallery: {e}")
            return None

    async def list_galleries(self, user_address: str, published_only: bool = False) -> List[Gallery]:
        address = _normalize_address(user_address)
        return await self.provider.list_galleries(address, published_only)

    async def create_gallery(self, user_address: str, title: str, description: Optional[str] = None) -> Gallery:
        address = _normalize_address(user_address)
        if not title or not title.strip():
            raise CurationError("Title cannot be empty")

        if await self.provider.count_galleries(address) >= self.max_galleries:
            raise CurationError(f"You can only create up to {self.max_galleries} galleries.")

        slug = await self._unique_slug(address, title.strip())
        description = description.strip() if description and description.strip() else None
        gallery = await self.provider.create_gallery(address, title.strip(), description, slug)
        logger.info(f"Created gallery {gallery.id} ({slug}) for {address}")
        return gallery

    async def update_gallery(self, gallery_id: str, user_address: str, title: Optional[str] = None,
                             description: Optional[str] = None, is_published: Optional[bool] = None) -> Gallery:
        address = _normalize_address(user_address)
        await self._owned_gallery(gallery_id, address)

        fields: Dict[str, Any] = {}
        if title is not None:
            if not title.strip():
                raise CurationError("Title cannot be empty")
            fields["title"] = title.strip()
            fields["slug"] = await self._unique_slug(address, title.strip(), exclude_id=gallery_id)
        if description is not None:
            fields["description"] = description.strip() or None
        if is_published is not None:
            fields["is_published"] = is_published

        return await self.provider.update_gallery(gallery_id, fields)

    async def delete_gallery(self, gallery_id: str, user_address: str) -> None:
        address = _normalize_address(user_address)
        await self._owned_gallery(gallery_id, address)
        await self.provider.delete_gallery(gallery_id)
        logger.info(f"Deleted gallery {gallery_id}")

    async def add_items(self, gallery_id: str, user_address: str, listing_ids: List[str],
                        notes: Optional[str] = None) -> AddItemsResult:
        address = _normalize_address(user_address)
        if not listing_ids:
            raise CurationError("listingIds array is required")
        await self._owned_gallery(gallery_id, address)

        current = await self.provider.get_gallery_items(gallery_id)
        existing_ids = {item.listing_id for item in current}
        next_order = max((item.display_order for item in current), default=-1) + 1

        added = []
        skipped = 0
        for listing_id in listing_ids:
            listing_id = str(listing_id)
            if listing_id in existing_ids:
                skipped += 1
                continue
            if await self._lookup(listing_id) is None:
                logger.info(f"Listing {listing_id} not found, not adding to gallery {gallery_id}")
                skipped += 1
                continue
            item = await self.provider.add_gallery_item(gallery_id, listing_id, next_order, notes or None)
            existing_ids.add(listing_id)
            next_order += 1
            added.append(item)

        return AddItemsResult(added=len(added), skipped=skipped, items=added)

    async def remove_item(self, gallery_id: str, user_address: str, listing_id: str) -> None:
        address = _normalize_address(user_address)
        if not listing_id:
            raise CurationError("userAddress and listingId are required")
        await self._owned_gallery(gallery_id, address)
        removed = await self.provider.remove_gallery_item(gallery_id, listing_id)
        if not removed:
            raise CurationError("Item not found in gallery", 404)

    async def _with_listings(self, gallery: Gallery) -> GalleryWithListings:
        items = await self.provider.get_gallery_items(gallery.id)
        listings = []
        for item in items:
            listing = await self._lookup(item.listing_id)
            if listing is None:
                continue
            listings.append({
                **listing,
                "displayOrder": item.display_order,
                "notes": item.notes,
                "addedAt": item.added_at.isoformat() if item.added_at else None,
            })
        data = gallery.model_dump()
        data["item_count"] = len(listings)
        return GalleryWithListings(**data, listings=listings)

    async def get_gallery(self, gallery_id: str, viewer: Optional[str] = None) -> GalleryWithListings:
        """Published galleries are public; drafts are visible to their curator only"""
        if not is_gallery_id(gallery_id):
            raise CurationError("Gallery not found", 404)
        gallery = await self.provider.get_gallery(gallery_id)
        is_owner = bool(viewer) and gallery is not None and gallery.curator_address.lower() == viewer.lower()
        if gallery is None or (not gallery.is_published and not is_owner):
            raise CurationError("Gallery not found", 404)
        return await self._with_listings(gallery)

    async def get_gallery_by_slug(self, curator_address: str, slug: str,
                                  viewer: Optional[str] = None) -> GalleryWithListings:
        address = _normalize_address(curator_address)
        gallery = await self.provider.get_gallery_by_slug(address, slug)
        is_owner = bool(viewer) and viewer.lower() == address
        if gallery is None or (not gallery.is_published and not is_owner):
            raise CurationError("Gallery not found", 404)
        return await self._with_listings(gallery)
