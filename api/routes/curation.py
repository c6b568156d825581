#!/usr/bin/env python3
"""
FastAPI routes for curated galleries.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.models.curation import GalleryCreate, GalleryItemsAdd, GalleryUpdate
from api.services.curation import CurationError, CurationService
from api.dependencies import get_curation_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/curation", tags=["curation"])


def _dump(model):
    return model.model_dump(by_alias=True, mode="json")


def _raise(e: CurationError):
    raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("")
async def list_galleries(
    user_address: Optional[str] = Query(None, alias="userAddress"),
    published_only: bool = Query(False, alias="publishedOnly"),
    curation: CurationService = Depends(get_curation_service),
):
    try:
        galleries = await curation.list_galleries(user_address, published_only)
    except CurationError as e:
        _raise(e)
    except Exception as e:
        logger.error(f"Error fetching galleries: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch galleries")
    return {"galleries": [_dump(g) for g in galleries]}


@router.post("")
async def create_gallery(
    body: GalleryCreate,
    curation: CurationService = Depends(get_curation_service),
):
    try:
        gallery = await curation.create_gallery(body.user_address, body.title, body.description)
    except CurationError as e:
        _raise(e)
    except Exception as e:
        logger.error(f"Error creating gallery: {e}")
        raise HTTPException(status_code=500, detail="Failed to create gallery")
    return {"gallery": _dump(gallery)}


@router.get("/user/{address}/gallery/{slug}")
async def get_public_gallery(
    address: str,
    slug: str,
    viewer: Optional[str] = Query(None, alias="userAddress"),
    curation: CurationService = Depends(get_curation_service),
):
    try:
        gallery = await curation.get_gallery_by_slug(address, slug, viewer)
    except CurationError as e:
        _raise(e)
    except Exception as e:
        logger.error(f"Error fetching gallery {address}/{slug}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch gallery")
    return {"gallery": _dump(gallery)}


@router.get("/slug/{slug}")
async def get_gallery_by_slug(
    slug: str,
    curator_address: Optional[str] = Query(None, alias="curatorAddress"),
    viewer: Optional[str] = Query(None, alias="userAddress"),
    curation: CurationService = Depends(get_curation_service),
):
    if not curator_address:
        raise HTTPException(status_code=400, detail="curatorAddress is required")
    try:
        gallery = await curation.get_gallery_by_slug(curator_address, slug, viewer)
    except CurationError as e:
        _raise(e)
    except Exception as e:
        logger.error(f"Error fetching gallery by slug {slug}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch gallery")
    return {"gallery": _dump(gallery)}


@router.get("/{gallery_id}")
async def get_gallery(
    gallery_id: str,
    viewer: Optional[str] = Query(None, alias="userAddress"),
    curation: CurationService = Depends(get_curation_service),
):
    try:
        gallery = await curation.get_gallery(gallery_id, viewer)
    except CurationError as e:
        _raise(e)
    except Exception as e:
        logger.error(f"Error fetching gallery {gallery_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch gallery")
    return {"gallery": _dump(gallery)}


@router.patch("/{gallery_id}")
async def update_gallery(
    gallery_id: str,
    body: GalleryUpdate,
    curation: CurationService = Depends(get_curation_service),
):
    try:
        gallery = await curation.update_gallery(
            gallery_id, body.user_address, body.title, body.description, body.is_published
        )
    except CurationError as e:
        _raise(e)
    except Exception as e:
        logger.error(f"Error updating gallery {gallery_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update gallery")
    return {"gallery": _dump(gallery)}


@router.delete("/{gallery_id}")
async def delete_gallery(
    gallery_id: str,
    user_address: Optional[str] = Query(None, alias="userAddress"),
    curation: CurationService = Depends(get_curation_service),
):
    try:
        await curation.delete_gallery(gallery_id, user_address)
    except CurationError as e:
        _raise(e)
    except Exception as e:
        logger.error(f"Error deleting gallery {gallery_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete gallery")
    return {"success": True}


@router.post("/{gallery_id}/items")
async def add_gallery_items(
    gallery_id: str,
    body: GalleryItemsAdd,
    curation: CurationService = Depends(get_curation_service),
):
    try:
        result = await curation.add_items(gallery_id, body.user_address, body.listing_ids, body.notes)
    except CurationError as e:
        _raise(e)
    except Exception as e:
        logger.error(f"Error adding items to gallery {gallery_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to add items to gallery")
    return _dump(result)


@router.delete("/{gallery_id}/items")
async def remove_gallery_item(
    gallery_id: str,
    listing_id: Optional[str] = Query(None, alias="listingId"),
    user_address: Optional[str] = Query(None, alias="userAddress"),
    curation: CurationService = Depends(get_curation_service),
):
    if not listing_id or not user_address:
        raise HTTPException(status_code=400, detail="userAddress and listingId are required")
    try:
        await curation.remove_item(gallery_id, user_address, listing_id)
    except CurationError as e:
        _raise(e)
    except Exception as e:
        logger.error(f"Error removing item from gallery {gallery_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to remove item from gallery")
    return {"success": True}
