#!/usr/bin/env python3
"""
NFT metadata lookups served from the nft_metadata_cache table.
"""

import base64
import json
import logging
from typing import Any, Dict, Optional

from api.config import get_settings
from api.database import DataProvider

logger = logging.getLogger(__name__)

ARWEAVE_GATEWAY = "https://arweave.net/"
DATA_JSON_PREFIX = "data:application/json;base64,"


def resolve_uri(uri: Optional[str], gateway: Optional[str] = None) -> Optional[str]:
    """Turn ipfs://, ipfs/ and ar:// links into gateway URLs"""
    if not uri:
        return uri
    gateway = gateway or get_settings().ipfs_gateway
    if not gateway.endswith("/"):
        gateway += "/"

    if uri.startswith("ipfs://"):
        path = uri[len("ipfs://"):]
        if path.startswith("ipfs/"):
            path = path[len("ipfs/"):]
        return gateway + path
    if uri.startswith("ipfs/"):
        return gateway + uri[len("ipfs/"):]
    if uri.startswith("ar://"):
        return ARWEAVE_GATEWAY + uri[len("ar://"):]
    return uri


def decode_data_uri(uri: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode inline base64 JSON metadata, as returned by on-chain tokenURI implementations"""
    if not uri or not uri.startswith(DATA_JSON_PREFIX):
        return None
    try:
        return json.loads(base64.b64decode(uri[len(DATA_JSON_PREFIX):]))
    except (ValueError, TypeError) as e:
        logger.warning(f"Invalid inline metadata: {e}")
        return None


def _attribute(attributes, *names) -> Optional[str]:
    if not isinstance(attributes, list):
        return None
    for attr in attributes:
        if isinstance(attr, dict) and str(attr.get("trait_type", "")).lower() in names:
            return attr.get("value")
    return None


def to_display_metadata(row: Dict[str, Any]) -> Dict[str, Any]:
    """Shape a cache row the way listing enrichment consumes it.

    Fields missing from the row are filled from the token URI when it is
    inline base64 JSON.
    """
    inline = decode_data_uri(row.get("token_uri")) or {}
    if not isinstance(inline, dict):
        inline = {}
    attributes = row.get("attributes") or inline.get("attributes")
    name = row.get("name") or inline.get("name")
    return {
        "name": name,
        "title": name,
        "description": row.get("description") or inline.get("description"),
        "image": resolve_uri(row.get("image_uri") or inline.get("image") or inline.get("image_url")),
        "animation_url": resolve_uri(row.get("animation_uri") or inline.get("animation_url")),
        "attributes": attributes,
        "artist": _attribute(attributes, "artist"),
        "creator": _attribute(attributes, "creator"),
        "token_uri": row.get("token_uri"),
    }


class MetadataService:
    """Reads token metadata written by the indexer; never calls RPC"""

    def __init__(self, provider: DataProvider):
        self.provider = provider

    async def get(self, contract_address: str, token_id: str) -> Optional[Dict[str, Any]]:
        row = await self.provider.get_nft_metadata(contract_address, token_id)
        if not row:
            return None
        return to_display_metadata(row)
