#!/usr/bin/env python3
"""
Token URI and metadata fetching for indexed Creator Core tokens.
"""

import base64
import json
import logging
from typing import Any, Dict, Optional

import requests
from web3 import Web3

from indexer.contracts import get_contract

logger = logging.getLogger(__name__)

DEFAULT_IPFS_GATEWAY = "https://ipfs.io/ipfs/"
DATA_JSON_PREFIX = "data:application/json;base64,"
REQUEST_TIMEOUT = 15


def to_gateway_url(uri: str, gateway: str = DEFAULT_IPFS_GATEWAY) -> str:
    if not gateway.endswith("/"):
        gateway += "/"
    if uri.startswith("ipfs://"):
        path = uri[len("ipfs://"):]
        if path.startswith("ipfs/"):
            path = path[len("ipfs/"):]
        return gateway + path
    if uri.startswith("ipfs/"):
        return gateway + uri[len("ipfs/"):]
    return uri


def metadata_source(token_uri: str) -> str:
    return "ipfs" if token_uri.startswith("ipfs://") else "contract"


def fetch_token_uri(w3: Web3, contract_address: str, token_id: str) -> Optional[str]:
    """tokenURI(id) for ERC721, falling back to ERC1155 uri(id) with {id} substituted"""
    contract = get_contract(w3, contract_address)
    try:
        uri = contract.functions.tokenURI(int(token_id)).call()
        if uri:
            return uri
    except Exception as e:
        logger.debug(f"tokenURI failed for {contract_address}/{token_id}: {e}")

    try:
        uri = contract.functions.uri(int(token_id)).call()
    except Exception as e:
        logger.warning(f"Error fetching tokenURI for {contract_address}/{token_id}: {e}")
        return None
    if not uri:
        return None
    # ERC1155 clients substitute the lowercase 64-char hex id
    return uri.replace("{id}", format(int(token_id), "064x"))


def fetch_metadata_from_uri(uri: str, gateway: str = DEFAULT_IPFS_GATEWAY,
                            session: Optional[requests.Session] = None) -> Optional[Dict[str, Any]]:
    """Resolve inline data: URIs locally, everything else over HTTP"""
    if uri.startswith(DATA_JSON_PREFIX):
        try:
            return json.loads(base64.b64decode(uri[len(DATA_JSON_PREFIX):]))
        except (ValueError, TypeError) as e:
            logger.warning(f"Invalid inline metadata: {e}")
            return None

    url = to_gateway_url(uri, gateway)
    http = session or requests
    try:
        response = http.get(url, timeout=REQUEST_TIMEOUT)
        if response.status_code != 200:
            logger.debug(f"Metadata fetch {url} returned {response.status_code}")
            return None
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Error fetching metadata from {uri}: {e}")
        return None
    return data if isinstance(data, dict) else None


def fetch_and_cache_metadata(w3: Web3, store, contract_address: str, token_id: str,
                             gateway: str = DEFAULT_IPFS_GATEWAY,
                             session: Optional[requests.Session] = None) -> Optional[Dict[str, Any]]:
    """Return cached metadata when refreshed, otherwise fetch, cache and attach to the token row"""
    contract_address = contract_address.lower()
    cached = store.get_cached_metadata(contract_address, token_id)
    if cached and cached.get("refreshed_at"):
        return {
            "name": cached.get("name"),
            "description": cached.get("description"),
            "image": cached.get("image_uri"),
            "animation_url": cached.get("animation_uri"),
            "attributes": cached.get("attributes"),
        }

    token_uri = fetch_token_uri(w3, contract_address, token_id)
    if not token_uri:
        return None

    metadata = fetch_metadata_from_uri(token_uri, gateway, session)
    if not metadata:
        return None

    store.upsert_metadata(contract_address, token_id, token_uri, metadata_source(token_uri), metadata)
    store.set_token_metadata(contract_address, token_id, token_uri, metadata)
    return metadata
