#!/usr/bin/env python3
"""
Listing feeds built from the auction-house subgraph.

Raw subgraph listings are filtered (cancelled, finalized, sold out, hidden
sellers), normalized and enriched with cached NFT metadata before they are
served.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from api.config import get_settings
from api.database import DataProvider
from api.models.listing import ListingType, TokenSpec
from api.services.kv import KVStore
from api.services.metadata import MetadataService
from api.services.subgraph import (
    MAX_BROWSE_PAGE,
    SubgraphClient,
    SubgraphError,
    is_auth_error,
    retry_with_backoff,
)
from api.services.user_discovery import UserDiscovery

logger = logging.getLogger(__name__)

LISTING_TYPES_BY_NUMBER = {
    0: ListingType.INDIVIDUAL_AUCTION,  # INVALID on-chain, shown as an auction
    1: ListingType.INDIVIDUAL_AUCTION,
    2: ListingType.FIXED_PRICE,
    3: ListingType.DYNAMIC_PRICE,
    4: ListingType.OFFERS_ONLY,
}

LAST_KNOWN_GOOD_KEY = "active:last-known-good"
RECENTLY_CONCLUDED_DAYS = 7
LISTING_FETCH_TIMEOUT = 10.0
WITH_BIDS_CACHE_TTL = 60


def _is_int_string(value: str) -> bool:
    return value.lstrip("-").isdigit() and str(int(value)) == value


def normalize_listing_type(listing_type: Any, lazy: Optional[bool] = None) -> str:
    """Map numeric or named listing types onto ListingType names.

    The subgraph once indexed fixed-price listings as DYNAMIC_PRICE; a
    DYNAMIC_PRICE listing that is explicitly not lazy is a fixed-price one.
    """
    result: Optional[ListingType] = None

    if isinstance(listing_type, bool):
        listing_type = int(listing_type)
    if isinstance(listing_type, int):
        result = LISTING_TYPES_BY_NUMBER.get(listing_type, ListingType.INDIVIDUAL_AUCTION)
    else:
        type_str = str(listing_type or "").strip()
        if _is_int_string(type_str):
            result = LISTING_TYPES_BY_NUMBER.get(int(type_str), ListingType.INDIVIDUAL_AUCTION)
        else:
            try:
                result = ListingType(type_str.upper())
            except ValueError:
                logger.warning(f"Unknown listing type {listing_type!r}, defaulting to INDIVIDUAL_AUCTION")
                result = ListingType.INDIVIDUAL_AUCTION

    if result == ListingType.DYNAMIC_PRICE and lazy is False:
        return ListingType.FIXED_PRICE.value
    return result.value


def normalize_token_spec(token_spec: Any) -> str:
    """0/1/unknown map to ERC721, 2 maps to ERC1155"""
    if isinstance(token_spec, int) and not isinstance(token_spec, bool):
        return TokenSpec.ERC1155.value if token_spec == 2 else TokenSpec.ERC721.value
    spec = str(token_spec or "").strip().upper()
    if spec == "2" or spec == TokenSpec.ERC1155.value:
        return TokenSpec.ERC1155.value
    return TokenSpec.ERC721.value


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def is_fully_sold(listing: Dict[str, Any]) -> bool:
    total_available = _as_int(listing.get("totalAvailable"))
    total_sold = _as_int(listing.get("totalSold"))
    return total_available > 0 and total_sold >= total_available


def filter_active_listings(listings: Iterable[Dict[str, Any]], hidden: Set[str]) -> List[Dict[str, Any]]:
    """Drop cancelled, finalized, sold out and hidden-seller listings"""
    active = []
    for listing in listings:
        if listing.get("status") == "CANCELLED":
            continue
        if listing.get("finalized"):
            continue
        if is_fully_sold(listing):
            logger.debug(f"Filtering out sold out listing {listing.get('listingId')}")
            continue
        seller = (listing.get("seller") or "").lower()
        if seller and seller in hidden:
            logger.debug(f"Filtering out listing {listing.get('listingId')}: seller {seller} is hidden")
            continue
        active.append(listing)
    return active


def enrich_listing(listing: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Add bid summary, normalized types and display metadata to a listing"""
    bids = listing.get("bids") or []
    # Bids arrive ordered by amount, highest first
    highest = bids[0] if bids else None
    metadata = metadata or {}

    enriched = dict(listing)
    enriched.update({
        "listingType": normalize_listing_type(listing.get("listingType"), listing.get("lazy")),
        "tokenSpec": normalize_token_spec(listing.get("tokenSpec")),
        "bidCount": len(bids),
        "highestBid": {
            "amount": highest.get("amount"),
            "bidder": highest.get("bidder"),
            "timestamp": highest.get("timestamp"),
        } if highest else None,
        "title": metadata.get("title") or metadata.get("name"),
        "artist": metadata.get("artist") or metadata.get("creator"),
        "image": metadata.get("image"),
        "description": metadata.get("description"),
        "metadata": metadata or None,
    })
    return enriched


def group_bids_by_listing(bids: Iterable[Dict[str, Any]]) -> List[Tuple[Dict[str, Any], List[Dict[str, Any]]]]:
    """Pair each listing with the bids on it, highest first.

    Listings keep the order of their newest bid; bids without a listing are
    dropped.
    """
    listings: Dict[str, Dict[str, Any]] = {}
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for bid in bids:
        listing = bid.get("listing")
        if not listing:
            continue
        key = listing.get("id") or listing.get("listingId")
        listings.setdefault(key, listing)
        grouped.setdefault(key, []).append({
            "id": bid.get("id"),
            "bidder": bid.get("bidder"),
            "amount": bid.get("amount"),
            "timestamp": bid.get("timestamp"),
        })
    return [
        (listings[key], sorted(grouped[key], key=lambda b: _as_int(b["amount"]), reverse=True))
        for key in listings
    ]


def compute_has_more(count: int, first: int, subgraph_returned_full_page: bool) -> bool:
    return count == first and subgraph_returned_full_page


class ListingService:
    """Reads, filters and enriches listings for the HTTP routes"""

    def __init__(
        self,
        subgraph: SubgraphClient,
        provider: DataProvider,
        discovery: Optional[UserDiscovery] = None,
        kv: Optional[KVStore] = None,
        metadata: Optional[MetadataService] = None,
    ):
        self.subgraph = subgraph
        self.provider = provider
        self.discovery = discovery
        self.kv = kv if kv is not None else KVStore("listings")
        self.metadata = metadata or MetadataService(provider)
        self.settings = get_settings()

    async def _hidden_users(self) -> Set[str]:
        try:
            return await self.provider.get_hidden_users()
        except Exception as e:
            logger.error(f"Error fetching hidden users: {e}")
            return set()

    async def _metadata_for(self, listing: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not listing.get("tokenAddress") or listing.get("tokenId") is None:
            return None
        try:
            return await self.metadata.get(listing["tokenAddress"], listing["tokenId"])
        except Exception as e:
            logger.error(f"Error fetching metadata for {listing['tokenAddress']}:{listing['tokenId']}: {e}")
            return None

    async def enrich(self, listings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if self.discovery is not None:
            for seller in {(l.get("seller") or "").lower() for l in listings}:
                if seller:
                    self.discovery.discover_background(seller)

        metadata = await asyncio.gather(*(self._metadata_for(l) for l in listings))
        return [enrich_listing(l, m) for l, m in zip(listings, metadata)]

    async def get_active(self, first: int = 16, skip: int = 0, enrich: bool = True) -> Dict[str, Any]:
        """Active feed with a short response cache and a last-known-good fallback"""
        cache_key = f"active:{first}:{skip}:{int(enrich)}"
        cached = await self.kv.get(cache_key)
        if cached is not None:
            return {"auctions": cached, "subgraph_down": False, "degraded": False}

        try:
            raw = await self.subgraph.get_active_listings(first, skip)
        except SubgraphError as e:
            if is_auth_error(e):
                logger.warning("Subgraph authentication error, ensure GRAPH_STUDIO_API_KEY is set. Using last-known cache if available.")
            else:
                logger.error(f"Subgraph error, using last-known cache if available: {e}")
            fallback = await self.kv.get(LAST_KNOWN_GOOD_KEY)
            if fallback is not None:
                logger.info(f"Serving {len(fallback)} listings from last-known-good cache")
                return {"auctions": fallback, "subgraph_down": True, "degraded": True, "error": str(e)}
            return {"auctions": [], "subgraph_down": True, "degraded": False, "error": str(e)}

        hidden = await self._hidden_users()
        active = filter_active_listings(raw, hidden)
        logger.info(f"Filtered {len(raw)} listings down to {len(active)} active listings ({len(hidden)} hidden users)")
        auctions = await self.enrich(active) if enrich else active

        await self.kv.set(cache_key, auctions, ttl=self.settings.active_listings_cache_ttl)
        await self.kv.set(LAST_KNOWN_GOOD_KEY, auctions, ttl=self.settings.last_known_good_ttl)
        return {"auctions": auctions, "subgraph_down": False, "degraded": False}

    async def browse(self, first: int = 20, skip: int = 0, order_by: str = "listingId",
                     order_direction: str = "desc", enrich: bool = True) -> Tuple[List[Dict[str, Any]], bool, bool]:
        """Return (listings, subgraph_returned_full_page, subgraph_down)"""
        page_size = min(first, MAX_BROWSE_PAGE)
        try:
            raw = await self.subgraph.browse_listings(page_size, skip, order_by, order_direction)
        except SubgraphError as e:
            logger.error(f"Browse listings subgraph error: {e}")
            return [], False, True

        hidden = await self._hidden_users()
        active = filter_active_listings(raw, hidden)
        listings = await self.enrich(active) if enrich else active
        return listings, len(raw) == page_size, False

    async def get_listing(self, listing_id: str) -> Optional[Dict[str, Any]]:
        """Single listing, retried on rate limits and cached for two minutes"""
        cache_key = f"listing:{listing_id}"
        cached = await self.kv.get(cache_key)
        if cached is not None:
            return cached

        listing = await asyncio.wait_for(
            retry_with_backoff(lambda: self.subgraph.get_listing(listing_id), max_retries=3, initial_delay=1.0),
            timeout=LISTING_FETCH_TIMEOUT * 4,
        )
        if not listing:
            return None

        enriched = (await self.enrich([listing]))[0]
        await self.kv.set(cache_key, enriched, ttl=self.settings.listing_cache_ttl)
        return enriched

    async def get_recently_concluded(self, first: int = 8, skip: int = 0, enrich: bool = True,
                                     days: int = RECENTLY_CONCLUDED_DAYS) -> List[Dict[str, Any]]:
        since = int(time.time()) - days * 24 * 60 * 60
        raw = await self.subgraph.get_recently_concluded(since, min(first, 100), skip)
        if not enrich:
            return raw
        return await self.enrich(raw)

    async def get_with_bids(self, bidder: str, first: int = 100, skip: int = 0,
                            enrich: bool = True) -> List[Dict[str, Any]]:
        """Listings a wallet has bid on, one entry each, cached for a minute"""
        bidder = bidder.lower()
        cache_key = f"with-bids:{bidder}:{first}:{skip}:{int(enrich)}"
        cached = await self.kv.get(cache_key)
        if cached is not None:
            return cached

        bids = await self.subgraph.get_bids_by_bidder(bidder, first, skip)
        grouped = group_bids_by_listing(bids)
        if not enrich:
            auctions = [listing for listing, _ in grouped]
        else:
            enriched = await self.enrich([{**listing, "bids": own_bids} for listing, own_bids in grouped])
            auctions = []
            for listing, (_, own_bids) in zip(enriched, grouped):
                listing.pop("bids", None)
                # Price shown is the wallet's own top bid
                listing["currentPrice"] = own_bids[0]["amount"] if own_bids else None
                auctions.append(listing)

        await self.kv.set(cache_key, auctions, ttl=WITH_BIDS_CACHE_TTL)
        return auctions

    async def get_by_seller(self, seller: str, first: int = 50, skip: int = 0,
                            enrich: bool = True) -> List[Dict[str, Any]]:
        raw = await self.subgraph.get_listings_by_seller(seller, first, skip)
        raw = [l for l in raw if l.get("status") != "CANCELLED"]
        if not enrich:
            return raw
        return await self.enrich(raw)
