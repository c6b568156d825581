#!/usr/bin/env python3
"""
Marketplace activity read from the subgraph: who bought a listing, and the
wallets that recently collected, bid or listed work.

Wallets are shown with whatever identity the user cache already holds;
uncached wallets are discovered in the background for the next request.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from api.database import DataProvider
from api.services.subgraph import SubgraphClient
from api.services.user_discovery import UserDiscovery

logger = logging.getLogger(__name__)

RECENT_LISTINGS_SCAN = 50


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def group_purchases_by_buyer(purchases: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Sum purchased quantities per buyer, most recent buyer first"""
    buyers: Dict[str, Dict[str, Any]] = {}
    for purchase in purchases:
        buyer = (purchase.get("buyer") or "").lower()
        if not buyer:
            continue
        timestamp = purchase.get("timestamp")
        entry = buyers.get(buyer)
        if entry is None:
            buyers[buyer] = {
                "address": buyer,
                "totalCount": _as_int(purchase.get("count")),
                "firstPurchase": timestamp,
                "lastPurchase": timestamp,
            }
            continue
        entry["totalCount"] += _as_int(purchase.get("count"))
        if _as_int(timestamp) < _as_int(entry["firstPurchase"]):
            entry["firstPurchase"] = timestamp
        if _as_int(timestamp) > _as_int(entry["lastPurchase"]):
            entry["lastPurchase"] = timestamp

    return sorted(buyers.values(), key=lambda b: _as_int(b["lastPurchase"]), reverse=True)


def unique_addresses(values: Iterable[Optional[str]], limit: int) -> List[str]:
    """Lowercased addresses in first-seen order, at most `limit` of them"""
    seen: List[str] = []
    for value in values:
        address = (value or "").lower()
        if address and address not in seen:
            seen.append(address)
            if len(seen) >= limit:
                break
    return seen


class ActivityService:
    """Joins subgraph activity with cached user identities"""

    def __init__(self, subgraph: SubgraphClient, provider: DataProvider,
                 discovery: Optional[UserDiscovery] = None):
        self.subgraph = subgraph
        self.provider = provider
        self.discovery = discovery

    async def _cached_users(self, addresses: List[str]) -> Dict[str, Any]:
        if not addresses:
            return {}
        users = await self.provider.get_cached_users(addresses)
        missing = [a for a in addresses if a not in users]
        if missing and self.discovery is not None:
            logger.debug(f"Discovering {len(missing)} uncached wallets in background")
            for address in missing:
                self.discovery.discover_background(address)
        return users

    async def _with_identities(self, addresses: List[str]) -> List[Dict[str, Any]]:
        users = await self._cached_users(addresses)
        people = []
        for address in addresses:
            user = users.get(address)
            people.append({
                "address": address,
                "username": user.username if user else None,
                "displayName": user.display_name if user else None,
                "pfpUrl": user.pfp_url if user else None,
            })
        return people

    async def listing_buyers(self, listing_id: str) -> List[Dict[str, Any]]:
        purchases = await self.subgraph.get_listing_purchases(listing_id)
        if not purchases:
            return []

        buyers = group_purchases_by_buyer(purchases)
        users = await self._cached_users([b["address"] for b in buyers])
        for buyer in buyers:
            user = users.get(buyer["address"])
            buyer.update({
                "username": user.username if user else None,
                "displayName": user.display_name if user else None,
                "pfpUrl": user.pfp_url if user else None,
                "fid": user.fid if user else None,
            })
        return buyers

    async def recent_collectors(self, first: int = 6) -> List[Dict[str, Any]]:
        # Oversample so repeat buyers don't leave the list short
        purchases = await self.subgraph.get_recent_purchases(first * 2)
        addresses = unique_addresses((p.get("buyer") for p in purchases), first)
        return await self._with_identities(addresses)

    async def recent_bidders(self, first: int = 6) -> List[Dict[str, Any]]:
        bids = await self.subgraph.get_recent_bids(first * 2)
        addresses = unique_addresses((b.get("bidder") for b in bids), first)
        return await self._with_identities(addresses)

    async def recent_artists(self, first: int = 6) -> List[Dict[str, Any]]:
        """Creators of the contracts behind the newest active listings"""
        tokens = unique_addresses(
            await self.subgraph.get_recent_listing_tokens(RECENT_LISTINGS_SCAN),
            RECENT_LISTINGS_SCAN,
        )
        contracts = await self.provider.get_cached_contracts(tokens) if tokens else {}
        creators = unique_addresses(
            (contracts[t].creator_address for t in tokens if t in contracts),
            first,
        )
        return await self._with_identities(creators)
