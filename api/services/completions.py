#!/usr/bin/env python3
"""
Auction completion sync.

Finalized auctions are read from the subgraph and copied into
auction_completions_cache together with participant fids and the social
flags (first win, record price) the recent-auctions feed displays.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from api.database import DataProvider, cache_expiry
from api.models.social import AuctionCompletion, SyncResult
from api.services.subgraph import SubgraphClient

logger = logging.getLogger(__name__)

MAX_SYNC_LIMIT = 500
MAX_RECENT_LIMIT = 100


def _from_unix(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def select_outcome(listing: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Pick winner, final amount, referrer and completion time for a listing.

    A purchase takes precedence over the top bid. Returns None when the
    listing has neither.
    """
    bids = listing.get("bids") or []
    purchases = listing.get("purchases") or []
    winning_bid = bids[0] if bids else None
    purchase = purchases[0] if purchases else None
    if not winning_bid and not purchase:
        return None

    def pick(field_purchase, field_bid):
        if purchase and purchase.get(field_purchase):
            return purchase[field_purchase]
        if winning_bid:
            return winning_bid.get(field_bid)
        return None

    return {
        "winner": pick("buyer", "bidder"),
        "final_bid": pick("amount", "amount"),
        "referrer": pick("referrer", "referrer"),
        "completed_at": pick("timestamp", "timestamp") or listing.get("updatedAt"),
        "bid_count": len(bids),
    }


def curator_earnings(final_bid: Any, referrer: Optional[str], referrer_bps: Any) -> Optional[str]:
    """Referrer fee in wei, as a decimal string"""
    if not referrer or not referrer_bps:
        return None
    return str(int(final_bid) * int(referrer_bps) // 10000)


def metadata_snapshot(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not row:
        return None
    return {
        "name": row.get("name"),
        "description": row.get("description"),
        "image": row.get("image_uri"),
        "animation_url": row.get("animation_uri"),
        "attributes": row.get("attributes"),
    }


class CompletionSync:
    """Copies finalized auctions from the subgraph into the completions cache"""

    def __init__(self, subgraph: SubgraphClient, provider: DataProvider):
        self.subgraph = subgraph
        self.provider = provider

    async def _fid(self, address: Optional[str]) -> Optional[int]:
        if not address:
            return None
        return await self.provider.find_fid_by_address(address.lower())

    async def _is_first_win(self, winner_fid: Optional[int], listing_id: str) -> bool:
        if winner_fid is None:
            return False
        return await self.provider.count_other_wins(winner_fid, listing_id) == 0

    async def _is_record_price(self, seller_fid: Optional[int], final_bid: Any) -> bool:
        if seller_fid is None:
            return False
        max_bid = await self.provider.get_max_final_bid_for_seller(seller_fid)
        if max_bid is None:
            # First sale is always a record
            return True
        return int(final_bid) > int(max_bid)

    async def build_record(self, listing: Dict[str, Any]) -> Optional[AuctionCompletion]:
        listing_id = str(listing["listingId"])
        outcome = select_outcome(listing)
        if outcome is None:
            logger.warning(f"Listing {listing_id} has no bids or purchases, skipping")
            return None
        if not outcome["winner"] or outcome["final_bid"] is None:
            logger.warning(f"Listing {listing_id} has no winner or final amount, skipping")
            return None

        token_contract = listing["tokenAddress"].lower()
        seller = listing["seller"].lower()
        winner = outcome["winner"].lower()
        referrer = outcome["referrer"].lower() if outcome["referrer"] else None

        metadata_row = await self.provider.get_nft_metadata(token_contract, str(listing["tokenId"]))
        winner_fid = await self._fid(winner)
        seller_fid = await self._fid(seller)
        curator_fid = await self._fid(referrer)

        return AuctionCompletion(
            listing_id=listing_id,
            token_contract=token_contract,
            token_id=str(listing["tokenId"]),
            nft_metadata=metadata_snapshot(metadata_row),
            final_bid=str(outcome["final_bid"]),
            bid_count=outcome["bid_count"],
            start_time=_from_unix(listing.get("startTime")),
            end_time=_from_unix(listing.get("endTime")),
            completed_at=_from_unix(outcome["completed_at"]),
            seller=seller,
            seller_fid=seller_fid,
            winner=winner,
            winner_fid=winner_fid,
            referrer=referrer,
            curator_fid=curator_fid,
            curator_earnings=curator_earnings(outcome["final_bid"], referrer, listing.get("referrerBPS")),
            featured=False,
            is_first_win=await self._is_first_win(winner_fid, listing_id),
            is_record_price=await self._is_record_price(seller_fid, outcome["final_bid"]),
            expires_at=cache_expiry(),
        )

    async def sync(self, limit: int = 50, force_refresh: bool = False) -> SyncResult:
        limit = max(1, min(limit, MAX_SYNC_LIMIT))
        listings = await self.subgraph.get_completed_auctions(limit)
        now = datetime.now(timezone.utc)

        if not listings:
            return SyncResult(message="No new completed auctions to sync", timestamp=now)

        synced = 0
        skipped = 0
        for listing in listings:
            listing_id = str(listing["listingId"])
            if not force_refresh and await self.provider.get_completion(listing_id) is not None:
                skipped += 1
                continue

            record = await self.build_record(listing)
            if record is None:
                skipped += 1
                continue

            await self.provider.upsert_completion(record)
            synced += 1

        removed = await self.provider.delete_expired_rows("auction_completions_cache")
        logger.info(f"Synced {synced} auction completions, skipped {skipped}, removed {removed} expired")

        return SyncResult(
            message="Auction completions synced successfully",
            synced=synced,
            skipped=skipped,
            total=len(listings),
            timestamp=now,
        )


def _participant(profile: Optional[Dict[str, Any]], fid: Optional[int], address: str) -> Dict[str, Any]:
    if profile is None or fid is None:
        return {"address": address}
    return {
        "fid": fid,
        "username": profile.get("username"),
        "displayName": profile.get("display_name"),
        "avatar": profile.get("avatar"),
        "address": address,
    }


def format_completion(completion: AuctionCompletion, profiles: Dict[int, Dict[str, Any]]) -> Dict[str, Any]:
    """Shape a cached completion for the recent-auctions feed"""
    duration = None
    if completion.start_time and completion.end_time:
        duration = int((completion.end_time - completion.start_time).total_seconds() * 1000)

    curator = None
    curator_profile = profiles.get(completion.curator_fid) if completion.curator_fid else None
    if curator_profile is not None:
        curator = {
            "fid": completion.curator_fid,
            "username": curator_profile.get("username"),
            "displayName": curator_profile.get("display_name"),
            "avatar": curator_profile.get("avatar"),
            "earnings": completion.curator_earnings,
        }

    return {
        "listingId": completion.listing_id,
        "nft": {
            "contract": completion.token_contract,
            "tokenId": completion.token_id,
            "metadata": completion.nft_metadata,
        },
        "auction": {
            "finalBid": completion.final_bid,
            "bidCount": completion.bid_count,
            "startTime": completion.start_time,
            "endTime": completion.end_time,
            "completedAt": completion.completed_at,
            "duration": duration,
        },
        "winner": _participant(profiles.get(completion.winner_fid), completion.winner_fid, completion.winner),
        "seller": _participant(profiles.get(completion.seller_fid), completion.seller_fid, completion.seller),
        "curator": curator,
        "flags": {
            "featured": completion.featured,
            "isFirstWin": completion.is_first_win,
            "isRecordPrice": completion.is_record_price,
        },
    }


async def recent_auctions(provider: DataProvider, limit: int = 50, offset: int = 0,
                          featured_only: bool = False) -> Dict[str, Any]:
    limit = max(1, min(limit, MAX_RECENT_LIMIT))
    offset = max(0, offset)
    completions = await provider.get_recent_completions(limit, offset, featured_only)

    fids: List[int] = sorted({
        fid for c in completions
        for fid in (c.winner_fid, c.seller_fid, c.curator_fid) if fid
    })
    profiles = await provider.get_profiles(fids) if fids else {}
    total = await provider.count_completions(featured_only)

    return {
        "auctions": [format_completion(c, profiles) for c in completions],
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + limit < total,
        },
    }
