#!/usr/bin/env python3
"""
Pydantic models for social features: auction completions and patron rankings.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import Field

from api.models.listing import CamelModel


class AuctionCompletion(CamelModel):
    """Row of the auction_completions_cache table"""
    listing_id: str
    token_contract: str
    token_id: str
    nft_metadata: Optional[Dict[str, Any]] = None
    final_bid: str = Field(..., description="Winning amount in wei")
    bid_count: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    completed_at: datetime
    seller: str
    seller_fid: Optional[int] = None
    winner: str
    winner_fid: Optional[int] = None
    referrer: Optional[str] = None
    curator_fid: Optional[int] = None
    curator_earnings: Optional[str] = None
    featured: bool = False
    is_first_win: bool = False
    is_record_price: bool = False
    expires_at: Optional[datetime] = None


class Reputation(CamelModel):
    collector_score: float = 0
    overall_rank: Optional[int] = None
    badges: List[Any] = Field(default_factory=list)


class PatronStats(CamelModel):
    total_spent: str
    creators_supported: int = 0
    items_collected: int = 0
    market_purchases: int = 0
    gallery_purchases: int = 0
    last_activity: Optional[datetime] = None


class PatronEntry(CamelModel):
    rank: int
    fid: int
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar: Optional[str] = None
    stats: PatronStats
    patron_tier: str
    reputation: Reputation


class PatronRelationship(CamelModel):
    """One collector's history with a single creator"""
    total_spent: str
    items_owned: int = 0
    market_purchases: int = 0
    gallery_purchases: int = 0
    first_purchase: Optional[datetime] = None
    last_purchase: Optional[datetime] = None
    days_since_first_purchase: Optional[int] = None


class CreatorPatronEntry(CamelModel):
    rank: int
    fid: int
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar: Optional[str] = None
    relationship: PatronRelationship
    patron_tier: str
    is_top_patron: bool = False
    reputation: Reputation


class SyncResult(CamelModel):
    success: bool = True
    message: str
    synced: int = 0
    skipped: int = 0
    total: int = 0
    timestamp: datetime
