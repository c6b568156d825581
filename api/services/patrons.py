#!/usr/bin/env python3
"""
Patron leaderboards, across all creators and per creator.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from api.database import DataProvider, TIER_VALUES
from api.models.social import CreatorPatronEntry, PatronEntry, PatronRelationship, PatronStats, Reputation

logger = logging.getLogger(__name__)

WEI_PER_ETH = 10 ** 18
MAX_PATRONS_LIMIT = 500
MAX_CREATOR_PATRONS_LIMIT = 200
PERIODS = {"all": None, "30d": 30, "7d": 7}

# Highest first
TIER_ORDER = ["whale", "patron", "collector", "supporter"]
TIER_THRESHOLDS = [
    ("whale", 5 * WEI_PER_ETH),
    ("patron", WEI_PER_ETH),
    ("collector", WEI_PER_ETH // 10),
]


def patron_tier(total_spent_wei: Any) -> str:
    total = int(total_spent_wei or 0)
    for tier, threshold in TIER_THRESHOLDS:
        if total >= threshold:
            return tier
    return "supporter"


def period_start(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    days = PERIODS.get(period)
    if days is None:
        return None
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=days)


async def top_patrons(provider: DataProvider, limit: int = 100, offset: int = 0,
                      period: str = "all", min_tier: Optional[str] = None) -> Dict[str, Any]:
    """Collectors ranked by total spend with profile and reputation attached"""
    limit = max(1, min(limit, MAX_PATRONS_LIMIT))
    offset = max(0, offset)
    if period not in PERIODS:
        logger.warning(f"Unknown patron period {period!r}, using all time")
        period = "all"
    min_tier_value = TIER_VALUES.get(min_tier) if min_tier else None

    rows, total = await provider.get_top_patrons(limit, offset, period_start(period), min_tier_value)
    filters = {"period": period, "minTier": min_tier or "all"}

    if not rows:
        return {
            "patrons": [],
            "pagination": {"total": 0, "limit": limit, "offset": offset, "hasMore": False},
            "filters": filters,
        }

    fids = [row["collector_fid"] for row in rows]
    profiles = await provider.get_profiles(fids)
    reputations = await provider.get_reputations(fids)

    patrons = []
    for index, row in enumerate(rows):
        fid = row["collector_fid"]
        profile = profiles.get(fid) or {}
        score = reputations.get(fid) or {}
        entry = PatronEntry(
            rank=offset + index + 1,
            fid=fid,
            username=profile.get("username"),
            display_name=profile.get("display_name"),
            avatar=profile.get("avatar"),
            stats=PatronStats(
                total_spent=str(row["total_spent"] or "0"),
                creators_supported=int(row.get("creators_supported") or 0),
                items_collected=int(row.get("items_collected") or 0),
                market_purchases=int(row.get("market_purchases") or 0),
                gallery_purchases=int(row.get("gallery_purchases") or 0),
                last_activity=row.get("last_activity"),
            ),
            patron_tier=patron_tier(row["total_spent"]),
            reputation=Reputation(
                collector_score=score.get("collector_score") or 0,
                overall_rank=score.get("overall_rank"),
                badges=score.get("badges") or [],
            ),
        )
        patrons.append(entry.model_dump(by_alias=True, mode="json"))

    return {
        "patrons": patrons,
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + limit < total,
        },
        "filters": filters,
    }


def _creator_summary(creator_fid: int, profile: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not profile:
        return {"fid": creator_fid}
    return {
        "fid": creator_fid,
        "username": profile.get("username"),
        "displayName": profile.get("display_name"),
        "avatar": profile.get("avatar"),
    }


def days_since(moment: Optional[datetime], now: datetime) -> Optional[int]:
    if moment is None:
        return None
    return (now - moment).days


async def creator_patrons(provider: DataProvider, creator_fid: int, limit: int = 50,
                          now: Optional[datetime] = None) -> Dict[str, Any]:
    """Collectors of a single creator ranked by what they spent on that creator"""
    limit = max(1, min(limit, MAX_CREATOR_PATRONS_LIMIT))
    now = now or datetime.now(timezone.utc)

    creator_profile = (await provider.get_profiles([creator_fid])).get(creator_fid)
    rows = await provider.get_creator_patrons(creator_fid, limit)
    creator = _creator_summary(creator_fid, creator_profile)

    if not rows:
        return {
            "creator": creator,
            "patrons": [],
            "summary": {
                "totalPatrons": 0,
                "totalRevenue": "0",
                "marketPurchases": 0,
                "galleryPurchases": 0,
                "topPatronTier": "none",
            },
        }

    fids = [row["collector_fid"] for row in rows]
    profiles = await provider.get_profiles(fids)
    reputations = await provider.get_reputations(fids)

    patrons = []
    for index, row in enumerate(rows):
        fid = row["collector_fid"]
        profile = profiles.get(fid) or {}
        score = reputations.get(fid) or {}
        entry = CreatorPatronEntry(
            rank=index + 1,
            fid=fid,
            username=profile.get("username"),
            display_name=profile.get("display_name"),
            avatar=profile.get("avatar"),
            relationship=PatronRelationship(
                total_spent=str(row.get("total_spent") or "0"),
                items_owned=int(row.get("items_owned") or 0),
                market_purchases=int(row.get("market_purchases") or 0),
                gallery_purchases=int(row.get("gallery_purchases") or 0),
                first_purchase=row.get("first_purchase"),
                last_purchase=row.get("last_purchase"),
                days_since_first_purchase=days_since(row.get("first_purchase"), now),
            ),
            patron_tier=row.get("patron_tier") or patron_tier(row.get("total_spent")),
            is_top_patron=bool(row.get("is_top_patron")),
            reputation=Reputation(
                collector_score=score.get("collector_score") or 0,
                overall_rank=score.get("overall_rank"),
                badges=score.get("badges") or [],
            ),
        )
        patrons.append(entry.model_dump(by_alias=True, mode="json"))

    return {
        "creator": creator,
        "patrons": patrons,
        "summary": {
            "totalPatrons": len(rows),
            "totalRevenue": str(sum(int(row.get("total_spent") or 0) for row in rows)),
            "marketPurchases": sum(int(row.get("market_purchases") or 0) for row in rows),
            "galleryPurchases": sum(int(row.get("gallery_purchases") or 0) for row in rows),
            "topPatronTier": patrons[0]["patronTier"],
        },
    }
