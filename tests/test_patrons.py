#!/usr/bin/env python3
"""
Unit tests for the top patrons leaderboard
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from api.services.patrons import creator_patrons, patron_tier, period_start, top_patrons

ONE_ETH = 10 ** 18


def patronship(collector, creator, spent, items=1, tier="supporter", last_purchase=None):
    return {
        "collector_fid": collector,
        "creator_fid": creator,
        "total_spent": str(spent),
        "items_owned": items,
        "market_purchases": items,
        "gallery_purchases": 0,
        "last_purchase": last_purchase or datetime.now(timezone.utc),
        "patron_tier": tier,
    }


@pytest.fixture
def leaderboard(provider):
    old = datetime.now(timezone.utc) - timedelta(days=60)
    provider.patronships.extend([
        patronship(1, 10, 3 * ONE_ETH, items=2, tier="patron"),
        patronship(1, 11, 3 * ONE_ETH, items=1, tier="patron"),
        patronship(2, 10, ONE_ETH // 2, tier="collector"),
        patronship(3, 12, 2 * ONE_ETH, tier="patron", last_purchase=old),
    ])
    provider.profiles.update({
        1: {"username": "whale", "display_name": "Big Spender", "avatar": "https://pfp/1"},
        2: {"username": "collector", "display_name": "Collector", "avatar": None},
    })
    provider.reputations[1] = {"collector_score": 97.5, "overall_rank": 1, "badges": ["early"]}
    return provider


class TestTiers:

    @pytest.mark.parametrize("spent, expected", [
        (0, "supporter"),
        (None, "supporter"),
        (ONE_ETH // 10 - 1, "supporter"),
        (ONE_ETH // 10, "collector"),
        (ONE_ETH, "patron"),
        (str(5 * ONE_ETH), "whale"),
    ])
    def test_patron_tier(self, spent, expected):
        assert patron_tier(spent) == expected

    def test_period_start(self):
        now = datetime(2024, 6, 30, tzinfo=timezone.utc)
        assert period_start("all", now) is None
        assert period_start("7d", now) == datetime(2024, 6, 23, tzinfo=timezone.utc)
        assert period_start("30d", now) == datetime(2024, 5, 31, tzinfo=timezone.utc)


class TestTopPatrons:

    def test_ranked_by_total_spend(self, leaderboard):
        result = asyncio.run(top_patrons(leaderboard))

        patrons = result["patrons"]
        assert [p["fid"] for p in patrons] == [1, 3, 2]
        top = patrons[0]
        assert top["rank"] == 1
        assert top["username"] == "whale"
        assert top["displayName"] == "Big Spender"
        assert top["patronTier"] == "whale"
        assert top["stats"]["totalSpent"] == str(6 * ONE_ETH)
        assert top["stats"]["creatorsSupported"] == 2
        assert top["stats"]["itemsCollected"] == 3
        assert top["reputation"] == {"collectorScore": 97.5, "overallRank": 1, "badges": ["early"]}
        # No profile or reputation rows
        assert patrons[1]["username"] is None
        assert patrons[1]["reputation"]["collectorScore"] == 0
        assert result["pagination"] == {"total": 3, "limit": 100, "offset": 0, "hasMore": False}
        assert result["filters"] == {"period": "all", "minTier": "all"}

    def test_period_filter(self, leaderboard):
        result = asyncio.run(top_patrons(leaderboard, period="30d"))
        assert [p["fid"] for p in result["patrons"]] == [1, 2]
        assert result["filters"]["period"] == "30d"

    def test_unknown_period_means_all_time(self, leaderboard):
        result = asyncio.run(top_patrons(leaderboard, period="decade"))
        assert result["filters"]["period"] == "all"
        assert len(result["patrons"]) == 3

    def test_min_tier_filter(self, leaderboard):
        result = asyncio.run(top_patrons(leaderboard, min_tier="patron"))
        assert [p["fid"] for p in result["patrons"]] == [1, 3]
        assert result["filters"]["minTier"] == "patron"

    def test_pagination_ranks_continue(self, leaderboard):
        result = asyncio.run(top_patrons(leaderboard, limit=1, offset=1))
        assert [(p["rank"], p["fid"]) for p in result["patrons"]] == [(2, 3)]
        assert result["pagination"] == {"total": 3, "limit": 1, "offset": 1, "hasMore": True}

    def test_empty_leaderboard(self, provider):
        result = asyncio.run(top_patrons(provider, limit=5000))
        assert result["patrons"] == []
        assert result["pagination"] == {"total": 0, "limit": 500, "offset": 0, "hasMore": False}


class TestCreatorPatrons:

    @pytest.fixture
    def creator(self, leaderboard):
        now = datetime(2024, 6, 30, tzinfo=timezone.utc)
        for row in leaderboard.patronships:
            row["first_purchase"] = now - timedelta(days=10 * row["collector_fid"])
        leaderboard.patronships[0]["is_top_patron"] = True
        leaderboard.profiles[10] = {"username": "painter", "display_name": "The Painter", "avatar": "https://pfp/10"}
        return leaderboard

    def test_patrons_of_one_creator(self, creator):
        now = datetime(2024, 6, 30, tzinfo=timezone.utc)
        result = asyncio.run(creator_patrons(creator, 10, now=now))

        assert result["creator"] == {
            "fid": 10,
            "username": "painter",
            "displayName": "The Painter",
            "avatar": "https://pfp/10",
        }
        patrons = result["patrons"]
        assert [(p["rank"], p["fid"]) for p in patrons] == [(1, 1), (2, 2)]
        top = patrons[0]
        assert top["relationship"]["totalSpent"] == str(3 * ONE_ETH)
        assert top["relationship"]["itemsOwned"] == 2
        assert top["relationship"]["daysSinceFirstPurchase"] == 10
        assert top["patronTier"] == "patron"
        assert top["isTopPatron"] is True
        assert top["reputation"]["badges"] == ["early"]
        assert patrons[1]["isTopPatron"] is False
        assert patrons[1]["relationship"]["daysSinceFirstPurchase"] == 20
        assert result["summary"] == {
            "totalPatrons": 2,
            "totalRevenue": str(3 * ONE_ETH + ONE_ETH // 2),
            "marketPurchases": 3,
            "galleryPurchases": 0,
            "topPatronTier": "patron",
        }

    def test_limit_is_capped(self, creator):
        result = asyncio.run(creator_patrons(creator, 10, limit=1))
        assert [p["fid"] for p in result["patrons"]] == [1]
        assert result["summary"]["totalPatrons"] == 1

    def test_missing_tier_is_derived_from_spend(self, provider):
        row = patronship(7, 20, 6 * ONE_ETH)
        row["patron_tier"] = None
        provider.patronships.append(row)
        result = asyncio.run(creator_patrons(provider, 20))
        assert result["patrons"][0]["patronTier"] == "whale"
        assert result["patrons"][0]["relationship"]["daysSinceFirstPurchase"] is None

    def test_creator_without_patrons(self, provider):
        result = asyncio.run(creator_patrons(provider, 99))
        assert result == {
            "creator": {"fid": 99},
            "patrons": [],
            "summary": {
                "totalPatrons": 0,
                "totalRevenue": "0",
                "marketPurchases": 0,
                "galleryPurchases": 0,
                "topPatronTier": "none",
            },
        }
