#!/usr/bin/env python3
"""
Unit tests for listing buyers and recently active wallets
"""

import asyncio
from datetime import timedelta

import pytest

from api.database import _utcnow
from api.models.user import CachedContract, CachedUser
from api.services.activity import ActivityService, group_purchases_by_buyer, unique_addresses

ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40
CAROL = "0x" + "3" * 40
TOKEN_A = "0x" + "a1" * 20
TOKEN_B = "0x" + "b2" * 20


class RecordingDiscovery:
    def __init__(self):
        self.scheduled = []

    def discover_background(self, address):
        self.scheduled.append(address)


@pytest.fixture
def discovery():
    return RecordingDiscovery()


@pytest.fixture
def service(subgraph, provider, discovery):
    return ActivityService(subgraph, provider, discovery=discovery)


def cache_user(provider, address, **fields):
    provider.user_cache[address] = CachedUser(
        eth_address=address,
        expires_at=_utcnow() + timedelta(days=1),
        **fields,
    )


def purchase(buyer, count, timestamp):
    return {"id": f"{buyer}-{timestamp}", "buyer": buyer, "count": count,
            "amount": "1000", "timestamp": str(timestamp), "transactionHash": "0xtx"}


class TestGrouping:

    def test_purchases_summed_per_buyer(self):
        buyers = group_purchases_by_buyer([
            purchase(ALICE, 2, 1700000300),
            purchase(BOB.upper().replace("0X", "0x"), 1, 1700000500),
            purchase(ALICE, 3, 1700000100),
            purchase(BOB, "4", 1700000200),
        ])

        assert buyers == [
            {"address": BOB, "totalCount": 5, "firstPurchase": "1700000200", "lastPurchase": "1700000500"},
            {"address": ALICE, "totalCount": 5, "firstPurchase": "1700000100", "lastPurchase": "1700000300"},
        ]

    def test_purchases_without_buyer_are_ignored(self):
        assert group_purchases_by_buyer([{"buyer": None, "count": 1, "timestamp": "1"}]) == []

    def test_unique_addresses(self):
        values = [ALICE, ALICE.upper().replace("0X", "0x"), None, BOB, CAROL]
        assert unique_addresses(values, 2) == [ALICE, BOB]
        assert unique_addresses(values, 10) == [ALICE, BOB, CAROL]


class TestListingBuyers:

    def test_buyers_with_identities(self, service, subgraph, provider, discovery):
        subgraph.purchases["7"] = [purchase(ALICE, 1, 1700000300), purchase(BOB, 2, 1700000100)]
        cache_user(provider, ALICE, fid=42, username="alice", display_name="Alice", pfp_url="https://pfp/alice")

        buyers = asyncio.run(service.listing_buyers("7"))

        assert buyers[0] == {
            "address": ALICE,
            "totalCount": 1,
            "firstPurchase": "1700000300",
            "lastPurchase": "1700000300",
            "username": "alice",
            "displayName": "Alice",
            "pfpUrl": "https://pfp/alice",
            "fid": 42,
        }
        assert buyers[1]["address"] == BOB
        assert buyers[1]["username"] is None
        assert buyers[1]["fid"] is None
        assert discovery.scheduled == [BOB]

    def test_no_purchases(self, service, discovery):
        assert asyncio.run(service.listing_buyers("8")) == []
        assert discovery.scheduled == []

    def test_expired_cache_rows_count_as_missing(self, service, subgraph, provider, discovery):
        subgraph.purchases["7"] = [purchase(ALICE, 1, 1700000300)]
        provider.user_cache[ALICE] = CachedUser(eth_address=ALICE, username="stale",
                                                expires_at=_utcnow() - timedelta(days=1))

        buyers = asyncio.run(service.listing_buyers("7"))

        assert buyers[0]["username"] is None
        assert discovery.scheduled == [ALICE]


class TestRecentWallets:

    def test_recent_collectors_are_unique(self, service, subgraph, provider):
        subgraph.recent_purchases = [
            {"buyer": ALICE, "timestamp": "5"},
            {"buyer": ALICE, "timestamp": "4"},
            {"buyer": BOB, "timestamp": "3"},
            {"buyer": CAROL, "timestamp": "2"},
        ]
        cache_user(provider, BOB, username="bob", display_name="Bob", pfp_url=None)

        collectors = asyncio.run(service.recent_collectors(first=2))

        assert collectors == [
            {"address": ALICE, "username": None, "displayName": None, "pfpUrl": None},
            {"address": BOB, "username": "bob", "displayName": "Bob", "pfpUrl": None},
        ]

    def test_recent_collectors_oversample(self, service, subgraph):
        asyncio.run(service.recent_collectors(first=3))
        assert subgraph.calls == ["get_recent_purchases"]

    def test_recent_bidders(self, service, subgraph):
        subgraph.recent_bids = [{"bidder": CAROL, "timestamp": "2"}, {"bidder": CAROL, "timestamp": "1"}]
        bidders = asyncio.run(service.recent_bidders(first=6))
        assert [b["address"] for b in bidders] == [CAROL]

    def test_recent_artists_from_contract_creators(self, service, subgraph, provider, discovery):
        subgraph.recent_tokens = [TOKEN_B, TOKEN_A, TOKEN_B, "0x" + "f" * 40]
        expires = _utcnow() + timedelta(days=1)
        provider.contract_cache[TOKEN_A] = CachedContract(contract_address=TOKEN_A, creator_address=ALICE,
                                                          expires_at=expires)
        provider.contract_cache[TOKEN_B] = CachedContract(contract_address=TOKEN_B, creator_address=BOB,
                                                          expires_at=expires)
        cache_user(provider, ALICE, username="alice")

        artists = asyncio.run(service.recent_artists(first=6))

        assert [a["address"] for a in artists] == [BOB, ALICE]
        assert artists[1]["username"] == "alice"
        assert discovery.scheduled == [BOB]

    def test_recent_artists_without_cached_contracts(self, service, subgraph):
        subgraph.recent_tokens = [TOKEN_A]
        assert asyncio.run(service.recent_artists()) == []
