#!/usr/bin/env python3
"""
Pytest configuration for the marketplace API and indexer tests.

Everything runs against the in-memory MockDataProvider and a fake subgraph;
no database, Redis or network access is needed.
"""

import os

# Must be set before api.config is imported
os.environ["APP_MODE"] = "mock"
os.environ.pop("REDIS_URL", None)
os.environ.pop("REDIS_HOST", None)

import pytest
from fastapi.testclient import TestClient

from api import dependencies
from api.app import app
from api.database import MockDataProvider
from api.services.subgraph import SubgraphError

SELLER = "0x" + "a" * 40
BIDDER = "0x" + "b" * 40
CURATOR = "0x" + "c" * 40
NFT = "0x" + "d" * 40


def make_listing(listing_id, **overrides):
    """Subgraph-shaped listing with sensible defaults"""
    listing = {
        "id": str(listing_id),
        "listingId": str(listing_id),
        "marketplace": "0x" + "e" * 40,
        "seller": SELLER,
        "tokenAddress": NFT,
        "tokenId": str(listing_id),
        "tokenSpec": "ERC721",
        "listingType": "INDIVIDUAL_AUCTION",
        "initialAmount": "1000000000000000",
        "totalAvailable": "1",
        "totalPerSale": "1",
        "startTime": "1700000000",
        "endTime": "1700086400",
        "lazy": False,
        "status": "ACTIVE",
        "totalSold": "0",
        "hasBid": False,
        "finalized": False,
        "createdAt": "1700000000",
        "updatedAt": "1700000000",
        "bids": [],
    }
    listing.update(overrides)
    return listing


class FakeSubgraph:
    """Stands in for SubgraphClient; set `error` to make every call fail"""

    def __init__(self):
        self.listings = {}
        self.active = []
        self.browse = []
        self.concluded = []
        self.completed = []
        self.bids = []
        self.purchases = {}
        self.recent_purchases = []
        self.recent_bids = []
        self.recent_tokens = []
        self.error = None
        self.calls = []

    def _check(self, name):
        self.calls.append(name)
        if self.error is not None:
            raise self.error

    async def get_listing(self, listing_id):
        self._check("get_listing")
        return self.listings.get(str(listing_id))

    async def get_active_listings(self, first=100, skip=0):
        self._check("get_active_listings")
        return self.active[skip:skip + first]

    async def browse_listings(self, first=20, skip=0, order_by="listingId", order_direction="desc"):
        self._check("browse_listings")
        return self.browse[skip:skip + first]

    async def get_recently_concluded(self, since, first=8, skip=0):
        self._check("get_recently_concluded")
        return self.concluded[skip:skip + first]

    async def get_listings_by_seller(self, seller, first=50, skip=0):
        self._check("get_listings_by_seller")
        return [l for l in self.browse if l["seller"] == seller.lower()][skip:skip + first]

    async def get_completed_auctions(self, limit=50, skip=0):
        self._check("get_completed_auctions")
        return self.completed[skip:skip + limit]

    async def get_bids_by_bidder(self, bidder, first=100, skip=0):
        self._check("get_bids_by_bidder")
        return [b for b in self.bids if b["bidder"] == bidder.lower()][skip:skip + first]

    async def get_listing_purchases(self, listing_id):
        self._check("get_listing_purchases")
        return self.purchases.get(str(listing_id), [])

    async def get_recent_purchases(self, first=12):
        self._check("get_recent_purchases")
        return self.recent_purchases[:first]

    async def get_recent_bids(self, first=12):
        self._check("get_recent_bids")
        return self.recent_bids[:first]

    async def get_recent_listing_tokens(self, first=50):
        self._check("get_recent_listing_tokens")
        return self.recent_tokens[:first]


@pytest.fixture
def listing_factory():
    return make_listing


@pytest.fixture
def provider():
    return MockDataProvider()


@pytest.fixture
def subgraph():
    return FakeSubgraph()


@pytest.fixture
def subgraph_down():
    return SubgraphError("Subgraph HTTP 503: unavailable", status=503)


@pytest.fixture
def client(provider, subgraph):
    """TestClient wired to a fresh mock provider and fake subgraph"""
    dependencies.reset_shared()
    app.dependency_overrides[dependencies.get_data_service] = lambda: provider
    app.dependency_overrides[dependencies.get_subgraph] = lambda: subgraph
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
    dependencies.reset_shared()
