#!/usr/bin/env python3
"""
Unit tests for combined LSSVM pool and auction-house lookups
"""

import asyncio

import pytest

from api.config import BASE_CHAIN_ID, get_settings
from api.services.unified import POOL_BY_ID_QUERY, POOLS_BY_NFT_QUERY, UnifiedSales

NFT = "0x" + "d" * 40
LSSVM_URL = "https://example.invalid/lssvm"


class FakeClient:
    def __init__(self, endpoint, responses):
        self.endpoint = endpoint
        self.responses = responses
        self.queries = []

    async def query(self, query, variables=None):
        self.queries.append((query, variables))
        response = self.responses.get((self.endpoint, query))
        if isinstance(response, Exception):
            raise response
        return response or {}

    async def get_listings_by_token_address(self, token_address, first=100, skip=0):
        response = self.responses.get((self.endpoint, "by_token"))
        if isinstance(response, Exception):
            raise response
        return response or []


@pytest.fixture
def responses():
    return {}


@pytest.fixture
def clients():
    return {}


@pytest.fixture
def unified(monkeypatch, responses, clients):
    monkeypatch.setattr(get_settings(), "lssvm_subgraph_url", LSSVM_URL)

    def factory(endpoint):
        clients[endpoint] = FakeClient(endpoint, responses)
        return clients[endpoint]

    return UnifiedSales(client_factory=factory)


class TestUnifiedSales:

    def test_sales_options_combines_both_sources(self, unified, responses, listing_factory):
        auction_url = get_settings().auctionhouse_subgraph_url
        responses[(LSSVM_URL, POOLS_BY_NFT_QUERY)] = {"pools": [{"id": "0xpool", "spotPrice": "100"}]}
        responses[(auction_url, "by_token")] = [listing_factory(1)]

        options = asyncio.run(unified.get_sales_options(NFT.upper().replace("0X", "0x")))

        assert options["chainId"] == BASE_CHAIN_ID
        assert options["pools"] == [{"id": "0xpool", "spotPrice": "100"}]
        assert [a["listingId"] for a in options["auctions"]] == ["1"]
        assert options["hasPools"] is True
        assert options["hasAuctions"] is True
        assert options["hasAnySales"] is True

    def test_pool_query_uses_lowercase_address(self, unified, clients):
        asyncio.run(unified.query_pools_by_nft(BASE_CHAIN_ID, NFT.upper().replace("0X", "0x"), first=5))
        _, variables = clients[LSSVM_URL].queries[0]
        assert variables == {"nft": NFT, "first": 5, "skip": 0}

    def test_failing_side_yields_empty_list(self, unified, responses):
        responses[(LSSVM_URL, POOLS_BY_NFT_QUERY)] = RuntimeError("lssvm down")
        responses[(get_settings().auctionhouse_subgraph_url, "by_token")] = []

        options = asyncio.run(unified.get_sales_options(NFT))

        assert options["pools"] == []
        assert options["auctions"] == []
        assert options["hasAnySales"] is False

    def test_unknown_chain_yields_nothing(self, unified):
        sales = asyncio.run(unified.get_sales_for_collection(NFT, chain_id=1))
        assert sales == {"pools": [], "auctions": []}
        assert asyncio.run(unified.get_pool_data("0xpool", chain_id=1)) is None
        assert asyncio.run(unified.get_auction_data("1", chain_id=1)) is None

    def test_pool_and_auction_by_id(self, unified, responses, listing_factory):
        responses[(LSSVM_URL, POOL_BY_ID_QUERY)] = {"pool": {"id": "0xpool"}}

        assert asyncio.run(unified.get_pool_data("0xPOOL", BASE_CHAIN_ID)) == {"id": "0xpool"}
        assert asyncio.run(unified.get_auction_data("7", BASE_CHAIN_ID)) is None

    def test_clients_are_reused_per_endpoint(self, unified, clients):
        asyncio.run(unified.query_pools_by_nft(BASE_CHAIN_ID, NFT))
        first = clients[LSSVM_URL]
        asyncio.run(unified.query_pool_by_id(BASE_CHAIN_ID, "0xpool"))
        assert clients[LSSVM_URL] is first
        assert len(first.queries) == 2

    def test_missing_lssvm_endpoint(self, monkeypatch):
        monkeypatch.setattr(get_settings(), "lssvm_subgraph_url", None)
        unified = UnifiedSales(client_factory=lambda endpoint: pytest.fail("no client expected"))
        assert asyncio.run(unified.get_pool_data("0xpool", BASE_CHAIN_ID)) is None
