#!/usr/bin/env python3
"""
Unified sales lookups combining LSSVM pools and auction-house listings
for a single NFT collection.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from api.config import BASE_CHAIN_ID, get_settings, get_subgraph_endpoint
from api.services.subgraph import LISTING_BY_ID_QUERY, SubgraphClient

logger = logging.getLogger(__name__)

POOL_FIELDS = """
      id
      address: id
      nft
      bondingCurve
      assetRecipient
      poolType
      delta
      fee
      spotPrice
      nftIdRange {
        start
        end
      }
      tokenLiquidity
      createdAt: createdAtTimestamp
      createdAtBlock: createdAtBlockNumber
"""

POOLS_BY_NFT_QUERY = """
  query PoolsByNFT($nft: String!, $first: Int!, $skip: Int!) {
    pools(
      where: { nft: $nft }
      first: $first
      skip: $skip
      orderBy: createdAtTimestamp
      orderDirection: desc
    ) {%s}
  }
""" % POOL_FIELDS

POOL_BY_ID_QUERY = """
  query PoolById($id: ID!) {
    pool(id: $id) {%s}
  }
""" % POOL_FIELDS


def _default_client(endpoint: str) -> SubgraphClient:
    settings = get_settings()
    return SubgraphClient(endpoint, api_key=settings.graph_studio_api_key, timeout=settings.subgraph_timeout)


class UnifiedSales:
    """Queries both subgraphs of a chain; endpoints come from settings"""

    def __init__(self, client_factory: Optional[Callable[[str], SubgraphClient]] = None):
        self.client_factory = client_factory or _default_client
        self._clients: Dict[str, SubgraphClient] = {}

    def _client(self, kind: str, chain_id: int) -> SubgraphClient:
        endpoint = get_subgraph_endpoint(kind, chain_id)
        if endpoint not in self._clients:
            self._clients[endpoint] = self.client_factory(endpoint)
        return self._clients[endpoint]

    async def query_pools_by_nft(self, chain_id: int, nft: str, first: int = 100,
                                 skip: int = 0) -> List[Dict[str, Any]]:
        data = await self._client("lssvm", chain_id).query(POOLS_BY_NFT_QUERY, {
            "nft": nft.lower(),
            "first": first,
            "skip": skip,
        })
        return data.get("pools") or []

    async def query_pool_by_id(self, chain_id: int, pool_address: str) -> Optional[Dict[str, Any]]:
        data = await self._client("lssvm", chain_id).query(POOL_BY_ID_QUERY, {"id": pool_address.lower()})
        return data.get("pool")

    async def query_listings_by_token_address(self, chain_id: int, token_address: str, first: int = 100,
                                              skip: int = 0) -> List[Dict[str, Any]]:
        client = self._client("auctionhouse", chain_id)
        return await client.get_listings_by_token_address(token_address, first, skip)

    async def query_listing_by_id(self, chain_id: int, listing_id: str) -> Optional[Dict[str, Any]]:
        data = await self._client("auctionhouse", chain_id).query(LISTING_BY_ID_QUERY, {"id": str(listing_id)})
        return data.get("listing")

    async def get_sales_for_collection(self, nft: str, chain_id: int, first: int = 100,
                                       skip: int = 0) -> Dict[str, List[Dict[str, Any]]]:
        """Pools and auctions fetched concurrently; a failing side yields []"""

        async def pools():
            try:
                return await self.query_pools_by_nft(chain_id, nft, first, skip)
            except Exception as e:
                logger.error(f"Error fetching pools for {nft}: {e}")
                return []

        async def auctions():
            try:
                return await self.query_listings_by_token_address(chain_id, nft, first, skip)
            except Exception as e:
                logger.error(f"Error fetching auctions for {nft}: {e}")
                return []

        pool_list, auction_list = await asyncio.gather(pools(), auctions())
        return {"pools": pool_list, "auctions": auction_list}

    async def get_pool_data(self, pool_address: str, chain_id: int) -> Optional[Dict[str, Any]]:
        try:
            return await self.query_pool_by_id(chain_id, pool_address)
        except Exception as e:
            logger.error(f"Error fetching pool data for {pool_address}: {e}")
            return None

    async def get_auction_data(self, listing_id: str, chain_id: int) -> Optional[Dict[str, Any]]:
        try:
            return await self.query_listing_by_id(chain_id, listing_id)
        except Exception as e:
            logger.error(f"Error fetching auction data for {listing_id}: {e}")
            return None

    async def get_sales_options(self, nft: str, chain_id: int = BASE_CHAIN_ID) -> Dict[str, Any]:
        sales = await self.get_sales_for_collection(nft, chain_id)
        has_pools = len(sales["pools"]) > 0
        has_auctions = len(sales["auctions"]) > 0
        return {
            "collectionAddress": nft,
            "chainId": chain_id,
            "pools": sales["pools"],
            "auctions": sales["auctions"],
            "hasPools": has_pools,
            "hasAuctions": has_auctions,
            "hasAnySales": has_pools or has_auctions,
        }
