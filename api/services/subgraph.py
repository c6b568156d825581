#!/usr/bin/env python3
"""
GraphQL client for the auction-house subgraph.

Wraps aiohttp with rate-limit aware retries and de-duplication of identical
requests that are in flight at the same time.
"""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from api.config import get_settings

logger = logging.getLogger(__name__)

# Fields requested for every listing
LISTING_FIELDS = """
      id
      listingId
      marketplace
      seller
      tokenAddress
      tokenId
      tokenSpec
      listingType
      initialAmount
      totalAvailable
      totalPerSale
      startTime
      endTime
      lazy
      status
      totalSold
      hasBid
      finalized
      createdAt
      createdAtBlock
      updatedAt
      erc20
      bids(orderBy: amount, orderDirection: desc, first: 1000) {
        id
        bidder
        amount
        timestamp
      }
"""

LISTING_BY_ID_QUERY = """
  query ListingById($id: ID!) {
    listing(id: $id) {%s}
  }
""" % LISTING_FIELDS

ACTIVE_LISTINGS_QUERY = """
  query ActiveListings($first: Int!, $skip: Int!) {
    listings(
      where: { status: "ACTIVE", finalized: false }
      first: $first
      skip: $skip
      orderBy: createdAt
      orderDirection: desc
    ) {%s}
  }
""" % LISTING_FIELDS

BROWSE_LISTINGS_QUERY = """
  query BrowseListings($first: Int!, $skip: Int!, $orderBy: String!, $orderDirection: String!) {
    listings(
      first: $first
      skip: $skip
      orderBy: $orderBy
      orderDirection: $orderDirection
    ) {%s}
  }
""" % LISTING_FIELDS

RECENTLY_CONCLUDED_QUERY = """
  query RecentlyConcluded($first: Int!, $skip: Int!, $since: BigInt!) {
    listings(
      where: { status: "FINALIZED", finalized: true, updatedAt_gte: $since }
      first: $first
      skip: $skip
      orderBy: updatedAt
      orderDirection: desc
    ) {%s}
  }
""" % LISTING_FIELDS

LISTINGS_BY_SELLER_QUERY = """
  query ListingsBySeller($seller: String!, $first: Int!, $skip: Int!) {
    listings(
      where: { seller: $seller }
      first: $first
      skip: $skip
      orderBy: createdAt
      orderDirection: desc
    ) {%s}
  }
""" % LISTING_FIELDS

LISTINGS_BY_TOKEN_ADDRESS_QUERY = """
  query ListingsByTokenAddress($tokenAddress: Bytes!, $first: Int!, $skip: Int!) {
    listings(
      where: { tokenAddress: $tokenAddress, status: "ACTIVE" }
      first: $first
      skip: $skip
      orderBy: createdAt
      orderDirection: desc
    ) {%s}
  }
""" % LISTING_FIELDS

COMPLETED_AUCTIONS_QUERY = """
  query GetCompletedAuctions($limit: Int!, $skip: Int!) {
    listings(
      first: $limit
      skip: $skip
      orderBy: updatedAt
      orderDirection: desc
      where: { listingType: 1, status: "FINALIZED", hasBid: true }
    ) {
      id
      listingId
      seller
      tokenAddress
      tokenId
      initialAmount
      startTime
      endTime
      updatedAt
      referrerBPS
      bids(first: 1, orderBy: amount, orderDirection: desc) {
        id
        bidder
        amount
        referrer
        timestamp
      }
      purchases {
        id
        buyer
        amount
        referrer
        timestamp
      }
    }
  }
"""

BIDS_BY_BIDDER_QUERY = """
  query ListingsWithBids($bidder: String!, $first: Int!, $skip: Int!) {
    bids(
      where: { bidder: $bidder }
      first: $first
      skip: $skip
      orderBy: timestamp
      orderDirection: desc
    ) {
      id
      bidder
      amount
      timestamp
      listing {
        id
        listingId
        marketplace
        seller
        tokenAddress
        tokenId
        tokenSpec
        listingType
        initialAmount
        totalAvailable
        totalPerSale
        startTime
        endTime
        lazy
        status
        totalSold
        hasBid
        finalized
        createdAt
        createdAtBlock
        updatedAt
      }
    }
  }
"""

PURCHASES_BY_LISTING_QUERY = """
  query PurchasesByListing($listingId: BigInt!) {
    purchases(
      where: { listingId: $listingId }
      orderBy: timestamp
      orderDirection: desc
      first: 1000
    ) {
      id
      buyer
      count
      amount
      timestamp
      transactionHash
    }
  }
"""

RECENT_PURCHASES_QUERY = """
  query RecentPurchases($first: Int!) {
    purchases(first: $first, orderBy: timestamp, orderDirection: desc) {
      buyer
      timestamp
    }
  }
"""

RECENT_BIDS_QUERY = """
  query RecentBids($first: Int!) {
    bids(first: $first, orderBy: timestamp, orderDirection: desc) {
      bidder
      timestamp
    }
  }
"""

RECENT_LISTING_TOKENS_QUERY = """
  query RecentListings($first: Int!) {
    listings(
      where: { status: "ACTIVE", finalized: false }
      first: $first
      orderBy: createdAt
      orderDirection: desc
    ) {
      tokenAddress
    }
  }
"""

MAX_ACTIVE_PAGE = 1000
MAX_BROWSE_PAGE = 100
BROWSE_ORDER_FIELDS = ("listingId", "createdAt")

RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429")


class SubgraphError(Exception):
    """Raised when the subgraph answers with an HTTP or GraphQL error"""

    def __init__(self, message: str, status: Optional[int] = None, errors: Optional[List[Dict]] = None):
        super().__init__(message)
        self.status = status
        self.errors = errors or []


class SubgraphRateLimitError(SubgraphError):
    pass


class SubgraphAuthError(SubgraphError):
    pass


def is_rate_limit_error(error: BaseException) -> bool:
    """Check if an error is a rate limit error (429 or similar)"""
    if error is None:
        return False
    if isinstance(error, SubgraphRateLimitError):
        return True
    if getattr(error, 'status', None) == 429:
        return True

    message = str(error).lower()
    if any(marker in message for marker in RATE_LIMIT_MARKERS):
        return True

    for gql_error in getattr(error, 'errors', None) or []:
        msg = str(gql_error.get('message', '')).lower()
        if 'rate limit' in msg or 'too many requests' in msg:
            return True
    return False


def is_auth_error(error: BaseException) -> bool:
    if isinstance(error, SubgraphAuthError):
        return True
    if getattr(error, 'status', None) in (401, 403):
        return True
    message = str(error).lower()
    return 'auth error' in message or 'unauthorized' in message or 'api key' in message


async def retry_with_backoff(
    fn: Callable[[], Awaitable[Any]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
) -> Any:
    """Retry fn on rate-limit errors, doubling the delay after each attempt.

    Any other error, or a rate-limit error on the final attempt, is raised
    unchanged.
    """
    for attempt in range(max_retries + 1):
        try:
            return await fn()
        except Exception as e:
            if not is_rate_limit_error(e) or attempt == max_retries:
                raise
            delay = initial_delay * (2 ** attempt)
            logger.warning(f"Rate limited, retrying in {delay:.1f}s (attempt {attempt + 1}/{max_retries + 1})")
            await asyncio.sleep(delay)


class InFlightRequests:
    """Share one pending result between identical concurrent requests"""

    def __init__(self):
        self._pending: Dict[str, asyncio.Future] = {}

    def __len__(self):
        return len(self._pending)

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        future = self._pending.get(key)
        if future is None:
            future = asyncio.ensure_future(factory())
            self._pending[key] = future
            future.add_done_callback(lambda _f, k=key: self._pending.pop(k, None))
        else:
            logger.debug(f"Joining in-flight request {key[:60]}")
        return await asyncio.shield(future)


class SubgraphClient:
    """Minimal GraphQL client for a single subgraph endpoint"""

    def __init__(self, endpoint: str, api_key: Optional[str] = None, timeout: float = 10.0):
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._in_flight = InFlightRequests()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a GraphQL query, joining an identical request if one is already pending"""
        variables = variables or {}
        key = json.dumps({"q": query, "v": variables}, sort_keys=True)
        return await self._in_flight.run(key, lambda: self._post(query, variables))

    async def _post(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self.endpoint,
                    json={"query": query, "variables": variables},
                    headers=self._headers(),
                ) as response:
                    if response.status == 429:
                        raise SubgraphRateLimitError("Subgraph rate limit exceeded (429)", status=429)
                    if response.status in (401, 403):
                        raise SubgraphAuthError(f"Subgraph auth error ({response.status})", status=response.status)
                    if response.status >= 400:
                        body = await response.text()
                        raise SubgraphError(f"Subgraph HTTP {response.status}: {body[:200]}", status=response.status)
                    payload = await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise SubgraphError(f"Subgraph request timed out after {self.timeout}s")
        except aiohttp.ClientError as e:
            raise SubgraphError(f"Subgraph request failed: {e}")

        errors = payload.get("errors")
        if errors:
            message = "; ".join(str(err.get("message", err)) for err in errors)
            error_cls = SubgraphError
            if any(m in message.lower() for m in ("rate limit", "too many requests")):
                error_cls = SubgraphRateLimitError
            elif "auth" in message.lower():
                error_cls = SubgraphAuthError
            raise error_cls(f"Subgraph GraphQL error: {message}", errors=errors)

        logger.debug(f"Subgraph query completed in {(time.monotonic() - started) * 1000:.0f}ms")
        return payload.get("data") or {}

    # ---- query helpers ----

    async def get_listing(self, listing_id: str) -> Optional[Dict[str, Any]]:
        data = await self.query(LISTING_BY_ID_QUERY, {"id": str(listing_id)})
        return data.get("listing")

    async def get_active_listings(self, first: int = 100, skip: int = 0) -> List[Dict[str, Any]]:
        data = await self.query(ACTIVE_LISTINGS_QUERY, {
            "first": min(first, MAX_ACTIVE_PAGE),
            "skip": skip,
        })
        return data.get("listings") or []

    async def browse_listings(self, first: int = 20, skip: int = 0, order_by: str = "listingId",
                              order_direction: str = "desc") -> List[Dict[str, Any]]:
        data = await self.query(BROWSE_LISTINGS_QUERY, {
            "first": min(first, MAX_BROWSE_PAGE),
            "skip": skip,
            "orderBy": order_by if order_by in BROWSE_ORDER_FIELDS else "createdAt",
            "orderDirection": "asc" if order_direction == "asc" else "desc",
        })
        return data.get("listings") or []

    async def get_recently_concluded(self, since: int, first: int = 8, skip: int = 0) -> List[Dict[str, Any]]:
        data = await self.query(RECENTLY_CONCLUDED_QUERY, {
            "since": str(since),
            "first": first,
            "skip": skip,
        })
        return data.get("listings") or []

    async def get_listings_by_seller(self, seller: str, first: int = 50, skip: int = 0) -> List[Dict[str, Any]]:
        data = await self.query(LISTINGS_BY_SELLER_QUERY, {
            "seller": seller.lower(),
            "first": first,
            "skip": skip,
        })
        return data.get("listings") or []

    async def get_listings_by_token_address(self, token_address: str, first: int = 100,
                                            skip: int = 0) -> List[Dict[str, Any]]:
        data = await self.query(LISTINGS_BY_TOKEN_ADDRESS_QUERY, {
            "tokenAddress": token_address.lower(),
            "first": first,
            "skip": skip,
        })
        return data.get("listings") or []

    async def get_completed_auctions(self, limit: int = 50, skip: int = 0) -> List[Dict[str, Any]]:
        data = await self.query(COMPLETED_AUCTIONS_QUERY, {"limit": limit, "skip": skip})
        return data.get("listings") or []

    async def get_bids_by_bidder(self, bidder: str, first: int = 100, skip: int = 0) -> List[Dict[str, Any]]:
        """Bids placed by one wallet, newest first, each with its listing"""
        data = await self.query(BIDS_BY_BIDDER_QUERY, {
            "bidder": bidder.lower(),
            "first": min(first, MAX_ACTIVE_PAGE),
            "skip": skip,
        })
        return data.get("bids") or []

    async def get_listing_purchases(self, listing_id: str) -> List[Dict[str, Any]]:
        data = await self.query(PURCHASES_BY_LISTING_QUERY, {"listingId": str(listing_id)})
        return data.get("purchases") or []

    async def get_recent_purchases(self, first: int = 12) -> List[Dict[str, Any]]:
        data = await self.query(RECENT_PURCHASES_QUERY, {"first": min(first, MAX_ACTIVE_PAGE)})
        return data.get("purchases") or []

    async def get_recent_bids(self, first: int = 12) -> List[Dict[str, Any]]:
        data = await self.query(RECENT_BIDS_QUERY, {"first": min(first, MAX_ACTIVE_PAGE)})
        return data.get("bids") or []

    async def get_recent_listing_tokens(self, first: int = 50) -> List[str]:
        """Token contracts of the newest active listings"""
        data = await self.query(RECENT_LISTING_TOKENS_QUERY, {"first": min(first, MAX_ACTIVE_PAGE)})
        return [l["tokenAddress"] for l in data.get("listings") or [] if l.get("tokenAddress")]


_client: Optional[SubgraphClient] = None


def get_subgraph_client() -> SubgraphClient:
    """Process-wide auction-house subgraph client"""
    global _client
    if _client is None:
        settings = get_settings()
        _client = SubgraphClient(
            settings.auctionhouse_subgraph_url,
            api_key=settings.graph_studio_api_key,
            timeout=settings.subgraph_timeout,
        )
    return _client
