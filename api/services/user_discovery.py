#!/usr/bin/env python3
"""
User discovery: resolve any wallet address (seller, bidder, buyer, creator)
to a Farcaster or ENS identity and cache the answer.
"""

import asyncio
import logging
import re
from typing import Dict, Iterable, Optional, Set

import aiohttp
from web3 import Web3

from api.config import get_settings
from api.models.user import CachedUser, DiscoveredUser
from api.services.user_cache import UserCache

logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
BATCH_SIZE = 10
BATCH_PAUSE = 0.1


def is_valid_address(address: str) -> bool:
    return bool(address) and bool(ADDRESS_RE.match(address))


class NeynarClient:
    """Farcaster lookups through the Neynar v2 REST API"""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: float = 5.0):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.neynar_api_key
        self.base_url = (base_url or settings.neynar_api_url).rstrip("/")
        self.timeout = timeout

    async def lookup_by_address(self, address: str) -> Optional[Dict]:
        """Return the first Farcaster user verified for the address, or None"""
        if not self.api_key:
            logger.debug("NEYNAR_API_KEY not set, skipping Farcaster lookup")
            return None

        address = address.lower()
        url = f"{self.base_url}/v2/farcaster/user/bulk-by-address/?addresses={address}"
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, headers={"x-api-key": self.api_key, "accept": "application/json"}) as response:
                if response.status == 404:
                    return None
                response.raise_for_status()
                data = await response.json()

        for user in data.get(address) or []:
            if user.get("fid"):
                return user
        return None


class EnsResolver:
    """Reverse ENS lookups over a mainnet RPC"""

    def __init__(self, rpc_url: Optional[str] = None):
        self.rpc_url = rpc_url if rpc_url is not None else get_settings().ethereum_rpc_url
        self._w3 = None

    def _lookup(self, address: str) -> Optional[str]:
        if self._w3 is None:
            self._w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": 5}))
        return self._w3.ens.name(Web3.to_checksum_address(address))

    async def name(self, address: str) -> Optional[str]:
        if not self.rpc_url:
            return None
        return await asyncio.to_thread(self._lookup, address)


def _to_discovered(user: CachedUser, address: str, source: str) -> DiscoveredUser:
    return DiscoveredUser(
        address=address,
        fid=user.fid,
        username=user.username,
        display_name=user.display_name,
        pfp_url=user.pfp_url,
        verified_wallets=user.verified_wallets or [],
        ens_name=user.ens_name,
        source=source,
    )


class UserDiscovery:
    """Cache first, then Neynar, then ENS; misses are cached too"""

    def __init__(self, cache: UserCache, neynar: Optional[NeynarClient] = None, ens: Optional[EnsResolver] = None):
        self.cache = cache
        self.neynar = neynar or NeynarClient()
        self.ens = ens or EnsResolver()
        self._background: Set[asyncio.Task] = set()

    async def discover(self, address: str, cache_only: bool = False,
                       fail_silently: bool = True) -> Optional[DiscoveredUser]:
        if not is_valid_address(address):
            if fail_silently:
                return None
            raise ValueError(f"Invalid Ethereum address: {address}")

        address = address.lower()
        try:
            cached = await self.cache.get(address)
            if cached is not None:
                return _to_discovered(cached, address, "cached")
            if cache_only:
                return None

            farcaster_user = await self.neynar.lookup_by_address(address)
            if farcaster_user:
                wallets = (farcaster_user.get("verified_addresses") or {}).get("eth_addresses") or []
                saved = await self.cache.cache_user(
                    address,
                    source="neynar",
                    fid=farcaster_user.get("fid"),
                    username=farcaster_user.get("username"),
                    display_name=farcaster_user.get("display_name"),
                    pfp_url=farcaster_user.get("pfp_url"),
                    verified_wallets=[w.lower() for w in wallets] or None,
                )
                return _to_discovered(saved, address, "neynar")

            ens_name = await self.ens.name(address)
            if ens_name:
                saved = await self.cache.cache_user(address, source="ens", ens_name=ens_name)
                return _to_discovered(saved, address, "ens")

            # Remember the miss so the next request doesn't hit the APIs again
            await self.cache.cache_user(address, source="neynar")
            return None
        except Exception as e:
            if fail_silently:
                logger.debug(f"User discovery failed for {address}: {e}")
                return None
            raise

    async def discover_many(self, addresses: Iterable[str], cache_only: bool = False) -> Dict[str, Optional[DiscoveredUser]]:
        """Discover in batches of 10 with a short pause between batches"""
        addresses = list(dict.fromkeys(a.lower() for a in addresses))
        results: Dict[str, Optional[DiscoveredUser]] = {}
        for i in range(0, len(addresses), BATCH_SIZE):
            batch = addresses[i:i + BATCH_SIZE]
            found = await asyncio.gather(*(self.discover(a, cache_only=cache_only) for a in batch))
            results.update(zip(batch, found))
            if i + BATCH_SIZE < len(addresses):
                await asyncio.sleep(BATCH_PAUSE)
        return results

    def discover_background(self, address: str) -> Optional[asyncio.Task]:
        """Schedule discovery without waiting for it"""
        if not is_valid_address(address):
            return None
        try:
            task = asyncio.get_running_loop().create_task(self.discover(address, fail_silently=True))
        except RuntimeError:
            logger.debug(f"No running loop, skipping background discovery for {address}")
            return None
        # Keep a reference until done so the task isn't garbage collected
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
