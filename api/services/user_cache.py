#!/usr/bin/env python3
"""
Two-layer cache for user and contract identity.

Layer 1 is a small in-process TTL map, layer 2 is the user_cache /
contract_cache tables with a 30 day expiry.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from api.database import DataProvider, cache_expiry
from api.models.user import CachedUser, CachedContract

logger = logging.getLogger(__name__)

USER_MEMORY_TTL = 5 * 60
USER_MEMORY_MAX = 1000
CONTRACT_MEMORY_TTL = 5 * 60
CONTRACT_MEMORY_MAX = 500

# External source names mapped onto the values the contract_cache table accepts
CONTRACT_SOURCE_ALIASES = {"etherscan": "onchain"}


class MemoryCache:
    """Address-keyed TTL cache that drops the oldest 10% of entries when full"""

    def __init__(self, ttl: float, max_size: int, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def __len__(self):
        return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        key = key.lower()
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at > self.ttl:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        key = key.lower()
        if key not in self._entries and len(self._entries) >= self.max_size:
            to_remove = max(1, int(self.max_size * 0.1))
            oldest = sorted(self._entries.items(), key=lambda item: item[1][1])[:to_remove]
            for old_key, _ in oldest:
                del self._entries[old_key]
        self._entries[key] = (value, self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        oldest_age = max((now - stored_at for _, stored_at in self._entries.values()), default=None)
        return {"size": len(self._entries), "max_size": self.max_size, "oldest_age_seconds": oldest_age}


class UserCache:
    """Cached Farcaster/ENS identity per wallet address"""

    def __init__(self, provider: DataProvider, memory: Optional[MemoryCache] = None):
        self.provider = provider
        self.memory = memory or MemoryCache(USER_MEMORY_TTL, USER_MEMORY_MAX)

    async def get(self, address: str) -> Optional[CachedUser]:
        address = address.lower()
        cached = self.memory.get(address)
        if cached is not None:
            return cached

        try:
            user = await self.provider.get_cached_user(address)
            if user is None:
                # The address may be a secondary verified wallet of a cached user
                user = await self.provider.get_cached_user_by_wallet(address)
        except Exception as e:
            logger.warning(f"User cache lookup failed for {address}: {e}")
            return None

        if user is not None:
            self.memory.set(address, user)
        return user

    async def cache_user(self, address: str, source: str, **fields) -> CachedUser:
        """Upsert identity for an address; new non-null values win over stored ones"""
        address = address.lower()
        record = CachedUser(eth_address=address, source=source, expires_at=cache_expiry(), **fields)
        try:
            saved = await self.provider.upsert_cached_user(record)
        except Exception as e:
            logger.warning(f"Database error caching user {address}, keeping memory copy only: {e}")
            saved = record
        self.memory.set(address, saved)
        return saved


class ContractCache:
    """Cached name/symbol/creator per NFT contract"""

    def __init__(self, provider: DataProvider, memory: Optional[MemoryCache] = None):
        self.provider = provider
        self.memory = memory or MemoryCache(CONTRACT_MEMORY_TTL, CONTRACT_MEMORY_MAX)

    async def get(self, address: str) -> Optional[CachedContract]:
        address = address.lower()
        cached = self.memory.get(address)
        if cached is not None:
            return cached
        try:
            contract = await self.provider.get_cached_contract(address)
        except Exception as e:
            logger.warning(f"Contract cache lookup failed for {address}: {e}")
            return None
        if contract is not None:
            self.memory.set(address, contract)
        return contract

    async def cache_contract(self, address: str, source: str = "onchain", **fields) -> CachedContract:
        address = address.lower()
        source = CONTRACT_SOURCE_ALIASES.get(source, source)
        record = CachedContract(contract_address=address, source=source, expires_at=cache_expiry(), **fields)
        try:
            saved = await self.provider.upsert_cached_contract(record)
        except Exception as e:
            logger.warning(f"Database error caching contract {address}: {e}")
            saved = record
        self.memory.set(address, saved)
        return saved
