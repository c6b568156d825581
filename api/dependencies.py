#!/usr/bin/env python3
"""
FastAPI dependencies shared by the route modules.

Caches (KV store, user discovery) are built once per process so they
survive across requests; the services around them are cheap and built per
request from the injected provider and subgraph client.
"""

from typing import Any, Dict, Optional

from fastapi import Depends

from api.database import DataProvider, get_data_provider
from api.services.activity import ActivityService
from api.services.completions import CompletionSync
from api.services.curation import CurationService
from api.services.kv import KVStore
from api.services.listings import ListingService
from api.services.metadata import MetadataService
from api.services.subgraph import SubgraphClient, get_subgraph_client
from api.services.unified import UnifiedSales
from api.services.user_cache import UserCache
from api.services.user_discovery import UserDiscovery

# Set to "mock" by `api.app --mock`
PROVIDER_MODE: Optional[str] = None

_shared: Dict[str, Any] = {}


def _get_or_create(name: str, factory):
    if name not in _shared:
        _shared[name] = factory()
    return _shared[name]


def reset_shared() -> None:
    """Forget process-wide caches"""
    _shared.clear()


def get_data_service() -> DataProvider:
    """Get data provider instance"""
    return get_data_provider(force_mode=PROVIDER_MODE)


def get_subgraph() -> SubgraphClient:
    return get_subgraph_client()


def get_user_discovery(provider: DataProvider = Depends(get_data_service)) -> UserDiscovery:
    return _get_or_create("discovery", lambda: UserDiscovery(UserCache(provider)))


def get_listing_service(
    subgraph: SubgraphClient = Depends(get_subgraph),
    provider: DataProvider = Depends(get_data_service),
    discovery: UserDiscovery = Depends(get_user_discovery),
) -> ListingService:
    return ListingService(
        subgraph,
        provider,
        discovery=discovery,
        kv=_get_or_create("listings_kv", lambda: KVStore("listings")),
        metadata=MetadataService(provider),
    )


def get_activity_service(
    subgraph: SubgraphClient = Depends(get_subgraph),
    provider: DataProvider = Depends(get_data_service),
    discovery: UserDiscovery = Depends(get_user_discovery),
) -> ActivityService:
    return ActivityService(subgraph, provider, discovery=discovery)


def get_curation_service(
    provider: DataProvider = Depends(get_data_service),
    listings: ListingService = Depends(get_listing_service),
) -> CurationService:
    return CurationService(provider, listings.get_listing)


def get_completion_sync(
    subgraph: SubgraphClient = Depends(get_subgraph),
    provider: DataProvider = Depends(get_data_service),
) -> CompletionSync:
    return CompletionSync(subgraph, provider)


def get_unified_sales() -> UnifiedSales:
    return _get_or_create("unified", UnifiedSales)
