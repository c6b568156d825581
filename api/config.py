#!/usr/bin/env python3
"""
Configuration management for the marketplace API.
Supports mock, development, and production modes.
"""

from enum import Enum
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator


class AppMode(str, Enum):
    """Application running modes"""
    MOCK = "mock"
    DEV = "dev"
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    PROD = "prod"  # Alias for production


BASE_CHAIN_ID = 8453


class Settings(BaseSettings):
    """Application settings with environment-based configuration"""

    # Application mode
    app_mode: AppMode = AppMode.MOCK

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Database settings (only used in development/production)
    database_url: Optional[str] = None

    # Mode-specific database URLs
    dev_database_url: Optional[str] = None
    prod_database_url: Optional[str] = None
    mock_database_url: Optional[str] = None

    # Subgraphs
    auctionhouse_subgraph_url: str = "https://api.studio.thegraph.com/query/auctionhouse/version/latest"
    lssvm_subgraph_url: Optional[str] = None
    graph_studio_api_key: Optional[str] = None
    subgraph_timeout: float = 10.0

    # Mainnet RPC used for ENS reverse lookups
    ethereum_rpc_url: Optional[str] = None

    # Farcaster / Neynar
    neynar_api_key: Optional[str] = None
    neynar_api_url: str = "https://api.neynar.com"

    # IPFS gateway used to resolve ipfs:// metadata links
    ipfs_gateway: str = "https://ipfs.io/ipfs/"

    # Redis (optional, in-memory fallback when unset)
    redis_url: Optional[str] = None

    # Cron / admin secrets
    cron_secret: Optional[str] = None
    admin_secret: Optional[str] = None

    # Feature limits
    max_galleries_per_user: int = 10

    # Cache TTLs (seconds)
    active_listings_cache_ttl: int = 60
    last_known_good_ttl: int = 600
    listing_cache_ttl: int = 120

    @field_validator('lssvm_subgraph_url', 'graph_studio_api_key', 'neynar_api_key', 'ethereum_rpc_url',
                     'redis_url', 'cron_secret', 'admin_secret', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        """Treat empty env values as unset"""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def get_effective_database_url(self) -> Optional[str]:
        """Get the effective database URL based on app mode"""
        # First try the generic database_url
        if self.database_url:
            return self.database_url

        # Then try mode-specific URLs
        if self.app_mode in [AppMode.DEV, AppMode.DEVELOPMENT]:
            return self.dev_database_url
        elif self.app_mode in [AppMode.PRODUCTION, AppMode.PROD]:
            return self.prod_database_url
        elif self.app_mode == AppMode.MOCK:
            return self.mock_database_url

        return None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings"""
    return settings


def is_mock_mode() -> bool:
    """Check if running in mock mode"""
    return settings.app_mode == AppMode.MOCK


def is_production_mode() -> bool:
    """Check if running in production mode"""
    return settings.app_mode in [AppMode.PRODUCTION, AppMode.PROD]


def requires_database() -> bool:
    """Check if current mode requires database connection"""
    return settings.app_mode in [AppMode.DEVELOPMENT, AppMode.DEV, AppMode.PRODUCTION, AppMode.PROD]


def get_cors_origins() -> list:
    """Get CORS origins as a list"""
    return [origin.strip() for origin in settings.cors_origins.split(",")]


def get_subgraph_endpoint(kind: str, chain_id: int = BASE_CHAIN_ID) -> str:
    """Resolve a subgraph endpoint for a chain.

    Only Base is deployed today; other chains raise so callers can fall back.
    """
    endpoints = {
        BASE_CHAIN_ID: {
            "auctionhouse": settings.auctionhouse_subgraph_url,
            "lssvm": settings.lssvm_subgraph_url,
        }
    }
    endpoint = endpoints.get(chain_id, {}).get(kind)
    if not endpoint:
        raise ValueError(f"{kind} subgraph endpoint not configured for chain {chain_id}")
    return endpoint


def validate_settings():
    """Validate settings based on app mode"""
    if requires_database():
        effective_db_url = settings.get_effective_database_url()
        if not effective_db_url:
            raise ValueError(f"Database URL is required for {settings.app_mode} mode")


# Validate on import
validate_settings()
