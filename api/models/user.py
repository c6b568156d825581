#!/usr/bin/env python3
"""
Pydantic models for cached user and contract identity records.
"""

from datetime import datetime
from typing import Optional, List

from pydantic import Field, field_validator

from api.models.listing import CamelModel


USER_SOURCES = ("neynar", "ens", "manual", "contract-creator")
CONTRACT_SOURCES = ("onchain", "alchemy", "manual")


class CachedUser(CamelModel):
    """Row of the user_cache table"""
    eth_address: str = Field(..., description="Lowercased wallet address")
    fid: Optional[int] = Field(None, description="Farcaster user ID")
    username: Optional[str] = None
    display_name: Optional[str] = None
    pfp_url: Optional[str] = None
    verified_wallets: Optional[List[str]] = Field(None, description="All verified wallets for this fid")
    ens_name: Optional[str] = None
    source: str = Field("neynar", description="neynar, ens, manual or contract-creator")
    cached_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    refreshed_at: Optional[datetime] = None

    @field_validator('eth_address')
    @classmethod
    def lowercase_address(cls, v):
        return v.lower()

    @field_validator('verified_wallets')
    @classmethod
    def lowercase_wallets(cls, v):
        if v is None:
            return v
        return [w.lower() for w in v]


class CachedContract(CamelModel):
    """Row of the contract_cache table"""
    contract_address: str
    name: Optional[str] = None
    symbol: Optional[str] = None
    creator_address: Optional[str] = None
    source: str = "onchain"
    cached_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    refreshed_at: Optional[datetime] = None

    @field_validator('contract_address', 'creator_address')
    @classmethod
    def lowercase_address(cls, v):
        return v.lower() if v else v


class DiscoveredUser(CamelModel):
    """Result of a user discovery lookup"""
    address: str
    fid: Optional[int] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    pfp_url: Optional[str] = None
    verified_wallets: List[str] = Field(default_factory=list)
    ens_name: Optional[str] = None
    source: str = Field(..., description="cached, neynar, ens or none")
