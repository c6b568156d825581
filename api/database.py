#!/usr/bin/env python3
"""
Database connection and session management for FastAPI.
"""

import os
import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Dict, Any, Tuple, Set

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import text

from api.config import get_settings
from api.models.user import CachedUser, CachedContract
from api.models.curation import Gallery, GalleryItem
from api.models.social import AuctionCompletion

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

# Database configuration
DATABASE_URL = get_settings().get_effective_database_url() or os.getenv(
    "DATABASE_URL",
    "postgresql://postgres@localhost:5432/cryptoart"
)

# Convert to async URL if needed
if DATABASE_URL.startswith("postgresql://"):
    ASYNC_DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)
else:
    ASYNC_DATABASE_URL = DATABASE_URL

# Only enable SQL logging in debug mode (set SQL_DEBUG=true to enable)
sql_debug = os.getenv("SQL_DEBUG", "false").lower() == "true"
engine = create_async_engine(
    ASYNC_DATABASE_URL,
    echo=sql_debug,
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
    pool_recycle=3600,  # Recycle connections after 1 hour
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

CACHE_TTL_DAYS = 30

# Tables swept by the TTL cleanup job
EXPIRING_TABLES = ("user_cache", "contract_cache", "auction_completions_cache")

TIER_VALUES = {"supporter": 1, "collector": 2, "patron": 3, "whale": 4}


async def get_db():
    """Dependency to get database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def check_database_connection():
    """Check if database connection is working"""
    try:
        async with AsyncSessionLocal() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _json_list(value) -> Optional[List]:
    """asyncpg hands back jsonb as text unless a codec is registered"""
    if value is None:
        return None
    if isinstance(value, str):
        return json.loads(value)
    return list(value)


class DatabaseQueries:
    """Centralized database query methods for the marketplace tables"""

    @staticmethod
    async def get_hidden_users(db: AsyncSession):
        result = await db.execute(text("SELECT LOWER(user_address) AS user_address FROM hidden_users"))
        return result.fetchall()

    @staticmethod
    async def get_nft_metadata(db: AsyncSession, contract_address: str, token_id: str):
        """Get cached metadata for a single token"""
        query = text("""
            SELECT contract_address, token_id, name, description, image_uri, animation_uri,
                   attributes, token_uri, metadata_source
            FROM nft_metadata_cache
            WHERE contract_address = :contract_address AND token_id = :token_id
            LIMIT 1
        """)
        result = await db.execute(query, {"contract_address": contract_address.lower(), "token_id": str(token_id)})
        return result.fetchone()

    # ---- user cache ----

    @staticmethod
    async def get_cached_user(db: AsyncSession, address: str):
        query = text("""
            SELECT * FROM user_cache
            WHERE eth_address = :address AND expires_at > NOW()
            LIMIT 1
        """)
        result = await db.execute(query, {"address": address.lower()})
        return result.fetchone()

    @staticmethod
    async def get_cached_user_by_wallet(db: AsyncSession, address: str):
        """Find a cached user whose verified wallets contain the address"""
        query = text("""
            SELECT * FROM user_cache
            WHERE verified_wallets @> CAST(:wallets AS JSONB) AND expires_at > NOW()
            LIMIT 1
        """)
        result = await db.execute(query, {"wallets": json.dumps([address.lower()])})
        return result.fetchone()

    @staticmethod
    async def get_cached_users(db: AsyncSession, addresses: List[str]):
        query = text("""
            SELECT * FROM user_cache
            WHERE eth_address = ANY(:addresses) AND expires_at > NOW()
        """)
        result = await db.execute(query, {"addresses": [a.lower() for a in addresses]})
        return result.fetchall()

    @staticmethod
    async def upsert_cached_user(db: AsyncSession, user: CachedUser):
        """Insert or refresh a user_cache row, keeping existing values where the new ones are null"""
        query = text("""
            INSERT INTO user_cache (
                eth_address, fid, username, display_name, pfp_url, verified_wallets,
                ens_name, source, cached_at, expires_at, refreshed_at
            ) VALUES (
                :eth_address, :fid, :username, :display_name, :pfp_url, CAST(:verified_wallets AS JSONB),
                :ens_name, :source, NOW(), :expires_at, NOW()
            )
            ON CONFLICT (eth_address) DO UPDATE SET
                fid = COALESCE(EXCLUDED.fid, user_cache.fid),
                username = COALESCE(EXCLUDED.username, user_cache.username),
                display_name = COALESCE(EXCLUDED.display_name, user_cache.display_name),
                pfp_url = COALESCE(EXCLUDED.pfp_url, user_cache.pfp_url),
                verified_wallets = COALESCE(EXCLUDED.verified_wallets, user_cache.verified_wallets),
                ens_name = COALESCE(EXCLUDED.ens_name, user_cache.ens_name),
                source = EXCLUDED.source,
                expires_at = EXCLUDED.expires_at,
                refreshed_at = NOW()
            RETURNING *
        """)
        params = user.model_dump(include={"eth_address", "fid", "username", "display_name", "pfp_url",
                                          "ens_name", "source", "expires_at"})
        params["verified_wallets"] = json.dumps(user.verified_wallets) if user.verified_wallets is not None else None
        result = await db.execute(query, params)
        await db.commit()
        return result.fetchone()

    @staticmethod
    async def get_cached_contract(db: AsyncSession, address: str):
        query = text("""
            SELECT * FROM contract_cache
            WHERE contract_address = :address AND expires_at > NOW()
            LIMIT 1
        """)
        result = await db.execute(query, {"address": address.lower()})
        return result.fetchone()

    @staticmethod
    async def get_cached_contracts(db: AsyncSession, addresses: List[str]):
        query = text("""
            SELECT * FROM contract_cache
            WHERE contract_address = ANY(:addresses) AND expires_at > NOW()
        """)
        result = await db.execute(query, {"addresses": [a.lower() for a in addresses]})
        return result.fetchall()

    @staticmethod
    async def upsert_cached_contract(db: AsyncSession, contract: CachedContract):
        query = text("""
            INSERT INTO contract_cache (
                contract_address, name, symbol, creator_address, source, cached_at, expires_at, refreshed_at
            ) VALUES (
                :contract_address, :name, :symbol, :creator_address, :source, NOW(), :expires_at, NOW()
            )
            ON CONFLICT (contract_address) DO UPDATE SET
                name = COALESCE(EXCLUDED.name, contract_cache.name),
                symbol = COALESCE(EXCLUDED.symbol, contract_cache.symbol),
                creator_address = COALESCE(EXCLUDED.creator_address, contract_cache.creator_address),
                source = EXCLUDED.source,
                expires_at = EXCLUDED.expires_at,
                refreshed_at = NOW()
            RETURNING *
        """)
        params = contract.model_dump(include={"contract_address", "name", "symbol", "creator_address",
                                              "source", "expires_at"})
        result = await db.execute(query, params)
        await db.commit()
        return result.fetchone()

    # ---- cleanup ----

    @staticmethod
    async def delete_expired_rows(db: AsyncSession, table: str) -> int:
        if table not in EXPIRING_TABLES:
            raise ValueError(f"Table {table} has no expiry column")
        result = await db.execute(text(f"DELETE FROM {table} WHERE expires_at < NOW()"))
        await db.commit()
        return result.rowcount or 0

    @staticmethod
    async def delete_read_notifications_before(db: AsyncSession, cutoff: datetime) -> int:
        query = text("DELETE FROM notifications WHERE read = TRUE AND created_at < :cutoff")
        result = await db.execute(query, {"cutoff": cutoff})
        await db.commit()
        return result.rowcount or 0

    # ---- auction completions ----

    @staticmethod
    async def get_completion(db: AsyncSession, listing_id: str):
        query = text("SELECT * FROM auction_completions_cache WHERE listing_id = :listing_id LIMIT 1")
        result = await db.execute(query, {"listing_id": listing_id})
        return result.fetchone()

    @staticmethod
    async def find_fid_by_address(db: AsyncSession, address: str):
        query = text("""
            SELECT fid FROM user_profiles
            WHERE verified_addresses @> CAST(:addresses AS JSONB)
            LIMIT 1
        """)
        result = await db.execute(query, {"addresses": json.dumps([address.lower()])})
        return result.scalar()

    @staticmethod
    async def count_other_wins(db: AsyncSession, winner_fid: int, listing_id: str) -> int:
        query = text("""
            SELECT COUNT(*) FROM auction_completions_cache
            WHERE winner_fid = :winner_fid AND listing_id != :listing_id
        """)
        result = await db.execute(query, {"winner_fid": winner_fid, "listing_id": listing_id})
        return int(result.scalar() or 0)

    @staticmethod
    async def get_max_final_bid_for_seller(db: AsyncSession, seller_fid: int):
        query = text("""
            SELECT MAX(CAST(final_bid AS NUMERIC))::text FROM auction_completions_cache
            WHERE seller_fid = :seller_fid
        """)
        result = await db.execute(query, {"seller_fid": seller_fid})
        value = result.scalar()
        return int(value) if value is not None else None

    @staticmethod
    async def upsert_completion(db: AsyncSession, record: AuctionCompletion):
        query = text("""
            INSERT INTO auction_completions_cache (
                listing_id, token_contract, token_id, nft_metadata, final_bid, bid_count,
                start_time, end_time, completed_at, seller, seller_fid, winner, winner_fid,
                referrer, curator_fid, curator_earnings, featured, is_first_win, is_record_price,
                expires_at
            ) VALUES (
                :listing_id, :token_contract, :token_id, CAST(:nft_metadata AS JSONB), :final_bid, :bid_count,
                :start_time, :end_time, :completed_at, :seller, :seller_fid, :winner, :winner_fid,
                :referrer, :curator_fid, :curator_earnings, :featured, :is_first_win, :is_record_price,
                :expires_at
            )
            ON CONFLICT (listing_id) DO UPDATE SET
                nft_metadata = EXCLUDED.nft_metadata,
                winner_fid = EXCLUDED.winner_fid,
                seller_fid = EXCLUDED.seller_fid,
                curator_fid = EXCLUDED.curator_fid,
                is_first_win = EXCLUDED.is_first_win,
                is_record_price = EXCLUDED.is_record_price,
                expires_at = EXCLUDED.expires_at
        """)
        params = record.model_dump()
        params["nft_metadata"] = json.dumps(record.nft_metadata) if record.nft_metadata is not None else None
        await db.execute(query, params)
        await db.commit()

    @staticmethod
    async def get_recent_completions(db: AsyncSession, limit: int, offset: int, featured_only: bool):
        featured_filter = "WHERE featured = TRUE" if featured_only else ""
        query = text(f"""
            SELECT * FROM auction_completions_cache
            {featured_filter}
            ORDER BY completed_at DESC
            LIMIT :limit OFFSET :offset
        """)
        result = await db.execute(query, {"limit": limit, "offset": offset})
        return result.fetchall()

    @staticmethod
    async def count_completions(db: AsyncSession, featured_only: bool) -> int:
        featured_filter = "WHERE featured = TRUE" if featured_only else ""
        result = await db.execute(text(f"SELECT COUNT(*) FROM auction_completions_cache {featured_filter}"))
        return int(result.scalar() or 0)

    # ---- profiles / reputation / patrons ----

    @staticmethod
    async def get_profiles(db: AsyncSession, fids: List[int]):
        query = text("SELECT * FROM user_profiles WHERE fid = ANY(:fids)")
        result = await db.execute(query, {"fids": list(fids)})
        return result.fetchall()

    @staticmethod
    async def get_reputations(db: AsyncSession, fids: List[int]):
        query = text("SELECT * FROM reputation_scores WHERE fid = ANY(:fids)")
        result = await db.execute(query, {"fids": list(fids)})
        return result.fetchall()

    @staticmethod
    async def get_top_patrons(db: AsyncSession, limit: int, offset: int,
                              since: Optional[datetime] = None, min_tier_value: Optional[int] = None):
        """Aggregate patronships per collector, ordered by total spend"""
        conditions = []
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if since is not None:
            conditions.append("last_purchase >= :since")
            params["since"] = since
        if min_tier_value is not None:
            conditions.append("""
                CASE patron_tier
                    WHEN 'whale' THEN 4
                    WHEN 'patron' THEN 3
                    WHEN 'collector' THEN 2
                    WHEN 'supporter' THEN 1
                    ELSE 0
                END >= :min_tier_value
            """)
            params["min_tier_value"] = min_tier_value
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        rows_query = text(f"""
            SELECT collector_fid,
                   SUM(CAST(total_spent AS NUMERIC))::text AS total_spent,
                   COUNT(DISTINCT creator_fid) AS creators_supported,
                   COALESCE(SUM(items_owned), 0) AS items_collected,
                   COALESCE(SUM(market_purchases), 0) AS market_purchases,
                   COALESCE(SUM(gallery_purchases), 0) AS gallery_purchases,
                   MAX(last_purchase) AS last_activity
            FROM patronships
            {where}
            GROUP BY collector_fid
            ORDER BY SUM(CAST(total_spent AS NUMERIC)) DESC
            LIMIT :limit OFFSET :offset
        """)
        count_query = text(f"SELECT COUNT(DISTINCT collector_fid) FROM patronships {where}")

        rows = (await db.execute(rows_query, params)).fetchall()
        total = (await db.execute(count_query, params)).scalar()
        return rows, int(total or 0)

    @staticmethod
    async def get_creator_patrons(db: AsyncSession, creator_fid: int, limit: int):
        """Patronships of one creator, biggest spenders first"""
        query = text("""
            SELECT collector_fid, total_spent, items_owned, market_purchases, gallery_purchases,
                   first_purchase, last_purchase, patron_tier, is_top_patron
            FROM patronships
            WHERE creator_fid = :creator_fid
            ORDER BY CAST(total_spent AS NUMERIC) DESC
            LIMIT :limit
        """)
        result = await db.execute(query, {"creator_fid": creator_fid, "limit": limit})
        return result.fetchall()

    # ---- curation ----

    @staticmethod
    async def list_galleries(db: AsyncSession, curator_address: str, published_only: bool):
        published_filter = "AND c.is_published = TRUE" if published_only else ""
        query = text(f"""
            SELECT c.*, COUNT(ci.id) AS item_count
            FROM curation c
            LEFT JOIN curation_items ci ON ci.curation_id = c.id
            WHERE c.curator_address = :curator_address
            {published_filter}
            GROUP BY c.id
            ORDER BY c.created_at DESC
        """)
        result = await db.execute(query, {"curator_address": curator_address.lower()})
        return result.fetchall()

    @staticmethod
    async def count_galleries(db: AsyncSession, curator_address: str) -> int:
        query = text("SELECT COUNT(*) FROM curation WHERE curator_address = :curator_address")
        result = await db.execute(query, {"curator_address": curator_address.lower()})
        return int(result.scalar() or 0)

    @staticmethod
    async def gallery_slug_exists(db: AsyncSession, curator_address: str, slug: str,
                                  exclude_id: Optional[str] = None) -> bool:
        exclude_filter = "AND id != CAST(:exclude_id AS UUID)" if exclude_id else ""
        query = text(f"""
            SELECT 1 FROM curation
            WHERE curator_address = :curator_address AND slug = :slug
            {exclude_filter}
            LIMIT 1
        """)
        params = {"curator_address": curator_address.lower(), "slug": slug}
        if exclude_id:
            params["exclude_id"] = exclude_id
        result = await db.execute(query, params)
        return result.scalar() is not None

    @staticmethod
    async def create_gallery(db: AsyncSession, curator_address: str, title: str,
                             description: Optional[str], slug: str):
        query = text("""
            INSERT INTO curation (id, curator_address, title, description, slug, is_published, created_at, updated_at)
            VALUES (CAST(:id AS UUID), :curator_address, :title, :description, :slug, FALSE, NOW(), NOW())
            RETURNING *
        """)
        result = await db.execute(query, {
            "id": str(uuid.uuid4()),
            "curator_address": curator_address.lower(),
            "title": title,
            "description": description,
            "slug": slug,
        })
        await db.commit()
        return result.fetchone()

    @staticmethod
    async def get_gallery(db: AsyncSession, gallery_id: str):
        query = text("SELECT * FROM curation WHERE id = CAST(:id AS UUID) LIMIT 1")
        result = await db.execute(query, {"id": gallery_id})
        return result.fetchone()

    @staticmethod
    async def get_gallery_by_slug(db: AsyncSession, curator_address: str, slug: str):
        query = text("""
            SELECT * FROM curation
            WHERE curator_address = :curator_address AND slug = :slug
            LIMIT 1
        """)
        result = await db.execute(query, {"curator_address": curator_address.lower(), "slug": slug})
        return result.fetchone()

    @staticmethod
    async def update_gallery(db: AsyncSession, gallery_id: str, fields: Dict[str, Any]):
        allowed = {"title", "description", "slug", "is_published"}
        assignments = [f"{name} = :{name}" for name in fields if name in allowed]
        assignments.append("updated_at = NOW()")
        query = text(f"""
            UPDATE curation SET {', '.join(assignments)}
            WHERE id = CAST(:id AS UUID)
            RETURNING *
        """)
        params = {k: v for k, v in fields.items() if k in allowed}
        params["id"] = gallery_id
        result = await db.execute(query, params)
        await db.commit()
        return result.fetchone()

    @staticmethod
    async def delete_gallery(db: AsyncSession, gallery_id: str):
        await db.execute(text("DELETE FROM curation_items WHERE curation_id = CAST(:id AS UUID)"), {"id": gallery_id})
        await db.execute(text("DELETE FROM curation WHERE id = CAST(:id AS UUID)"), {"id": gallery_id})
        await db.commit()

    @staticmethod
    async def get_gallery_items(db: AsyncSession, gallery_id: str):
        query = text("""
            SELECT * FROM curation_items
            WHERE curation_id = CAST(:id AS UUID)
            ORDER BY display_order ASC
        """)
        result = await db.execute(query, {"id": gallery_id})
        return result.fetchall()

    @staticmethod
    async def add_gallery_item(db: AsyncSession, gallery_id: str, listing_id: str,
                               display_order: int, notes: Optional[str]):
        query = text("""
            INSERT INTO curation_items (id, curation_id, listing_id, display_order, notes, added_at)
            VALUES (CAST(:id AS UUID), CAST(:curation_id AS UUID), :listing_id, :display_order, :notes, NOW())
            RETURNING *
        """)
        result = await db.execute(query, {
            "id": str(uuid.uuid4()),
            "curation_id": gallery_id,
            "listing_id": listing_id,
            "display_order": display_order,
            "notes": notes,
        })
        await db.commit()
        return result.fetchone()

    @staticmethod
    async def remove_gallery_item(db: AsyncSession, gallery_id: str, listing_id: str) -> int:
        query = text("""
            DELETE FROM curation_items
            WHERE curation_id = CAST(:id AS UUID) AND listing_id = :listing_id
        """)
        result = await db.execute(query, {"id": gallery_id, "listing_id": listing_id})
        await db.commit()
        return result.rowcount or 0


# Initialize database connection check
async def init_database():
    """Initialize database connection and verify setup"""
    logger.info("Checking database connection...")

    if await check_database_connection():
        logger.info("✅ Database connection successful")
        return True
    else:
        logger.error("❌ Database connection failed")
        return False


# ========================================
# Data Provider Interfaces
# ========================================

class DataProvider(ABC):
    """Abstract base class for data providers"""

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    @abstractmethod
    async def get_hidden_users(self) -> Set[str]:
        """Lowercased addresses excluded from algorithmic feeds"""
        pass

    @abstractmethod
    async def get_nft_metadata(self, contract_address: str, token_id: str) -> Optional[Dict[str, Any]]:
        pass

    # user / contract cache
    @abstractmethod
    async def get_cached_user(self, address: str) -> Optional[CachedUser]:
        pass

    @abstractmethod
    async def get_cached_user_by_wallet(self, address: str) -> Optional[CachedUser]:
        pass

    @abstractmethod
    async def get_cached_users(self, addresses: List[str]) -> Dict[str, CachedUser]:
        """Unexpired user_cache rows keyed by lowercased address"""
        pass

    @abstractmethod
    async def upsert_cached_user(self, user: CachedUser) -> CachedUser:
        pass

    @abstractmethod
    async def get_cached_contract(self, address: str) -> Optional[CachedContract]:
        pass

    @abstractmethod
    async def get_cached_contracts(self, addresses: List[str]) -> Dict[str, CachedContract]:
        pass

    @abstractmethod
    async def upsert_cached_contract(self, contract: CachedContract) -> CachedContract:
        pass

    # cleanup
    @abstractmethod
    async def delete_expired_rows(self, table: str) -> int:
        pass

    @abstractmethod
    async def delete_read_notifications_before(self, cutoff: datetime) -> int:
        pass

    # auction completions
    @abstractmethod
    async def get_completion(self, listing_id: str) -> Optional[AuctionCompletion]:
        pass

    @abstractmethod
    async def upsert_completion(self, record: AuctionCompletion) -> None:
        pass

    @abstractmethod
    async def find_fid_by_address(self, address: str) -> Optional[int]:
        pass

    @abstractmethod
    async def count_other_wins(self, winner_fid: int, listing_id: str) -> int:
        pass

    @abstractmethod
    async def get_max_final_bid_for_seller(self, seller_fid: int) -> Optional[int]:
        pass

    @abstractmethod
    async def get_recent_completions(self, limit: int = 50, offset: int = 0,
                                     featured_only: bool = False) -> List[AuctionCompletion]:
        pass

    @abstractmethod
    async def count_completions(self, featured_only: bool = False) -> int:
        pass

    # profiles / patrons
    @abstractmethod
    async def get_profiles(self, fids: List[int]) -> Dict[int, Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_reputations(self, fids: List[int]) -> Dict[int, Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_top_patrons(self, limit: int, offset: int, since: Optional[datetime] = None,
                              min_tier_value: Optional[int] = None) -> Tuple[List[Dict[str, Any]], int]:
        pass

    # curation
    @abstractmethod
    async def get_creator_patrons(self, creator_fid: int, limit: int) -> List[Dict[str, Any]]:
        """One creator's patronship rows ordered by total spend"""
        pass

    @abstractmethod
    async def list_galleries(self, curator_address: str, published_only: bool = False) -> List[Gallery]:
        pass

    @abstractmethod
    async def count_galleries(self, curator_address: str) -> int:
        pass

    @abstractmethod
    async def gallery_slug_exists(self, curator_address: str, slug: str, exclude_id: Optional[str] = None) -> bool:
        pass

    @abstractmethod
    async def create_gallery(self, curator_address: str, title: str, description: Optional[str], slug: str) -> Gallery:
        pass

    @abstractmethod
    async def get_gallery(self, gallery_id: str) -> Optional[Gallery]:
        pass

    @abstractmethod
    async def get_gallery_by_slug(self, curator_address: str, slug: str) -> Optional[Gallery]:
        pass

    @abstractmethod
    async def update_gallery(self, gallery_id: str, fields: Dict[str, Any]) -> Gallery:
        pass

    @abstractmethod
    async def delete_gallery(self, gallery_id: str) -> None:
        pass

    @abstractmethod
    async def get_gallery_items(self, gallery_id: str) -> List[GalleryItem]:
        pass

    @abstractmethod
    async def add_gallery_item(self, gallery_id: str, listing_id: str, display_order: int,
                               notes: Optional[str] = None) -> GalleryItem:
        pass

    @abstractmethod
    async def remove_gallery_item(self, gallery_id: str, listing_id: str) -> int:
        pass


class MockDataProvider(DataProvider):
    """In-memory data provider for tests and local development"""

    def __init__(self):
        self.hidden_users: Set[str] = set()
        self.nft_metadata: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.user_cache: Dict[str, CachedUser] = {}
        self.contract_cache: Dict[str, CachedContract] = {}
        self.completions: Dict[str, AuctionCompletion] = {}
        self.notifications: List[Dict[str, Any]] = []
        self.profiles: Dict[int, Dict[str, Any]] = {}
        self.reputations: Dict[int, Dict[str, Any]] = {}
        self.patronships: List[Dict[str, Any]] = []
        self.galleries: Dict[str, Gallery] = {}
        self.gallery_items: Dict[str, List[GalleryItem]] = {}

    async def health_check(self) -> bool:
        return True

    async def get_hidden_users(self) -> Set[str]:
        return {a.lower() for a in self.hidden_users}

    async def get_nft_metadata(self, contract_address, token_id):
        return self.nft_metadata.get((contract_address.lower(), str(token_id)))

    async def get_cached_user(self, address):
        user = self.user_cache.get(address.lower())
        if user and user.expires_at and user.expires_at > _utcnow():
            return user
        return None

    async def get_cached_user_by_wallet(self, address):
        address = address.lower()
        for user in self.user_cache.values():
            if user.verified_wallets and address in user.verified_wallets:
                if user.expires_at and user.expires_at > _utcnow():
                    return user
        return None

    async def get_cached_users(self, addresses):
        found = {}
        for address in addresses:
            user = await self.get_cached_user(address)
            if user is not None:
                found[user.eth_address] = user
        return found

    async def upsert_cached_user(self, user):
        now = _utcnow()
        existing = self.user_cache.get(user.eth_address)
        if existing:
            merged = existing.model_copy(update={
                k: v for k, v in user.model_dump().items()
                if v is not None and k not in ("eth_address", "cached_at")
            })
            merged.refreshed_at = now
        else:
            merged = user.model_copy(update={"cached_at": now, "refreshed_at": now})
        self.user_cache[user.eth_address] = merged
        return merged

    async def get_cached_contract(self, address):
        contract = self.contract_cache.get(address.lower())
        if contract and contract.expires_at and contract.expires_at > _utcnow():
            return contract
        return None

    async def get_cached_contracts(self, addresses):
        found = {}
        for address in addresses:
            contract = await self.get_cached_contract(address)
            if contract is not None:
                found[contract.contract_address] = contract
        return found

    async def upsert_cached_contract(self, contract):
        now = _utcnow()
        existing = self.contract_cache.get(contract.contract_address)
        if existing:
            merged = existing.model_copy(update={
                k: v for k, v in contract.model_dump().items()
                if v is not None and k not in ("contract_address", "cached_at")
            })
            merged.refreshed_at = now
        else:
            merged = contract.model_copy(update={"cached_at": now, "refreshed_at": now})
        self.contract_cache[contract.contract_address] = merged
        return merged

    async def delete_expired_rows(self, table):
        if table not in EXPIRING_TABLES:
            raise ValueError(f"Table {table} has no expiry column")
        store = {
            "user_cache": self.user_cache,
            "contract_cache": self.contract_cache,
            "auction_completions_cache": self.completions,
        }[table]
        now = _utcnow()
        expired = [k for k, v in store.items() if v.expires_at is not None and v.expires_at < now]
        for key in expired:
            del store[key]
        return len(expired)

    async def delete_read_notifications_before(self, cutoff):
        before = len(self.notifications)
        self.notifications = [
            n for n in self.notifications
            if not (n.get("read") and n["created_at"] < cutoff)
        ]
        return before - len(self.notifications)

    async def get_completion(self, listing_id):
        return self.completions.get(listing_id)

    async def upsert_completion(self, record):
        existing = self.completions.get(record.listing_id)
        if existing:
            record = existing.model_copy(update={
                "nft_metadata": record.nft_metadata,
                "winner_fid": record.winner_fid,
                "seller_fid": record.seller_fid,
                "curator_fid": record.curator_fid,
                "is_first_win": record.is_first_win,
                "is_record_price": record.is_record_price,
                "expires_at": record.expires_at,
            })
        self.completions[record.listing_id] = record

    async def find_fid_by_address(self, address):
        address = address.lower()
        for fid, profile in self.profiles.items():
            if address in [a.lower() for a in profile.get("verified_addresses") or []]:
                return fid
        return None

    async def count_other_wins(self, winner_fid, listing_id):
        return sum(
            1 for c in self.completions.values()
            if c.winner_fid == winner_fid and c.listing_id != listing_id
        )

    async def get_max_final_bid_for_seller(self, seller_fid):
        bids = [int(c.final_bid) for c in self.completions.values() if c.seller_fid == seller_fid]
        return max(bids) if bids else None

    async def get_recent_completions(self, limit=50, offset=0, featured_only=False):
        rows = [c for c in self.completions.values() if c.featured or not featured_only]
        rows.sort(key=lambda c: c.completed_at, reverse=True)
        return rows[offset:offset + limit]

    async def count_completions(self, featured_only=False):
        return sum(1 for c in self.completions.values() if c.featured or not featured_only)

    async def get_profiles(self, fids):
        return {fid: self.profiles[fid] for fid in fids if fid in self.profiles}

    async def get_reputations(self, fids):
        return {fid: self.reputations[fid] for fid in fids if fid in self.reputations}

    async def get_top_patrons(self, limit, offset, since=None, min_tier_value=None):
        grouped: Dict[int, Dict[str, Any]] = {}
        for row in self.patronships:
            if since is not None and (row.get("last_purchase") is None or row["last_purchase"] < since):
                continue
            if min_tier_value is not None and TIER_VALUES.get(row.get("patron_tier"), 0) < min_tier_value:
                continue
            entry = grouped.setdefault(row["collector_fid"], {
                "collector_fid": row["collector_fid"],
                "total_spent": 0,
                "creators": set(),
                "items_collected": 0,
                "market_purchases": 0,
                "gallery_purchases": 0,
                "last_activity": None,
            })
            entry["total_spent"] += int(row.get("total_spent") or 0)
            entry["creators"].add(row.get("creator_fid"))
            entry["items_collected"] += row.get("items_owned") or 0
            entry["market_purchases"] += row.get("market_purchases") or 0
            entry["gallery_purchases"] += row.get("gallery_purchases") or 0
            last = row.get("last_purchase")
            if last is not None and (entry["last_activity"] is None or last > entry["last_activity"]):
                entry["last_activity"] = last

        ordered = sorted(grouped.values(), key=lambda e: e["total_spent"], reverse=True)
        rows = []
        for entry in ordered[offset:offset + limit]:
            creators = entry.pop("creators")
            entry["creators_supported"] = len(creators)
            entry["total_spent"] = str(entry["total_spent"])
            rows.append(entry)
        return rows, len(ordered)

    async def get_creator_patrons(self, creator_fid, limit):
        rows = [dict(row) for row in self.patronships if row.get("creator_fid") == creator_fid]
        rows.sort(key=lambda r: int(r.get("total_spent") or 0), reverse=True)
        return rows[:limit]

    async def list_galleries(self, curator_address, published_only=False):
        address = curator_address.lower()
        galleries = [
            g.model_copy(update={"item_count": len(self.gallery_items.get(g.id, []))})
            for g in self.galleries.values()
            if g.curator_address == address and (g.is_published or not published_only)
        ]
        galleries.sort(key=lambda g: g.created_at, reverse=True)
        return galleries

    async def count_galleries(self, curator_address):
        address = curator_address.lower()
        return sum(1 for g in self.galleries.values() if g.curator_address == address)

    async def gallery_slug_exists(self, curator_address, slug, exclude_id=None):
        address = curator_address.lower()
        return any(
            g.curator_address == address and g.slug == slug and g.id != exclude_id
            for g in self.galleries.values()
        )

    async def create_gallery(self, curator_address, title, description, slug):
        now = _utcnow()
        gallery = Gallery(
            id=str(uuid.uuid4()),
            curator_address=curator_address.lower(),
            title=title,
            description=description,
            slug=slug,
            is_published=False,
            created_at=now,
            updated_at=now,
        )
        self.galleries[gallery.id] = gallery
        self.gallery_items[gallery.id] = []
        return gallery

    async def get_gallery(self, gallery_id):
        return self.galleries.get(gallery_id)

    async def get_gallery_by_slug(self, curator_address, slug):
        address = curator_address.lower()
        for gallery in self.galleries.values():
            if gallery.curator_address == address and gallery.slug == slug:
                return gallery
        return None

    async def update_gallery(self, gallery_id, fields):
        gallery = self.galleries[gallery_id].model_copy(update={**fields, "updated_at": _utcnow()})
        self.galleries[gallery_id] = gallery
        return gallery

    async def delete_gallery(self, gallery_id):
        self.galleries.pop(gallery_id, None)
        self.gallery_items.pop(gallery_id, None)

    async def get_gallery_items(self, gallery_id):
        return sorted(self.gallery_items.get(gallery_id, []), key=lambda i: i.display_order)

    async def add_gallery_item(self, gallery_id, listing_id, display_order, notes=None):
        item = GalleryItem(
            id=str(uuid.uuid4()),
            curation_id=gallery_id,
            listing_id=listing_id,
            display_order=display_order,
            notes=notes,
            added_at=_utcnow(),
        )
        self.gallery_items.setdefault(gallery_id, []).append(item)
        return item

    async def remove_gallery_item(self, gallery_id, listing_id):
        items = self.gallery_items.get(gallery_id, [])
        kept = [i for i in items if i.listing_id != listing_id]
        self.gallery_items[gallery_id] = kept
        return len(items) - len(kept)


def _row_dict(row) -> Dict[str, Any]:
    return dict(row._mapping)


def _gallery_from_row(row) -> Gallery:
    data = _row_dict(row)
    data["id"] = str(data["id"])
    return Gallery(**data)


def _item_from_row(row) -> GalleryItem:
    data = _row_dict(row)
    data["id"] = str(data["id"])
    data["curation_id"] = str(data["curation_id"])
    return GalleryItem(**data)


def _user_from_row(row) -> CachedUser:
    data = _row_dict(row)
    data["verified_wallets"] = _json_list(data.get("verified_wallets"))
    return CachedUser(**data)


def _completion_from_row(row) -> AuctionCompletion:
    data = _row_dict(row)
    if isinstance(data.get("nft_metadata"), str):
        data["nft_metadata"] = json.loads(data["nft_metadata"])
    data["final_bid"] = str(data["final_bid"])
    if data.get("curator_earnings") is not None:
        data["curator_earnings"] = str(data["curator_earnings"])
    return AuctionCompletion(**data)


class DatabaseDataProvider(DataProvider):
    """Database data provider using direct SQL queries"""

    async def health_check(self) -> bool:
        return await check_database_connection()

    async def get_hidden_users(self):
        async with AsyncSessionLocal() as session:
            rows = await DatabaseQueries.get_hidden_users(session)
            return {row.user_address for row in rows}

    async def get_nft_metadata(self, contract_address, token_id):
        async with AsyncSessionLocal() as session:
            row = await DatabaseQueries.get_nft_metadata(session, contract_address, token_id)
            if not row:
                return None
            data = _row_dict(row)
            if isinstance(data.get("attributes"), str):
                data["attributes"] = json.loads(data["attributes"])
            return data

    async def get_cached_user(self, address):
        async with AsyncSessionLocal() as session:
            row = await DatabaseQueries.get_cached_user(session, address)
            return _user_from_row(row) if row else None

    async def get_cached_user_by_wallet(self, address):
        async with AsyncSessionLocal() as session:
            row = await DatabaseQueries.get_cached_user_by_wallet(session, address)
            return _user_from_row(row) if row else None

    async def get_cached_users(self, addresses):
        if not addresses:
            return {}
        async with AsyncSessionLocal() as session:
            rows = await DatabaseQueries.get_cached_users(session, addresses)
            return {row.eth_address: _user_from_row(row) for row in rows}

    async def upsert_cached_user(self, user):
        async with AsyncSessionLocal() as session:
            row = await DatabaseQueries.upsert_cached_user(session, user)
            return _user_from_row(row)

    async def get_cached_contract(self, address):
        async with AsyncSessionLocal() as session:
            row = await DatabaseQueries.get_cached_contract(session, address)
            return CachedContract(**_row_dict(row)) if row else None

    async def get_cached_contracts(self, addresses):
        if not addresses:
            return {}
        async with AsyncSessionLocal() as session:
            rows = await DatabaseQueries.get_cached_contracts(session, addresses)
            return {row.contract_address: CachedContract(**_row_dict(row)) for row in rows}

    async def upsert_cached_contract(self, contract):
        async with AsyncSessionLocal() as session:
            row = await DatabaseQueries.upsert_cached_contract(session, contract)
            return CachedContract(**_row_dict(row))

    async def delete_expired_rows(self, table):
        async with AsyncSessionLocal() as session:
            return await DatabaseQueries.delete_expired_rows(session, table)

    async def delete_read_notifications_before(self, cutoff):
        async with AsyncSessionLocal() as session:
            return await DatabaseQueries.delete_read_notifications_before(session, cutoff)

    async def get_completion(self, listing_id):
        async with AsyncSessionLocal() as session:
            row = await DatabaseQueries.get_completion(session, listing_id)
            return _completion_from_row(row) if row else None

    async def upsert_completion(self, record):
        async with AsyncSessionLocal() as session:
            await DatabaseQueries.upsert_completion(session, record)

    async def find_fid_by_address(self, address):
        async with AsyncSessionLocal() as session:
            return await DatabaseQueries.find_fid_by_address(session, address)

    async def count_other_wins(self, winner_fid, listing_id):
        async with AsyncSessionLocal() as session:
            return await DatabaseQueries.count_other_wins(session, winner_fid, listing_id)

    async def get_max_final_bid_for_seller(self, seller_fid):
        async with AsyncSessionLocal() as session:
            return await DatabaseQueries.get_max_final_bid_for_seller(session, seller_fid)

    async def get_recent_completions(self, limit=50, offset=0, featured_only=False):
        async with AsyncSessionLocal() as session:
            rows = await DatabaseQueries.get_recent_completions(session, limit, offset, featured_only)
            return [_completion_from_row(row) for row in rows]

    async def count_completions(self, featured_only=False):
        async with AsyncSessionLocal() as session:
            return await DatabaseQueries.count_completions(session, featured_only)

    async def get_profiles(self, fids):
        if not fids:
            return {}
        async with AsyncSessionLocal() as session:
            rows = await DatabaseQueries.get_profiles(session, fids)
            return {row.fid: _row_dict(row) for row in rows}

    async def get_reputations(self, fids):
        if not fids:
            return {}
        async with AsyncSessionLocal() as session:
            rows = await DatabaseQueries.get_reputations(session, fids)
            result = {}
            for row in rows:
                data = _row_dict(row)
                data["badges"] = _json_list(data.get("badges")) or []
                result[row.fid] = data
            return result

    async def get_top_patrons(self, limit, offset, since=None, min_tier_value=None):
        async with AsyncSessionLocal() as session:
            rows, total = await DatabaseQueries.get_top_patrons(session, limit, offset, since, min_tier_value)
            return [_row_dict(row) for row in rows], total

    async def get_creator_patrons(self, creator_fid, limit):
        async with AsyncSessionLocal() as session:
            rows = await DatabaseQueries.get_creator_patrons(session, creator_fid, limit)
            return [_row_dict(row) for row in rows]

    async def list_galleries(self, curator_address, published_only=False):
        async with AsyncSessionLocal() as session:
            rows = await DatabaseQueries.list_galleries(session, curator_address, published_only)
            return [_gallery_from_row(row) for row in rows]

    async def count_galleries(self, curator_address):
        async with AsyncSessionLocal() as session:
            return await DatabaseQueries.count_galleries(session, curator_address)

    async def gallery_slug_exists(self, curator_address, slug, exclude_id=None):
        async with AsyncSessionLocal() as session:
            return await DatabaseQueries.gallery_slug_exists(session, curator_address, slug, exclude_id)

    async def create_gallery(self, curator_address, title, description, slug):
        async with AsyncSessionLocal() as session:
            row = await DatabaseQueries.create_gallery(session, curator_address, title, description, slug)
            return _gallery_from_row(row)

    async def get_gallery(self, gallery_id):
        async with AsyncSessionLocal() as session:
            row = await DatabaseQueries.get_gallery(session, gallery_id)
            return _gallery_from_row(row) if row else None

    async def get_gallery_by_slug(self, curator_address, slug):
        async with AsyncSessionLocal() as session:
            row = await DatabaseQueries.get_gallery_by_slug(session, curator_address, slug)
            return _gallery_from_row(row) if row else None

    async def update_gallery(self, gallery_id, fields):
        async with AsyncSessionLocal() as session:
            row = await DatabaseQueries.update_gallery(session, gallery_id, fields)
            return _gallery_from_row(row)

    async def delete_gallery(self, gallery_id):
        async with AsyncSessionLocal() as session:
            await DatabaseQueries.delete_gallery(session, gallery_id)

    async def get_gallery_items(self, gallery_id):
        async with AsyncSessionLocal() as session:
            rows = await DatabaseQueries.get_gallery_items(session, gallery_id)
            return [_item_from_row(row) for row in rows]

    async def add_gallery_item(self, gallery_id, listing_id, display_order, notes=None):
        async with AsyncSessionLocal() as session:
            row = await DatabaseQueries.add_gallery_item(session, gallery_id, listing_id, display_order, notes)
            return _item_from_row(row)

    async def remove_gallery_item(self, gallery_id, listing_id):
        async with AsyncSessionLocal() as session:
            return await DatabaseQueries.remove_gallery_item(session, gallery_id, listing_id)


_mock_provider: Optional[MockDataProvider] = None


def get_data_provider(force_mode: Optional[str] = None) -> DataProvider:
    """Get the appropriate data provider based on configuration and force_mode

    Args:
        force_mode: "mock" to force MockDataProvider, None to follow APP_MODE
    """
    global _mock_provider
    settings = get_settings()

    if force_mode == "mock" or (force_mode is None and settings.app_mode.value == "mock"):
        # One shared in-memory store so writes survive across requests
        if _mock_provider is None:
            logger.info("Using MockDataProvider")
            _mock_provider = MockDataProvider()
        return _mock_provider

    database_url = settings.get_effective_database_url()
    if not database_url:
        raise RuntimeError("Database URL required but not configured")

    return DatabaseDataProvider()


def cache_expiry(days: int = CACHE_TTL_DAYS) -> datetime:
    """Expiry timestamp for rows in the 30-day cache tables"""
    return _utcnow() + timedelta(days=days)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(init_database())
