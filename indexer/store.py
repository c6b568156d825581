#!/usr/bin/env python3
"""
Postgres persistence for the Creator Core indexer.
"""

import logging
from typing import Any, Dict, Optional

import psycopg2
from psycopg2.extras import Json, RealDictCursor

logger = logging.getLogger(__name__)


class IndexerStore:
    """Thin psycopg2 wrapper; every statement runs in autocommit mode"""

    def __init__(self, conn):
        self.conn = conn

    @classmethod
    def connect(cls, database_url: str) -> "IndexerStore":
        conn = psycopg2.connect(database_url, cursor_factory=RealDictCursor)
        conn.autocommit = True
        with conn.cursor() as cursor:
            cursor.execute("SELECT 1")
        logger.info("Database connection established")
        return cls(conn)

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()

    # Indexer state

    def get_last_indexed_block(self, chain_id: int, indexer_name: str) -> Optional[int]:
        with self.conn.cursor() as cursor:
            cursor.execute(
                "SELECT COALESCE(last_indexed_block, start_block) AS block_to_use FROM indexer_state "
                "WHERE chain_id = %s AND indexer_name = %s",
                (chain_id, indexer_name)
            )
            row = cursor.fetchone()
        return int(row['block_to_use']) if row and row['block_to_use'] is not None else None

    def init_state(self, chain_id: int, indexer_name: str, start_block: int) -> None:
        with self.conn.cursor() as cursor:
            cursor.execute("""
                INSERT INTO indexer_state (chain_id, indexer_name, last_indexed_block, start_block, updated_at)
                VALUES (%s, %s, %s, %s, NOW())
                ON CONFLICT (chain_id, indexer_name) DO NOTHING
            """, (chain_id, indexer_name, start_block, start_block))

    def set_last_indexed_block(self, chain_id: int, indexer_name: str, block_number: int) -> None:
        with self.conn.cursor() as cursor:
            cursor.execute("""
                UPDATE indexer_state
                SET last_indexed_block = %s, updated_at = NOW()
                WHERE chain_id = %s AND indexer_name = %s
            """, (block_number, chain_id, indexer_name))

    # Contracts

    def is_contract_known(self, contract_address: str) -> bool:
        with self.conn.cursor() as cursor:
            cursor.execute(
                "SELECT 1 FROM creator_core_contracts WHERE contract_address = %s",
                (contract_address.lower(),)
            )
            return cursor.fetchone() is not None

    def insert_contract(self, info: Dict[str, Any], chain_id: int) -> None:
        with self.conn.cursor() as cursor:
            cursor.execute("""
                INSERT INTO creator_core_contracts (
                    contract_address, contract_type, name, symbol, deployer_address, chain_id, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, NOW())
                ON CONFLICT (contract_address) DO NOTHING
            """, (
                info['address'].lower(), info['type'], info.get('name'), info.get('symbol'),
                info.get('owner'), chain_id
            ))

    # Transfers and tokens

    def insert_transfer(self, transfer: Dict[str, Any]) -> bool:
        """Insert a transfer row; False when (tx_hash, log_index, batch_index) already exists"""
        with self.conn.cursor() as cursor:
            cursor.execute("""
                INSERT INTO creator_core_transfers (
                    tx_hash, log_index, batch_index, contract_address, token_id,
                    from_address, to_address, amount, block_number, timestamp
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, to_timestamp(%s))
                ON CONFLICT (tx_hash, log_index, batch_index) DO NOTHING
                RETURNING id
            """, (
                transfer['tx_hash'], transfer['log_index'], transfer.get('batch_index', 0),
                transfer['contract_address'], transfer['token_id'],
                transfer['from_address'], transfer['to_address'], transfer['amount'],
                transfer['block_number'], transfer.get('timestamp')
            ))
            return cursor.fetchone() is not None

    def upsert_minted_token(self, transfer: Dict[str, Any]) -> None:
        total_supply = transfer['amount'] if transfer['amount'] != '1' else None
        with self.conn.cursor() as cursor:
            cursor.execute("""
                INSERT INTO creator_core_tokens (
                    contract_address, token_id, mint_tx_hash, minted_by, minted_at,
                    minted_at_block, current_owner, total_supply, updated_at
                ) VALUES (%s, %s, %s, %s, to_timestamp(%s), %s, %s, %s, NOW())
                ON CONFLICT (contract_address, token_id) DO UPDATE SET
                    current_owner = EXCLUDED.current_owner,
                    updated_at = NOW()
            """, (
                transfer['contract_address'], transfer['token_id'], transfer['tx_hash'],
                transfer['to_address'], transfer.get('timestamp'), transfer['block_number'],
                transfer['to_address'], total_supply
            ))

    def update_token_owner(self, contract_address: str, token_id: str, owner: Optional[str]) -> None:
        with self.conn.cursor() as cursor:
            cursor.execute("""
                UPDATE creator_core_tokens
                SET current_owner = %s, updated_at = NOW()
                WHERE contract_address = %s AND token_id = %s
            """, (owner, contract_address, token_id))

    def set_token_metadata(self, contract_address: str, token_id: str, token_uri: str,
                           metadata: Dict[str, Any]) -> None:
        with self.conn.cursor() as cursor:
            cursor.execute("""
                UPDATE creator_core_tokens
                SET token_uri = %s, metadata = %s, updated_at = NOW()
                WHERE contract_address = %s AND token_id = %s
            """, (token_uri, Json(metadata), contract_address, token_id))

    # Extensions

    def register_extension(self, contract_address: str, extension_address: str,
                           block_number: int, timestamp: Optional[int]) -> None:
        with self.conn.cursor() as cursor:
            cursor.execute("""
                INSERT INTO creator_core_extensions (
                    contract_address, extension_address, registered_at, registered_at_block
                ) VALUES (%s, %s, to_timestamp(%s), %s)
                ON CONFLICT (contract_address, extension_address) DO UPDATE SET
                    registered_at = EXCLUDED.registered_at,
                    registered_at_block = EXCLUDED.registered_at_block,
                    unregistered_at = NULL,
                    unregistered_at_block = NULL
            """, (contract_address, extension_address, timestamp, block_number))

    def unregister_extension(self, contract_address: str, extension_address: str,
                             block_number: int, timestamp: Optional[int]) -> None:
        with self.conn.cursor() as cursor:
            cursor.execute("""
                UPDATE creator_core_extensions
                SET unregistered_at = to_timestamp(%s), unregistered_at_block = %s
                WHERE contract_address = %s AND extension_address = %s
            """, (timestamp, block_number, contract_address, extension_address))

    # Metadata cache

    def get_cached_metadata(self, contract_address: str, token_id: str) -> Optional[Dict[str, Any]]:
        with self.conn.cursor() as cursor:
            cursor.execute(
                "SELECT * FROM nft_metadata_cache WHERE contract_address = %s AND token_id = %s",
                (contract_address, token_id)
            )
            row = cursor.fetchone()
        return dict(row) if row else None

    def upsert_metadata(self, contract_address: str, token_id: str, token_uri: str,
                        source: str, metadata: Dict[str, Any]) -> None:
        attributes = metadata.get('attributes')
        with self.conn.cursor() as cursor:
            cursor.execute("""
                INSERT INTO nft_metadata_cache (
                    contract_address, token_id, name, description, image_uri, animation_uri,
                    attributes, token_uri, metadata_source, refreshed_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, NOW())
                ON CONFLICT (contract_address, token_id) DO UPDATE SET
                    name = EXCLUDED.name,
                    description = EXCLUDED.description,
                    image_uri = EXCLUDED.image_uri,
                    animation_uri = EXCLUDED.animation_uri,
                    attributes = EXCLUDED.attributes,
                    token_uri = EXCLUDED.token_uri,
                    metadata_source = EXCLUDED.metadata_source,
                    refreshed_at = NOW()
            """, (
                contract_address, token_id, metadata.get('name'), metadata.get('description'),
                metadata.get('image'), metadata.get('animation_url'),
                Json(attributes) if attributes is not None else None,
                token_uri, source
            ))
