#!/usr/bin/env python3
"""
Creator Core Indexer
Polls eth_getLogs for Creator Core transfer and extension events and mirrors
them into the creator_core_* tables.
"""

import os
import sys
import json
import time
import yaml
import signal
import logging
import argparse
from typing import Any, Callable, Dict, List, Optional

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware
from dotenv import load_dotenv

from indexer.contracts import detect_creator_core_contract
from indexer.events import (
    ALL_TOPICS,
    EXTENSION_REGISTERED_TOPIC,
    EXTENSION_UNREGISTERED_TOPIC,
    ZERO_ADDRESS,
    decode_extension_event,
    decode_transfers,
    to_hex,
    topic0,
)
from indexer.metadata import DEFAULT_IPFS_GATEWAY, fetch_and_cache_metadata
from indexer.store import IndexerStore

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), 'config.yaml')
POA_CHAIN_IDS = [137, 8453]  # Polygon, Base
SPLIT_ERRORS = [
    'too many results',
    'response size',
    'limit exceeded',
    'query returned more than',
    'block range',
    'timeout',
    'gateway',
    'internal error',
    'server error',
]
# Throttling is left to the poll loop backoff; splitting only adds requests
RATE_LIMIT_ERRORS = [
    'rate limit',
    'too many requests',
    '429',
]


def load_config(config_path: str) -> Dict:
    """Load YAML config with environment variables expanded"""
    with open(config_path, 'r') as f:
        config_content = os.path.expandvars(f.read())
    return yaml.safe_load(config_content)


def init_web3(rpc_url: str, chain_id: int) -> Web3:
    w3 = Web3(Web3.HTTPProvider(rpc_url))
    if chain_id in POA_CHAIN_IDS:
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    if not w3.is_connected():
        raise ConnectionError(f"Failed to connect to RPC for chain {chain_id}")
    return w3


class CreatorCoreIndexer:
    """Single-network poll loop over Creator Core events"""

    MAX_TIMESTAMP_CACHE = 1000

    def __init__(self, config: Dict, w3: Optional[Web3] = None, store: Optional[IndexerStore] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        indexer_config = config.get('indexer', {})
        network_config = config.get('network', {})

        try:
            level_str = str(indexer_config.get('log_level', 'INFO')).upper()
            logger.setLevel(getattr(logging, level_str, logging.INFO))
        except (TypeError, ValueError):
            pass

        self.name = indexer_config.get('name', 'creator-core')
        self.chain_id = int(network_config.get('chain_id', 8453))
        self.start_block = int(indexer_config.get('start_block', 0))
        self.batch_size = int(indexer_config.get('batch_size', 1000))
        self.poll_interval = float(indexer_config.get('poll_interval', 12))
        self.min_split_span = int(indexer_config.get('min_split_span', 500))
        self.fetch_metadata = bool(indexer_config.get('fetch_metadata', True))
        self.ipfs_gateway = indexer_config.get('ipfs_gateway') or DEFAULT_IPFS_GATEWAY

        self.w3 = w3
        self.store = store
        self._sleep = sleep

        self.running = False
        self.last_indexed_block = self.start_block
        self.known_contracts = set()
        self.rejected_contracts = set()
        self.timestamp_cache: Dict[int, int] = {}

    def initialize(self) -> int:
        """Connect if needed and resume from indexer_state, else from the configured start block"""
        if self.w3 is None:
            network = self.config['network']
            self.w3 = init_web3(network['rpc_url'], self.chain_id)
            logger.info(f"Connected to {network.get('name', self.chain_id)} (chain_id: {self.chain_id})")
        if self.store is None:
            self.store = IndexerStore.connect(self.config['database']['url'])

        last = self.store.get_last_indexed_block(self.chain_id, self.name)
        if last is None:
            self.store.init_state(self.chain_id, self.name, self.start_block)
            last = self.start_block
            logger.info(f"No indexer state for {self.name} on chain {self.chain_id}, starting from block {last}")

        self.last_indexed_block = last
        logger.info(f"Indexer initialized. Last indexed block: {last}")
        return last

    def get_status(self) -> Dict[str, Any]:
        current_block = self.w3.eth.block_number
        return {
            'running': self.running,
            'last_indexed_block': self.last_indexed_block,
            'current_block': current_block,
            'blocks_behind': current_block - self.last_indexed_block,
        }

    def index_next_batch(self) -> int:
        """Index (last, min(head, last + batch_size)]; returns the number of logs seen"""
        current_block = self.w3.eth.block_number
        to_block = min(current_block, self.last_indexed_block + self.batch_size)
        if to_block <= self.last_indexed_block:
            logger.debug(f"Up to date at block {current_block}")
            return 0

        from_block = self.last_indexed_block + 1
        logger.debug(f"Indexing blocks {from_block} to {to_block}")

        logs = self._get_logs_with_split(from_block, to_block)
        for log in logs:
            self.process_log(log)

        self.store.set_last_indexed_block(self.chain_id, self.name, to_block)
        self.last_indexed_block = to_block
        logger.info(f"[{to_block}, -{current_block - to_block}] Indexed {len(logs)} events")
        return len(logs)

    def _get_logs_with_split(self, from_block: int, to_block: int) -> List[Any]:
        """eth_getLogs with the range halved recursively on provider size/limit errors"""
        try:
            return list(self.w3.eth.get_logs({
                'fromBlock': from_block,
                'toBlock': to_block,
                'topics': [ALL_TOPICS],
            }))
        except Exception as e:
            span = to_block - from_block
            msg = str(e).lower()
            throttled = any(x in msg for x in RATE_LIMIT_ERRORS)
            if span > self.min_split_span and not throttled and any(x in msg for x in SPLIT_ERRORS):
                mid = from_block + span // 2
                logger.debug(f"Splitting {from_block}-{to_block} at {mid}: {e}")
                left = self._get_logs_with_split(from_block, mid)
                right = self._get_logs_with_split(mid + 1, to_block)
                return left + right
            raise

    def _get_block_timestamp(self, block_number: int) -> int:
        if block_number in self.timestamp_cache:
            return self.timestamp_cache[block_number]
        if len(self.timestamp_cache) >= self.MAX_TIMESTAMP_CACHE:
            del self.timestamp_cache[min(self.timestamp_cache)]
        timestamp = int(self.w3.eth.get_block(block_number)['timestamp'])
        self.timestamp_cache[block_number] = timestamp
        return timestamp

    def process_log(self, log) -> None:
        """Store one log; errors are logged and the log is skipped"""
        try:
            kind = topic0(log)
            if kind in (EXTENSION_REGISTERED_TOPIC, EXTENSION_UNREGISTERED_TOPIC):
                self._process_extension_log(log)
                return

            transfers = decode_transfers(log)
            if not transfers:
                return
            if not self.ensure_contract_indexed(transfers[0]['contract_address']):
                return

            timestamp = self._get_block_timestamp(int(log['blockNumber']))
            for transfer in transfers:
                transfer['timestamp'] = timestamp
                self._store_transfer(transfer)
        except Exception as e:
            logger.error(f"Error processing log {to_hex(log.get('transactionHash', ''))}: {e}")

    def _process_extension_log(self, log) -> None:
        event = decode_extension_event(log)
        if not event or not self.ensure_contract_indexed(event['contract_address']):
            return
        timestamp = self._get_block_timestamp(event['block_number'])
        if event['registered']:
            self.store.register_extension(
                event['contract_address'], event['extension_address'], event['block_number'], timestamp
            )
            logger.info(f"🧩 Extension {event['extension_address']} registered on {event['contract_address']}")
        else:
            self.store.unregister_extension(
                event['contract_address'], event['extension_address'], event['block_number'], timestamp
            )
            logger.info(f"Extension {event['extension_address']} unregistered from {event['contract_address']}")

    def _store_transfer(self, transfer: Dict[str, Any]) -> None:
        if not self.store.insert_transfer(transfer):
            logger.debug(f"Transfer {transfer['tx_hash']}:{transfer['log_index']} already stored")
            return

        if transfer['from_address'] == ZERO_ADDRESS:
            self.store.upsert_minted_token(transfer)
            logger.info(f"🎨 Mint {transfer['contract_address']}#{transfer['token_id']} to {transfer['to_address']}")
            if self.fetch_metadata:
                try:
                    fetch_and_cache_metadata(
                        self.w3, self.store, transfer['contract_address'], transfer['token_id'], self.ipfs_gateway
                    )
                except Exception as e:
                    logger.warning(f"Metadata fetch failed for {transfer['contract_address']}#{transfer['token_id']}: {e}")
        elif transfer['to_address'] == ZERO_ADDRESS:
            self.store.update_token_owner(transfer['contract_address'], transfer['token_id'], None)
        else:
            self.store.update_token_owner(transfer['contract_address'], transfer['token_id'], transfer['to_address'])

    def ensure_contract_indexed(self, address: str) -> bool:
        """True for Creator Core contracts, detecting and storing unseen ones"""
        address = address.lower()
        if address in self.known_contracts:
            return True
        if address in self.rejected_contracts:
            return False

        if self.store.is_contract_known(address):
            self.known_contracts.add(address)
            return True

        info = detect_creator_core_contract(self.w3, address)
        if not info:
            self.rejected_contracts.add(address)
            return False

        self.store.insert_contract(info, self.chain_id)
        self.known_contracts.add(address)
        logger.info(f"✅ Indexed new Creator Core contract: {address} ({info['type']})")
        return True

    def start(self) -> None:
        """Run the poll loop until stop() is called"""
        if self.running:
            logger.warning("Indexer is already running")
            return

        self.running = True
        logger.info(f"🚀 Starting Creator Core indexer from block {self.last_indexed_block}")
        try:
            while self.running:
                try:
                    self.index_next_batch()
                    self._sleep(self.poll_interval)
                except Exception as e:
                    logger.error(f"Error in indexing loop: {e}")
                    self._sleep(self.poll_interval * 2)
        except KeyboardInterrupt:
            logger.info("Indexer stopped by user")
        finally:
            self.running = False

    def stop(self) -> None:
        if self.running:
            logger.info("Stopping Creator Core indexer...")
        self.running = False


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description='Creator Core Indexer')
    parser.add_argument('--config', '-c',
                       help='Path to config file',
                       default=DEFAULT_CONFIG_PATH)
    parser.add_argument('--status', action='store_true',
                       help='Print indexer progress and exit')
    parser.add_argument('--once', action='store_true',
                       help='Index a single batch and exit')
    args = parser.parse_args()

    try:
        indexer = CreatorCoreIndexer(load_config(args.config))
        indexer.initialize()
    except Exception as e:
        logger.error(f"Failed to start indexer: {e}")
        sys.exit(1)

    try:
        if args.status:
            print(json.dumps(indexer.get_status(), indent=2))
        elif args.once:
            indexer.index_next_batch()
        else:
            signal.signal(signal.SIGTERM, lambda signum, frame: indexer.stop())
            indexer.start()
    finally:
        indexer.store.close()


if __name__ == "__main__":
    main()
