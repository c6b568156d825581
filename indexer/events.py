#!/usr/bin/env python3
"""
Decoding of Creator Core events from raw eth_getLogs entries.

Works on web3 log AttributeDicts as well as plain dicts with hex strings,
so every decoder can be exercised without a node.
"""

import logging
from typing import Any, Dict, List, Optional

from eth_abi import decode
from web3 import Web3

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def event_topic(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature))


TRANSFER_TOPIC = event_topic("Transfer(address,address,uint256)")
TRANSFER_SINGLE_TOPIC = event_topic("TransferSingle(address,address,address,uint256,uint256)")
TRANSFER_BATCH_TOPIC = event_topic("TransferBatch(address,address,address,uint256[],uint256[])")
EXTENSION_REGISTERED_TOPIC = event_topic("ExtensionRegistered(address,address)")
EXTENSION_UNREGISTERED_TOPIC = event_topic("ExtensionUnregistered(address,address)")

ALL_TOPICS = [
    TRANSFER_TOPIC,
    TRANSFER_SINGLE_TOPIC,
    TRANSFER_BATCH_TOPIC,
    EXTENSION_REGISTERED_TOPIC,
    EXTENSION_UNREGISTERED_TOPIC,
]


def to_hex(value: Any) -> str:
    """Lowercase 0x-prefixed hex for HexBytes, bytes or str values"""
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value).lower()
    value = str(value).lower()
    return value if value.startswith("0x") else "0x" + value


def _data_bytes(data: Any) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    data = str(data or "")
    if data.startswith("0x"):
        data = data[2:]
    return bytes.fromhex(data)


def topic_address(topic: Any) -> str:
    return "0x" + to_hex(topic)[-40:]


def topic0(log: Dict[str, Any]) -> Optional[str]:
    topics = log.get("topics") or []
    return to_hex(topics[0]) if topics else None


def _base_record(log: Dict[str, Any], timestamp: Optional[int]) -> Dict[str, Any]:
    return {
        "contract_address": str(log["address"]).lower(),
        "tx_hash": to_hex(log["transactionHash"]),
        "block_number": int(log["blockNumber"]),
        "log_index": int(log["logIndex"]),
        "batch_index": 0,
        "timestamp": timestamp,
    }


def decode_transfer(log: Dict[str, Any], timestamp: Optional[int] = None) -> Optional[Dict[str, Any]]:
    """ERC721 Transfer; ERC20 transfers (token id not indexed) return None"""
    topics = log.get("topics") or []
    if len(topics) < 4:
        return None
    record = _base_record(log, timestamp)
    record.update({
        "from_address": topic_address(topics[1]),
        "to_address": topic_address(topics[2]),
        "token_id": str(int(to_hex(topics[3]), 16)),
        "amount": "1",
    })
    return record


def decode_transfer_single(log: Dict[str, Any], timestamp: Optional[int] = None) -> Optional[Dict[str, Any]]:
    topics = log.get("topics") or []
    data = _data_bytes(log.get("data"))
    if len(topics) < 4 or len(data) < 64:
        return None
    token_id, value = decode(["uint256", "uint256"], data)
    record = _base_record(log, timestamp)
    record.update({
        "from_address": topic_address(topics[2]),
        "to_address": topic_address(topics[3]),
        "token_id": str(token_id),
        "amount": str(value),
    })
    return record


def decode_transfer_batch(log: Dict[str, Any], timestamp: Optional[int] = None) -> List[Dict[str, Any]]:
    """One transfer per (id, value) pair, numbered with batch_index"""
    topics = log.get("topics") or []
    data = _data_bytes(log.get("data"))
    if len(topics) < 4 or not data:
        return []
    ids, values = decode(["uint256[]", "uint256[]"], data)
    if len(ids) != len(values):
        logger.warning(f"TransferBatch in {to_hex(log['transactionHash'])} has {len(ids)} ids and {len(values)} values")
        return []

    transfers = []
    for index, (token_id, value) in enumerate(zip(ids, values)):
        record = _base_record(log, timestamp)
        record.update({
            "from_address": topic_address(topics[2]),
            "to_address": topic_address(topics[3]),
            "token_id": str(token_id),
            "amount": str(value),
            "batch_index": index,
        })
        transfers.append(record)
    return transfers


def decode_extension_event(log: Dict[str, Any], timestamp: Optional[int] = None) -> Optional[Dict[str, Any]]:
    """ExtensionRegistered / ExtensionUnregistered(address indexed extension, address indexed sender)"""
    topics = log.get("topics") or []
    kind = topic0(log)
    if len(topics) < 2 or kind not in (EXTENSION_REGISTERED_TOPIC, EXTENSION_UNREGISTERED_TOPIC):
        return None
    return {
        "contract_address": str(log["address"]).lower(),
        "extension_address": topic_address(topics[1]),
        "registered": kind == EXTENSION_REGISTERED_TOPIC,
        "block_number": int(log["blockNumber"]),
        "timestamp": timestamp,
    }


def decode_transfers(log: Dict[str, Any], timestamp: Optional[int] = None) -> List[Dict[str, Any]]:
    """Any of the three transfer events, as a list of transfer records"""
    kind = topic0(log)
    if kind == TRANSFER_TOPIC:
        transfer = decode_transfer(log, timestamp)
        return [transfer] if transfer else []
    if kind == TRANSFER_SINGLE_TOPIC:
        transfer = decode_transfer_single(log, timestamp)
        return [transfer] if transfer else []
    if kind == TRANSFER_BATCH_TOPIC:
        return decode_transfer_batch(log, timestamp)
    return []
